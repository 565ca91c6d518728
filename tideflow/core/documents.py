"""Changelog and checklist maintenance for Tideflow.

Provides the document validator used by gate 4 and the verification
pipeline, file-backed changelog access, and the documentation updater that
runs the documentation phase (record a changelog entry, tick the checklist
item, validate both, roll back on failure).

This module is headless - no UI or editor dependencies.
"""

import asyncio
import logging
from datetime import date
from pathlib import Path
from typing import Optional, Protocol, Union

from tideflow.core.checklist import ChecklistManager, ChecklistParser, FileChecklistManager
from tideflow.core.models import DocumentationResult, TaskResult, ValidationResult

logger = logging.getLogger(__name__)

CHANGELOG_TITLE = "# Changelog"


class DocumentValidator(Protocol):
    """Validates the project changelog and checklist."""

    async def validate_changelog(self) -> ValidationResult: ...

    async def validate_checklist(self) -> ValidationResult: ...


class ChangelogManager(Protocol):
    """Read/write access to the project changelog."""

    async def read(self) -> str: ...

    async def add_entry(self, entry: str) -> None: ...

    async def write(self, content: str) -> None: ...


def _entry_headings(changelog: str) -> list[str]:
    return [line.strip() for line in changelog.splitlines() if line.startswith("## ")]


class FileChangelogManager:
    """ChangelogManager backed by a markdown file.

    New entries go directly below the ``# Changelog`` title, newest first.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    async def read(self) -> str:
        if not self.path.exists():
            return ""
        return await asyncio.to_thread(self.path.read_text, encoding="utf-8")

    async def write(self, content: str) -> None:
        await asyncio.to_thread(self.path.write_text, content, encoding="utf-8")

    async def add_entry(self, entry: str) -> None:
        content = await self.read()
        body = content
        if content.startswith(CHANGELOG_TITLE):
            body = content[len(CHANGELOG_TITLE):].lstrip("\n")
        new_content = f"{CHANGELOG_TITLE}\n\n{entry.strip()}\n\n{body}".rstrip("\n") + "\n"
        await self.write(new_content)


class FileDocumentValidator:
    """DocumentValidator for a markdown changelog and checklist on disk."""

    def __init__(
        self,
        changelog_path: Union[str, Path],
        checklist_path: Union[str, Path],
        parser: Optional[ChecklistParser] = None,
    ):
        self.changelog_path = Path(changelog_path)
        self.checklist_path = Path(checklist_path)
        self.parser = parser or ChecklistParser()

    async def validate_changelog(self) -> ValidationResult:
        if not self.changelog_path.exists():
            return ValidationResult(False, f"Changelog not found: {self.changelog_path}")
        content = await asyncio.to_thread(self.changelog_path.read_text, encoding="utf-8")
        if not _entry_headings(content):
            return ValidationResult(False, "Changelog has no entries")
        return ValidationResult(True)

    async def validate_checklist(self) -> ValidationResult:
        if not self.checklist_path.exists():
            return ValidationResult(False, f"Checklist not found: {self.checklist_path}")
        content = await asyncio.to_thread(self.checklist_path.read_text, encoding="utf-8")
        if not self.parser.parse(content):
            return ValidationResult(False, "Checklist has no items")
        return ValidationResult(True)

    def validate_changelog_update(self, before: str, after: str) -> ValidationResult:
        """An update must keep every existing entry and add at least one."""
        before_headings = _entry_headings(before)
        after_headings = _entry_headings(after)
        missing = [h for h in before_headings if h not in after_headings]
        if missing:
            return ValidationResult(False, f"Changelog entries removed: {', '.join(missing)}")
        if len(after_headings) <= len(before_headings):
            return ValidationResult(False, "No changelog entry was added")
        return ValidationResult(True)

    def validate_checklist_update(self, before: str, after: str) -> ValidationResult:
        """An update may only tick items; it may not add, remove, rename or untick."""
        before_items = self.parser.parse(before)
        after_items = self.parser.parse(after)
        if len(before_items) != len(after_items):
            return ValidationResult(
                False,
                f"Checklist item count changed from {len(before_items)} to {len(after_items)}",
            )
        for old, new in zip(before_items, after_items):
            if old.title != new.title:
                return ValidationResult(False, f"Checklist item {old.id} was renamed")
            if old.completed and not new.completed:
                return ValidationResult(False, f"Checklist item {old.id} was unchecked")
        return ValidationResult(True)


def format_changelog_entry(result: TaskResult, today: Optional[date] = None) -> str:
    """Changelog entry describing a finished task."""
    day = (today or date.today()).isoformat()
    created = "\n".join(f"- {f.path}" for f in result.files_created) or "- None"
    modified = "\n".join(f"- {f.path}" for f in result.files_modified) or "- None"
    return (
        f"## [{day}] - {result.task.name}\n\n"
        "### Completed\n"
        f"- {result.task.description or result.task.name}\n\n"
        "### Files Created\n"
        f"{created}\n\n"
        "### Files Modified\n"
        f"{modified}"
    )


class DocumentationUpdater:
    """Runs the documentation phase for a finished task.

    Records a changelog entry and ticks the task's checklist item, then
    validates both edits. An invalid edit restores both documents and
    reports failure.
    """

    def __init__(
        self,
        changelog: ChangelogManager,
        checklist: ChecklistManager,
        validator: FileDocumentValidator,
    ):
        self.changelog = changelog
        self.checklist = checklist
        self.validator = validator

    @classmethod
    def for_paths(cls, changelog_path: Union[str, Path], checklist_path: Union[str, Path]) -> "DocumentationUpdater":
        return cls(
            FileChangelogManager(changelog_path),
            FileChecklistManager(checklist_path),
            FileDocumentValidator(changelog_path, checklist_path),
        )

    async def update_documentation(self, result: TaskResult) -> DocumentationResult:
        before_changelog = await self.changelog.read()
        before_checklist = await self.checklist.read()

        await self.changelog.add_entry(format_changelog_entry(result))
        if result.task.checklist_item:
            try:
                await self.checklist.mark_complete(result.task.checklist_item)
            except KeyError as e:
                await self.changelog.write(before_changelog)
                return DocumentationResult(success=False, error=str(e))

        changelog_check = self.validator.validate_changelog_update(
            before_changelog, await self.changelog.read()
        )
        checklist_check = self.validator.validate_checklist_update(
            before_checklist, await self.checklist.read()
        )

        if not changelog_check.valid or not checklist_check.valid:
            await self.changelog.write(before_changelog)
            await self.checklist.write(before_checklist)
            reason = changelog_check.reason or checklist_check.reason
            logger.warning(f"Documentation update rolled back: {reason}")
            return DocumentationResult(success=False, error=f"Documentation validation failed: {reason}")

        return DocumentationResult(
            success=True,
            changelog_updated=True,
            checklist_updated=bool(result.task.checklist_item),
        )
