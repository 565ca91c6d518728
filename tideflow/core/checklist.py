"""Markdown checklist parsing for autonomous execution.

A checklist is a markdown task list grouped under ``## Phase N`` headers:

    ## Phase 1
    - [x] Set up project
    - [ ] Add login form
      - [ ] Email field
      - Acceptance: Invalid emails are rejected
      - Uses the shared form component

Top-level checkboxes become items (ids ``item-1``, ``item-2``, ... in document
order); indented checkboxes become subtasks; ``Acceptance:`` lines become
acceptance criteria; other indented bullets and plain text lines become the
item description.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol, Union

from tideflow.core.models import Task

logger = logging.getLogger(__name__)

_PHASE_PATTERN = re.compile(r'^##\s+Phase\s+(\d+)', re.IGNORECASE)
_CHECKBOX_PATTERN = re.compile(r'^-\s+\[([ xX])\]\s+(.+)')
_SUBTASK_PATTERN = re.compile(r'^\s+-\s+\[([ xX])\]\s+(.+)')
_CRITERIA_PATTERN = re.compile(r'^\s+-\s+Acceptance:\s+(.+)', re.IGNORECASE)
_INDENTED_BULLET_PATTERN = re.compile(r'^\s+-\s+')


@dataclass
class ChecklistItem:
    """One unit of work parsed from a checklist."""

    id: str
    title: str
    description: str = ""
    completed: bool = False
    subtasks: list["ChecklistItem"] = field(default_factory=list)
    acceptance_criteria: list[str] = field(default_factory=list)
    priority: str = "medium"
    phase: str = "Phase 1"

    def to_task(self) -> Task:
        """Convert to an executable task."""
        return Task(
            id=self.id,
            name=self.title,
            description=self.description or self.title,
            checklist_item=self.id,
            acceptance_criteria=list(self.acceptance_criteria),
        )


@dataclass
class PhaseProgress:
    total: int = 0
    completed: int = 0


@dataclass
class Progress:
    """Completion counts overall and per phase."""

    total: int
    completed: int
    percentage: int
    by_phase: dict[str, PhaseProgress] = field(default_factory=dict)


class ChecklistParser:
    """Parse markdown checklists into ChecklistItems."""

    def parse(self, markdown: str) -> list[ChecklistItem]:
        items: list[ChecklistItem] = []
        current: Optional[ChecklistItem] = None
        current_phase = "Phase 1"

        for line in markdown.splitlines():
            phase_match = _PHASE_PATTERN.match(line)
            if phase_match:
                current_phase = f"Phase {phase_match.group(1)}"
                continue

            checkbox_match = _CHECKBOX_PATTERN.match(line)
            if checkbox_match:
                if current:
                    items.append(current)
                current = ChecklistItem(
                    id=f"item-{len(items) + 1}",
                    title=checkbox_match.group(2).strip(),
                    completed=checkbox_match.group(1).lower() == "x",
                    phase=current_phase,
                )
                continue

            if current is None:
                continue

            subtask_match = _SUBTASK_PATTERN.match(line)
            if subtask_match:
                current.subtasks.append(ChecklistItem(
                    id=f"{current.id}-sub-{len(current.subtasks) + 1}",
                    title=subtask_match.group(2).strip(),
                    completed=subtask_match.group(1).lower() == "x",
                    phase=current_phase,
                ))
                continue

            criteria_match = _CRITERIA_PATTERN.match(line)
            if criteria_match:
                current.acceptance_criteria.append(criteria_match.group(1).strip())
                continue

            if _INDENTED_BULLET_PATTERN.match(line):
                current.description += _INDENTED_BULLET_PATTERN.sub("", line, count=1).strip() + " "
            elif line.strip() and not line.startswith("#") and not line.startswith("-"):
                current.description += line.strip() + " "

        if current:
            items.append(current)

        for item in items:
            item.description = item.description.strip()
        return items

    def get_next_uncompleted(
        self,
        items: list[ChecklistItem],
        skip: Optional[set[str]] = None,
    ) -> Optional[ChecklistItem]:
        """First item not completed (and not in ``skip``), or None."""
        for item in items:
            if not item.completed and not (skip and item.id in skip):
                return item
        return None

    def calculate_progress(self, items: list[ChecklistItem]) -> Progress:
        total = len(items)
        completed = sum(1 for i in items if i.completed)

        by_phase: dict[str, PhaseProgress] = {}
        for item in items:
            phase = by_phase.setdefault(item.phase, PhaseProgress())
            phase.total += 1
            if item.completed:
                phase.completed += 1

        return Progress(
            total=total,
            completed=completed,
            percentage=round(completed / total * 100) if total else 0,
            by_phase=by_phase,
        )


def mark_item_complete(markdown: str, item_id: str) -> str:
    """Tick the checkbox of a top-level item in checklist markdown.

    Raises:
        KeyError: If no top-level item has that id
    """
    lines = markdown.splitlines(keepends=True)
    count = 0
    for index, line in enumerate(lines):
        if _CHECKBOX_PATTERN.match(line):
            count += 1
            if f"item-{count}" == item_id:
                lines[index] = re.sub(r'\[[ xX]\]', "[x]", line, count=1)
                return "".join(lines)
    raise KeyError(f"Checklist item not found: {item_id}")


class ChecklistManager(Protocol):
    """Read/write access to the project checklist."""

    async def read(self) -> str: ...

    async def mark_complete(self, item_id: str) -> None: ...

    async def write(self, content: str) -> None: ...


class FileChecklistManager:
    """ChecklistManager backed by a markdown file."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    async def read(self) -> str:
        if not self.path.exists():
            return ""
        return await asyncio.to_thread(self.path.read_text, encoding="utf-8")

    async def write(self, content: str) -> None:
        await asyncio.to_thread(self.path.write_text, content, encoding="utf-8")

    async def mark_complete(self, item_id: str) -> None:
        content = await self.read()
        await self.write(mark_item_complete(content, item_id))
        logger.info(f"Marked checklist item {item_id} complete")
