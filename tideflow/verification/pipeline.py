"""Verification pipeline for Tideflow.

Runs the fixed battery of external checks against a workspace and folds
the outcomes into one VerificationReport:

- type check, lint, tests and build run concurrently
- ghost files, coverage and documentation run afterwards, since they may
  read artifacts the first group produces

Individual tool failures never propagate: a non-zero exit is parsed into
structured errors on a failing check.

This module is headless - no UI or editor dependencies.
"""

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Union

from tideflow.config.settings import VerificationSettings
from tideflow.core.models import ValidationResult
from tideflow.verification.commands import CommandError, CommandExecutor, SubprocessExecutor
from tideflow.verification.models import (
    CheckResult,
    CoverageResult,
    DocumentationCheckResult,
    GhostFileResult,
    TestFailure,
    TestResult,
    VerificationError,
    VerificationReport,
)
from tideflow.verification.parsers import (
    parse_coverage_summary,
    parse_eslint_output,
    parse_jest_output,
    parse_tsc_errors,
    parse_untracked_files,
)

if TYPE_CHECKING:
    from tideflow.core.documents import DocumentValidator

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class VerificationPipeline:
    """Run all verification checks for a workspace.

    Args:
        workspace_root: Directory the commands run in
        executor: Command runner; defaults to a subprocess executor
        settings: Commands, coverage threshold and timeout
        document_validator: Optional changelog/checklist validator. Without
            one the documentation check reports pass.
    """

    def __init__(
        self,
        workspace_root: Union[str, Path],
        executor: Optional[CommandExecutor] = None,
        settings: Optional[VerificationSettings] = None,
        document_validator: Optional["DocumentValidator"] = None,
    ):
        self.workspace_root = Path(workspace_root)
        self.settings = settings or VerificationSettings()
        self.exec = executor or SubprocessExecutor(timeout=self.settings.command_timeout)
        self.document_validator = document_validator

    async def run_all(self) -> VerificationReport:
        """Run every check and build the report."""
        timestamp = _utc_now()
        logger.info(f"[Verification Pipeline] Starting in {self.workspace_root}")

        typescript, eslint, tests, build = await asyncio.gather(
            self.run_typecheck(),
            self.run_lint(),
            self.run_tests(),
            self.run_build(),
        )

        ghost_files = await self.detect_ghost_files()
        coverage = await self.check_coverage()
        documentation = await self.validate_documentation()

        passed = (
            typescript.passed
            and eslint.passed
            and tests.passed
            and build.passed
            and ghost_files.passed
            and documentation.passed
        )

        logger.info(f"[Verification Pipeline] {'PASSED' if passed else 'FAILED'}")

        return VerificationReport(
            timestamp=timestamp,
            passed=passed,
            typescript=typescript,
            eslint=eslint,
            tests=tests,
            build=build,
            ghost_files=ghost_files,
            coverage=coverage,
            documentation=documentation,
        )

    async def run_typecheck(self) -> CheckResult:
        """Type check; errors parsed from compiler output."""
        logger.debug("Type check...")
        try:
            await self.exec(self.settings.commands.typecheck, self.workspace_root)
            return CheckResult(passed=True)
        except CommandError as e:
            output = e.stdout or e.stderr or ""
            errors = parse_tsc_errors(output)
            logger.info(f"Type check failed with {len(errors)} parsed error(s)")
            return CheckResult(passed=False, errors=tuple(errors))

    async def run_lint(self) -> CheckResult:
        """Lint; passes unless a finding has error severity."""
        logger.debug("Lint check...")
        try:
            await self.exec(self.settings.commands.lint, self.workspace_root)
            return CheckResult(passed=True)
        except CommandError as e:
            try:
                errors = parse_eslint_output(e.stdout or "[]")
            except ValueError:
                logger.warning("Failed to parse ESLint output")
                return CheckResult(
                    passed=False,
                    errors=(VerificationError(message="Failed to parse ESLint output"),),
                )
            result = CheckResult(passed=True, errors=tuple(errors))
            if result.error_count:
                result = CheckResult(passed=False, errors=result.errors)
            logger.info(f"Lint: {result.error_count} error(s), {len(errors) - result.error_count} warning(s)")
            return result

    async def run_tests(self) -> TestResult:
        """Run the test suite and parse its JSON summary."""
        logger.debug("Running tests...")
        try:
            output = await self.exec(self.settings.commands.test, self.workspace_root)
        except CommandError as e:
            if e.stdout:
                try:
                    return parse_jest_output(e.stdout)
                except ValueError:
                    logger.debug("Test output after failure was not parseable")
            logger.info(f"Test execution failed: {e.message}")
            return TestResult(
                passed=False,
                errors=(VerificationError(message=e.message),),
                total=0,
                passed_count=0,
                failed=1,
                failures=(TestFailure(name="Test execution", error=e.message),),
            )

        try:
            return parse_jest_output(output.stdout)
        except ValueError as e:
            message = f"Failed to parse test output: {e}"
            logger.warning(message)
            return TestResult(
                passed=False,
                errors=(VerificationError(message=message),),
                failed=1,
                failures=(TestFailure(name="Test execution", error=message),),
            )

    async def run_build(self) -> CheckResult:
        """Build the project."""
        logger.debug("Build check...")
        try:
            await self.exec(self.settings.commands.build, self.workspace_root)
            return CheckResult(passed=True)
        except CommandError as e:
            return CheckResult(
                passed=False,
                errors=(VerificationError(message=e.stderr or e.message),),
            )

    async def detect_ghost_files(self) -> GhostFileResult:
        """Find untracked files that are not on the allow-list."""
        logger.debug("Ghost file detection...")
        try:
            output = await self.exec(self.settings.commands.untracked, self.workspace_root)
        except CommandError as e:
            logger.warning(f"Ghost file detection skipped: {e.message}")
            return GhostFileResult(passed=True)

        unexpected = parse_untracked_files(output.stdout)
        if unexpected:
            logger.info(f"Found {len(unexpected)} unexpected untracked file(s)")
        return GhostFileResult(passed=not unexpected, unexpected_files=tuple(unexpected))

    async def check_coverage(self) -> CoverageResult:
        """Compare line coverage against the threshold.

        A missing summary is a pass with no percentage; an unreadable one fails.
        """
        logger.debug("Coverage check...")
        threshold = self.settings.coverage_threshold
        coverage_path = self.workspace_root / self.settings.coverage_summary_path

        if not coverage_path.exists():
            return CoverageResult(passed=True, percentage=None, threshold=threshold)

        try:
            content = await asyncio.to_thread(coverage_path.read_text, encoding="utf-8")
            percentage = parse_coverage_summary(content)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to read coverage summary {coverage_path}: {e}")
            return CoverageResult(passed=False, percentage=None, threshold=threshold)

        return CoverageResult(passed=percentage >= threshold, percentage=percentage, threshold=threshold)

    async def validate_documentation(self) -> DocumentationCheckResult:
        """Changelog and checklist consistency."""
        logger.debug("Documentation validation...")
        if self.document_validator is None:
            return DocumentationCheckResult(
                passed=True,
                changelog=ValidationResult(valid=True),
                checklist=ValidationResult(valid=True),
            )

        changelog = await self.document_validator.validate_changelog()
        checklist = await self.document_validator.validate_checklist()
        return DocumentationCheckResult(
            passed=changelog.valid and checklist.valid,
            changelog=changelog,
            checklist=checklist,
        )
