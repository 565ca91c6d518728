"""Self-correction loop for Tideflow.

Verifies a task result, and while issues remain asks the execution agent to
fix them, up to a fixed number of attempts. When attempts run out the loop
returns an escalation summary for a human operator instead of retrying.

Each iteration:
1. Aggregate issues from runtime errors, consistency checks and the pipeline
2. Deduplicate by (type, message), keep the most severe, sort by severity
3. No issues: success
4. Last attempt: escalate
5. Otherwise pick a fix strategy and dispatch a correction

This module is headless - no UI or editor dependencies.
"""

import logging
from dataclasses import replace
from typing import Protocol

from tideflow.core.models import ChangeType, FileInfo, Severity, TaskResult
from tideflow.verification.models import (
    AttemptOutcome,
    CorrectionAttempt,
    CorrectionAttemptResult,
    CorrectionConstraints,
    CorrectionContext,
    CorrectionResult,
    ErrorSeverity,
    FixApproach,
    FixStrategy,
    IssueType,
    VerificationIssue,
    VerificationReport,
)
from tideflow.verification.runtime_errors import RuntimeErrorSource

logger = logging.getLogger(__name__)

MAX_CORRECTION_ATTEMPTS = 3


class HolisticConsistencyChecker(Protocol):
    """Checks a task result for cross-file and code/doc consistency."""

    async def check_all(self, result: TaskResult) -> list[VerificationIssue]: ...


class Verifier(Protocol):
    """Anything that can produce a verification report."""

    async def run_all(self) -> VerificationReport: ...


class CorrectionAgent(Protocol):
    """Applies targeted fixes for a set of issues."""

    async def execute_correction(self, context: CorrectionContext) -> CorrectionAttemptResult: ...


def issues_from_report(report: VerificationReport) -> list[VerificationIssue]:
    """Convert a failing pipeline report into verification issues."""
    issues: list[VerificationIssue] = []

    if not report.typescript.passed:
        issues.append(VerificationIssue(
            type=IssueType.BUILD,
            severity=Severity.CRITICAL,
            message="TypeScript compilation failed",
            details=list(report.typescript.errors),
        ))

    if not report.eslint.passed:
        for error in report.eslint.errors:
            issues.append(VerificationIssue(
                type=IssueType.LINT,
                severity=Severity.HIGH if error.severity == ErrorSeverity.ERROR else Severity.MEDIUM,
                message=error.message,
                location=f"{error.file}:{error.line}" if error.file else None,
            ))

    if not report.tests.passed:
        issues.append(VerificationIssue(
            type=IssueType.TEST,
            severity=Severity.HIGH,
            message=f"{report.tests.failed} test(s) failed",
            details=list(report.tests.failures),
        ))

    if not report.build.passed:
        issues.append(VerificationIssue(
            type=IssueType.BUILD,
            severity=Severity.CRITICAL,
            message="Build failed",
            details=list(report.build.errors),
        ))

    return issues


def deduplicate_and_prioritize(issues: list[VerificationIssue]) -> list[VerificationIssue]:
    """Collapse issues sharing (type, message) and sort most severe first.

    On collision the more severe issue wins; equal severity keeps the first.
    """
    seen: dict[tuple[IssueType, str], VerificationIssue] = {}
    for issue in issues:
        key = (issue.type, issue.message)
        existing = seen.get(key)
        if existing is None or issue.severity.rank > existing.severity.rank:
            seen[key] = issue
    return sorted(seen.values(), key=lambda i: i.severity.rank, reverse=True)


def determine_fix_strategy(issues: list[VerificationIssue]) -> FixStrategy:
    """Choose what the next correction should target.

    Priority: critical build errors, then runtime errors, then consistency.
    """
    if any(i.type == IssueType.BUILD and i.severity == Severity.CRITICAL for i in issues):
        return FixStrategy(
            approach=FixApproach.FIX_BUILD_FIRST,
            target_issues=tuple(i for i in issues if i.type == IssueType.BUILD),
            reasoning="Cannot verify runtime without successful build",
        )

    if any(i.type == IssueType.RUNTIME for i in issues):
        return FixStrategy(
            approach=FixApproach.FIX_RUNTIME,
            target_issues=tuple(i for i in issues if i.type == IssueType.RUNTIME),
            reasoning="Runtime errors prevent feature from working",
        )

    if any(i.type == IssueType.CONSISTENCY for i in issues):
        return FixStrategy(
            approach=FixApproach.FIX_CONSISTENCY,
            target_issues=tuple(i for i in issues if i.type == IssueType.CONSISTENCY),
            reasoning="Code-documentation consistency required",
        )

    return FixStrategy(
        approach=FixApproach.FIX_ALL,
        target_issues=tuple(issues),
        reasoning="Mixed issues, attempting comprehensive fix",
    )


def identify_target_files(issues) -> list[str]:
    """Distinct file paths from issue locations, in first-seen order."""
    files: dict[str, None] = {}
    for issue in issues:
        if issue.location:
            files.setdefault(issue.location.split(":")[0], None)
    return list(files)


def build_correction_prompt(strategy: FixStrategy) -> str:
    """Targeted correction instructions for the execution agent."""
    issue_lines = "\n".join(
        f"- [{i.severity.value.upper()}] {i.message}" + (f" at {i.location}" if i.location else "")
        for i in strategy.target_issues
    )
    files = "\n".join(identify_target_files(strategy.target_issues))

    return (
        "## Self-Correction Required\n\n"
        "The previous implementation has the following issues that need to be fixed:\n\n"
        f"{issue_lines}\n\n"
        f"### Strategy: {strategy.approach.value}\n"
        f"{strategy.reasoning}\n\n"
        "### Constraints\n"
        "- Make MINIMAL changes to fix the issues\n"
        "- Do NOT refactor unrelated code\n"
        "- Preserve all working functionality\n"
        "- Focus only on the specific errors\n\n"
        "### Files to examine\n"
        f"{files}\n\n"
        "Fix these issues and report what was changed."
    )


def format_escalation_reason(issues: list[VerificationIssue], max_attempts: int) -> str:
    """Operator-facing summary of what could not be fixed."""
    lines = "\n".join(f"• [{i.severity.value}] {i.message}" for i in issues)
    return (
        f"Unable to automatically resolve the following issues after {max_attempts} attempts:\n\n"
        f"{lines}\n\n"
        "Please review and provide guidance."
    )


class SelfCorrectionLoop:
    """Bounded verify-and-correct cycle for one task result.

    Usage:
        loop = SelfCorrectionLoop(detector, checker, pipeline, agent)
        outcome = await loop.verify_and_correct(task_result)
        if not outcome.success:
            notify_operator(outcome.escalation_reason)

    Args:
        runtime_detector: Source of runtime errors
        holistic_checker: Consistency checker
        verification_pipeline: Produces verification reports
        execution_agent: Applies corrections
        max_attempts: Verification passes before escalating
    """

    def __init__(
        self,
        runtime_detector: RuntimeErrorSource,
        holistic_checker: HolisticConsistencyChecker,
        verification_pipeline: Verifier,
        execution_agent: CorrectionAgent,
        max_attempts: int = MAX_CORRECTION_ATTEMPTS,
    ):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got: {max_attempts}")
        self.runtime_detector = runtime_detector
        self.holistic_checker = holistic_checker
        self.verification_pipeline = verification_pipeline
        self.execution_agent = execution_agent
        self.max_attempts = max_attempts

    async def verify_and_correct(self, result: TaskResult) -> CorrectionResult:
        """Verify and correct until clean or out of attempts."""
        attempts: list[CorrectionAttempt] = []
        current = result

        for attempt_number in range(1, self.max_attempts + 1):
            logger.info(f"[Self-Correction] Verification attempt {attempt_number}/{self.max_attempts}")

            issues = await self.run_all_verification(current)

            if not issues:
                message = (
                    "All checks passed on first attempt"
                    if attempt_number == 1
                    else f"Fixed after {attempt_number - 1} correction(s)"
                )
                logger.info(f"[Self-Correction] {message}")
                return CorrectionResult(
                    success=True,
                    final_result=current,
                    attempts=tuple(attempts),
                    message=message,
                )

            strategy = determine_fix_strategy(issues)
            record = CorrectionAttempt(
                attempt_number=attempt_number,
                issues=issues,
                fix_strategy=strategy,
            )

            if attempt_number == self.max_attempts:
                record.result = AttemptOutcome.FAILED
                attempts.append(record)
                logger.warning(
                    f"[Self-Correction] Escalating: {len(issues)} issue(s) remain "
                    f"after {self.max_attempts} attempts"
                )
                return CorrectionResult(
                    success=False,
                    final_result=current,
                    attempts=tuple(attempts),
                    message=f"Unable to resolve after {self.max_attempts} attempts",
                    remaining_issues=tuple(issues),
                    escalation_reason=format_escalation_reason(issues, self.max_attempts),
                )

            logger.info(
                f"[Self-Correction] Attempting {strategy.approach.value} for "
                f"{len(strategy.target_issues)} of {len(issues)} issue(s)"
            )
            current = await self._attempt_correction(current, issues, strategy, record)
            attempts.append(record)

        # Unreachable: the final iteration always returns
        raise AssertionError("Self-correction loop exited without a result")

    async def run_all_verification(self, result: TaskResult) -> list[VerificationIssue]:
        """Aggregate, deduplicate and prioritize issues from every source."""
        all_issues: list[VerificationIssue] = []

        logger.debug("Checking runtime errors...")
        for error in await self.runtime_detector.detect():
            all_issues.append(VerificationIssue(
                type=IssueType.RUNTIME,
                severity=Severity.CRITICAL if error.is_fatal else Severity.HIGH,
                message=error.message,
                location=error.location,
                suggested_fix=error.suggested_fix,
            ))

        logger.debug("Checking consistency...")
        all_issues.extend(await self.holistic_checker.check_all(result))

        logger.debug("Running verification pipeline...")
        report = await self.verification_pipeline.run_all()
        all_issues.extend(issues_from_report(report))

        return deduplicate_and_prioritize(all_issues)

    async def _attempt_correction(
        self,
        result: TaskResult,
        issues: list[VerificationIssue],
        strategy: FixStrategy,
        record: CorrectionAttempt,
    ) -> TaskResult:
        """Dispatch one correction and fill in the attempt record.

        Returns the task result to verify next: the agent's updated result
        (or the current one) with corrected files appended, or the current
        result unchanged if the agent raised.
        """
        context = CorrectionContext(
            original_task=result.task,
            issues=strategy.target_issues,
            prompt=build_correction_prompt(strategy),
            constraints=CorrectionConstraints(
                preserve_working_code=True,
                minimal_changes=True,
                target_files=tuple(identify_target_files(issues)),
            ),
        )

        try:
            correction = await self.execution_agent.execute_correction(context)
        except Exception as e:
            logger.error(f"[Self-Correction] Correction attempt failed: {e}", exc_info=True)
            record.result = AttemptOutcome.FAILED
            record.error = str(e)
            return result

        record.changes = list(correction.changes)
        record.result = AttemptOutcome.SUCCESS if correction.success else AttemptOutcome.PARTIAL
        if correction.error:
            record.error = correction.error

        corrected_files = [
            FileInfo(path=c.path, content=c.content, change_type=ChangeType.CORRECTION)
            for c in correction.changes
        ]
        base = correction.updated_result or result
        return replace(base, files_modified=[*base.files_modified, *corrected_files])
