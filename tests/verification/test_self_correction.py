"""Tests for the self-correction loop."""

from unittest.mock import AsyncMock, Mock

import pytest

from tideflow.core.models import ChangeType, FileInfo, RuntimeErrorKind, RuntimeErrorRecord, Severity
from tideflow.verification.models import (
    AttemptOutcome,
    CheckResult,
    CorrectionAttemptResult,
    CoverageResult,
    DocumentationCheckResult,
    ErrorSeverity,
    FixApproach,
    GhostFileResult,
    IssueType,
    TestResult,
    VerificationError,
    VerificationIssue,
    VerificationReport,
)
from tideflow.verification.self_correction import (
    SelfCorrectionLoop,
    build_correction_prompt,
    deduplicate_and_prioritize,
    determine_fix_strategy,
    format_escalation_reason,
    identify_target_files,
    issues_from_report,
)


def make_report(**overrides) -> VerificationReport:
    fields = dict(
        timestamp=None,
        passed=True,
        typescript=CheckResult(passed=True),
        eslint=CheckResult(passed=True),
        tests=TestResult(passed=True),
        build=CheckResult(passed=True),
        ghost_files=GhostFileResult(passed=True),
        coverage=CoverageResult(passed=True, percentage=None, threshold=70.0),
        documentation=DocumentationCheckResult(passed=True),
    )
    fields.update(overrides)
    return VerificationReport(**fields)


CLEAN = make_report()
BUILD_BROKEN = make_report(passed=False, build=CheckResult(passed=False))


def issue(type_, severity, message, location=None) -> VerificationIssue:
    return VerificationIssue(type=type_, severity=severity, message=message, location=location)


@pytest.fixture
def detector():
    mock = Mock()
    mock.detect = AsyncMock(return_value=[])
    return mock


@pytest.fixture
def checker():
    mock = Mock()
    mock.check_all = AsyncMock(return_value=[])
    return mock


@pytest.fixture
def pipeline():
    mock = Mock()
    mock.run_all = AsyncMock(return_value=CLEAN)
    return mock


@pytest.fixture
def agent():
    mock = Mock()
    mock.execute_correction = AsyncMock(
        return_value=CorrectionAttemptResult(success=True, changes=[FileInfo(path="src/app.ts", content="fixed")])
    )
    return mock


@pytest.fixture
def loop(detector, checker, pipeline, agent):
    return SelfCorrectionLoop(detector, checker, pipeline, agent)


class TestIssuesFromReport:
    """Tests for converting pipeline reports into issues."""

    def test_clean_report(self):
        assert issues_from_report(CLEAN) == []

    def test_failing_checks(self):
        report = make_report(
            passed=False,
            typescript=CheckResult(passed=False),
            eslint=CheckResult(passed=False, errors=(
                VerificationError(message="no-undef", file="src/a.ts", line=4, severity=ErrorSeverity.ERROR),
                VerificationError(message="semi", severity=ErrorSeverity.WARNING),
            )),
            tests=TestResult(passed=False, failed=2),
            build=CheckResult(passed=False),
        )
        issues = issues_from_report(report)
        assert [(i.type, i.severity, i.message) for i in issues] == [
            (IssueType.BUILD, Severity.CRITICAL, "TypeScript compilation failed"),
            (IssueType.LINT, Severity.HIGH, "no-undef"),
            (IssueType.LINT, Severity.MEDIUM, "semi"),
            (IssueType.TEST, Severity.HIGH, "2 test(s) failed"),
            (IssueType.BUILD, Severity.CRITICAL, "Build failed"),
        ]
        assert issues[1].location == "src/a.ts:4"
        assert issues[2].location is None


class TestDeduplicateAndPrioritize:
    """Tests for issue deduplication and ordering."""

    def test_keeps_highest_severity_per_key(self):
        issues = [
            issue(IssueType.LINT, Severity.MEDIUM, "semi"),
            issue(IssueType.LINT, Severity.HIGH, "semi"),
            issue(IssueType.TEST, Severity.MEDIUM, "semi"),
        ]
        result = deduplicate_and_prioritize(issues)
        assert len(result) == 2
        assert result[0].severity == Severity.HIGH
        assert result[0].type == IssueType.LINT

    @pytest.mark.parametrize("severities", [
        (Severity.LOW, Severity.CRITICAL),
        (Severity.CRITICAL, Severity.LOW),
    ])
    def test_critical_wins_over_low_in_either_order(self, severities):
        issues = [issue(IssueType.BUILD, severity, "Build failed") for severity in severities]
        result = deduplicate_and_prioritize(issues)
        assert len(result) == 1
        assert result[0].severity == Severity.CRITICAL

    def test_sorted_by_severity_stable(self):
        issues = [
            issue(IssueType.LINT, Severity.LOW, "a"),
            issue(IssueType.TEST, Severity.HIGH, "b"),
            issue(IssueType.LINT, Severity.HIGH, "c"),
            issue(IssueType.RUNTIME, Severity.CRITICAL, "d"),
        ]
        result = deduplicate_and_prioritize(issues)
        assert [i.message for i in result] == ["d", "b", "c", "a"]


class TestDetermineFixStrategy:
    """Tests for fix strategy selection."""

    def test_critical_build_first(self):
        issues = [
            issue(IssueType.RUNTIME, Severity.CRITICAL, "crash"),
            issue(IssueType.BUILD, Severity.CRITICAL, "Build failed"),
        ]
        strategy = determine_fix_strategy(issues)
        assert strategy.approach == FixApproach.FIX_BUILD_FIRST
        assert [i.message for i in strategy.target_issues] == ["Build failed"]

    def test_runtime_before_consistency(self):
        issues = [
            issue(IssueType.CONSISTENCY, Severity.HIGH, "docs drift"),
            issue(IssueType.RUNTIME, Severity.HIGH, "crash"),
        ]
        assert determine_fix_strategy(issues).approach == FixApproach.FIX_RUNTIME

    def test_consistency(self):
        issues = [issue(IssueType.CONSISTENCY, Severity.MEDIUM, "docs drift")]
        assert determine_fix_strategy(issues).approach == FixApproach.FIX_CONSISTENCY

    def test_fix_all_for_everything_else(self):
        issues = [issue(IssueType.LINT, Severity.HIGH, "semi"), issue(IssueType.TEST, Severity.HIGH, "1 test(s) failed")]
        strategy = determine_fix_strategy(issues)
        assert strategy.approach == FixApproach.FIX_ALL
        assert len(strategy.target_issues) == 2


class TestFormatting:
    """Tests for prompt and escalation text."""

    def test_identify_target_files(self):
        issues = [
            issue(IssueType.LINT, Severity.HIGH, "a", "src/a.ts:4"),
            issue(IssueType.LINT, Severity.HIGH, "b", "src/a.ts:9"),
            issue(IssueType.RUNTIME, Severity.HIGH, "c", "src/b.ts"),
            issue(IssueType.TEST, Severity.HIGH, "d"),
        ]
        assert identify_target_files(issues) == ["src/a.ts", "src/b.ts"]

    def test_prompt_lists_issues_and_strategy(self):
        strategy = determine_fix_strategy([issue(IssueType.LINT, Severity.HIGH, "no-undef", "src/a.ts:4")])
        prompt = build_correction_prompt(strategy)
        assert "- [HIGH] no-undef at src/a.ts:4" in prompt
        assert "### Strategy: fix-all" in prompt
        assert "src/a.ts" in prompt

    def test_escalation_reason(self):
        text = format_escalation_reason([issue(IssueType.BUILD, Severity.CRITICAL, "Build failed")], 3)
        assert text.startswith("Unable to automatically resolve the following issues after 3 attempts")
        assert "• [critical] Build failed" in text


class TestVerifyAndCorrect:
    """Tests for SelfCorrectionLoop.verify_and_correct."""

    def test_max_attempts_must_be_positive(self, detector, checker, pipeline, agent):
        with pytest.raises(ValueError):
            SelfCorrectionLoop(detector, checker, pipeline, agent, max_attempts=0)

    @pytest.mark.asyncio
    async def test_clean_on_first_attempt(self, loop, agent, task_result):
        outcome = await loop.verify_and_correct(task_result)

        assert outcome.success is True
        assert outcome.message == "All checks passed on first attempt"
        assert outcome.attempts == ()
        assert outcome.final_result is task_result
        agent.execute_correction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fixed_after_one_correction(self, loop, pipeline, agent, task_result):
        pipeline.run_all.side_effect = [BUILD_BROKEN, CLEAN]

        outcome = await loop.verify_and_correct(task_result)

        assert outcome.success is True
        assert outcome.message == "Fixed after 1 correction(s)"
        assert len(outcome.attempts) == 1
        attempt = outcome.attempts[0]
        assert attempt.result == AttemptOutcome.SUCCESS
        assert attempt.fix_strategy.approach == FixApproach.FIX_BUILD_FIRST
        corrected = outcome.final_result.files_modified[-1]
        assert corrected.path == "src/app.ts"
        assert corrected.change_type == ChangeType.CORRECTION

    @pytest.mark.asyncio
    async def test_correction_context(self, loop, agent, task_result, detector):
        crash = RuntimeErrorRecord(
            type=RuntimeErrorKind.EXCEPTION,
            message="x is not a function",
            is_fatal=True,
            location="src/app.ts:12",
        )
        detector.detect.side_effect = [[crash], []]

        await loop.verify_and_correct(task_result)

        context = agent.execute_correction.await_args.args[0]
        assert context.original_task is task_result.task
        assert context.constraints.target_files == ("src/app.ts",)
        assert context.constraints.minimal_changes is True
        assert context.issues[0].type == IssueType.RUNTIME
        assert context.issues[0].severity == Severity.CRITICAL

    @pytest.mark.asyncio
    async def test_escalates_after_max_attempts(self, loop, pipeline, agent, task_result):
        pipeline.run_all.return_value = BUILD_BROKEN

        outcome = await loop.verify_and_correct(task_result)

        assert outcome.success is False
        assert outcome.message == "Unable to resolve after 3 attempts"
        assert len(outcome.attempts) == 3
        assert agent.execute_correction.await_count == 2
        assert outcome.attempts[-1].result == AttemptOutcome.FAILED
        assert [i.message for i in outcome.remaining_issues] == ["Build failed"]
        assert "• [critical] Build failed" in outcome.escalation_reason

    @pytest.mark.asyncio
    async def test_agent_exception_marks_attempt_failed(self, loop, pipeline, agent, task_result):
        pipeline.run_all.side_effect = [BUILD_BROKEN, CLEAN]
        agent.execute_correction.side_effect = RuntimeError("model unavailable")

        outcome = await loop.verify_and_correct(task_result)

        attempt = outcome.attempts[0]
        assert attempt.result == AttemptOutcome.FAILED
        assert attempt.error == "model unavailable"
        assert outcome.final_result is task_result

    @pytest.mark.asyncio
    async def test_agent_reporting_failure_is_partial(self, loop, pipeline, agent, task_result):
        pipeline.run_all.side_effect = [BUILD_BROKEN, CLEAN]
        agent.execute_correction.return_value = CorrectionAttemptResult(success=False, error="partially fixed")

        outcome = await loop.verify_and_correct(task_result)

        assert outcome.attempts[0].result == AttemptOutcome.PARTIAL
        assert outcome.attempts[0].error == "partially fixed"

    @pytest.mark.asyncio
    async def test_single_attempt_escalates_without_correcting(
        self, detector, checker, pipeline, agent, task_result
    ):
        pipeline.run_all.return_value = BUILD_BROKEN
        loop = SelfCorrectionLoop(detector, checker, pipeline, agent, max_attempts=1)

        outcome = await loop.verify_and_correct(task_result)

        assert outcome.success is False
        assert outcome.message == "Unable to resolve after 1 attempts"
        agent.execute_correction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_consistency_issues_included(self, loop, checker, agent, task_result):
        checker.check_all.side_effect = [
            [issue(IssueType.CONSISTENCY, Severity.MEDIUM, "README out of date")],
            [],
        ]

        outcome = await loop.verify_and_correct(task_result)

        assert outcome.success is True
        assert outcome.attempts[0].fix_strategy.approach == FixApproach.FIX_CONSISTENCY
