"""Data models for the verification pipeline and self-correction loop."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from tideflow.core.models import FileInfo, Severity, TaskResult, ValidationResult


def _utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class ErrorSeverity(str, Enum):
    """Severity reported by a verification tool."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass(frozen=True)
class VerificationError:
    """A structured error parsed from tool output."""

    message: str
    file: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None
    code: Optional[str] = None
    severity: Optional[ErrorSeverity] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"message": self.message}
        if self.file is not None:
            data["file"] = self.file
        if self.line is not None:
            data["line"] = self.line
        if self.column is not None:
            data["column"] = self.column
        if self.code is not None:
            data["code"] = self.code
        if self.severity is not None:
            data["severity"] = self.severity.value
        return data


@dataclass(frozen=True)
class CheckResult:
    """Outcome of one verification check."""

    passed: bool
    errors: tuple[VerificationError, ...] = ()

    @property
    def error_count(self) -> int:
        """Number of error-severity findings."""
        return sum(1 for e in self.errors if e.severity == ErrorSeverity.ERROR)

    def to_dict(self) -> dict[str, Any]:
        return {"passed": self.passed, "errors": [e.to_dict() for e in self.errors]}


@dataclass(frozen=True)
class TestFailure:
    """A single failing test."""

    __test__ = False

    name: str
    error: str


@dataclass(frozen=True)
class TestResult(CheckResult):
    """Outcome of the test run.

    Attributes:
        total: Number of tests executed
        passed_count: Number of passing tests
        failed: Number of failing tests
        failures: Name and first failure message per failing assertion
    """

    __test__ = False

    total: int = 0
    passed_count: int = 0
    failed: int = 0
    failures: tuple[TestFailure, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update({
            "total": self.total,
            "passedCount": self.passed_count,
            "failed": self.failed,
            "failures": [{"name": f.name, "error": f.error} for f in self.failures],
        })
        return data


@dataclass(frozen=True)
class GhostFileResult:
    """Untracked files that are not on the allow-list."""

    passed: bool
    unexpected_files: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"passed": self.passed, "unexpectedFiles": list(self.unexpected_files)}


@dataclass(frozen=True)
class CoverageResult:
    """Line coverage compared against the threshold. Informational only."""

    passed: bool
    percentage: Optional[float]
    threshold: float

    def to_dict(self) -> dict[str, Any]:
        return {"passed": self.passed, "percentage": self.percentage, "threshold": self.threshold}


@dataclass(frozen=True)
class DocumentationCheckResult:
    """Changelog/checklist consistency verdict."""

    passed: bool
    changelog: Optional[ValidationResult] = None
    checklist: Optional[ValidationResult] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"passed": self.passed}
        for name, result in (("changelog", self.changelog), ("checklist", self.checklist)):
            if result is not None:
                entry: dict[str, Any] = {"valid": result.valid}
                if result.reason is not None:
                    entry["reason"] = result.reason
                data[name] = entry
        return data


@dataclass(frozen=True)
class VerificationReport:
    """Snapshot of one full pipeline run.

    ``passed`` is the AND of every check except coverage.
    """

    timestamp: datetime
    passed: bool
    typescript: CheckResult
    eslint: CheckResult
    tests: TestResult
    build: CheckResult
    ghost_files: GhostFileResult
    coverage: CoverageResult
    documentation: DocumentationCheckResult

    def to_dict(self) -> dict[str, Any]:
        """JSON-portable representation."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "passed": self.passed,
            "typescript": self.typescript.to_dict(),
            "eslint": self.eslint.to_dict(),
            "tests": self.tests.to_dict(),
            "build": self.build.to_dict(),
            "ghostFiles": self.ghost_files.to_dict(),
            "coverage": self.coverage.to_dict(),
            "documentation": self.documentation.to_dict(),
        }


class IssueType(str, Enum):
    """Category of a verification issue."""

    RUNTIME = "runtime"
    CONSISTENCY = "consistency"
    BUILD = "build"
    LINT = "lint"
    TEST = "test"


@dataclass(frozen=True)
class VerificationIssue:
    """An issue aggregated from runtime, consistency or pipeline sources."""

    type: IssueType
    severity: Severity
    message: str
    location: Optional[str] = None
    suggested_fix: Optional[str] = None
    details: Any = None


class FixApproach(str, Enum):
    """What a correction attempt concentrates on."""

    FIX_BUILD_FIRST = "fix-build-first"
    FIX_RUNTIME = "fix-runtime"
    FIX_CONSISTENCY = "fix-consistency"
    FIX_ALL = "fix-all"


@dataclass(frozen=True)
class FixStrategy:
    """Targeted plan for one correction attempt."""

    approach: FixApproach
    target_issues: tuple[VerificationIssue, ...]
    reasoning: str


class AttemptOutcome(str, Enum):
    """Result of one correction attempt."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    PENDING = "pending"


@dataclass
class CorrectionAttempt:
    """Record of a single loop iteration.

    Attributes:
        attempt_number: 1-based iteration number
        issues: Deduplicated, prioritized issues seen this iteration
        fix_strategy: Strategy chosen for these issues
        changes: Files changed by the execution agent
        result: Outcome of the attempt
        timestamp: When the attempt started
        error: Agent failure message, if the correction raised
    """

    attempt_number: int
    issues: list[VerificationIssue]
    fix_strategy: FixStrategy
    changes: list[FileInfo] = field(default_factory=list)
    result: AttemptOutcome = AttemptOutcome.PENDING
    timestamp: datetime = field(default_factory=_utc_now)
    error: Optional[str] = None


@dataclass(frozen=True)
class CorrectionConstraints:
    """Scope limits handed to the execution agent."""

    preserve_working_code: bool = True
    minimal_changes: bool = True
    target_files: tuple[str, ...] = ()


@dataclass(frozen=True)
class CorrectionContext:
    """Request sent to the execution agent for one correction."""

    original_task: Any
    issues: tuple[VerificationIssue, ...]
    prompt: str
    constraints: CorrectionConstraints


@dataclass
class CorrectionAttemptResult:
    """Execution agent's answer to a correction request."""

    success: bool
    changes: list[FileInfo] = field(default_factory=list)
    updated_result: Optional[TaskResult] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class CorrectionResult:
    """Final outcome of a self-correction cycle.

    Attributes:
        success: Whether verification ended with no issues
        final_result: Task result after the last applied correction
        attempts: Log of correction attempts
        message: Human-readable summary
        remaining_issues: Issues left when escalating
        escalation_reason: Operator-facing summary when escalating
    """

    success: bool
    final_result: TaskResult
    attempts: tuple[CorrectionAttempt, ...]
    message: str
    remaining_issues: Optional[tuple[VerificationIssue, ...]] = None
    escalation_reason: Optional[str] = None
