"""Core data models for Tideflow.

These are the shapes exchanged between the workflow core and its external
collaborators (planning, auditing, execution and documentation agents, the
task orchestrator and the runtime error detector).
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def _utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class StepType(str, Enum):
    """Kind of action a plan step performs."""

    CREATE_FILE = "create-file"
    MODIFY_FILE = "modify-file"
    DELETE_FILE = "delete-file"
    RUN_COMMAND = "run-command"


class ChangeType(str, Enum):
    """How a file was touched by an agent."""

    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    CORRECTION = "correction"


class AuditApproval(str, Enum):
    """Auditor verdict on an execution plan."""

    APPROVED = "approved"
    CONDITIONAL = "conditional"
    REJECTED = "rejected"


class Severity(str, Enum):
    """Issue severity, ordered from most to least severe."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Numeric rank where higher means more severe."""
        return _SEVERITY_RANKS[self]


_SEVERITY_RANKS = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
}


@dataclass
class Task:
    """A unit of work handed to the task orchestrator.

    Attributes:
        id: Stable task identifier (checklist item id for checklist tasks)
        name: Short task title
        description: Longer description of the work
        checklist_item: Id of the checklist item this task completes
        acceptance_criteria: Criteria the result must satisfy
    """

    id: str
    name: str
    description: str = ""
    checklist_item: Optional[str] = None
    acceptance_criteria: list[str] = field(default_factory=list)


@dataclass
class PlanStep:
    """One step of an execution plan."""

    id: str = ""
    type: Optional[StepType] = None
    description: str = ""
    target: Optional[str] = None
    details: Optional[str] = None


@dataclass
class ExecutionPlan:
    """Plan produced by the planning agent and checked by gate 1."""

    objective: str = ""
    steps: list[PlanStep] = field(default_factory=list)
    rollback_strategy: str = ""
    task_id: str = ""
    risks: list[str] = field(default_factory=list)


@dataclass
class AuditIssue:
    """A single finding from the auditing agent."""

    message: str
    type: str = "other"
    severity: Severity = Severity.MEDIUM
    location: Optional[str] = None
    suggested_fix: Optional[str] = None
    auto_fixable: bool = False


@dataclass
class AuditReport:
    """Audit verdict checked by gate 2."""

    approval: AuditApproval
    auto_fixable: bool = False
    issues: list[AuditIssue] = field(default_factory=list)
    plan_id: str = ""
    suggestions: list[str] = field(default_factory=list)


@dataclass
class FileInfo:
    """A file touched by an agent."""

    path: str
    content: Optional[str] = None
    change_type: ChangeType = ChangeType.CREATED


@dataclass
class TaskResult:
    """Outcome of the execution phase for one task.

    Attributes:
        task_id: Id of the executed task
        task: The task itself
        success: Whether every plan step ran
        files_created: Files the execution claims to have created
        files_modified: Files modified (including self-corrections)
        files_deleted: Paths removed
        console: Captured command output lines
        errors: Execution error strings (any entry fails gate 3)
    """

    task_id: str
    task: Task
    success: bool = False
    files_created: list[FileInfo] = field(default_factory=list)
    files_modified: list[FileInfo] = field(default_factory=list)
    files_deleted: list[str] = field(default_factory=list)
    console: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass
class DocumentationResult:
    """Outcome of the documentation phase, checked by gate 4."""

    success: bool
    changelog_updated: bool = False
    checklist_updated: bool = False
    error: Optional[str] = None


@dataclass(frozen=True)
class ValidationResult:
    """Verdict from a document validator."""

    valid: bool
    reason: Optional[str] = None


class RuntimeErrorKind(str, Enum):
    """Source of a runtime error observed in a running preview."""

    EXCEPTION = "exception"
    REJECTION = "rejection"
    CONSOLE_ERROR = "console-error"
    NETWORK = "network"


@dataclass
class RuntimeErrorRecord:
    """A runtime error reported by the runtime error detector."""

    type: RuntimeErrorKind
    message: str
    is_fatal: bool = False
    stack: Optional[str] = None
    location: Optional[str] = None
    timestamp: datetime = field(default_factory=_utc_now)
    suggested_fix: Optional[str] = None


@dataclass
class WorkflowResult:
    """Outcome of driving one task through the full workflow.

    Attributes:
        success: Whether the workflow reached the complete state
        task: The task that was run
        result: Execution result, if execution was reached
        attempts: Self-correction attempts, if the loop ran
        error: Failure description
        rollback_performed: Whether changes were rolled back
        final_state: Workflow state when the run ended
    """

    success: bool
    task: Task
    result: Optional[TaskResult] = None
    attempts: list[Any] = field(default_factory=list)
    error: Optional[str] = None
    rollback_performed: bool = False
    final_state: Optional[str] = None
