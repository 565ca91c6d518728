"""Workflow state machine for Tideflow.

Defines the authoritative workflow phases and the events that move a task
between them. The FSM is the only owner of a task's current phase.

States:
- IDLE: No task in flight
- PLANNING / AUDITING / EXECUTING / DOCUMENTING: An agent is working
- AWAITING_*_GATE: Phase output is waiting on its gate
- VERIFYING: Full verification is running
- SELF_CORRECTING: The self-correction loop is repairing failures
- COMPLETE / FAILED: Terminal states, left only through reset

Invalid transitions are not exceptions: transition() returns False and
leaves the state untouched. Corrupt snapshots are exceptions.

This module is headless - no UI or editor dependencies.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from tideflow.core.errors import InvalidSerializedStateError

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class WorkflowState(str, Enum):
    """Workflow phase.

    Uses str mixin for easy JSON serialization.
    """

    IDLE = "idle"
    PLANNING = "planning"
    AWAITING_PLAN_GATE = "awaiting_plan_gate"
    AUDITING = "auditing"
    AWAITING_AUDIT_GATE = "awaiting_audit_gate"
    EXECUTING = "executing"
    AWAITING_EXECUTION_GATE = "awaiting_execution_gate"
    DOCUMENTING = "documenting"
    AWAITING_DOCUMENTATION_GATE = "awaiting_documentation_gate"
    VERIFYING = "verifying"
    SELF_CORRECTING = "self_correcting"
    COMPLETE = "complete"
    FAILED = "failed"


class WorkflowEvent(str, Enum):
    """Trigger for a workflow transition."""

    START_TASK = "start_task"
    PLANNING_COMPLETE = "planning_complete"
    PLAN_GATE_PASSED = "plan_gate_passed"
    PLAN_GATE_FAILED = "plan_gate_failed"
    AUDITING_COMPLETE = "auditing_complete"
    AUDIT_GATE_PASSED = "audit_gate_passed"
    AUDIT_GATE_FAILED = "audit_gate_failed"
    EXECUTION_COMPLETE = "execution_complete"
    EXECUTION_GATE_PASSED = "execution_gate_passed"
    EXECUTION_GATE_FAILED = "execution_gate_failed"
    DOCUMENTATION_COMPLETE = "documentation_complete"
    DOCUMENTATION_GATE_PASSED = "documentation_gate_passed"
    DOCUMENTATION_GATE_FAILED = "documentation_gate_failed"
    VERIFICATION_PASSED = "verification_passed"
    VERIFICATION_FAILED = "verification_failed"
    CORRECTION_SUCCEEDED = "correction_succeeded"
    CORRECTION_EXHAUSTED = "correction_exhausted"
    RESET = "reset"


TERMINAL_STATES: frozenset[WorkflowState] = frozenset(
    {WorkflowState.COMPLETE, WorkflowState.FAILED}
)

GATE_STATES: frozenset[WorkflowState] = frozenset(
    {
        WorkflowState.AWAITING_PLAN_GATE,
        WorkflowState.AWAITING_AUDIT_GATE,
        WorkflowState.AWAITING_EXECUTION_GATE,
        WorkflowState.AWAITING_DOCUMENTATION_GATE,
    }
)


# Allowed transitions: state -> {event -> next state}
TRANSITIONS: dict[WorkflowState, dict[WorkflowEvent, WorkflowState]] = {
    WorkflowState.IDLE: {
        WorkflowEvent.START_TASK: WorkflowState.PLANNING,
    },
    WorkflowState.PLANNING: {
        WorkflowEvent.PLANNING_COMPLETE: WorkflowState.AWAITING_PLAN_GATE,
    },
    WorkflowState.AWAITING_PLAN_GATE: {
        WorkflowEvent.PLAN_GATE_PASSED: WorkflowState.AUDITING,
        WorkflowEvent.PLAN_GATE_FAILED: WorkflowState.FAILED,
    },
    WorkflowState.AUDITING: {
        WorkflowEvent.AUDITING_COMPLETE: WorkflowState.AWAITING_AUDIT_GATE,
    },
    WorkflowState.AWAITING_AUDIT_GATE: {
        WorkflowEvent.AUDIT_GATE_PASSED: WorkflowState.EXECUTING,
        # A rejected audit sends the task back to re-plan, not to FAILED
        WorkflowEvent.AUDIT_GATE_FAILED: WorkflowState.PLANNING,
    },
    WorkflowState.EXECUTING: {
        WorkflowEvent.EXECUTION_COMPLETE: WorkflowState.AWAITING_EXECUTION_GATE,
    },
    WorkflowState.AWAITING_EXECUTION_GATE: {
        WorkflowEvent.EXECUTION_GATE_PASSED: WorkflowState.DOCUMENTING,
        WorkflowEvent.EXECUTION_GATE_FAILED: WorkflowState.FAILED,
    },
    WorkflowState.DOCUMENTING: {
        WorkflowEvent.DOCUMENTATION_COMPLETE: WorkflowState.AWAITING_DOCUMENTATION_GATE,
    },
    WorkflowState.AWAITING_DOCUMENTATION_GATE: {
        WorkflowEvent.DOCUMENTATION_GATE_PASSED: WorkflowState.VERIFYING,
        WorkflowEvent.DOCUMENTATION_GATE_FAILED: WorkflowState.FAILED,
    },
    WorkflowState.VERIFYING: {
        WorkflowEvent.VERIFICATION_PASSED: WorkflowState.COMPLETE,
        WorkflowEvent.VERIFICATION_FAILED: WorkflowState.SELF_CORRECTING,
    },
    WorkflowState.SELF_CORRECTING: {
        WorkflowEvent.CORRECTION_SUCCEEDED: WorkflowState.VERIFYING,
        WorkflowEvent.CORRECTION_EXHAUSTED: WorkflowState.FAILED,
    },
    WorkflowState.COMPLETE: {
        WorkflowEvent.RESET: WorkflowState.IDLE,
    },
    WorkflowState.FAILED: {
        WorkflowEvent.RESET: WorkflowState.IDLE,
    },
}


@dataclass(frozen=True)
class StateTransition:
    """History record for one successful transition.

    Attributes:
        from_state: State before the transition
        to_state: State after the transition
        event: Event that triggered it
        timestamp: When it happened (UTC)
    """

    from_state: WorkflowState
    to_state: WorkflowState
    event: WorkflowEvent
    timestamp: datetime = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, str]:
        return {
            "from": self.from_state.value,
            "to": self.to_state.value,
            "event": self.event.value,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "StateTransition":
        if not isinstance(data, dict):
            raise InvalidSerializedStateError(f"History entry must be an object, got: {data!r}")
        try:
            return cls(
                from_state=WorkflowState(data["from"]),
                to_state=WorkflowState(data["to"]),
                event=WorkflowEvent(data["event"]),
                timestamp=datetime.fromisoformat(data["timestamp"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidSerializedStateError(f"Invalid history entry {data!r}: {e}") from e


def parse_state(value: str) -> WorkflowState:
    """Parse a string into a WorkflowState.

    Accepts any case and dashes in place of underscores.

    Raises:
        ValueError: If the string doesn't match any state
    """
    normalized = value.lower().replace("-", "_")
    try:
        return WorkflowState(normalized)
    except ValueError:
        valid = ", ".join(s.value for s in WorkflowState)
        raise ValueError(f"Invalid state '{value}'. Valid states: {valid}")


def parse_event(value: str) -> WorkflowEvent:
    """Parse a string into a WorkflowEvent.

    Raises:
        ValueError: If the string doesn't match any event
    """
    normalized = value.lower().replace("-", "_")
    try:
        return WorkflowEvent(normalized)
    except ValueError:
        valid = ", ".join(e.value for e in WorkflowEvent)
        raise ValueError(f"Invalid event '{value}'. Valid events: {valid}")


class WorkflowFSM:
    """Event-driven sequencer for one task's workflow.

    Usage:
        fsm = WorkflowFSM()
        fsm.transition(WorkflowEvent.START_TASK)
        if not fsm.transition(WorkflowEvent.PLANNING_COMPLETE):
            # Event not valid in the current state; nothing changed
            ...

    Not safe for concurrent use; a single owner drives each instance.
    """

    def __init__(self):
        self._state = WorkflowState.IDLE
        self._history: list[StateTransition] = []

    @property
    def state(self) -> WorkflowState:
        return self._state

    @property
    def history(self) -> list[StateTransition]:
        """Copy of the transition history, oldest first."""
        return list(self._history)

    def transition(self, event: WorkflowEvent) -> bool:
        """Attempt a transition.

        Args:
            event: Triggering event

        Returns:
            True if the transition happened, False if the event is not
            valid in the current state (state is left unchanged)
        """
        next_state = TRANSITIONS.get(self._state, {}).get(event)
        if next_state is None:
            logger.warning(f"Invalid transition: {self._state.value} + {event.value}")
            return False

        self._history.append(
            StateTransition(from_state=self._state, to_state=next_state, event=event)
        )
        logger.info(f"[FSM] {self._state.value} -> {next_state.value} ({event.value})")
        self._state = next_state
        return True

    def can_transition(self, event: WorkflowEvent) -> bool:
        return event in TRANSITIONS.get(self._state, {})

    def allowed_events(self) -> set[WorkflowEvent]:
        """Events accepted in the current state."""
        return set(TRANSITIONS.get(self._state, {}))

    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    def is_awaiting_gate(self) -> bool:
        return self._state in GATE_STATES

    def reset(self) -> bool:
        """Return to IDLE from a terminal state and clear history.

        Returns:
            True if reset happened, False if the workflow is still in flight
        """
        if not self.is_terminal():
            return False
        self._state = WorkflowState.IDLE
        self._history = []
        return True

    def force_reset(self) -> None:
        """Unconditionally return to IDLE and clear history."""
        logger.warning(f"Force reset triggered from state {self._state.value}")
        self._state = WorkflowState.IDLE
        self._history = []

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "history": [t.to_dict() for t in self._history],
        }

    def serialize(self) -> str:
        """Serialize state and history to JSON."""
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Any) -> "WorkflowFSM":
        """Rebuild an FSM from its dict snapshot.

        Raises:
            InvalidSerializedStateError: If the state is missing or unknown,
                or a history entry is malformed
        """
        if not isinstance(data, dict):
            raise InvalidSerializedStateError("Invalid serialized state: expected an object")

        raw_state = data.get("state")
        try:
            state = WorkflowState(raw_state)
        except ValueError:
            raise InvalidSerializedStateError(f"Invalid serialized state: {raw_state!r}")

        raw_history = data.get("history", [])
        if not isinstance(raw_history, list):
            raise InvalidSerializedStateError("Invalid serialized history: expected a list")

        fsm = cls()
        fsm._state = state
        fsm._history = [StateTransition.from_dict(entry) for entry in raw_history]
        return fsm

    @classmethod
    def deserialize(cls, payload: str) -> "WorkflowFSM":
        """Rebuild an FSM from serialize() output.

        Raises:
            InvalidSerializedStateError: If the snapshot content is invalid
            json.JSONDecodeError: If the payload is not JSON
        """
        return cls.from_dict(json.loads(payload))
