"""Exception types for Tideflow.

Expected validation outcomes are returned as result objects (GateResult,
CheckResult). Only protocol and integrity violations are raised.

This module is headless - no UI or editor dependencies.
"""


class TideflowError(Exception):
    """Base class for Tideflow errors."""


class InvalidSerializedStateError(TideflowError, ValueError):
    """Raised when a serialized workflow snapshot cannot be reconstructed."""


class ExecutorAlreadyRunningError(TideflowError, RuntimeError):
    """Raised when start() is called on an executor that is already running."""

    def __init__(self):
        super().__init__("Autonomous execution already in progress")


class InvalidTransitionError(TideflowError):
    """Raised by workflow drivers when the FSM rejects an event they rely on."""

    def __init__(self, state: str, event: str):
        self.state = state
        self.event = event
        super().__init__(f"Invalid transition: {state} + {event}")
