"""Runtime error collection for the self-correction loop.

A console monitor (outside this package) feeds errors observed in a running
preview into the detector through add_error(); the self-correction loop
reads them with detect().
"""

import asyncio
import logging
from dataclasses import replace
from typing import Protocol

from tideflow.core.models import RuntimeErrorRecord

logger = logging.getLogger(__name__)

# Substring patterns (lowercase) and the fix suggested for them, first match wins
FIX_SUGGESTIONS: list[tuple[tuple[str, ...], str]] = [
    (("cannot read property", "undefined"), "Add null/undefined check before accessing property"),
    (("is not a function",), "Check import statement and function name spelling"),
    (("module not found", "cannot find module"), "Install missing dependency or fix import path"),
    (("network error", "failed to fetch"), "Check API endpoint URL and network connectivity"),
]
DEFAULT_SUGGESTION = "Review error message and stack trace for context"


class RuntimeErrorSource(Protocol):
    """What the self-correction loop needs from a runtime error detector."""

    async def detect(self) -> list[RuntimeErrorRecord]: ...

    def reset(self) -> None: ...

    async def start_monitoring(self) -> None: ...


def suggest_fix(message: str) -> str:
    """Suggest a fix for a runtime error message."""
    msg = message.lower()
    for patterns, suggestion in FIX_SUGGESTIONS:
        if any(p in msg for p in patterns):
            return suggestion
    if "permission" in msg and ("firestore" in msg or "firebase" in msg):
        return "Update security rules or check authentication"
    return DEFAULT_SUGGESTION


class RuntimeErrorDetector:
    """In-memory runtime error collector.

    Args:
        settle_delay: Seconds detect() waits for in-flight errors to arrive
    """

    def __init__(self, settle_delay: float = 0.5):
        self.settle_delay = settle_delay
        self._errors: list[RuntimeErrorRecord] = []
        self._monitoring = False

    @property
    def is_monitoring(self) -> bool:
        return self._monitoring

    async def start_monitoring(self) -> None:
        """Begin a fresh monitoring session. No-op if already monitoring."""
        if self._monitoring:
            return
        self._monitoring = True
        self._errors = []
        logger.debug("Runtime error monitoring started")

    def add_error(self, error: RuntimeErrorRecord) -> None:
        """Record an error observed by a console monitor."""
        self._errors.append(error)

    async def detect(self) -> list[RuntimeErrorRecord]:
        """All errors recorded since monitoring started, with fix suggestions."""
        if self.settle_delay:
            await asyncio.sleep(self.settle_delay)
        return [replace(e, suggested_fix=suggest_fix(e.message)) for e in self._errors]

    def reset(self) -> None:
        """Clear the error log."""
        self._errors = []
