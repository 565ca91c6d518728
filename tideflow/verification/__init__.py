"""Verification pipeline and self-correction loop."""

from tideflow.verification.commands import CommandError, CommandOutput, SubprocessExecutor
from tideflow.verification.models import (
    CheckResult,
    CorrectionAttempt,
    CorrectionResult,
    FixStrategy,
    VerificationIssue,
    VerificationReport,
)
from tideflow.verification.pipeline import VerificationPipeline
from tideflow.verification.runtime_errors import RuntimeErrorDetector
from tideflow.verification.self_correction import SelfCorrectionLoop

__all__ = [
    "CheckResult",
    "CommandError",
    "CommandOutput",
    "CorrectionAttempt",
    "CorrectionResult",
    "FixStrategy",
    "RuntimeErrorDetector",
    "SelfCorrectionLoop",
    "SubprocessExecutor",
    "VerificationIssue",
    "VerificationPipeline",
    "VerificationReport",
]
