"""Configuration for Tideflow."""

from tideflow.config.settings import (
    AutonomousSettings,
    TideflowSettings,
    VerificationCommands,
    VerificationSettings,
    get_settings,
)

__all__ = [
    "AutonomousSettings",
    "TideflowSettings",
    "VerificationCommands",
    "VerificationSettings",
    "get_settings",
]
