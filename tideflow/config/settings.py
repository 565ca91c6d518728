"""Configuration management for Tideflow.

Settings are read from environment variables (prefix ``TIDEFLOW_``) and an
optional ``.env`` file. Nested sections use ``__`` as delimiter, e.g.
``TIDEFLOW_VERIFICATION__COVERAGE_THRESHOLD=80``.

Usage:
    >>> from tideflow.config.settings import get_settings
    >>> settings = get_settings()
    >>> settings.max_correction_attempts
    3
"""

from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class VerificationCommands(BaseModel):
    """Shell commands run by the verification pipeline."""
    typecheck: str = "npx tsc --noEmit"
    lint: str = "npx eslint . --ext .ts,.tsx --format json"
    test: str = "npm test -- --json"
    build: str = "npm run build"
    untracked: str = "git ls-files --others --exclude-standard"


class VerificationSettings(BaseModel):
    """Verification pipeline configuration."""
    commands: VerificationCommands = Field(default_factory=VerificationCommands)
    coverage_summary_path: str = "coverage/coverage-summary.json"
    coverage_threshold: float = Field(70.0, ge=0, le=100)
    command_timeout: Optional[float] = Field(None, gt=0)  # seconds, None = no limit


class AutonomousSettings(BaseModel):
    """Pacing for autonomous checklist execution."""
    pause_between_tasks: bool = True
    pause_duration: float = Field(2.0, ge=0)  # seconds
    max_consecutive_tasks: int = Field(5, ge=1)
    stop_on_failure: bool = True
    require_confirmation: bool = True


class TideflowSettings(BaseSettings):
    """Global Tideflow configuration loaded from environment variables."""

    workspace_root: Path = Path(".")
    checklist_path: str = "CHECKLIST.md"
    changelog_path: str = "CHANGELOG.md"

    # Workflow bounds
    max_correction_attempts: int = Field(3, ge=1)
    max_replans: int = Field(2, ge=0)

    # Logging configuration
    log_level: str = "INFO"
    log_file: Optional[str] = None

    verification: VerificationSettings = Field(default_factory=VerificationSettings)
    autonomous: AutonomousSettings = Field(default_factory=AutonomousSettings)

    model_config = SettingsConfigDict(
        env_prefix="TIDEFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the allowed values."""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"LOG_LEVEL must be one of {allowed}, got: {v}")
        return v_upper

    def resolve(self, relative: str) -> Path:
        """Resolve a configured path against the workspace root."""
        path = Path(relative)
        return path if path.is_absolute() else self.workspace_root / path


def load_environment(env_file: str = ".env") -> None:
    """Load environment variables from a .env file if it exists.

    Args:
        env_file: Path to .env file (default: .env in current directory)
    """
    env_path = Path(env_file)
    if env_path.exists():
        load_dotenv(env_path)


def get_settings(**overrides) -> TideflowSettings:
    """Build settings from the environment, applying explicit overrides."""
    load_environment()
    return TideflowSettings(**overrides)
