"""Tests for Tideflow settings and logging configuration."""

import logging
import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from tideflow.config.logging_setup import LOG_FORMAT, configure_logging
from tideflow.config.settings import TideflowSettings, get_settings


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Run each test from an empty directory with no TIDEFLOW_ variables."""
    monkeypatch.chdir(tmp_path)
    for key in list(os.environ):
        if key.startswith("TIDEFLOW_"):
            monkeypatch.delenv(key)


class TestTideflowSettings:
    """Tests for TideflowSettings defaults and environment loading."""

    def test_defaults(self):
        settings = TideflowSettings()
        assert settings.max_correction_attempts == 3
        assert settings.max_replans == 2
        assert settings.log_level == "INFO"
        assert settings.verification.coverage_threshold == 70.0
        assert settings.verification.commands.typecheck == "npx tsc --noEmit"
        assert settings.verification.commands.untracked == "git ls-files --others --exclude-standard"
        assert settings.verification.command_timeout is None
        assert settings.autonomous.pause_duration == 2.0
        assert settings.autonomous.max_consecutive_tasks == 5

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("TIDEFLOW_MAX_CORRECTION_ATTEMPTS", "5")
        monkeypatch.setenv("TIDEFLOW_LOG_LEVEL", "debug")
        settings = TideflowSettings()
        assert settings.max_correction_attempts == 5
        assert settings.log_level == "DEBUG"

    def test_nested_environment(self, monkeypatch):
        monkeypatch.setenv("TIDEFLOW_VERIFICATION__COVERAGE_THRESHOLD", "85")
        monkeypatch.setenv("TIDEFLOW_AUTONOMOUS__STOP_ON_FAILURE", "false")
        settings = TideflowSettings()
        assert settings.verification.coverage_threshold == 85.0
        assert settings.autonomous.stop_on_failure is False

    def test_dotenv_file(self, tmp_path):
        (tmp_path / ".env").write_text("TIDEFLOW_MAX_REPLANS=4\n")
        assert TideflowSettings().max_replans == 4

    def test_invalid_log_level(self):
        with pytest.raises(ValidationError, match="LOG_LEVEL must be one of"):
            TideflowSettings(log_level="LOUD")

    def test_invalid_bounds(self):
        with pytest.raises(ValidationError):
            TideflowSettings(max_correction_attempts=0)

    def test_overrides(self):
        settings = get_settings(checklist_path="docs/TODO.md")
        assert settings.checklist_path == "docs/TODO.md"

    def test_resolve(self):
        settings = TideflowSettings(workspace_root=Path("/repo"))
        assert settings.resolve("CHECKLIST.md") == Path("/repo/CHECKLIST.md")
        assert settings.resolve("/abs/CHANGELOG.md") == Path("/abs/CHANGELOG.md")


class TestConfigureLogging:
    """Tests for configure_logging."""

    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        for handler in root.handlers:
            if handler not in handlers:
                handler.close()
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_sets_level_and_format(self):
        configure_logging("WARNING")
        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert root.handlers[0].formatter._fmt == LOG_FORMAT

    def test_writes_log_file(self, tmp_path):
        log_file = tmp_path / "logs" / "tideflow.log"
        configure_logging("INFO", str(log_file))
        logging.getLogger("tideflow.test").info("hello file")
        for handler in logging.getLogger().handlers:
            handler.flush()
        assert "hello file" in log_file.read_text()
