"""Shared pytest fixtures for Tideflow tests."""

from pathlib import Path

import pytest

from tideflow.core.models import Task, TaskResult

SAMPLE_CHECKLIST = """# Project Checklist

## Phase 1
- [x] Set up project
- [ ] Add login form
  - [ ] Email field
  - [x] Password field
  - Acceptance: Invalid emails are rejected
  - Uses the shared form component

## Phase 2
- [ ] Add logout button
"""

SAMPLE_CHANGELOG = """# Changelog

## [2024-01-01] - Set up project

### Completed
- Set up project
"""


@pytest.fixture
def sample_task() -> Task:
    return Task(
        id="item-2",
        name="Add login form",
        description="Uses the shared form component",
        checklist_item="item-2",
    )


@pytest.fixture
def task_result(sample_task: Task) -> TaskResult:
    return TaskResult(task_id=sample_task.id, task=sample_task, success=True)


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """Workspace with a checklist and a changelog."""
    (tmp_path / "CHECKLIST.md").write_text(SAMPLE_CHECKLIST, encoding="utf-8")
    (tmp_path / "CHANGELOG.md").write_text(SAMPLE_CHANGELOG, encoding="utf-8")
    return tmp_path
