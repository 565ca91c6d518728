"""Tests for autonomous checklist execution."""

import asyncio
from unittest.mock import AsyncMock, Mock, patch

import pytest

from tideflow.config.settings import AutonomousSettings
from tideflow.core.autonomous import AutonomousConfig, AutonomousExecutor
from tideflow.core.checklist import ChecklistParser, FileChecklistManager
from tideflow.core.errors import ExecutorAlreadyRunningError
from tideflow.core.models import WorkflowResult

CHECKLIST = """## Phase 1
- [ ] First
- [ ] Second
- [ ] Third
"""


def no_pause(**overrides) -> AutonomousConfig:
    fields = dict(pause_between_tasks=False, require_confirmation=False, max_consecutive_tasks=10)
    fields.update(overrides)
    return AutonomousConfig(**fields)


@pytest.fixture
def checklist_file(tmp_path):
    path = tmp_path / "CHECKLIST.md"
    path.write_text(CHECKLIST)
    return path


@pytest.fixture
def manager(checklist_file):
    return FileChecklistManager(checklist_file)


def completing_orchestrator(manager, fail_ids=()):
    """Orchestrator double that ticks the checklist item on success."""

    async def execute_task(task):
        if task.id in fail_ids:
            return WorkflowResult(success=False, task=task, error="gate failed")
        await manager.mark_complete(task.checklist_item)
        return WorkflowResult(success=True, task=task)

    orchestrator = Mock()
    orchestrator.execute_task = AsyncMock(side_effect=execute_task)
    return orchestrator


class TestAutonomousConfig:
    """Tests for AutonomousConfig."""

    def test_defaults(self):
        config = AutonomousConfig()
        assert config.pause_duration == 2.0
        assert config.max_consecutive_tasks == 5
        assert config.stop_on_failure is True

    def test_from_settings(self):
        settings = AutonomousSettings(pause_duration=0.5, max_consecutive_tasks=3, stop_on_failure=False)
        config = AutonomousConfig.from_settings(settings)
        assert config.pause_duration == 0.5
        assert config.max_consecutive_tasks == 3
        assert config.stop_on_failure is False


class TestAutonomousExecutor:
    """Tests for AutonomousExecutor.start."""

    @pytest.mark.asyncio
    async def test_runs_every_item(self, manager, checklist_file):
        orchestrator = completing_orchestrator(manager)
        executor = AutonomousExecutor(orchestrator, ChecklistParser(), manager, no_pause())

        result = await executor.start()

        assert result.tasks_attempted == 3
        assert result.tasks_succeeded == 3
        assert result.tasks_failed == 0
        assert result.stopped_by_user is False
        assert "- [ ]" not in checklist_file.read_text()
        assert executor.is_executing() is False

    @pytest.mark.asyncio
    async def test_stops_on_failure(self, manager):
        orchestrator = completing_orchestrator(manager, fail_ids={"item-2"})
        executor = AutonomousExecutor(orchestrator, ChecklistParser(), manager, no_pause())

        result = await executor.start()

        assert result.tasks_attempted == 2
        assert result.tasks_succeeded == 1
        assert result.tasks_failed == 1
        assert result.results[-1].error == "gate failed"

    @pytest.mark.asyncio
    async def test_continues_past_failure_without_retrying_it(self, manager):
        orchestrator = completing_orchestrator(manager, fail_ids={"item-2"})
        config = no_pause(stop_on_failure=False)
        executor = AutonomousExecutor(orchestrator, ChecklistParser(), manager, config)

        result = await executor.start()

        assert result.tasks_attempted == 3
        assert result.tasks_failed == 1
        attempted = [c.args[0].id for c in orchestrator.execute_task.await_args_list]
        assert attempted == ["item-1", "item-2", "item-3"]

    @pytest.mark.asyncio
    async def test_confirmation_declined_stops(self, manager):
        orchestrator = completing_orchestrator(manager)
        confirm = AsyncMock(return_value=False)
        config = no_pause(max_consecutive_tasks=2, require_confirmation=True)
        executor = AutonomousExecutor(orchestrator, ChecklistParser(), manager, config, confirm=confirm)

        result = await executor.start()

        assert result.tasks_attempted == 2
        assert result.stopped_by_user is True
        confirm.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_confirmation_accepted_continues(self, manager):
        orchestrator = completing_orchestrator(manager)
        confirm = AsyncMock(return_value=True)
        config = no_pause(max_consecutive_tasks=2, require_confirmation=True)
        executor = AutonomousExecutor(orchestrator, ChecklistParser(), manager, config, confirm=confirm)

        result = await executor.start()

        assert result.tasks_attempted == 3
        assert result.stopped_by_user is False

    @pytest.mark.asyncio
    async def test_confirmation_error_stops(self, manager):
        orchestrator = completing_orchestrator(manager)
        confirm = AsyncMock(side_effect=RuntimeError("no terminal"))
        config = no_pause(max_consecutive_tasks=1, require_confirmation=True)
        executor = AutonomousExecutor(orchestrator, ChecklistParser(), manager, config, confirm=confirm)

        result = await executor.start()

        assert result.tasks_attempted == 1
        assert result.stopped_by_user is True

    @pytest.mark.asyncio
    async def test_batch_limit_without_confirmation_resets_count(self, manager):
        orchestrator = completing_orchestrator(manager)
        config = no_pause(max_consecutive_tasks=1, require_confirmation=False)
        executor = AutonomousExecutor(orchestrator, ChecklistParser(), manager, config)

        result = await executor.start()

        assert result.tasks_attempted == 3

    @pytest.mark.asyncio
    async def test_pauses_between_tasks(self, manager):
        orchestrator = completing_orchestrator(manager)
        config = no_pause(pause_between_tasks=True, pause_duration=1.5)
        executor = AutonomousExecutor(orchestrator, ChecklistParser(), manager, config)

        with patch("tideflow.core.autonomous.asyncio.sleep", new=AsyncMock()) as sleep:
            await executor.start()

        assert sleep.await_count == 3
        sleep.assert_awaited_with(1.5)

    @pytest.mark.asyncio
    async def test_stop_takes_effect_after_current_task(self, manager):
        executor = None

        async def execute_task(task):
            executor.stop()
            await manager.mark_complete(task.checklist_item)
            return WorkflowResult(success=True, task=task)

        orchestrator = Mock()
        orchestrator.execute_task = AsyncMock(side_effect=execute_task)
        executor = AutonomousExecutor(orchestrator, ChecklistParser(), manager, no_pause())

        result = await executor.start()

        assert result.tasks_attempted == 1
        assert result.tasks_succeeded == 1
        assert result.stopped_by_user is True

    @pytest.mark.asyncio
    async def test_second_start_while_running_raises(self, manager):
        started = asyncio.Event()
        release = asyncio.Event()

        async def execute_task(task):
            started.set()
            await release.wait()
            await manager.mark_complete(task.checklist_item)
            return WorkflowResult(success=True, task=task)

        orchestrator = Mock()
        orchestrator.execute_task = AsyncMock(side_effect=execute_task)
        executor = AutonomousExecutor(orchestrator, ChecklistParser(), manager, no_pause())

        run = asyncio.create_task(executor.start())
        await started.wait()
        assert executor.is_executing() is True
        with pytest.raises(ExecutorAlreadyRunningError):
            await executor.start()

        executor.stop()
        release.set()
        result = await run
        assert result.tasks_attempted == 1

    @pytest.mark.asyncio
    async def test_nothing_to_do(self, tmp_path):
        manager = FileChecklistManager(tmp_path / "CHECKLIST.md")
        orchestrator = Mock()
        orchestrator.execute_task = AsyncMock()
        executor = AutonomousExecutor(orchestrator, ChecklistParser(), manager, no_pause())

        result = await executor.start()

        assert result.tasks_attempted == 0
        orchestrator.execute_task.assert_not_awaited()
