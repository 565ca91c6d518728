"""Autonomous checklist execution for Tideflow.

Works through the project checklist one item at a time, running each item
through the workflow orchestrator. Pacing, confirmation after a batch of
consecutive tasks, and stop-on-failure are configurable.

Usage:
    executor = AutonomousExecutor(orchestrator, ChecklistParser(), manager)
    result = await executor.start()

stop() is cooperative: the flag is checked between tasks, so the task in
flight always finishes.

This module is headless - no UI or editor dependencies.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Protocol

from tideflow.config.settings import AutonomousSettings
from tideflow.core.checklist import ChecklistManager, ChecklistParser
from tideflow.core.errors import ExecutorAlreadyRunningError
from tideflow.core.models import Task, WorkflowResult

logger = logging.getLogger(__name__)

Confirmer = Callable[[str], Awaitable[bool]]


class TaskOrchestrator(Protocol):
    async def execute_task(self, task: Task) -> WorkflowResult: ...


@dataclass
class AutonomousConfig:
    """Pacing and safety limits for one executor."""

    pause_between_tasks: bool = True
    pause_duration: float = 2.0  # seconds
    max_consecutive_tasks: int = 5
    stop_on_failure: bool = True
    require_confirmation: bool = True

    @classmethod
    def from_settings(cls, settings: AutonomousSettings) -> "AutonomousConfig":
        return cls(
            pause_between_tasks=settings.pause_between_tasks,
            pause_duration=settings.pause_duration,
            max_consecutive_tasks=settings.max_consecutive_tasks,
            stop_on_failure=settings.stop_on_failure,
            require_confirmation=settings.require_confirmation,
        )


@dataclass
class AutonomousResult:
    """Aggregate outcome of one autonomous run."""

    tasks_attempted: int = 0
    tasks_succeeded: int = 0
    tasks_failed: int = 0
    results: list[WorkflowResult] = field(default_factory=list)
    stopped_by_user: bool = False


class AutonomousExecutor:
    """Runs checklist items through the orchestrator until done or stopped.

    Args:
        orchestrator: Runs a single task through the workflow
        checklist_parser: Parses checklist markdown into items
        checklist_manager: Reads the current checklist
        config: Pacing and limits (defaults to AutonomousConfig())
        confirm: Async callback asked to continue after each batch of
            ``max_consecutive_tasks``; receives a prompt, returns True to go on
    """

    def __init__(
        self,
        orchestrator: TaskOrchestrator,
        checklist_parser: ChecklistParser,
        checklist_manager: ChecklistManager,
        config: Optional[AutonomousConfig] = None,
        confirm: Optional[Confirmer] = None,
    ):
        self.orchestrator = orchestrator
        self.parser = checklist_parser
        self.checklist = checklist_manager
        self.config = config or AutonomousConfig()
        self.confirm = confirm
        self._executing = False
        self._stop_requested = False

    def is_executing(self) -> bool:
        return self._executing

    def stop(self) -> None:
        """Request a stop after the current task."""
        if self._executing:
            logger.info("Stop requested; finishing current task")
        self._stop_requested = True

    async def start(self) -> AutonomousResult:
        """Execute checklist items until none remain, a stop, or a failure.

        Raises:
            ExecutorAlreadyRunningError: If a run is already in progress
        """
        if self._executing:
            raise ExecutorAlreadyRunningError()

        self._executing = True
        self._stop_requested = False
        try:
            return await self._run()
        finally:
            self._executing = False

    async def _run(self) -> AutonomousResult:
        result = AutonomousResult()
        attempted: set[str] = set()
        consecutive = 0

        while not self._stop_requested:
            items = self.parser.parse(await self.checklist.read())
            item = self.parser.get_next_uncompleted(items, skip=attempted)
            if item is None:
                logger.info("No uncompleted checklist items remain")
                break

            if consecutive >= self.config.max_consecutive_tasks:
                if self.config.require_confirmation and not await self._confirm_continue(consecutive):
                    result.stopped_by_user = True
                    break
                consecutive = 0

            attempted.add(item.id)
            task = item.to_task()
            logger.info(f"Executing checklist item {item.id}: {item.title}")

            outcome = await self.orchestrator.execute_task(task)
            result.results.append(outcome)
            result.tasks_attempted += 1
            consecutive += 1

            if outcome.success:
                result.tasks_succeeded += 1
            else:
                result.tasks_failed += 1
                logger.warning(f"Checklist item {item.id} failed: {outcome.error}")
                if self.config.stop_on_failure:
                    break

            if self.config.pause_between_tasks and self.config.pause_duration > 0:
                await asyncio.sleep(self.config.pause_duration)

        if self._stop_requested:
            result.stopped_by_user = True

        logger.info(
            f"Autonomous run finished: {result.tasks_succeeded} succeeded, "
            f"{result.tasks_failed} failed of {result.tasks_attempted} attempted"
        )
        return result

    async def _confirm_continue(self, completed: int) -> bool:
        if self.confirm is None:
            logger.info("Confirmation required but no confirmer configured; stopping")
            return False
        try:
            return bool(await self.confirm(f"Completed {completed} tasks. Continue?"))
        except Exception as e:
            logger.warning(f"Confirmation failed, stopping: {e}")
            return False
