"""Task orchestration for Tideflow.

Drives a single task through the gated workflow:

    plan -> gate 1 -> audit -> gate 2 -> execute -> gate 3
         -> document -> gate 4 -> verify (gate 5) -> self-correct

A failed audit gate sends the task back to planning with the audit issues
as feedback, at most ``max_replans`` times. A failed verification gate hands
the task to the self-correction loop, and gate 5 runs once more after a
reported correction before the task can complete. Every other gate failure
ends the task.

build_workflow() is the composition root: it constructs every collaborator
from settings once and wires them together explicitly.

This module is headless - no UI or editor dependencies.
"""

import logging
from typing import Awaitable, Callable, Optional, Protocol, Sequence

from tideflow.config.settings import TideflowSettings
from tideflow.core.documents import DocumentationUpdater, FileDocumentValidator
from tideflow.core.errors import InvalidTransitionError
from tideflow.core.gates import GateEnforcer, GateResult
from tideflow.core.models import (
    AuditReport,
    DocumentationResult,
    ExecutionPlan,
    Task,
    TaskResult,
    WorkflowResult,
)
from tideflow.core.state_machine import WorkflowEvent, WorkflowFSM, WorkflowState
from tideflow.verification.commands import CommandExecutor
from tideflow.verification.pipeline import VerificationPipeline
from tideflow.verification.runtime_errors import RuntimeErrorDetector, RuntimeErrorSource
from tideflow.verification.self_correction import (
    CorrectionAgent,
    HolisticConsistencyChecker,
    SelfCorrectionLoop,
)

logger = logging.getLogger(__name__)


class PlanningAgent(Protocol):
    async def plan(self, task: Task, feedback: Sequence[str] = ()) -> ExecutionPlan: ...


class AuditingAgent(Protocol):
    async def audit(self, plan: ExecutionPlan) -> AuditReport: ...


class TaskExecutionAgent(Protocol):
    async def execute(self, plan: ExecutionPlan) -> TaskResult: ...


class DocumentationAgent(Protocol):
    async def update_documentation(self, result: TaskResult) -> DocumentationResult: ...


RollbackHook = Callable[[TaskResult], Awaitable[None]]


class WorkflowOrchestrator:
    """Runs tasks through the gated workflow, one FSM per task.

    Args:
        planner: Produces execution plans
        auditor: Reviews plans
        executor: Applies plans to the workspace
        documenter: Updates changelog and checklist
        gate_enforcer: Checks each phase
        correction_loop: Repairs verification failures
        max_replans: Re-plans allowed after a failed audit gate
        rollback: Optional hook that undoes a task's changes after a late failure
    """

    def __init__(
        self,
        planner: PlanningAgent,
        auditor: AuditingAgent,
        executor: TaskExecutionAgent,
        documenter: DocumentationAgent,
        gate_enforcer: GateEnforcer,
        correction_loop: SelfCorrectionLoop,
        max_replans: int = 2,
        rollback: Optional[RollbackHook] = None,
    ):
        self.planner = planner
        self.auditor = auditor
        self.executor = executor
        self.documenter = documenter
        self.gates = gate_enforcer
        self.correction_loop = correction_loop
        self.max_replans = max_replans
        self.rollback = rollback
        self.last_fsm: Optional[WorkflowFSM] = None

    async def execute_task(self, task: Task) -> WorkflowResult:
        """Run one task through every phase.

        Phase agent exceptions end the task with a failed result; the FSM is
        force-reset when it is left mid-workflow.
        """
        fsm = WorkflowFSM()
        self.last_fsm = fsm
        logger.info(f"Starting workflow for task {task.id}: {task.name}")

        try:
            return await self._run(task, fsm)
        except InvalidTransitionError:
            raise
        except Exception as e:
            logger.error(f"Workflow for task {task.id} aborted in {fsm.state.value}: {e}", exc_info=True)
            if not fsm.is_terminal():
                fsm.force_reset()
            return WorkflowResult(
                success=False,
                task=task,
                error=str(e),
                final_state=WorkflowState.FAILED.value,
            )

    async def _run(self, task: Task, fsm: WorkflowFSM) -> WorkflowResult:
        self._advance(fsm, WorkflowEvent.START_TASK)

        feedback: list[str] = []
        replans = 0
        while True:
            plan = await self.planner.plan(task, feedback)
            self._advance(fsm, WorkflowEvent.PLANNING_COMPLETE)

            plan_gate = await self.gates.enforce_gate(1, plan)
            if not plan_gate.passed:
                self._advance(fsm, WorkflowEvent.PLAN_GATE_FAILED)
                return self._failed(task, fsm, "Plan gate failed", plan_gate.issues)
            self._advance(fsm, WorkflowEvent.PLAN_GATE_PASSED)

            audit = await self.auditor.audit(plan)
            self._advance(fsm, WorkflowEvent.AUDITING_COMPLETE)

            audit_gate = await self.gates.enforce_gate(2, audit)
            if audit_gate.passed:
                self._advance(fsm, WorkflowEvent.AUDIT_GATE_PASSED)
                break

            self._advance(fsm, WorkflowEvent.AUDIT_GATE_FAILED)
            replans += 1
            if replans > self.max_replans:
                # Re-planning has no failure edge; leave the workflow explicitly
                fsm.force_reset()
                return WorkflowResult(
                    success=False,
                    task=task,
                    error=f"Audit gate failed after {replans} plan(s): " + "; ".join(audit_gate.issues),
                    final_state=WorkflowState.FAILED.value,
                )
            logger.info(f"Re-planning task {task.id} ({replans}/{self.max_replans})")
            feedback = list(audit_gate.issues)

        result = await self.executor.execute(plan)
        self._advance(fsm, WorkflowEvent.EXECUTION_COMPLETE)

        execution_gate = await self.gates.enforce_gate(3, result)
        if not execution_gate.passed:
            self._advance(fsm, WorkflowEvent.EXECUTION_GATE_FAILED)
            rolled_back = await self._rollback(result)
            return self._failed(task, fsm, "Execution gate failed", execution_gate.issues, result, rolled_back)
        self._advance(fsm, WorkflowEvent.EXECUTION_GATE_PASSED)

        docs = await self.documenter.update_documentation(result)
        self._advance(fsm, WorkflowEvent.DOCUMENTATION_COMPLETE)

        docs_gate = await self.gates.enforce_gate(4, docs)
        if not docs_gate.passed:
            self._advance(fsm, WorkflowEvent.DOCUMENTATION_GATE_FAILED)
            return self._failed(task, fsm, "Documentation gate failed", docs_gate.issues, result)
        self._advance(fsm, WorkflowEvent.DOCUMENTATION_GATE_PASSED)

        verification_gate = await self.gates.enforce_gate(5)
        if verification_gate.passed:
            self._advance(fsm, WorkflowEvent.VERIFICATION_PASSED)
            return WorkflowResult(success=True, task=task, result=result, final_state=fsm.state.value)

        self._advance(fsm, WorkflowEvent.VERIFICATION_FAILED)
        correction = await self.correction_loop.verify_and_correct(result)

        error = correction.escalation_reason or correction.message
        if correction.success:
            self._advance(fsm, WorkflowEvent.CORRECTION_SUCCEEDED)

            # The loop only sees the issue categories it can correct; gate 5 decides
            recheck = await self.gates.enforce_gate(5)
            if recheck.passed:
                self._advance(fsm, WorkflowEvent.VERIFICATION_PASSED)
                logger.info(f"Task {task.id} complete: {correction.message}")
                return WorkflowResult(
                    success=True,
                    task=task,
                    result=correction.final_result,
                    attempts=list(correction.attempts),
                    final_state=fsm.state.value,
                )

            self._advance(fsm, WorkflowEvent.VERIFICATION_FAILED)
            issues = _verification_issues(recheck)
            error = "Verification gate failed after correction"
            if issues:
                error = f"{error}: {'; '.join(issues)}"
            logger.warning(f"Task {task.id} failed: {error}")

        self._advance(fsm, WorkflowEvent.CORRECTION_EXHAUSTED)
        rolled_back = await self._rollback(correction.final_result)
        return WorkflowResult(
            success=False,
            task=task,
            result=correction.final_result,
            attempts=list(correction.attempts),
            error=error,
            rollback_performed=rolled_back,
            final_state=fsm.state.value,
        )

    def _advance(self, fsm: WorkflowFSM, event: WorkflowEvent) -> None:
        if not fsm.transition(event):
            raise InvalidTransitionError(fsm.state.value, event.value)

    def _failed(
        self,
        task: Task,
        fsm: WorkflowFSM,
        reason: str,
        issues: Sequence[str],
        result: Optional[TaskResult] = None,
        rollback_performed: bool = False,
    ) -> WorkflowResult:
        error = f"{reason}: {'; '.join(issues)}" if issues else reason
        logger.warning(f"Task {task.id} failed: {error}")
        return WorkflowResult(
            success=False,
            task=task,
            result=result,
            error=error,
            rollback_performed=rollback_performed,
            final_state=fsm.state.value,
        )

    async def _rollback(self, result: TaskResult) -> bool:
        if self.rollback is None:
            return False
        await self.rollback(result)
        logger.info(f"Rolled back changes for task {result.task_id}")
        return True


def _verification_issues(gate_result: GateResult) -> list[str]:
    issues = list(gate_result.issues)
    if gate_result.report is not None:
        issues.extend(
            f"Unexpected untracked file: {path}" for path in gate_result.report.ghost_files.unexpected_files
        )
    return issues


def build_workflow(
    settings: TideflowSettings,
    planner: PlanningAgent,
    auditor: AuditingAgent,
    executor: TaskExecutionAgent,
    correction_agent: CorrectionAgent,
    holistic_checker: HolisticConsistencyChecker,
    documenter: Optional[DocumentationAgent] = None,
    runtime_detector: Optional[RuntimeErrorSource] = None,
    command_executor: Optional[CommandExecutor] = None,
    rollback: Optional[RollbackHook] = None,
) -> WorkflowOrchestrator:
    """Construct a fully wired orchestrator from settings."""
    changelog_path = settings.resolve(settings.changelog_path)
    checklist_path = settings.resolve(settings.checklist_path)

    validator = FileDocumentValidator(changelog_path, checklist_path)
    pipeline = VerificationPipeline(
        settings.workspace_root,
        executor=command_executor,
        settings=settings.verification,
        document_validator=validator,
    )
    gate_enforcer = GateEnforcer(validator, pipeline, workspace_root=settings.workspace_root)
    correction_loop = SelfCorrectionLoop(
        runtime_detector=runtime_detector or RuntimeErrorDetector(),
        holistic_checker=holistic_checker,
        verification_pipeline=pipeline,
        execution_agent=correction_agent,
        max_attempts=settings.max_correction_attempts,
    )

    return WorkflowOrchestrator(
        planner=planner,
        auditor=auditor,
        executor=executor,
        documenter=documenter or DocumentationUpdater.for_paths(changelog_path, checklist_path),
        gate_enforcer=gate_enforcer,
        correction_loop=correction_loop,
        max_replans=settings.max_replans,
        rollback=rollback,
    )
