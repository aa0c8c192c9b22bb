# executor.py
# Plan executor: runs an ordered plan against a ToolRegistry.
#
# Control flow per step:
#   has_tool check → registry dispatch → on failure, recovery policy
#   (retry / alternative / skip / abort) → continue or halt the plan
#
# Steps run strictly in order; later steps never start before earlier ones
# finish. execute() never raises: tool errors end up in StepResult.error and
# executor bugs in the synthetic "overall_execution" error.

import time
import uuid
from collections.abc import AsyncIterator, Mapping
from typing import Any

import structlog
from structlog.contextvars import bound_contextvars

from plan_runtime.errors import ToolNotFoundError, ToolRuntimeError
from plan_runtime.history import ExecutionHistory
from plan_runtime.models import (
    Abort,
    Alternative,
    ExecutionError,
    ExecutionEvent,
    ExecutionResult,
    ExecutorStatus,
    Plan,
    RecoveryRecord,
    Retry,
    Skip,
    Step,
    StepResult,
    Unresolved,
    utcnow,
)
from plan_runtime.recovery import RecoveryPolicy
from plan_runtime.registry import ToolRegistry

logger = structlog.get_logger()

OVERALL_EXECUTION = "overall_execution"


def _generate_execution_id() -> str:
    return f"exec_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


def _can_continue(step: Step, step_result: StepResult) -> bool:
    """Whether the plan may proceed past `step` given how it ended."""
    if step_result.success:
        return True
    recovery = step_result.error_handling
    if recovery is not None:
        if recovery.aborted:
            return False
        if recovery.resolved:
            return True
    return step.optional


class PlanExecutor:
    """
    Executes plans step by step through an injected ToolRegistry.

    Example:
        executor = PlanExecutor(registry, recovery_policy=RuleBasedRecoveryPolicy())
        result = await executor.execute({"steps": [{"id": 1, "tool": "echo",
                                                    "parameters": {"message": "hi"}}]})
    """

    def __init__(
        self,
        registry: ToolRegistry,
        recovery_policy: RecoveryPolicy | None = None,
        history_size: int = 100,
    ) -> None:
        self._registry = registry
        self._recovery_policy = recovery_policy
        self._history = ExecutionHistory(history_size)
        self._initialized = False

    async def initialize(self) -> None:
        self._initialized = True
        logger.info("executor_initialized", tools=len(self._registry.get_registered_tools()))

    # ------------------------------------------------------------------
    # Plan execution
    # ------------------------------------------------------------------

    async def execute(self, plan: Plan | Mapping[str, Any]) -> ExecutionResult:
        """Run every step of `plan` and return the aggregated result."""
        execution: ExecutionResult | None = None
        async for event in self.stream(plan):
            if event.kind == "completed":
                execution = event.execution
        return execution

    async def stream(self, plan: Plan | Mapping[str, Any]) -> AsyncIterator[ExecutionEvent]:
        """
        Run `plan`, yielding a "step" event after each step and a final
        "completed" event with the ExecutionResult.

        History is recorded just before the completed event, so a consumer
        that stops early leaves no history entry.
        """
        execution = ExecutionResult(plan_id=_generate_execution_id(), start_time=utcnow())
        logger.info("plan_execution_started", plan_id=execution.plan_id)

        try:
            if not isinstance(plan, Plan):
                plan = Plan.model_validate(plan)

            for step in plan.steps:
                step_result = await self.execute_step(step, correlation_id=execution.plan_id)
                execution.steps.append(step_result)
                yield ExecutionEvent(kind="step", step=step_result)

                if not _can_continue(step, step_result):
                    execution.success = False
                    execution.errors.append(
                        ExecutionError(step=step.id, message=f"Critical step failed: {step_result.error}")
                    )
                    logger.warning(
                        "plan_execution_halted",
                        plan_id=execution.plan_id,
                        step_id=step.id,
                        error=step_result.error,
                    )
                    break
        except Exception as exc:
            logger.exception("plan_execution_crashed", plan_id=execution.plan_id)
            execution.success = False
            execution.errors.append(ExecutionError(step=OVERALL_EXECUTION, message=str(exc)))

        execution.end_time = utcnow()
        self._history.push(execution.model_copy(deep=True))
        logger.info(
            "plan_execution_finished",
            plan_id=execution.plan_id,
            success=execution.success,
            steps=len(execution.steps),
        )
        yield ExecutionEvent(kind="completed", execution=execution)

    # ------------------------------------------------------------------
    # Single step
    # ------------------------------------------------------------------

    async def execute_step(
        self,
        step: Step,
        recover: bool = True,
        correlation_id: str | None = None,
    ) -> StepResult:
        """
        Dispatch one step. When it fails and carries an error_handling hint,
        the recovery policy is consulted unless `recover` is False.
        """
        step_result = StepResult(
            step_id=step.id,
            description=step.description,
            tool=step.tool,
            start_time=utcnow(),
        )

        try:
            if not self._registry.has_tool(step.tool):
                raise ToolNotFoundError(step.tool)
            with bound_contextvars(correlation_id=correlation_id, step_id=str(step.id)):
                step_result.result = await self._registry.execute(step.tool, step.parameters)
            step_result.success = True
        except ToolRuntimeError as exc:
            step_result.success = False
            step_result.error = str(exc)
            logger.warning("step_failed", step_id=step.id, tool=step.tool, error=str(exc))
            if recover and step.error_handling:
                await self._recover(step, exc, step_result, correlation_id)

        step_result.end_time = utcnow()
        return step_result

    async def _recover(
        self,
        step: Step,
        error: Exception,
        step_result: StepResult,
        correlation_id: str | None,
    ) -> None:
        if self._recovery_policy is None:
            logger.warning("recovery_unavailable", step_id=step.id)
            step_result.error_handling_failed = True
            return

        try:
            outcome = await self._recovery_policy.decide(step, error)
        except Exception as exc:
            logger.warning("recovery_policy_failed", step_id=step.id, error=str(exc), exc_info=True)
            step_result.error_handling_failed = True
            return

        logger.info("recovery_outcome", step_id=step.id, action=outcome.action)

        if isinstance(outcome, Retry):
            retry_step = step.model_copy(
                update={"id": f"{step.id}_retry", "parameters": {**step.parameters, **outcome.params}}
            )
            attempt = await self.execute_step(retry_step, recover=False, correlation_id=correlation_id)
            step_result.error_handling = RecoveryRecord(action="retry", attempt=attempt)
        elif isinstance(outcome, Alternative):
            alternative_step = step.model_copy(
                update={"id": f"{step.id}_alt", "tool": outcome.tool, "parameters": dict(outcome.params)}
            )
            attempt = await self.execute_step(alternative_step, recover=False, correlation_id=correlation_id)
            step_result.error_handling = RecoveryRecord(action="alternative", attempt=attempt)
        elif isinstance(outcome, Skip):
            step_result.error_handling = RecoveryRecord(action="skip", skipped=True, reason=outcome.reason)
        elif isinstance(outcome, Abort):
            step_result.error_handling = RecoveryRecord(action="abort", aborted=True, reason=outcome.reason)
        elif isinstance(outcome, Unresolved):
            step_result.error_handling = RecoveryRecord(action="unresolved", raw_response=outcome.raw_response)
            step_result.error_handling_failed = True
        else:
            logger.warning("recovery_outcome_unknown", step_id=step.id, outcome=repr(outcome))
            step_result.error_handling_failed = True

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_execution_history(self, limit: int = 10) -> list[ExecutionResult]:
        """Most recent first. Entries are copies; the stored history never changes."""
        return [execution.model_copy(deep=True) for execution in self._history.recent(limit)]

    def get_status(self) -> ExecutorStatus:
        return ExecutorStatus(
            initialized=self._initialized,
            execution_count=len(self._history),
            tools_available=len(self._registry.get_registered_tools()),
        )
