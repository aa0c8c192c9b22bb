# models.py
# Data contracts for the tool registry and plan executor.
# No business logic lives here: pure schema and validation.

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

StepId = Union[int, str]

JsonType = Literal["string", "number", "integer", "boolean", "array", "object"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Tool schemas
# ---------------------------------------------------------------------------


class PropertySchema(BaseModel):
    """Type constraint for a single tool parameter."""

    model_config = ConfigDict(extra="ignore")

    type: JsonType
    description: str = ""


class ToolSchema(BaseModel):
    """Parameter constraints checked before a tool is dispatched."""

    model_config = ConfigDict(extra="ignore")

    type: Literal["object"] = "object"
    required: list[str] = Field(default_factory=list)
    properties: dict[str, PropertySchema] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------


class Step(BaseModel):
    """A single tool invocation in an execution plan."""

    model_config = ConfigDict(frozen=True)

    id: StepId = Field(..., description="Step identifier, unique within the plan.")
    description: str = Field(default="", description="Human-readable intent of this step.")
    tool: str = Field(..., description="Tool name; must exist in the registry.")
    parameters: dict[str, Any] = Field(default_factory=dict, description="Tool arguments.")
    optional: bool = Field(default=False, description="Failure does not abort the plan.")
    error_handling: str | None = Field(
        default=None, description="Free-text hint handed to the recovery policy."
    )


class Plan(BaseModel):
    """An ordered list of steps produced by an external planner."""

    model_config = ConfigDict(frozen=True)

    id: str | None = None
    goal: str = ""
    steps: list[Step] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Recovery outcomes
# ---------------------------------------------------------------------------


class Retry(BaseModel):
    action: Literal["retry"] = "retry"
    params: dict[str, Any] = Field(default_factory=dict)


class Alternative(BaseModel):
    action: Literal["alternative"] = "alternative"
    tool: str
    params: dict[str, Any] = Field(default_factory=dict)


class Skip(BaseModel):
    action: Literal["skip"] = "skip"
    reason: str = ""


class Abort(BaseModel):
    action: Literal["abort"] = "abort"
    reason: str = ""


class Unresolved(BaseModel):
    action: Literal["unresolved"] = "unresolved"
    raw_response: str = ""


RecoveryOutcome = Annotated[
    Union[Retry, Alternative, Skip, Abort, Unresolved],
    Field(discriminator="action"),
]


# ---------------------------------------------------------------------------
# Execution records
# ---------------------------------------------------------------------------


class RecoveryRecord(BaseModel):
    """What the executor did with a recovery outcome for a failed step."""

    action: Literal["retry", "alternative", "skip", "abort", "unresolved"]
    skipped: bool = False
    aborted: bool = False
    reason: str | None = None
    attempt: "StepResult | None" = None
    raw_response: str | None = None

    @property
    def resolved(self) -> bool:
        """True when the failure no longer needs to halt the plan."""
        if self.skipped:
            return True
        return self.attempt is not None and self.attempt.success


class StepResult(BaseModel):
    """Outcome of dispatching one step (or one generated attempt of a step)."""

    step_id: StepId
    description: str = ""
    tool: str
    success: bool = False
    result: Any = None
    error: str | None = None
    start_time: datetime = Field(default_factory=utcnow)
    end_time: datetime | None = None
    error_handling: RecoveryRecord | None = None
    error_handling_failed: bool = False

    @property
    def recovered(self) -> bool:
        return not self.success and self.error_handling is not None and self.error_handling.resolved


RecoveryRecord.model_rebuild()
StepResult.model_rebuild()


class ExecutionError(BaseModel):
    step: StepId
    message: str


class ExecutionResult(BaseModel):
    """Aggregate outcome of one plan execution."""

    plan_id: str
    steps: list[StepResult] = Field(default_factory=list)
    success: bool = True
    errors: list[ExecutionError] = Field(default_factory=list)
    start_time: datetime = Field(default_factory=utcnow)
    end_time: datetime | None = None


class ExecutionEvent(BaseModel):
    """Progress notification emitted while a plan is streamed."""

    kind: Literal["step", "completed"]
    step: StepResult | None = None
    execution: ExecutionResult | None = None


class ExecutorStatus(BaseModel):
    initialized: bool
    execution_count: int
    tools_available: int


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


class LastExecution(BaseModel):
    timestamp: datetime
    success: bool
    duration: float
    correlation_id: str | None = None


class LastError(BaseModel):
    message: str
    stack: str | None = None
    timestamp: datetime


class ToolMetrics(BaseModel):
    """Per-tool counters kept for the lifetime of the registry. Times are in ms."""

    usage_count: int = 0
    error_count: int = 0
    total_execution_time: float = 0.0
    average_execution_time: float = 0.0
    last_execution: LastExecution | None = None
    last_error: LastError | None = None


class MetricsSnapshot(BaseModel):
    """Point-in-time export of registry metrics for an observability pipeline."""

    executions: int
    errors: int
    tool_usage: dict[str, int]
    average_execution_time: dict[str, float]
    total_execution_time: dict[str, float]
    last_execution: dict[str, LastExecution]
    last_error: dict[str, LastError]
    success_rate: float
    registered_tools: list[str]
    tool_count: int
    timestamp: datetime = Field(default_factory=utcnow)
