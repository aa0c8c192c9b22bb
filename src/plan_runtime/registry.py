# registry.py
# Tool registry: named callables, optional parameter schemas, per-tool metrics.
#
# Every dispatch goes through ToolRegistry.execute(): schema check first
# (fail fast, the implementation never runs on bad input), then the call,
# then metrics bookkeeping. Composed tools are registered as ordinary tools
# whose implementation dispatches back through the same registry.

import inspect
import time
import traceback
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Union

import structlog
from pydantic import ValidationError as SchemaParseError

from plan_runtime.errors import (
    InvalidToolInSequenceError,
    ToolExecutionError,
    ToolNotFoundError,
    ToolRuntimeError,
    ValidationError,
)
from plan_runtime.models import (
    LastError,
    LastExecution,
    MetricsSnapshot,
    ToolMetrics,
    ToolSchema,
    utcnow,
)

logger = structlog.get_logger()

ToolCallable = Callable[[dict[str, Any]], Any]
ParameterMap = Union[Callable[[dict[str, Any], Any], Mapping[str, Any]], Mapping[str, str]]

_MISSING = object()


# ---------------------------------------------------------------------------
# Schema validation
# ---------------------------------------------------------------------------


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


_TYPE_CHECKS: dict[str, Callable[[Any], bool]] = {
    "string": lambda value: isinstance(value, str),
    "number": _is_number,
    "integer": _is_number,
    "boolean": lambda value: isinstance(value, bool),
    "array": lambda value: isinstance(value, (list, tuple)),
    "object": lambda value: isinstance(value, Mapping),
}


def _json_type(value: Any) -> str:
    """Name a runtime value the way a JSON schema would."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if _is_number(value):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, Mapping):
        return "object"
    return type(value).__name__


def validate_parameters(schema: ToolSchema, parameters: Mapping[str, Any]) -> None:
    """
    Check `parameters` against `schema`.
    Raises ValidationError naming the first offending field.
    """
    for field in schema.required:
        if field not in parameters:
            raise ValidationError(field, f"missing required parameter: {field}")

    for field, prop in schema.properties.items():
        if field not in parameters:
            continue
        value = parameters[field]
        if not _TYPE_CHECKS[prop.type](value):
            expected = "number" if prop.type == "integer" else prop.type
            raise ValidationError(
                field,
                f"parameter {field} should be of type {expected}, got {_json_type(value)}",
            )


# ---------------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------------


@dataclass
class CompositionStep:
    """One link in a composed tool: which tool, how to feed it, how to post-process it."""

    tool: str | None
    parameter_map: ParameterMap | None = None
    result_transform: Callable[[Any], Any] | None = None

    @classmethod
    def coerce(cls, value: Any) -> "CompositionStep":
        if isinstance(value, cls):
            return value
        if isinstance(value, Mapping):
            return cls(
                tool=value.get("tool"),
                parameter_map=value.get("parameter_map", value.get("parameterMap")),
                result_transform=value.get("result_transform", value.get("resultTransform")),
            )
        raise TypeError(f"Composition step must be a mapping or CompositionStep, got {type(value).__name__}")


def _lookup(container: Any, path: str) -> Any:
    current = container
    for key in path.split("."):
        if isinstance(current, Mapping):
            current = current.get(key, _MISSING)
        else:
            current = getattr(current, key, _MISSING)
        if current is _MISSING:
            return _MISSING
    return current


def _resolve_source(source: Any, parameters: Mapping[str, Any], prior: Any) -> Any:
    """Resolve a static mapping source ("params[.key]" or "result[.key]")."""
    if not isinstance(source, str):
        return _MISSING
    if source == "params":
        return dict(parameters)
    if source.startswith("params."):
        return _lookup(parameters, source[len("params."):])
    if prior is None:
        return _MISSING
    if source == "result":
        return prior
    if source.startswith("result."):
        return _lookup(prior, source[len("result."):])
    return _MISSING


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class ToolRegistry:
    """
    Holds tool implementations keyed by name and dispatches calls to them.

    Example:
        registry = ToolRegistry()
        registry.register("add", lambda p: p["a"] + p["b"],
                          {"required": ["a", "b"],
                           "properties": {"a": {"type": "number"}, "b": {"type": "number"}}})
        total = await registry.execute("add", {"a": 2, "b": 3})
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolCallable] = {}
        self._schemas: dict[str, ToolSchema] = {}
        self._metrics: dict[str, ToolMetrics] = {}
        self._executions = 0
        self._errors = 0

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        name: str,
        call: ToolCallable,
        schema: ToolSchema | Mapping[str, Any] | None = None,
    ) -> bool:
        """Register (or overwrite) a tool. Returns False if it cannot be registered."""
        if not callable(call):
            logger.error("tool_registration_failed", tool=name, reason="implementation is not callable")
            return False

        parsed: ToolSchema | None = None
        if schema is not None:
            try:
                parsed = schema if isinstance(schema, ToolSchema) else ToolSchema.model_validate(schema)
            except SchemaParseError as exc:
                logger.error("tool_registration_failed", tool=name, reason=f"invalid schema: {exc}")
                return False

        if name in self._tools:
            logger.warning("tool_overwritten", tool=name)

        self._tools[name] = call
        if parsed is None:
            self._schemas.pop(name, None)
        else:
            self._schemas[name] = parsed
        self._metrics.setdefault(name, ToolMetrics())

        logger.info("tool_registered", tool=name, has_schema=parsed is not None)
        return True

    def unregister(self, name: str) -> bool:
        if name not in self._tools:
            return False
        del self._tools[name]
        self._schemas.pop(name, None)
        self._metrics.pop(name, None)
        logger.info("tool_unregistered", tool=name)
        return True

    def compose(
        self,
        name: str,
        steps: Sequence[CompositionStep | Mapping[str, Any]],
        schema: ToolSchema | Mapping[str, Any] | None = None,
    ) -> bool:
        """
        Register a tool that runs `steps` in order against this registry.

        Each step receives parameters built from its parameter_map (or the
        composed tool's input unchanged) and its result, after the optional
        result_transform, becomes the prior result for the next step.
        The last step's result is returned.
        """
        try:
            sequence = [CompositionStep.coerce(step) for step in steps or []]
        except TypeError as exc:
            logger.error("tool_composition_failed", tool=name, reason=str(exc))
            return False

        if not sequence:
            logger.error("tool_composition_failed", tool=name, reason="tool sequence must be non-empty")
            return False

        async def composed(parameters: dict[str, Any]) -> Any:
            result = None
            for step in sequence:
                if not step.tool or not self.has_tool(step.tool):
                    raise InvalidToolInSequenceError(step.tool)
                step_params = self._map_parameters(step, parameters, result)
                result = await self.execute(step.tool, step_params)
                if step.result_transform is not None:
                    result = step.result_transform(result)
            return result

        return self.register(name, composed, schema)

    @staticmethod
    def _map_parameters(step: CompositionStep, parameters: dict[str, Any], prior: Any) -> dict[str, Any]:
        mapping = step.parameter_map
        if mapping is None:
            return dict(parameters)
        if callable(mapping):
            return dict(mapping(parameters, prior))

        mapped: dict[str, Any] = {}
        for target, source in mapping.items():
            value = _resolve_source(source, parameters, prior)
            if value is _MISSING:
                # Left out so the target tool's schema reports it by name.
                logger.warning("parameter_mapping_unresolved", tool=step.tool, target=target, source=source)
                continue
            mapped[target] = value
        return mapped

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    async def execute(self, name: str, parameters: Mapping[str, Any] | None = None) -> Any:
        """
        Validate and invoke a registered tool.

        Raises ToolNotFoundError, ValidationError, InvalidToolInSequenceError
        (from composed tools) or ToolExecutionError wrapping whatever the
        implementation raised.
        """
        if name not in self._tools:
            raise ToolNotFoundError(name)

        call = self._tools[name]
        schema = self._schemas.get(name)
        params = dict(parameters or {})
        started = time.perf_counter()

        try:
            if schema is not None:
                validate_parameters(schema, params)
            result = call(params)
            if inspect.isawaitable(result):
                result = await result
        except ToolRuntimeError as exc:
            self._record(name, started, exc)
            logger.warning("tool_execution_rejected", tool=name, error=str(exc), error_type=type(exc).__name__)
            raise
        except Exception as exc:
            self._record(name, started, exc)
            logger.error("tool_execution_failed", tool=name, error=str(exc), error_type=type(exc).__name__)
            raise ToolExecutionError(name, exc) from exc

        self._record(name, started)
        return result

    def _record(self, name: str, started: float, error: BaseException | None = None) -> None:
        duration = (time.perf_counter() - started) * 1000
        now = utcnow()
        metrics = self._metrics.setdefault(name, ToolMetrics())

        self._executions += 1
        metrics.usage_count += 1
        metrics.total_execution_time += duration
        metrics.average_execution_time = metrics.total_execution_time / metrics.usage_count
        metrics.last_execution = LastExecution(
            timestamp=now,
            success=error is None,
            duration=duration,
            correlation_id=structlog.contextvars.get_contextvars().get("correlation_id"),
        )

        if error is not None:
            self._errors += 1
            metrics.error_count += 1
            metrics.last_error = LastError(
                message=str(error),
                stack="".join(traceback.format_exception(error)),
                timestamp=now,
            )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_registered_tools(self) -> list[str]:
        return list(self._tools)

    def get_tool_schema(self, name: str) -> ToolSchema | None:
        return self._schemas.get(name)

    def get_tool_metrics(self, name: str) -> ToolMetrics | None:
        metrics = self._metrics.get(name)
        return metrics.model_copy(deep=True) if metrics is not None else None

    def get_metrics(self) -> MetricsSnapshot:
        success_rate = (
            (self._executions - self._errors) / self._executions * 100
            if self._executions
            else 100.0
        )
        return MetricsSnapshot(
            executions=self._executions,
            errors=self._errors,
            tool_usage={name: m.usage_count for name, m in self._metrics.items()},
            average_execution_time={name: m.average_execution_time for name, m in self._metrics.items()},
            total_execution_time={name: m.total_execution_time for name, m in self._metrics.items()},
            last_execution={
                name: m.last_execution for name, m in self._metrics.items() if m.last_execution is not None
            },
            last_error={name: m.last_error for name, m in self._metrics.items() if m.last_error is not None},
            success_rate=success_rate,
            registered_tools=self.get_registered_tools(),
            tool_count=len(self._tools),
        )

    def clear_metrics(self) -> None:
        """Zero every counter while keeping the set of known tools."""
        self._executions = 0
        self._errors = 0
        self._metrics = {name: ToolMetrics() for name in self._tools}
