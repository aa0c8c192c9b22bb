# errors.py
# Exception taxonomy for tool dispatch and plan recovery.
#
# ToolRegistry.execute raises these to its caller. PlanExecutor catches them
# at the step level and never lets them escape a plan run.


class ToolRuntimeError(Exception):
    """Base class for every error raised by the registry or recovery layer."""


class ToolNotFoundError(ToolRuntimeError):
    """Raised when a tool name is not present in the registry."""

    def __init__(self, name: str) -> None:
        self.tool = name
        super().__init__(f"Tool not found: {name}")


class ValidationError(ToolRuntimeError):
    """Raised when parameters violate a tool's schema. Carries the offending field."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(message)


class ToolExecutionError(ToolRuntimeError):
    """Wraps an exception raised by a tool's own implementation."""

    def __init__(self, tool: str, original: BaseException) -> None:
        self.tool = tool
        self.original = original
        super().__init__(f"Tool '{tool}' failed: {original}")


class InvalidToolInSequenceError(ToolRuntimeError):
    """Raised when a composed tool references an unregistered tool."""

    def __init__(self, tool: str | None) -> None:
        self.tool = tool
        super().__init__(f"Invalid tool in sequence: {tool}")


class RecoveryParseError(ToolRuntimeError):
    """Raised when recovery policy output cannot be parsed into an outcome."""
