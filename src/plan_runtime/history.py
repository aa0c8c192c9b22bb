# history.py
# Bounded, most-recent-first log of plan executions.

from collections import deque
from itertools import islice

from plan_runtime.models import ExecutionResult


class ExecutionHistory:
    """Fixed-capacity buffer; pushing past capacity evicts the oldest entry."""

    def __init__(self, capacity: int = 100) -> None:
        if capacity <= 0:
            raise ValueError("History capacity must be positive.")
        self._entries: deque[ExecutionResult] = deque(maxlen=capacity)

    def push(self, execution: ExecutionResult) -> None:
        self._entries.appendleft(execution)

    def recent(self, limit: int = 10) -> list[ExecutionResult]:
        return list(islice(self._entries, max(limit, 0)))

    @property
    def capacity(self) -> int:
        return self._entries.maxlen

    def __len__(self) -> int:
        return len(self._entries)
