"""Fixed-capacity rolling history for one metric stream."""

from __future__ import annotations

HISTORY_SIZE = 4096


class RingHistory:
    """Circular buffer of float samples, oldest evicted first.

    The backing list is allocated once; ``push`` only moves the head index.
    """

    __slots__ = ("_values", "_head", "_len")

    def __init__(self, capacity: int = HISTORY_SIZE) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self._values: list[float] = [0.0] * capacity
        self._head = 0
        self._len = 0

    @property
    def capacity(self) -> int:
        return len(self._values)

    def __len__(self) -> int:
        return self._len

    def push(self, value: float) -> None:
        cap = len(self._values)
        self._values[self._head] = float(value)
        self._head = (self._head + 1) % cap
        if self._len < cap:
            self._len += 1

    def latest(self) -> float:
        """Most recent sample, or 0.0 when nothing has been pushed."""
        if self._len == 0:
            return 0.0
        return self._values[(self._head - 1) % len(self._values)]

    def last_n(self, count: int) -> list[float]:
        """Up to *count* most recent samples, oldest first."""
        count = min(count, self._len)
        if count <= 0:
            return []
        cap = len(self._values)
        start = (self._head - count) % cap
        return [self._values[(start + i) % cap] for i in range(count)]
