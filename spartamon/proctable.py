"""Per-process CPU tracking with EWMA smoothing and mark-and-sweep pruning.

One tick looks like::

    table.begin_tick(dt)
    for sample in samples:
        table.observe(sample.pid, sample.name, sample.state, sample.cpu_ticks, sample.rss)
    table.end_tick()
    rows = table.ranked()
"""

from __future__ import annotations

from dataclasses import dataclass

EWMA_ALPHA = 0.20
# An average at or below this is treated as "no history yet" and re-seeded.
_SEED_FLOOR = 0.0001


@dataclass(slots=True)
class ProcessRecord:
    pid: int
    name: str = ""
    state: str = "?"
    cpu_ticks: int = 0  # cumulative user+system ticks at last observation
    cpu_cur: float = 0.0  # percent of one core, this tick
    cpu_avg: float = 0.0  # smoothed cpu_cur
    rss: int = 0  # bytes
    seen: bool = False


class ProcessTable:
    """Identity-tracked process records keyed by pid.

    A pid reused by the OS simply continues the existing record.
    """

    def __init__(self, clock_ticks: int = 100, alpha: float = EWMA_ALPHA) -> None:
        if not 0.0 < alpha <= 1.0:
            raise ValueError(f"alpha must be in (0, 1], got {alpha}")
        self.clock_ticks = clock_ticks if clock_ticks > 0 else 100
        self.alpha = alpha
        self._records: dict[int, ProcessRecord] = {}
        self._dt = 1.0

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, pid: object) -> bool:
        return pid in self._records

    def get(self, pid: int) -> ProcessRecord | None:
        return self._records.get(pid)

    def begin_tick(self, dt: float | None = None) -> None:
        """Clear every "seen" mark; *dt* is the elapsed seconds for this tick."""
        if dt is not None and dt > 0:
            self._dt = dt
        for rec in self._records.values():
            rec.seen = False

    def observe(
        self,
        pid: int,
        name: str,
        state: str,
        cpu_ticks: int,
        rss: int,
    ) -> ProcessRecord:
        rec = self._records.get(pid)
        if rec is None:
            rec = ProcessRecord(pid=pid, cpu_ticks=cpu_ticks)
            self._records[pid] = rec
            cur = 0.0
        else:
            delta = cpu_ticks - rec.cpu_ticks
            cur = 0.0
            if delta > 0:
                cur = delta / (self.clock_ticks * self._dt) * 100.0
            rec.cpu_ticks = cpu_ticks

        rec.name = name
        rec.state = state
        rec.rss = rss
        rec.cpu_cur = cur
        if rec.cpu_avg <= _SEED_FLOOR:
            rec.cpu_avg = cur
        else:
            rec.cpu_avg = (1.0 - self.alpha) * rec.cpu_avg + self.alpha * cur
        rec.seen = True
        return rec

    def end_tick(self) -> list[int]:
        """Drop records not observed since :meth:`begin_tick`; returns their pids."""
        gone = [pid for pid, rec in self._records.items() if not rec.seen]
        for pid in gone:
            del self._records[pid]
        return gone

    def ranked(self) -> list[ProcessRecord]:
        """Highest smoothed CPU first; ties by current CPU, then lowest pid."""
        return sorted(
            self._records.values(),
            key=lambda r: (-r.cpu_avg, -r.cpu_cur, r.pid),
        )
