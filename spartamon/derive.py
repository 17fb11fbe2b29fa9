"""Turn cumulative kernel counters into per-tick rates and percentages.

All state lives on :class:`MetricDeriver` instances: the previous value of
every counter and the previous snapshot time.  Every function returns a
definite, non-negative number for every input.
"""

from __future__ import annotations

from dataclasses import dataclass

from spartamon.sources import RawSnapshot

MIN_DT = 0.001  # seconds, substituted for a non-positive elapsed time
MB = 1024.0 * 1024.0


def cpu_percent(idle_delta: float, total_delta: float) -> float:
    """Busy share of the elapsed CPU time, 0.0 when no time elapsed."""
    if total_delta <= 0:
        return 0.0
    pct = (1.0 - idle_delta / total_delta) * 100.0
    return min(100.0, max(0.0, pct))


def memory_percent(total: int, available: int) -> float:
    if total <= 0:
        return 0.0
    used = max(0, total - available)
    return used / total * 100.0


def elapsed(prev: float | None, now: float) -> float:
    """Seconds between two timestamps, never below :data:`MIN_DT`."""
    if prev is None:
        return MIN_DT
    dt = now - prev
    return dt if dt > 0 else MIN_DT


class CounterTracker:
    """Remembers the last value of one monotonically increasing counter."""

    __slots__ = ("_prev",)

    def __init__(self) -> None:
        self._prev: float | None = None

    @property
    def primed(self) -> bool:
        return self._prev is not None

    def delta(self, value: float) -> float:
        """Increase since the last call; 0 on the first call or after a reset."""
        prev = self._prev
        self._prev = value
        if prev is None or value < prev:
            return 0
        return value - prev

    def reset(self) -> None:
        self._prev = None


@dataclass(slots=True)
class DerivedMetrics:
    """One tick's worth of derived values."""

    dt: float = MIN_DT
    cpu_percent: float = 0.0
    mem_percent: float = 0.0
    load_avg: tuple[float, float, float] | None = None
    temperature: float | None = None
    disk_read_mbs: float = 0.0
    disk_write_mbs: float = 0.0
    net_rx_mbs: float = 0.0
    net_tx_mbs: float = 0.0
    # Counts accumulated during this tick, not rates.
    rx_errors: int = 0
    rx_drops: int = 0
    tx_errors: int = 0
    tx_drops: int = 0


class MetricDeriver:
    """Keeps the previous snapshot per stream and derives the current tick."""

    def __init__(self) -> None:
        self._prev_time: float | None = None
        self._cpu_total = CounterTracker()
        self._cpu_idle = CounterTracker()
        self._disk_read = CounterTracker()
        self._disk_write = CounterTracker()
        self._rx_bytes = CounterTracker()
        self._tx_bytes = CounterTracker()
        self._rx_errors = CounterTracker()
        self._rx_drops = CounterTracker()
        self._tx_errors = CounterTracker()
        self._tx_drops = CounterTracker()

    def derive(self, snap: RawSnapshot) -> DerivedMetrics:
        dt = elapsed(self._prev_time, snap.timestamp)
        self._prev_time = snap.timestamp
        out = DerivedMetrics(dt=dt, load_avg=snap.load_avg, temperature=snap.temperature)

        if snap.cpu is not None:
            d_total = self._cpu_total.delta(snap.cpu.total)
            d_idle = self._cpu_idle.delta(snap.cpu.idle)
            out.cpu_percent = cpu_percent(d_idle, d_total)
        else:
            self._cpu_total.reset()
            self._cpu_idle.reset()

        if snap.mem_total is not None and snap.mem_available is not None:
            out.mem_percent = memory_percent(snap.mem_total, snap.mem_available)

        if snap.disk is not None:
            out.disk_read_mbs = self._disk_read.delta(snap.disk.read_bytes) / dt / MB
            out.disk_write_mbs = self._disk_write.delta(snap.disk.write_bytes) / dt / MB
        else:
            # Next reading bootstraps again instead of spanning the gap.
            self._disk_read.reset()
            self._disk_write.reset()

        net = snap.net
        if net is not None:
            out.net_rx_mbs = self._rx_bytes.delta(net.rx_bytes) / dt / MB
            out.net_tx_mbs = self._tx_bytes.delta(net.tx_bytes) / dt / MB
            out.rx_errors = int(self._rx_errors.delta(net.rx_errors))
            out.rx_drops = int(self._rx_drops.delta(net.rx_drops))
            out.tx_errors = int(self._tx_errors.delta(net.tx_errors))
            out.tx_drops = int(self._tx_drops.delta(net.tx_drops))
        else:
            for tracker in (
                self._rx_bytes,
                self._tx_bytes,
                self._rx_errors,
                self._rx_drops,
                self._tx_errors,
                self._tx_drops,
            ):
                tracker.reset()

        return out
