"""Raw counter acquisition — the host-facing side of spartamon.

Every reader here is a single synchronous query that returns a value or
``None``.  Absence of optional hardware (sensors, the Raspberry Pi
``vcgencmd`` utility, a network interface) is never an exception.
"""

from __future__ import annotations

import logging
import os
import subprocess
import time
from dataclasses import dataclass, field

import psutil

logger = logging.getLogger(__name__)

# ── Data types ─────────────────────────────────────────────────────────────


@dataclass(slots=True, frozen=True)
class CpuCounters:
    """Aggregate CPU time counters (monotonic)."""

    total: float
    idle: float


@dataclass(slots=True, frozen=True)
class NetCounters:
    rx_bytes: int
    tx_bytes: int
    rx_errors: int
    rx_drops: int
    tx_errors: int
    tx_drops: int


@dataclass(slots=True, frozen=True)
class DiskCounters:
    read_bytes: int
    write_bytes: int


@dataclass(slots=True, frozen=True)
class FsUsage:
    used: int
    total: int
    percent: float
    inode_percent: float


@dataclass(slots=True, frozen=True)
class ProcessSample:
    pid: int
    name: str
    state: str  # single character: 'R', 'S', 'D', 'Z', ...
    cpu_ticks: int  # user + system, in clock ticks
    rss: int  # bytes


@dataclass(slots=True)
class RawSnapshot:
    """Everything read from the host in one tick.  ``None`` = unavailable."""

    timestamp: float
    cpu: CpuCounters | None = None
    load_avg: tuple[float, float, float] | None = None
    mem_total: int | None = None
    mem_available: int | None = None
    uptime: float | None = None
    temperature: float | None = None
    throttled: int | None = None
    net: NetCounters | None = None
    disk: DiskCounters | None = None
    fs: FsUsage | None = None
    processes: list[ProcessSample] = field(default_factory=list)
    # Placeholder for a tick whose sampling failed as a whole.
    failed: bool = False


# ── CPU / memory / load ────────────────────────────────────────────────────

_CPU_FIELDS = ("user", "nice", "system", "idle", "iowait", "irq", "softirq", "steal")


def read_cpu() -> CpuCounters | None:
    """Busy/idle totals; iowait counts as idle."""
    try:
        times = psutil.cpu_times()
    except (OSError, RuntimeError):
        return None
    values = {name: float(getattr(times, name, 0.0)) for name in _CPU_FIELDS}
    return CpuCounters(
        total=sum(values.values()),
        idle=values["idle"] + values["iowait"],
    )


def read_load() -> tuple[float, float, float] | None:
    try:
        l1, l5, l15 = psutil.getloadavg()
    except (OSError, AttributeError):
        return None
    return (float(l1), float(l5), float(l15))


def read_memory() -> tuple[int, int] | None:
    """(total, available) in bytes."""
    try:
        vm = psutil.virtual_memory()
    except (OSError, RuntimeError):
        return None
    return int(vm.total), int(vm.available)


def read_uptime() -> float | None:
    try:
        return max(0.0, time.time() - psutil.boot_time())
    except (OSError, RuntimeError):
        return None


def read_temp() -> float | None:
    """CPU package temperature in °C, preferring known CPU sensor chips."""
    try:
        temps = psutil.sensors_temperatures()
    except (AttributeError, OSError):
        return None
    if not temps:
        return None
    for chip in ("cpu_thermal", "coretemp", "k10temp", "acpitz"):
        if chip in temps and temps[chip]:
            return float(temps[chip][0].current)
    for entries in temps.values():
        if entries:
            return float(entries[0].current)
    return None


# ── Power / throttling (Raspberry Pi firmware) ─────────────────────────────

_THROTTLE_BITS = (
    (0, "UV"),
    (1, "CAP"),
    (2, "THR"),
    (3, "TMP"),
)


def parse_throttled(output: str) -> int | None:
    """Extract the hex bitmask from ``throttled=0x50005``."""
    idx = output.find("0x")
    if idx < 0:
        return None
    rest = output[idx + 2 :].split()
    if not rest:
        return None
    try:
        return int(rest[0], 16)
    except ValueError:
        return None


def throttled_summary(flags: int | None) -> str:
    """Short description of current and since-boot throttling conditions."""
    if flags is None:
        return "PWR n/a"
    if flags == 0:
        return "PWR OK"
    now = " ".join(name for bit, name in _THROTTLE_BITS if flags & (1 << bit))
    hist = " ".join(name for bit, name in _THROTTLE_BITS if flags & (1 << (bit + 16)))
    summary = f"PWR {now or 'OK'}"
    if hist:
        summary += f" |H:{hist}"
    return summary


# ── Processes ──────────────────────────────────────────────────────────────

# Constant name -> ps(1) state letter.  Newer psutil releases drop some of
# these, so only the constants present are mapped.
_STATUS_LETTERS = (
    ("STATUS_RUNNING", "R"),
    ("STATUS_SLEEPING", "S"),
    ("STATUS_DISK_SLEEP", "D"),
    ("STATUS_STOPPED", "T"),
    ("STATUS_TRACING_STOP", "t"),
    ("STATUS_ZOMBIE", "Z"),
    ("STATUS_DEAD", "X"),
    ("STATUS_WAKE_KILL", "K"),
    ("STATUS_WAKING", "W"),
    ("STATUS_IDLE", "I"),
    ("STATUS_LOCKED", "L"),
    ("STATUS_WAITING", "W"),
    ("STATUS_PARKED", "P"),
)
_STATUS_CODES: dict[str, str] = {
    getattr(psutil, name): letter
    for name, letter in _STATUS_LETTERS
    if hasattr(psutil, name)
}


def state_code(status: str | None) -> str:
    if not status:
        return "?"
    return _STATUS_CODES.get(status, status[0].upper())


def clock_ticks_per_second() -> int:
    """Kernel USER_HZ, 100 when it cannot be queried."""
    try:
        hz = os.sysconf("SC_CLK_TCK")
    except (AttributeError, ValueError, OSError):
        return 100
    return hz if hz > 0 else 100


def collect_processes(clock_ticks: int) -> list[ProcessSample]:
    """Sample every visible process; vanished or forbidden ones are skipped."""
    samples: list[ProcessSample] = []
    for proc in psutil.process_iter(["pid", "name", "status", "cpu_times", "memory_info"]):
        try:
            info = proc.info
            cpu_times = info.get("cpu_times")
            if cpu_times is None:
                continue
            mem_info = info.get("memory_info")
            seconds = float(cpu_times.user) + float(cpu_times.system)
            samples.append(
                ProcessSample(
                    pid=int(info.get("pid", proc.pid)),
                    name=info.get("name") or "?",
                    state=state_code(info.get("status")),
                    cpu_ticks=int(round(seconds * clock_ticks)),
                    rss=int(mem_info.rss) if mem_info else 0,
                )
            )
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            continue
    return samples


# ── Network interface selection ────────────────────────────────────────────

_LOOPBACK = {"lo", "lo0"}


def choose_iface(override: str = "") -> str | None:
    """Explicit override, else the first non-loopback interface."""
    if override:
        return override
    try:
        names = list(psutil.net_io_counters(pernic=True))
    except OSError:
        return None
    for name in names:
        if name not in _LOOPBACK:
            return name
    return None


def read_net(iface: str) -> NetCounters | None:
    try:
        counters = psutil.net_io_counters(pernic=True).get(iface)
    except OSError:
        return None
    if counters is None:
        return None
    return NetCounters(
        rx_bytes=counters.bytes_recv,
        tx_bytes=counters.bytes_sent,
        rx_errors=counters.errin,
        rx_drops=counters.dropin,
        tx_errors=counters.errout,
        tx_drops=counters.dropout,
    )


# ── Block device selection ─────────────────────────────────────────────────

# Prefix → score; first match wins, so longer prefixes come first.
_EXCLUDED_PREFIXES = ("loop", "ram", "dm-", "md", "zram", "sr")
_PREFERRED: tuple[tuple[str, int], ...] = (
    ("mmcblk0", 1000),
    ("nvme", 900),
    ("sd", 800),
)


def is_partition_name(name: str) -> bool:
    """sda1, mmcblk0p2, nvme0n1p3 — partitions, not whole disks."""
    if name.startswith("sd") and len(name) > 3 and name[2].isalpha():
        return name[3].isdigit()
    if name.startswith("mmcblk") or name.startswith("nvme"):
        p = name.find("p")
        return p >= 0 and p + 1 < len(name) and name[p + 1].isdigit()
    return False


def disk_score(name: str) -> int:
    """Static preference for picking the disk to graph; 0 = never."""
    if not name or is_partition_name(name):
        return 0
    if name.startswith(_EXCLUDED_PREFIXES):
        return 0
    for prefix, score in _PREFERRED:
        if name.startswith(prefix):
            return score
    if name == "vda":
        return 700
    return 100


def choose_disk(override: str = "") -> str | None:
    """Explicit override, else the highest scoring block device."""
    if override:
        return override
    try:
        names = list(psutil.disk_io_counters(perdisk=True) or {})
    except (OSError, RuntimeError):
        return None
    best, best_name = 0, None
    for name in names:
        score = disk_score(name)
        if score > best:
            best, best_name = score, name
    return best_name


def read_disk(dev: str) -> DiskCounters | None:
    try:
        counters = (psutil.disk_io_counters(perdisk=True) or {}).get(dev)
    except (OSError, RuntimeError):
        return None
    if counters is None:
        return None
    return DiskCounters(read_bytes=counters.read_bytes, write_bytes=counters.write_bytes)


# ── Root filesystem ────────────────────────────────────────────────────────


def read_fs_usage(path: str = "/") -> FsUsage | None:
    try:
        usage = psutil.disk_usage(path)
    except OSError:
        return None
    total = int(usage.total)
    used = max(0, total - int(usage.free))
    percent = used / total * 100.0 if total > 0 else 0.0

    inode_percent = 0.0
    try:
        st = os.statvfs(path)
    except (AttributeError, OSError):
        st = None
    if st is not None and st.f_files > 0:
        inode_used = max(0, st.f_files - st.f_favail)
        inode_percent = inode_used / st.f_files * 100.0

    return FsUsage(used=used, total=total, percent=percent, inode_percent=inode_percent)


# ── Host source ────────────────────────────────────────────────────────────


class HostSource:
    """Reads one :class:`RawSnapshot` per tick from the local host.

    Device choices and the vcgencmd probe result are kept per instance, so
    two sources never share state.
    """

    def __init__(self, iface: str = "", disk: str = "", fs_path: str = "/") -> None:
        self.iface = choose_iface(iface)
        self.disk = choose_disk(disk)
        self.fs_path = fs_path
        self.clock_ticks = clock_ticks_per_second()
        self._vcgencmd_available: bool | None = None  # None = not probed yet
        self._reported: set[str] = set()
        logger.info("network interface: %s", self.iface or "n/a")
        logger.info("block device: %s", self.disk or "n/a")

    def _missing(self, what: str) -> None:
        if what not in self._reported:
            self._reported.add(what)
            logger.info("%s unavailable; showing n/a", what)

    def read_throttled(self) -> int | None:
        """Query ``vcgencmd get_throttled``; stops trying after it is missing."""
        if self._vcgencmd_available is False:
            return None
        try:
            result = subprocess.run(
                ["vcgencmd", "get_throttled"],
                capture_output=True,
                text=True,
                timeout=2,
            )
        except (FileNotFoundError, PermissionError):
            self._vcgencmd_available = False
            return None
        except subprocess.TimeoutExpired:
            return None
        if result.returncode != 0:
            self._vcgencmd_available = False
            return None
        self._vcgencmd_available = True
        return parse_throttled(result.stdout)

    def sample(self) -> RawSnapshot:
        snap = RawSnapshot(timestamp=time.monotonic())
        snap.cpu = read_cpu()
        snap.load_avg = read_load()
        mem = read_memory()
        if mem is not None:
            snap.mem_total, snap.mem_available = mem
        snap.uptime = read_uptime()
        snap.temperature = read_temp()
        snap.throttled = self.read_throttled()
        if self.iface:
            snap.net = read_net(self.iface)
        if self.disk:
            snap.disk = read_disk(self.disk)
        snap.fs = read_fs_usage(self.fs_path)
        snap.processes = collect_processes(self.clock_ticks)

        for name, value in (
            ("cpu counters", snap.cpu),
            ("memory info", snap.mem_total),
            ("temperature sensor", snap.temperature),
            (f"interface {self.iface or '?'}", snap.net),
            (f"disk {self.disk or '?'}", snap.disk),
        ):
            if value is None:
                self._missing(name)
        return snap
