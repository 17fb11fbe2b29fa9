"""Tests for spartamon.sources (psutil and subprocess mocked)."""

from __future__ import annotations

import subprocess
from collections import namedtuple
from unittest.mock import MagicMock, PropertyMock, patch

import psutil
import pytest

from spartamon.sources import (
    HostSource,
    choose_disk,
    choose_iface,
    collect_processes,
    disk_score,
    is_partition_name,
    parse_throttled,
    read_cpu,
    read_disk,
    read_fs_usage,
    read_net,
    read_temp,
    state_code,
    throttled_summary,
)

_CpuTimes = namedtuple(
    "_CpuTimes", "user nice system idle iowait irq softirq steal guest guest_nice"
)
_NetIO = namedtuple(
    "_NetIO", "bytes_sent bytes_recv packets_sent packets_recv errin errout dropin dropout"
)
_DiskIO = namedtuple("_DiskIO", "read_count write_count read_bytes write_bytes")
_Usage = namedtuple("_Usage", "total used free percent")

# ── device selection ───────────────────────────────────────────────────────


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("sda", False),
        ("sda1", True),
        ("sdb12", True),
        ("mmcblk0", False),
        ("mmcblk0p2", True),
        ("nvme0n1", False),
        ("nvme0n1p3", True),
        ("vda", False),
    ],
)
def test_is_partition_name(name: str, expected: bool) -> None:
    assert is_partition_name(name) is expected


@pytest.mark.parametrize(
    ("name", "score"),
    [
        ("mmcblk0", 1000),
        ("nvme0n1", 900),
        ("sda", 800),
        ("vda", 700),
        ("xvda", 100),
        ("sda1", 0),
        ("loop0", 0),
        ("ram0", 0),
        ("dm-0", 0),
        ("md127", 0),
        ("zram0", 0),
        ("sr0", 0),
        ("", 0),
    ],
)
def test_disk_score(name: str, score: int) -> None:
    assert disk_score(name) == score


class TestChooseDisk:
    def test_override_wins(self) -> None:
        assert choose_disk("sdz") == "sdz"

    @patch("spartamon.sources.psutil.disk_io_counters")
    def test_highest_score(self, mock_io: MagicMock) -> None:
        mock_io.return_value = {"loop0": None, "sda": None, "sda1": None, "nvme0n1": None}
        assert choose_disk() == "nvme0n1"

    @patch("spartamon.sources.psutil.disk_io_counters")
    def test_only_excluded_devices(self, mock_io: MagicMock) -> None:
        mock_io.return_value = {"loop0": None, "zram0": None}
        assert choose_disk() is None

    @patch("spartamon.sources.psutil.disk_io_counters", return_value=None)
    def test_no_counters(self, mock_io: MagicMock) -> None:
        assert choose_disk() is None


class TestChooseIface:
    def test_override_wins(self) -> None:
        assert choose_iface("wlan0") == "wlan0"

    @patch("spartamon.sources.psutil.net_io_counters")
    def test_first_non_loopback(self, mock_io: MagicMock) -> None:
        mock_io.return_value = {"lo": None, "eth0": None, "wlan0": None}
        assert choose_iface() == "eth0"

    @patch("spartamon.sources.psutil.net_io_counters", return_value={"lo": None})
    def test_loopback_only(self, mock_io: MagicMock) -> None:
        assert choose_iface() is None


# ── counter readers ────────────────────────────────────────────────────────


@patch("spartamon.sources.psutil.cpu_times")
def test_read_cpu_counts_iowait_as_idle(mock_times: MagicMock) -> None:
    mock_times.return_value = _CpuTimes(10, 1, 5, 80, 4, 0, 0, 0, 7, 0)
    cpu = read_cpu()
    assert cpu is not None
    assert cpu.total == pytest.approx(100.0)  # guest time is already in user
    assert cpu.idle == pytest.approx(84.0)


@patch("spartamon.sources.psutil.net_io_counters")
def test_read_net(mock_io: MagicMock) -> None:
    mock_io.return_value = {"eth0": _NetIO(200, 100, 0, 0, 1, 2, 3, 4)}
    net = read_net("eth0")
    assert net is not None
    assert (net.rx_bytes, net.tx_bytes) == (100, 200)
    assert (net.rx_errors, net.rx_drops, net.tx_errors, net.tx_drops) == (1, 3, 2, 4)
    assert read_net("wlan9") is None


@patch("spartamon.sources.psutil.disk_io_counters")
def test_read_disk(mock_io: MagicMock) -> None:
    mock_io.return_value = {"sda": _DiskIO(1, 2, 4096, 8192)}
    disk = read_disk("sda")
    assert disk is not None
    assert (disk.read_bytes, disk.write_bytes) == (4096, 8192)
    assert read_disk("sdb") is None


@patch("spartamon.sources.os.statvfs")
@patch("spartamon.sources.psutil.disk_usage")
def test_read_fs_usage(mock_usage: MagicMock, mock_statvfs: MagicMock) -> None:
    mock_usage.return_value = _Usage(total=1000, used=600, free=250, percent=70.6)
    mock_statvfs.return_value = MagicMock(f_files=200, f_favail=150)
    fs = read_fs_usage("/")
    assert fs is not None
    assert fs.used == 750
    assert fs.percent == pytest.approx(75.0)
    assert fs.inode_percent == pytest.approx(25.0)


@patch("spartamon.sources.psutil.disk_usage", side_effect=OSError)
def test_read_fs_usage_unavailable(mock_usage: MagicMock) -> None:
    assert read_fs_usage("/") is None


class TestReadTemp:
    @patch("spartamon.sources.psutil.sensors_temperatures")
    def test_pi_thermal(self, mock_temps: MagicMock) -> None:
        mock_temps.return_value = {
            "acpitz": [MagicMock(current=40.0)],
            "cpu_thermal": [MagicMock(current=61.5)],
        }
        assert read_temp() == 61.5

    @patch("spartamon.sources.psutil.sensors_temperatures")
    def test_fallback_to_first_sensor(self, mock_temps: MagicMock) -> None:
        mock_temps.return_value = {"nvme": [MagicMock(current=38.0)]}
        assert read_temp() == 38.0

    @patch("spartamon.sources.psutil.sensors_temperatures", return_value={})
    def test_no_sensors(self, mock_temps: MagicMock) -> None:
        assert read_temp() is None

    @patch("spartamon.sources.psutil.sensors_temperatures", side_effect=AttributeError)
    def test_not_supported(self, mock_temps: MagicMock) -> None:
        assert read_temp() is None


# ── throttling ─────────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    ("output", "expected"),
    [("throttled=0x0\n", 0), ("throttled=0x50005\n", 0x50005), ("garbage", None), ("0x", None)],
)
def test_parse_throttled(output: str, expected: int | None) -> None:
    assert parse_throttled(output) == expected


@pytest.mark.parametrize(
    ("flags", "expected"),
    [
        (None, "PWR n/a"),
        (0, "PWR OK"),
        (0x1, "PWR UV"),
        (0x5, "PWR UV THR"),
        (0x50000, "PWR OK |H:UV THR"),
        (0x50005, "PWR UV THR |H:UV THR"),
        (0x8000A, "PWR CAP TMP |H:TMP"),
    ],
)
def test_throttled_summary(flags: int | None, expected: str) -> None:
    assert throttled_summary(flags) == expected


# ── processes ──────────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    ("status", "code"),
    [("running", "R"), ("sleeping", "S"), ("disk-sleep", "D"), ("zombie", "Z"), (None, "?"), ("mystery", "M")],
)
def test_state_code(status: str | None, code: str) -> None:
    assert state_code(status) == code


@pytest.mark.parametrize(
    "name", sorted(n for n in dir(psutil) if n.startswith("STATUS_"))
)
def test_state_code_covers_installed_psutil(name: str) -> None:
    code = state_code(getattr(psutil, name))
    assert len(code) == 1
    assert code != "?"


class TestCollectProcesses:
    def _proc(self, **info: object) -> MagicMock:
        proc = MagicMock()
        proc.info = info
        return proc

    @patch("spartamon.sources.psutil.process_iter")
    def test_converts_seconds_to_ticks(self, mock_iter: MagicMock) -> None:
        mock_iter.return_value = [
            self._proc(
                pid=42,
                name="python",
                status="running",
                cpu_times=MagicMock(user=1.5, system=0.25),
                memory_info=MagicMock(rss=8192),
            )
        ]
        (sample,) = collect_processes(clock_ticks=100)
        assert sample.pid == 42
        assert sample.state == "R"
        assert sample.cpu_ticks == 175
        assert sample.rss == 8192

    @patch("spartamon.sources.psutil.process_iter")
    def test_skips_unreadable(self, mock_iter: MagicMock) -> None:
        gone = MagicMock()
        type(gone).info = PropertyMock(side_effect=psutil.NoSuchProcess(1))
        mock_iter.return_value = [
            gone,
            self._proc(pid=2, name=None, status=None, cpu_times=None, memory_info=None),
            self._proc(
                pid=3,
                name=None,
                status="sleeping",
                cpu_times=MagicMock(user=0.0, system=0.0),
                memory_info=None,
            ),
        ]
        samples = collect_processes(clock_ticks=100)
        assert [s.pid for s in samples] == [3]
        assert samples[0].name == "?"
        assert samples[0].rss == 0


# ── HostSource ─────────────────────────────────────────────────────────────


@pytest.fixture
def source() -> HostSource:
    with (
        patch("spartamon.sources.choose_iface", return_value="eth0"),
        patch("spartamon.sources.choose_disk", return_value="sda"),
    ):
        return HostSource()


class TestHostSource:
    def test_device_choice(self, source: HostSource) -> None:
        assert source.iface == "eth0"
        assert source.disk == "sda"
        assert source.clock_ticks > 0

    @patch("spartamon.sources.subprocess.run")
    def test_throttled_read(self, mock_run: MagicMock, source: HostSource) -> None:
        mock_run.return_value = MagicMock(returncode=0, stdout="throttled=0x4\n")
        assert source.read_throttled() == 4

    @patch("spartamon.sources.subprocess.run", side_effect=FileNotFoundError)
    def test_missing_vcgencmd_probed_once(self, mock_run: MagicMock, source: HostSource) -> None:
        assert source.read_throttled() is None
        assert source.read_throttled() is None
        mock_run.assert_called_once()

    @patch(
        "spartamon.sources.subprocess.run",
        side_effect=subprocess.TimeoutExpired("vcgencmd", 2),
    )
    def test_timeout_retried_next_tick(self, mock_run: MagicMock, source: HostSource) -> None:
        source.read_throttled()
        source.read_throttled()
        assert mock_run.call_count == 2

    def test_sample_tolerates_missing(self, source: HostSource) -> None:
        source._vcgencmd_available = False
        with patch.multiple(
            "spartamon.sources",
            read_cpu=MagicMock(return_value=None),
            read_load=MagicMock(return_value=(1.0, 0.5, 0.25)),
            read_memory=MagicMock(return_value=(100, 40)),
            read_uptime=MagicMock(return_value=12.0),
            read_temp=MagicMock(return_value=None),
            read_net=MagicMock(return_value=None),
            read_disk=MagicMock(return_value=None),
            read_fs_usage=MagicMock(return_value=None),
            collect_processes=MagicMock(return_value=[]),
        ):
            snap = source.sample()
        assert snap.cpu is None
        assert snap.net is None
        assert snap.temperature is None
        assert (snap.mem_total, snap.mem_available) == (100, 40)
        assert snap.load_avg == (1.0, 0.5, 0.25)
        assert snap.throttled is None
        assert snap.processes == []
