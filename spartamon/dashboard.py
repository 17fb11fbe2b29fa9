"""Interactive terminal dashboard — spartamon's live host monitor.

Samples CPU, memory, temperature, disk and network counters every tick,
keeps a rolling history of each derived metric and draws them as time-series
graphs next to a ranked process table, in a 3x2 curses grid that follows
terminal resizes.

Usage:
    spartamon
    spartamon --interval 250 --config path/to/config.toml --log-file /tmp/spartamon.log
"""

from __future__ import annotations

import argparse
import curses
import locale
import logging
import sys
import time
from collections.abc import Callable, Mapping
from enum import Enum
from pathlib import Path
from typing import Any

import psutil

from spartamon.config import clamp_interval, dump_default_config, load_config
from spartamon.derive import DerivedMetrics, MetricDeriver
from spartamon.graph import BOLD, DIM, Canvas, Series, draw_graph, style_pair
from spartamon.history import HISTORY_SIZE, RingHistory
from spartamon.layout import MIN_COLS, MIN_LINES, Layout, LayoutEngine
from spartamon.proctable import EWMA_ALPHA, ProcessRecord, ProcessTable
from spartamon.sources import FsUsage, HostSource, RawSnapshot, throttled_summary

logger = logging.getLogger(__name__)

# ── Constants ──────────────────────────────────────────────────────────────

TITLE = "SPARTA//MON"
STREAMS = ("cpu", "mem", "temp", "disk_r", "disk_w", "net_rx", "net_tx")

# Curses colour-pair IDs
C_TITLE = 1
C_CYAN = 2
C_GREEN = 3
C_YELLOW = 4
C_TEXT = 5
C_HOT = 6
C_MAGENTA = 7

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


# ── Colour helpers ─────────────────────────────────────────────────────────


def _init_colors() -> bool:
    if not curses.has_colors():
        return False
    curses.start_color()
    curses.use_default_colors()
    curses.init_pair(C_TITLE, curses.COLOR_MAGENTA, -1)
    curses.init_pair(C_CYAN, curses.COLOR_CYAN, -1)
    curses.init_pair(C_GREEN, curses.COLOR_GREEN, -1)
    curses.init_pair(C_YELLOW, curses.COLOR_YELLOW, -1)
    curses.init_pair(C_TEXT, curses.COLOR_WHITE, -1)
    curses.init_pair(C_HOT, curses.COLOR_RED, -1)
    curses.init_pair(C_MAGENTA, curses.COLOR_MAGENTA, -1)
    return True


# ── Formatting helpers ─────────────────────────────────────────────────────


def fmt_bytes(n: int | float) -> str:
    """Compact byte count: ``512.0B``, ``1.5KB``, ``3.2GB``."""
    v = float(n)
    unit = "B"
    for bigger in ("KB", "MB", "GB"):
        if v < 1024:
            break
        v /= 1024
        unit = bigger
    return f"{v:.1f}{unit}"


def fmt_uptime(seconds: float) -> str:
    s = int(seconds)
    days, s = divmod(s, 86400)
    hours, s = divmod(s, 3600)
    minutes, s = divmod(s, 60)
    return f"{days}d {hours:02d}:{minutes:02d}:{s:02d}"


def fmt_fs(fs: FsUsage | None) -> str:
    if fs is None:
        return "FS / n/a"
    return (
        f"FS / {fs.percent:.1f}% ({fmt_bytes(fs.used)}/{fmt_bytes(fs.total)})"
        f" INO {fs.inode_percent:.1f}%"
    )


# ── Per-tick state ─────────────────────────────────────────────────────────


class Monitor:
    """Histories, counter state and process table, advanced once per tick."""

    def __init__(
        self,
        history_size: int = HISTORY_SIZE,
        clock_ticks: int = 100,
        alpha: float = EWMA_ALPHA,
    ) -> None:
        self.histories = {name: RingHistory(history_size) for name in STREAMS}
        self.deriver = MetricDeriver()
        self.procs = ProcessTable(clock_ticks=clock_ticks, alpha=alpha)
        self.snapshot: RawSnapshot | None = None
        self.metrics = DerivedMetrics()
        self.ticks = 0

    def history(self, name: str) -> RingHistory:
        return self.histories[name]

    def tick(self, snap: RawSnapshot) -> DerivedMetrics:
        """Advance one tick.

        A failed snapshot pushes zeros and leaves the counter baselines and
        the process table untouched, so the next good tick continues from
        the last good one.
        """
        if snap.failed:
            m = DerivedMetrics()
        else:
            m = self.deriver.derive(snap)
        h = self.histories
        h["cpu"].push(m.cpu_percent)
        h["mem"].push(m.mem_percent)
        h["temp"].push(m.temperature if m.temperature is not None else 0.0)
        h["disk_r"].push(m.disk_read_mbs)
        h["disk_w"].push(m.disk_write_mbs)
        h["net_rx"].push(m.net_rx_mbs)
        h["net_tx"].push(m.net_tx_mbs)

        self.metrics = m
        self.ticks += 1
        if snap.failed:
            return m

        self.procs.begin_tick(m.dt)
        for p in snap.processes:
            self.procs.observe(p.pid, p.name, p.state, p.cpu_ticks, p.rss)
        self.procs.end_tick()

        self.snapshot = snap
        return m


# ── Value domains ──────────────────────────────────────────────────────────


def temp_domain(
    temperature: float | None,
    scale: Mapping[str, float],
) -> tuple[float, float]:
    """Fixed 20-90 °C band, widened to keep the current reading ±margin visible."""
    lo, hi = float(scale["min"]), float(scale["max"])
    if temperature is None:
        return lo, hi
    margin = float(scale["margin"])
    lo = max(0.0, min(lo, temperature - margin))
    hi = max(hi, temperature + margin)
    return lo, hi


def io_domain(a: RingHistory, b: RingHistory) -> tuple[float, float]:
    return 0.0, max(1.0, max(a.latest(), b.latest()) * 1.5)


# ── Pane renderers (pure: canvas in, canvas out) ───────────────────────────


def render_header(
    canvas: Canvas,
    monitor: Monitor,
    interval_ms: int,
    iface: str | None,
    disk: str | None,
) -> None:
    canvas.text(0, 2, TITLE, C_TITLE | BOLD)
    hint = f"q quit | +/- speed | arrows scroll | c color | {interval_ms}ms"
    canvas.text(0, 16, hint, C_TEXT)

    m = monitor.metrics
    snap = monitor.snapshot
    load = "n/a"
    if m.load_avg is not None:
        load = f"{m.load_avg[0]:.2f} {m.load_avg[1]:.2f} {m.load_avg[2]:.2f}"
    temp = f"{m.temperature:.1f}C" if m.temperature is not None else "n/a"
    fs = fmt_fs(snap.fs if snap else None)
    pwr = throttled_summary(snap.throttled if snap else None)
    up = fmt_uptime(snap.uptime) if snap and snap.uptime is not None else "n/a"

    line = (
        f"CPU {m.cpu_percent:.1f}% MEM {m.mem_percent:.1f}% LOAD {load} TEMP {temp}"
        f"  UP {up}  {fs}  {pwr}  IF {iface or 'n/a'} DK {disk or 'n/a'}"
    )
    canvas.text(1, 2, line[: max(0, canvas.width - 4)], C_TEXT)


def task_rows_visible(height: int) -> int:
    """Rows left for processes after border, column header and footer."""
    return max(0, height - 4)


def clamp_scroll(scroll: int, total: int, visible: int) -> int:
    return max(0, min(scroll, max(0, total - visible)))


def format_task(rec: ProcessRecord, width: int) -> str:
    name = rec.name[: max(0, width - 30)]
    return (
        f"{rec.pid:<6d} {rec.cpu_avg:4.1f} {rec.cpu_cur:4.1f} "
        f"{fmt_bytes(rec.rss):<7s} {rec.state} {name}"
    )


def render_tasks(
    canvas: Canvas,
    rows: list[ProcessRecord],
    scroll: int,
    hot: float,
) -> int:
    """Draw the process table; returns the scroll offset actually used."""
    h, w = canvas.height, canvas.width
    canvas.box()
    canvas.text(0, 2, " TASKS (avg CPU) ", BOLD)
    canvas.text(1, 2, "PID    AVG  CUR   RSS     S CMD", C_TEXT | BOLD)

    visible = task_rows_visible(h)
    scroll = clamp_scroll(scroll, len(rows), visible)
    limit = max(0, w - 3)
    for i, rec in enumerate(rows[scroll : scroll + visible]):
        style = C_HOT | BOLD if rec.cpu_cur >= hot else C_TEXT
        canvas.text(2 + i, 2, format_task(rec, w)[:limit], style)

    max_scroll = max(0, len(rows) - visible)
    footer = f"tasks:{len(rows)} scroll:{scroll}/{max_scroll}  (100%=1 core)"
    if h >= 4:
        canvas.text(h - 2, 2, footer[:limit], C_TEXT | DIM)
    return scroll


def render_graphs(
    canvases: Mapping[str, Canvas],
    monitor: Monitor,
    config: Mapping[str, Any],
    iface: str | None,
    disk: str | None,
) -> None:
    h = monitor.histories
    m = monitor.metrics

    draw_graph(canvases["cpu-graph"], "CPU % (time)", [Series(h["cpu"], style=C_CYAN)], 0.0, 100.0, "%")
    draw_graph(canvases["mem-graph"], "MEM % (time)", [Series(h["mem"], style=C_GREEN)], 0.0, 100.0, "%")

    tmin, tmax = temp_domain(m.temperature, config["temp_scale"])
    is_hot = m.temperature is not None and m.temperature >= float(config["temp_hot"])
    draw_graph(
        canvases["temp-graph"],
        "TEMP C (time)",
        [Series(h["temp"], style=C_HOT if is_hot else C_YELLOW)],
        tmin,
        tmax,
        "C",
    )

    vmin, vmax = io_domain(h["disk_r"], h["disk_w"])
    draw_graph(
        canvases["disk-graph"],
        "DISK I/O (time)",
        [Series(h["disk_r"], "RD", C_CYAN), Series(h["disk_w"], "WR", C_MAGENTA)],
        vmin,
        vmax,
        "MB/s",
        extra=f"R/W MB/s (dev: {disk or 'n/a'})",
    )

    vmin, vmax = io_domain(h["net_rx"], h["net_tx"])
    draw_graph(
        canvases["net-graph"],
        "NET I/O (time)",
        [Series(h["net_rx"], "RX", C_CYAN), Series(h["net_tx"], "TX", C_MAGENTA)],
        vmin,
        vmax,
        "MB/s",
        extra=(
            f"errs/drops Δ rx {m.rx_errors}/{m.rx_drops} "
            f"tx {m.tx_errors}/{m.tx_drops} (if: {iface or 'n/a'})"
        ),
    )


# ── Curses drawing primitives ──────────────────────────────────────────────


def _safe(win: curses.window, *args: Any) -> None:
    """addstr wrapper that swallows out-of-bounds errors."""
    try:
        win.addstr(*args)
    except curses.error:
        pass


# ── Tick loop ──────────────────────────────────────────────────────────────


class State(Enum):
    RUNNING = "running"
    RELAYOUT = "relayout"
    STOPPED = "stopped"


class Dashboard:
    """Single-threaded tick loop driving the curses screen."""

    def __init__(
        self,
        stdscr: curses.window,
        config: Mapping[str, Any],
        source: HostSource,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.stdscr = stdscr
        self.config = config
        self.source = source
        self._sleep = sleep
        self.state = State.RUNNING
        self.interval_ms = clamp_interval(config, config["interval_ms"])
        self.use_color = True
        self.scroll = 0
        self.monitor = Monitor(
            history_size=int(config["history_size"]),
            clock_ticks=source.clock_ticks,
            alpha=float(config["ewma_alpha"]),
        )
        self.engine = LayoutEngine()
        self.header_win: curses.window | None = None
        self.windows: dict[str, curses.window] = {}

    # ── input ──────────────────────────────────────────────────────────

    def handle_key(self, key: int) -> None:
        step = int(self.config["interval_step_ms"])
        page = int(self.config["page_rows"])
        if key in (ord("q"), ord("Q")):
            self.state = State.STOPPED
        elif key in (ord("+"), ord("=")):
            self.interval_ms = clamp_interval(self.config, self.interval_ms - step)
        elif key in (ord("-"), ord("_")):
            self.interval_ms = clamp_interval(self.config, self.interval_ms + step)
        elif key in (ord("c"), ord("C")):
            self.use_color = not self.use_color
        elif key == curses.KEY_UP:
            self.scroll = max(0, self.scroll - 1)
        elif key == curses.KEY_DOWN:
            self.scroll += 1
        elif key == curses.KEY_PPAGE:
            self.scroll = max(0, self.scroll - page)
        elif key == curses.KEY_NPAGE:
            self.scroll += page
        elif key == curses.KEY_HOME:
            self.scroll = 0
        elif key == curses.KEY_RESIZE:
            self.engine.resized.set()

    # ── surfaces ───────────────────────────────────────────────────────

    def _release(self) -> None:
        self.header_win = None
        self.windows.clear()

    def relayout(self, lines: int, cols: int) -> Layout:
        self.state = State.RELAYOUT
        self._release()
        self.stdscr.clear()
        layout = self.engine.relayout(lines, cols)
        if layout.fits:
            r = layout.header
            self.header_win = curses.newwin(r.h, r.w, r.y, r.x)
            for name, r in layout.panes.items():
                self.windows[name] = curses.newwin(r.h, r.w, r.y, r.x)
        self.scroll = 0
        self.state = State.RUNNING
        logger.debug("layout %dx%d fits=%s", cols, lines, layout.fits)
        return layout

    def _attr(self, style: int) -> int:
        attr = 0
        if self.use_color and style_pair(style):
            attr |= curses.color_pair(style_pair(style))
        if style & BOLD:
            attr |= curses.A_BOLD
        if style & DIM:
            attr |= curses.A_DIM
        return attr

    def _blit(self, win: curses.window, canvas: Canvas) -> None:
        win.erase()
        for y in range(canvas.height):
            for x, text, style in canvas.runs(y):
                _safe(win, y, x, text, self._attr(style))
        win.noutrefresh()

    # ── frame ──────────────────────────────────────────────────────────

    def render(self) -> None:
        layout = self.engine.layout
        if layout is None:
            return
        if not layout.fits or self.header_win is None:
            self.stdscr.erase()
            _safe(self.stdscr, 0, 0, f"Terminal too small (need {MIN_COLS}x{MIN_LINES}+)")
            self.stdscr.noutrefresh()
            curses.doupdate()
            return

        header = Canvas(layout.header.h, layout.header.w)
        render_header(header, self.monitor, self.interval_ms, self.source.iface, self.source.disk)
        self._blit(self.header_win, header)

        canvases = {name: Canvas(r.h, r.w) for name, r in layout.panes.items()}
        render_graphs(canvases, self.monitor, self.config, self.source.iface, self.source.disk)
        self.scroll = render_tasks(
            canvases["tasks"],
            self.monitor.procs.ranked(),
            self.scroll,
            float(self.config["task_hot"]),
        )
        for name, canvas in canvases.items():
            self._blit(self.windows[name], canvas)

        curses.doupdate()

    def _sample(self) -> RawSnapshot:
        try:
            return self.source.sample()
        except (OSError, psutil.Error) as e:
            logger.warning("sampling failed, no data this tick: %s", e)
            return RawSnapshot(timestamp=time.monotonic(), failed=True)

    def tick(self) -> None:
        """One full tick; a quit key stops the loop after this tick completes."""
        lines, cols = self.stdscr.getmaxyx()
        if self.engine.needs_relayout(lines, cols):
            self.relayout(lines, cols)

        key = self.stdscr.getch()
        if key != -1:
            self.handle_key(key)

        self.monitor.tick(self._sample())
        self.render()

    def run(self) -> None:
        try:
            while self.state is not State.STOPPED:
                self.tick()
                if self.state is not State.STOPPED:
                    self._sleep(self.interval_ms / 1000.0)
        finally:
            self.state = State.STOPPED
            self._release()


def _dashboard_main(stdscr: curses.window, config: dict[str, Any]) -> None:
    has_color = _init_colors()
    try:
        curses.curs_set(0)
    except curses.error:
        pass
    stdscr.nodelay(True)
    stdscr.keypad(True)

    source = HostSource(iface=config["iface"], disk=config["disk"])
    dashboard = Dashboard(stdscr, config, source)
    dashboard.use_color = has_color
    dashboard.run()


# ── CLI entry point ────────────────────────────────────────────────────────


def setup_logging(log_file: str | Path | None) -> None:
    """Log to *log_file* when given; otherwise discard (the screen is curses-owned)."""
    root = logging.getLogger("spartamon")
    if log_file:
        logging.basicConfig(
            filename=str(log_file),
            level=logging.INFO,
            format=LOG_FORMAT,
        )
    else:
        root.addHandler(logging.NullHandler())


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        description="Live full-screen host monitor with time-series graphs.",
    )
    parser.add_argument(
        "--interval",
        type=int,
        default=None,
        metavar="MS",
        help="Milliseconds between samples (default: 500, range 100-2000)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        metavar="PATH",
        help="Path to TOML config file",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        metavar="PATH",
        help="Write diagnostic log messages to this file",
    )
    parser.add_argument(
        "--dump-config",
        action="store_true",
        help="Print the default configuration as TOML and exit",
    )
    args = parser.parse_args(argv)

    if args.dump_config:
        print(dump_default_config(), end="")
        return

    config = load_config(args.config)
    if args.interval is not None:
        config["interval_ms"] = clamp_interval(config, args.interval)
    if args.log_file is not None:
        config["log_file"] = str(args.log_file)
    setup_logging(config["log_file"])

    try:
        locale.setlocale(locale.LC_ALL, "")
    except locale.Error as e:
        logger.warning("cannot set locale from environment: %s", e)
    try:
        curses.wrapper(_dashboard_main, config)
    except KeyboardInterrupt:
        pass
    except curses.error as e:
        logger.error("cannot initialise terminal: %s", e)
        print(f"spartamon: cannot initialise terminal: {e}", file=sys.stderr)
        raise SystemExit(1) from e


if __name__ == "__main__":
    main()
