"""Rasterise one or two rolling histories onto a character pane.

Drawing happens on a :class:`Canvas`, an in-memory frame buffer for exactly
one pane.  The dashboard blits finished canvases into curses windows; nothing
here touches the terminal.  Every frame is drawn from scratch.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from spartamon.history import RingHistory

# Styles are a colour-pair id in the low byte plus flag bits.
BOLD = 0x100
DIM = 0x200

H_LINE = "─"
V_LINE = "│"
_CORNERS = ("┌", "┐", "└", "┘")

POINT_GLYPHS = ("o", "*")
OVERLAP_GLYPH = "X"

NO_OWNER = -1
MIN_PLOT_W = 10
MIN_PLOT_H = 4
MIN_SPAN = 0.0001


def style_pair(style: int) -> int:
    return style & 0xFF


# ── Canvas ─────────────────────────────────────────────────────────────────


class Canvas:
    """A ``height`` x ``width`` grid of cells: glyph, style and owning series."""

    def __init__(self, height: int, width: int) -> None:
        self.height = max(0, height)
        self.width = max(0, width)
        self.chars = [[" "] * self.width for _ in range(self.height)]
        self.styles = [[0] * self.width for _ in range(self.height)]
        self.owners = [[NO_OWNER] * self.width for _ in range(self.height)]

    def inside(self, y: int, x: int) -> bool:
        return 0 <= y < self.height and 0 <= x < self.width

    def put(self, y: int, x: int, ch: str, style: int = 0, owner: int = NO_OWNER) -> None:
        """Set one cell; writes outside the canvas are dropped."""
        if not self.inside(y, x):
            return
        self.chars[y][x] = ch
        self.styles[y][x] = style
        self.owners[y][x] = owner

    def text(self, y: int, x: int, s: str, style: int = 0) -> None:
        for i, ch in enumerate(s):
            if x + i >= self.width:
                break
            self.put(y, x + i, ch, style)

    def char_at(self, y: int, x: int) -> str:
        return self.chars[y][x] if self.inside(y, x) else ""

    def owner_at(self, y: int, x: int) -> int:
        return self.owners[y][x] if self.inside(y, x) else NO_OWNER

    def box(self, style: int = 0) -> None:
        h, w = self.height, self.width
        if h < 2 or w < 2:
            return
        for x in range(1, w - 1):
            self.put(0, x, H_LINE, style)
            self.put(h - 1, x, H_LINE, style)
        for y in range(1, h - 1):
            self.put(y, 0, V_LINE, style)
            self.put(y, w - 1, V_LINE, style)
        tl, tr, bl, br = _CORNERS
        self.put(0, 0, tl, style)
        self.put(0, w - 1, tr, style)
        self.put(h - 1, 0, bl, style)
        self.put(h - 1, w - 1, br, style)

    def row(self, y: int) -> str:
        return "".join(self.chars[y])

    def lines(self) -> list[str]:
        return [self.row(y) for y in range(self.height)]

    def runs(self, y: int) -> list[tuple[int, str, int]]:
        """``(x, text, style)`` runs of equal style along row *y*."""
        out: list[tuple[int, str, int]] = []
        chars, styles = self.chars[y], self.styles[y]
        start = 0
        for x in range(1, self.width + 1):
            if x == self.width or styles[x] != styles[start]:
                out.append((start, "".join(chars[start:x]), styles[start]))
                start = x
        return out


# ── Graphs ─────────────────────────────────────────────────────────────────


@dataclass(slots=True, frozen=True)
class Series:
    history: RingHistory
    label: str = ""
    style: int = 0


def value_row(value: float, vmin: float, span: float, bottom: int, plot_h: int) -> int:
    """Canvas row for *value*; out-of-domain values saturate at the edges."""
    t = (value - vmin) / span
    t = min(1.0, max(0.0, t))
    return bottom - int(t * (plot_h - 1) + 0.5)


def _mark(canvas: Canvas, y: int, x: int, glyph: str, style: int, series: int) -> None:
    if series > 0 and canvas.owner_at(y, x) == 0:
        glyph = OVERLAP_GLYPH
    canvas.put(y, x, glyph, style, series)


def _plot(
    canvas: Canvas,
    values: list[float],
    series: int,
    style: int,
    vmin: float,
    span: float,
) -> None:
    x0, bottom = 1, canvas.height - 2
    plot_h = canvas.height - 2
    point = POINT_GLYPHS[series]
    prev_y: int | None = None
    for col, value in enumerate(values):
        x = x0 + col
        y = value_row(value, vmin, span, bottom, plot_h)
        _mark(canvas, y, x, point, style, series)
        if prev_y is not None and abs(y - prev_y) > 1:
            step = 1 if y > prev_y else -1
            for yy in range(prev_y + step, y, step):
                _mark(canvas, yy, x, V_LINE, style, series)
        prev_y = y


def _fmt_value(value: float, unit: str) -> str:
    return f"{value:.1f}{unit}"


def draw_graph(
    canvas: Canvas,
    title: str,
    series: Sequence[Series],
    vmin: float,
    vmax: float,
    unit: str = "",
    extra: str = "",
    count: int | None = None,
) -> None:
    """Draw a bordered time-series graph of one or two histories.

    The newest sample sits in the right-most plotted column; at most one
    sample per interior column is shown.  With two series the second is drawn
    on top and marks cells it shares with the first using ``X``.
    """
    if not 1 <= len(series) <= 2:
        raise ValueError(f"draw_graph takes one or two series, got {len(series)}")

    h, w = canvas.height, canvas.width
    canvas.box()
    plot_w, plot_h = w - 2, h - 2
    if plot_w < MIN_PLOT_W or plot_h < MIN_PLOT_H:
        return

    canvas.text(0, 2, f" {title} ", BOLD)
    if len(series) == 1:
        top = _fmt_value(series[0].history.latest(), unit)
    else:
        top = "  ".join(
            f"{s.label} {_fmt_value(s.history.latest(), unit)}" for s in series
        )
    canvas.text(0, max(2, w - len(top) - 2), top)

    if extra and h >= 6:
        canvas.text(1, 2, extra[: max(0, w - 4)])

    mid_y = 1 + plot_h // 2
    for x in range(1, w - 1):
        canvas.put(mid_y, x, H_LINE, DIM)

    span = vmax - vmin
    if span <= MIN_SPAN:
        span = 1.0

    n = min(plot_w, min(len(s.history) for s in series))
    if count is not None:
        n = min(n, count)
    for idx, s in enumerate(series):
        _plot(canvas, s.history.last_n(n), idx, s.style, vmin, span)
