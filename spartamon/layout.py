"""Viewport partitioning: a header band over a 3x2 grid of panes.

::

    +---------------------------+
    | header (2 rows)           |
    +-------------+-------------+
    | cpu-graph   | mem-graph   |
    +-------------+-------------+
    | temp-graph  | disk-graph  |
    +-------------+-------------+
    | tasks       | net-graph   |
    +-------------+-------------+

Integer-division remainders go to the last row and the right column, so the
grid tiles the area under the header exactly.
"""

from __future__ import annotations

from dataclasses import dataclass

HEADER_H = 2
MIN_PANE_H = 6
MIN_PANE_W = 20
MIN_LINES = HEADER_H + 3 * MIN_PANE_H
MIN_COLS = 2 * MIN_PANE_W

GRID: tuple[tuple[str, str], ...] = (
    ("cpu-graph", "mem-graph"),
    ("temp-graph", "disk-graph"),
    ("tasks", "net-graph"),
)
PANE_NAMES: tuple[str, ...] = tuple(name for row in GRID for name in row)


@dataclass(slots=True, frozen=True)
class Rect:
    y: int
    x: int
    h: int
    w: int

    @property
    def bottom(self) -> int:
        return self.y + self.h

    @property
    def right(self) -> int:
        return self.x + self.w

    @property
    def area(self) -> int:
        return self.h * self.w

    def overlaps(self, other: Rect) -> bool:
        return (
            self.y < other.bottom
            and other.y < self.bottom
            and self.x < other.right
            and other.x < self.right
        )


@dataclass(slots=True, frozen=True)
class Layout:
    lines: int
    cols: int
    header: Rect
    panes: dict[str, Rect]
    # False when the viewport is below MIN_LINES x MIN_COLS; the rects are then
    # sized for the minimum viewport and must not be drawn.
    fits: bool

    def pane(self, name: str) -> Rect:
        return self.panes[name]


def compute_layout(lines: int, cols: int) -> Layout:
    eff_lines = max(lines, MIN_LINES)
    eff_cols = max(cols, MIN_COLS)

    avail = eff_lines - HEADER_H
    row_h = max(MIN_PANE_H, avail // 3)
    heights = (row_h, row_h, avail - 2 * row_h)

    left_w = max(MIN_PANE_W, eff_cols // 2)
    widths = (left_w, eff_cols - left_w)

    panes: dict[str, Rect] = {}
    y = HEADER_H
    for row, h in zip(GRID, heights):
        x = 0
        for name, w in zip(row, widths):
            panes[name] = Rect(y=y, x=x, h=h, w=w)
            x += w
        y += h

    return Layout(
        lines=lines,
        cols=cols,
        header=Rect(y=0, x=0, h=HEADER_H, w=eff_cols),
        panes=panes,
        fits=lines >= MIN_LINES and cols >= MIN_COLS,
    )


class ResizeFlag:
    """Single-slot "dirty" notification, set asynchronously, drained per tick."""

    __slots__ = ("_pending",)

    def __init__(self) -> None:
        self._pending = False

    def set(self) -> None:
        self._pending = True

    def consume(self) -> bool:
        pending, self._pending = self._pending, False
        return pending


class LayoutEngine:
    """Caches the current layout and recomputes it on resize."""

    def __init__(self) -> None:
        self.layout: Layout | None = None
        self.resized = ResizeFlag()

    def needs_relayout(self, lines: int, cols: int) -> bool:
        """Drains the resize flag; true if it was set or the size changed."""
        flagged = self.resized.consume()
        if self.layout is None:
            return True
        return flagged or (lines, cols) != (self.layout.lines, self.layout.cols)

    def relayout(self, lines: int, cols: int) -> Layout:
        self.layout = compute_layout(lines, cols)
        return self.layout
