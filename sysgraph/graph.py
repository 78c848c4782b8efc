"""Text-mode time-series graphs.

Two layouts are supported:

* ``render_percent``: one series on a fixed 0-100 axis.
* ``render_overlap``: two series on a shared, dynamically scaled axis where
  cells filled by both series form a third "overlap" category.

Renderers return a :class:`Graph` of cell categories rather than finished
strings so the curses layer can colour each category; ``Graph.lines()``
gives the plain-text rendition.
"""

from __future__ import annotations

import math
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from itertools import zip_longest

# Cell categories
EMPTY = 0
SERIES_A = 1
SERIES_B = 2
OVERLAP = 3

BLOCK = "█"

# Plain-text glyph per cell category; curses draws BLOCK in colour instead
GLYPHS: dict[int, str] = {EMPTY: " ", SERIES_A: BLOCK, SERIES_B: "▒", OVERLAP: "▓"}

PERCENT_LABEL_WIDTH = 3
OVERLAP_LABEL_WIDTH = 5


@dataclass
class Graph:
    """A rendered graph: one label and one row of cell categories per line."""

    labels: list[str]
    cells: list[list[int]]
    width: int
    label_width: int
    timestamp: str
    legend: list[tuple[int, str]] = field(default_factory=lambda: list[tuple[int, str]]())
    scale: int = 1
    max_axis: int = 100

    @property
    def height(self) -> int:
        return len(self.cells)

    @property
    def indent(self) -> str:
        return " " * (self.label_width + 1)

    def legend_line(self) -> str:
        if not self.legend:
            return ""
        parts = [f"{GLYPHS[category]}={title}" for category, title in self.legend]
        return f"{self.indent}Legend: " + ", ".join(parts)

    def row_text(self, index: int) -> str:
        line = "".join(GLYPHS[cell] for cell in self.cells[index])
        return f"{self.labels[index]} | {line}"

    def border_line(self) -> str:
        return f"{self.indent}+" + "-" * (self.width + 1)

    def timestamp_line(self) -> str:
        return f"{self.indent}{self.timestamp:>{self.width // 2 + 10}}"

    def lines(self) -> list[str]:
        """Plain-text rendition: legend (if any), grid, border, timestamp."""
        out = [self.legend_line()] if self.legend else []
        out.extend(self.row_text(i) for i in range(self.height))
        out.append(self.border_line())
        out.append(self.timestamp_line())
        return out


def _timestamp(now: float | None) -> str:
    return time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(now))


def _check_height(height: int) -> None:
    if height < 1:
        raise ValueError(f"graph height must be positive, got {height}")


def percent_scale(height: int) -> int:
    """Percentage points per row; heights above 100 fall back to 1."""
    _check_height(height)
    return max(1, 100 // height)


def render_percent(
    series: Iterable[float],
    height: int,
    now: float | None = None,
) -> Graph:
    """Top-down bar chart of a 0-100 series.

    Rows run from 100 down in steps of :func:`percent_scale`; a column is
    filled on a row when its value strictly exceeds the row value. The row
    nearest zero is always present even if the step does not divide 100.
    """
    values = list(series)
    scale = percent_scale(height)

    labels: list[str] = []
    cells: list[list[int]] = []
    row = 100
    while row > 0:
        labels.append(f"{row:{PERCENT_LABEL_WIDTH}d}")
        cells.append([SERIES_A if value > row else EMPTY for value in values])
        row -= scale

    return Graph(
        labels=labels,
        cells=cells,
        width=len(values),
        label_width=PERCENT_LABEL_WIDTH,
        timestamp=_timestamp(now),
        scale=scale,
        max_axis=100,
    )


def overlap_axis(peak: float, height: int) -> tuple[int, int]:
    """Return ``(max_axis, scale)`` for a dual-series graph.

    The axis ceiling is the peak rounded up to the next hundred, never
    below 20; the scale is value units per row, at least 1.
    """
    _check_height(height)
    max_axis = max(20, math.ceil(max(peak, 0) / 100) * 100)
    return max_axis, max(1, max_axis // height)


def row_height(value: float, scale: int) -> int:
    """Number of rows *value* reaches, rounded to the nearest row."""
    return int((max(value, 0) + scale / 2) // scale)


def render_overlap(
    series_a: Iterable[float],
    series_b: Iterable[float],
    height: int,
    titles: tuple[str, str] = ("A", "B"),
    now: float | None = None,
) -> Graph:
    """Two series on a shared axis; cells both series reach are OVERLAP."""
    pairs = list(zip_longest(series_a, series_b, fillvalue=0))
    peak = max((max(a, b) for a, b in pairs), default=0)
    max_axis, scale = overlap_axis(peak, height)

    heights = [(row_height(a, scale), row_height(b, scale)) for a, b in pairs]

    labels: list[str] = []
    cells: list[list[int]] = []
    for row in range(height, 0, -1):
        line: list[int] = []
        for height_a, height_b in heights:
            if height_a > row and height_b > row:
                line.append(OVERLAP)
            elif height_a > row:
                line.append(SERIES_A)
            elif height_b > row:
                line.append(SERIES_B)
            else:
                line.append(EMPTY)
        labels.append(f"{row * scale:{OVERLAP_LABEL_WIDTH}d}")
        cells.append(line)

    return Graph(
        labels=labels,
        cells=cells,
        width=len(pairs),
        label_width=OVERLAP_LABEL_WIDTH,
        timestamp=_timestamp(now),
        legend=[(SERIES_A, titles[0]), (SERIES_B, titles[1]), (OVERLAP, "Overlap")],
        scale=scale,
        max_axis=max_axis,
    )
