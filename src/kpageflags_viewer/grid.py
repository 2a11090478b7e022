"""Geometry between screen cells and page-index ranges."""

from __future__ import annotations

from dataclasses import dataclass, replace

ZOOM_MIN = 0.1
ZOOM_MAX = 10.0


def clamp(v: int, lo: int, hi: int) -> int:
    """Clamp ``v`` to the inclusive ``[lo, hi]`` range."""
    return lo if v < lo else hi if v > hi else v


def clamp_zoom(zoom: float) -> float:
    return ZOOM_MIN if zoom < ZOOM_MIN else ZOOM_MAX if zoom > ZOOM_MAX else zoom


def entries_per_cell(zoom: float) -> int:
    """Consecutive indices folded into one grid cell at ``zoom``."""
    return max(1, round(1.0 / clamp_zoom(zoom)))


@dataclass(frozen=True)
class Viewport:
    """Top-left index, zoom, and grid size in cells."""

    origin_index: int = 0
    zoom: float = 1.0
    rows: int = 24
    cols: int = 80

    def __post_init__(self) -> None:
        if self.origin_index < 0:
            raise ValueError("origin_index must be non-negative")
        if self.rows <= 0 or self.cols <= 0:
            raise ValueError("viewport needs at least one row and one column")
        object.__setattr__(self, "zoom", clamp_zoom(float(self.zoom)))

    def resized(self, rows: int, cols: int) -> Viewport:
        """Return a copy sized to ``rows x cols``, never below one cell."""
        return replace(self, rows=max(1, rows), cols=max(1, cols))


class GridMapper:
    """Row-major mapping between cells of ``viewport`` and index ranges.

    Cell ``(row, col)`` covers ``entries_per_cell`` consecutive indices
    starting at ``origin + (row * cols + col) * entries_per_cell``.
    """

    def __init__(self, viewport: Viewport) -> None:
        self.viewport = viewport
        self.entries_per_cell = entries_per_cell(viewport.zoom)

    @property
    def rows(self) -> int:
        return self.viewport.rows

    @property
    def cols(self) -> int:
        return self.viewport.cols

    @property
    def origin(self) -> int:
        return self.viewport.origin_index

    @property
    def cell_count(self) -> int:
        return self.rows * self.cols

    @property
    def window(self) -> tuple[int, int]:
        """Visible ``[start, stop)`` index window."""
        return self.origin, self.origin + self.cell_count * self.entries_per_cell

    def contains(self, index: int) -> bool:
        start, stop = self.window
        return start <= index < stop

    def cell_of(self, index: int) -> tuple[int, int] | None:
        """Cell showing ``index``, or ``None`` outside the window."""
        if not self.contains(index):
            return None
        ordinal = (index - self.origin) // self.entries_per_cell
        return divmod(ordinal, self.cols)

    def index_range(self, row: int, col: int) -> tuple[int, int]:
        """``[start, stop)`` indices shown by cell ``(row, col)``."""
        if not (0 <= row < self.rows and 0 <= col < self.cols):
            raise IndexError(f"cell ({row}, {col}) outside {self.rows}x{self.cols} grid")
        start = self.origin + (row * self.cols + col) * self.entries_per_cell
        return start, start + self.entries_per_cell

    def index_at(self, row: int, col: int) -> int:
        return self.index_range(row, col)[0]

    def clamp_cell(self, row: int, col: int) -> tuple[int, int]:
        return clamp(row, 0, self.rows - 1), clamp(col, 0, self.cols - 1)

    def with_zoom(self, zoom: float, anchor: tuple[int, int] | None = None) -> Viewport:
        """Viewport at ``zoom``.

        Without ``anchor`` the origin stays put. With an anchor cell, the
        index under that cell stays under it after the zoom, as far as the
        origin can move (it never goes below zero).
        """
        zoom = clamp_zoom(zoom)
        if anchor is None:
            return replace(self.viewport, zoom=zoom)
        row, col = self.clamp_cell(*anchor)
        pinned = self.index_at(row, col)
        new_epc = entries_per_cell(zoom)
        origin = pinned - (row * self.cols + col) * new_epc
        return replace(self.viewport, zoom=zoom, origin_index=max(0, origin))

    def center_cell(self) -> tuple[int, int]:
        return self.rows // 2, self.cols // 2
