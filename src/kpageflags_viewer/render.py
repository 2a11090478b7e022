"""Pure rendering of viewport state into a terminal-agnostic frame model."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeAlias

import numpy as np

from .aggregate import UNSCANNED, BufferView, Stats
from .catalog import (
    CATEGORY_HINTS,
    MULTI_SYMBOL,
    NO_DATA_SYMBOL,
    UNSCANNED_SYMBOL,
    Category,
    symbol_for_mask,
)
from .grid import GridMapper, Viewport
from .worker import ScanSnapshot, ScanStatus

if TYPE_CHECKING:  # pragma: no cover - typing helpers only
    from numpy import ndarray as NDArray

    from .controller import Selection, ViewportController
else:
    NDArray: TypeAlias = Any

TOP_FLAGS_SHOWN = 8

# (symbol, style) for every possible 8-bit category mask
_SYMBOLS: tuple[tuple[str, str], ...] = tuple(symbol_for_mask(mask) for mask in range(256))

HELP_LINES: tuple[str, ...] = (
    "KPageFlags Viewer Help",
    "",
    "Navigation:",
    "  Arrow Keys    - Move around the grid",
    "  +/=           - Zoom in",
    "  -             - Zoom out",
    "  Home          - Reset view to the scan start",
    "",
    "Mouse Controls:",
    "  Click & Drag  - Select area to zoom into",
    "  Scroll Up     - Zoom in around the pointer",
    "  Scroll Down   - Zoom out around the pointer",
    "  Esc           - Cancel selection",
    "",
    "Controls:",
    "  h             - Toggle this help",
    "  s             - Toggle statistics panel",
    "  r             - Rescan",
    "  q             - Quit",
    "",
    "Filters (show only pages with these flag categories):",
    *(
        f"  {int(cat) + 1}             - {cat.label} ({CATEGORY_HINTS[cat]})"
        for cat in Category
    ),
    "  0             - Clear filter (show all)",
)


@dataclass(frozen=True)
class Cell:
    symbol: str
    style: str
    inverted: bool = False


@dataclass(frozen=True)
class Frame:
    """One screen's worth of content.

    ``cells`` is ``rows x cols``; ``legend`` holds ``(symbol, style, label)``
    triples; ``stats_lines``/``help_lines`` are ``None`` when hidden.
    """

    cells: tuple[tuple[Cell, ...], ...]
    header: str
    footer: str
    legend: tuple[tuple[str, str, str], ...]
    progress: float | None = None
    stats_lines: tuple[str, ...] | None = None
    help_lines: tuple[str, ...] | None = None

    @property
    def rows(self) -> int:
        return len(self.cells)

    @property
    def cols(self) -> int:
        return len(self.cells[0]) if self.cells else 0

    def text_rows(self) -> list[str]:
        return ["".join(cell.symbol for cell in row) for row in self.cells]


LEGEND: tuple[tuple[str, str, str], ...] = (
    *((cat.symbol, cat.style, cat.label) for cat in Category),
    (MULTI_SYMBOL, "multi", "Multiple"),
    (NO_DATA_SYMBOL, "empty", "No flags"),
)


def cell_masks(viewport: Viewport, window: NDArray) -> NDArray:
    """Combine per-index masks into one value per cell.

    Returns an ``int16`` array of ``rows * cols`` values: the OR of every
    scanned index in the cell, or :data:`UNSCANNED` when none was scanned.
    """
    mapper = GridMapper(viewport)
    per_cell = np.asarray(window, dtype=np.int16).reshape(mapper.cell_count, mapper.entries_per_cell)
    valid = per_cell >= 0
    combined = np.bitwise_or.reduce(np.where(valid, per_cell, 0), axis=1)
    return np.where(valid.any(axis=1), combined, UNSCANNED).astype(np.int16)


def _grid_cells(
    viewport: Viewport,
    window: NDArray,
    selection: Selection | None,
    category_filter: Category | None,
) -> tuple[tuple[Cell, ...], ...]:
    masks = cell_masks(viewport, window).tolist()
    rows: list[tuple[Cell, ...]] = []
    for r in range(viewport.rows):
        row: list[Cell] = []
        for c in range(viewport.cols):
            mask = masks[r * viewport.cols + c]
            if mask == UNSCANNED:
                symbol, style = UNSCANNED_SYMBOL, "unscanned"
            elif category_filter is not None and not mask & category_filter.bit:
                symbol, style = NO_DATA_SYMBOL, "empty"
            else:
                symbol, style = _SYMBOLS[mask]
            inverted = selection is not None and selection.contains(r, c)
            row.append(Cell(symbol, style, inverted))
        rows.append(tuple(row))
    return tuple(rows)


def stats_lines(stats: Stats) -> tuple[str, ...]:
    lines = [
        f"Total Pages: {stats.total_seen}",
        f"With Flags: {stats.with_flags_count}",
        f"Without Flags: {stats.without_flags_count}",
        "",
        "Top Flags:",
    ]
    for name, count in stats.top_flags(TOP_FLAGS_SHOWN):
        lines.append(f"{name}: {count} ({stats.percent(count):.1f}%)")
    lines.extend(("", "Categories:"))
    for cat, count in stats.top_categories():
        lines.append(f"{cat.symbol} {cat.label}: {count} ({stats.percent(count):.1f}%)")
    return tuple(lines)


def _header(data: ScanSnapshot | None, pending: ScanSnapshot | None, zoom: float) -> tuple[str, float | None]:
    if data is None:
        return "KPageFlags - waiting for first scan results", None
    loaded = data.stats.total_seen
    if pending is None and data.status is ScanStatus.RUNNING:
        fraction = data.progress.fraction if data.progress is not None else None
        pct = f" ({fraction * 100:.1f}%)" if fraction is not None else ""
        return f"KPageFlags - Scanning...{pct} - {loaded} pages loaded", fraction
    text = f"KPageFlags - {loaded} pages loaded - Zoom: {zoom:.1f}x"
    if data.status is ScanStatus.CANCELLED:
        text += " - interrupted (partial)"
    elif data.status is ScanStatus.FAILED:
        text += f" - scan failed ({data.error})"
    if pending is not None:
        # the progress bar follows the active scan, not the one on screen
        fraction = pending.progress.fraction if pending.progress is not None else None
        text += f" - stale, rescanning ({pending.stats.total_seen} pages)"
        return text, fraction
    return text, None


def render_frame(
    viewport: Viewport,
    window: NDArray,
    selection: Selection | None = None,
    category_filter: Category | None = None,
    stats: Stats | None = None,
    *,
    help_visible: bool = False,
    data: ScanSnapshot | None = None,
    pending: ScanSnapshot | None = None,
    notice: str | None = None,
) -> Frame:
    """Build a :class:`Frame`.

    ``window`` holds the per-index category masks of the visible window
    (see :meth:`BufferView.window`); ``stats`` is rendered only when given.
    """
    mapper = GridMapper(viewport)
    header, progress = _header(data, pending, viewport.zoom)
    parts = [
        f"Zoom: {viewport.zoom:.2f}x ({mapper.entries_per_cell}/cell)",
        f"Origin: 0x{viewport.origin_index:x}",
        f"Filter: {category_filter.label if category_filter is not None else 'None'}",
    ]
    if selection is not None:
        sel_rows, sel_cols = selection.size
        parts.append(f"Selection: {sel_cols}x{sel_rows}")
    if notice:
        parts.append(notice)
    parts.append("'h' help | 'q' quit")
    return Frame(
        cells=_grid_cells(viewport, window, selection, category_filter),
        header=header,
        footer=" | ".join(parts),
        legend=LEGEND,
        progress=progress,
        stats_lines=stats_lines(stats) if stats is not None else None,
        help_lines=HELP_LINES if help_visible else None,
    )


def visible_window(viewport: Viewport, buffer: BufferView | None) -> NDArray:
    start, stop = GridMapper(viewport).window
    if buffer is None:
        return np.full(stop - start, UNSCANNED, dtype=np.int16)
    return buffer.window(start, stop)


def render_controller(controller: ViewportController) -> Frame:
    """Render the controller's current state."""
    data = controller.data
    return render_frame(
        controller.viewport,
        visible_window(controller.viewport, data.buffer if data is not None else None),
        selection=controller.selection,
        category_filter=controller.filter,
        stats=data.stats if controller.stats_visible and data is not None else None,
        help_visible=controller.help_visible,
        data=data,
        pending=controller.pending,
        notice=controller.notice,
    )
