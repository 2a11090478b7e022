"""Viewport/selection state machine driven by one stream of input and scan events.

:class:`ViewportController` is an immutable value; :meth:`ViewportController.handle`
maps ``(state, event)`` to the next state. Events can be synthesised, so the
whole machine runs without a terminal attached.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, replace
from typing import TypeAlias

from .catalog import Category
from .grid import GridMapper, Viewport, clamp, clamp_zoom
from .worker import ScanSnapshot, ScanStatus

logger = logging.getLogger(__name__)

ZOOM_STEP = 1.25


class Mode(enum.Enum):
    IDLE = "idle"
    SELECTING = "selecting"


@dataclass(frozen=True)
class MouseDown:
    x: int
    y: int


@dataclass(frozen=True)
class MouseDrag:
    x: int
    y: int


@dataclass(frozen=True)
class MouseUp:
    x: int
    y: int


@dataclass(frozen=True)
class Scroll:
    x: int
    y: int
    up: bool


@dataclass(frozen=True)
class Key:
    """A key press: a single character or one of ``up down left right home escape``."""

    name: str


@dataclass(frozen=True)
class Resize:
    """New grid size in cells and the grid's top-left screen position."""

    rows: int
    cols: int
    top: int = 0
    left: int = 0


@dataclass(frozen=True, eq=False)
class Tick:
    """Periodic wake-up carrying the scan worker's latest snapshot."""

    snapshot: ScanSnapshot | None = None


Event: TypeAlias = "MouseDown | MouseDrag | MouseUp | Scroll | Key | Resize | Tick"


@dataclass(frozen=True)
class Selection:
    """Drag rectangle in grid cells; ``anchor`` is where the drag began."""

    anchor: tuple[int, int]
    current: tuple[int, int]

    def normalized(self) -> tuple[int, int, int, int]:
        """``(top, left, bottom, right)``, inclusive."""
        (r0, c0), (r1, c1) = self.anchor, self.current
        return min(r0, r1), min(c0, c1), max(r0, r1), max(c0, c1)

    @property
    def size(self) -> tuple[int, int]:
        """``(rows, cols)`` covered by the rectangle."""
        top, left, bottom, right = self.normalized()
        return bottom - top + 1, right - left + 1

    def contains(self, row: int, col: int) -> bool:
        top, left, bottom, right = self.normalized()
        return top <= row <= bottom and left <= col <= right


@dataclass(frozen=True, eq=False)
class ViewportController:
    """Everything the interactive view owns besides the scan itself.

    ``data`` is the snapshot currently on screen. During a rescan the old
    snapshot stays in ``data`` and the new one is parked in ``pending`` until
    it finishes; ``stale`` reports that condition.
    """

    viewport: Viewport
    scan_start: int = 0
    scan_count: int | None = None
    mode: Mode = Mode.IDLE
    selection: Selection | None = None
    filter: Category | None = None
    help_visible: bool = False
    stats_visible: bool = False
    data: ScanSnapshot | None = None
    pending: ScanSnapshot | None = None
    generation: int = 0
    rescan_requested: bool = False
    quit_requested: bool = False
    grid_top: int = 0
    grid_left: int = 0
    notice: str | None = None

    @classmethod
    def initial(
        cls, start_index: int = 0, count: int | None = None, rows: int = 24, cols: int = 80,
    ) -> ViewportController:
        return cls(
            viewport=Viewport(origin_index=start_index, zoom=1.0, rows=rows, cols=cols),
            scan_start=start_index,
            scan_count=count,
        )

    @property
    def mapper(self) -> GridMapper:
        return GridMapper(self.viewport)

    @property
    def stale(self) -> bool:
        return self.pending is not None

    @property
    def scanning(self) -> bool:
        for snap in (self.pending, self.data):
            if snap is not None and snap.status is ScanStatus.RUNNING:
                return True
        return False

    def scanned_range(self) -> tuple[int, int]:
        """Inclusive ``(lo, hi)`` index bounds for the origin."""
        lo = self.scan_start
        end = self.data.buffer.end_index if self.data is not None else None
        if end is None and self.scan_count is not None:
            end = lo + self.scan_count
        if end is None or end <= lo:
            return lo, lo
        return lo, end - 1

    def _clamp_origin(self, origin: int, *, allow_past_end: bool = False) -> int:
        lo, hi = self.scanned_range()
        if origin < lo:
            return lo
        if not allow_past_end and self.data is not None and self.data.buffer.end_index is not None:
            return min(origin, hi)
        return origin

    def screen_to_cell(self, x: int, y: int) -> tuple[int, int] | None:
        """Grid cell under screen position ``(x, y)``, or ``None`` outside the grid."""
        row, col = y - self.grid_top, x - self.grid_left
        if 0 <= row < self.viewport.rows and 0 <= col < self.viewport.cols:
            return row, col
        return None

    def _screen_to_cell_clamped(self, x: int, y: int) -> tuple[int, int]:
        return self.mapper.clamp_cell(y - self.grid_top, x - self.grid_left)

    def acknowledge_rescan(self) -> ViewportController:
        """Called by the driver once the requested rescan has been started."""
        return replace(self, rescan_requested=False)

    def handle(self, event: Event) -> ViewportController:
        """Return the state that follows ``event``."""
        if isinstance(event, Tick):
            return self._on_tick(event)
        if isinstance(event, Resize):
            return self._on_resize(event)
        if self.help_visible:
            if isinstance(event, Key) and event.name in ("h", "q"):
                return self._on_key(event)
            return self
        if isinstance(event, Key):
            return self._on_key(event)
        if isinstance(event, MouseDown):
            return self._on_mouse_down(event)
        if isinstance(event, MouseDrag):
            return self._on_mouse_drag(event)
        if isinstance(event, MouseUp):
            return self._on_mouse_up(event)
        if isinstance(event, Scroll):
            return self._on_scroll(event)
        raise TypeError(f"unsupported event: {event!r}")

    # ---- scan data ----

    def _on_tick(self, event: Tick) -> ViewportController:
        snap = event.snapshot
        if snap is None or snap.generation < self.generation:
            return self
        if self.data is None or self.data.generation == snap.generation:
            return replace(self, data=snap, pending=None)
        if snap.status is ScanStatus.FAILED:
            return replace(self, pending=None, notice=f"rescan failed: {snap.error}")
        if snap.finished:
            logger.debug("Swapping in scan %d (%s)", snap.generation, snap.status.value)
            return replace(self, data=snap, pending=None, notice=None)
        return replace(self, pending=snap)

    def _on_resize(self, event: Resize) -> ViewportController:
        return replace(
            self,
            viewport=self.viewport.resized(event.rows, event.cols),
            grid_top=event.top,
            grid_left=event.left,
            mode=Mode.IDLE,
            selection=None,
        )

    # ---- keyboard ----

    def _pan(self, delta: int) -> ViewportController:
        origin = self._clamp_origin(self.viewport.origin_index + delta)
        return replace(self, viewport=replace(self.viewport, origin_index=origin))

    def _zoom_by(self, factor: float, anchor: tuple[int, int] | None = None) -> ViewportController:
        viewport = self.mapper.with_zoom(clamp_zoom(self.viewport.zoom * factor), anchor)
        origin = self._clamp_origin(viewport.origin_index, allow_past_end=True)
        return replace(self, viewport=replace(viewport, origin_index=origin))

    def _on_key(self, event: Key) -> ViewportController:
        name = event.name
        epc = self.mapper.entries_per_cell
        if name == "q":
            return replace(self, quit_requested=True)
        if name == "h":
            return replace(self, help_visible=not self.help_visible)
        if name == "s":
            return replace(self, stats_visible=not self.stats_visible)
        if name == "r":
            data = self.data
            if data is not None and data.status is ScanStatus.RUNNING:
                # the driver cancels the superseded worker; its later ticks are ignored
                data = replace(data, status=ScanStatus.CANCELLED)
            return replace(
                self, data=data, pending=None, rescan_requested=True, generation=self.generation + 1,
            )
        if name == "escape":
            if self.mode is Mode.SELECTING:
                return replace(self, mode=Mode.IDLE, selection=None)
            return self
        if name == "left":
            return self._pan(-epc)
        if name == "right":
            return self._pan(epc)
        if name == "up":
            return self._pan(-epc * self.viewport.cols)
        if name == "down":
            return self._pan(epc * self.viewport.cols)
        if name in ("+", "="):
            return self._zoom_by(ZOOM_STEP)
        if name in ("-", "_"):
            return self._zoom_by(1.0 / ZOOM_STEP)
        if name == "home":
            return replace(
                self, viewport=replace(self.viewport, origin_index=self.scan_start, zoom=1.0),
            )
        if name == "0":
            return replace(self, filter=None)
        category = Category.from_digit(name)
        if category is not None:
            return replace(self, filter=category)
        return self

    # ---- mouse ----

    def _on_mouse_down(self, event: MouseDown) -> ViewportController:
        if self.mode is Mode.SELECTING:
            return self
        cell = self.screen_to_cell(event.x, event.y)
        if cell is None:
            return self
        return replace(self, mode=Mode.SELECTING, selection=Selection(cell, cell))

    def _on_mouse_drag(self, event: MouseDrag) -> ViewportController:
        if self.mode is not Mode.SELECTING or self.selection is None:
            return self
        cell = self._screen_to_cell_clamped(event.x, event.y)
        return replace(self, selection=replace(self.selection, current=cell))

    def _on_mouse_up(self, event: MouseUp) -> ViewportController:
        if self.mode is not Mode.SELECTING or self.selection is None:
            return self
        selection = replace(self.selection, current=self._screen_to_cell_clamped(event.x, event.y))
        return self._zoom_to(selection)

    def _zoom_to(self, selection: Selection) -> ViewportController:
        top, left, _bottom, _right = selection.normalized()
        rect_rows, rect_cols = selection.size
        vp = self.viewport
        zoom = clamp_zoom(min(vp.cols / rect_cols, vp.rows / rect_rows))
        lo, hi = self.scanned_range()
        origin = clamp(self.mapper.index_at(top, left), lo, hi)
        logger.debug(
            "Zoom to %dx%d selection: origin %#x zoom %.2f", rect_cols, rect_rows, origin, zoom,
        )
        return replace(
            self,
            viewport=replace(vp, origin_index=origin, zoom=zoom),
            mode=Mode.IDLE,
            selection=None,
        )

    def _on_scroll(self, event: Scroll) -> ViewportController:
        anchor = self.screen_to_cell(event.x, event.y)
        if anchor is None:
            anchor = self.mapper.center_cell()
        factor = ZOOM_STEP if event.up else 1.0 / ZOOM_STEP
        return self._zoom_by(factor, anchor)
