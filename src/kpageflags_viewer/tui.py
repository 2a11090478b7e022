"""Curses front end: turns terminal input into controller events and draws frames."""

from __future__ import annotations

import curses
import logging
import sys
from dataclasses import dataclass

from .catalog import DEFAULT_CATALOG, FlagCatalog
from .controller import (
    Event,
    Key,
    MouseDown,
    MouseDrag,
    MouseUp,
    Resize,
    Scroll,
    Tick,
    ViewportController,
)
from .render import Frame, render_controller
from .source import CancelToken, PageSource, ScanRequest
from .worker import ScanSnapshot, ScanWorker, interrupt_cancels

logger = logging.getLogger(__name__)

TICK_MS = 100
STOP_TIMEOUT = 1.0  # seconds to wait for a cancelled worker on exit
HEADER_ROWS = 2  # title + progress bar
FOOTER_ROWS = 2  # legend + status line
STATS_FRACTION = 0.3
MIN_STATS_WIDTH = 24

_BUTTON5_PRESSED = getattr(curses, "BUTTON5_PRESSED", 0)

_KEY_NAMES = {
    curses.KEY_UP: "up",
    curses.KEY_DOWN: "down",
    curses.KEY_LEFT: "left",
    curses.KEY_RIGHT: "right",
    curses.KEY_HOME: "home",
    27: "escape",
}

# style -> (color, extra attributes); colors are curses.COLOR_* names
STYLE_COLORS: dict[str, tuple[str, int]] = {
    "state": ("COLOR_BLUE", 0),
    "memory": ("COLOR_GREEN", 0),
    "usage": ("COLOR_YELLOW", 0),
    "allocation": ("COLOR_CYAN", 0),
    "io": ("COLOR_MAGENTA", 0),
    "structure": ("COLOR_RED", 0),
    "special": ("COLOR_WHITE", 0),
    "error": ("COLOR_RED", curses.A_BOLD),
    "multi": ("COLOR_WHITE", curses.A_BOLD),
    "empty": ("COLOR_WHITE", curses.A_DIM),
    "unscanned": ("COLOR_BLACK", 0),
}


@dataclass(frozen=True)
class ScreenLayout:
    """Placement of the grid and the optional stats panel on screen."""

    grid_top: int
    grid_left: int
    grid_rows: int
    grid_cols: int
    stats_left: int | None = None

    @property
    def footer_row(self) -> int:
        return self.grid_top + self.grid_rows


def compute_layout(height: int, width: int, stats_visible: bool) -> ScreenLayout:
    """Split a ``height x width`` screen; tiny terminals still get one cell."""
    rows = max(1, height - HEADER_ROWS - FOOTER_ROWS)
    cols = max(1, width)
    stats_left = None
    if stats_visible and width >= MIN_STATS_WIDTH * 2:
        stats_width = max(MIN_STATS_WIDTH, int(width * STATS_FRACTION))
        cols = max(1, width - stats_width)
        stats_left = cols
    return ScreenLayout(HEADER_ROWS, 0, rows, cols, stats_left)


def translate_key(key: int) -> Event | None:
    """Map a ``getch`` code to a :class:`Key` event (mouse and resize excluded)."""
    if key in _KEY_NAMES:
        return Key(_KEY_NAMES[key])
    if 32 <= key < 127:
        return Key(chr(key))
    return None


def translate_mouse(bstate: int, x: int, y: int) -> Event | None:
    """Map a curses mouse report to a controller event."""
    if bstate & curses.BUTTON4_PRESSED:
        return Scroll(x, y, up=True)
    if _BUTTON5_PRESSED and bstate & _BUTTON5_PRESSED:
        return Scroll(x, y, up=False)
    if bstate & curses.BUTTON1_PRESSED:
        return MouseDown(x, y)
    if bstate & curses.BUTTON1_RELEASED:
        return MouseUp(x, y)
    if bstate & curses.REPORT_MOUSE_POSITION:
        return MouseDrag(x, y)
    return None


class Painter:
    """Draws :class:`Frame` objects onto a curses window."""

    def __init__(self, stdscr: curses.window) -> None:
        self.stdscr = stdscr
        self.attrs: dict[str, int] = {}
        if curses.has_colors():
            curses.start_color()
            curses.use_default_colors()
            for pair, (style, (color_name, extra)) in enumerate(STYLE_COLORS.items(), start=1):
                curses.init_pair(pair, getattr(curses, color_name), -1)
                self.attrs[style] = curses.color_pair(pair) | extra
        else:
            self.attrs = {style: extra for style, (_color, extra) in STYLE_COLORS.items()}

    def _put(self, row: int, col: int, text: str, attr: int = 0) -> None:
        height, width = self.stdscr.getmaxyx()
        if row < 0 or row >= height or col >= width:
            return
        try:
            self.stdscr.addstr(row, col, text[: max(0, width - col)], attr)
        except curses.error:
            # writing the bottom-right cell moves the cursor off screen
            pass

    def draw(self, frame: Frame, layout: ScreenLayout) -> None:
        self.stdscr.erase()
        _height, width = self.stdscr.getmaxyx()
        self._put(0, 0, frame.header.center(width), curses.A_BOLD)
        if frame.progress is not None:
            filled = int(round(frame.progress * max(0, width - 2)))
            self._put(1, 1, "█" * filled, self.attrs.get("memory", 0))
        if frame.help_lines is not None:
            for i, line in enumerate(frame.help_lines[: layout.grid_rows]):
                self._put(layout.grid_top + i, 2, line)
        else:
            self._draw_grid(frame, layout)
        if frame.stats_lines is not None and layout.stats_left is not None:
            for i, line in enumerate(frame.stats_lines[: layout.grid_rows]):
                self._put(layout.grid_top + i, layout.stats_left + 1, line)
        col = 0
        for symbol, style, label in frame.legend:
            self._put(layout.footer_row, col, symbol, self.attrs.get(style, 0))
            self._put(layout.footer_row, col + 2, label)
            col += len(label) + 4
        self._put(layout.footer_row + 1, 0, frame.footer, curses.A_DIM)
        self.stdscr.noutrefresh()
        curses.doupdate()

    def _draw_grid(self, frame: Frame, layout: ScreenLayout) -> None:
        for r, row in enumerate(frame.cells[: layout.grid_rows]):
            for c, cell in enumerate(row[: layout.grid_cols]):
                attr = self.attrs.get(cell.style, 0)
                if cell.inverted:
                    attr |= curses.A_REVERSE
                self._put(layout.grid_top + r, layout.grid_left + c, cell.symbol, attr)


def _read_event(stdscr: curses.window) -> Event | None:
    key = stdscr.getch()
    if key == -1:
        return None
    if key == curses.KEY_MOUSE:
        try:
            _, mx, my, _, bstate = curses.getmouse()
        except curses.error:
            return None
        return translate_mouse(bstate, mx, my)
    if key == curses.KEY_RESIZE:
        curses.update_lines_cols()
        return None
    return translate_key(key)


def _enable_mouse() -> None:
    curses.mousemask(curses.ALL_MOUSE_EVENTS | curses.REPORT_MOUSE_POSITION)
    curses.mouseinterval(0)
    # ask xterm-compatible terminals for motion reports while a button is held
    sys.stdout.write("\033[?1002h")
    sys.stdout.flush()


def _disable_mouse() -> None:
    sys.stdout.write("\033[?1002l")
    sys.stdout.flush()


def advance(
    controller: ViewportController,
    event: Event | None,
    snapshot: ScanSnapshot,
    interrupted: bool = False,
) -> ViewportController:
    """One loop step: apply the input event (Ctrl-C quits), then the scan tick."""
    if interrupted:
        event = Key("q")
    if event is not None:
        controller = controller.handle(event)
    return controller.handle(Tick(snapshot))


def supersede(worker: ScanWorker, retired: list[ScanWorker], generation: int) -> ScanWorker:
    """Cancel ``worker`` and start a fresh scan of the same request.

    The cancelled worker is parked in ``retired`` until its thread exits.
    """
    worker.cancel()
    retired.append(worker)
    return ScanWorker(worker.source, worker.request, worker.catalog, generation=generation).start()


def reap(retired: list[ScanWorker]) -> list[ScanWorker]:
    return [w for w in retired if w.alive]


def run_interactive(
    stdscr: curses.window,
    source: PageSource,
    request: ScanRequest,
    catalog: FlagCatalog = DEFAULT_CATALOG,
) -> ScanSnapshot:
    """Event loop; returns the last snapshot shown when the user quits."""
    curses.curs_set(0)
    curses.set_escdelay(25)
    stdscr.keypad(True)
    stdscr.timeout(TICK_MS)
    _enable_mouse()
    painter = Painter(stdscr)

    height, width = stdscr.getmaxyx()
    layout = compute_layout(height, width, stats_visible=False)
    controller = ViewportController.initial(
        request.start_index, request.count, layout.grid_rows, layout.grid_cols,
    ).handle(Resize(layout.grid_rows, layout.grid_cols, layout.grid_top, layout.grid_left))
    worker = ScanWorker(source, request, catalog, generation=controller.generation).start()
    retired: list[ScanWorker] = []
    logger.info("Interactive session started on %s", source.path)
    try:
        with interrupt_cancels(CancelToken()) as interrupted:
            while not controller.quit_requested:
                height, width = stdscr.getmaxyx()
                wanted = compute_layout(height, width, controller.stats_visible)
                if wanted != layout:
                    layout = wanted
                    controller = controller.handle(
                        Resize(layout.grid_rows, layout.grid_cols, layout.grid_top, layout.grid_left)
                    )
                painter.draw(render_controller(controller), layout)
                controller = advance(
                    controller, _read_event(stdscr), worker.snapshot(), interrupted.cancelled,
                )
                if controller.rescan_requested:
                    logger.info("Rescan requested (generation %d)", controller.generation)
                    worker = supersede(worker, retired, controller.generation)
                    controller = controller.acknowledge_rescan()
                retired = reap(retired)
    finally:
        for w in (worker, *retired):
            w.cancel()
            w.join(timeout=STOP_TIMEOUT)
        _disable_mouse()
    return worker.snapshot()


def launch(
    source: PageSource, request: ScanRequest, catalog: FlagCatalog = DEFAULT_CATALOG,
) -> ScanSnapshot:
    """Run the interactive viewer inside ``curses.wrapper``."""
    return curses.wrapper(run_interactive, source, request, catalog)
