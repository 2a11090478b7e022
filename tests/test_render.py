import numpy as np

from kpageflags_viewer.aggregate import UNSCANNED, DecodedBuffer, Stats
from kpageflags_viewer.catalog import Category
from kpageflags_viewer.controller import Key, Selection, Tick, ViewportController
from kpageflags_viewer.grid import Viewport
from kpageflags_viewer.render import HELP_LINES, cell_masks, render_controller, render_frame, stats_lines
from kpageflags_viewer.source import ScanProgress, ScanRequest
from kpageflags_viewer.worker import ScanSnapshot, ScanStatus

S = Category.STATE.bit
M = Category.MEMORY.bit
A = Category.ALLOCATION.bit
E = Category.ERROR.bit
WINDOW = np.asarray([0, S, M, S | M, UNSCANNED, A, 0, E], dtype=np.int16)


def test_cells_show_category_symbols() -> None:
    frame = render_frame(Viewport(zoom=1.0, rows=2, cols=4), WINDOW)

    assert frame.text_rows() == [".SM●", " A.E"]
    assert frame.cells[0][0].style == "empty"
    assert frame.cells[0][3].style == "multi"
    assert frame.cells[1][0].style == "unscanned"
    assert frame.cells[1][3].style == "error"


def test_filter_hides_other_categories_only() -> None:
    frame = render_frame(Viewport(rows=2, cols=4), WINDOW, category_filter=Category.MEMORY)

    assert frame.text_rows() == ["..M●", " ..."]
    assert "Filter: Memory" in frame.footer


def test_cells_fold_entries_with_or() -> None:
    viewport = Viewport(zoom=0.5, rows=1, cols=3)
    window = np.asarray([S, UNSCANNED, S, M, UNSCANNED, UNSCANNED], dtype=np.int16)

    assert cell_masks(viewport, window).tolist() == [S, S | M, UNSCANNED]
    assert render_frame(viewport, window).text_rows() == ["S● "]


def test_selection_cells_are_inverted() -> None:
    selection = Selection(anchor=(0, 2), current=(0, 1))

    frame = render_frame(Viewport(rows=2, cols=4), WINDOW, selection=selection)

    assert [cell.inverted for cell in frame.cells[0]] == [False, True, True, False]
    assert not any(cell.inverted for cell in frame.cells[1])
    assert "Selection: 2x1" in frame.footer


def test_help_and_stats_panels() -> None:
    stats = Stats(
        total_seen=4,
        with_flags_count=3,
        without_flags_count=1,
        per_flag_count={"LRU": 2, "SLAB": 1},
        per_category_count={Category.MEMORY: 2, Category.ALLOCATION: 1},
    )

    frame = render_frame(Viewport(rows=2, cols=4), WINDOW, stats=stats, help_visible=True)

    assert frame.help_lines == HELP_LINES
    assert frame.stats_lines == stats_lines(stats)
    assert "LRU: 2 (50.0%)" in frame.stats_lines
    assert "Total Pages: 4" in frame.stats_lines
    assert render_frame(Viewport(rows=2, cols=4), WINDOW).stats_lines is None


def test_controller_without_data_renders_unscanned() -> None:
    frame = render_controller(ViewportController.initial(0, None, rows=3, cols=5))

    assert frame.text_rows() == ["     "] * 3
    assert "waiting" in frame.header
    assert frame.progress is None


def test_controller_frame_follows_state() -> None:
    c = ViewportController.initial(0, None, rows=2, cols=4)
    c = c.handle(Key("s")).handle(Key("2"))

    frame = render_controller(c)

    assert frame.stats_lines is None  # no data yet
    assert "Filter: Memory" in frame.footer
    assert c.handle(Tick(None)) is c


def running_snapshot(loaded: int, total: int, generation: int) -> ScanSnapshot:
    buf = DecodedBuffer()
    buf.append(np.arange(loaded, dtype=np.uint64), np.zeros(loaded, dtype=np.uint64), np.zeros(loaded, dtype=np.uint8))
    return ScanSnapshot(
        generation=generation,
        request=ScanRequest(0, total),
        stats=Stats(total_seen=loaded, without_flags_count=loaded),
        buffer=buf.view(),
        progress=ScanProgress(loaded, total),
        status=ScanStatus.RUNNING,
    )


def test_rescan_during_first_scan_marks_view_stale() -> None:
    c = ViewportController.initial(0, None, rows=2, cols=4)
    c = c.handle(Tick(running_snapshot(500, 100_000, generation=0)))
    assert "Scanning..." in render_controller(c).header

    c = c.handle(Key("r")).acknowledge_rescan()
    c = c.handle(Tick(running_snapshot(20_000, 100_000, generation=1)))
    frame = render_controller(c)

    assert "Scanning..." not in frame.header
    assert "500 pages loaded" in frame.header
    assert "stale" in frame.header
    assert frame.progress == 0.2
