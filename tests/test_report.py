import io

import numpy as np
from rich.console import Console

import kpageflags_viewer.report as report
from kpageflags_viewer.aggregate import ScanAggregator
from kpageflags_viewer.catalog import DEFAULT_CATALOG
from kpageflags_viewer.source import PageEntry


def make_console() -> tuple[Console, io.StringIO]:
    out = io.StringIO()
    return Console(file=out, width=200, color_system=None, highlight=False), out


def stats_for(words):
    agg = ScanAggregator(DEFAULT_CATALOG)
    agg.add_chunk(np.asarray(words, dtype=np.uint64))
    return agg.snapshot()


def test_page_without_flags() -> None:
    console, out = make_console()

    report.print_page(console, PageEntry(0x10, 0))

    text = out.getvalue()
    assert "PFN: 0x10" in text
    assert "Flags: 0x0000000000000000" in text
    assert "No flags set" in text


def test_page_lists_known_then_unknown_flags() -> None:
    console, out = make_console()

    report.print_page(console, PageEntry(1, (1 << 5) | (1 << 40)))

    assert "LRU, UNKNOWN_BIT_40" in out.getvalue()


def test_verbose_page_shows_descriptions() -> None:
    console, out = make_console()

    report.print_page(console, PageEntry(1, (1 << 5) | (1 << 40)), verbose=True)

    text = out.getvalue()
    assert "LRU - Page is on LRU list" in text
    assert "UNKNOWN_BIT_40 - Unknown flag bit" in text


def test_summary_totals_and_histogram() -> None:
    console, out = make_console()

    report.print_summary(console, stats_for([0, 0x68, 1 << 40, 1 << 7]), histogram=True)

    text = out.getvalue()
    assert "Total pages analyzed: 4" in text
    assert "Pages with flags: 3" in text
    assert "Pages without flags: 1" in text
    assert "UPTODATE: 1 (25.0%)" in text
    assert "=== HISTOGRAM ===" in text
    assert "Flag categories:" in text
    assert "interrupted" not in text


def test_partial_summary_is_marked() -> None:
    console, out = make_console()

    report.print_summary(console, stats_for([1, 2]), partial=True)

    assert "interrupted" in out.getvalue()


def test_sampled_summary_extrapolates() -> None:
    console, out = make_console()

    report.print_sampled_summary(console, stats_for([0x68] * 10), estimated_total=1000, attempts=12)

    text = out.getvalue()
    assert "Samples collected: 10" in text
    assert "Estimated total pages in system: 1000" in text
    assert "Sampling coverage: 1.000%" in text
    assert "Estimated pages with flags: 1000" in text
    assert "~1000 estimated total" in text
    assert "2 missed" in text


def test_grid_rows_and_unknown_symbol() -> None:
    console, out = make_console()

    report.print_grid(console, [0, 1 << 7, 1 << 40, 0x68, 1 << 1], width=2)

    lines = out.getvalue().splitlines()
    assert ".A" in lines
    assert "?●" in lines
    assert "E" in lines
    assert any("Legend:" in line for line in lines)
