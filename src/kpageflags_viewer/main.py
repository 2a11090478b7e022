"""Command-line entry point for the page-flags viewer."""

from __future__ import annotations

import argparse
import collections.abc as cabc
import contextlib
import logging
import sys

from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn
from rich.text import Text

from . import report
from .catalog import DEFAULT_CATALOG, FlagCatalog
from .source import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_PATH,
    CancelToken,
    PageEntry,
    PageSource,
    PageSourceError,
    ScanProgress,
    ScanRequest,
    estimate_total_pages,
)
from .worker import ScanResult, interrupt_cancels, run_sample, run_scan

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_SIZE = 10_000
DEFAULT_LIMIT = 1000
DEFAULT_WIDTH = 80
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def parse_start(text: str) -> int:
    """Start index: ``0x``-prefixed hex or decimal."""
    text = text.strip()
    try:
        value = int(text[2:], 16) if text.lower().startswith("0x") else int(text, 10)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid start PFN: {text!r}") from None
    if value < 0:
        raise argparse.ArgumentTypeError("start PFN must be non-negative")
    return value


def parse_count(text: str) -> int | None:
    """Entry count, or ``all`` (``None``) to read until end-of-data."""
    if text.strip().lower() == "all":
        return None
    try:
        value = int(text, 10)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid count: {text!r} (expected a number or 'all')") from None
    if value <= 0:
        raise argparse.ArgumentTypeError("count must be positive")
    return value


def positive_int(text: str) -> int:
    try:
        value = int(text, 10)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number: {text!r}") from None
    if value <= 0:
        raise argparse.ArgumentTypeError("value must be positive")
    return value


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="kpageflags-viewer",
        description="Read, summarise and interactively explore Linux page flags",
    )
    p.add_argument("-s", "--start", type=parse_start, default=0, help="starting PFN (hex with 0x prefix or decimal)")
    p.add_argument("-c", "--count", type=parse_count, default=None, help="number of pages to analyze, or 'all' (default)")
    p.add_argument("-v", "--verbose", action="store_true", help="show flag descriptions in page listings")
    p.add_argument("--summary", action="store_true", help="only print summary statistics (streaming, low memory)")
    p.add_argument(
        "--sampled", type=positive_int, nargs="?", const=DEFAULT_SAMPLE_SIZE, default=None, metavar="N",
        help=f"random-sample summary of N pages (default {DEFAULT_SAMPLE_SIZE})",
    )
    p.add_argument("-g", "--grid", action="store_true", help="print a grid visualization")
    p.add_argument("-w", "--width", type=positive_int, default=DEFAULT_WIDTH, help="grid width in symbols")
    p.add_argument("-l", "--limit", type=positive_int, default=DEFAULT_LIMIT, help="maximum pages listed individually")
    p.add_argument("--histogram", action="store_true", help="include a histogram in the summary")
    p.add_argument("--tui", action="store_true", help="launch the interactive terminal viewer")
    p.add_argument("--path", default=DEFAULT_PATH, help=f"flags table to read (default {DEFAULT_PATH})")
    p.add_argument("--flag-table", metavar="JSON", help="JSON file describing the flag bit layout")
    p.add_argument("--image", metavar="PNG", help="write the scanned page map to a PNG image")
    p.add_argument("--histogram-plot", metavar="PNG", help="write a flag histogram chart to a PNG file")
    p.add_argument("--chunk-size", type=positive_int, default=DEFAULT_CHUNK_SIZE, help=argparse.SUPPRESS)
    p.add_argument(
        "--log-level", default="WARNING", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
    )
    p.add_argument("--log-file", help="write log output to this file")
    return p


def configure_logging(level: str, log_file: str | None = None, interactive: bool = False) -> None:
    """Set up the root logger; interactive sessions never log to the terminal."""
    if log_file:
        handler: logging.Handler = logging.FileHandler(log_file, encoding="utf-8")
    elif interactive:
        handler = logging.NullHandler()
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.basicConfig(level=getattr(logging, level), handlers=[handler], force=True)


@contextlib.contextmanager
def scan_progress(
    console: Console, description: str, enabled: bool,
) -> cabc.Iterator[cabc.Callable[[ScanProgress], None] | None]:
    if not enabled:
        yield None
        return
    columns = (SpinnerColumn(), TextColumn("{task.description}"), BarColumn(), MofNCompleteColumn())
    with Progress(*columns, console=console, transient=True) as progress:
        task = progress.add_task(description, total=None)

        def update(event: ScanProgress) -> None:
            progress.update(task, completed=event.entries_read, total=event.total_expected)

        yield update


def load_catalog(path: str | None) -> FlagCatalog:
    if path is None:
        return DEFAULT_CATALOG
    try:
        return FlagCatalog.from_json(path)
    except (OSError, ValueError) as exc:
        raise SystemExit(f"cannot load flag table {path}: {exc}") from exc


def _describe_range(request: ScanRequest) -> str:
    if request.count is None:
        return f"Analyzing ALL available pages starting from PFN 0x{request.start_index:x}"
    return f"Analyzing {request.count} pages starting from PFN 0x{request.start_index:x}"


def _finish(console: Console, result: ScanResult) -> None:
    if result.partial:
        console.print(Text("Scan interrupted by user; showing results for pages read so far", style="bold yellow"))
    else:
        console.print(Text("Scan complete", style="bold green"))


def run_sampled(args: argparse.Namespace, source: PageSource, catalog: FlagCatalog, console: Console) -> ScanResult:
    console.print(Text("Using sampling mode for fast statistical overview", style="green"))
    console.print(f"Sample size: {args.sampled} pages")
    console.print(Text("=" * 50, style="blue"))
    estimated = estimate_total_pages()
    with interrupt_cancels(CancelToken()) as token, scan_progress(console, "Sampling", True) as on_progress:
        result = run_sample(source, args.sampled, catalog, cancel=token, max_index=estimated, on_progress=on_progress)
    _finish(console, result)
    report.print_sampled_summary(
        console, result.stats, estimated, histogram=args.histogram, partial=result.partial,
        catalog=catalog, attempts=result.attempts,
    )
    return result


def run_batch(args: argparse.Namespace, source: PageSource, catalog: FlagCatalog, console: Console) -> ScanResult:
    """Summary-only or listing scan, plus optional grid and image output."""
    request = ScanRequest(args.start, args.count, args.chunk_size)
    keep_entries = not args.summary or args.grid or bool(args.image)
    if args.summary:
        console.print(Text("Using optimized summary mode (minimal memory usage)", style="green"))
    console.print(_describe_range(request) + (" (summary only)" if args.summary else ""))
    if not args.summary and request.count is not None and request.count > args.limit:
        console.print(Text(f"Note: Individual page output limited to first {args.limit} pages", style="yellow"))
    console.print(Text("=" * 50, style="blue"))
    if request.reports_progress:
        console.print(Text("Press Ctrl-C to stop and show summary of pages scanned so far", style="yellow"))

    with interrupt_cancels(CancelToken()) as token, scan_progress(
        console, "Reading page flags", request.reports_progress,
    ) as on_progress:
        result = run_scan(source, request, catalog, cancel=token, keep_entries=keep_entries, on_progress=on_progress)
    _finish(console, result)

    if result.stats.total_seen == 0:
        console.print(Text("No pages found in the specified range.", style="yellow"))
        return result

    if not args.summary and result.buffer is not None:
        total = len(result.buffer)
        if total > args.limit:
            console.print(Text(f"Showing first {args.limit} of {total} pages:", style="yellow"))
        for shown, (index, raw) in enumerate(result.buffer.entries()):
            if shown >= args.limit:
                break
            report.print_page(console, PageEntry.decoded(index, raw, catalog), catalog, verbose=args.verbose)
            console.print()
        if total > args.limit:
            console.print(
                Text(f"... and {total - args.limit} more pages (use --summary to see all statistics)", style="dim")
            )

    report.print_summary(console, result.stats, histogram=args.histogram, partial=result.partial, catalog=catalog)

    if args.grid and result.buffer is not None:
        flags = [raw for _index, raw in result.buffer.entries()]
        report.print_grid(console, flags, args.width, catalog)
    if args.image and result.buffer is not None:
        from .export import save_page_map

        save_page_map(result.buffer.all_masks(), args.image, width=args.width * 4)
        console.print(f"Page map written to {args.image}")
    return result


def run_tui(args: argparse.Namespace, source: PageSource, catalog: FlagCatalog, console: Console) -> None:
    from .tui import launch

    request = ScanRequest(args.start, args.count, args.chunk_size)
    snapshot = launch(source, request, catalog)
    state = "interrupted (partial)" if snapshot.partial or not snapshot.finished else "complete"
    console.print(f"Viewed {snapshot.stats.total_seen} pages; last scan {state}")


def main(argv: cabc.Sequence[str] | None = None) -> None:
    """Parse arguments and dispatch to the interactive or batch modes."""
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, args.log_file, interactive=args.tui)
    catalog = load_catalog(args.flag_table)
    source = PageSource(args.path)
    try:
        source.check()
    except PageSourceError as exc:
        raise SystemExit(f"Error: {exc}") from exc

    console = Console()
    logger.debug("Using flag table %s with %d flags", catalog.version, len(catalog))
    try:
        if args.tui:
            run_tui(args, source, catalog, console)
            return
        console.print(Text("KPageFlags Visualizer", style="bold blue"))
        if args.sampled is not None:
            result = run_sampled(args, source, catalog, console)
        else:
            result = run_batch(args, source, catalog, console)
    except PageSourceError as exc:
        raise SystemExit(f"Error: {exc}") from exc

    if args.histogram_plot:
        from .export import save_histogram_plot

        save_histogram_plot(result.stats, args.histogram_plot)
        console.print(f"Histogram chart written to {args.histogram_plot}")


if __name__ == "__main__":
    main()
