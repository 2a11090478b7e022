"""Non-interactive text reports printed with rich."""

from __future__ import annotations

import collections.abc as cabc
from typing import TYPE_CHECKING, Any, TypeAlias

import numpy as np
from rich.console import Console
from rich.text import Text

from .aggregate import Stats
from .catalog import (
    DEFAULT_CATALOG,
    MULTI_SYMBOL,
    NO_DATA_SYMBOL,
    Category,
    FlagCatalog,
    symbol_for_mask,
)
from .source import PageEntry

if TYPE_CHECKING:  # pragma: no cover - typing helpers only
    from numpy import ndarray as NDArray
else:
    NDArray: TypeAlias = Any

HISTOGRAM_TOP = 15
HISTOGRAM_WIDTH = 60
UNKNOWN_SYMBOL = "?"

RICH_STYLES = {
    "state": "blue",
    "memory": "green",
    "usage": "yellow",
    "allocation": "cyan",
    "io": "magenta",
    "structure": "red",
    "special": "white",
    "error": "bright_red",
    "multi": "bold bright_white",
    "empty": "dim",
    "unknown": "red",
}

# histogram bar fill per category
BAR_CHARS = {
    Category.STATE: "█",
    Category.MEMORY: "▓",
    Category.USAGE: "▒",
    Category.ALLOCATION: "░",
    Category.IO: "▄",
    Category.STRUCTURE: "▀",
    Category.SPECIAL: "■",
    Category.ERROR: "▬",
}


def _heading(console: Console, title: str) -> None:
    console.print()
    console.print(Text(title, style="bold blue"))


def _pct(count: int, total: int) -> float:
    return count / total * 100.0 if total else 0.0


def print_page(
    console: Console, entry: PageEntry, catalog: FlagCatalog = DEFAULT_CATALOG, verbose: bool = False,
) -> None:
    """One listing entry: PFN, raw word, then flag names or descriptions."""
    index, raw_flags = entry.index, entry.raw_flags
    header = Text()
    header.append(f"PFN: 0x{index:x}", style="bold cyan")
    header.append(" ")
    header.append(f"Flags: 0x{raw_flags:016x}", style="yellow")
    console.print(header)
    if raw_flags == 0:
        console.print(Text("  No flags set", style="dim"))
        return
    unknown = catalog.unknown_bits(raw_flags)
    if verbose:
        for name, desc in catalog.flag_descriptions(raw_flags):
            console.print(Text.assemble("  ", (name, "bold green"), f" - {desc}"))
        for bit in unknown:
            console.print(
                Text.assemble("  ", (f"UNKNOWN_BIT_{bit}", "bold red"), (" - Unknown flag bit", "dim"))
            )
        return
    line = Text("  ")
    names = [(name, "green") for name in catalog.flag_names(raw_flags)]
    names += [(f"UNKNOWN_BIT_{bit}", "red") for bit in unknown]
    for i, (name, style) in enumerate(names):
        if i:
            line.append(", ")
        line.append(name, style=style)
    console.print(line)


def _category_of(catalog: FlagCatalog, name: str) -> Category | None:
    try:
        return catalog[name].category
    except KeyError:
        return None


def print_histogram(
    console: Console,
    stats: Stats,
    catalog: FlagCatalog = DEFAULT_CATALOG,
    extrapolation: float | None = None,
) -> None:
    """Bar chart of the most common flags, shaded by category."""
    ranked = stats.top_flags()
    if not ranked:
        return
    _heading(console, "=== SAMPLED HISTOGRAM ===" if extrapolation is not None else "=== HISTOGRAM ===")
    max_count = ranked[0][1]
    for name, count in ranked[:HISTOGRAM_TOP]:
        length = max(1, int(count / max_count * HISTOGRAM_WIDTH))
        category = _category_of(catalog, name)
        char = BAR_CHARS.get(category, "█") if category is not None else "█"
        style = RICH_STYLES[category.style] if category is not None else "white"
        line = Text()
        line.append(f"{name:>13}", style="bold green")
        line.append(" │")
        line.append(char * length, style=style)
        line.append(" " * (HISTOGRAM_WIDTH - length))
        line.append(f" │ {count} ({stats.percent(count):.1f}%")
        if extrapolation is not None:
            line.append(f", ~{int(count * extrapolation)}", style="cyan")
        line.append(")")
        console.print(line)
    if len(ranked) > HISTOGRAM_TOP:
        console.print(Text(f"  ... (showing top {HISTOGRAM_TOP} of {len(ranked)} flags)", style="dim"))
    console.print(Text("Scale:", style="dim"))
    console.print(Text.assemble("  ", ("█" * 10, "white"), (f" = {max_count // 6} pages", "dim")))


def _print_categories(console: Console, stats: Stats, title: str, extrapolation: float | None = None) -> None:
    ranked = stats.top_categories()
    if not ranked:
        return
    _heading(console, title)
    for cat, count in ranked:
        line = Text("  ")
        line.append(cat.symbol, style=f"bold {RICH_STYLES[cat.style]}")
        line.append(f" {cat.label}: {count} ({stats.percent(count):.1f}%")
        if extrapolation is not None:
            line.append(f" of samples, ~{int(count * extrapolation)} estimated total")
        line.append(")")
        console.print(line)


def print_summary(
    console: Console,
    stats: Stats,
    histogram: bool = False,
    partial: bool = False,
    catalog: FlagCatalog = DEFAULT_CATALOG,
) -> None:
    _heading(console, "=== SUMMARY ===")
    if partial:
        console.print(Text("Scan interrupted: statistics cover the pages read so far", style="yellow"))
    console.print(Text.assemble("Total pages analyzed: ", (str(stats.total_seen), "cyan")))
    console.print(Text.assemble("Pages with flags: ", (str(stats.with_flags_count), "green")))
    console.print(Text.assemble("Pages without flags: ", (str(stats.without_flags_count), "yellow")))
    ranked = stats.top_flags()
    if ranked:
        _heading(console, "Flag distribution:")
        for name, count in ranked:
            console.print(
                Text.assemble("  ", (name, "bold green"), f": {count} ({stats.percent(count):.1f}%)")
            )
        if histogram:
            print_histogram(console, stats, catalog)
    _print_categories(console, stats, "Flag categories:")


def print_sampled_summary(
    console: Console,
    stats: Stats,
    estimated_total: int,
    histogram: bool = False,
    partial: bool = False,
    catalog: FlagCatalog = DEFAULT_CATALOG,
    attempts: int | None = None,
) -> None:
    """Summary of a random sample, with counts scaled up to ``estimated_total``."""
    samples = stats.total_seen
    _heading(console, "=== SAMPLED SUMMARY ===")
    if partial:
        console.print(Text("Sampling interrupted: statistics cover the samples collected so far", style="yellow"))
    console.print(Text.assemble("Samples collected: ", (str(samples), "cyan")))
    if attempts is not None and attempts > samples:
        console.print(Text(f"Attempts: {attempts} ({attempts - samples} missed)", style="dim"))
    console.print(Text.assemble("Estimated total pages in system: ", (str(estimated_total), "yellow")))
    console.print(f"Sampling coverage: {_pct(samples, estimated_total):.3f}%")
    if samples == 0:
        console.print(Text("No samples collected.", style="yellow"))
        return

    factor = estimated_total / samples
    _heading(console, "Sample Statistics:")
    console.print(f"Pages with flags: {stats.with_flags_count} ({stats.percent(stats.with_flags_count):.1f}%)")
    console.print(
        f"Pages without flags: {stats.without_flags_count} "
        f"({stats.percent(stats.without_flags_count):.1f}%)"
    )
    _heading(console, "Extrapolated System Statistics:")
    console.print(
        f"Estimated pages with flags: {int(stats.with_flags_count * factor)} "
        f"({stats.percent(stats.with_flags_count):.1f}%)"
    )
    ranked = stats.top_flags()
    if ranked:
        _heading(console, "Flag distribution (sampled):")
        for name, count in ranked:
            console.print(
                Text.assemble(
                    "  ",
                    (name, "bold green"),
                    f": {count} ({stats.percent(count):.1f}% of samples, ",
                    (f"~{int(count * factor)}", "cyan"),
                    " estimated total)",
                )
            )
        if histogram:
            print_histogram(console, stats, catalog, extrapolation=factor)
    _print_categories(console, stats, "Flag categories (sampled):", extrapolation=factor)


def print_legend(console: Console) -> None:
    console.print(Text("Legend:", style="bold"))
    console.print(Text.assemble("  ", (NO_DATA_SYMBOL, RICH_STYLES["empty"]), " = no flags"))
    for cat in Category:
        console.print(Text.assemble("  ", (cat.symbol, RICH_STYLES[cat.style]), f" = {cat.label}"))
    console.print(Text.assemble("  ", (MULTI_SYMBOL, RICH_STYLES["multi"]), " = Multiple categories"))
    console.print(Text.assemble("  ", (UNKNOWN_SYMBOL, RICH_STYLES["unknown"]), " = Unknown flags only"))


def grid_symbols(
    flags: NDArray, catalog: FlagCatalog = DEFAULT_CATALOG,
) -> cabc.Iterator[tuple[str, str]]:
    """``(symbol, style)`` per raw word; non-zero words with no known bit get ``?``."""
    words = np.asarray(flags, dtype=np.uint64)
    masks = catalog.decode_array(words)
    for raw, mask in zip(words.tolist(), masks.tolist()):
        if raw and not mask:
            yield UNKNOWN_SYMBOL, "unknown"
        else:
            yield symbol_for_mask(mask)


def print_grid(
    console: Console, flags: NDArray, width: int = 80, catalog: FlagCatalog = DEFAULT_CATALOG,
) -> None:
    """Legend, then one symbol per entry, ``width`` symbols per row."""
    if width <= 0:
        raise ValueError("grid width must be positive")
    _heading(console, "=== FLAG VISUALIZATION ===")
    print_legend(console)
    console.print()
    line = Text()
    for i, (symbol, style) in enumerate(grid_symbols(flags, catalog)):
        if i and i % width == 0:
            console.print(line, no_wrap=True, overflow="crop")
            line = Text()
        line.append(symbol, style=RICH_STYLES[style])
    if line:
        console.print(line, no_wrap=True, overflow="crop")
