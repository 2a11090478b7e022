"""PNG exports: the page map as an image and the flag histogram as a chart."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeAlias

import numpy as np

from .aggregate import UNSCANNED, Stats
from .catalog import symbol_for_mask

if TYPE_CHECKING:  # pragma: no cover - typing helpers only
    from numpy import ndarray as NDArray
    from PIL.Image import Image
else:
    NDArray: TypeAlias = Any
    Image: TypeAlias = Any

logger = logging.getLogger(__name__)

PLOT_TOP_FLAGS = 15

# matplotlib color specs per symbol style
STYLE_COLORS = {
    "state": "tab:blue",
    "memory": "tab:green",
    "usage": "gold",
    "allocation": "tab:cyan",
    "io": "tab:purple",
    "structure": "tab:red",
    "special": "white",
    "error": "red",
    "multi": "lightgray",
    "empty": "#202020",
    "unscanned": "black",
}


def style_palette() -> NDArray:
    """``(257, 3)`` uint8 lookup: rows 0-255 per category mask, row 256 unscanned."""
    from matplotlib import colors as mcolors

    def rgb(spec: str) -> list[int]:
        return [int(round(c * 255)) for c in mcolors.to_rgb(spec)]

    rows = [rgb(STYLE_COLORS[symbol_for_mask(mask)[1]]) for mask in range(256)]
    rows.append(rgb(STYLE_COLORS["unscanned"]))
    return np.asarray(rows, dtype=np.uint8)


def page_map_image(masks: NDArray, width: int = 256, scale: int = 1) -> Image:
    """One ``scale x scale`` block per entry, ``width`` entries per row.

    ``masks`` holds category masks; :data:`UNSCANNED` values and the padding
    after the last entry are drawn black.
    """
    try:
        from PIL import Image as PILImage
    except ModuleNotFoundError as exc:  # pragma: no cover
        raise RuntimeError("Exporting page maps requires Pillow") from exc

    if width <= 0 or scale <= 0:
        raise ValueError("width and scale must be positive")
    values = np.asarray(masks, dtype=np.int16).ravel()
    height = max(1, -(-values.shape[0] // width))
    lookup = np.full(height * width, 256, dtype=np.int16)
    lookup[: values.shape[0]] = np.where(values == UNSCANNED, 256, values & 0xFF)
    pixels = style_palette()[lookup].reshape(height, width, 3)
    img = PILImage.fromarray(pixels)
    if scale > 1:
        img = img.resize((width * scale, height * scale), PILImage.Resampling.NEAREST)
    return img


def save_page_map(masks: NDArray, path: str | Path, width: int = 256, scale: int = 1) -> Path:
    path = Path(path)
    page_map_image(masks, width, scale).save(path)
    logger.info("Wrote page map of %d entries to %s", len(masks), path)
    return path


def save_histogram_plot(stats: Stats, path: str | Path, title: str = "Page flag distribution") -> Path:
    """Horizontal bar chart of the most common flags."""
    import matplotlib

    matplotlib.use("Agg")
    import matplotlib.pyplot as plt

    path = Path(path)
    ranked = stats.top_flags(PLOT_TOP_FLAGS)
    names = [name for name, _count in reversed(ranked)]
    counts = [count for _name, count in reversed(ranked)]
    fig, ax = plt.subplots(figsize=(8, max(2.0, 0.35 * len(ranked) + 1)))
    try:
        ax.barh(names, counts, color="tab:blue")
        ax.set_xlabel(f"pages (of {stats.total_seen})")
        ax.set_title(title)
        for y, count in enumerate(counts):
            ax.annotate(
                f"{stats.percent(count):.1f}%", (count, y),
                xytext=(3, 0), textcoords="offset points", va="center", fontsize=8,
            )
        fig.tight_layout()
        fig.savefig(path)
    finally:
        plt.close(fig)
    logger.info("Wrote histogram of %d flags to %s", len(ranked), path)
    return path
