import numpy as np
import pytest

import kpageflags_viewer.export as export
from kpageflags_viewer.aggregate import UNSCANNED, Stats
from kpageflags_viewer.catalog import Category


def test_page_map_image_geometry_and_colors() -> None:
    masks = np.asarray([0, Category.STATE.bit, Category.STATE.bit | Category.MEMORY.bit], dtype=np.int16)

    img = export.page_map_image(masks, width=2, scale=3)

    assert img.size == (6, 6)
    palette = export.style_palette()
    assert img.getpixel((0, 0)) == tuple(palette[0].tolist())
    assert img.getpixel((3, 0)) == tuple(palette[Category.STATE.bit].tolist())
    assert img.getpixel((0, 3)) == tuple(palette[3].tolist())
    # padding after the last entry
    assert img.getpixel((5, 5)) == (0, 0, 0)


def test_unscanned_entries_are_black() -> None:
    img = export.page_map_image(np.asarray([UNSCANNED, Category.IO.bit], dtype=np.int16), width=2)

    assert img.getpixel((0, 0)) == (0, 0, 0)
    assert img.getpixel((1, 0)) != (0, 0, 0)


def test_page_map_rejects_bad_width() -> None:
    with pytest.raises(ValueError):
        export.page_map_image(np.zeros(4, dtype=np.uint8), width=0)


def test_save_outputs(tmp_path) -> None:
    stats = Stats(total_seen=10, per_flag_count={"LRU": 6, "SLAB": 2, "KSM": 0})

    chart = export.save_histogram_plot(stats, tmp_path / "hist.png")
    page_map = export.save_page_map(np.zeros(10, dtype=np.uint8), tmp_path / "map.png", width=5, scale=2)

    assert chart.read_bytes()[:8] == b"\x89PNG\r\n\x1a\n"
    assert page_map.stat().st_size > 0
