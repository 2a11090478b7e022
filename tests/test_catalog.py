import json

import numpy as np
import pytest

import kpageflags_viewer.catalog as catalog
from kpageflags_viewer.catalog import DEFAULT_CATALOG, Category, FlagCatalog, FlagSpec


def test_decode_uptodate_lru_active_is_state_and_memory() -> None:
    cats = DEFAULT_CATALOG.decode(0x68)

    assert cats == frozenset({Category.STATE, Category.MEMORY})
    assert catalog.symbol_for(cats) == (catalog.MULTI_SYMBOL, "multi")


def test_decode_zero_has_no_categories() -> None:
    cats = DEFAULT_CATALOG.decode(0)

    assert cats == frozenset()
    assert catalog.symbol_for(cats) == (".", "empty")


def test_single_category_uses_its_letter() -> None:
    slab = DEFAULT_CATALOG["SLAB"].mask

    assert catalog.symbol_for(DEFAULT_CATALOG.decode(slab)) == ("A", "allocation")
    assert catalog.symbol_for(DEFAULT_CATALOG.decode(DEFAULT_CATALOG["HWPOISON"].mask)) == ("E", "error")


def test_unknown_bits_do_not_contribute_categories() -> None:
    raw = (1 << 40) | DEFAULT_CATALOG["LRU"].mask

    assert DEFAULT_CATALOG.decode(1 << 40) == frozenset()
    assert DEFAULT_CATALOG.unknown_bits(raw) == [40]
    assert DEFAULT_CATALOG.flag_names(raw) == ["LRU"]


def test_decode_array_matches_scalar_decode() -> None:
    words = [0, 0x68, 1 << 7, 1 << 32, 1 << 63, (1 << 19) | (1 << 24), 0xFFFFFFFFFFFFFFFF]

    masks = DEFAULT_CATALOG.decode_array(np.asarray(words, dtype=np.uint64))

    assert masks.dtype == np.uint8
    assert masks.tolist() == [DEFAULT_CATALOG.category_mask(w) for w in words]
    for word, mask in zip(words, masks.tolist()):
        assert catalog.categories_from_mask(mask) == DEFAULT_CATALOG.decode(word)


def test_category_digits_and_labels() -> None:
    assert Category.from_digit("1") is Category.STATE
    assert Category.from_digit("8") is Category.ERROR
    assert Category.from_digit("0") is None
    assert Category.from_digit("9") is None
    assert Category.IO.label == "IO"
    assert Category.ALLOCATION.label == "Allocation"
    assert [c.symbol for c in Category] == list("SMUAITPE")


def test_catalog_rejects_duplicate_bits() -> None:
    flags = [
        FlagSpec(0, "A", "", Category.STATE),
        FlagSpec(0, "B", "", Category.MEMORY),
    ]

    with pytest.raises(ValueError):
        FlagCatalog(flags)


def test_catalog_rejects_out_of_range_bit() -> None:
    with pytest.raises(ValueError):
        FlagCatalog([FlagSpec(64, "X", "", Category.STATE)])


def test_catalog_loads_from_json(tmp_path) -> None:
    table = {
        "version": "test-v2",
        "flags": [
            {"bit": 3, "name": "FOO", "description": "foo page", "category": "usage"},
            {"bit": 9, "name": "BAR", "category": "Error"},
        ],
    }
    path = tmp_path / "flags.json"
    path.write_text(json.dumps(table))

    loaded = FlagCatalog.from_json(path)

    assert loaded.version == "test-v2"
    assert len(loaded) == 2
    assert loaded.decode(1 << 3) == frozenset({Category.USAGE})
    assert loaded.decode(1 << 9) == frozenset({Category.ERROR})
    assert loaded.flag_descriptions(1 << 3) == [("FOO", "foo page")]
    assert loaded.unknown_bits(1 << 4) == [4]


def test_catalog_json_with_bad_category_is_rejected() -> None:
    with pytest.raises(ValueError):
        FlagCatalog.from_mapping({"flags": [{"bit": 1, "name": "X", "category": "bogus"}]})
    with pytest.raises(ValueError):
        FlagCatalog.from_mapping({"version": "empty"})
