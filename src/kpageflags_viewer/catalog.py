"""Named page-flag bits, their categories, and the grid symbols they map to."""

from __future__ import annotations

import collections.abc as cabc
import enum
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeAlias

import numpy as np

logger = logging.getLogger(__name__)

if TYPE_CHECKING:  # pragma: no cover - typing helpers only
    from numpy import ndarray as NDArray
else:
    NDArray: TypeAlias = Any

NO_DATA_SYMBOL = "."
MULTI_SYMBOL = "●"
UNSCANNED_SYMBOL = " "


class Category(enum.IntEnum):
    """The eight fixed flag groupings; the value is the filter digit minus one."""

    STATE = 0
    MEMORY = 1
    USAGE = 2
    ALLOCATION = 3
    IO = 4
    STRUCTURE = 5
    SPECIAL = 6
    ERROR = 7

    @property
    def label(self) -> str:
        return "IO" if self is Category.IO else self.name.capitalize()

    @property
    def symbol(self) -> str:
        return _CATEGORY_SYMBOLS[self]

    @property
    def style(self) -> str:
        return self.name.lower()

    @property
    def bit(self) -> int:
        return 1 << int(self)

    @classmethod
    def from_digit(cls, digit: str) -> Category | None:
        """Map ``'1'``..``'8'`` to a category; anything else yields ``None``."""
        if len(digit) == 1 and "1" <= digit <= "8":
            return cls(int(digit) - 1)
        return None

    @classmethod
    def parse(cls, text: str) -> Category:
        key = text.strip().upper()
        try:
            return cls[key]
        except KeyError:
            msg = f"unknown flag category: {text!r}"
            raise ValueError(msg) from None


_CATEGORY_SYMBOLS = {
    Category.STATE: "S",
    Category.MEMORY: "M",
    Category.USAGE: "U",
    Category.ALLOCATION: "A",
    Category.IO: "I",
    Category.STRUCTURE: "T",
    Category.SPECIAL: "P",
    Category.ERROR: "E",
}

CATEGORY_HINTS = {
    Category.STATE: "LOCKED, DIRTY, etc.",
    Category.MEMORY: "LRU, ACTIVE, etc.",
    Category.USAGE: "REFERENCED, ANON, etc.",
    Category.ALLOCATION: "BUDDY, SLAB",
    Category.IO: "WRITEBACK",
    Category.STRUCTURE: "HUGE, THP, etc.",
    Category.SPECIAL: "KSM, ZERO_PAGE, etc.",
    Category.ERROR: "ERROR, HWPOISON",
}


@dataclass(frozen=True)
class FlagSpec:
    """One named bit of a page-flags word."""

    bit: int
    name: str
    description: str
    category: Category

    @property
    def mask(self) -> int:
        return 1 << self.bit


class FlagCatalog:
    """Versioned table of known flag bits.

    Bit positions differ between kernel releases, so the table is plain data:
    the built-in :data:`DEFAULT_CATALOG` or a JSON file loaded with
    :meth:`from_json`.
    """

    def __init__(self, flags: cabc.Iterable[FlagSpec], version: str = "custom") -> None:
        self.flags: tuple[FlagSpec, ...] = tuple(sorted(flags, key=lambda f: f.bit))
        self.version = version
        seen_bits: set[int] = set()
        seen_names: set[str] = set()
        for spec in self.flags:
            if not 0 <= spec.bit < 64:
                raise ValueError(f"flag bit out of range: {spec.name}={spec.bit}")
            if spec.bit in seen_bits:
                raise ValueError(f"duplicate flag bit {spec.bit}")
            if spec.name in seen_names:
                raise ValueError(f"duplicate flag name {spec.name!r}")
            seen_bits.add(spec.bit)
            seen_names.add(spec.name)
        self.known_mask = 0
        for spec in self.flags:
            self.known_mask |= spec.mask
        self._by_name = {spec.name: spec for spec in self.flags}

    def __len__(self) -> int:
        return len(self.flags)

    def __iter__(self) -> cabc.Iterator[FlagSpec]:
        return iter(self.flags)

    def __getitem__(self, name: str) -> FlagSpec:
        return self._by_name[name]

    @classmethod
    def from_mapping(cls, data: cabc.Mapping[str, Any]) -> FlagCatalog:
        """Build a catalog from ``{"version": ..., "flags": [...]}``."""
        try:
            raw_flags = data["flags"]
        except KeyError:
            raise ValueError("flag table has no 'flags' list") from None
        flags: list[FlagSpec] = []
        for item in raw_flags:
            try:
                flags.append(
                    FlagSpec(
                        bit=int(item["bit"]),
                        name=str(item["name"]),
                        description=str(item.get("description", "")),
                        category=Category.parse(str(item["category"])),
                    )
                )
            except KeyError as exc:
                raise ValueError(f"flag entry missing field {exc}: {item!r}") from None
        return cls(flags, version=str(data.get("version", "custom")))

    @classmethod
    def from_json(cls, path: str | Path) -> FlagCatalog:
        with open(path, encoding="utf-8") as fh:
            data = json.load(fh)
        catalog = cls.from_mapping(data)
        logger.debug("Loaded flag table %s (%d flags) from %s", catalog.version, len(catalog), path)
        return catalog

    def decode(self, raw_flags: int) -> frozenset[Category]:
        """Return the categories of every known bit set in ``raw_flags``.

        Unknown bits contribute nothing; they are never an error.
        """
        return frozenset(spec.category for spec in self.flags if raw_flags & spec.mask)

    def category_mask(self, raw_flags: int) -> int:
        """Like :meth:`decode` but as an 8-bit mask indexed by category value."""
        mask = 0
        for spec in self.flags:
            if raw_flags & spec.mask:
                mask |= spec.category.bit
        return mask

    def decode_array(self, words: NDArray) -> NDArray:
        """Vectorised :meth:`category_mask` over a ``uint64`` array."""
        arr = np.asarray(words, dtype=np.uint64)
        masks = np.zeros(arr.shape, dtype=np.uint8)
        for spec in self.flags:
            hit = (arr >> np.uint64(spec.bit)) & np.uint64(1)
            masks |= hit.astype(np.uint8) << np.uint8(int(spec.category))
        return masks

    def flag_names(self, raw_flags: int) -> list[str]:
        return [spec.name for spec in self.flags if raw_flags & spec.mask]

    def flag_descriptions(self, raw_flags: int) -> list[tuple[str, str]]:
        return [(spec.name, spec.description) for spec in self.flags if raw_flags & spec.mask]

    def unknown_bits(self, raw_flags: int) -> list[int]:
        unknown = raw_flags & ~self.known_mask
        return [bit for bit in range(64) if unknown & (1 << bit)]


def categories_from_mask(mask: int) -> frozenset[Category]:
    return frozenset(cat for cat in Category if mask & cat.bit)


def symbol_for(categories: cabc.Collection[Category]) -> tuple[str, str]:
    """Return the ``(symbol, style)`` pair for a decoded category set."""
    if not categories:
        return NO_DATA_SYMBOL, "empty"
    if len(categories) == 1:
        (only,) = tuple(categories)
        return only.symbol, only.style
    return MULTI_SYMBOL, "multi"


def symbol_for_mask(mask: int) -> tuple[str, str]:
    return symbol_for(categories_from_mask(mask))


def _flag(bit: int, name: str, description: str, category: Category) -> FlagSpec:
    return FlagSpec(bit=bit, name=name, description=description, category=category)


DEFAULT_FLAGS: tuple[FlagSpec, ...] = (
    _flag(0, "LOCKED", "Page is locked", Category.STATE),
    _flag(1, "ERROR", "Page has error", Category.ERROR),
    _flag(2, "REFERENCED", "Page has been referenced", Category.USAGE),
    _flag(3, "UPTODATE", "Page is up to date", Category.STATE),
    _flag(4, "DIRTY", "Page is dirty", Category.STATE),
    _flag(5, "LRU", "Page is on LRU list", Category.MEMORY),
    _flag(6, "ACTIVE", "Page is on active list", Category.MEMORY),
    _flag(7, "SLAB", "Page is slab allocated", Category.ALLOCATION),
    _flag(8, "WRITEBACK", "Page is under writeback", Category.IO),
    _flag(9, "RECLAIM", "Page is being reclaimed", Category.MEMORY),
    _flag(10, "BUDDY", "Page is free buddy page", Category.ALLOCATION),
    _flag(11, "MMAP", "Page is memory mapped", Category.USAGE),
    _flag(12, "ANON", "Page is anonymous", Category.USAGE),
    _flag(13, "SWAPCACHE", "Page is in swap cache", Category.MEMORY),
    _flag(14, "SWAPBACKED", "Page is swap backed", Category.MEMORY),
    _flag(15, "COMPOUND_HEAD", "Compound page head", Category.STRUCTURE),
    _flag(16, "COMPOUND_TAIL", "Compound page tail", Category.STRUCTURE),
    _flag(17, "HUGE", "Huge page", Category.STRUCTURE),
    _flag(18, "UNEVICTABLE", "Page is unevictable", Category.MEMORY),
    _flag(19, "HWPOISON", "Hardware poisoned page", Category.ERROR),
    _flag(20, "NOPAGE", "No page frame exists", Category.STATE),
    _flag(21, "KSM", "KSM page", Category.SPECIAL),
    _flag(22, "THP", "Transparent huge page", Category.STRUCTURE),
    _flag(23, "OFFLINE", "Page is offline", Category.STATE),
    _flag(24, "ZERO_PAGE", "Zero page", Category.SPECIAL),
    _flag(25, "IDLE", "Page is idle", Category.USAGE),
    _flag(26, "PGTABLE", "Page table page", Category.SPECIAL),
    _flag(32, "RESERVED", "Reserved page (common in early memory)", Category.STATE),
)

DEFAULT_CATALOG = FlagCatalog(DEFAULT_FLAGS, version="linux-kpageflags-v1")
