"""Running statistics and the decoded-entry buffer shared with the renderer.

Both structures are written by the scan worker and read by the render loop.
Writers build a new immutable value after every fold and publish it with a
single reference assignment, so readers never observe a half-updated one.
"""

from __future__ import annotations

import bisect
import collections.abc as cabc
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, TypeAlias

import numpy as np

from .catalog import DEFAULT_CATALOG, Category, FlagCatalog

if TYPE_CHECKING:  # pragma: no cover - typing helpers only
    from numpy import ndarray as NDArray
else:
    NDArray: TypeAlias = Any

UNSCANNED = -1


def _empty_mapping() -> cabc.Mapping[Any, int]:
    return MappingProxyType({})


@dataclass(frozen=True)
class Stats:
    """Consistent counts over some prefix of the scanned entries."""

    total_seen: int = 0
    with_flags_count: int = 0
    without_flags_count: int = 0
    per_flag_count: cabc.Mapping[str, int] = field(default_factory=_empty_mapping)
    per_category_count: cabc.Mapping[Category, int] = field(default_factory=_empty_mapping)

    def top_flags(self, limit: int | None = None) -> list[tuple[str, int]]:
        """Non-zero flag counts, largest first."""
        ranked = sorted(
            ((name, count) for name, count in self.per_flag_count.items() if count > 0),
            key=lambda item: (-item[1], item[0]),
        )
        return ranked if limit is None else ranked[:limit]

    def top_categories(self) -> list[tuple[Category, int]]:
        return sorted(
            ((cat, count) for cat, count in self.per_category_count.items() if count > 0),
            key=lambda item: (-item[1], int(item[0])),
        )

    def percent(self, count: int) -> float:
        if self.total_seen == 0:
            return 0.0
        return count / self.total_seen * 100.0


class ScanAggregator:
    """Folds decoded entries into :class:`Stats`.

    ``add_chunk`` may run on a worker thread while ``snapshot`` is called
    from the UI thread.
    """

    def __init__(self, catalog: FlagCatalog = DEFAULT_CATALOG) -> None:
        self.catalog = catalog
        self._lock = threading.Lock()
        self._flag_counts = np.zeros(len(catalog), dtype=np.int64)
        self._category_counts = np.zeros(len(Category), dtype=np.int64)
        self._total = 0
        self._with_flags = 0
        self._snapshot = self._build()

    def _build(self) -> Stats:
        per_flag = {
            spec.name: int(count)
            for spec, count in zip(self.catalog.flags, self._flag_counts.tolist())
        }
        per_category = {cat: int(self._category_counts[int(cat)]) for cat in Category}
        return Stats(
            total_seen=self._total,
            with_flags_count=self._with_flags,
            without_flags_count=self._total - self._with_flags,
            per_flag_count=MappingProxyType(per_flag),
            per_category_count=MappingProxyType(per_category),
        )

    def add(self, raw_flags: int) -> None:
        """Fold a single raw word."""
        mask = self.catalog.category_mask(raw_flags)
        with self._lock:
            self._total += 1
            if raw_flags:
                self._with_flags += 1
            for i, spec in enumerate(self.catalog.flags):
                if raw_flags & spec.mask:
                    self._flag_counts[i] += 1
            for cat in Category:
                if mask & cat.bit:
                    self._category_counts[int(cat)] += 1
            self._snapshot = self._build()

    def add_chunk(self, flags: NDArray, masks: NDArray | None = None) -> None:
        """Fold a chunk of raw words; ``masks`` may be precomputed category masks."""
        words = np.asarray(flags, dtype=np.uint64)
        if masks is None:
            masks = self.catalog.decode_array(words)
        flag_hits = [
            int(np.count_nonzero(words & np.uint64(spec.mask))) for spec in self.catalog.flags
        ]
        category_hits = [int(np.count_nonzero(masks & np.uint8(cat.bit))) for cat in Category]
        nonzero = int(np.count_nonzero(words))
        with self._lock:
            self._total += int(words.shape[0])
            self._with_flags += nonzero
            self._flag_counts += np.asarray(flag_hits, dtype=np.int64)
            self._category_counts += np.asarray(category_hits, dtype=np.int64)
            self._snapshot = self._build()

    def snapshot(self) -> Stats:
        return self._snapshot


@dataclass(frozen=True, eq=False)
class DecodedChunk:
    """Decoded entries; ``indices`` is ``None`` for a contiguous run from ``start``."""

    start: int
    flags: NDArray
    masks: NDArray
    indices: NDArray | None = None

    def __len__(self) -> int:
        return int(self.flags.shape[0])

    @property
    def first_index(self) -> int:
        return self.start

    @property
    def last_index(self) -> int:
        if self.indices is None:
            return self.start + len(self) - 1
        return int(self.indices[-1])

    def index_list(self) -> list[int]:
        if self.indices is None:
            return list(range(self.start, self.start + len(self)))
        return self.indices.tolist()


@dataclass(frozen=True, eq=False)
class BufferView:
    """Immutable view over the chunks decoded so far, in index order."""

    chunks: tuple[DecodedChunk, ...] = ()

    def __len__(self) -> int:
        return sum(len(chunk) for chunk in self.chunks)

    @property
    def first_index(self) -> int | None:
        return self.chunks[0].first_index if self.chunks else None

    @property
    def end_index(self) -> int | None:
        """One past the highest decoded index."""
        return self.chunks[-1].last_index + 1 if self.chunks else None

    def _overlapping(self, start: int, stop: int) -> cabc.Iterator[DecodedChunk]:
        firsts = [chunk.first_index for chunk in self.chunks]
        pos = max(0, bisect.bisect_right(firsts, start) - 1)
        for chunk in self.chunks[pos:]:
            if chunk.first_index >= stop:
                break
            if chunk.last_index >= start:
                yield chunk

    def window(self, start: int, stop: int) -> NDArray:
        """Category masks for ``[start, stop)``; :data:`UNSCANNED` where absent."""
        length = max(0, stop - start)
        out = np.full(length, UNSCANNED, dtype=np.int16)
        if length == 0:
            return out
        for chunk in self._overlapping(start, stop):
            if chunk.indices is None:
                lo = max(start, chunk.first_index)
                hi = min(stop, chunk.last_index + 1)
                out[lo - start:hi - start] = chunk.masks[lo - chunk.start:hi - chunk.start]
                continue
            lo_idx = np.uint64(max(0, start))
            hi_idx = np.uint64(max(0, stop))
            sel = (chunk.indices >= lo_idx) & (chunk.indices < hi_idx)
            if not sel.any():
                continue
            offsets = (chunk.indices[sel] - lo_idx).astype(np.int64)
            out[offsets] = chunk.masks[sel]
        return out

    def all_masks(self) -> NDArray:
        if not self.chunks:
            return np.zeros(0, dtype=np.uint8)
        return np.concatenate([chunk.masks for chunk in self.chunks])

    def entries(self) -> cabc.Iterator[tuple[int, int]]:
        for chunk in self.chunks:
            yield from zip(chunk.index_list(), chunk.flags.tolist())


class DecodedBuffer:
    """Append-only store of decoded chunks, read through :class:`BufferView`."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._view = BufferView()

    def append(self, indices: NDArray, flags: NDArray, masks: NDArray) -> None:
        """Add one chunk; ``indices`` must be strictly increasing."""
        count = int(indices.shape[0])
        if count == 0:
            return
        start = int(indices[0])
        if int(indices[-1]) - start == count - 1:
            chunk = DecodedChunk(start=start, flags=flags, masks=masks)
        else:
            chunk = DecodedChunk(start=start, flags=flags, masks=masks, indices=indices)
        with self._lock:
            self._view = BufferView(self._view.chunks + (chunk,))

    def view(self) -> BufferView:
        return self._view
