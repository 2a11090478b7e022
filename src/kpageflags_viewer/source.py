"""Chunked, cancellable reader for the per-page flags table."""

from __future__ import annotations

import collections.abc as cabc
import logging
import os
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeAlias

import numpy as np

from .catalog import Category, FlagCatalog

logger = logging.getLogger(__name__)

if TYPE_CHECKING:  # pragma: no cover - typing helpers only
    from numpy import ndarray as NDArray
else:
    NDArray: TypeAlias = Any

DEFAULT_PATH = "/proc/kpageflags"
MEMINFO_PATH = "/proc/meminfo"
ENTRY_SIZE = 8  # one little-endian u64 per page frame
ENTRY_DTYPE = np.dtype("<u8")
DEFAULT_CHUNK_SIZE = 4096
PROGRESS_THRESHOLD = 10_000
FALLBACK_TOTAL_PAGES = 1_048_576  # 4 GiB of 4 KiB pages
ASSUMED_PAGE_SIZE = 4096


class PageSourceError(RuntimeError):
    """Fatal problem opening the flags table."""


class SourceUnavailable(PageSourceError):
    """The table does not exist or the platform does not provide it."""


class PermissionDenied(PageSourceError):
    """The table exists but the current user may not read it."""


@dataclass(frozen=True)
class ScanRequest:
    """Range of entries to read; ``count=None`` means until end-of-data."""

    start_index: int = 0
    count: int | None = None
    chunk_size: int = DEFAULT_CHUNK_SIZE

    def __post_init__(self) -> None:
        if self.start_index < 0:
            raise ValueError("start_index must be non-negative")
        if self.count is not None and self.count <= 0:
            raise ValueError("count must be positive (or None for all)")
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")

    @property
    def unbounded(self) -> bool:
        return self.count is None

    @property
    def stop_index(self) -> int | None:
        """Exclusive end of the requested range, if bounded."""
        if self.count is None:
            return None
        return self.start_index + self.count

    @property
    def reports_progress(self) -> bool:
        return self.count is None or self.count > PROGRESS_THRESHOLD


@dataclass(frozen=True)
class PageEntry:
    """A decoded page: index, raw word and its category set."""

    index: int
    raw_flags: int
    categories: frozenset[Category] = frozenset()

    @classmethod
    def decoded(cls, index: int, raw_flags: int, catalog: FlagCatalog) -> PageEntry:
        return cls(index, raw_flags, catalog.decode(raw_flags))


@dataclass(frozen=True, eq=False)
class PageChunk:
    """A run of entries read in one step, as parallel ``uint64`` arrays."""

    indices: NDArray
    flags: NDArray

    def __len__(self) -> int:
        return int(self.indices.shape[0])

    @property
    def first_index(self) -> int:
        return int(self.indices[0])

    @property
    def last_index(self) -> int:
        return int(self.indices[-1])

    def entries(self) -> cabc.Iterator[tuple[int, int]]:
        for idx, raw in zip(self.indices.tolist(), self.flags.tolist()):
            yield int(idx), int(raw)


@dataclass(frozen=True)
class ScanProgress:
    """Emitted once per chunk for large or unbounded scans."""

    entries_read: int
    total_expected: int | None
    attempts: int | None = None

    @property
    def fraction(self) -> float | None:
        if not self.total_expected:
            return None
        return min(1.0, self.entries_read / self.total_expected)


class CancelToken:
    """Cooperative stop signal shared between the UI and a scan."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def _make_chunk(start: int, words: NDArray) -> PageChunk:
    flags = np.ascontiguousarray(words, dtype=np.uint64)
    indices = np.arange(start, start + flags.shape[0], dtype=np.uint64)
    return PageChunk(indices=indices, flags=flags)


def estimate_total_pages(meminfo_path: str | Path = MEMINFO_PATH) -> int:
    """Approximate the number of page frames from ``MemTotal``."""
    try:
        with open(meminfo_path, encoding="ascii", errors="replace") as fh:
            for line in fh:
                if line.startswith("MemTotal:"):
                    parts = line.split()
                    if len(parts) >= 2:
                        return int(parts[1]) * 1024 // ASSUMED_PAGE_SIZE
    except (OSError, ValueError) as exc:
        logger.debug("Could not read %s: %s", meminfo_path, exc)
    return FALLBACK_TOTAL_PAGES


class PageSource:
    """Streams ``(index, raw_flags)`` chunks from a flags table.

    The table is a flat array of little-endian 64-bit words addressed by
    ``index * 8``. A memory mapping is attempted first; pseudo-files such as
    ``/proc/kpageflags`` refuse that, in which case buffered sequential reads
    are used instead. Both paths yield identical chunks.
    """

    def __init__(self, path: str | Path = DEFAULT_PATH) -> None:
        self.path = str(path)

    def __repr__(self) -> str:
        return f"PageSource({self.path!r})"

    def _open_error(self, exc: OSError) -> PageSourceError:
        if isinstance(exc, PermissionError):
            return PermissionDenied(
                f"permission denied reading {self.path}; "
                "try again with elevated privileges (e.g. sudo)"
            )
        if isinstance(exc, (FileNotFoundError, NotADirectoryError)):
            if self.path == DEFAULT_PATH and not sys.platform.startswith("linux"):
                return SourceUnavailable(
                    f"{self.path} not found: page flags are only available on Linux"
                )
            return SourceUnavailable(f"{self.path} not found")
        return SourceUnavailable(f"cannot open {self.path}: {exc}")

    def check(self) -> None:
        """Raise :class:`SourceUnavailable` or :class:`PermissionDenied` early."""
        try:
            with open(self.path, "rb") as fh:
                fh.read(0)
        except OSError as exc:
            raise self._open_error(exc) from exc

    def _memmap(self) -> NDArray | None:
        try:
            return np.memmap(self.path, dtype=ENTRY_DTYPE, mode="r")
        except (ValueError, OSError) as exc:
            if isinstance(exc, (PermissionError, FileNotFoundError)):
                raise self._open_error(exc) from exc
            logger.debug("Memory mapping %s rejected (%s); using buffered reads", self.path, exc)
            return None

    def scan(
        self, request: ScanRequest, cancel: CancelToken | None = None,
    ) -> cabc.Iterator[PageChunk | ScanProgress]:
        """Yield chunks for ``request``, interleaved with progress events.

        Ends early, without error, at end-of-data or when ``cancel`` is set.
        """
        mapped = self._memmap()
        if mapped is not None:
            yield from self._scan_mapped(mapped, request, cancel)
        else:
            yield from self._scan_buffered(request, cancel)

    def _scan_mapped(
        self, mapped: NDArray, request: ScanRequest, cancel: CancelToken | None,
    ) -> cabc.Iterator[PageChunk | ScanProgress]:
        available = int(mapped.shape[0])
        stop = available if request.stop_index is None else min(available, request.stop_index)
        total = request.count if request.count is not None else max(0, stop - request.start_index)
        read = 0
        pos = request.start_index
        while pos < stop:
            if cancel is not None and cancel.cancelled:
                logger.info("Scan of %s cancelled after %d entries", self.path, read)
                return
            step = min(request.chunk_size, stop - pos)
            chunk = _make_chunk(pos, np.array(mapped[pos:pos + step]))
            pos += step
            read += step
            yield chunk
            if request.reports_progress:
                yield ScanProgress(read, total)

    def _scan_buffered(
        self, request: ScanRequest, cancel: CancelToken | None,
    ) -> cabc.Iterator[PageChunk | ScanProgress]:
        try:
            fh = open(self.path, "rb")
        except OSError as exc:
            raise self._open_error(exc) from exc
        with fh:
            total = request.count
            if total is None:
                size = os.fstat(fh.fileno()).st_size
                if size > 0:
                    total = max(0, size // ENTRY_SIZE - request.start_index)
            try:
                fh.seek(request.start_index * ENTRY_SIZE)
            except (OSError, OverflowError) as exc:
                logger.debug("Seek to entry %d failed: %s", request.start_index, exc)
                return
            read = 0
            pos = request.start_index
            while request.count is None or read < request.count:
                if cancel is not None and cancel.cancelled:
                    logger.info("Scan of %s cancelled after %d entries", self.path, read)
                    return
                step = request.chunk_size
                if request.count is not None:
                    step = min(step, request.count - read)
                try:
                    data = fh.read(step * ENTRY_SIZE)
                except OSError as exc:
                    logger.warning("Read error at entry %d of %s: %s", pos, self.path, exc)
                    return
                usable = len(data) - len(data) % ENTRY_SIZE
                if usable == 0:
                    logger.debug("End of data at entry %d", pos)
                    return
                words = np.frombuffer(data[:usable], dtype=ENTRY_DTYPE)
                chunk = _make_chunk(pos, words)
                pos += len(chunk)
                read += len(chunk)
                yield chunk
                if request.reports_progress:
                    yield ScanProgress(read, total)
                if usable < step * ENTRY_SIZE:
                    logger.debug("Short read at entry %d; treating as end of data", pos)
                    return

    def read_entry(self, index: int) -> int | None:
        """Read one word, or ``None`` past the end of the table."""
        try:
            with open(self.path, "rb") as fh:
                fh.seek(index * ENTRY_SIZE)
                data = fh.read(ENTRY_SIZE)
        except PermissionError as exc:
            raise self._open_error(exc) from exc
        except OSError as exc:
            logger.debug("Read of entry %d failed: %s", index, exc)
            return None
        if len(data) < ENTRY_SIZE:
            return None
        return int.from_bytes(data, "little")

    def sample(
        self,
        count: int,
        max_index: int | None = None,
        seed: int | None = None,
        cancel: CancelToken | None = None,
        chunk_size: int = 1000,
    ) -> cabc.Iterator[PageChunk | ScanProgress]:
        """Yield chunks of randomly chosen entries for a statistical overview.

        Absent entries are retried, up to ten attempts per requested sample.
        Every chunk is followed by a progress event carrying the attempt count.
        """
        if count <= 0:
            raise ValueError("sample count must be positive")
        if max_index is None:
            max_index = estimate_total_pages()
        mapped = self._memmap()
        if mapped is not None:
            max_index = min(max_index, int(mapped.shape[0]))
        if max_index <= 0:
            return
        try:
            fh = open(self.path, "rb")
        except OSError as exc:
            raise self._open_error(exc) from exc
        rng = np.random.default_rng(seed)
        attempts = 0
        collected = 0
        max_attempts = count * 10
        with fh:
            while collected < count and attempts < max_attempts:
                if cancel is not None and cancel.cancelled:
                    logger.info("Sampling cancelled after %d samples", collected)
                    return
                want = min(chunk_size, count - collected, max_attempts - attempts)
                picks = np.sort(rng.integers(0, max_index, size=want, dtype=np.uint64))
                attempts += want
                indices: list[int] = []
                words: list[int] = []
                for idx in picks.tolist():
                    if mapped is not None:
                        raw = int(mapped[idx])
                    else:
                        try:
                            fh.seek(idx * ENTRY_SIZE)
                            data = fh.read(ENTRY_SIZE)
                        except OSError:
                            continue
                        if len(data) < ENTRY_SIZE:
                            continue
                        raw = int.from_bytes(data, "little")
                    indices.append(idx)
                    words.append(raw)
                if indices:
                    collected += len(indices)
                    yield PageChunk(
                        indices=np.asarray(indices, dtype=np.uint64),
                        flags=np.asarray(words, dtype=np.uint64),
                    )
                yield ScanProgress(collected, count, attempts=attempts)
