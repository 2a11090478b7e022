"""Runs one scan request end to end, on the caller's thread or in the background."""

from __future__ import annotations

import collections.abc as cabc
import contextlib
import enum
import logging
import signal
import threading
from dataclasses import dataclass

from .aggregate import BufferView, DecodedBuffer, ScanAggregator, Stats
from .catalog import DEFAULT_CATALOG, FlagCatalog
from .source import CancelToken, PageChunk, PageSource, ScanProgress, ScanRequest

logger = logging.getLogger(__name__)


class ScanStatus(enum.Enum):
    RUNNING = "running"
    COMPLETE = "complete"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True, eq=False)
class ScanSnapshot:
    """Everything the UI needs from a scan at one instant."""

    generation: int
    request: ScanRequest
    stats: Stats
    buffer: BufferView
    progress: ScanProgress | None = None
    status: ScanStatus = ScanStatus.RUNNING
    error: str | None = None

    @property
    def finished(self) -> bool:
        return self.status is not ScanStatus.RUNNING

    @property
    def partial(self) -> bool:
        """True when the scan stopped before covering its whole request."""
        return self.status in (ScanStatus.CANCELLED, ScanStatus.FAILED)


@dataclass(frozen=True, eq=False)
class ScanResult:
    """Outcome of a synchronous scan."""

    request: ScanRequest
    stats: Stats
    buffer: BufferView | None
    cancelled: bool
    attempts: int | None = None

    @property
    def partial(self) -> bool:
        return self.cancelled


@contextlib.contextmanager
def interrupt_cancels(token: CancelToken) -> cabc.Iterator[CancelToken]:
    """Route Ctrl-C to ``token`` instead of raising ``KeyboardInterrupt``."""

    def handler(_signum: int, _frame: object) -> None:
        logger.info("Interrupt received; stopping scan")
        token.cancel()

    previous = signal.signal(signal.SIGINT, handler)
    try:
        yield token
    finally:
        signal.signal(signal.SIGINT, previous)


def consume(
    events: cabc.Iterable[PageChunk | ScanProgress],
    catalog: FlagCatalog,
    aggregator: ScanAggregator,
    buffer: DecodedBuffer | None = None,
    on_progress: cabc.Callable[[ScanProgress], None] | None = None,
) -> int | None:
    """Decode and fold every chunk of ``events``; returns the last attempt count."""
    attempts: int | None = None
    for event in events:
        if isinstance(event, ScanProgress):
            attempts = event.attempts
            if on_progress is not None:
                on_progress(event)
            continue
        masks = catalog.decode_array(event.flags)
        aggregator.add_chunk(event.flags, masks)
        if buffer is not None:
            buffer.append(event.indices, event.flags, masks)
    return attempts


def run_scan(
    source: PageSource,
    request: ScanRequest,
    catalog: FlagCatalog = DEFAULT_CATALOG,
    cancel: CancelToken | None = None,
    keep_entries: bool = True,
    on_progress: cabc.Callable[[ScanProgress], None] | None = None,
) -> ScanResult:
    """Scan ``request`` on the calling thread.

    A cancelled scan returns normally with whatever was processed so far.
    """
    aggregator = ScanAggregator(catalog)
    buffer = DecodedBuffer() if keep_entries else None
    consume(source.scan(request, cancel), catalog, aggregator, buffer, on_progress)
    cancelled = cancel is not None and cancel.cancelled
    stats = aggregator.snapshot()
    logger.info(
        "Scan of %s finished: %d entries%s",
        source.path, stats.total_seen, " (interrupted)" if cancelled else "",
    )
    return ScanResult(
        request=request,
        stats=stats,
        buffer=buffer.view() if buffer is not None else None,
        cancelled=cancelled,
    )


def run_sample(
    source: PageSource,
    count: int,
    catalog: FlagCatalog = DEFAULT_CATALOG,
    cancel: CancelToken | None = None,
    max_index: int | None = None,
    seed: int | None = None,
    on_progress: cabc.Callable[[ScanProgress], None] | None = None,
) -> ScanResult:
    """Aggregate ``count`` randomly sampled entries."""
    aggregator = ScanAggregator(catalog)
    events = source.sample(count, max_index=max_index, seed=seed, cancel=cancel)
    attempts = consume(events, catalog, aggregator, on_progress=on_progress)
    return ScanResult(
        request=ScanRequest(0, count),
        stats=aggregator.snapshot(),
        buffer=None,
        cancelled=cancel is not None and cancel.cancelled,
        attempts=attempts,
    )


class ScanWorker:
    """Background thread running one :class:`ScanRequest`.

    The UI polls :meth:`snapshot`; the worker never waits on the UI.
    """

    def __init__(
        self,
        source: PageSource,
        request: ScanRequest,
        catalog: FlagCatalog = DEFAULT_CATALOG,
        generation: int = 0,
    ) -> None:
        self.source = source
        self.request = request
        self.catalog = catalog
        self.generation = generation
        self.cancel_token = CancelToken()
        self._aggregator = ScanAggregator(catalog)
        self._buffer = DecodedBuffer()
        self._progress: ScanProgress | None = None
        self._snapshot = self._make_snapshot(ScanStatus.RUNNING)
        self._thread = threading.Thread(
            target=self._run, name=f"scan-{generation}", daemon=True,
        )

    def _make_snapshot(self, status: ScanStatus, error: str | None = None) -> ScanSnapshot:
        return ScanSnapshot(
            generation=self.generation,
            request=self.request,
            stats=self._aggregator.snapshot(),
            buffer=self._buffer.view(),
            progress=self._progress,
            status=status,
            error=error,
        )

    def _on_progress(self, progress: ScanProgress) -> None:
        self._progress = progress

    def _run(self) -> None:
        events = self.source.scan(self.request, self.cancel_token)
        try:
            for event in events:
                consume((event,), self.catalog, self._aggregator, self._buffer, self._on_progress)
                self._snapshot = self._make_snapshot(ScanStatus.RUNNING)
        except Exception as exc:  # surfaced to the UI through the snapshot
            logger.exception("Scan worker %d failed", self.generation)
            self._snapshot = self._make_snapshot(ScanStatus.FAILED, str(exc))
            return
        status = ScanStatus.CANCELLED if self.cancel_token.cancelled else ScanStatus.COMPLETE
        self._snapshot = self._make_snapshot(status)
        logger.info(
            "Scan %d %s after %d entries",
            self.generation, status.value, self._snapshot.stats.total_seen,
        )

    def start(self) -> ScanWorker:
        self._thread.start()
        return self

    def cancel(self) -> None:
        self.cancel_token.cancel()

    def join(self, timeout: float | None = None) -> None:
        self._thread.join(timeout)

    @property
    def alive(self) -> bool:
        return self._thread.is_alive()

    def snapshot(self) -> ScanSnapshot:
        return self._snapshot
