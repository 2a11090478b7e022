import numpy as np

from kpageflags_viewer.catalog import DEFAULT_CATALOG
from kpageflags_viewer.source import CancelToken, PageSource, ScanProgress, ScanRequest
from kpageflags_viewer.worker import ScanStatus, ScanWorker, run_sample, run_scan


def write_table(path, words) -> None:
    np.asarray(words, dtype="<u8").tofile(path)


def test_run_scan_complete(tmp_path) -> None:
    path = tmp_path / "flags"
    write_table(path, [0, 0x68, 0, 1 << 7] * 25)

    result = run_scan(PageSource(path), ScanRequest(chunk_size=16), DEFAULT_CATALOG)

    assert not result.partial
    assert result.stats.total_seen == 100
    assert result.stats.with_flags_count == 50
    assert result.stats.per_flag_count["SLAB"] == 25
    assert result.buffer is not None
    assert len(result.buffer) == 100


def test_run_scan_cancelled_midway_keeps_partial_stats(tmp_path) -> None:
    path = tmp_path / "flags"
    write_table(path, [1] * 10_000)
    token = CancelToken()

    def on_progress(event: ScanProgress) -> None:
        if event.entries_read >= 500:
            token.cancel()

    result = run_scan(PageSource(path), ScanRequest(chunk_size=100), cancel=token, on_progress=on_progress)

    assert result.partial
    assert result.stats.total_seen == 500
    assert result.stats.with_flags_count == 500
    assert result.stats.per_flag_count["LOCKED"] == 500


def test_run_scan_without_entries_keeps_only_stats(tmp_path) -> None:
    path = tmp_path / "flags"
    write_table(path, range(20))

    result = run_scan(PageSource(path), ScanRequest(), keep_entries=False)

    assert result.buffer is None
    assert result.stats.total_seen == 20


def test_run_sample_reports_attempts(tmp_path) -> None:
    path = tmp_path / "flags"
    write_table(path, [0x68] * 64)

    result = run_sample(PageSource(path), 30, max_index=64, seed=3)

    assert result.stats.total_seen == 30
    assert result.stats.per_flag_count["LRU"] == 30
    assert result.attempts == 30
    assert not result.partial


def test_worker_publishes_final_snapshot(tmp_path) -> None:
    path = tmp_path / "flags"
    write_table(path, range(1000))

    worker = ScanWorker(PageSource(path), ScanRequest(chunk_size=64), generation=3).start()
    worker.join(timeout=10)
    snap = worker.snapshot()

    assert not worker.alive
    assert snap.generation == 3
    assert snap.status is ScanStatus.COMPLETE
    assert snap.finished and not snap.partial
    assert snap.stats.total_seen == 1000
    assert len(snap.buffer) == 1000
    assert snap.progress is not None and snap.progress.fraction == 1.0


def test_cancelled_worker_marks_snapshot_cancelled(tmp_path) -> None:
    path = tmp_path / "flags"
    write_table(path, range(100))

    worker = ScanWorker(PageSource(path), ScanRequest(chunk_size=10))
    worker.cancel()
    worker.start().join(timeout=10)
    snap = worker.snapshot()

    assert snap.status is ScanStatus.CANCELLED
    assert snap.partial
    assert snap.stats.total_seen == 0


def test_failed_worker_reports_error(tmp_path) -> None:
    worker = ScanWorker(PageSource(tmp_path / "missing"), ScanRequest()).start()
    worker.join(timeout=10)
    snap = worker.snapshot()

    assert snap.status is ScanStatus.FAILED
    assert snap.error is not None and "not found" in snap.error
