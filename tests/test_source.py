# pyright: reportPrivateUsage=false

import numpy as np
import pytest

import kpageflags_viewer.source as source
from kpageflags_viewer.catalog import DEFAULT_CATALOG, Category
from kpageflags_viewer.source import (
    CancelToken,
    PageChunk,
    PageEntry,
    PageSource,
    PermissionDenied,
    ScanProgress,
    ScanRequest,
    SourceUnavailable,
)


def write_table(path, words) -> None:
    np.asarray(words, dtype="<u8").tofile(path)


def collect(events) -> tuple[list[int], list[int], list[ScanProgress]]:
    indices: list[int] = []
    flags: list[int] = []
    progress: list[ScanProgress] = []
    for event in events:
        if isinstance(event, PageChunk):
            for idx, raw in event.entries():
                indices.append(idx)
                flags.append(raw)
        else:
            progress.append(event)
    return indices, flags, progress


def buffered(monkeypatch, src: PageSource) -> PageSource:
    monkeypatch.setattr(src, "_memmap", lambda: None)
    return src


def test_mapped_and_buffered_scans_agree(tmp_path, monkeypatch) -> None:
    words = [(i * 0x9E3779B97F4A7C15) & 0xFFFFFFFFFFFFFFFF for i in range(37)]
    path = tmp_path / "flags"
    write_table(path, words)
    request = ScanRequest(start_index=3, count=30, chunk_size=7)

    mapped = collect(PageSource(path).scan(request))
    plain = collect(buffered(monkeypatch, PageSource(path)).scan(request))

    assert mapped[0] == plain[0] == list(range(3, 33))
    assert mapped[1] == plain[1] == words[3:33]


def test_scan_ends_quietly_past_end_of_data(tmp_path, monkeypatch) -> None:
    path = tmp_path / "flags"
    write_table(path, range(10))

    for src in (PageSource(path), buffered(monkeypatch, PageSource(path))):
        indices, flags, _ = collect(src.scan(ScanRequest(8, 10)))
        assert indices == [8, 9]
        assert flags == [8, 9]


def test_trailing_partial_word_is_ignored(tmp_path) -> None:
    path = tmp_path / "flags"
    write_table(path, range(1, 11))
    with open(path, "ab") as fh:
        fh.write(b"\x01\x02\x03")

    indices, flags, _ = collect(PageSource(path).scan(ScanRequest(chunk_size=4)))

    assert indices == list(range(10))
    assert flags == list(range(1, 11))


def test_empty_table_yields_nothing(tmp_path) -> None:
    path = tmp_path / "flags"
    path.write_bytes(b"")

    assert collect(PageSource(path).scan(ScanRequest())) == ([], [], [])


def test_unbounded_scan_reports_progress_per_chunk(tmp_path) -> None:
    path = tmp_path / "flags"
    write_table(path, range(10))

    _, _, progress = collect(PageSource(path).scan(ScanRequest(chunk_size=4)))

    assert [p.entries_read for p in progress] == [4, 8, 10]
    assert progress[-1].total_expected == 10
    assert progress[-1].fraction == 1.0


def test_small_bounded_scan_has_no_progress_events(tmp_path) -> None:
    path = tmp_path / "flags"
    write_table(path, range(100))

    _, _, progress = collect(PageSource(path).scan(ScanRequest(0, 50, chunk_size=10)))

    assert progress == []


def test_cancel_stops_at_chunk_boundary(tmp_path, monkeypatch) -> None:
    path = tmp_path / "flags"
    write_table(path, [1] * 10_000)

    for src in (PageSource(path), buffered(monkeypatch, PageSource(path))):
        token = CancelToken()
        seen = 0
        for event in src.scan(ScanRequest(0, 10_000, chunk_size=100), token):
            if isinstance(event, PageChunk):
                seen += len(event)
                if seen == 500:
                    token.cancel()
        assert seen == 500
        assert token.cancelled


def test_missing_table_is_source_unavailable(tmp_path) -> None:
    src = PageSource(tmp_path / "missing")

    with pytest.raises(SourceUnavailable):
        src.check()
    with pytest.raises(SourceUnavailable):
        list(src.scan(ScanRequest()))


def test_permission_error_maps_to_permission_denied(tmp_path, monkeypatch) -> None:
    path = tmp_path / "flags"
    write_table(path, range(4))
    real_open = open

    def fake_open(file, *args, **kwargs):
        if str(file) == str(path):
            raise PermissionError(13, "Permission denied")
        return real_open(file, *args, **kwargs)

    monkeypatch.setattr("builtins.open", fake_open)

    with pytest.raises(PermissionDenied) as excinfo:
        PageSource(path).check()
    assert "sudo" in str(excinfo.value)


def test_read_entry(tmp_path) -> None:
    path = tmp_path / "flags"
    write_table(path, [5, 0x68, 1 << 40])
    src = PageSource(path)

    assert src.read_entry(1) == 0x68
    assert src.read_entry(2) == 1 << 40
    assert src.read_entry(3) is None


def test_sample_draws_valid_entries(tmp_path) -> None:
    words = [i * 3 for i in range(100)]
    path = tmp_path / "flags"
    write_table(path, words)

    indices, flags, progress = collect(PageSource(path).sample(50, max_index=100, seed=7))

    assert len(indices) == 50
    assert indices == sorted(indices)
    assert all(0 <= idx < 100 for idx in indices)
    assert flags == [words[idx] for idx in indices]
    assert progress[-1].entries_read == 50
    assert progress[-1].attempts == 50


def test_sample_gives_up_after_ten_attempts_per_sample(tmp_path, monkeypatch) -> None:
    path = tmp_path / "flags"
    write_table(path, range(10))
    src = buffered(monkeypatch, PageSource(path))

    indices, _, progress = collect(src.sample(20, max_index=100_000, seed=1))

    assert all(idx < 10 for idx in indices)
    assert len(indices) < 20
    assert progress[-1].attempts == 200


def test_estimate_total_pages(tmp_path) -> None:
    meminfo = tmp_path / "meminfo"
    meminfo.write_text("MemTotal:       16384 kB\nMemFree:        1024 kB\n")

    assert source.estimate_total_pages(meminfo) == 4096
    assert source.estimate_total_pages(tmp_path / "absent") == source.FALLBACK_TOTAL_PAGES


def test_scan_request_validation() -> None:
    with pytest.raises(ValueError):
        ScanRequest(count=0)
    with pytest.raises(ValueError):
        ScanRequest(start_index=-1)
    assert ScanRequest(5, 10).stop_index == 15
    assert ScanRequest().unbounded
    assert ScanRequest(0, 20_000).reports_progress
    assert not ScanRequest(0, 10_000).reports_progress


def test_decoded_entry_carries_categories() -> None:
    entry = PageEntry.decoded(7, 0x68, DEFAULT_CATALOG)

    assert entry.index == 7
    assert entry.categories == frozenset({Category.STATE, Category.MEMORY})
