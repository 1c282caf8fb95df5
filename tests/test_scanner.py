import os
from pathlib import PurePosixPath

from webshare.services.scanner import FileEntry, ScanResult, scan, summarize, walk_files


def entry(path, size):
    return FileEntry(PurePosixPath(path), size)


def test_summarize_in_memory_listing():
    entries = [
        entry("123/a.bin", 100),
        entry("123/123.json.gz", 10),
        entry("456/b.bin", 500),
        entry("456/456.json.gz", 12),
        entry("upload_abc", 1000),
        entry("stray.txt", 5),
    ]
    result = summarize(entries)
    assert result.total_bytes == 1627
    # Transient uploads and loose files are counted but never evictable
    assert result.largest_item_id == "456"
    assert result.largest_size == 500


def test_summarize_empty():
    assert summarize([]) == ScanResult(0, None, 0)


def test_scan_uses_injected_lister(tmp_path):
    listing = [entry("001/x", 7), entry("002/y", 9)]
    result = scan(tmp_path / "anything", lister=lambda root: iter(listing))
    assert result == ScanResult(16, "002", 9)


def test_scan_missing_root_is_empty(tmp_path):
    assert scan(tmp_path / "missing") == ScanResult(0, None, 0)


def test_scan_real_directory(tmp_path):
    (tmp_path / "111").mkdir()
    (tmp_path / "111" / "small.txt").write_bytes(b"x" * 10)
    (tmp_path / "222").mkdir()
    (tmp_path / "222" / "big.txt").write_bytes(b"x" * 100)
    (tmp_path / "upload_123").write_bytes(b"x" * 1000)

    result = scan(tmp_path)
    assert result.total_bytes == 1110
    assert result.largest_item_id == "222"


def test_walk_files_skips_unreadable_entries(tmp_path):
    item = tmp_path / "333"
    item.mkdir()
    (item / "ok.bin").write_bytes(b"abc")
    os.symlink(tmp_path / "does-not-exist", item / "dangling")

    entries = list(walk_files(tmp_path))
    assert entries == [FileEntry(PurePosixPath("333/ok.bin"), 3)]
