import gzip
import io
import os
from unittest.mock import MagicMock, patch

import pytest

from webshare.config import Config
from webshare.services.errors import StorageIOError, UploadValidationError
from webshare.services.ingestion import ingest
from webshare.services.item_codec import read_sidecar


@pytest.fixture
def config(tmp_path):
    return Config(data_dir=str(tmp_path / "data"), max_bytes_per_file=1_000_000)


def item_dirs(config):
    if not config.root.exists():
        return []
    return [p for p in config.root.iterdir()]


@pytest.mark.asyncio
async def test_ingest_creates_item_directory(config):
    """After ingestion the directory holds exactly the payload and its sidecar."""
    data = b"hello world\n" * 100
    item = await ingest(config, "hello.txt", io.BytesIO(data), len(data))

    directory = config.root / item.id
    assert item_dirs(config) == [directory]
    assert sorted(p.name for p in directory.iterdir()) == sorted(["hello.txt", f"{item.id}.json.gz"])
    assert gzip.decompress((directory / "hello.txt").read_bytes()) == data

    stored = read_sidecar(config.root, item.id)
    assert stored == item
    assert stored.id == directory.name
    assert stored.size == len(data)
    assert stored.size_human == "1.2 kB"
    assert stored.content_type == "text/plain"
    assert stored.is_text and stored.is_ascii
    assert stored.public_link == f"/1/{item.id}/hello.txt"


@pytest.mark.asyncio
async def test_ingest_same_content_same_id(config):
    data = os.urandom(4096)
    first = await ingest(config, "a.bin", io.BytesIO(data), len(data))
    second = await ingest(config, "b.bin", io.BytesIO(data), len(data))

    assert first.id == second.id
    assert first.fingerprint == second.fingerprint
    # Re-ingesting replaces the directory rather than merging into it
    directory = config.root / second.id
    assert sorted(p.name for p in directory.iterdir()) == sorted(["b.bin", f"{second.id}.json.gz"])


@pytest.mark.asyncio
async def test_ingest_rejects_declared_size_over_cap(config):
    schedule = MagicMock()
    with pytest.raises(UploadValidationError):
        await ingest(config, "big.bin", io.BytesIO(b"small"), config.max_bytes_per_file + 1, schedule)

    assert item_dirs(config) == []
    schedule.assert_not_called()


@pytest.mark.asyncio
async def test_ingest_rejects_streamed_size_over_cap(config):
    data = b"x" * (config.max_bytes_per_file + 1)
    with pytest.raises(UploadValidationError):
        await ingest(config, "big.bin", io.BytesIO(data), None)

    # Temporary buffer is cleaned up, no item is created
    assert item_dirs(config) == []


@pytest.mark.asyncio
@pytest.mark.parametrize("name", ["", ".", "..", "../escape.txt", "dir/file.txt"])
async def test_ingest_rejects_unsafe_names(config, name):
    with pytest.raises(UploadValidationError):
        await ingest(config, name, io.BytesIO(b"data"), 4)
    assert item_dirs(config) == []


@pytest.mark.asyncio
async def test_ingest_failure_leaves_nothing_behind(config):
    with patch("webshare.services.ingestion.write_sidecar", side_effect=OSError("disk full")):
        with pytest.raises(StorageIOError):
            await ingest(config, "file.txt", io.BytesIO(b"content"), 7)

    assert item_dirs(config) == []


@pytest.mark.asyncio
async def test_ingest_schedules_eviction(config):
    schedule = MagicMock()
    await ingest(config, "file.txt", io.BytesIO(b"content"), 7, schedule)
    schedule.assert_called_once_with()


@pytest.mark.asyncio
async def test_ingest_classifies_content(config):
    png = b"\x89PNG\r\n\x1a\n" + b"\x00" * 100
    image = await ingest(config, "pic.png", io.BytesIO(png), len(png))
    assert image.content_type == "image/png"
    assert image.is_image and not image.is_ascii

    script = await ingest(config, "app.js", io.BytesIO(b"console.log(1);"), 15)
    assert script.content_type == "application/javascript"

    style = await ingest(config, "site.css", io.BytesIO(b"body { color: red; }"), 20)
    assert style.content_type == "text/css"


@pytest.mark.asyncio
async def test_ingest_accepts_async_sources(config):
    class AsyncSource:
        def __init__(self, data):
            self.buffer = io.BytesIO(data)

        async def read(self, size=-1):
            return self.buffer.read(size)

    item = await ingest(config, "async.txt", AsyncSource(b"async data"), None)
    assert item.size == 10


@pytest.mark.asyncio
async def test_ingest_rejects_name_of_own_sidecar(config):
    """A payload may not take the file name reserved for its item's metadata."""
    data = b"my precious payload\n" * 50
    first = await ingest(config, "a.txt", io.BytesIO(data), len(data))

    with pytest.raises(UploadValidationError):
        await ingest(config, f"{first.id}.json.gz", io.BytesIO(data), len(data))

    # The earlier item is untouched and no upload buffer is left over
    directory = config.root / first.id
    assert sorted(p.name for p in config.root.iterdir()) == [first.id]
    assert sorted(p.name for p in directory.iterdir()) == sorted(["a.txt", f"{first.id}.json.gz"])
    assert gzip.decompress((directory / "a.txt").read_bytes()) == data
    assert read_sidecar(config.root, first.id).original_name == "a.txt"


@pytest.mark.asyncio
async def test_ingest_unexpected_error_leaves_nothing_behind(config):
    with patch("webshare.services.ingestion.classify", side_effect=RuntimeError("sniffer crashed")):
        with pytest.raises(RuntimeError):
            await ingest(config, "file.txt", io.BytesIO(b"content"), 7)

    assert item_dirs(config) == []


@pytest.mark.asyncio
async def test_ingest_utf8_text_without_extension(config):
    data = "héllo wörld, ünïcode text\n".encode() * 20
    item = await ingest(config, "README", io.BytesIO(data), len(data))
    assert item.content_type == "text/plain"
    assert item.is_text
    assert not item.is_ascii
