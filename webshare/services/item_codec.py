"""On-disk encoding of stored items.

Each item lives in its own directory under the store root::

    <root>/<id>/<original name>   gzip-compressed payload
    <root>/<id>/<id>.json.gz      gzip-compressed JSON sidecar

Uploads in flight are buffered directly under the root as ``upload_*`` files
and are never items.
"""
import gzip
import hashlib
import inspect
import re
import shutil
import zlib
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import AsyncIterator, NamedTuple, Optional

import aiofiles
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from webshare.services.errors import CorruptMetadataError, StorageIOError, UploadValidationError

TRANSIENT_PREFIX = "upload_"
SIDECAR_SUFFIX = ".json.gz"
CHUNK_SIZE = 64 * 1024
GIGABYTE = 1_000_000_000

# zlib window bits selecting the gzip container
GZIP_WBITS = 31

# Timestamps from older sidecars may carry nanoseconds; datetime keeps microseconds
NANOSECONDS = re.compile(r"(\.\d{6})\d+")


class StoredItem(BaseModel):
    """Metadata record persisted next to every payload.

    JSON keys keep the names used by existing stores, so sidecars written by
    earlier deployments still decode.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str = Field(alias="ID", min_length=1)
    original_name: str = Field(alias="Name", min_length=1)
    fingerprint: str = Field(alias="Hash")
    size: int = Field(alias="Size", ge=0)
    size_human: str = Field("", alias="SizeHuman")
    content_type: str = Field("application/octet-stream", alias="ContentType")
    modified_at: datetime = Field(alias="Modified")
    is_image: bool = Field(False, alias="IsImage")
    is_text: bool = Field(False, alias="IsText")
    is_audio: bool = Field(False, alias="IsAudio")
    is_video: bool = Field(False, alias="IsVideo")
    is_ascii: bool = Field(False, alias="IsASCII")
    public_link: str = Field("", alias="Link")

    @field_validator("modified_at", mode="before")
    @classmethod
    def trim_nanoseconds(cls, v):
        if isinstance(v, str):
            return NANOSECONDS.sub(r"\1", v, count=1)
        return v

    @field_validator("modified_at")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class PayloadInfo(NamedTuple):
    size: int
    fingerprint: str
    prefix: bytes


def is_transient(name: str) -> bool:
    return name.startswith(TRANSIENT_PREFIX)


def item_dir(root: Path, item_id: str) -> Path:
    return root / item_id


def sidecar_path(root: Path, item_id: str) -> Path:
    return root / item_id / f"{item_id}{SIDECAR_SUFFIX}"


def time_to_deletion(size: int, minutes_per_gigabyte: float) -> timedelta:
    """Retention window for an item: one gigabyte lives ``minutes_per_gigabyte``,
    and the window scales inversely with size."""
    minutes = minutes_per_gigabyte * GIGABYTE / max(size, 1)
    try:
        return timedelta(minutes=minutes)
    except OverflowError:
        return timedelta.max


def write_sidecar(root: Path, item: StoredItem) -> Path:
    path = sidecar_path(root, item.id)
    with gzip.open(path, "wb") as f:
        f.write(item.model_dump_json(by_alias=True).encode())
    return path


def read_sidecar(root: Path, item_id: str) -> StoredItem:
    """Decode the sidecar of ``item_id``.

    Raises CorruptMetadataError for anything short of a valid record whose id
    matches its directory.
    """
    path = sidecar_path(root, item_id)
    try:
        with gzip.open(path, "rb") as f:
            raw = f.read()
        item = StoredItem.model_validate_json(raw)
    except (OSError, EOFError, zlib.error, ValidationError) as e:
        raise CorruptMetadataError(f"Unreadable metadata for {item_id}: {e}") from e
    if item.id != item_id:
        raise CorruptMetadataError(f"Metadata in {item_id} belongs to {item.id}")
    return item


async def _read_chunk(source, size: int) -> bytes:
    chunk = source.read(size)
    if inspect.isawaitable(chunk):
        chunk = await chunk
    return chunk


async def write_payload(source, destination: Path, max_bytes: Optional[int] = None,
                        prefix_bytes: int = 261) -> PayloadInfo:
    """Stream ``source`` gzip-compressed into ``destination``.

    ``source`` is anything with a ``read(n)`` method, sync or async. The
    fingerprint is the MD5 of the compressed bytes written to disk.
    """
    compressor = zlib.compressobj(zlib.Z_DEFAULT_COMPRESSION, zlib.DEFLATED, GZIP_WBITS)
    md5 = hashlib.md5()
    size = 0
    prefix = b""

    async with aiofiles.open(destination, "wb") as f:
        while chunk := await _read_chunk(source, CHUNK_SIZE):
            size += len(chunk)
            if max_bytes is not None and size > max_bytes:
                raise UploadValidationError(f"Upload exceeds max file size of {max_bytes} bytes")
            if len(prefix) < prefix_bytes:
                prefix += chunk[:prefix_bytes - len(prefix)]
            data = compressor.compress(chunk)
            if data:
                md5.update(data)
                await f.write(data)
        data = compressor.flush()
        md5.update(data)
        await f.write(data)

    return PayloadInfo(size=size, fingerprint=md5.hexdigest(), prefix=prefix)


async def iter_payload(path: Path, decompress: bool = False) -> AsyncIterator[bytes]:
    """Yield a stored payload, either as the gzip bytes on disk or decompressed."""
    try:
        async with aiofiles.open(path, "rb") as f:
            if not decompress:
                while chunk := await f.read(CHUNK_SIZE):
                    yield chunk
                return

            decompressor = zlib.decompressobj(wbits=GZIP_WBITS)
            while chunk := await f.read(CHUNK_SIZE):
                while chunk:
                    data = decompressor.decompress(chunk)
                    if data:
                        yield data
                    if decompressor.eof:
                        # Concatenated gzip members
                        chunk = decompressor.unused_data
                        decompressor = zlib.decompressobj(wbits=GZIP_WBITS)
                    else:
                        chunk = b""
            tail = decompressor.flush()
            if tail:
                yield tail
    except (OSError, zlib.error) as e:
        raise StorageIOError(f"Error reading payload {path}: {e}") from e


def remove_item(root: Path, item_id: str) -> bool:
    """Delete a whole item directory. Removing an absent item is a no-op."""
    try:
        shutil.rmtree(item_dir(root, item_id))
    except FileNotFoundError:
        return False
    return True


def now_utc() -> datetime:
    return datetime.now(timezone.utc)
