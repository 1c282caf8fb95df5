import asyncio
import os
import shutil
import tempfile
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import quote

import aiofiles.os

from webshare.config import Config, human_bytes
from webshare.logger_config import setup_logger
from webshare.services.content_type import classify
from webshare.services.errors import StorageIOError, UploadValidationError
from webshare.services.identifier import assign_id
from webshare.services.item_codec import (
    SIDECAR_SUFFIX, TRANSIENT_PREFIX, StoredItem, item_dir, now_utc, remove_item, write_payload, write_sidecar,
)

logger = setup_logger()


def validate_filename(filename: str) -> str:
    """Reject names that cannot be stored as a single file inside an item directory."""
    if not filename or filename in (".", "..") or any(c in filename for c in "/\\\x00"):
        raise UploadValidationError(f"Invalid file name: {filename!r}")
    return filename


def discard(destination: Optional[Path]):
    if destination is not None:
        shutil.rmtree(destination, ignore_errors=True)


def validate_size(declared_size: Optional[int], config: Config):
    if declared_size is not None and declared_size > config.max_bytes_per_file:
        raise UploadValidationError(f"Upload exceeds max file size: {config.max_bytes_per_file_human}.")


async def ingest(config: Config, filename: str, source, declared_size: Optional[int] = None,
                 schedule_eviction: Optional[Callable[[], object]] = None) -> StoredItem:
    """Store an upload and return its record.

    The upload is compressed into a temporary ``upload_*`` file under the
    store root, its fingerprint picks the id, and whatever occupied that id
    before is replaced. The temporary file is removed whatever happens, and
    a failed ingestion leaves no item directory behind.
    """
    validate_filename(filename)
    validate_size(declared_size, config)

    root = config.root
    try:
        await aiofiles.os.makedirs(root, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(prefix=TRANSIENT_PREFIX, dir=root)
        os.close(fd)
    except OSError as e:
        logger.error(f"Unable to create temporary file in {root}: {e}", exc_info=True)
        raise StorageIOError(f"Unable to create temporary file: {e}") from e

    temp_path = Path(temp_name)
    destination = None
    try:
        payload = await write_payload(source, temp_path, config.max_bytes_per_file)
        item_id = assign_id(payload.fingerprint, config.id_width)
        if filename == f"{item_id}{SIDECAR_SUFFIX}":
            raise UploadValidationError(f"File name {filename!r} is reserved for the metadata of item {item_id}")
        destination = item_dir(root, item_id)
        logger.debug(f"Upload {filename} ({payload.size} bytes) hashed to {payload.fingerprint}, id {item_id}")

        # Replace, never merge
        await asyncio.to_thread(remove_item, root, item_id)
        await aiofiles.os.makedirs(destination, exist_ok=True)
        await aiofiles.os.rename(temp_path, destination / filename)

        classification = classify(filename, payload.prefix)
        item = StoredItem(
            id=item_id,
            original_name=filename,
            fingerprint=payload.fingerprint,
            size=payload.size,
            size_human=human_bytes(payload.size),
            content_type=classification.content_type,
            modified_at=now_utc(),
            is_image=classification.is_image,
            is_text=classification.is_text,
            is_audio=classification.is_audio,
            is_video=classification.is_video,
            is_ascii=classification.is_ascii,
            public_link=f"/1/{item_id}/{quote(filename)}",
        )
        await asyncio.to_thread(write_sidecar, root, item)
    except OSError as e:
        logger.error(f"Error ingesting {filename}: {e}", exc_info=True)
        discard(destination)
        raise StorageIOError(f"Error processing file: {e}") from e
    except BaseException:
        # Includes cancellation; a payload without its sidecar must not survive
        discard(destination)
        raise
    finally:
        if await aiofiles.os.path.exists(temp_path):
            await aiofiles.os.remove(temp_path)

    logger.info(f"Stored {filename} as {item.id} ({item.size_human}, {item.content_type})")
    if schedule_eviction is not None:
        schedule_eviction()
    return item
