import asyncio
import re
from datetime import timedelta
from typing import AsyncIterator, List, Optional, Tuple

import aiofiles.os

from webshare.config import Config, human_bytes
from webshare.logger_config import setup_logger
from webshare.services.errors import CorruptMetadataError, ItemNotFoundError, StorageIOError
from webshare.services.eviction_worker import EvictionWorker
from webshare.services.ingestion import ingest
from webshare.services.item_codec import (
    StoredItem, is_transient, item_dir, iter_payload, read_sidecar, remove_item, time_to_deletion,
)
from webshare.services.retention import sweep_once
from webshare.services.scanner import scan

logger = setup_logger()

ID_PATTERN = re.compile(r'^[a-zA-Z0-9._-]+$')


def is_valid_id(item_id: str) -> bool:
    """Check that an id names a directory directly under the store root."""
    if not item_id or item_id in (".", "..") or is_transient(item_id):
        return False
    return bool(ID_PATTERN.match(item_id))


def is_valid_name(name: str) -> bool:
    return bool(name) and name not in (".", "..") and not any(c in name for c in "/\\\x00")


class ContentStore:
    def __init__(self, config: Config, eviction_worker: Optional[EvictionWorker] = None):
        self.config = config
        self.root = config.root
        self.eviction_worker = eviction_worker or EvictionWorker(config)

    async def initialize(self):
        """Create the store root and report current usage."""
        logger.info("Initializing content store...")
        await aiofiles.os.makedirs(self.root, exist_ok=True)
        result = await asyncio.to_thread(scan, self.root)
        logger.info(
            f"Current disk usage: {human_bytes(result.total_bytes)} "
            f"of {human_bytes(self.config.max_bytes_total)}"
        )

    async def ingest(self, filename: str, source, declared_size: Optional[int] = None) -> StoredItem:
        return await ingest(self.config, filename, source, declared_size,
                            schedule_eviction=self.enforce_quota_async)

    def info(self, item_id: str) -> StoredItem:
        if not is_valid_id(item_id):
            raise ItemNotFoundError(f"Data with id '{item_id}' does not exist.")
        try:
            return read_sidecar(self.root, item_id)
        except CorruptMetadataError as e:
            logger.debug(f"Treating {item_id} as absent: {e}")
            raise ItemNotFoundError(f"Data with id '{item_id}' does not exist.") from e

    def time_to_deletion(self, item: StoredItem) -> timedelta:
        return time_to_deletion(item.size, self.config.minutes_per_gigabyte)

    async def get(self, item_id: str, name: str, decompress: bool = False) -> Tuple[StoredItem, AsyncIterator[bytes]]:
        """Look up an item and return its record with a payload stream.

        With ``decompress`` the stream yields the original bytes, otherwise
        the gzip bytes as stored.
        """
        item = self.info(item_id)
        if name != item.original_name:
            raise ItemNotFoundError(f"Data with id '{item_id}' has no file '{name}'.")
        path = item_dir(self.root, item_id) / item.original_name
        if not await aiofiles.os.path.isfile(path):
            raise ItemNotFoundError(f"Data with id '{item_id}' does not exist.")
        return item, iter_payload(path, decompress)

    async def delete(self, item_id: str) -> bool:
        """Remove an item. Deleting an unknown id is a no-op."""
        if not is_valid_id(item_id):
            return False
        try:
            removed = await asyncio.to_thread(remove_item, self.root, item_id)
        except OSError as e:
            logger.error(f"Error deleting {item_id}: {e}", exc_info=True)
            raise StorageIOError(f"Error deleting {item_id}: {e}") from e
        if removed:
            logger.info(f"Removed {item_id}")
        return removed

    def exists(self, item_id: str, name: str) -> bool:
        if not is_valid_id(item_id) or not is_valid_name(name):
            return False
        return (item_dir(self.root, item_id) / name).exists()

    def enforce_quota_async(self) -> bool:
        return self.eviction_worker.trigger()

    async def sweep_once(self, remove_transient: bool = False) -> List[str]:
        return await asyncio.to_thread(sweep_once, self.config, None, remove_transient)
