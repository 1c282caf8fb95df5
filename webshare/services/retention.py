import os
from datetime import datetime
from typing import List, Optional

from webshare.config import Config, human_bytes
from webshare.logger_config import setup_logger
from webshare.services.errors import CorruptMetadataError, StorageIOError
from webshare.services.item_codec import is_transient, now_utc, read_sidecar, remove_item, time_to_deletion

logger = setup_logger()


def purge_transient(config: Config) -> int:
    """Remove leftover ``upload_*`` buffers from the store root."""
    removed = 0
    try:
        with os.scandir(config.root) as it:
            entries = list(it)
    except FileNotFoundError:
        return 0
    except OSError as e:
        raise StorageIOError(f"Error reading directory {config.root}: {e}") from e
    for entry in entries:
        if not is_transient(entry.name):
            continue
        try:
            os.remove(entry.path)
            removed += 1
        except OSError as e:
            logger.error(f"Error removing temp file {entry.name}: {e}")
    logger.info(f"Cleaned temporary uploads, removed {removed} files")
    return removed


def sweep_once(config: Config, now: Optional[datetime] = None, remove_transient: bool = False) -> List[str]:
    """Delete every item whose age reached its size-scaled retention window.

    Items with unreadable metadata are skipped. A store root that exists but
    cannot be listed raises StorageIOError. Returns the ids deleted.
    """
    now = now or now_utc()
    root = config.root
    if remove_transient:
        purge_transient(config)

    try:
        with os.scandir(root) as it:
            entries = sorted(it, key=lambda e: e.name)
    except FileNotFoundError:
        logger.debug(f"Store root {root} does not exist yet")
        return []
    except OSError as e:
        logger.error(f"Error reading directory {root}: {e}")
        raise StorageIOError(f"Error reading directory {root}: {e}") from e

    logger.debug(f"Checking {len(entries)} entries for old files")
    deleted = []
    for entry in entries:
        if is_transient(entry.name) or not entry.is_dir():
            continue

        item_id = entry.name
        try:
            item = read_sidecar(root, item_id)
        except CorruptMetadataError as e:
            logger.debug(f"Skipping {item_id}: {e}")
            continue

        age = now - item.modified_at
        ttl = time_to_deletion(item.size, config.minutes_per_gigabyte)
        if age < ttl:
            logger.debug(f"Skipping {item_id}: age {age} is below time to deletion {ttl}")
            continue

        logger.info(f"Deleting old file {item_id} ({human_bytes(item.size)}, modified {item.modified_at.isoformat()})")
        try:
            remove_item(root, item_id)
        except OSError as e:
            logger.error(f"Error deleting {item_id}: {e}")
            continue
        deleted.append(item_id)
    return deleted
