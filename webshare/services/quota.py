from typing import Callable

from webshare.config import Config
from webshare.logger_config import setup_logger
from webshare.services.item_codec import remove_item
from webshare.services.scanner import ScanResult, scan

logger = setup_logger()

MAX_ITERATIONS = 30


def enforce_quota(config: Config, scanner: Callable[..., ScanResult] = scan,
                  max_iterations: int = MAX_ITERATIONS) -> int:
    """Evict the largest item until the store is under its size cap.

    Stops after ``max_iterations`` deletions even if the store is still over
    the cap. Returns the number of items deleted.
    """
    root = config.root
    deleted = 0
    for _ in range(max_iterations):
        result = scanner(root)
        if result.total_bytes < config.max_bytes_total or result.largest_item_id is None:
            return deleted

        logger.debug(
            f"Bytes in directory ({result.total_bytes}) exceed max ({config.max_bytes_total}), "
            f"removing {result.largest_item_id}"
        )
        try:
            remove_item(root, result.largest_item_id)
        except OSError as e:
            logger.error(f"Error removing {result.largest_item_id}: {e}", exc_info=True)
            return deleted
        deleted += 1

    result = scanner(root)
    if result.total_bytes >= config.max_bytes_total and result.largest_item_id is not None:
        logger.warning(
            f"Quota enforcement stopped after {max_iterations} deletions; "
            f"store still holds {result.total_bytes} bytes (max {config.max_bytes_total})"
        )
    return deleted
