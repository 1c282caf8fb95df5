import os
from pathlib import Path, PurePosixPath
from typing import Callable, Iterable, Iterator, NamedTuple, Optional

from webshare.logger_config import setup_logger
from webshare.services.item_codec import is_transient

logger = setup_logger()


class FileEntry(NamedTuple):
    path: PurePosixPath  # relative to the store root
    size: int


class ScanResult(NamedTuple):
    total_bytes: int
    largest_item_id: Optional[str]
    largest_size: int = 0


def walk_files(root: Path) -> Iterator[FileEntry]:
    """List every regular file under ``root``.

    A missing root lists nothing. Entries that cannot be read are logged and
    skipped.
    """
    def on_error(error: OSError):
        if isinstance(error, FileNotFoundError) and Path(error.filename) == Path(root):
            return
        logger.error(f"Error walking {error.filename}: {error}")

    for folder_path, _, files in os.walk(root, onerror=on_error):
        for name in files:
            full_path = Path(folder_path) / name
            try:
                size = full_path.stat().st_size
            except OSError as e:
                logger.error(f"Error reading size of {full_path}: {e}")
                continue
            yield FileEntry(PurePosixPath(full_path.relative_to(root).as_posix()), size)


def summarize(entries: Iterable[FileEntry]) -> ScanResult:
    """Sum file sizes and find the item holding the single largest file.

    Only files inside a top-level directory belong to an item; loose files
    and transient uploads count towards the total but are never candidates.
    """
    total = 0
    largest_id = None
    largest_size = -1
    for entry in entries:
        total += entry.size
        parts = entry.path.parts
        if len(parts) < 2 or is_transient(parts[0]):
            continue
        if entry.size > largest_size:
            largest_id = parts[0]
            largest_size = entry.size
    return ScanResult(total, largest_id, max(largest_size, 0))


def scan(root: Path, lister: Callable[[Path], Iterable[FileEntry]] = walk_files) -> ScanResult:
    result = summarize(lister(root))
    logger.debug(
        f"Scanned {root}: {result.total_bytes} bytes, largest item {result.largest_item_id} "
        f"({result.largest_size} bytes)"
    )
    return result
