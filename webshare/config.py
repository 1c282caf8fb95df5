"""Configuration settings for the webshare content store."""
import argparse
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

# Storage limits
MAX_BYTES_PER_FILE = 1_000_000_000  # 1GB
MAX_BYTES_TOTAL = 10_000_000_000  # 10GB

# Retention
MINUTES_PER_GIGABYTE = 60.0
SWEEP_INTERVAL_SECONDS = 30 * 60

# Identifier constraints
ID_WIDTH = 3

# Server
DATA_DIR = "data"
PORT = 8222


def human_bytes(size: int) -> str:
    """Render a byte count with SI units, e.g. ``1.0 GB``."""
    if size < 1000:
        return f"{size} B"
    value = float(size)
    for unit in ("kB", "MB", "GB", "TB", "PB"):
        value /= 1000
        if value < 1000:
            break
    return f"{value:.1f} {unit}" if value < 10 else f"{value:.0f} {unit}"


def _positive_int(value: str) -> int:
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be positive, got {value}")
    return number


def _positive_float(value: str) -> float:
    number = float(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be positive, got {value}")
    return number


@dataclass(frozen=True)
class Config:
    data_dir: str = DATA_DIR
    public_url: str = ""
    port: int = PORT
    debug: bool = False
    max_bytes_per_file: int = MAX_BYTES_PER_FILE
    max_bytes_total: int = MAX_BYTES_TOTAL
    minutes_per_gigabyte: float = MINUTES_PER_GIGABYTE
    id_width: int = ID_WIDTH
    sweep_interval_seconds: float = SWEEP_INTERVAL_SECONDS

    def __post_init__(self):
        if not self.public_url:
            # frozen dataclass, so bypass __setattr__ for the derived default
            object.__setattr__(self, "public_url", f"http://localhost:{self.port}")

    @property
    def root(self) -> Path:
        return Path(self.data_dir)

    @property
    def max_bytes_per_file_human(self) -> str:
        return human_bytes(self.max_bytes_per_file)

    @classmethod
    def from_args(cls, argv: Optional[List[str]] = None) -> 'Config':
        """Create Config from command line arguments."""
        parser = argparse.ArgumentParser(description='Ephemeral file sharing server')
        parser.add_argument('--data', default=DATA_DIR, help='data directory')
        parser.add_argument('--public', default="", help='public URL to use')
        parser.add_argument('--port', type=_positive_int, default=PORT, help='port to use')
        parser.add_argument('--debug', action='store_true', help='debug mode')
        parser.add_argument('--max-file', type=_positive_int, default=MAX_BYTES_PER_FILE,
                            help='max bytes per file')
        parser.add_argument('--max-total', type=_positive_int, default=MAX_BYTES_TOTAL,
                            help='max bytes total')
        parser.add_argument('--min-per-gig', type=_positive_float, default=MINUTES_PER_GIGABYTE,
                            help='minutes per gigabyte for auto-deletion')
        parser.add_argument('--id-width', type=_positive_int, default=ID_WIDTH,
                            help='number of digits in generated ids')
        parser.add_argument('--sweep-interval', type=_positive_float, default=SWEEP_INTERVAL_SECONDS,
                            help='seconds between retention sweeps')
        args = parser.parse_args(argv)

        return cls(
            data_dir=args.data,
            public_url=args.public,
            port=args.port,
            debug=args.debug,
            max_bytes_per_file=args.max_file,
            max_bytes_total=args.max_total,
            minutes_per_gigabyte=args.min_per_gig,
            id_width=args.id_width,
            sweep_interval_seconds=args.sweep_interval,
        )
