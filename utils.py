"""
Run bookkeeping: logging handlers, run directories, sizes and memory reporting.
"""

import logging
import resource
import sys
import warnings
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

import rasterio
from rasterio.errors import NotGeoreferencedWarning, RasterioIOError

RUN_SUBDIRS = ('logs', 'intermediate', 'visualizations')

# Libraries that log every GDAL call at DEBUG
NOISY_LOGGERS = ('rasterio', 'matplotlib', 'PIL')


def _handler(handler: logging.Handler, level: int, fmt: str, datefmt: Optional[str] = None) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    return handler


def setup_logging(output_dir: Path, verbose: bool = False, log_prefix: str = 'blend') -> Path:
    """
    Route log records to the console and to a timestamped file in output_dir/logs.

    The console shows bare messages at INFO (DEBUG with verbose); the file
    always records everything with timestamps and levels.

    Returns:
        Path of the log file
    """
    logs_dir = Path(output_dir) / 'logs'
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_file = logs_dir / f"{log_prefix}_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        if isinstance(handler, logging.FileHandler):
            handler.close()
    root_logger.setLevel(logging.DEBUG)

    root_logger.addHandler(_handler(logging.StreamHandler(sys.stdout),
                                    logging.DEBUG if verbose else logging.INFO, '%(message)s'))
    root_logger.addHandler(_handler(logging.FileHandler(log_file, mode='w'), logging.DEBUG,
                                    '%(asctime)s - %(levelname)s - %(message)s', '%Y-%m-%d %H:%M:%S'))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.info(f"Log file: {log_file}")
    logging.debug(f"Verbose mode: {verbose}")
    return log_file


def create_output_directory(base_dir: str, subdirs: Iterable[str] = RUN_SUBDIRS) -> Path:
    """Create base_dir/run_<timestamp> and its subdirectories."""
    run_dir = Path(base_dir) / f"run_{datetime.now().strftime('%Y%m%d_%H%M%S')}"
    run_dir.mkdir(parents=True, exist_ok=True)
    for name in subdirs:
        (run_dir / name).mkdir(exist_ok=True)
    return run_dir


def format_bytes(num_bytes: float) -> str:
    """Format bytes into human-readable string."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if num_bytes < 1024.0:
            return f"{num_bytes:.2f} {unit}"
        num_bytes /= 1024.0
    return f"{num_bytes:.2f} PB"


def describe_raster(path: Path) -> dict:
    """
    File size and raster dimensions of a written output.

    Returns:
        {'exists': False} when the file is missing; otherwise size,
        size_formatted and, when GDAL can open it, width/height/count
    """
    path = Path(path)
    if not path.exists():
        return {'exists': False}

    size = path.stat().st_size
    info = {'exists': True, 'size': size, 'size_formatted': format_bytes(size)}
    try:
        with warnings.catch_warnings():
            warnings.simplefilter('ignore', NotGeoreferencedWarning)
            with rasterio.open(path) as src:
                info.update(width=src.width, height=src.height, count=src.count)
    except RasterioIOError as e:
        logging.debug(f"Cannot read raster metadata of {path}: {e}")
    return info


def log_banner(title: str, width: int = 80):
    logging.info("=" * width)
    logging.info(title)
    logging.info("=" * width)


def peak_memory_bytes() -> int:
    """Peak resident set size of this process."""
    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # Linux reports kilobytes, macOS bytes
    return peak if sys.platform == 'darwin' else peak * 1024
