# src/rasterkit/gaussstretch/memory_utils.py
"""
Memory helpers for raster buffers.

Provides:
- Memory-mapped array creation for large output rasters
- Size-based choice between RAM and memmap
- Process memory reporting for logs
"""
from __future__ import annotations

import atexit
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Optional, Tuple

import numpy as np
import psutil

log = logging.getLogger(__name__)

DEFAULT_MEMMAP_THRESHOLD_MB = 500

_TEMP_DIR: Optional[Path] = None


def get_temp_dir() -> Path:
    """Get or create the temporary directory for memory-mapped files."""
    global _TEMP_DIR
    if _TEMP_DIR is None or not _TEMP_DIR.exists():
        _TEMP_DIR = Path(tempfile.mkdtemp(prefix="gstretch_memmap_"))
    return _TEMP_DIR


def create_memmap_array(
    shape: Tuple[int, ...],
    dtype: np.dtype = np.float32,
    mode: str = 'w+',
    prefix: str = "array_"
) -> Tuple[np.memmap, Path]:
    """
    Create a memory-mapped array backed by a temporary file.

    Returns:
        Tuple of (memmap array, path to backing file)
    """
    temp_file = tempfile.NamedTemporaryFile(
        prefix=prefix,
        suffix=".npy",
        dir=get_temp_dir(),
        delete=False
    )
    temp_path = Path(temp_file.name)
    temp_file.close()

    mm = np.memmap(str(temp_path), dtype=dtype, mode=mode, shape=shape)
    log.debug("memmap %s %s -> %s", shape, np.dtype(dtype).name, temp_path)
    return mm, temp_path


def cleanup_memmap(mm: np.memmap, path: Path) -> None:
    """Drop a memory-mapped array and remove its backing file."""
    del mm
    try:
        if path.exists():
            path.unlink()
    except OSError as e:
        log.warning("Could not remove memmap file %s: %s", path, e)


def should_use_memmap(shape: Tuple[int, ...],
                      dtype: np.dtype = np.float32,
                      threshold_mb: float = DEFAULT_MEMMAP_THRESHOLD_MB) -> bool:
    """True if an array of this shape/dtype is larger than `threshold_mb`."""
    itemsize = np.dtype(dtype).itemsize
    size_bytes = int(np.prod(shape)) * itemsize
    return size_bytes > threshold_mb * 1024 * 1024


def smart_empty(
    shape: Tuple[int, ...],
    dtype: np.dtype = np.float32,
    force_memmap: bool = False,
    threshold_mb: float = DEFAULT_MEMMAP_THRESHOLD_MB,
) -> Tuple[np.ndarray, Optional[Path]]:
    """
    Create an empty array, using memmap for large arrays.

    Returns:
        Tuple of (array, optional path to memmap file)
    """
    if force_memmap or should_use_memmap(shape, dtype, threshold_mb):
        mm, path = create_memmap_array(shape, dtype, 'w+', "empty_")
        return mm, path
    return np.empty(shape, dtype=dtype), None


def cleanup_temp_files() -> None:
    """Cleanup all temporary memory-mapped files."""
    global _TEMP_DIR
    if _TEMP_DIR is not None and _TEMP_DIR.exists():
        shutil.rmtree(_TEMP_DIR, ignore_errors=True)
        _TEMP_DIR = None


def get_memory_usage_mb() -> float:
    """Get current process memory usage in MB."""
    return psutil.Process().memory_info().rss / (1024 * 1024)


atexit.register(cleanup_temp_files)
