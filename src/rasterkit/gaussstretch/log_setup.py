# src/rasterkit/gaussstretch/log_setup.py
"""Log file location and root logger configuration for the command line tool."""
from __future__ import annotations

import logging
import os
import sys
import tempfile
from pathlib import Path

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_NAME = 'gaussstretch.log'


def get_log_file_path() -> str:
    """Get appropriate log file path for the current platform."""
    override = os.environ.get("GAUSSSTRETCH_LOG_DIR", "").strip()
    if override:
        log_dir = Path(override)
    elif sys.platform.startswith('win'):
        # Windows: %APPDATA%\RasterKit\logs\
        log_dir = Path(os.path.expandvars('%APPDATA%')) / 'RasterKit' / 'logs'
    elif sys.platform.startswith('darwin'):
        # macOS: ~/Library/Logs/RasterKit/
        log_dir = Path.home() / 'Library' / 'Logs' / 'RasterKit'
    else:
        # Linux: ~/.local/share/RasterKit/logs/
        log_dir = Path.home() / '.local' / 'share' / 'RasterKit' / 'logs'

    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        return str(log_dir / LOG_NAME)
    except OSError:
        # Fallback to temp directory if user directory fails
        return str(Path(tempfile.gettempdir()) / LOG_NAME)


def configure_logging(level: str | int = logging.INFO) -> str | None:
    """
    Send log records to the log file; console-only if the file cannot be
    opened.  Returns the log file path, or None for console logging.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    log_file_path = get_log_file_path()
    try:
        logging.basicConfig(
            filename=log_file_path,
            level=level,
            format=LOG_FORMAT,
            filemode='a',  # Append mode
            force=True,
        )
        logging.info(f"Logging to: {log_file_path}")
        logging.info(f"Platform: {sys.platform}")
        return log_file_path
    except OSError as e:
        # Ultimate fallback - console only logging
        logging.basicConfig(
            level=level,
            format=LOG_FORMAT,
            handlers=[logging.StreamHandler(sys.stdout)],
            force=True,
        )
        print(f"Warning: Could not write to log file {log_file_path}: {e}")
        print("Using console-only logging")
        return None
