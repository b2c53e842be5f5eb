"""
Utility functions for the Timus Notifier pipeline.

This module provides:
- Central logging configuration
- JSON read/write helpers with atomic writes
- Environment variable helpers
- Text normalization shared by the parser
"""

import json
import logging
import os
import sys
import tempfile
import shutil
from pathlib import Path
from typing import Any, Optional


def setup_logging(level: str = "INFO") -> logging.Logger:
    """
    Configure and return the root logger for the application.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL).
               Defaults to INFO.

    Returns:
        Configured logger instance.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    # Configure root logger
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )

    logger = logging.getLogger("timus_notifier")
    logger.setLevel(log_level)

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the specified name.

    Args:
        name: Name for the logger, typically the module name.

    Returns:
        Logger instance configured as a child of the main application logger.
    """
    return logging.getLogger(f"timus_notifier.{name}")


def read_json(filepath: str, default: Any = None) -> Any:
    """
    Read JSON data from a file.

    A missing file is not an error and yields ``default``. Unreadable
    files and invalid JSON are reported to the caller.

    Args:
        filepath: Path to the JSON file.
        default: Value returned when the file does not exist.

    Returns:
        Parsed JSON data, or ``default`` if the file is missing.

    Raises:
        OSError: If the file exists but cannot be read.
        json.JSONDecodeError: If the file does not contain valid JSON.
    """
    logger = get_logger("utils")

    path = Path(filepath)
    if not path.exists():
        logger.debug(f"File does not exist: {filepath}, returning default")
        return default

    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    logger.debug(f"Successfully read JSON from {filepath}")
    return data


def safe_write_json(filepath: str, data: Any, indent: int = 2) -> bool:
    """
    Safely write JSON data to a file using atomic write operation.

    Uses a temporary file and atomic rename to prevent data corruption
    if the write operation is interrupted.

    Args:
        filepath: Path to the JSON file.
        data: Data to serialize as JSON.
        indent: JSON indentation level. Defaults to 2.

    Returns:
        True if write was successful, False otherwise.
    """
    logger = get_logger("utils")

    try:
        path = Path(filepath)

        # Ensure parent directory exists
        path.parent.mkdir(parents=True, exist_ok=True)

        # Write to temporary file first (atomic write pattern)
        fd, temp_path = tempfile.mkstemp(
            suffix=".json",
            prefix="seen_",
            dir=path.parent
        )

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=indent, ensure_ascii=False)

            shutil.move(temp_path, filepath)
            logger.debug(f"Successfully wrote JSON to {filepath}")
            return True

        except Exception:
            # Clean up temp file on failure
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise

    except PermissionError as e:
        logger.error(f"Permission denied writing {filepath}: {e}")
        return False
    except Exception as e:
        logger.error(f"Unexpected error writing {filepath}: {e}")
        return False


def get_env_var(name: str, required: bool = True, default: Optional[str] = None) -> Optional[str]:
    """
    Get an environment variable with optional requirement enforcement.

    Args:
        name: Name of the environment variable.
        required: If True, raises ValueError when variable is not set.
                  Defaults to True.
        default: Default value if variable is not set and not required.

    Returns:
        Value of the environment variable or default.

    Raises:
        ValueError: If required=True and the variable is not set.
    """
    value = os.environ.get(name)

    if value is None or value.strip() == "":
        if required:
            raise ValueError(f"Required environment variable '{name}' is not set")
        return default

    return value.strip()


def get_env_flag(name: str, default: bool = False) -> bool:
    """Read a boolean flag such as DRY_RUN=true from the environment."""
    value = get_env_var(name, required=False)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes")


def normalize_fragment(text: str) -> str:
    """
    Normalize a single text fragment from a table cell.

    Strips surrounding whitespace and removes embedded newlines. Inner
    spacing is kept as-is so that values like "Wrong answer" survive.

    Args:
        text: Raw text node content.

    Returns:
        Normalized fragment, possibly empty.
    """
    if not text:
        return ""

    return text.strip().replace("\n", "")
