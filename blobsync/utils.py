"""Utility functions for blobsync."""

import logging
import os
import stat
from datetime import datetime
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

# Azure Storage REST API version sent with every request
API_VERSION: str = "2021-08-06"

# Local storage emulator (Azurite) well-known account
DEV_ACCOUNT_NAME: str = "devstoreaccount1"
DEV_ACCOUNT_KEY: str = (
    "Eby8vdM02xNOcqFlqUwJPLlmEtlCDXJ1OUzFT50uSRZ6IFsu"
    "Fq2UVErCz4I6tq/K1SZFPTOtr/KBHBeksoGMGw=="
)
DEV_BLOB_ENDPOINT: str = "http://127.0.0.1:10000/devstoreaccount1"

# Retry configuration for transient errors (0 = attempt each call once)
DEFAULT_MAX_RETRIES: int = 0
DEFAULT_RETRY_DELAY: float = 1.0  # seconds
DEFAULT_MAX_RETRY_DELAY: float = 30.0  # seconds

# Dispatcher sizing
DEFAULT_WORKERS: int = 4
DEFAULT_QUEUE_SIZE: int = 1000

# Chunk size used when streaming blob downloads to disk
DOWNLOAD_CHUNK_SIZE: int = 64 * 1024


# =============================================================================
# Timestamp parsing utilities
# =============================================================================


def parse_http_date(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 1123 date as returned by the storage service.

    Args:
        value: Date string (e.g., "Mon, 27 Jan 2025 10:30:00 GMT")

    Returns:
        Timezone-aware datetime or None if parsing fails
    """
    if not value:
        return None

    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None


# =============================================================================
# Size formatting utilities
# =============================================================================


def format_size(size_bytes: int) -> str:
    """Format file size in human-readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string (e.g., "1.5 MB", "256 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / 1024 / 1024:.1f} MB"
    else:
        return f"{size_bytes / 1024 / 1024 / 1024:.1f} GB"


# =============================================================================
# Watch root utilities
# =============================================================================


def prepare_watch_root(path: Path, grant_access: bool = False) -> bool:
    """Make sure the watch root exists and optionally open it to all users.

    With ``grant_access`` the directory is made readable, writable and
    traversable by everyone so that other processes (web servers, deploy
    agents) can drop files into it.

    Args:
        path: Directory to prepare
        grant_access: Whether to add read/write/execute for group and others

    Returns:
        True if the directory exists afterwards, False otherwise
    """
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error(f"Error creating watch root {path}: {e}")
        return False

    if grant_access:
        try:
            mode = stat.S_IMODE(path.stat().st_mode)
            os.chmod(path, mode | stat.S_IRWXU | stat.S_IRWXG | stat.S_IRWXO)
            logger.debug(f"Granted access to {path}")
        except OSError as e:
            logger.warning(f"Failed to grant access to {path}: {e}")

    return True
