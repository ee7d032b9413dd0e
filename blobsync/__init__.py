"""blobsync - keep a local folder synchronized with a blob storage container."""

from .api import BlobClient
from .config import SyncConfig, load_config
from .exceptions import (
    APIError,
    AuthenticationError,
    BlobSyncError,
    ConfigError,
    ConflictError,
    DownloadError,
    InvalidResponseError,
    NetworkError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    UploadError,
)
from .paths import PathMapper

__version__ = "0.1.0"

__all__ = [
    "BlobClient",
    "SyncConfig",
    "load_config",
    "PathMapper",
    "BlobSyncError",
    "APIError",
    "AuthenticationError",
    "ConfigError",
    "ConflictError",
    "DownloadError",
    "InvalidResponseError",
    "NetworkError",
    "NotFoundError",
    "PermissionDeniedError",
    "RateLimitError",
    "UploadError",
]
