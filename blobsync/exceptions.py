"""Exceptions raised by blobsync."""

from typing import Optional


class BlobSyncError(Exception):
    """Base exception for all blobsync errors."""


class ConfigError(BlobSyncError):
    """Raised when the configuration is missing or invalid."""


class APIError(BlobSyncError):
    """Raised when the storage service rejects a request."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class AuthenticationError(APIError):
    """Raised when the request signature or token is rejected (401)."""


class PermissionDeniedError(APIError):
    """Raised when the credentials lack access to a resource (403)."""


class NotFoundError(APIError):
    """Raised when the container or blob does not exist (404)."""


class ConflictError(APIError):
    """Raised when the resource is in a conflicting state (409)."""


class RateLimitError(APIError):
    """Raised when the service is throttling requests (429/503)."""


class InvalidResponseError(APIError):
    """Raised when the service returns a body that cannot be parsed."""


class NetworkError(BlobSyncError):
    """Raised when the service cannot be reached."""


class DownloadError(BlobSyncError):
    """Raised when a blob cannot be written to the local filesystem."""


class UploadError(BlobSyncError):
    """Raised when a local file cannot be read for upload."""
