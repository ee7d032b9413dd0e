"""API client for Azure-compatible blob storage."""

from __future__ import annotations

import logging
import mimetypes
import os
import random
import threading
import time
import xml.etree.ElementTree as ET
from collections.abc import Iterator
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, TypeVar
from urllib.parse import quote

import httpx

from .auth import SasTokenAuth, SharedKeyAuth
from .exceptions import (
    APIError,
    AuthenticationError,
    BlobSyncError,
    ConfigError,
    ConflictError,
    DownloadError,
    NetworkError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    UploadError,
)
from .models import BlobItem, BlobListResult
from .utils import (
    API_VERSION,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MAX_RETRY_DELAY,
    DEFAULT_RETRY_DELAY,
    DEV_ACCOUNT_KEY,
    DEV_ACCOUNT_NAME,
    DEV_BLOB_ENDPOINT,
    DOWNLOAD_CHUNK_SIZE,
)

if TYPE_CHECKING:
    from .config import SyncConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BlobClient:
    """Client for one container of an Azure Blob Storage account."""

    def __init__(
        self,
        container: str,
        account_name: str | None = None,
        account_key: str | None = None,
        sas_token: str | None = None,
        endpoint: str | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        max_retry_delay: float = DEFAULT_MAX_RETRY_DELAY,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize the blob client.

        Without a SAS token or a complete account name and key the client
        talks to the local storage emulator using its well-known development
        account.

        Args:
            container: Container name
            account_name: Storage account name
            account_key: Base64 account key for Shared Key signing
            sas_token: Shared access signature (used instead of the key)
            endpoint: Blob service URL (derived from the account if omitted)
            max_retries: Retries for transient failures (default: 0)
            retry_delay: Initial delay between retries in seconds
            max_retry_delay: Upper bound for a single retry delay in seconds
            timeout: Request timeout in seconds (default: 30.0)
            transport: Optional httpx transport (used by tests)

        Raises:
            ConfigError: If no endpoint can be determined
        """
        if not sas_token and not (account_name and account_key):
            if account_name or account_key:
                logger.warning(
                    "Storage account name or key missing, using development storage"
                )
            else:
                logger.info("No storage account configured, using development storage")
            account_name = DEV_ACCOUNT_NAME
            account_key = DEV_ACCOUNT_KEY
            endpoint = endpoint or DEV_BLOB_ENDPOINT

        if not endpoint:
            if not account_name:
                raise ConfigError("An endpoint is required when only a SAS token is set")
            endpoint = f"https://{account_name}.blob.core.windows.net"

        self.container = container
        self.account_name = account_name
        self.endpoint = endpoint.rstrip("/")
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self.timeout = timeout
        self._transport = transport

        self._auth: httpx.Auth | None
        if sas_token:
            self._auth = SasTokenAuth(sas_token)
        elif account_name and account_key:
            self._auth = SharedKeyAuth(account_name, account_key)
        else:
            self._auth = None

        self._client: httpx.Client | None = None
        self._client_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: SyncConfig) -> BlobClient:
        """Create a client from a SyncConfig."""
        return cls(
            container=config.container,
            account_name=config.account_name,
            account_key=config.account_key,
            sas_token=config.sas_token,
            endpoint=config.endpoint,
            max_retries=config.max_retries,
            retry_delay=config.retry_delay,
            max_retry_delay=config.max_retry_delay,
            timeout=config.timeout,
        )

    def _get_client(self) -> httpx.Client:
        """Get or create the httpx client shared by all worker threads."""
        with self._client_lock:
            if self._client is None or self._client.is_closed:
                self._client = httpx.Client(
                    auth=self._auth,
                    headers={"x-ms-version": API_VERSION},
                    timeout=httpx.Timeout(self.timeout),
                    transport=self._transport,
                )
            return self._client

    def close(self) -> None:
        """Close the client and release connections."""
        with self._client_lock:
            if self._client is not None and not self._client.is_closed:
                self._client.close()
            self._client = None

    def __enter__(self) -> BlobClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @property
    def container_url(self) -> str:
        """URL of the container."""
        return f"{self.endpoint}/{quote(self.container, safe='')}"

    def blob_url(self, name: str) -> str:
        """URL of a blob in the container."""
        return f"{self.container_url}/{quote(name, safe='/~')}"

    # =========================
    # Error handling and retries
    # =========================

    def _should_retry(self, exception: Exception, attempt: int) -> bool:
        """Determine if a failed call should be retried.

        Args:
            exception: The exception that occurred
            attempt: Current attempt number (0-based)

        Returns:
            True if the call should be retried, False otherwise
        """
        if attempt >= self.max_retries:
            return False

        if isinstance(exception, (NetworkError, RateLimitError)):
            return True

        # Server errors (5xx) are transient
        if isinstance(exception, APIError) and exception.status_code:
            return 500 <= exception.status_code < 600

        return False

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Calculate delay before next retry using exponential backoff.

        Args:
            attempt: Current attempt number (0-based)

        Returns:
            Delay in seconds, never above max_retry_delay
        """
        base_delay = min(self.retry_delay * (2**attempt), self.max_retry_delay)
        # Add jitter (+/- 25%)
        jitter = base_delay * 0.25 * (2 * random.random() - 1)
        return max(0.0, min(base_delay + jitter, self.max_retry_delay))

    def _error_from_response(self, response: httpx.Response) -> APIError:
        """Map an error response to an exception.

        Args:
            response: Response with a 4xx/5xx status (body already read)

        Returns:
            The exception describing the failure
        """
        status_code = response.status_code
        error_code = response.headers.get("x-ms-error-code")
        message = None
        if response.content:
            try:
                root = ET.fromstring(response.content)
                message_element = root.find("Message")
                if message_element is not None and message_element.text:
                    message = message_element.text.strip().splitlines()[0]
                code_element = root.find("Code")
                if not error_code and code_element is not None:
                    error_code = code_element.text
            except ET.ParseError:
                # Error bodies are optional
                pass

        detail = f"{error_code}: {message}" if message else (error_code or "")
        text = f"Request failed with status {status_code}"
        if detail:
            text = f"{text} ({detail})"

        error_class: type[APIError]
        if status_code == 401:
            error_class = AuthenticationError
        elif status_code == 403:
            error_class = PermissionDeniedError
        elif status_code == 404:
            error_class = NotFoundError
        elif status_code == 409:
            error_class = ConflictError
        elif status_code in (429, 503):
            error_class = RateLimitError
        else:
            error_class = APIError
        return error_class(text, status_code=status_code, error_code=error_code)

    def _raise_for_status(self, response: httpx.Response) -> None:
        """Raise the mapped exception if the response is an error."""
        if response.is_error:
            response.read()
            raise self._error_from_response(response)

    def _execute(self, operation: Callable[[], T], description: str) -> T:
        """Run one remote operation with the configured retry policy.

        Args:
            operation: Callable performing a single attempt
            description: Operation name for log messages

        Returns:
            Whatever the operation returns

        Raises:
            BlobSyncError: If the operation fails after all attempts
        """
        for attempt in range(self.max_retries + 1):
            try:
                return operation()
            except httpx.RequestError as e:
                error: BlobSyncError = NetworkError(f"Network error: {e}")
                if not self._should_retry(error, attempt):
                    raise error from e
            except APIError as e:
                if not self._should_retry(e, attempt):
                    raise
                error = e

            delay = self._calculate_retry_delay(attempt)
            logger.debug(
                f"{description} failed (attempt {attempt + 1}), "
                f"retrying in {delay:.2f}s: {error}"
            )
            time.sleep(delay)

        raise BlobSyncError(f"{description} failed after all retry attempts")

    # =========================
    # Container Operations
    # =========================

    def ensure_container_exists(self) -> bool:
        """Create the container if it does not exist yet.

        Returns:
            True if the container was created, False if it already existed
        """

        def _do_create() -> bool:
            response = self._get_client().put(
                self.container_url, params={"restype": "container"}
            )
            if response.status_code == 409:
                return False
            self._raise_for_status(response)
            return True

        created = self._execute(_do_create, f"Create container {self.container}")
        if created:
            logger.info(f"Created container {self.container}")
        return created

    def list_page(
        self,
        marker: str | None = None,
        prefix: str | None = None,
        page_size: int = 5000,
    ) -> BlobListResult:
        """Get one page of the flat blob listing.

        Args:
            marker: Continuation marker from the previous page
            prefix: Only list blobs whose names start with this prefix
            page_size: Maximum blobs per page (service maximum is 5000)

        Returns:
            BlobListResult with the page's blobs and the next marker
        """
        params: dict[str, Any] = {
            "restype": "container",
            "comp": "list",
            "maxresults": page_size,
        }
        if marker:
            params["marker"] = marker
        if prefix:
            params["prefix"] = prefix

        def _do_list() -> BlobListResult:
            response = self._get_client().get(self.container_url, params=params)
            self._raise_for_status(response)
            return BlobListResult.from_xml_response(response.content)

        return self._execute(_do_list, f"List container {self.container}")

    def list_objects(
        self, prefix: str | None = None, page_size: int = 5000
    ) -> Iterator[BlobItem]:
        """Iterate over every blob in the container.

        Follows continuation markers until the listing is exhausted.

        Args:
            prefix: Only list blobs whose names start with this prefix
            page_size: Blobs requested per page

        Yields:
            BlobItem for each blob
        """
        marker: str | None = None
        while True:
            page = self.list_page(marker=marker, prefix=prefix, page_size=page_size)
            yield from page.items
            if not page.next_marker:
                break
            marker = page.next_marker

    # =========================
    # Blob Operations
    # =========================

    def _detect_mime_type(self, file_path: Path) -> str:
        """Guess the MIME type of a file from its name."""
        mime_type, _ = mimetypes.guess_type(str(file_path))
        return mime_type or "application/octet-stream"

    def get_object(
        self,
        name: str,
        destination: Path,
        progress_callback: Callable[[int, int], None] | None = None,
    ) -> Path:
        """Download a blob into a local file.

        Args:
            name: Blob name
            destination: File to write (created or truncated)
            progress_callback: Optional callback function(bytes_downloaded, total_bytes)

        Returns:
            The destination path

        Raises:
            DownloadError: If the file cannot be written
        """
        url = self.blob_url(name)

        def _do_download() -> Path:
            with self._get_client().stream("GET", url) as response:
                self._raise_for_status(response)
                total_size = int(response.headers.get("Content-Length", 0))
                bytes_downloaded = 0
                try:
                    with open(destination, "wb") as f:
                        for chunk in response.iter_bytes(chunk_size=DOWNLOAD_CHUNK_SIZE):
                            if chunk:
                                f.write(chunk)
                                bytes_downloaded += len(chunk)
                                if progress_callback:
                                    progress_callback(bytes_downloaded, total_size)
                except OSError as e:
                    raise DownloadError(f"Failed to write {destination}: {e}") from e
            return destination

        return self._execute(_do_download, f"Download {name}")

    def put_object(self, name: str, local_path: Path) -> str | None:
        """Upload a local file as a block blob, replacing any existing blob.

        Args:
            name: Blob name
            local_path: File to upload

        Returns:
            ETag of the new blob version, if reported

        Raises:
            UploadError: If the file cannot be read
        """
        url = self.blob_url(name)
        content_type = self._detect_mime_type(local_path)

        def _do_upload() -> str | None:
            try:
                f = open(local_path, "rb")
            except OSError as e:
                raise UploadError(f"Failed to open {local_path}: {e}") from e
            with f:
                size = os.fstat(f.fileno()).st_size
                response = self._get_client().put(
                    url,
                    content=f,
                    headers={
                        "x-ms-blob-type": "BlockBlob",
                        "Content-Type": content_type,
                        "Content-Length": str(size),
                    },
                )
            self._raise_for_status(response)
            return response.headers.get("ETag")

        return self._execute(_do_upload, f"Upload {name}")

    def delete_object(self, name: str) -> bool:
        """Delete a blob together with its snapshots.

        Deleting a blob that does not exist is not an error.

        Args:
            name: Blob name

        Returns:
            True if a blob was deleted, False if it was already absent
        """
        url = self.blob_url(name)

        def _do_delete() -> bool:
            response = self._get_client().delete(
                url, headers={"x-ms-delete-snapshots": "include"}
            )
            if response.status_code == 404:
                return False
            self._raise_for_status(response)
            return True

        return self._execute(_do_delete, f"Delete {name}")
