"""Contract between the sync engine and a remote object store."""

from collections.abc import Iterable
from pathlib import Path
from typing import NoReturn, Optional, Protocol

from ..exceptions import ConfigError
from ..models import BlobItem


class RemoteStore(Protocol):
    """Operations the sync engine needs from the remote object store.

    :class:`blobsync.api.BlobClient` implements this protocol. Every method
    may raise a :class:`blobsync.exceptions.BlobSyncError` subclass.
    """

    def list_objects(self) -> Iterable[BlobItem]:
        """Return every object in the container (all pages)."""
        ...

    def get_object(self, name: str, destination: Path) -> Path:
        """Write the object's bytes to ``destination``."""
        ...

    def put_object(self, name: str, local_path: Path) -> Optional[str]:
        """Create or overwrite the object with the file's current bytes."""
        ...

    def delete_object(self, name: str) -> bool:
        """Delete the object and its snapshots; absent objects are fine."""
        ...

    def ensure_container_exists(self) -> bool:
        """Create the container if missing."""
        ...


class UnavailableStore:
    """Stand-in store used when the remote client cannot be configured.

    Every operation raises :class:`ConfigError` with the original reason, so
    each remote call fails and is logged while the engine keeps running.
    """

    def __init__(self, reason: str):
        self.reason = reason

    def _fail(self) -> NoReturn:
        raise ConfigError(f"Remote store is not configured: {self.reason}")

    def list_objects(self) -> Iterable[BlobItem]:
        self._fail()

    def get_object(self, name: str, destination: Path) -> Path:
        self._fail()

    def put_object(self, name: str, local_path: Path) -> Optional[str]:
        self._fail()

    def delete_object(self, name: str) -> bool:
        self._fail()

    def ensure_container_exists(self) -> bool:
        self._fail()

    def close(self) -> None:
        pass
