"""Shared fixtures for blobsync tests."""

import threading
from pathlib import Path
from typing import Optional

import pytest

from blobsync.config import SyncConfig
from blobsync.exceptions import NetworkError, NotFoundError
from blobsync.models import BlobItem
from blobsync.paths import PathMapper


class FakeStore:
    """In-memory RemoteStore recording every call."""

    def __init__(self, objects: Optional[dict[str, bytes]] = None):
        self.objects: dict[str, bytes] = dict(objects or {})
        self.calls: list[tuple[str, str]] = []
        self.unreachable = False
        self.failing_names: set[str] = set()
        self.fail_listing = False
        self.closed = False
        self._lock = threading.Lock()

    def _record(self, operation: str, name: str) -> None:
        with self._lock:
            self.calls.append((operation, name))
        if self.unreachable or name in self.failing_names:
            raise NetworkError(f"Network error: cannot reach store for {name}")

    def calls_for(self, operation: str) -> list[str]:
        return [name for op, name in self.calls if op == operation]

    def list_objects(self):
        self._record("list", "")
        if self.fail_listing:
            raise NetworkError("Network error: listing failed")
        return [BlobItem(name=name, size=len(data)) for name, data in sorted(self.objects.items())]

    def get_object(self, name: str, destination: Path) -> Path:
        self._record("get", name)
        if name not in self.objects:
            raise NotFoundError("Request failed with status 404", status_code=404)
        destination.write_bytes(self.objects[name])
        return destination

    def put_object(self, name: str, local_path: Path) -> Optional[str]:
        self._record("put", name)
        data = Path(local_path).read_bytes()
        with self._lock:
            self.objects[name] = data
        return '"0x1"'

    def delete_object(self, name: str) -> bool:
        self._record("delete", name)
        with self._lock:
            return self.objects.pop(name, None) is not None

    def ensure_container_exists(self) -> bool:
        self._record("ensure", "")
        return False

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def store():
    """Create an empty in-memory store."""
    return FakeStore()


@pytest.fixture
def root(tmp_path):
    """Create the watch root directory."""
    watch_root = tmp_path / "site"
    watch_root.mkdir()
    return watch_root


@pytest.fixture
def mapper(root):
    """Create a path mapper for the watch root."""
    return PathMapper(root)


@pytest.fixture
def config(root):
    """Create a config pointing at the watch root."""
    return SyncConfig(container="test", local_root=root, workers=2, poll_interval=0.01)


@pytest.fixture
def store_factory():
    """Return the in-memory store class for tests that subclass it."""
    return FakeStore
