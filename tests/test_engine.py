"""Tests for the sync engine lifecycle and end-to-end change push."""

import signal
import time
from unittest.mock import MagicMock, Mock, patch

import pytest
from watchdog.events import FileCreatedEvent, FileDeletedEvent, FileMovedEvent

from blobsync.api import BlobClient
from blobsync.config import SyncConfig
from blobsync.sync.engine import SyncEngine
from blobsync.sync.store import UnavailableStore


@pytest.fixture
def observer_factory():
    """Create a factory returning a fresh mocked observer per call."""
    return Mock(side_effect=lambda: MagicMock())


@pytest.fixture
def engine(config, store, observer_factory):
    """Create an engine over the fake store and shut it down afterwards."""
    engine = SyncEngine(config, store=store, observer_factory=observer_factory)
    yield engine
    engine.shutdown()


class TestSyncEngineSetup:
    """Tests for engine construction and preparation."""

    def test_builds_blob_client_by_default(self, config):
        """Test a BlobClient is created from the config when no store is given."""
        engine = SyncEngine(config)
        assert isinstance(engine.store, BlobClient)
        assert engine.store.container == "test"
        engine.store.close()

    def test_watch_root(self, engine, root):
        """Test the watch root comes from the config."""
        assert engine.watch_root == root
        assert engine.mapper.root == root

    def test_prepare(self, engine, store):
        """Test prepare makes sure the container exists."""
        assert engine.prepare() is True
        assert store.calls_for("ensure") == [""]

    def test_prepare_creates_watch_root(self, tmp_path, store, observer_factory):
        """Test a missing watch root is created."""
        config = SyncConfig(container="test", fallback_root=tmp_path, folder="site")
        engine = SyncEngine(config, store=store, observer_factory=observer_factory)

        assert engine.prepare() is True
        assert (tmp_path / "site").is_dir()

    def test_prepare_with_unreachable_store(self, engine, store):
        """Test container setup failures are logged and reported."""
        store.unreachable = True
        assert engine.prepare() is False


class TestWatching:
    """Tests for arming and re-arming the watch."""

    def test_start_watching(self, engine, observer_factory, root):
        """Test the observer watches the root recursively."""
        engine.start_watching()

        observer = engine.observer
        observer.schedule.assert_called_once_with(engine.handler, str(root), recursive=True)
        observer.start.assert_called_once()
        assert engine.dispatcher.running

    def test_check_watch_alive(self, engine, observer_factory):
        """Test a live observer is left alone."""
        engine.start_watching()
        engine.observer.is_alive.return_value = True

        assert engine.check_watch() is True
        assert observer_factory.call_count == 1

    def test_check_watch_rearms(self, engine, observer_factory):
        """Test a dead observer is reported and replaced."""
        engine.start_watching()
        first = engine.observer
        first.is_alive.return_value = False

        assert engine.check_watch() is False
        assert observer_factory.call_count == 2
        assert engine.observer is not first
        engine.observer.start.assert_called_once()
        assert engine.dispatcher.stats["watch_errors"] == 1

    def test_shutdown(self, engine, store):
        """Test shutdown stops the observer and closes the store."""
        engine.start_watching()
        observer = engine.observer

        engine.shutdown()

        observer.stop.assert_called_once()
        observer.join.assert_called_once()
        assert not engine.dispatcher.running
        assert store.closed


class TestChangePush:
    """End-to-end tests from watchdog events to store mutations."""

    def test_create_uploads(self, engine, store, root):
        """Test a new file ends up in the container."""
        engine.start_watching()
        (root / "docs").mkdir()
        (root / "docs" / "a.txt").write_text("hello")

        engine.handler.dispatch(FileCreatedEvent(str(root / "docs" / "a.txt")))
        engine.dispatcher.join()

        assert store.objects == {"docs/a.txt": b"hello"}

    def test_rename_moves_blob(self, engine, store, root):
        """Test a rename uploads the new name and deletes the old one."""
        store.objects["old.txt"] = b"data"
        (root / "new.txt").write_text("data")
        engine.start_watching()

        engine.handler.dispatch(FileMovedEvent(str(root / "old.txt"), str(root / "new.txt")))
        engine.dispatcher.join()

        assert store.objects == {"new.txt": b"data"}
        assert store.calls == [("put", "new.txt"), ("delete", "old.txt")]

    def test_delete_removes_blob(self, engine, store, root):
        """Test a deleted file's blob is removed."""
        store.objects["a.txt"] = b"data"
        engine.start_watching()

        engine.handler.dispatch(FileDeletedEvent(str(root / "a.txt")))
        engine.dispatcher.join()

        assert store.objects == {}

    def test_failed_upload_is_not_retried(self, engine, store, root, caplog):
        """Test a failed upload is logged once and later events still run."""
        (root / "a.txt").write_text("x")
        store.unreachable = True
        engine.start_watching()

        engine.handler.dispatch(FileCreatedEvent(str(root / "a.txt")))
        engine.dispatcher.join()

        assert store.calls_for("put") == ["a.txt"]
        assert engine.dispatcher.stats["failures"] == 1
        assert "Failed to upload blob a.txt" in caplog.text

        store.unreachable = False
        (root / "b.txt").write_text("y")
        engine.handler.dispatch(FileCreatedEvent(str(root / "b.txt")))
        engine.dispatcher.join()

        assert store.objects == {"b.txt": b"y"}
        assert store.calls_for("put") == ["a.txt", "b.txt"]


class TestRun:
    """Tests for the run loop."""

    def test_run_reconciles_watches_and_stops(self, engine, store, root):
        """Test run performs the whole lifecycle until stopped."""
        store.objects["a.txt"] = b"remote"

        with patch.object(engine, "check_watch", side_effect=engine.stop) as check:
            engine.run()

        assert (root / "a.txt").read_bytes() == b"remote"
        check.assert_called_once()
        assert engine.observer is None
        assert store.closed

    def test_signal_handler_stops_run(self, engine):
        """Test SIGTERM asks the loop to stop."""
        with patch("blobsync.sync.engine.signal.signal") as mock_signal:
            engine.install_signal_handlers()

        handlers = {c.args[0]: c.args[1] for c in mock_signal.call_args_list}
        assert set(handlers) == {signal.SIGTERM, signal.SIGINT}

        handlers[signal.SIGTERM](signal.SIGTERM, None)
        assert engine._stop_event.is_set()


class TestDegradedStart:
    """Tests for an engine whose blob client cannot be configured."""

    @pytest.fixture
    def bad_key_config(self, root):
        """Create a config with an account key that is not base64."""
        return SyncConfig(
            container="test",
            local_root=root,
            account_name="acct",
            account_key="not base64!!",
            workers=2,
            poll_interval=0.01,
        )

    def test_engine_is_created(self, bad_key_config, caplog):
        """Test a bad key is logged instead of raised."""
        engine = SyncEngine(bad_key_config, observer_factory=Mock())

        assert isinstance(engine.store, UnavailableStore)
        assert "Account key is not valid base64" in caplog.text

    def test_remote_calls_fail_and_are_logged(self, bad_key_config, root, caplog):
        """Test every later remote call fails individually."""
        engine = SyncEngine(bad_key_config, observer_factory=Mock(side_effect=MagicMock))
        try:
            assert engine.prepare() is False
            assert engine.reconcile()["errors"] == 1

            engine.start_watching()
            (root / "a.txt").write_text("x")
            engine.handler.dispatch(FileCreatedEvent(str(root / "a.txt")))
            engine.dispatcher.join()
        finally:
            engine.shutdown()

        assert engine.dispatcher.stats["failures"] == 1
        assert "Failed to upload blob a.txt" in caplog.text

    def test_run_keeps_going(self, bad_key_config):
        """Test the run loop starts and stops normally."""
        engine = SyncEngine(bad_key_config, observer_factory=Mock(side_effect=MagicMock))

        with patch.object(engine, "check_watch", side_effect=engine.stop) as check:
            engine.run()

        check.assert_called_once()


class TestRealObserver:
    """Tests with a real watchdog observer on the watch root."""

    def test_file_write_reaches_store(self, config, store, root):
        """Test a file written under the root is uploaded."""
        engine = SyncEngine(config, store=store)
        try:
            engine.start_watching()
            (root / "docs").mkdir()
            (root / "docs" / "a.txt").write_bytes(b"hello")

            deadline = time.monotonic() + 10
            while store.objects.get("docs/a.txt") != b"hello":
                assert time.monotonic() < deadline, "upload did not happen"
                time.sleep(0.05)
        finally:
            engine.shutdown()

        assert engine.dispatcher.stats["failures"] == 0
