"""Unit tests for the change dispatcher."""

import threading
import time
from pathlib import Path
from unittest.mock import Mock, call

import pytest

from blobsync.sync.dispatcher import ChangeDispatcher, ChangeEvent, ChangeKind
from blobsync.sync.operations import SyncOperations


@pytest.fixture
def operations():
    """Create mocked operations that always succeed."""
    ops = Mock(spec=SyncOperations)
    ops.upload.return_value = True
    ops.delete.return_value = True
    return ops


@pytest.fixture
def dispatcher(operations):
    """Create a started dispatcher and stop it afterwards."""
    dispatcher = ChangeDispatcher(operations, workers=4, queue_size=10)
    dispatcher.start()
    yield dispatcher
    dispatcher.stop(timeout=5)


class TestChangeEvent:
    """Tests for ChangeEvent."""

    def test_watch_error(self):
        """Test the watch error constructor."""
        event = ChangeEvent.watch_error("buffer overflow")
        assert event.kind == ChangeKind.ERROR
        assert event.error == "buffer overflow"
        assert event.old_path is None

    def test_kind_values(self):
        """Test kinds compare equal to their string values."""
        assert ChangeKind.CREATED == "created"
        assert ChangeKind("renamed") is ChangeKind.RENAMED


class TestHandle:
    """Tests for ChangeDispatcher.handle."""

    def test_created_and_modified_upload(self, operations):
        """Test created and modified events upload the path."""
        dispatcher = ChangeDispatcher(operations, workers=1)
        assert dispatcher.handle(ChangeEvent(ChangeKind.CREATED, Path("/r/a.txt")))
        assert dispatcher.handle(ChangeEvent(ChangeKind.MODIFIED, Path("/r/a.txt")))
        assert operations.upload.call_args_list == [call(Path("/r/a.txt"))] * 2
        assert dispatcher.stats["uploads"] == 2

    def test_deleted_deletes(self, operations):
        """Test deleted events delete the blob."""
        dispatcher = ChangeDispatcher(operations, workers=1)
        assert dispatcher.handle(ChangeEvent(ChangeKind.DELETED, Path("/r/a.txt")))
        operations.delete.assert_called_once_with(Path("/r/a.txt"))
        operations.upload.assert_not_called()

    def test_rename_uploads_then_deletes(self, operations):
        """Test a rename uploads the new name before deleting the old one."""
        dispatcher = ChangeDispatcher(operations, workers=1)
        event = ChangeEvent(
            ChangeKind.RENAMED, Path("/r/new.txt"), old_path=Path("/r/old.txt")
        )

        assert dispatcher.handle(event) is True
        assert operations.mock_calls == [
            call.upload(Path("/r/new.txt")),
            call.delete(Path("/r/old.txt")),
        ]

    def test_rename_deletes_even_if_upload_fails(self, operations):
        """Test both halves of a rename run independently."""
        operations.upload.return_value = False
        dispatcher = ChangeDispatcher(operations, workers=1)
        event = ChangeEvent(
            ChangeKind.RENAMED, Path("/r/new.txt"), old_path=Path("/r/old.txt")
        )

        assert dispatcher.handle(event) is False
        operations.delete.assert_called_once_with(Path("/r/old.txt"))
        assert dispatcher.stats["failures"] == 1
        assert dispatcher.stats["deletes"] == 1

    def test_error_event_is_counted(self, operations):
        """Test error events are reported and cause no mutation."""
        dispatcher = ChangeDispatcher(operations, workers=1)
        assert dispatcher.handle(ChangeEvent.watch_error("overflow")) is False
        assert dispatcher.stats["watch_errors"] == 1
        operations.upload.assert_not_called()
        operations.delete.assert_not_called()


class TestDispatch:
    """Tests for queued dispatch on worker threads."""

    def test_invalid_worker_count(self, operations):
        """Test at least one worker is required."""
        with pytest.raises(ValueError):
            ChangeDispatcher(operations, workers=0)

    def test_submit_requires_running(self, operations):
        """Test events cannot be queued before start."""
        dispatcher = ChangeDispatcher(operations, workers=1)
        with pytest.raises(RuntimeError, match="not running"):
            dispatcher.submit(ChangeEvent(ChangeKind.CREATED, Path("/r/a.txt")))

    def test_watch_errors_are_not_queued(self, operations, caplog):
        """Test error events are logged without a running dispatcher."""
        dispatcher = ChangeDispatcher(operations, workers=1)
        dispatcher.submit(ChangeEvent.watch_error("overflow"))
        assert dispatcher.stats["watch_errors"] == 1
        assert "Watcher error: overflow" in caplog.text

    def test_routing_is_stable(self, dispatcher):
        """Test events for one path always go to the same worker."""
        created = ChangeEvent(ChangeKind.CREATED, Path("/r/a.txt"))
        deleted = ChangeEvent(ChangeKind.DELETED, Path("/r/a.txt"))
        assert dispatcher.worker_for(created) == dispatcher.worker_for(deleted)
        assert 0 <= dispatcher.worker_for(created) < dispatcher.workers

    def test_events_are_handled(self, dispatcher, operations):
        """Test queued events reach the operations."""
        for index in range(20):
            dispatcher.submit(ChangeEvent(ChangeKind.CREATED, Path(f"/r/{index}.txt")))
        dispatcher.join()

        assert operations.upload.call_count == 20
        assert dispatcher.stats["uploads"] == 20

    def test_per_path_order_is_preserved(self, operations):
        """Test events for one path are handled in submission order."""
        handled = []
        lock = threading.Lock()

        def record(kind):
            def _record(path):
                # Slow down the first events so reordering would show
                time.sleep(0.001 * (len(handled) % 3))
                with lock:
                    handled.append((kind, path))
                return True

            return _record

        operations.upload.side_effect = record("upload")
        operations.delete.side_effect = record("delete")

        dispatcher = ChangeDispatcher(operations, workers=4)
        dispatcher.start()
        try:
            for _ in range(10):
                dispatcher.submit(ChangeEvent(ChangeKind.MODIFIED, Path("/r/a.txt")))
                dispatcher.submit(ChangeEvent(ChangeKind.DELETED, Path("/r/a.txt")))
                dispatcher.submit(ChangeEvent(ChangeKind.CREATED, Path("/r/b.txt")))
            dispatcher.join()
        finally:
            dispatcher.stop(timeout=5)

        a_events = [kind for kind, path in handled if path == Path("/r/a.txt")]
        assert a_events == ["upload", "delete"] * 10

    def test_worker_survives_unexpected_errors(self, dispatcher, operations):
        """Test an exception in an operation does not kill the worker."""
        operations.upload.side_effect = [RuntimeError("boom"), True]

        dispatcher.submit(ChangeEvent(ChangeKind.CREATED, Path("/r/a.txt")))
        dispatcher.submit(ChangeEvent(ChangeKind.CREATED, Path("/r/a.txt")))
        dispatcher.join()

        assert operations.upload.call_count == 2
        assert dispatcher.stats["uploads"] == 1

    def test_stop_drains_queue(self, operations):
        """Test stop handles everything submitted before it."""
        dispatcher = ChangeDispatcher(operations, workers=2)
        dispatcher.start()
        for index in range(10):
            dispatcher.submit(ChangeEvent(ChangeKind.DELETED, Path(f"/r/{index}.txt")))
        dispatcher.stop(timeout=5)

        assert operations.delete.call_count == 10
        assert not dispatcher.running


class TestRenameOrdering:
    """Tests for renames whose old and new paths live on different workers."""

    def test_recreated_old_path_survives_rename(self, store_factory, mapper, root):
        """Test a file re-created after a rename keeps its blob."""

        class SlowBackupStore(store_factory):
            def put_object(self, name, local_path):
                if ".bak" in name:
                    time.sleep(0.2)
                return super().put_object(name, local_path)

        store = SlowBackupStore({"a.txt": b"v1"})
        dispatcher = ChangeDispatcher(SyncOperations(store, mapper), workers=4)
        original = root / "a.txt"
        backup = next(
            root / f"a.txt.bak{index}"
            for index in range(100)
            if dispatcher._worker_index(root / f"a.txt.bak{index}")
            != dispatcher._worker_index(original)
        )
        backup.write_bytes(b"v1")
        original.write_bytes(b"v2")

        dispatcher.start()
        try:
            dispatcher.submit(ChangeEvent(ChangeKind.RENAMED, backup, old_path=original))
            dispatcher.submit(ChangeEvent(ChangeKind.CREATED, original))
            dispatcher.join()
        finally:
            dispatcher.stop(timeout=5)

        assert store.objects == {"a.txt": b"v2", backup.name: b"v1"}
        assert store.calls == [
            ("put", backup.name),
            ("delete", "a.txt"),
            ("put", "a.txt"),
        ]

    def test_rename_delete_runs_on_old_path_worker(self, operations):
        """Test each half of a rename is queued for its own path."""
        dispatcher = ChangeDispatcher(operations, workers=8)
        event = ChangeEvent(
            ChangeKind.RENAMED, Path("/r/new.txt"), old_path=Path("/r/old.txt")
        )

        upload, delete = dispatcher._jobs_for(event)

        assert (upload.operation, upload.path) == ("upload", Path("/r/new.txt"))
        assert (delete.operation, delete.path) == ("delete", Path("/r/old.txt"))
        assert delete.after is upload.done
        assert not upload.done.is_set()

    def test_many_crossing_renames_finish(self, operations):
        """Test renames in both directions between workers never deadlock."""
        dispatcher = ChangeDispatcher(operations, workers=2)
        dispatcher.start()
        try:
            for index in range(50):
                dispatcher.submit(
                    ChangeEvent(
                        ChangeKind.RENAMED,
                        Path(f"/r/{index}.new"),
                        old_path=Path(f"/r/{index}.old"),
                    )
                )
                dispatcher.submit(
                    ChangeEvent(
                        ChangeKind.RENAMED,
                        Path(f"/r/{index}.old"),
                        old_path=Path(f"/r/{index}.new"),
                    )
                )
            dispatcher.join()
        finally:
            dispatcher.stop(timeout=5)

        assert operations.upload.call_count == 100
        assert operations.delete.call_count == 100
