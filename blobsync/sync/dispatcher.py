"""Dispatch of local change events to remote mutations."""

import logging
import queue
import threading
import zlib
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from ..utils import DEFAULT_QUEUE_SIZE, DEFAULT_WORKERS
from .operations import SyncOperations

logger = logging.getLogger(__name__)


class ChangeKind(str, Enum):
    """Kinds of change reported by the filesystem watch."""

    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"
    ERROR = "error"
    """The watch itself failed (e.g. event buffer overflow)"""


@dataclass(frozen=True)
class ChangeEvent:
    """One notification from the filesystem watch."""

    kind: ChangeKind
    """What happened"""

    path: Path
    """Affected path (the new path for renames)"""

    old_path: Optional[Path] = None
    """Previous path, only set for renames"""

    error: Optional[str] = None
    """Description of a watch error"""

    @classmethod
    def watch_error(cls, message: str, path: Optional[Path] = None) -> "ChangeEvent":
        """Create an ERROR event."""
        return cls(kind=ChangeKind.ERROR, path=path or Path(), error=message)


@dataclass
class _Job:
    """One remote mutation queued on the worker owning its path."""

    operation: str
    """Either upload or delete"""

    path: Path
    """Local path whose blob is changed"""

    event: ChangeEvent
    """Event the job was derived from"""

    after: Optional[threading.Event] = None
    """Set by the job that must finish before this one starts"""

    done: Optional[threading.Event] = None
    """Set once this job has finished, whatever its outcome"""


# Sentinel telling a worker to exit
_STOP = object()


class ChangeDispatcher:
    """Runs change events on a fixed pool of worker threads.

    Every worker owns a bounded queue. Work is routed to a worker by a
    stable hash of the path whose blob it changes, so all mutations of one
    blob are applied in the order they were observed while unrelated paths
    proceed in parallel. Events are never merged or dropped; a full queue
    blocks the submitter.

    A rename is split into an upload queued for the new path and a delete
    queued for the old path. The delete waits until the upload has finished.
    Each job only ever waits for a job submitted before it, so the workers
    cannot deadlock.

    Examples:
        >>> dispatcher = ChangeDispatcher(operations, workers=4)
        >>> dispatcher.start()
        >>> dispatcher.submit(ChangeEvent(ChangeKind.CREATED, Path("/root/a.txt")))
        >>> dispatcher.stop()
    """

    def __init__(
        self,
        operations: SyncOperations,
        workers: int = DEFAULT_WORKERS,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ):
        """Initialize the dispatcher.

        Args:
            operations: Upload/delete operations to invoke
            workers: Number of worker threads
            queue_size: Maximum pending jobs per worker
        """
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self.operations = operations
        self.workers = workers
        self._queues: list[queue.Queue] = [
            queue.Queue(maxsize=queue_size) for _ in range(workers)
        ]
        self._threads: list[threading.Thread] = []
        self._running = False
        self._submit_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self.stats = {
            "uploads": 0,
            "deletes": 0,
            "failures": 0,
            "watch_errors": 0,
        }

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start the worker threads."""
        if self._running:
            return
        self._threads = [
            threading.Thread(
                target=self._worker_loop,
                args=(index,),
                name=f"blobsync-worker-{index}",
                daemon=True,
            )
            for index in range(self.workers)
        ]
        self._running = True
        for thread in self._threads:
            thread.start()
        logger.debug(f"Started {self.workers} dispatcher workers")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Process the queued events, then stop the workers.

        Args:
            timeout: Seconds to wait for each worker (None waits forever)
        """
        if not self._running:
            return
        self._running = False
        with self._submit_lock:
            for worker_queue in self._queues:
                worker_queue.put(_STOP)
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []
        logger.debug("Dispatcher workers stopped")

    def join(self) -> None:
        """Block until every submitted event has been handled."""
        for worker_queue in self._queues:
            worker_queue.join()

    def worker_for(self, event: ChangeEvent) -> int:
        """Return the index of the worker handling the event's path."""
        return self._worker_index(event.path)

    def _worker_index(self, path: Path) -> int:
        key = str(path).encode("utf-8", "surrogateescape")
        return zlib.crc32(key) % self.workers

    def _jobs_for(self, event: ChangeEvent) -> list[_Job]:
        if event.kind in (ChangeKind.CREATED, ChangeKind.MODIFIED):
            return [_Job("upload", event.path, event)]
        if event.kind == ChangeKind.DELETED:
            return [_Job("delete", event.path, event)]
        if event.kind == ChangeKind.RENAMED:
            upload = _Job("upload", event.path, event)
            if event.old_path is None:
                return [upload]
            upload.done = threading.Event()
            delete = _Job("delete", event.old_path, event, after=upload.done)
            return [upload, delete]
        return []

    def submit(self, event: ChangeEvent) -> None:
        """Queue an event's jobs on the workers owning their paths.

        Watch errors are logged immediately and never queued.

        Args:
            event: Event from the filesystem watch

        Raises:
            RuntimeError: If the dispatcher has not been started
        """
        if event.kind == ChangeKind.ERROR:
            self._record_watch_error(event)
            return
        if not self._running:
            raise RuntimeError("Dispatcher is not running")
        with self._submit_lock:
            for job in self._jobs_for(event):
                self._queues[self._worker_index(job.path)].put(job)

    def handle(self, event: ChangeEvent) -> bool:
        """Apply the remote mutations for one event on the calling thread.

        Args:
            event: Event to handle

        Returns:
            True if every mutation for the event succeeded
        """
        if event.kind == ChangeKind.ERROR:
            self._record_watch_error(event)
            return False
        results = [self._run_job(job) for job in self._jobs_for(event)]
        return all(results)

    def _run_job(self, job: _Job) -> bool:
        try:
            if job.after is not None:
                job.after.wait()
            event = job.event
            if event.kind == ChangeKind.RENAMED:
                if job.operation == "upload":
                    logger.info(f"Renamed {event.old_path} to {event.path}")
            else:
                logger.info(f"{event.kind.value.capitalize()} {event.path}")

            if job.operation == "upload":
                return self._count("uploads", self.operations.upload(job.path))
            return self._count("deletes", self.operations.delete(job.path))
        finally:
            if job.done is not None:
                job.done.set()

    def _count(self, key: str, succeeded: bool) -> bool:
        with self._stats_lock:
            self.stats[key if succeeded else "failures"] += 1
        return succeeded

    def _record_watch_error(self, event: ChangeEvent) -> None:
        with self._stats_lock:
            self.stats["watch_errors"] += 1
        logger.error(f"Watcher error: {event.error}")

    def _worker_loop(self, index: int) -> None:
        worker_queue = self._queues[index]
        while True:
            job = worker_queue.get()
            try:
                if job is _STOP:
                    return
                self._run_job(job)
            except Exception:
                # Operations log their own failures
                logger.exception(f"Unexpected error handling {job.event}")
            finally:
                worker_queue.task_done()
