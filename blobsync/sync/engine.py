"""Sync engine: startup reconciliation followed by continuous change push."""

import logging
import signal
import threading
from typing import Any, Callable, Optional

from watchdog.observers import Observer

from ..api import BlobClient
from ..config import SyncConfig
from ..exceptions import BlobSyncError, ConfigError
from ..paths import PathMapper
from ..utils import prepare_watch_root
from .dispatcher import ChangeDispatcher, ChangeEvent
from .operations import SyncOperations
from .reconcile import Reconciler
from .store import RemoteStore, UnavailableStore
from .watcher import SyncEventHandler

logger = logging.getLogger(__name__)


class SyncEngine:
    """Keeps one local directory and one container synchronized.

    The engine reconciles once, then arms a recursive watch on the watch
    root and pushes every observed change until :meth:`stop` is called.
    """

    def __init__(
        self,
        config: SyncConfig,
        store: Optional[RemoteStore] = None,
        observer_factory: Callable[[], Any] = Observer,
    ):
        """Initialize sync engine.

        Args:
            config: Effective configuration
            store: Remote store (a BlobClient built from the config if omitted)
            observer_factory: Callable creating a watchdog observer
        """
        self.config = config
        self.watch_root = config.watch_root
        self.mapper = PathMapper(self.watch_root)
        self.store: RemoteStore = store if store is not None else self._create_store(config)
        self.operations = SyncOperations(self.store, self.mapper)
        self.reconciler = Reconciler(self.store, self.mapper)
        self.dispatcher = ChangeDispatcher(
            self.operations, workers=config.workers, queue_size=config.queue_size
        )
        self.handler = SyncEventHandler(self.dispatcher)
        self._observer_factory = observer_factory
        self.observer: Optional[Any] = None
        self._stop_event = threading.Event()

    @staticmethod
    def _create_store(config: SyncConfig) -> RemoteStore:
        try:
            return BlobClient.from_config(config)
        except ConfigError as e:
            logger.error(f"Failed to configure blob client: {e}")
            return UnavailableStore(str(e))

    def prepare(self) -> bool:
        """Prepare the watch root and the container.

        Failures are logged; the engine keeps going in a degraded state and
        later remote calls fail and are logged individually.

        Returns:
            True if both the watch root and the container are ready
        """
        logger.info(f"Configuration: {self.config.describe()}")
        ready = prepare_watch_root(self.watch_root, self.config.grant_access)
        if not ready:
            logger.error(f"Error finding watch root {self.watch_root}")

        try:
            self.store.ensure_container_exists()
        except BlobSyncError as e:
            logger.error(f"Failed to set up container {self.config.container}: {e}")
            return False
        return ready

    def reconcile(self, show_progress: bool = False) -> dict:
        """Download remote objects missing locally.

        Args:
            show_progress: Show a spinner while reconciling

        Returns:
            Reconciliation statistics
        """
        return self.reconciler.run(show_progress=show_progress)

    def start_watching(self) -> None:
        """Start the dispatcher workers and arm the recursive watch."""
        self.dispatcher.start()
        self._arm_observer()
        logger.info(f"Watching {self.watch_root}")

    def _arm_observer(self) -> None:
        observer = self._observer_factory()
        observer.schedule(self.handler, str(self.watch_root), recursive=True)
        observer.start()
        self.observer = observer

    def check_watch(self) -> bool:
        """Re-arm the watch if its thread died.

        Returns:
            True if the watch was alive, False if it had to be re-armed
        """
        if self.observer is None or self.observer.is_alive():
            return True

        self.dispatcher.submit(
            ChangeEvent.watch_error(f"Watch on {self.watch_root} stopped, re-arming")
        )
        try:
            self._arm_observer()
        except OSError as e:
            logger.error(f"Failed to re-arm watch on {self.watch_root}: {e}")
        return False

    def run(self, show_progress: bool = False) -> None:
        """Run until stopped: prepare, reconcile, then watch.

        Args:
            show_progress: Show a spinner during reconciliation
        """
        logger.info("Sync engine started")
        self._stop_event.clear()
        self.prepare()
        self.reconcile(show_progress=show_progress)
        self.start_watching()

        try:
            while not self._stop_event.wait(self.config.poll_interval):
                self.check_watch()
        except KeyboardInterrupt:
            logger.info("Interrupted")
        finally:
            self.shutdown()

    def stop(self) -> None:
        """Ask a running :meth:`run` loop to exit."""
        self._stop_event.set()

    def shutdown(self) -> None:
        """Stop the watch, finish queued events and release the client."""
        if self.observer is not None:
            self.observer.stop()
            self.observer.join(timeout=10)
            self.observer = None
        self.dispatcher.stop()
        close = getattr(self.store, "close", None)
        if callable(close):
            close()
        logger.info(
            "Sync engine stopped: "
            f"{self.dispatcher.stats['uploads']} uploads, "
            f"{self.dispatcher.stats['deletes']} deletes, "
            f"{self.dispatcher.stats['failures']} failures"
        )

    def install_signal_handlers(self) -> None:
        """Stop gracefully on SIGTERM and SIGINT (main thread only)."""

        def signal_handler(signum: int, frame: Any) -> None:
            logger.info(f"Received signal {signum}, shutting down gracefully...")
            self.stop()

        signal.signal(signal.SIGTERM, signal_handler)
        signal.signal(signal.SIGINT, signal_handler)
