"""Bridge between watchdog notifications and the change dispatcher."""

import logging
import os
from pathlib import Path

from watchdog.events import (
    FileSystemEvent,
    FileSystemEventHandler,
    FileSystemMovedEvent,
)

from .dispatcher import ChangeDispatcher, ChangeEvent, ChangeKind

logger = logging.getLogger(__name__)


def _event_path(raw_path) -> Path:
    return Path(os.fsdecode(raw_path))


class SyncEventHandler(FileSystemEventHandler):
    """Turns watchdog events into ChangeEvents for the dispatcher.

    Creation and modification of directories are dropped because
    directories are not represented remotely; watchdog reports the files
    inside them separately.
    """

    def __init__(self, dispatcher: ChangeDispatcher):
        """Initialize event handler.

        Args:
            dispatcher: Dispatcher receiving the translated events
        """
        super().__init__()
        self.dispatcher = dispatcher

    def dispatch(self, event: FileSystemEvent) -> None:
        """Dispatch an event, reporting handler failures as watch errors."""
        try:
            super().dispatch(event)
        except Exception as e:
            self.dispatcher.submit(
                ChangeEvent.watch_error(
                    f"Failed to handle {event.event_type} event for "
                    f"{os.fsdecode(event.src_path)}: {e}"
                )
            )

    def on_created(self, event: FileSystemEvent) -> None:
        """Handle file creation event."""
        if not event.is_directory:
            self.dispatcher.submit(
                ChangeEvent(ChangeKind.CREATED, _event_path(event.src_path))
            )

    def on_modified(self, event: FileSystemEvent) -> None:
        """Handle file modification event."""
        if not event.is_directory:
            self.dispatcher.submit(
                ChangeEvent(ChangeKind.MODIFIED, _event_path(event.src_path))
            )

    def on_deleted(self, event: FileSystemEvent) -> None:
        """Handle file or directory deletion event."""
        self.dispatcher.submit(
            ChangeEvent(ChangeKind.DELETED, _event_path(event.src_path))
        )

    def on_moved(self, event: FileSystemEvent) -> None:
        """Handle rename event."""
        if not isinstance(event, FileSystemMovedEvent):
            return
        self.dispatcher.submit(
            ChangeEvent(
                ChangeKind.RENAMED,
                _event_path(event.dest_path),
                old_path=_event_path(event.src_path),
            )
        )
