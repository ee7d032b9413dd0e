"""Startup reconciliation: bring the local tree up to date with the container."""

import logging
import time
from pathlib import Path

from rich.progress import Progress, SpinnerColumn, TextColumn

from ..exceptions import BlobSyncError
from ..models import BlobItem
from ..paths import PathMapper
from .store import RemoteStore

logger = logging.getLogger(__name__)


class Reconciler:
    """Downloads remote objects that have no local counterpart.

    Reconciliation is additive and one-directional: local entries that
    already exist are never overwritten, and local entries missing from
    the container are never deleted. Running it twice against an unchanged
    container performs no writes the second time.
    """

    def __init__(self, store: RemoteStore, mapper: PathMapper):
        """Initialize the reconciler.

        Args:
            store: Remote object store
            mapper: Path mapper for the watch root
        """
        self.store = store
        self.mapper = mapper

    def _create_empty_stats(self) -> dict:
        """Create an empty statistics dictionary.

        Returns:
            Dictionary with zero counts for all stat categories
        """
        return {
            "downloads": 0,
            "directories": 0,
            "skips": 0,
            "errors": 0,
        }

    def run(self, show_progress: bool = False) -> dict:
        """Reconcile the whole container once.

        Args:
            show_progress: Show a spinner with the current object

        Returns:
            Dictionary with reconciliation statistics
        """
        start_time = time.time()
        stats = self._create_empty_stats()
        logger.info("Attempting to download blobs")

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            disable=not show_progress,
        ) as progress:
            task = progress.add_task("Listing container...", total=None)
            try:
                for item in self.store.list_objects():
                    progress.update(task, description=f"Reconciling {item.name}")
                    self._reconcile_item(item, stats)
            except BlobSyncError as e:
                # The listing itself failed; keep what was already processed
                stats["errors"] += 1
                logger.error(f"Failed to list blobs: {e}")

        elapsed = time.time() - start_time
        logger.info(
            f"Reconciliation finished in {elapsed:.2f}s: "
            f"{stats['downloads']} downloaded, "
            f"{stats['directories']} directories created, "
            f"{stats['skips']} skipped, {stats['errors']} failed"
        )
        return stats

    def _reconcile_item(self, item: BlobItem, stats: dict) -> None:
        """Materialize one remote object locally if it is missing.

        Args:
            item: Remote object
            stats: Statistics dictionary to update
        """
        try:
            local_path = self.mapper.to_local_path(item.name)
        except ValueError as e:
            stats["errors"] += 1
            logger.error(f"Skipping blob {item.name}: {e}")
            return

        if local_path.is_file() or local_path.is_dir():
            stats["skips"] += 1
            return

        if PathMapper.looks_like_directory(item.name):
            try:
                local_path.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                stats["errors"] += 1
                logger.error(f"Failed to create directory {local_path}: {e}")
                return
            stats["directories"] += 1
            logger.debug(f"Created directory {local_path}")
            return

        try:
            local_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            stats["errors"] += 1
            logger.error(f"Failed to create directory {local_path.parent}: {e}")
            return

        logger.info(f"Downloading blob {item.name}")
        try:
            self.store.get_object(item.name, local_path)
        except (BlobSyncError, OSError) as e:
            stats["errors"] += 1
            logger.error(f"Failed to download blob {item.name}: {e}")
            self._remove_partial(local_path)
            return

        stats["downloads"] += 1

    def _remove_partial(self, local_path: Path) -> None:
        """Remove a partially written download so the next run retries it."""
        try:
            local_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove partial download {local_path}: {e}")
