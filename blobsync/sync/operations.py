"""Upload and delete mutations triggered by local changes."""

import logging
from pathlib import Path
from typing import Union

from ..exceptions import BlobSyncError
from ..paths import PathMapper
from .store import RemoteStore

logger = logging.getLogger(__name__)


class SyncOperations:
    """Pushes single local changes to the remote store.

    Failures are logged and reported through the return value; they are
    never raised to the caller and never retried here.
    """

    def __init__(self, store: RemoteStore, mapper: PathMapper):
        """Initialize sync operations.

        Args:
            store: Remote object store
            mapper: Path mapper for the watch root
        """
        self.store = store
        self.mapper = mapper

    def upload(self, local_path: Union[str, Path]) -> bool:
        """Upload a local file to its blob.

        Directories are not represented remotely and are skipped, as are
        paths that no longer exist by the time the event is handled.

        Args:
            local_path: Absolute path under the watch root

        Returns:
            True if the file was uploaded or nothing had to be done,
            False if the upload failed
        """
        path = Path(local_path)
        logger.debug(f"Attempting to upload {path}")

        try:
            remote_name = self.mapper.to_remote_name(local_path)
        except ValueError as e:
            logger.error(f"Failed to upload {path}: {e}")
            return False

        if path.is_dir():
            logger.debug(f"{path} is a directory, nothing to upload")
            return True
        if not path.exists():
            logger.debug(f"{path} no longer exists, skipping upload")
            return True

        try:
            self.store.put_object(remote_name, path)
        except (BlobSyncError, OSError) as e:
            logger.error(f"Failed to upload blob {remote_name}: {e}")
            return False

        logger.info(f"Uploaded {remote_name}")
        return True

    def delete(self, local_path: Union[str, Path]) -> bool:
        """Delete the blob that corresponds to a local path.

        The local path usually no longer exists. Deleting a blob that is
        already gone counts as success.

        Args:
            local_path: Absolute path under the watch root

        Returns:
            True if the blob is gone afterwards, False if the delete failed
        """
        logger.debug(f"Attempting to delete {local_path}")

        try:
            remote_name = self.mapper.to_remote_name(local_path)
        except ValueError as e:
            logger.error(f"Failed to delete {local_path}: {e}")
            return False

        try:
            deleted = self.store.delete_object(remote_name)
        except BlobSyncError as e:
            logger.error(f"Failed to delete blob {remote_name}: {e}")
            return False

        if deleted:
            logger.info(f"Deleted {remote_name}")
        else:
            logger.debug(f"Blob {remote_name} was already absent")
        return True
