"""Translation between local paths under the watch root and blob names."""

import os
from pathlib import Path
from typing import Union

REMOTE_SEPARATOR = "/"

# Separators accepted in local paths; backslash is always one of them
_LOCAL_SEPARATORS = ("\\", "/", os.sep)


class PathMapper:
    """Maps absolute local paths to blob names and back.

    A blob name is the path relative to the watch root with every separator
    turned into ``/`` and no leading separator. The mapping is pure string
    manipulation and never touches the filesystem.

    Examples:
        >>> mapper = PathMapper(Path("/srv/site"))
        >>> mapper.to_remote_name("/srv/site/docs/readme.txt")
        'docs/readme.txt'
        >>> mapper.to_local_path("docs/readme.txt")
        PosixPath('/srv/site/docs/readme.txt')
    """

    def __init__(self, root: Union[str, Path]):
        """Initialize the mapper.

        Args:
            root: Absolute path of the watch root
        """
        root_str = str(root)
        if len(root_str) > 1:
            root_str = root_str.rstrip("\\/") or root_str[0]
        self._root_str = root_str
        self.root = Path(root_str)

    def to_remote_name(self, local_path: Union[str, Path]) -> str:
        """Convert an absolute local path to a blob name.

        Args:
            local_path: Absolute path lying under the watch root

        Returns:
            Blob name using forward slashes

        Raises:
            ValueError: If the path is not strictly under the watch root
        """
        path_str = str(local_path)
        if not path_str.startswith(self._root_str):
            raise ValueError(f"{path_str} is not under {self._root_str}")

        relative = path_str[len(self._root_str) :]
        root_has_separator = self._root_str.endswith(_LOCAL_SEPARATORS)
        if relative and not root_has_separator:
            if not relative.startswith(_LOCAL_SEPARATORS):
                # Sibling sharing a prefix, e.g. /srv/site2 for root /srv/site
                raise ValueError(f"{path_str} is not under {self._root_str}")
            relative = relative[1:]

        if not relative:
            raise ValueError(f"{path_str} is the watch root itself")

        for separator in _LOCAL_SEPARATORS:
            relative = relative.replace(separator, REMOTE_SEPARATOR)
        return relative

    def to_local_path(self, remote_name: str) -> Path:
        """Convert a blob name to an absolute local path.

        Args:
            remote_name: Blob name using forward slashes

        Returns:
            Absolute path under the watch root

        Raises:
            ValueError: If the name is empty or would escape the watch root
        """
        parts = remote_name.strip(REMOTE_SEPARATOR).split(REMOTE_SEPARATOR)
        if not remote_name or any(part in ("", ".", "..") for part in parts):
            raise ValueError(f"Unsafe blob name: {remote_name!r}")
        return self.root.joinpath(*parts)

    @staticmethod
    def looks_like_directory(remote_name: str) -> bool:
        """Guess whether a blob name denotes a directory marker.

        A name whose last segment has no dot-separated suffix is treated as
        a directory. An extensionless file is indistinguishable from a
        directory marker, so such files are materialized as directories.

        Args:
            remote_name: Blob name using forward slashes

        Returns:
            True if the name has no extension-like suffix
        """
        last = remote_name.rstrip(REMOTE_SEPARATOR).rsplit(REMOTE_SEPARATOR, 1)[-1]
        _, dot, suffix = last.rpartition(".")
        return not (dot and suffix)
