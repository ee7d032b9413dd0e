"""Data models for storage service responses."""

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from .exceptions import InvalidResponseError
from .utils import format_size, parse_http_date


def _text(element: Optional[ET.Element], tag: str) -> Optional[str]:
    """Return the stripped text of a child element, or None if absent."""
    if element is None:
        return None
    child = element.find(tag)
    if child is None or child.text is None:
        return None
    return child.text.strip()


@dataclass
class BlobItem:
    """A blob as reported by a container listing."""

    name: str
    """Blob name (path relative to the container, forward slashes)"""

    size: int = 0
    """Content length in bytes"""

    last_modified: Optional[datetime] = None
    """Last modification time reported by the service"""

    etag: Optional[str] = None
    """Entity tag of the current blob version"""

    content_type: Optional[str] = None
    """MIME type stored with the blob"""

    @classmethod
    def from_xml(cls, element: ET.Element) -> "BlobItem":
        """Create a BlobItem from a ``<Blob>`` listing element.

        Args:
            element: The ``<Blob>`` element

        Returns:
            BlobItem instance

        Raises:
            InvalidResponseError: If the element has no name
        """
        name = _text(element, "Name")
        if not name:
            raise InvalidResponseError("Blob entry without a name in listing")

        properties = element.find("Properties")
        length = _text(properties, "Content-Length")
        try:
            size = int(length) if length else 0
        except ValueError:
            size = 0

        return cls(
            name=name,
            size=size,
            last_modified=parse_http_date(_text(properties, "Last-Modified")),
            etag=_text(properties, "Etag"),
            content_type=_text(properties, "Content-Type"),
        )

    @property
    def size_formatted(self) -> str:
        """Human-readable size."""
        return format_size(self.size)


@dataclass
class BlobListResult:
    """One page of a container listing."""

    items: list[BlobItem] = field(default_factory=list)
    next_marker: Optional[str] = None

    @classmethod
    def from_xml_response(cls, content: bytes) -> "BlobListResult":
        """Parse an ``EnumerationResults`` document.

        Args:
            content: Raw response body

        Returns:
            BlobListResult with the blobs of this page and the continuation
            marker (None on the last page)

        Raises:
            InvalidResponseError: If the body is not a listing document
        """
        try:
            root = ET.fromstring(content)
        except ET.ParseError as e:
            raise InvalidResponseError(f"Invalid listing response: {e}") from e

        if root.tag != "EnumerationResults":
            raise InvalidResponseError(
                f"Unexpected listing response root element: {root.tag}"
            )

        blobs = root.find("Blobs")
        items = []
        if blobs is not None:
            items = [BlobItem.from_xml(blob) for blob in blobs.findall("Blob")]

        return cls(items=items, next_marker=_text(root, "NextMarker") or None)
