"""
In-memory registry of local artifact references.

A cached artifact is served to the display layer as an opaque
'blob:slide-sync/<uuid>' reference instead of raw bytes. References stay
valid until revoked; resolving a revoked reference raises ArtifactLoadError
so the caller can fall back to the remote URL.
"""

import logging
import uuid
from typing import Dict

from slide_sync.exceptions import ArtifactLoadError

logger = logging.getLogger(__name__)

BLOB_URL_PREFIX = 'blob:slide-sync/'


def is_blob_url(url: str) -> bool:
    """Check whether a URL is a local artifact reference."""
    return bool(url) and url.startswith(BLOB_URL_PREFIX)


class BlobRegistry:
    """Maps local references to artifact bytes for one session."""

    def __init__(self):
        self._blobs: Dict[str, bytes] = {}

    def create(self, data: bytes) -> str:
        """
        Register bytes under a new reference.

        Args:
            data: Artifact bytes

        Returns:
            New blob reference
        """
        url = f'{BLOB_URL_PREFIX}{uuid.uuid4()}'
        self._blobs[url] = data
        return url

    def resolve(self, url: str) -> bytes:
        """
        Get the bytes behind a reference.

        Raises:
            ArtifactLoadError: If the reference was revoked or never existed
        """
        try:
            return self._blobs[url]
        except KeyError:
            raise ArtifactLoadError(url, 'revoked')

    def revoke(self, url: str) -> bool:
        """Drop a reference; returns True if it was registered."""
        return self._blobs.pop(url, None) is not None

    def revoke_all(self) -> int:
        """Drop every reference; returns how many were registered."""
        count = len(self._blobs)
        self._blobs.clear()
        if count:
            logger.debug(f"Revoked {count} artifact references")
        return count

    def __contains__(self, url: str) -> bool:
        return url in self._blobs

    def __len__(self) -> int:
        return len(self._blobs)
