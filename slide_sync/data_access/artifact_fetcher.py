"""
HTTP fetcher for slide image and thumbnail bytes.
"""

import asyncio
import logging
from typing import Optional

import requests

from .exceptions import ArtifactFetchError

logger = logging.getLogger(__name__)


class HttpArtifactFetcher:
    """Download artifacts with a shared requests session."""

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = 10.0):
        self.session = session or requests.Session()
        self.timeout = timeout

    async def fetch(self, url: str) -> bytes:
        """
        Download an artifact.

        Args:
            url: Remote artifact URL

        Returns:
            Response body

        Raises:
            ArtifactFetchError: On network errors, non-2xx responses or empty bodies
        """
        return await asyncio.to_thread(self._fetch, url)

    def _fetch(self, url: str) -> bytes:
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise ArtifactFetchError(url, str(e))

        if not response.ok:
            raise ArtifactFetchError(url, f"HTTP {response.status_code}")
        if not response.content:
            raise ArtifactFetchError(url, "empty response body")

        logger.debug(f"Fetched {len(response.content)} bytes from {url}")
        return response.content
