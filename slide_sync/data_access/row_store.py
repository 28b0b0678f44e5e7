"""
PostgREST client for the presentations and slides tables.

Requests are blocking (requests.Session) and run in a worker thread so the
event loop never waits on the network.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import requests

from slide_sync.config.table_names import get_table_name
from slide_sync.models import PresentationSnapshot, SlideManifest

from .exceptions import RetryableError, RowStoreError

logger = logging.getLogger(__name__)

SNAPSHOT_COLUMNS = 'current_slide_index,is_live'
SLIDE_COLUMNS = 'slide_number,image_url,thumbnail_url'


class PostgrestRowStore:
    """
    Access to the presentations and slides tables of the hosted row store.

    Viewers only read; a presenter session also moves the live position.

    Server errors (5xx) and connection failures raise RetryableError so
    callers can retry them; any other HTTP error raises RowStoreError.
    """

    def __init__(
        self,
        rest_url: str,
        api_key: str,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0
    ):
        """
        Initialize row store client.

        Args:
            rest_url: PostgREST base URL (e.g. https://x.supabase.co/rest/v1)
            api_key: Anonymous API key
            session: Optional requests session for testing
            timeout: Request timeout in seconds
        """
        self.rest_url = rest_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            'apikey': api_key,
            'Authorization': f'Bearer {api_key}',
            'Accept': 'application/json',
        })
        self.presentations_table = get_table_name('PRESENTATIONS_TABLE_NAME')
        self.slides_table = get_table_name('SLIDES_TABLE_NAME')

    async def fetch_presentation(self, presentation_id: str) -> Optional[Dict[str, Any]]:
        rows = await asyncio.to_thread(
            self._select,
            self.presentations_table,
            {'id': f'eq.{presentation_id}', 'select': '*'}
        )
        return rows[0] if rows else None

    async def fetch_snapshot(self, presentation_id: str) -> Optional[PresentationSnapshot]:
        rows = await asyncio.to_thread(
            self._select,
            self.presentations_table,
            {'id': f'eq.{presentation_id}', 'select': SNAPSHOT_COLUMNS}
        )
        if not rows:
            return None
        return PresentationSnapshot.from_dict(rows[0])

    async def fetch_slides(self, presentation_id: str) -> SlideManifest:
        rows = await asyncio.to_thread(
            self._select,
            self.slides_table,
            {
                'presentation_id': f'eq.{presentation_id}',
                'select': SLIDE_COLUMNS,
                'order': 'slide_number.asc',
            }
        )
        return SlideManifest.from_rows(rows)

    async def update_current_slide(self, presentation_id: str, slide_number: int) -> None:
        """
        Move the live position of a presentation (presenter only).

        Raises:
            RetryableError: On connection failures and 5xx responses
            RowStoreError: On any other HTTP error, including row level
                security rejections
        """
        await asyncio.to_thread(
            self._request,
            'PATCH',
            self.presentations_table,
            {'id': f'eq.{presentation_id}'},
            {'current_slide_index': slide_number}
        )

    def _select(self, table: str, params: Dict[str, str]) -> List[Dict[str, Any]]:
        response = self._request('GET', table, params)
        try:
            rows = response.json()
        except ValueError as e:
            raise RowStoreError(f"Invalid JSON from row store: {e}")

        if not isinstance(rows, list):
            raise RowStoreError(f"Unexpected row store payload for {table}")
        return rows

    def _request(
        self,
        method: str,
        table: str,
        params: Dict[str, str],
        body: Optional[Dict[str, Any]] = None
    ) -> requests.Response:
        url = f'{self.rest_url}/{table}'
        try:
            if method == 'GET':
                response = self.session.get(url, params=params, timeout=self.timeout)
            else:
                response = self.session.request(
                    method,
                    url,
                    params=params,
                    json=body,
                    headers={'Prefer': 'return=minimal'},
                    timeout=self.timeout
                )
        except (requests.ConnectionError, requests.Timeout) as e:
            logger.warning(f"Row store request to {table} failed: {e}")
            raise RetryableError(f"Row store unreachable: {e}")
        except requests.RequestException as e:
            raise RowStoreError(f"Row store request failed: {e}")

        if response.status_code >= 500:
            raise RetryableError(
                f"Row store returned {response.status_code} for {table}",
                status_code=response.status_code
            )
        if response.status_code >= 400:
            raise RowStoreError(
                f"Row store returned {response.status_code} for {table}: {response.text}",
                status_code=response.status_code
            )
        return response
