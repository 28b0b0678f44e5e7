"""
Unit tests for the PostgREST row store and the HTTP artifact fetcher.
"""
from unittest.mock import Mock

import pytest
import requests

from slide_sync.data_access.artifact_fetcher import HttpArtifactFetcher
from slide_sync.data_access.exceptions import (
    ArtifactFetchError,
    RetryableError,
    RowStoreError,
)
from slide_sync.data_access.row_store import PostgrestRowStore
from slide_sync.models import PresentationSnapshot


def response(status_code=200, payload=None, content=b''):
    mock = Mock()
    mock.status_code = status_code
    mock.ok = 200 <= status_code < 300
    mock.json.return_value = payload
    mock.text = str(payload)
    mock.content = content
    return mock


@pytest.fixture
def session():
    session = Mock(spec=requests.Session)
    session.headers = {}
    return session


@pytest.fixture
def row_store(session):
    return PostgrestRowStore('https://test.supabase.co/rest/v1/', 'anon-key', session=session, timeout=3)


class TestPostgrestRowStore:
    """Test query construction and error mapping."""

    def test_sets_auth_headers(self, row_store, session):
        assert session.headers['apikey'] == 'anon-key'
        assert session.headers['Authorization'] == 'Bearer anon-key'

    @pytest.mark.asyncio
    async def test_fetch_snapshot_uses_narrow_projection(self, row_store, session):
        session.get.return_value = response(payload=[{'current_slide_index': 7, 'is_live': True}])

        snapshot = await row_store.fetch_snapshot('p1')

        assert snapshot == PresentationSnapshot(current_slide_index=7, is_live=True)
        args, kwargs = session.get.call_args
        assert args[0] == 'https://test.supabase.co/rest/v1/presentations'
        assert kwargs['params'] == {'id': 'eq.p1', 'select': 'current_slide_index,is_live'}
        assert kwargs['timeout'] == 3

    @pytest.mark.asyncio
    async def test_fetch_presentation_returns_full_row(self, row_store, session):
        row = {'id': 'p1', 'title': 'Deck', 'current_slide_index': 1, 'is_live': True}
        session.get.return_value = response(payload=[row])

        assert await row_store.fetch_presentation('p1') == row
        assert session.get.call_args.kwargs['params']['select'] == '*'

    @pytest.mark.asyncio
    async def test_missing_presentation_returns_none(self, row_store, session):
        session.get.return_value = response(payload=[])

        assert await row_store.fetch_presentation('nope') is None
        assert await row_store.fetch_snapshot('nope') is None

    @pytest.mark.asyncio
    async def test_fetch_slides_orders_by_slide_number(self, row_store, session):
        session.get.return_value = response(payload=[
            {'slide_number': 1, 'image_url': 'u1', 'thumbnail_url': 't1'},
            {'slide_number': 2, 'image_url': 'u2', 'thumbnail_url': None},
        ])

        manifest = await row_store.fetch_slides('p1')

        assert manifest.slide_numbers == [1, 2]
        args, kwargs = session.get.call_args
        assert args[0].endswith('/slides')
        assert kwargs['params']['presentation_id'] == 'eq.p1'
        assert kwargs['params']['order'] == 'slide_number.asc'

    @pytest.mark.asyncio
    async def test_server_error_is_retryable(self, row_store, session):
        session.get.return_value = response(status_code=503, payload={'message': 'unavailable'})

        with pytest.raises(RetryableError) as exc_info:
            await row_store.fetch_snapshot('p1')
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_connection_error_is_retryable(self, row_store, session):
        session.get.side_effect = requests.ConnectionError('reset by peer')

        with pytest.raises(RetryableError):
            await row_store.fetch_presentation('p1')

    @pytest.mark.asyncio
    async def test_client_error_is_not_retryable(self, row_store, session):
        session.get.return_value = response(status_code=401, payload={'message': 'bad key'})

        with pytest.raises(RowStoreError) as exc_info:
            await row_store.fetch_presentation('p1')
        assert not isinstance(exc_info.value, RetryableError)
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_invalid_json(self, row_store, session):
        bad = response()
        bad.json.side_effect = ValueError('not json')
        session.get.return_value = bad

        with pytest.raises(RowStoreError, match='Invalid JSON'):
            await row_store.fetch_presentation('p1')

    @pytest.mark.asyncio
    async def test_update_current_slide_patches_row(self, row_store, session):
        session.request.return_value = response(status_code=204)

        await row_store.update_current_slide('p1', 8)

        args, kwargs = session.request.call_args
        assert args == ('PATCH', 'https://test.supabase.co/rest/v1/presentations')
        assert kwargs['params'] == {'id': 'eq.p1'}
        assert kwargs['json'] == {'current_slide_index': 8}
        assert kwargs['headers'] == {'Prefer': 'return=minimal'}
        assert kwargs['timeout'] == 3
        session.get.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.parametrize('status_code, error', [(503, RetryableError), (403, RowStoreError)])
    async def test_update_current_slide_errors(self, row_store, session, status_code, error):
        session.request.return_value = response(status_code=status_code, payload={'message': 'denied'})

        with pytest.raises(error) as exc_info:
            await row_store.update_current_slide('p1', 8)
        assert exc_info.value.status_code == status_code


class TestHttpArtifactFetcher:
    """Test artifact downloads."""

    @pytest.mark.asyncio
    async def test_returns_body(self, session):
        session.get.return_value = response(content=b'\x89PNG')
        fetcher = HttpArtifactFetcher(session=session, timeout=5)

        assert await fetcher.fetch('https://cdn.test/1.png') == b'\x89PNG'
        session.get.assert_called_once_with('https://cdn.test/1.png', timeout=5)

    @pytest.mark.asyncio
    async def test_http_error(self, session):
        session.get.return_value = response(status_code=404)
        fetcher = HttpArtifactFetcher(session=session)

        with pytest.raises(ArtifactFetchError, match='HTTP 404') as exc_info:
            await fetcher.fetch('https://cdn.test/missing.png')
        assert exc_info.value.url == 'https://cdn.test/missing.png'

    @pytest.mark.asyncio
    async def test_network_error(self, session):
        session.get.side_effect = requests.Timeout('timed out')
        fetcher = HttpArtifactFetcher(session=session)

        with pytest.raises(ArtifactFetchError):
            await fetcher.fetch('https://cdn.test/1.png')

    @pytest.mark.asyncio
    async def test_empty_body(self, session):
        session.get.return_value = response(content=b'')
        fetcher = HttpArtifactFetcher(session=session)

        with pytest.raises(ArtifactFetchError, match='empty'):
            await fetcher.fetch('https://cdn.test/1.png')
