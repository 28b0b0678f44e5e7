"""
Pytest configuration and fixtures.

In-memory fakes of the realtime channel, row store and artifact fetcher
let the state machines run in milliseconds without a backend.
"""
import asyncio
import os
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from slide_sync.config.settings import reset_settings
from slide_sync.data_access.exceptions import ArtifactFetchError
from slide_sync.models import (
    ChannelStatus,
    ConnectionConfig,
    PresentationSnapshot,
    SlideManifest,
)


PRESENTATION_ID = 'pres-123'


@pytest.fixture(scope="session")
def aws_credentials():
    """Mock AWS credentials for testing."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "us-east-1"


@pytest.fixture(scope="session", autouse=True)
def env_vars():
    """Set up environment variables for tests."""
    os.environ["SUPABASE_URL"] = "https://test.supabase.co"
    os.environ["SUPABASE_ANON_KEY"] = "anon-test-key"
    os.environ["AWS_REGION"] = "us-east-1"
    os.environ["LOG_LEVEL"] = "DEBUG"
    os.environ["ARTIFACT_CACHE_TABLE_NAME"] = "slide_artifacts_test"


@pytest.fixture(autouse=True)
def fresh_settings():
    """Drop cached settings between tests."""
    reset_settings()
    yield
    reset_settings()


class FakeChannel:
    """In-memory PushChannel driven by the test."""

    def __init__(self, topic: str, config: Optional[Dict[str, Any]], auto_status: Optional[ChannelStatus]):
        self.topic = topic
        self.config = config or {}
        self.auto_status = auto_status
        self.bindings: List[Dict[str, Any]] = []
        self.presence_callbacks: List[Callable[[], None]] = []
        self.status_callback: Optional[Callable[[ChannelStatus], None]] = None
        self.tracked: List[Dict[str, Any]] = []
        self.presence: Dict[str, List[Dict[str, Any]]] = {}
        self.subscribed = False
        self.removed = False

    def on_postgres_changes(self, event, schema, table, filter, callback):
        self.bindings.append({
            'event': event, 'schema': schema, 'table': table,
            'filter': filter, 'callback': callback,
        })
        return self

    def on_presence_sync(self, callback):
        self.presence_callbacks.append(callback)
        return self

    async def subscribe(self, status_callback=None):
        self.subscribed = True
        self.status_callback = status_callback
        if self.auto_status is not None:
            self.emit_status(self.auto_status)

    async def track(self, payload):
        self.tracked.append(payload)

    def presence_state(self):
        return {key: list(metas) for key, metas in self.presence.items()}

    async def unsubscribe(self):
        self.subscribed = False

    def emit_status(self, status: ChannelStatus) -> None:
        if self.status_callback is not None:
            self.status_callback(status)

    def emit_update(self, current_slide_index: int, is_live: bool = True) -> None:
        change = {
            'eventType': 'UPDATE',
            'new': {'id': PRESENTATION_ID, 'current_slide_index': current_slide_index, 'is_live': is_live},
            'old': {},
        }
        for binding in self.bindings:
            binding['callback'](change)

    def set_presence(self, state: Dict[str, List[Dict[str, Any]]]) -> None:
        self.presence = state
        for callback in self.presence_callbacks:
            callback()


class FakeChannelFactory:
    """
    ChannelFactory handing out FakeChannels.

    Each created channel reports the next scripted status on subscribe;
    once the script runs out, `default_status` is used. A None status means
    the channel never answers. With `scripted_prefix` set, only topics with
    that prefix follow the script; other channels confirm immediately.
    """

    def __init__(self, statuses: Optional[List[Optional[ChannelStatus]]] = None,
                 default_status: Optional[ChannelStatus] = ChannelStatus.SUBSCRIBED,
                 scripted_prefix: Optional[str] = None):
        self.statuses = list(statuses or [])
        self.default_status = default_status
        self.scripted_prefix = scripted_prefix
        self.channels: List[FakeChannel] = []
        self.removed: List[FakeChannel] = []

    def channel(self, topic, config=None):
        if self.scripted_prefix and not topic.startswith(self.scripted_prefix):
            status = ChannelStatus.SUBSCRIBED
        elif self.statuses:
            status = self.statuses.pop(0)
        else:
            status = self.default_status
        channel = FakeChannel(topic, config, status)
        self.channels.append(channel)
        return channel

    async def remove_channel(self, channel):
        channel.removed = True
        await channel.unsubscribe()
        self.removed.append(channel)

    def channels_for(self, prefix: str) -> List[FakeChannel]:
        return [c for c in self.channels if c.topic.startswith(prefix)]

    @property
    def last(self) -> FakeChannel:
        return self.channels[-1]


class FakeRowStore:
    """In-memory RowStore with a mutable presentation row; records position writes."""

    def __init__(self, current_slide_index: int = 1, is_live: bool = True, slide_count: int = 20):
        self.rows: Dict[str, Dict[str, Any]] = {
            PRESENTATION_ID: {
                'id': PRESENTATION_ID,
                'title': 'Quarterly Review',
                'current_slide_index': current_slide_index,
                'is_live': is_live,
            }
        }
        self.slides: Dict[str, List[Dict[str, Any]]] = {
            PRESENTATION_ID: [
                {
                    'slide_number': n,
                    'image_url': f'https://cdn.test/{PRESENTATION_ID}/{n}.png',
                    'thumbnail_url': f'https://cdn.test/{PRESENTATION_ID}/{n}_thumb.png',
                }
                for n in range(1, slide_count + 1)
            ]
        }
        self.presentation_errors: List[Exception] = []
        self.snapshot_error: Optional[Exception] = None
        self.update_errors: List[Exception] = []
        self.updates: List[Tuple[str, int]] = []
        self.presentation_calls = 0
        self.snapshot_calls = 0

    def set_position(self, current_slide_index: int, is_live: bool = True,
                     presentation_id: str = PRESENTATION_ID) -> None:
        self.rows[presentation_id].update(
            current_slide_index=current_slide_index, is_live=is_live
        )

    async def fetch_presentation(self, presentation_id):
        self.presentation_calls += 1
        if self.presentation_errors:
            raise self.presentation_errors.pop(0)
        row = self.rows.get(presentation_id)
        return dict(row) if row else None

    async def fetch_snapshot(self, presentation_id):
        self.snapshot_calls += 1
        if self.snapshot_error is not None:
            raise self.snapshot_error
        row = self.rows.get(presentation_id)
        return PresentationSnapshot.from_dict(row) if row else None

    async def fetch_slides(self, presentation_id):
        return SlideManifest.from_rows(self.slides.get(presentation_id, []))

    async def update_current_slide(self, presentation_id, slide_number):
        if self.update_errors:
            raise self.update_errors.pop(0)
        self.updates.append((presentation_id, slide_number))
        self.rows[presentation_id]['current_slide_index'] = slide_number


class FakeFetcher:
    """ArtifactFetcher serving deterministic bytes per URL."""

    def __init__(self, failing: Optional[set] = None, delay: float = 0.0):
        self.failing = set(failing or ())
        self.delay = delay
        self.calls: List[str] = []

    async def fetch(self, url):
        self.calls.append(url)
        if self.delay:
            await asyncio.sleep(self.delay)
        if url in self.failing:
            raise ArtifactFetchError(url, 'HTTP 404')
        return f'bytes:{url}'.encode()


@pytest.fixture
def presentation_id():
    return PRESENTATION_ID


@pytest.fixture
def channel_factory():
    """Channel factory whose channels confirm immediately."""
    return FakeChannelFactory()


@pytest.fixture
def make_channel_factory():
    """Build a channel factory with scripted subscribe statuses."""
    return FakeChannelFactory


@pytest.fixture
def row_store():
    return FakeRowStore()


@pytest.fixture
def make_row_store():
    return FakeRowStore


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def make_fetcher():
    return FakeFetcher


@pytest.fixture
def fast_config():
    """Connection timings shrunk to milliseconds."""
    return ConnectionConfig(
        watchdog_timeout=0.05,
        poll_interval=0.01,
        backoff_base_delay=0.01,
        backoff_max_delay=0.04,
        max_reconnect_attempts=3,
        initial_fetch_retries=1
    )


@pytest.fixture
def wait_until():
    """Await a condition, polling the event loop."""
    async def _wait_until(predicate, timeout: float = 1.0, interval: float = 0.005):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError('condition not met before timeout')
            await asyncio.sleep(interval)
    return _wait_until
