"""
Presence tracker: live audience count of a presentation.
"""

import asyncio
import logging
import random
import string
from typing import Any, Callable, Dict, List, Optional, Set

from slide_sync.config.table_names import presence_topic
from slide_sync.interfaces import ChannelFactory, PushChannel
from slide_sync.models import ChannelStatus, ConnectionConfig
from slide_sync.utils.graceful_degradation import (
    GracefulDegradationManager,
    SERVICE_PRESENCE,
)
from slide_sync.utils.retry import backoff_delay
from slide_sync.utils.structured_logger import get_structured_logger

logger = logging.getLogger(__name__)

ROLE_VIEWER = 'viewer'
ROLE_PRESENTER = 'presenter'
PRESENTER_KEY = 'presenter'
VIEWER_KEY_PREFIX = 'viewer_'
VIEWER_KEY_LENGTH = 7


def generate_member_key(role: str = ROLE_VIEWER) -> str:
    """
    Create the presence key of one session.

    Presenters share the fixed key 'presenter'; viewers get
    'viewer_' plus seven random lowercase alphanumerics.
    """
    if role == ROLE_PRESENTER:
        return PRESENTER_KEY
    alphabet = string.ascii_lowercase + string.digits
    return VIEWER_KEY_PREFIX + ''.join(random.choices(alphabet, k=VIEWER_KEY_LENGTH))


def count_viewers(state: Dict[str, List[Dict[str, Any]]]) -> int:
    """
    Count distinct non-presenter members in a presence state.

    Args:
        state: Member key to list of presence metas

    Returns:
        Number of members that are not the presenter
    """
    return sum(
        1 for key, metas in state.items()
        if key != PRESENTER_KEY
        and any(meta.get('type') != ROLE_PRESENTER for meta in metas)
    )


class PresenceTracker:
    """
    Announces this session on the presence channel and counts viewers.

    Presence is best-effort: when the channel fails, the count keeps its
    last known value, the presence service is marked degraded and a fresh
    channel is joined after a backoff delay. Nothing is raised.
    """

    def __init__(
        self,
        presentation_id: str,
        channel_factory: ChannelFactory,
        role: str = ROLE_VIEWER,
        member_key: Optional[str] = None,
        config: Optional[ConnectionConfig] = None,
        degradation: Optional[GracefulDegradationManager] = None
    ):
        """
        Initialize presence tracker.

        Args:
            presentation_id: Presentation identifier
            channel_factory: Realtime channel factory
            role: 'viewer' or 'presenter'
            member_key: Optional fixed presence key
            config: Backoff timings for rejoining a failed channel
            degradation: Optional degradation tracker shared with the session
        """
        if role not in (ROLE_VIEWER, ROLE_PRESENTER):
            raise ValueError(f"Invalid role: {role}")

        self.presentation_id = presentation_id
        self.channel_factory = channel_factory
        self.role = role
        self.member_key = member_key or generate_member_key(role)
        self.config = config or ConnectionConfig()
        self.degradation = degradation or GracefulDegradationManager()
        self.logger = get_structured_logger(
            'PresenceTracker', presentation_id=presentation_id, member_key=self.member_key
        )

        self._channel: Optional[PushChannel] = None
        self._viewer_count = 0
        self._listeners: List[Callable[[int], None]] = []
        self._tasks: Set[asyncio.Task] = set()
        self._rejoin_task: Optional[asyncio.Task] = None
        self._rejoin_attempts = 0
        self._started = False
        self._stopped = False

    @property
    def viewer_count(self) -> int:
        return self._viewer_count

    @property
    def rejoin_attempts(self) -> int:
        return self._rejoin_attempts

    def add_count_listener(self, callback: Callable[[int], None]) -> Callable[[], None]:
        self._listeners.append(callback)

        def remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    async def start(self) -> None:
        """Join the presence channel; announces membership once subscribed."""
        if self._started or self._stopped:
            return
        self._started = True
        await self._join()

    async def stop(self) -> None:
        """Leave the presence channel."""
        self._stopped = True
        self._rejoin_task = None
        pending = [t for t in self._tasks if not t.done() and t is not asyncio.current_task()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()

        channel, self._channel = self._channel, None
        if channel is not None:
            await self._remove(channel, 'stop')

    async def _join(self) -> None:
        """Open a new channel, drop the previous one and subscribe."""
        channel = self.channel_factory.channel(
            presence_topic(self.presentation_id),
            {'presence': {'key': self.member_key}}
        )
        channel.on_presence_sync(lambda: self._on_sync(channel))
        previous, self._channel = self._channel, channel

        # the new channel is registered first so a shared socket stays open
        if previous is not None:
            await self._remove(previous, 'rejoin')

        try:
            await channel.subscribe(lambda status: self._on_status(channel, status))
        except Exception as e:
            self.logger.warning('Presence subscribe failed', operation='join', error_message=str(e))
            self._channel_failed(channel, f'subscribe failed: {e}')

    async def _remove(self, channel: PushChannel, operation: str) -> None:
        try:
            await self.channel_factory.remove_channel(channel)
        except Exception as e:
            self.logger.warning('Presence channel removal failed', operation=operation, error_message=str(e))

    def _on_status(self, channel: PushChannel, status: ChannelStatus) -> None:
        if self._stopped or channel is not self._channel:
            return

        self.logger.log_channel_event(presence_topic(self.presentation_id), 'status', status=status)
        if status is ChannelStatus.SUBSCRIBED:
            self._rejoin_attempts = 0
            self.degradation.mark_recovered(SERVICE_PRESENCE)
            self._spawn(self._track(channel))
        else:
            self._channel_failed(channel, f'channel reported {status.value}')

    def _channel_failed(self, channel: PushChannel, reason: str) -> None:
        if self._stopped or channel is not self._channel:
            return

        self.degradation.mark_degraded(SERVICE_PRESENCE, reason)
        if self._rejoin_task is not None and not self._rejoin_task.done():
            return

        self._rejoin_attempts += 1
        delay = backoff_delay(
            self._rejoin_attempts,
            base_delay=self.config.backoff_base_delay,
            max_delay=self.config.presence_rejoin_max_delay,
            jitter=True
        )
        self.logger.warning(
            'Presence channel unavailable, keeping last count',
            operation='rejoin',
            reason=reason,
            attempt=self._rejoin_attempts,
            delay_seconds=delay,
            viewer_count=self._viewer_count
        )
        self._rejoin_task = self._spawn(self._rejoin_after(delay))

    async def _rejoin_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._rejoin_task = None
        if not self._stopped:
            await self._join()

    async def _track(self, channel: PushChannel) -> None:
        if channel is not self._channel:
            return
        try:
            await channel.track({'type': self.role})
        except Exception as e:
            self.logger.warning('Presence track failed', operation='track', error_message=str(e))

    def _on_sync(self, channel: PushChannel) -> None:
        if self._stopped or channel is not self._channel:
            return

        count = count_viewers(channel.presence_state())
        if count == self._viewer_count:
            return

        self._viewer_count = count
        self.logger.debug('Viewer count changed', operation='sync', viewer_count=count)
        for callback in list(self._listeners):
            try:
                callback(count)
            except Exception as e:
                self.logger.error('Count listener failed', operation='sync', error=e)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task
