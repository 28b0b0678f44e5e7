"""
Realtime socket client speaking the Phoenix channel protocol.

One websocket connection carries every channel of a session. A reader task
dispatches inbound frames by topic; a heartbeat task keeps the socket alive.
When the socket drops, every open channel reports CLOSED and the owners
decide whether to resubscribe.
"""

import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from .channel import RealtimeChannel

logger = logging.getLogger(__name__)

HEARTBEAT_TOPIC = 'phoenix'
HEARTBEAT_EVENT = 'heartbeat'
PROTOCOL_VERSION = '1.0.0'


class RealtimeClient:
    """
    Shared realtime transport implementing the ChannelFactory protocol.

    Example:
        client = RealtimeClient(settings.realtime_url, settings.supabase_anon_key)
        channel = client.channel('viewer:p1')
        channel.on_postgres_changes('UPDATE', 'public', 'presentations', 'id=eq.p1', on_change)
        await channel.subscribe(on_status)
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        heartbeat_interval: float = 25.0,
        join_timeout: float = 10.0,
        connect: Callable[..., Any] = websockets.connect
    ):
        """
        Initialize realtime client.

        Args:
            url: Websocket endpoint (…/realtime/v1/websocket)
            api_key: Anonymous API key
            heartbeat_interval: Seconds between heartbeats
            join_timeout: Seconds to wait for a join reply before TIMED_OUT
            connect: Websocket connect function (injected in tests)
        """
        self.url = url
        self.api_key = api_key
        self.heartbeat_interval = heartbeat_interval
        self.join_timeout = join_timeout
        self._connect = connect

        self.channels: List[RealtimeChannel] = []
        self._ws = None
        self._ref = 0
        self._reader_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._connect_lock = asyncio.Lock()

    @property
    def endpoint(self) -> str:
        separator = '&' if '?' in self.url else '?'
        return f'{self.url}{separator}apikey={self.api_key}&vsn={PROTOCOL_VERSION}'

    @property
    def is_connected(self) -> bool:
        return self._ws is not None

    def make_ref(self) -> str:
        self._ref += 1
        return str(self._ref)

    def channel(self, topic: str, config: Optional[Dict[str, Any]] = None) -> RealtimeChannel:
        channel = RealtimeChannel(self, topic, config)
        self.channels.append(channel)
        return channel

    async def remove_channel(self, channel: RealtimeChannel) -> None:
        await channel.unsubscribe()
        if channel in self.channels:
            self.channels.remove(channel)
        await self.release_if_idle()

    async def release_if_idle(self) -> None:
        """Close the socket once no channel uses it."""
        if not self.channels:
            await self.close()

    async def ensure_connected(self) -> bool:
        """
        Open the socket if needed.

        Returns:
            True if the socket is open
        """
        async with self._connect_lock:
            if self._ws is not None:
                return True

            try:
                self._ws = await self._connect(self.endpoint)
            except (OSError, WebSocketException, asyncio.TimeoutError) as e:
                logger.warning(f"Realtime connection failed: {e}")
                return False

            logger.info("Realtime socket connected")
            self._reader_task = asyncio.create_task(self._read_loop(self._ws))
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(self._ws))
            return True

    async def send(
        self,
        topic: str,
        event: str,
        payload: Dict[str, Any],
        ref: Optional[str] = None
    ) -> bool:
        """
        Send one frame.

        Returns:
            True if the frame was written to an open socket
        """
        ws = self._ws
        if ws is None:
            return False

        message = {
            'topic': topic,
            'event': event,
            'payload': payload,
            'ref': ref or self.make_ref(),
        }
        try:
            await ws.send(json.dumps(message))
            return True
        except ConnectionClosed as e:
            logger.warning(f"Send of {event} to {topic} failed: {e}")
            return False

    async def close(self) -> None:
        """Close the socket and stop background tasks without reporting CLOSED."""
        ws = self._ws
        self._ws = None
        current = asyncio.current_task()
        for task in (self._reader_task, self._heartbeat_task):
            if task is not None and not task.done() and task is not current:
                task.cancel()
        self._reader_task = None
        self._heartbeat_task = None

        if ws is not None:
            try:
                await ws.close()
            except (OSError, WebSocketException) as e:
                logger.debug(f"Error closing realtime socket: {e}")

    def dispatch(self, raw: str) -> None:
        """Route an inbound frame to the channels subscribed to its topic."""
        try:
            message = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Dropped malformed realtime frame")
            return

        topic = message.get('topic')
        if topic == HEARTBEAT_TOPIC:
            return

        event = message.get('event')
        payload = message.get('payload') or {}
        ref = message.get('ref')
        for channel in list(self.channels):
            if channel.wire_topic == topic:
                channel.handle_message(event, payload, ref)

    async def _read_loop(self, ws) -> None:
        try:
            async for raw in ws:
                self.dispatch(raw)
        except ConnectionClosed as e:
            logger.warning(f"Realtime socket closed: {e}")
        finally:
            if self._ws is ws:
                self._handle_disconnect()

    async def _heartbeat_loop(self, ws) -> None:
        while self._ws is ws:
            await asyncio.sleep(self.heartbeat_interval)
            if not await self.send(HEARTBEAT_TOPIC, HEARTBEAT_EVENT, {}):
                return

    def _handle_disconnect(self) -> None:
        self._ws = None
        if self._heartbeat_task is not None and not self._heartbeat_task.done():
            self._heartbeat_task.cancel()
        self._heartbeat_task = None
        self._reader_task = None

        for channel in list(self.channels):
            channel.handle_socket_closed()
