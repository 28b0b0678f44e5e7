"""
One logical channel on a realtime socket.

A channel owns its bindings (row changes, presence sync), its join state and
its folded presence membership. It never touches the socket directly; all
frames go through the owning RealtimeClient.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from slide_sync.models import ChannelStatus

if TYPE_CHECKING:
    from .client import RealtimeClient

logger = logging.getLogger(__name__)

TOPIC_PREFIX = 'realtime:'

# Phoenix channel events
EVENT_JOIN = 'phx_join'
EVENT_LEAVE = 'phx_leave'
EVENT_REPLY = 'phx_reply'
EVENT_ERROR = 'phx_error'
EVENT_CLOSE = 'phx_close'
EVENT_POSTGRES_CHANGES = 'postgres_changes'
EVENT_PRESENCE_STATE = 'presence_state'
EVENT_PRESENCE_DIFF = 'presence_diff'
EVENT_PRESENCE = 'presence'


class RealtimeChannel:
    """
    Channel scoped to a topic such as 'viewer:<id>' or 'presence:<id>'.

    Join outcome is reported through the subscribe status callback:
    SUBSCRIBED on an ok reply, CHANNEL_ERROR on an error reply or
    phx_error, TIMED_OUT when no reply arrives within the join timeout and
    CLOSED on phx_close or when the socket drops.
    """

    def __init__(
        self,
        client: 'RealtimeClient',
        topic: str,
        config: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize channel.

        Args:
            client: Owning realtime client
            topic: Channel topic without the 'realtime:' prefix
            config: Optional join config ({'presence': {'key': ...}} etc.)
        """
        self.client = client
        self.topic = topic
        self.wire_topic = f'{TOPIC_PREFIX}{topic}'
        self.config: Dict[str, Any] = dict(config or {})

        self.joined = False
        self.closed = False
        self.join_ref: Optional[str] = None

        self._postgres_bindings: List[Dict[str, Any]] = []
        self._presence_callbacks: List[Callable[[], None]] = []
        self._status_callback: Optional[Callable[[ChannelStatus], None]] = None
        self._presence: Dict[str, List[Dict[str, Any]]] = {}
        self._join_timer: Optional[asyncio.Task] = None

    def on_postgres_changes(
        self,
        event: str,
        schema: str,
        table: str,
        filter: Optional[str],
        callback: Callable[[Dict[str, Any]], None]
    ) -> 'RealtimeChannel':
        binding = {'event': event, 'schema': schema, 'table': table}
        if filter:
            binding['filter'] = filter
        self._postgres_bindings.append({'binding': binding, 'callback': callback})
        return self

    def on_presence_sync(self, callback: Callable[[], None]) -> 'RealtimeChannel':
        self._presence_callbacks.append(callback)
        return self

    def join_payload(self) -> Dict[str, Any]:
        """Build the phx_join payload announcing bindings and presence key."""
        presence = self.config.get('presence', {})
        return {
            'config': {
                'broadcast': {'self': False, 'ack': False},
                'presence': {'key': presence.get('key', '')},
                'postgres_changes': [b['binding'] for b in self._postgres_bindings],
            },
            'access_token': self.client.api_key,
        }

    async def subscribe(
        self,
        status_callback: Optional[Callable[[ChannelStatus], None]] = None
    ) -> None:
        """
        Send the join request.

        Connection failures are reported as CHANNEL_ERROR through the
        callback rather than raised.
        """
        self._status_callback = status_callback
        self.closed = False

        if not await self.client.ensure_connected():
            self._report(ChannelStatus.CHANNEL_ERROR)
            return

        # removed or unsubscribed while the socket was opening
        if self.closed or self not in self.client.channels:
            await self.client.release_if_idle()
            return

        self.join_ref = self.client.make_ref()
        sent = await self.client.send(
            self.wire_topic, EVENT_JOIN, self.join_payload(), ref=self.join_ref
        )
        if not sent:
            self._report(ChannelStatus.CHANNEL_ERROR)
            return

        self._cancel_join_timer()
        self._join_timer = asyncio.create_task(self._join_timeout())

    async def track(self, payload: Dict[str, Any]) -> None:
        if not self.joined:
            logger.warning(f"Cannot track presence on {self.topic}: channel not joined")
            return
        await self.client.send(
            self.wire_topic,
            EVENT_PRESENCE,
            {'type': 'presence', 'event': 'track', 'payload': payload}
        )

    def presence_state(self) -> Dict[str, List[Dict[str, Any]]]:
        return {key: list(metas) for key, metas in self._presence.items()}

    async def unsubscribe(self) -> None:
        was_joined = self.joined
        self._teardown()
        if was_joined:
            await self.client.send(self.wire_topic, EVENT_LEAVE, {})

    def handle_message(self, event: str, payload: Dict[str, Any], ref: Optional[str]) -> None:
        """Dispatch one inbound frame addressed to this channel."""
        if self.closed:
            return

        if event == EVENT_REPLY:
            if ref is not None and ref == self.join_ref:
                self._handle_join_reply(payload)
        elif event == EVENT_ERROR:
            self._fail(ChannelStatus.CHANNEL_ERROR)
        elif event == EVENT_CLOSE:
            self._fail(ChannelStatus.CLOSED)
        elif event == EVENT_POSTGRES_CHANGES:
            self._handle_postgres_change(payload)
        elif event == EVENT_PRESENCE_STATE:
            self._presence = {
                key: list(entry.get('metas', [])) for key, entry in payload.items()
            }
            self._fire_presence_sync()
        elif event == EVENT_PRESENCE_DIFF:
            self._apply_presence_diff(payload)
            self._fire_presence_sync()

    def handle_socket_closed(self) -> None:
        """Report CLOSED after the socket dropped under a live channel."""
        if self.closed:
            return
        self._fail(ChannelStatus.CLOSED)

    def _handle_join_reply(self, payload: Dict[str, Any]) -> None:
        self._cancel_join_timer()
        if payload.get('status') == 'ok':
            self.joined = True
            self._report(ChannelStatus.SUBSCRIBED)
        else:
            logger.warning(f"Join of {self.topic} rejected: {payload.get('response')}")
            self._fail(ChannelStatus.CHANNEL_ERROR)

    def _handle_postgres_change(self, payload: Dict[str, Any]) -> None:
        data = payload.get('data', {})
        change = {
            'eventType': data.get('type'),
            'schema': data.get('schema'),
            'table': data.get('table'),
            'new': data.get('record') or {},
            'old': data.get('old_record') or {},
        }
        for binding in list(self._postgres_bindings):
            wanted = binding['binding']
            if wanted['event'] not in ('*', change['eventType']):
                continue
            if wanted['table'] != change['table'] or wanted['schema'] != change['schema']:
                continue
            try:
                binding['callback'](change)
            except Exception as e:
                logger.error(f"Change callback on {self.topic} failed: {e}", exc_info=True)

    def _apply_presence_diff(self, payload: Dict[str, Any]) -> None:
        for key, entry in payload.get('joins', {}).items():
            joined = entry.get('metas', [])
            refs = {meta.get('phx_ref') for meta in joined}
            current = [m for m in self._presence.get(key, []) if m.get('phx_ref') not in refs]
            self._presence[key] = current + list(joined)

        for key, entry in payload.get('leaves', {}).items():
            refs = {meta.get('phx_ref') for meta in entry.get('metas', [])}
            remaining = [m for m in self._presence.get(key, []) if m.get('phx_ref') not in refs]
            if remaining:
                self._presence[key] = remaining
            else:
                self._presence.pop(key, None)

    def _fire_presence_sync(self) -> None:
        for callback in list(self._presence_callbacks):
            try:
                callback()
            except Exception as e:
                logger.error(f"Presence callback on {self.topic} failed: {e}", exc_info=True)

    async def _join_timeout(self) -> None:
        await asyncio.sleep(self.client.join_timeout)
        if not self.joined and not self.closed:
            self._fail(ChannelStatus.TIMED_OUT)

    def _fail(self, status: ChannelStatus) -> None:
        callback = self._status_callback
        self._teardown()
        if callback is not None:
            self._invoke_status(callback, status)

    def _report(self, status: ChannelStatus) -> None:
        if self._status_callback is not None:
            self._invoke_status(self._status_callback, status)

    def _invoke_status(self, callback: Callable[[ChannelStatus], None], status: ChannelStatus) -> None:
        try:
            callback(status)
        except Exception as e:
            logger.error(f"Status callback on {self.topic} failed: {e}", exc_info=True)

    def _cancel_join_timer(self) -> None:
        timer = self._join_timer
        self._join_timer = None
        if timer is not None and not timer.done() and timer is not asyncio.current_task():
            timer.cancel()

    def _teardown(self) -> None:
        self._cancel_join_timer()
        self.joined = False
        self.closed = True
        self._status_callback = None
        self._presence = {}
