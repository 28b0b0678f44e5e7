"""
Connection manager: live slide position over push with polling fallback.

State machine:
    connecting   -> connected     push channel confirmed
    connecting   -> polling       watchdog fired before confirmation
    connected    -> disconnected  channel reported CHANNEL_ERROR/CLOSED/TIMED_OUT
    connecting   -> disconnected  explicit failure status before the watchdog
    disconnected -> connecting    backoff elapsed, channel re-subscribed
    disconnected -> polling       reconnect attempts exhausted

Polling is permanent for the rest of the session.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Set

from slide_sync.config.table_names import get_table_name, viewer_topic
from slide_sync.data_access.exceptions import RowStoreError
from slide_sync.exceptions import PresentationNotFoundError
from slide_sync.interfaces import ChannelFactory, PushChannel, RowStore
from slide_sync.models import (
    ChannelStatus,
    ConnectionConfig,
    ConnectionState,
    PresentationSnapshot,
    ReceivedSnapshot,
    SOURCE_INITIAL,
    SOURCE_LOCAL,
    SOURCE_POLL,
    SOURCE_PUSH,
    SOURCE_REFETCH,
)
from slide_sync.utils.event_source import EventSource
from slide_sync.utils.graceful_degradation import (
    GracefulDegradationManager,
    SERVICE_PUSH_CHANNEL,
)
from slide_sync.utils.retry import backoff_delay, retry_operation
from slide_sync.utils.structured_logger import get_structured_logger

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[PresentationSnapshot], None]
StateListener = Callable[[ConnectionState], None]
EndedListener = Callable[[], None]


class ConnectionManager:
    """
    Delivers PresentationSnapshot updates for one presentation.

    Snapshots from push, poll and refetch are stamped with a local receipt
    sequence; the latest receipt wins. Channel callbacks carry the
    generation they were registered under and are ignored once a newer
    subscription replaced them.
    """

    def __init__(
        self,
        presentation_id: str,
        channel_factory: ChannelFactory,
        row_store: RowStore,
        config: Optional[ConnectionConfig] = None,
        visibility_source: Optional[EventSource] = None,
        degradation: Optional[GracefulDegradationManager] = None
    ):
        """
        Initialize connection manager.

        Args:
            presentation_id: Presentation identifier
            channel_factory: Realtime channel factory
            row_store: Row store for the initial fetch, polling and refetches
            config: Timing configuration
            visibility_source: Optional source of visibility changes; True
                means the viewer became visible again
            degradation: Optional degradation tracker of the owning session
        """
        self.presentation_id = presentation_id
        self.channel_factory = channel_factory
        self.row_store = row_store
        self.config = config or ConnectionConfig()
        self.visibility_source = visibility_source
        self.degradation = degradation
        self.logger = get_structured_logger('ConnectionManager', presentation_id=presentation_id)

        self._state = ConnectionState.CONNECTING
        self._latest: Optional[ReceivedSnapshot] = None
        self._sequence = 0
        self._generation = 0
        self._channel: Optional[PushChannel] = None
        self._reconnect_attempts = 0
        self._has_subscribed = False

        self._watchdog_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

        self._started = False
        self._stopped = False
        self._ended = False
        self.state_transitions = 0

        self._snapshot_listeners: List[SnapshotListener] = []
        self._state_listeners: List[StateListener] = []
        self._ended_listeners: List[EndedListener] = []
        self._unsubscribe_visibility: Optional[Callable[[], None]] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def snapshot(self) -> Optional[PresentationSnapshot]:
        return self._latest.snapshot if self._latest else None

    @property
    def latest(self) -> Optional[ReceivedSnapshot]:
        return self._latest

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def has_ended(self) -> bool:
        return self._ended

    @property
    def is_polling_fallback(self) -> bool:
        return self._state is ConnectionState.POLLING

    def backoff_delay(self, attempt: int) -> float:
        """Reconnect delay before the given 1-based attempt."""
        return backoff_delay(
            attempt,
            base_delay=self.config.backoff_base_delay,
            max_delay=self.config.backoff_max_delay,
            jitter=False
        )

    def add_snapshot_listener(self, callback: SnapshotListener) -> Callable[[], None]:
        return self._add_listener(self._snapshot_listeners, callback)

    def add_state_listener(self, callback: StateListener) -> Callable[[], None]:
        return self._add_listener(self._state_listeners, callback)

    def add_ended_listener(self, callback: EndedListener) -> Callable[[], None]:
        return self._add_listener(self._ended_listeners, callback)

    async def start(self) -> PresentationSnapshot:
        """
        Fetch the presentation and subscribe to its updates.

        Returns:
            Initial snapshot

        Raises:
            PresentationNotFoundError: If the presentation does not exist
            RowStoreError: If the row store stays unavailable after retries
        """
        if self._started:
            return self.snapshot

        self._started = True
        try:
            row = await retry_operation(
                lambda: self.row_store.fetch_presentation(self.presentation_id),
                max_retries=self.config.initial_fetch_retries,
                base_delay=self.config.backoff_base_delay,
                max_delay=self.config.backoff_max_delay
            )
        except RowStoreError as e:
            self.logger.error('Initial presentation fetch failed', operation='start', error=e)
            raise

        if row is None:
            self.logger.warning('Presentation not found', operation='start')
            raise PresentationNotFoundError(self.presentation_id)

        snapshot = PresentationSnapshot.from_dict(row)
        self._apply(snapshot, SOURCE_INITIAL)
        if self._ended or self._stopped:
            return snapshot

        if self.visibility_source is not None:
            self._unsubscribe_visibility = self.visibility_source.subscribe(self._on_visibility)

        await self._subscribe('start')
        return snapshot

    async def refetch(self) -> Optional[PresentationSnapshot]:
        """
        Fetch the current position once, whatever the state.

        Returns:
            Fetched snapshot, or None if the fetch failed
        """
        if self._stopped or self._ended:
            return None

        try:
            snapshot = await self.row_store.fetch_snapshot(self.presentation_id)
        except Exception as e:
            self.logger.warning('Refetch failed', operation='refetch', error_message=str(e))
            return None

        if snapshot is None or self._stopped or self._ended:
            return snapshot

        self._apply(snapshot, SOURCE_REFETCH)
        return snapshot

    def apply_local(self, snapshot: PresentationSnapshot) -> None:
        """Apply a position chosen on this device before the row store confirms it."""
        if self._stopped or self._ended:
            return
        self._apply(snapshot, SOURCE_LOCAL)

    async def stop(self) -> None:
        """Tear down timers, tasks and the push channel."""
        if self._stopped:
            return

        self._stopped = True
        self._generation += 1
        if self._unsubscribe_visibility:
            self._unsubscribe_visibility()
            self._unsubscribe_visibility = None

        self._cancel_timers()
        current = asyncio.current_task()
        pending = [t for t in self._tasks if t is not current and not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()

        await self._release_channel()
        self.logger.info('Connection manager stopped', operation='stop', state=self._state)

    # ------------------------------------------------------------------
    # Push subscription
    # ------------------------------------------------------------------

    async def _subscribe(self, trigger: str) -> None:
        self._generation += 1
        generation = self._generation

        self._set_state(ConnectionState.CONNECTING, trigger)
        self._arm_watchdog(generation)

        await self._release_channel()
        if generation != self._generation or self._stopped or self._ended:
            return

        channel = self.channel_factory.channel(
            viewer_topic(self.presentation_id),
            {'presence': {'key': ''}}
        )
        channel.on_postgres_changes(
            'UPDATE',
            'public',
            get_table_name('PRESENTATIONS_TABLE_NAME'),
            f'id=eq.{self.presentation_id}',
            lambda change: self._on_change(generation, change)
        )
        self._channel = channel

        try:
            await channel.subscribe(lambda status: self._on_status(generation, status))
        except Exception as e:
            self.logger.error('Subscribe request failed', operation='subscribe', error=e)
            self._on_status(generation, ChannelStatus.CHANNEL_ERROR)

    def _on_status(self, generation: int, status: ChannelStatus) -> None:
        if generation != self._generation or self._stopped or self._ended:
            return

        self.logger.log_channel_event(
            viewer_topic(self.presentation_id), 'status', status=status, state=self._state
        )

        if status is ChannelStatus.SUBSCRIBED:
            if self._state is not ConnectionState.CONNECTING:
                return
            self._cancel_watchdog()
            self._stop_polling()
            was_reconnect = self._has_subscribed or self._reconnect_attempts > 0
            self._has_subscribed = True
            self._reconnect_attempts = 0
            self._set_state(ConnectionState.CONNECTED, 'subscribed')
            if was_reconnect:
                # Catch up on changes missed while disconnected
                self._spawn(self.refetch())
            return

        if self._state not in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            return
        self._handle_failure(status)

    def _handle_failure(self, status: ChannelStatus) -> None:
        self._cancel_watchdog()
        self._reconnect_attempts += 1

        if self._reconnect_attempts > self.config.max_reconnect_attempts:
            self._fallback_to_polling(f'reconnect attempts exhausted after {status.value}')
            return

        delay = self.backoff_delay(self._reconnect_attempts)
        self._set_state(ConnectionState.DISCONNECTED, status.value)
        self.logger.info(
            'Reconnect scheduled',
            operation='reconnect',
            attempt=self._reconnect_attempts,
            delay_seconds=delay
        )
        self._cancel_task(self._reconnect_task)
        self._reconnect_task = self._spawn(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._stopped or self._ended or self._state is not ConnectionState.DISCONNECTED:
            return
        self._reconnect_task = None
        await self._subscribe('reconnect')

    def _on_change(self, generation: int, change: Dict[str, Any]) -> None:
        if generation != self._generation or self._state is not ConnectionState.CONNECTED:
            return
        if self._stopped or self._ended:
            return

        row = change.get('new') or {}
        if 'current_slide_index' not in row or 'is_live' not in row:
            self.logger.warning('Ignored partial change payload', operation='push', columns=sorted(row))
            return

        try:
            snapshot = PresentationSnapshot.from_dict(row)
        except (TypeError, ValueError) as e:
            self.logger.warning('Ignored invalid change payload', operation='push', error_message=str(e))
            return

        self._apply(snapshot, SOURCE_PUSH)

    # ------------------------------------------------------------------
    # Watchdog and polling
    # ------------------------------------------------------------------

    def _arm_watchdog(self, generation: int) -> None:
        self._cancel_watchdog()
        self._watchdog_task = self._spawn(self._watchdog(generation))

    async def _watchdog(self, generation: int) -> None:
        await asyncio.sleep(self.config.watchdog_timeout)
        if generation != self._generation or self._state is not ConnectionState.CONNECTING:
            return
        self._watchdog_task = None
        self._fallback_to_polling('watchdog timeout')

    def _fallback_to_polling(self, reason: str) -> None:
        self._cancel_watchdog()
        self._cancel_task(self._reconnect_task)
        self._reconnect_task = None

        # Invalidate channel callbacks; push is abandoned for the session
        self._generation += 1
        self._set_state(ConnectionState.POLLING, reason)
        if self.degradation:
            self.degradation.mark_degraded(SERVICE_PUSH_CHANNEL, reason)

        self._spawn(self._release_channel())
        self._start_polling()

    def _start_polling(self) -> None:
        if self._poll_task is not None and not self._poll_task.done():
            return
        self._poll_task = self._spawn(self._poll_loop())

    def _stop_polling(self) -> None:
        self._cancel_task(self._poll_task)
        self._poll_task = None

    async def _poll_loop(self) -> None:
        while not self._stopped and not self._ended:
            await self._poll_once()
            await asyncio.sleep(self.config.poll_interval)

    async def _poll_once(self) -> None:
        try:
            snapshot = await self.row_store.fetch_snapshot(self.presentation_id)
        except Exception as e:
            self.logger.warning('Poll tick failed', operation='poll', error_message=str(e))
            return

        if snapshot is None:
            self.logger.warning('Poll returned no presentation', operation='poll')
            return

        if self._state is ConnectionState.POLLING and not self._stopped and not self._ended:
            self._apply(snapshot, SOURCE_POLL)

    def _on_visibility(self, visible: bool) -> None:
        if visible and not self._stopped and not self._ended:
            self._spawn(self.refetch())

    # ------------------------------------------------------------------
    # Snapshot application
    # ------------------------------------------------------------------

    def _apply(self, snapshot: PresentationSnapshot, source: str) -> None:
        self._sequence += 1
        received = ReceivedSnapshot(snapshot=snapshot, sequence=self._sequence, source=source)
        if not received.supersedes(self._latest):
            return

        previous = self._latest
        self._latest = received

        if previous is None or previous.snapshot != snapshot:
            self.logger.debug(
                'Snapshot applied',
                operation='apply',
                source=source,
                sequence=received.sequence,
                current_slide_index=snapshot.current_slide_index,
                is_live=snapshot.is_live
            )
            self._notify(self._snapshot_listeners, snapshot)

        if not snapshot.is_live:
            self._end()

    def _end(self) -> None:
        if self._ended:
            return

        self._ended = True
        self._generation += 1
        self.logger.info('Presentation ended', operation='ended', state=self._state)
        self._notify(self._ended_listeners)

        self._cancel_timers()
        if self._channel is not None:
            self._spawn(self._release_channel())

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _set_state(self, new_state: ConnectionState, trigger: str) -> None:
        old_state = self._state
        if old_state is new_state:
            return

        self._state = new_state
        self.state_transitions += 1
        self.logger.log_state_change('connectionState', old_state, new_state, trigger=trigger)
        self._notify(self._state_listeners, new_state)

    async def _release_channel(self) -> None:
        channel, self._channel = self._channel, None
        if channel is None:
            return
        try:
            await self.channel_factory.remove_channel(channel)
        except Exception as e:
            self.logger.warning('Channel removal failed', operation='release', error_message=str(e))

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _cancel_task(self, task: Optional[asyncio.Task]) -> None:
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _cancel_watchdog(self) -> None:
        self._cancel_task(self._watchdog_task)
        self._watchdog_task = None

    def _cancel_timers(self) -> None:
        self._cancel_watchdog()
        self._cancel_task(self._reconnect_task)
        self._reconnect_task = None
        self._stop_polling()

    def _add_listener(self, listeners: list, callback: Callable) -> Callable[[], None]:
        listeners.append(callback)

        def remove() -> None:
            if callback in listeners:
                listeners.remove(callback)

        return remove

    def _notify(self, listeners: list, *args) -> None:
        for callback in list(listeners):
            try:
                callback(*args)
            except Exception as e:
                self.logger.error('Listener failed', operation='notify', error=e)
