"""
In-process event sources for platform signals.

Visibility changes and network-quality changes come from the host platform
(a browser bridge, a desktop shell, a test). Components subscribe to an
EventSource instead of reading ambient globals.
"""

import logging
from typing import Callable, Generic, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


class EventSource(Generic[T]):
    """
    Minimal synchronous publish/subscribe hub for one kind of signal.

    The last emitted value is remembered so late subscribers can read it.
    A failing subscriber is logged and does not stop delivery to others.

    Example:
        >>> visibility = EventSource(initial=True)
        >>> unsubscribe = visibility.subscribe(lambda visible: print(visible))
        >>> visibility.emit(False)
        False
        >>> unsubscribe()
    """

    def __init__(self, initial: Optional[T] = None):
        """
        Initialize event source.

        Args:
            initial: Value reported by `current` before the first emit
        """
        self._subscribers: List[Callable[[T], None]] = []
        self.current: Optional[T] = initial

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """
        Register a callback for future values.

        Args:
            callback: Called with each emitted value

        Returns:
            Function that removes the subscription
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def emit(self, value: T) -> None:
        """
        Publish a value to all subscribers.

        Args:
            value: Signal value
        """
        self.current = value
        for callback in list(self._subscribers):
            try:
                callback(value)
            except Exception as e:
                logger.error(f"Event subscriber failed: {e}", exc_info=True)

    @property
    def subscriber_count(self) -> int:
        """Number of active subscriptions."""
        return len(self._subscribers)
