"""
Connection state and channel status enums.
"""
from enum import Enum


class ConnectionState(Enum):
    """Delivery mode of a live-position subscription."""
    CONNECTING = "connecting"        # Push subscription requested, watchdog armed
    CONNECTED = "connected"          # Push channel confirmed, push drives updates
    DISCONNECTED = "disconnected"    # Push channel failed, reconnect scheduled
    POLLING = "polling"              # Push abandoned, poll loop drives updates

    @property
    def is_push_active(self) -> bool:
        """Check if push delivery currently drives snapshot updates."""
        return self is ConnectionState.CONNECTED

    @property
    def is_poll_active(self) -> bool:
        """Check if polling currently drives snapshot updates."""
        return self is ConnectionState.POLLING


class ChannelStatus(Enum):
    """Status reported by a push channel's subscribe callback."""
    SUBSCRIBED = "SUBSCRIBED"
    CHANNEL_ERROR = "CHANNEL_ERROR"
    CLOSED = "CLOSED"
    TIMED_OUT = "TIMED_OUT"

    @property
    def is_failure(self) -> bool:
        """Check if the status means the subscription is unusable."""
        return self is not ChannelStatus.SUBSCRIBED
