"""
Configuration data models for the synchronization core.

These dataclasses hold the timing and sizing parameters of each component.
They are not runtime-tunable by end users; tests shrink them to run the
state machines in milliseconds.
"""

from dataclasses import dataclass


SECONDS_PER_DAY = 24 * 60 * 60


@dataclass
class ConnectionConfig:
    """
    Timing configuration for the connection manager.

    Attributes:
        watchdog_timeout: Seconds to wait for push confirmation (default: 5.0)
        poll_interval: Seconds between polling ticks (default: 1.0)
        backoff_base_delay: First reconnect delay in seconds (default: 0.5)
        backoff_max_delay: Reconnect delay cap in seconds (default: 2.0)
        max_reconnect_attempts: Reconnects before falling back to polling (default: 3)
        initial_fetch_retries: Retries of a transient initial fetch failure (default: 2)
        presence_rejoin_max_delay: Cap of the presence rejoin backoff in seconds (default: 30.0)
    """

    watchdog_timeout: float = 5.0
    poll_interval: float = 1.0
    backoff_base_delay: float = 0.5
    backoff_max_delay: float = 2.0
    max_reconnect_attempts: int = 3
    initial_fetch_retries: int = 2
    presence_rejoin_max_delay: float = 30.0

    def validate(self) -> None:
        """
        Validate configuration parameters.

        Raises:
            ValueError: If any parameter is outside its valid range
        """
        if self.watchdog_timeout <= 0:
            raise ValueError(
                f"watchdog_timeout must be positive, got {self.watchdog_timeout}"
            )

        if self.poll_interval <= 0:
            raise ValueError(
                f"poll_interval must be positive, got {self.poll_interval}"
            )

        if self.backoff_base_delay <= 0:
            raise ValueError(
                f"backoff_base_delay must be positive, got {self.backoff_base_delay}"
            )

        if self.backoff_max_delay < self.backoff_base_delay:
            raise ValueError(
                f"backoff_max_delay must be >= backoff_base_delay, "
                f"got {self.backoff_max_delay} < {self.backoff_base_delay}"
            )

        if self.max_reconnect_attempts < 0:
            raise ValueError(
                f"max_reconnect_attempts must be non-negative, "
                f"got {self.max_reconnect_attempts}"
            )

        if self.initial_fetch_retries < 0:
            raise ValueError(
                f"initial_fetch_retries must be non-negative, "
                f"got {self.initial_fetch_retries}"
            )

        if self.presence_rejoin_max_delay < self.backoff_base_delay:
            raise ValueError(
                f"presence_rejoin_max_delay must be >= backoff_base_delay, "
                f"got {self.presence_rejoin_max_delay} < {self.backoff_base_delay}"
            )

    def __post_init__(self):
        """Validate configuration on initialization."""
        self.validate()


@dataclass
class PreloadConfig:
    """
    Priority window sizes per connection quality.

    Attributes:
        fast_window: Slides cached on each side of the position on fast links
        slow_window: Slides cached on each side on slow links
        unknown_window: Slides cached on each side when quality is unknown
        preload_whole_deck: Also cache slides outside the window in the
            background after the window batch (default: False, lazy)
    """

    fast_window: int = 5
    slow_window: int = 2
    unknown_window: int = 3
    preload_whole_deck: bool = False

    def __post_init__(self):
        """Validate configuration on initialization."""
        for name in ('fast_window', 'slow_window', 'unknown_window'):
            value = getattr(self, name)
            if value < 0:
                raise ValueError(f"{name} must be non-negative, got {value}")


@dataclass
class CacheConfig:
    """
    Artifact cache retention.

    Attributes:
        retention_seconds: Age after which entries are swept (default: 7 days)
    """

    retention_seconds: float = 7 * SECONDS_PER_DAY

    def __post_init__(self):
        """Validate configuration on initialization."""
        if self.retention_seconds <= 0:
            raise ValueError(
                f"retention_seconds must be positive, got {self.retention_seconds}"
            )
