"""
Structured JSON logging for synchronization components.

Every line is one JSON object carrying the component name and the
presentation/viewer correlation keys, so a viewing session can be
reconstructed by filtering on presentationId.
"""

import json
import logging
import os
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

# Correlation attribute -> JSON field
_CORRELATION_FIELDS = (
    ('presentation_id', 'presentationId'),
    ('member_key', 'memberKey'),
)

_QUIET_LIBRARIES = ('boto3', 'botocore', 'urllib3', 'websockets')


class LogEncoder(json.JSONEncoder):
    """Encode enums by value and summarize binary payloads. Other objects fall back to str()."""

    def default(self, obj):
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, (bytes, bytearray)):
            return f'<{len(obj)} bytes>'
        return str(obj)


def _level_from_env(default: str = 'INFO') -> str:
    return os.getenv('LOG_LEVEL', default).upper()


class StructuredLogger:
    """
    JSON logger bound to one component and, optionally, one presentation.

    Extra keyword arguments on any log call land under `context`.
    Exceptions passed as `error=` are flattened into `error_type` and
    `error_message` so log queries do not need to parse tracebacks.
    """

    def __init__(
        self,
        component: str,
        presentation_id: Optional[str] = None,
        member_key: Optional[str] = None
    ):
        self.component = component
        self.presentation_id = presentation_id
        self.member_key = member_key
        self.logger = logging.getLogger(f'slide_sync.{component}')
        self.logger.setLevel(getattr(logging, _level_from_env(), logging.INFO))

    def bind(
        self,
        presentation_id: Optional[str] = None,
        member_key: Optional[str] = None
    ) -> 'StructuredLogger':
        """Return a logger for the same component with updated correlation keys."""
        return StructuredLogger(
            self.component,
            presentation_id=presentation_id or self.presentation_id,
            member_key=member_key or self.member_key
        )

    def _emit(
        self,
        level: int,
        message: str,
        operation: Optional[str],
        context: Dict[str, Any]
    ) -> None:
        if not self.logger.isEnabledFor(level):
            return

        entry: Dict[str, Any] = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': logging.getLevelName(level),
            'component': self.component,
            'message': message,
        }
        for attr, field in _CORRELATION_FIELDS:
            value = getattr(self, attr)
            if value:
                entry[field] = value
        if operation:
            entry['operation'] = operation
        if context:
            entry['context'] = context

        self.logger.log(level, json.dumps(entry, cls=LogEncoder))

    def debug(self, message: str, operation: Optional[str] = None, **kwargs) -> None:
        self._emit(logging.DEBUG, message, operation, kwargs)

    def info(self, message: str, operation: Optional[str] = None, **kwargs) -> None:
        self._emit(logging.INFO, message, operation, kwargs)

    def warning(self, message: str, operation: Optional[str] = None, **kwargs) -> None:
        self._emit(logging.WARNING, message, operation, kwargs)

    def error(
        self,
        message: str,
        operation: Optional[str] = None,
        error: Optional[BaseException] = None,
        **kwargs
    ) -> None:
        if error is not None:
            kwargs['error_type'] = type(error).__name__
            kwargs['error_message'] = str(error)
        self._emit(logging.ERROR, message, operation, kwargs)

    def log_state_change(self, state_type: str, old_value: Any, new_value: Any, **kwargs) -> None:
        """
        Log a transition of a session-level state machine.

        Args:
            state_type: Which state moved (connectionState, sessionStatus, connectionQuality)
            old_value: Previous value; enums are logged by value
            new_value: New value
            **kwargs: Extra context, typically the `trigger`
        """
        self.info(
            f'{state_type}: {getattr(old_value, "value", old_value)} -> {getattr(new_value, "value", new_value)}',
            operation='state_change',
            state_type=state_type,
            old_value=getattr(old_value, 'value', old_value),
            new_value=getattr(new_value, 'value', new_value),
            **kwargs
        )

    def log_channel_event(self, topic: str, event: str, **kwargs) -> None:
        """Log a push channel event (status, update, presence sync) at DEBUG."""
        self.debug(f'{topic} {event}', operation='channel_event', topic=topic, event=event, **kwargs)


class LoggingContext:
    """
    Time a block and log its outcome.

    A clean exit logs a DEBUG `performance` entry with `duration_ms`;
    an exception logs an ERROR entry and propagates.
    """

    def __init__(self, logger: StructuredLogger, operation: str, **kwargs):
        self.logger = logger
        self.operation = operation
        self.context = kwargs
        self.start_time: Optional[float] = None
        self.duration_ms: Optional[float] = None

    def __enter__(self):
        self.start_time = time.monotonic()
        self.logger.debug(f'{self.operation} started', operation=self.operation, **self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is None:
            return
        self.duration_ms = (time.monotonic() - self.start_time) * 1000

        if exc_type is None:
            self.logger.debug(
                f'{self.operation} finished',
                operation='performance',
                operation_name=self.operation,
                duration_ms=self.duration_ms,
                **self.context
            )
        else:
            self.logger.error(
                f'{self.operation} failed',
                operation=self.operation,
                error=exc_val,
                duration_ms=self.duration_ms,
                **self.context
            )


def get_structured_logger(
    component: str,
    presentation_id: Optional[str] = None,
    member_key: Optional[str] = None
) -> StructuredLogger:
    """
    Create a StructuredLogger for a component.

    Example:
        >>> logger = get_structured_logger('ConnectionManager', presentation_id='p1')
        >>> logger.info('Subscription confirmed')
    """
    return StructuredLogger(component, presentation_id=presentation_id, member_key=member_key)


def configure_logging(log_level: Optional[str] = None) -> None:
    """
    Send records to stderr as bare JSON lines.

    Args:
        log_level: Level name; defaults to the LOG_LEVEL environment variable
    """
    level_name = (log_level or _level_from_env()).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format='%(message)s',
        force=True
    )

    if level_name != 'DEBUG':
        for name in _QUIET_LIBRARIES:
            logging.getLogger(name).setLevel(logging.WARNING)
