"""
Graceful degradation utilities for best-effort operations.

Cache reads and writes, presence and metrics are optional for slide display.
Their failures are converted into fallback values here so they never reach
the UI layer.
"""

import asyncio
import logging
from typing import Dict, Optional, Callable, TypeVar, Any
from functools import wraps

logger = logging.getLogger(__name__)

T = TypeVar('T')

SERVICE_PUSH_CHANNEL = 'push_channel'
SERVICE_ARTIFACT_CACHE = 'artifact_cache'
SERVICE_PRESENCE = 'presence'


def with_fallback(
    fallback_value: Any = None,
    fallback_function: Optional[Callable] = None,
    log_degradation: bool = True
):
    """
    Return a fallback instead of raising.

    Applies to plain and coroutine functions alike. Only Exception
    subclasses are caught, so task cancellation still propagates.

    Args:
        fallback_value: Value returned on failure
        fallback_function: Called with the exception; its result is returned
        log_degradation: Emit a WARNING for each swallowed failure

    Example:
        @with_fallback(fallback_value=False)
        async def has(self, presentation_id, slide_number):
            return await asyncio.to_thread(self.store.exists, ...)
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        def degrade(e: Exception):
            if log_degradation:
                logger.warning(
                    f"{func.__qualname__} failed, falling back: {type(e).__name__}: {e}"
                )
            return fallback_function(e) if fallback_function else fallback_value

        if asyncio.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any):
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    return degrade(e)

            return async_wrapper

        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                return degrade(e)

        return wrapper
    return decorator


class GracefulDegradationManager:
    """
    Tracks which optional services of a session run in degraded mode.

    The session controller owns one instance. The connection manager marks
    the push channel degraded when it falls back to polling; the cache
    marks itself degraded after a failed write and recovered after the
    next successful one. Only the first reason is kept until recovery.
    """

    def __init__(self):
        self._reasons: Dict[str, str] = {}

    @property
    def degraded_services(self):
        return sorted(self._reasons)

    def mark_degraded(self, service: str, reason: str) -> None:
        if service in self._reasons:
            return
        self._reasons[service] = reason
        logger.warning(f"{service} degraded: {reason}")

    def mark_recovered(self, service: str) -> None:
        reason = self._reasons.pop(service, None)
        if reason is not None:
            logger.info(f"{service} recovered (was: {reason})")

    def is_degraded(self, service: str) -> bool:
        return service in self._reasons

    def get_degradation_reason(self, service: str) -> Optional[str]:
        return self._reasons.get(service)

    def get_health(self) -> Dict[str, Any]:
        """Overall status plus the reason behind each degraded service."""
        return {
            'status': 'degraded' if self._reasons else 'healthy',
            'degraded_services': self.degraded_services,
            'degradation_details': dict(self._reasons)
        }
