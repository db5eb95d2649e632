"""
Thread-safe rate-limited logging utilities.

A shared response topic carries every requester's traffic, so per-message
skip notices are suppressed once they have been logged recently.
"""
import logging
import threading
from typing import Optional

from cachetools import TTLCache

logger = logging.getLogger(__name__)

# Keys expire individually; the cache TTL is the default suppression interval
_log_cache = TTLCache(maxsize=1024, ttl=60)
_log_cache_lock = threading.RLock()


def rate_limited_log(
    message: str,
    level: str = "warning",
    key: Optional[str] = None,
    logger_instance: Optional[logging.Logger] = None
) -> bool:
    """
    Log a message unless the same key was logged within the cache TTL.

    Args:
        message: Message to log
        level: Log level (debug, info, warning, error, critical)
        key: Suppression key; defaults to level plus message
        logger_instance: Logger to use (defaults to module logger)

    Returns:
        True if the message was emitted, False if it was suppressed
    """
    log_instance = logger_instance or logger
    log_method = getattr(log_instance, level.lower(), log_instance.warning)
    cache_key = key or f"{level}:{message}"

    with _log_cache_lock:
        if cache_key in _log_cache:
            return False
        _log_cache[cache_key] = True
    log_method(message)
    return True


def reset_rate_limits() -> None:
    """Forget every suppressed key (for tests)."""
    with _log_cache_lock:
        _log_cache.clear()
