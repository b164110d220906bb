"""
Thread-safe rate-limited logging.

Repeated warnings (an RPC node flapping, a custody endpoint timing out on
every poll) are logged once per interval instead of once per occurrence.
"""
import logging
import threading
from typing import Optional

from cachetools import TTLCache

logger = logging.getLogger(__name__)

_DEFAULT_INTERVAL = 60

_log_cache: TTLCache = TTLCache(maxsize=256, ttl=_DEFAULT_INTERVAL)
_log_cache_lock = threading.RLock()


def rate_limited_log(
    message: str,
    level: str = "warning",
    key: Optional[str] = None,
    logger_instance: Optional[logging.Logger] = None
) -> bool:
    """
    Log a message at most once per cache TTL.

    Args:
        message: Message to log
        level: Log level name (debug, info, warning, error, critical)
        key: Deduplication key; defaults to level plus message
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
    """Forget every suppressed key"""
    with _log_cache_lock:
        _log_cache.clear()
