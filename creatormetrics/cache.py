"""In-process TTL cache for range query results."""

import logging
import threading
import time
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 600.0

_MISSING = object()


class QueryCache:
    """Key -> value map with per-entry expiry.

    Expired entries are evicted when read and swept on every write. ``clear()`` drops
    every entry for every tenant and is called after each rollup write.
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[Any, float]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def make_key(tenant_id: str, start: datetime, end: datetime, scope: str) -> Tuple[str, str, str, str]:
        """Key on the UTC days of the range; reports only depend on those."""
        return (str(tenant_id), _utc_day(start), _utc_day(end), scope)

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                logger.debug("Cache miss: %s", key)
                return default
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                logger.debug("Cache expired: %s", key)
                return default
        logger.debug("Cache hit: %s", key)
        return value

    def set(self, key: Hashable, value: Any, ttl: Optional[float] = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        with self._lock:
            now = self._clock()
            expired = [k for k, (_, expires_at) in self._entries.items() if now >= expires_at]
            for stale in expired:
                del self._entries[stale]
            self._entries[key] = (value, now + ttl)
        logger.debug("Cache set: %s (ttl=%ss)", key, ttl)

    def clear(self) -> None:
        with self._lock:
            dropped = len(self._entries)
            self._entries.clear()
        if dropped:
            logger.debug("Cache cleared (%d entries)", dropped)

    def get_or_set(self, key: Hashable, factory: Callable[[], Any], ttl: Optional[float] = None) -> Any:
        """Return the cached value, computing and storing it on a miss.

        Cache failures never reach the caller: a broken read or write falls
        back to calling ``factory`` directly.
        """
        try:
            cached = self.get(key, _MISSING)
        except Exception:
            logger.warning("Cache read failed for %s, reading through", key, exc_info=True)
            return factory()
        if cached is not _MISSING:
            return cached

        value = factory()
        try:
            self.set(key, value, ttl)
        except Exception:
            logger.warning("Cache write failed for %s", key, exc_info=True)
        return value

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def _utc_day(value) -> str:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)
