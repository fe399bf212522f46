import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)


EXPERIMENT_CACHE_PREFIX = "experiment:"
FLAG_CACHE_PREFIX = "flag:"


class DecisionCache(Protocol):
    """
    Read-through cache in front of experiment and flag definitions.

    Any backend exposing these three operations can be injected into the
    services (in-process dict, Redis, memcached...).
    """

    def get(self, key: str) -> Optional[Any]: ...

    def put(self, key: str, value: Any, ttl: float) -> None: ...

    def evict_all(self, prefix: str) -> int: ...


class InMemoryDecisionCache:
    """Process-local TTL cache. Safe to share between request threads."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        # key -> (expires_at, value)
        self._entries: Dict[str, Tuple[float, Any]] = {}

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None

            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None

            return value

    def put(self, key: str, value: Any, ttl: float) -> None:
        if ttl <= 0:
            return

        with self._lock:
            self._entries[key] = (self._clock() + ttl, value)

    def evict_all(self, prefix: str) -> int:
        with self._lock:
            stale_keys = [key for key in self._entries if key.startswith(prefix)]
            for key in stale_keys:
                del self._entries[key]

        logger.debug(f"Evicted {len(stale_keys)} cache entries with prefix '{prefix}'")
        return len(stale_keys)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


_definition_cache = InMemoryDecisionCache()


def get_definition_cache() -> DecisionCache:
    """Dependency returning the process-wide definition cache."""
    return _definition_cache
