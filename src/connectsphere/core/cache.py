"""In-process TTL cache in front of the document store."""

from __future__ import annotations

import time
from typing import Any, Awaitable, Callable

from connectsphere.log import get_logger

logger = get_logger(__name__)


class _Miss:
    def __repr__(self) -> str:
        return "MISS"

    def __bool__(self) -> bool:
        return False


MISS: Any = _Miss()


class TTLCache:
    """Namespace-scoped key/value cache with per-namespace time-to-live.

    Entries live under a composite key ``"{namespace}:{key}"`` so that
    ``invalidate`` can drop a whole tenant or conversation by substring.
    A stored ``None`` is a real value (e.g. "no settings configured"); a
    miss is reported with the ``MISS`` sentinel.

    Owned by one event loop; there is no locking.
    """

    def __init__(
        self,
        ttls: dict[str, float],
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not ttls:
            raise ValueError("TTLCache needs at least one namespace")
        self._ttls = dict(ttls)
        self._clock = clock
        self._entries: dict[str, tuple[Any, float]] = {}

    @staticmethod
    def _compose(namespace: str, key: str) -> str:
        return f"{namespace}:{key}"

    def ttl(self, namespace: str) -> float:
        try:
            return self._ttls[namespace]
        except KeyError:
            raise KeyError(f"Unknown cache namespace: {namespace}") from None

    def get(self, namespace: str, key: str) -> Any:
        """Return the cached value, or ``MISS`` if absent or expired."""
        ttl = self.ttl(namespace)
        entry = self._entries.get(self._compose(namespace, key))
        if entry is None:
            return MISS
        value, stored_at = entry
        if self._clock() - stored_at < ttl:
            return value
        return MISS

    def set(self, namespace: str, key: str, value: Any) -> None:
        self.ttl(namespace)
        self._entries[self._compose(namespace, key)] = (value, self._clock())

    async def get_or_load(
        self,
        namespace: str,
        key: str,
        loader: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Read-through helper: return the cached value or load and cache it."""
        value = self.get(namespace, key)
        if value is not MISS:
            return value
        value = await loader()
        self.set(namespace, key, value)
        return value

    def invalidate(self, pattern: str) -> int:
        """Drop every entry whose composite key contains ``pattern``."""
        doomed = [k for k in self._entries if pattern in k]
        for k in doomed:
            del self._entries[k]
        return len(doomed)

    def sweep(self) -> int:
        """Evict entries older than the longest configured TTL."""
        max_ttl = max(self._ttls.values())
        now = self._clock()
        doomed = [k for k, (_, stored_at) in self._entries.items() if now - stored_at > max_ttl]
        for k in doomed:
            del self._entries[k]
        if doomed:
            logger.debug("cache_swept", evicted=len(doomed), remaining=len(self._entries))
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
