"""
TTL response cache in front of the API-Football client.

Used for endpoints that are expensive in rate-limit budget and change slowly
(squad rosters). Entries expire lazily on read; failed fetches are never stored.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from utils.clock import SYSTEM_CLOCK, Clock

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    key: str
    payload: Any
    expires_at: float


def make_cache_key(endpoint: str, params: Optional[Dict[str, Any]] = None) -> str:
    """Stable key for endpoint + params, independent of parameter order."""
    normalized = {str(k): str(v) for k, v in (params or {}).items()}
    return endpoint + json.dumps(normalized, sort_keys=True, separators=(",", ":"))


class ResponseCache:
    """In-memory cache keyed by endpoint and sorted parameters."""

    def __init__(self, clock: Clock = SYSTEM_CLOCK):
        self.clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Optional[Any]:
        """Return the cached payload, or None on miss or expiry."""
        key = make_cache_key(endpoint, params)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self.clock.monotonic() >= entry.expires_at:
            del self._entries[key]
            logger.debug("Cache entry expired", extra={"cache_key": key})
            return None
        return entry.payload

    def set(self, endpoint: str, params: Optional[Dict[str, Any]], payload: Any, ttl: float) -> None:
        key = make_cache_key(endpoint, params)
        self._entries[key] = CacheEntry(
            key=key,
            payload=payload,
            expires_at=self.clock.monotonic() + ttl,
        )

    async def get_or_fetch(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]],
        ttl: float,
        fetch_fn: Callable[[], Awaitable[Any]],
    ) -> Any:
        """
        Return cached data for endpoint+params or fetch and store it.

        Args:
            endpoint: Provider endpoint path
            params: Query parameters
            ttl: Seconds the fetched payload stays valid
            fetch_fn: Coroutine factory performing the upstream call

        Returns:
            Cached or freshly fetched payload

        Raises:
            Whatever fetch_fn raises; nothing is cached in that case.
        """
        cached = self.get(endpoint, params)
        if cached is not None:
            logger.debug("Cache hit", extra={"endpoint": endpoint, "params": params})
            return cached

        payload = await fetch_fn()
        self.set(endpoint, params, payload, ttl)
        logger.debug("Cache populated", extra={"endpoint": endpoint, "params": params, "ttl": ttl})
        return payload

    def invalidate(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> None:
        self._entries.pop(make_cache_key(endpoint, params), None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
