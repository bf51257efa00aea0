"""Cache validity policy and per-key fetch coordination."""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from typing import Any, AsyncIterator, Dict, Mapping, Optional

from .asset_kind import CacheType
from .constants import Constants


@dataclass(frozen=True)
class CacheInfo:
    """Cache metadata stored alongside a payload."""

    fetched_at: float = field(default_factory=time.time)
    last_verified: float = field(default_factory=time.time)
    etag: Optional[str] = None
    last_modified: Optional[str] = None

    @property
    def has_validators(self) -> bool:
        """True if a conditional request can be made for this entry."""
        return bool(self.etag or self.last_modified)

    def verified(self, now: Optional[float] = None) -> "CacheInfo":
        """Copy with ``last_verified`` refreshed, payload untouched."""
        return replace(self, last_verified=time.time() if now is None else now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fetched_at": self.fetched_at,
            "last_verified": self.last_verified,
            "etag": self.etag,
            "last_modified": self.last_modified,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CacheInfo":
        return cls(
            fetched_at=float(data["fetched_at"]),
            last_verified=float(data["last_verified"]),
            etag=data.get("etag"),
            last_modified=data.get("last_modified"),
        )


@dataclass(frozen=True)
class CachePolicy:
    """Freshness rules for one cache type.

    Attributes:
        max_age: Seconds a stored copy is served without contacting upstream.
            ``-1`` never expires, ``0`` always revalidates.
        revalidate: Send ``If-None-Match``/``If-Modified-Since`` when the
            stored copy carries validators.
        serve_stale_on_error: Serve the stale copy if revalidation fails
            with a transport error.
    """

    max_age: int = Constants.METADATA_MAX_AGE
    revalidate: bool = True
    serve_stale_on_error: bool = True

    def is_stale(self, cache_info: CacheInfo, now: Optional[float] = None) -> bool:
        """Check whether a stored copy needs upstream revalidation."""
        if self.max_age < 0:
            return False
        now = time.time() if now is None else now
        return now - cache_info.last_verified >= self.max_age


def default_policies(
    metadata_max_age: int = Constants.METADATA_MAX_AGE,
    content_max_age: int = Constants.CONTENT_MAX_AGE,
    serve_stale_on_error: bool = True,
) -> Dict[CacheType, CachePolicy]:
    """Build the cache type to policy mapping."""
    return {
        CacheType.METADATA: CachePolicy(
            max_age=metadata_max_age,
            revalidate=True,
            serve_stale_on_error=serve_stale_on_error,
        ),
        CacheType.CONTENT: CachePolicy(
            max_age=content_max_age,
            revalidate=True,
            serve_stale_on_error=serve_stale_on_error,
        ),
    }


class KeyedLocks:
    """One ``asyncio.Lock`` per cache key, created on demand.

    Locks are dropped once nobody holds or waits on them, so the mapping only
    ever contains keys with a fetch in flight.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def in_flight(self) -> int:
        """Number of keys currently locked or awaited."""
        return len(self._locks)

    def is_held(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()
