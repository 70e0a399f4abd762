"""In-process cache for per-profile content views."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Protocol

from cachetools import TTLCache

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 1024


class ProfileCache(Protocol):
    """What the status services need from a cache: dropping a profile's view."""

    def invalidate_profile(self, account_id: int, profile_id: int) -> None: ...


class ProfileContentCache:
    """TTL cache keyed by ``(account_id, profile_id, view)``.

    A ttl of ``0`` disables caching: ``set`` becomes a no-op.
    """

    def __init__(
        self,
        ttl_seconds: int,
        *,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl = ttl_seconds
        self._entries: TTLCache[tuple[int, int, str], Any] = TTLCache(
            maxsize=max_entries, ttl=max(ttl_seconds, 1), timer=clock
        )

    def get(self, account_id: int, profile_id: int, view: str) -> Any | None:
        return self._entries.get((account_id, profile_id, view))

    def set(self, account_id: int, profile_id: int, view: str, value: Any) -> None:
        if self._ttl <= 0:
            return
        self._entries[(account_id, profile_id, view)] = value

    def invalidate_profile(self, account_id: int, profile_id: int) -> None:
        stale = [
            key
            for key in list(self._entries.keys())
            if key[0] == account_id and key[1] == profile_id
        ]
        for key in stale:
            self._entries.pop(key, None)
        logger.debug(
            "Invalidated %d cached views for account %s profile %s",
            len(stale),
            account_id,
            profile_id,
        )

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        self._entries.expire()
        return len(self._entries)
