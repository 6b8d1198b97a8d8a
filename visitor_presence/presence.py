"""
Active-Presence Tracker
=======================

Live "visitors right now" counter backed by one Redis sorted set:

    member = visitor identifier
    score  = Unix timestamp (seconds) of the visitor's last pageview

Reads clean up before they count, so no background sweeper is needed:

    ZREMRANGEBYSCORE active_visitors -inf <now-300>
    ZCOUNT           active_visitors (<now-300> +inf

An entry exactly 300 seconds old is stale. A visitor is active while
`score > now - 300`.
"""

import time
from typing import Callable, Optional

import structlog

from .errors import StoreUnavailableError
from .logging_config import short_hash
from .metrics import PresenceMetrics, record_store_error
from .results import StoreResult
from .store import EphemeralStore

logger = structlog.get_logger(__name__)

ACTIVE_VISITORS_KEY = "active_visitors"
ACTIVE_WINDOW_SECONDS = 300  # 5 minutes


class ActivePresenceTracker:
    """
    Sliding-window presence counter.

    Usage:
        tracker = ActivePresenceTracker(store)
        await tracker.record_activity(visitor_hash)
        result = await tracker.get_active_count()
        result.value  # int, or None when Redis is unavailable
    """

    def __init__(
        self,
        store: EphemeralStore,
        window_seconds: int = ACTIVE_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize the tracker.

        Args:
            store: Shared ephemeral store
            window_seconds: Presence window length
            clock: Returns current Unix time (injectable for tests)
        """
        self.store = store
        self.window_seconds = window_seconds
        self.clock = clock

    @property
    def key(self) -> str:
        return self.store.key(ACTIVE_VISITORS_KEY)

    def _now(self) -> int:
        return int(self.clock())

    async def record_activity(self, visitor_hash: str) -> StoreResult[None]:
        """
        Upsert the visitor with the current timestamp.

        Never raises; a failing store is logged and reported as degraded.
        """
        try:
            await self.store.zadd(self.key, {visitor_hash: self._now()})
            return StoreResult.ok(None)
        except StoreUnavailableError as e:
            logger.error(
                "record_activity_failed",
                visitor=short_hash(visitor_hash),
                error=str(e)
            )
            record_store_error("record_activity")
            return StoreResult.fallback(None, e)

    async def get_active_count(self) -> StoreResult[Optional[int]]:
        """
        Remove stale entries, then count the rest.

        Returns:
            StoreResult with the active count, or None when the store is down.
            Callers must show None as "unknown", not as zero.
        """
        threshold = self._now() - self.window_seconds
        try:
            removed = await self.store.zremrangebyscore(self.key, "-inf", threshold)
            count = await self.store.zcount(self.key, f"({threshold}", "+inf")
        except StoreUnavailableError as e:
            logger.error("get_active_count_failed", error=str(e))
            record_store_error("get_active_count")
            return StoreResult.fallback(None, e)

        if removed:
            logger.debug("stale_presence_entries_removed", removed=removed)

        PresenceMetrics.active_visitors.set(count)
        return StoreResult.ok(count)
