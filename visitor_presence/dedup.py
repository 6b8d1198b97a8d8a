"""
Unique-Visitor Deduplicator
===========================

First sighting of a visitor identifier within 24h is "unique". The marker key
expires on its own; nothing deletes it.

On store failure the visitor is reported as unique: an inflated unique count
is preferred over a visitor missing from the metric.
"""

import structlog

from .errors import StoreUnavailableError
from .logging_config import short_hash
from .metrics import record_store_error
from .results import StoreResult
from .store import EphemeralStore

logger = structlog.get_logger(__name__)

DEDUP_KEY_TEMPLATE = "visitor:hash:{visitor_hash}"
DEDUP_TTL_SECONDS = 86400  # 24 hours
DEDUP_MARKER = "1"


class UniqueVisitorDeduplicator:
    """Existence-check + SETEX dedup keyed by visitor identifier."""

    def __init__(self, store: EphemeralStore, ttl_seconds: int = DEDUP_TTL_SECONDS):
        self.store = store
        self.ttl_seconds = ttl_seconds

    def _key(self, visitor_hash: str) -> str:
        return self.store.key(DEDUP_KEY_TEMPLATE.format(visitor_hash=visitor_hash))

    async def check_and_record(self, visitor_hash: str) -> StoreResult[bool]:
        """
        Check whether this is the first sighting today and mark it if so.

        Args:
            visitor_hash: Visitor identifier

        Returns:
            StoreResult with True for a new visitor, False for a returning one.
            Degraded results carry True.
        """
        key = self._key(visitor_hash)
        try:
            existing = await self.store.get(key)
            if existing is not None:
                return StoreResult.ok(False)

            # GET then SETEX is not atomic; a race can only overcount
            await self.store.setex(key, self.ttl_seconds, DEDUP_MARKER)
            logger.debug("unique_visitor_recorded", visitor=short_hash(visitor_hash))
            return StoreResult.ok(True)

        except StoreUnavailableError as e:
            logger.error(
                "dedup_check_failed_assuming_unique",
                visitor=short_hash(visitor_hash),
                error=str(e)
            )
            record_store_error("check_and_record")
            return StoreResult.fallback(True, e)
