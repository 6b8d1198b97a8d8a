"""
Session Store
=============

Per-session metadata kept in Redis under `session:<session_id>` with a
sliding 24h TTL. The session id is generated by the tracking script.

- get_or_create: look up a session, creating it on the first pageview
- touch: advance an existing session (page_count + 1, refresh TTL)

Referrer and UTM parameters are first-touch attribution: they are written
once at creation and never changed.
"""

import time
from datetime import datetime, timezone
from typing import Callable, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError
import structlog

from .errors import StoreUnavailableError
from .metrics import PresenceMetrics, record_store_error
from .results import StoreResult
from .store import EphemeralStore

logger = structlog.get_logger(__name__)

SESSION_KEY_TEMPLATE = "session:{session_id}"
SESSION_TTL_SECONDS = 86400  # 24 hours, refreshed on every touch

UTM_FIELDS = ("source", "medium", "campaign", "content", "term")


class UtmParams(BaseModel):
    """First-touch campaign attribution."""

    source: Optional[str] = None
    medium: Optional[str] = None
    campaign: Optional[str] = None
    content: Optional[str] = None
    term: Optional[str] = None

    @classmethod
    def from_mapping(cls, params: Optional[Mapping[str, Optional[str]]]) -> "UtmParams":
        """
        Accept either short names (`source`) or query names (`utm_source`).
        Empty strings count as missing.
        """
        if not params:
            return cls()

        values = {}
        for field in UTM_FIELDS:
            value = params.get(f"utm_{field}") or params.get(field)
            if value:
                values[field] = value
        return cls(**values)


class SessionRecord(BaseModel):
    """Stored session metadata. Timestamps are ISO-8601 UTC strings."""

    start_time: str
    page_count: int = Field(ge=1)
    last_seen: str
    initial_referrer: Optional[str] = None
    utm_params: UtmParams = Field(default_factory=UtmParams)


def _iso_timestamp(unix_seconds: float) -> str:
    moment = datetime.fromtimestamp(unix_seconds, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class SessionStore:
    """
    Redis-backed session metadata with a sliding TTL.

    Usage:
        sessions = SessionStore(store)
        created = await sessions.get_or_create(sid, "https://a.com", {"utm_source": "x"})
        advanced = await sessions.touch(sid)
    """

    def __init__(
        self,
        store: EphemeralStore,
        ttl_seconds: int = SESSION_TTL_SECONDS,
        clock: Callable[[], float] = time.time
    ):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    def _key(self, session_id: str) -> str:
        return self.store.key(SESSION_KEY_TEMPLATE.format(session_id=session_id))

    async def _load(self, key: str) -> Optional[SessionRecord]:
        raw = await self.store.get(key)
        if raw is None:
            return None
        return SessionRecord.model_validate_json(raw)

    async def _save(self, key: str, record: SessionRecord):
        await self.store.setex(key, self.ttl_seconds, record.model_dump_json())

    def _degraded(self, operation: str, session_id: str, error: Exception):
        logger.error(f"{operation}_failed", session_id=session_id, error=str(error))
        record_store_error(operation)
        PresenceMetrics.session_operations_total.labels(
            operation=operation, outcome="degraded"
        ).inc()
        return StoreResult.fallback(None, error)

    async def get_or_create(
        self,
        session_id: str,
        referrer: Optional[str],
        utm_params: Optional[Mapping[str, Optional[str]]] = None
    ) -> StoreResult[Optional[SessionRecord]]:
        """
        Return the session, creating it if it does not exist.

        An existing session is returned unchanged; page_count is only
        advanced by `touch`.

        Args:
            session_id: Client-generated session id
            referrer: Referrer of the first pageview (new sessions only)
            utm_params: UTM parameters of the first pageview (new sessions only)

        Returns:
            StoreResult with the session, or None when the store failed or
            the stored record could not be parsed
        """
        key = self._key(session_id)
        try:
            existing = await self._load(key)
            if existing is not None:
                PresenceMetrics.session_operations_total.labels(
                    operation="get_or_create", outcome="found"
                ).inc()
                return StoreResult.ok(existing)

            now = _iso_timestamp(self.clock())
            record = SessionRecord(
                start_time=now,
                page_count=1,
                last_seen=now,
                initial_referrer=referrer or None,
                utm_params=UtmParams.from_mapping(utm_params),
            )
            await self._save(key, record)

        except (StoreUnavailableError, ValidationError) as e:
            return self._degraded("get_or_create", session_id, e)

        logger.info("session_created", session_id=session_id, referrer=record.initial_referrer)
        PresenceMetrics.session_operations_total.labels(
            operation="get_or_create", outcome="created"
        ).inc()
        return StoreResult.ok(record)

    async def touch(self, session_id: str) -> StoreResult[Optional[SessionRecord]]:
        """
        Advance an existing session by one pageview and refresh its TTL.

        Args:
            session_id: Client-generated session id

        Returns:
            StoreResult with the updated session. A missing session yields
            None without being degraded; sessions are never created here.
        """
        key = self._key(session_id)
        try:
            record = await self._load(key)
            if record is None:
                logger.warning("session_not_found_for_update", session_id=session_id)
                PresenceMetrics.session_operations_total.labels(
                    operation="touch", outcome="missing"
                ).inc()
                return StoreResult.ok(None)

            updated = record.model_copy(update={
                "page_count": record.page_count + 1,
                "last_seen": _iso_timestamp(self.clock()),
            })
            await self._save(key, updated)

        except (StoreUnavailableError, ValidationError) as e:
            return self._degraded("touch", session_id, e)

        PresenceMetrics.session_operations_total.labels(
            operation="touch", outcome="updated"
        ).inc()
        return StoreResult.ok(updated)
