"""
Pageview Ingestion
==================

Runs the presence engine for one tracked pageview:

1. Hash the visitor (IP + User-Agent + day)
2. Dedup check -> is_unique
3. Record presence (concurrently with 2)
4. Advance or create the session (when a session id is present)
5. Hand the pageview to durable storage

Steps 2-4 degrade on their own; the pageview always reaches the sink.
The raw IP is only used for hashing and is not passed on.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Protocol

import structlog

from .dedup import UniqueVisitorDeduplicator
from .hashing import VisitorHasher
from .logging_config import short_hash
from .metrics import PresenceMetrics
from .presence import ActivePresenceTracker
from .sessions import SessionRecord, SessionStore

logger = structlog.get_logger(__name__)


class PageviewSink(Protocol):
    """Durable pageview storage (relational database, queue, ...)."""

    async def save(self, pageview: Dict[str, Any]) -> None:
        ...


class LoggingPageviewSink:
    """Sink that only logs pageviews; used when no database is wired in."""

    async def save(self, pageview: Dict[str, Any]) -> None:
        logger.info(
            "pageview_recorded",
            path=pageview.get("path"),
            is_unique=pageview.get("is_unique"),
            session_id=pageview.get("session_id")
        )


@dataclass
class Pageview:
    """One inbound tracking request."""

    ip: str
    user_agent: str
    path: str = "/"
    session_id: Optional[str] = None
    referrer: Optional[str] = None
    utm_params: Dict[str, Optional[str]] = field(default_factory=dict)
    added_at: Optional[datetime] = None
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TrackingOutcome:
    """What the presence engine decided for a pageview."""

    visitor_hash: str
    is_unique: bool
    session: Optional[SessionRecord] = None
    degraded: bool = False


class PageviewTracker:
    """
    Orchestrates hasher, deduplicator, presence tracker and session store.

    Usage:
        tracker = PageviewTracker.from_store(store, hash_secret="...", sink=db_sink)
        outcome = await tracker.track(Pageview(ip=ip, user_agent=ua, path="/blog"))
    """

    def __init__(
        self,
        hasher: VisitorHasher,
        deduplicator: UniqueVisitorDeduplicator,
        presence: ActivePresenceTracker,
        sessions: SessionStore,
        sink: Optional[PageviewSink] = None,
        clock: Callable[[], float] = time.time
    ):
        self.hasher = hasher
        self.deduplicator = deduplicator
        self.presence = presence
        self.sessions = sessions
        self.sink = sink or LoggingPageviewSink()
        self.clock = clock

    @classmethod
    def from_store(
        cls,
        store,
        hash_secret: str = "",
        sink: Optional[PageviewSink] = None,
        clock: Callable[[], float] = time.time
    ) -> "PageviewTracker":
        """Wire all components onto one shared store."""
        return cls(
            hasher=VisitorHasher(hash_secret),
            deduplicator=UniqueVisitorDeduplicator(store),
            presence=ActivePresenceTracker(store, clock=clock),
            sessions=SessionStore(store, clock=clock),
            sink=sink,
            clock=clock,
        )

    async def _advance_session(self, pageview: Pageview):
        touched = await self.sessions.touch(pageview.session_id)
        if touched.degraded or touched.value is not None:
            return touched

        # Not found: this is the session's first pageview
        return await self.sessions.get_or_create(
            pageview.session_id, pageview.referrer, pageview.utm_params
        )

    async def track(self, pageview: Pageview) -> TrackingOutcome:
        """
        Process one pageview.

        Args:
            pageview: Inbound request data

        Returns:
            TrackingOutcome; `degraded` is set if any store step fell back

        Raises:
            Whatever the sink raises. Store failures never propagate.
        """
        added_at = pageview.added_at or datetime.fromtimestamp(self.clock(), tz=timezone.utc)
        if added_at.tzinfo is not None:
            # Day salt follows the UTC calendar day, whatever offset the client sent
            added_at = added_at.astimezone(timezone.utc)
        visitor_hash = self.hasher.hash(pageview.ip, pageview.user_agent, added_at)

        unique, activity = await asyncio.gather(
            self.deduplicator.check_and_record(visitor_hash),
            self.presence.record_activity(visitor_hash),
        )

        session = None
        if pageview.session_id:
            session = await self._advance_session(pageview)

        degraded = unique.degraded or activity.degraded or bool(session and session.degraded)
        outcome = TrackingOutcome(
            visitor_hash=visitor_hash,
            is_unique=unique.value,
            session=session.value if session else None,
            degraded=degraded,
        )

        record = dict(pageview.extra)
        record.update({
            "path": pageview.path,
            "added_iso": added_at.isoformat(),
            "session_id": pageview.session_id,
            "document_referrer": pageview.referrer,
            "visitor_hash": visitor_hash,
            "is_unique": outcome.is_unique,
            "user_agent": pageview.user_agent,
        })
        for name, value in pageview.utm_params.items():
            key = name if name.startswith("utm_") else f"utm_{name}"
            record[key] = value or None

        await self.sink.save(record)

        PresenceMetrics.pageviews_total.labels(unique=str(outcome.is_unique).lower()).inc()
        logger.debug(
            "pageview_tracked",
            visitor=short_hash(visitor_hash),
            is_unique=outcome.is_unique,
            degraded=degraded
        )
        return outcome
