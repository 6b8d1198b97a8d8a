"""
Visitor Presence Engine
=======================

Real-time visitor presence and session tracking on top of Redis:
- Privacy-preserving daily visitor hashes
- Unique-visitor dedup (24h TTL)
- Active visitors over a sliding 5-minute window
- Session records with first-touch attribution (sliding 24h TTL)

Every store-backed operation degrades to a fallback value instead of raising.

Usage:
    from visitor_presence import EphemeralStore, PageviewTracker, Pageview

    async with EphemeralStore(url="redis://localhost:6379") as store:
        tracker = PageviewTracker.from_store(store, hash_secret="s3cret")
        outcome = await tracker.track(Pageview(ip="203.0.113.7", user_agent=ua))
"""

from .config import Settings, load_settings
from .dedup import UniqueVisitorDeduplicator
from .errors import ConfigurationError, StoreUnavailableError, VisitorPresenceError
from .hashing import VisitorHasher
from .presence import ACTIVE_WINDOW_SECONDS, ActivePresenceTracker
from .results import StoreResult
from .sessions import SessionRecord, SessionStore, UtmParams
from .store import EphemeralStore
from .tracking import Pageview, PageviewSink, PageviewTracker, TrackingOutcome

__all__ = [
    "ACTIVE_WINDOW_SECONDS",
    "ActivePresenceTracker",
    "ConfigurationError",
    "EphemeralStore",
    "Pageview",
    "PageviewSink",
    "PageviewTracker",
    "SessionRecord",
    "SessionStore",
    "Settings",
    "StoreResult",
    "StoreUnavailableError",
    "TrackingOutcome",
    "UniqueVisitorDeduplicator",
    "UtmParams",
    "VisitorHasher",
    "VisitorPresenceError",
    "load_settings",
]
__version__ = "1.0.0"
