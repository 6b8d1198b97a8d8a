"""
Visitor Identity Hasher
=======================

Privacy-preserving visitor identifier:

    day_salt = HMAC-SHA256(secret, "YYYY-MM-DD")
    visitor  = SHA256(day_salt + ip + user_agent)  -> 64 lowercase hex chars

The salt rotates with the calendar day, so the same browser hashes to an
unlinkable identifier tomorrow. IP and user agent are never kept.
"""

import hashlib
import hmac
from datetime import date, datetime
from typing import Union

DateLike = Union[date, datetime]

VISITOR_HASH_LENGTH = 64


def format_day(at_date: DateLike) -> str:
    """Calendar day of a date or datetime as YYYY-MM-DD."""
    if isinstance(at_date, datetime):
        at_date = at_date.date()
    return at_date.strftime("%Y-%m-%d")


class VisitorHasher:
    """Derives daily-rotating visitor identifiers from a server-held secret."""

    def __init__(self, secret: str = ""):
        self._secret = secret.encode("utf-8")

    def day_salt(self, at_date: DateLike) -> str:
        return hmac.new(
            self._secret, format_day(at_date).encode("utf-8"), hashlib.sha256
        ).hexdigest()

    def hash(self, ip: str, user_agent: str, at_date: DateLike) -> str:
        """
        Hash a visitor for the given day.

        Args:
            ip: Client IP (v4 or v6, as received)
            user_agent: Raw User-Agent header
            at_date: Day the salt is bound to (normally now)

        Returns:
            64-character lowercase hex digest
        """
        combined = f"{self.day_salt(at_date)}{ip}{user_agent}"
        return hashlib.sha256(combined.encode("utf-8", "surrogatepass")).hexdigest()
