"""
Store Results
=============

Every component boundary returns a `StoreResult` so callers can see whether a
value came from the store or is the component's fallback after a failure.

    result = await dedup.check_and_record(visitor_hash)
    if result.degraded:
        ...  # value is the fallback (True)
"""

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class StoreResult(Generic[T]):
    """Value plus a flag telling whether the store was reachable."""

    value: T
    degraded: bool = False
    error: Optional[str] = None

    @classmethod
    def ok(cls, value: T) -> "StoreResult[T]":
        return cls(value=value)

    @classmethod
    def fallback(cls, value: T, error: Exception) -> "StoreResult[T]":
        return cls(value=value, degraded=True, error=str(error))
