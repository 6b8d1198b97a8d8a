"""
Ephemeral Store Client
======================

Single shared Redis connection used by the deduplicator, the presence
tracker and the session store.

- Lazy connection on first command, reused afterwards
- Bounded connect timeout and reconnect retries (exponential backoff, capped)
- After a failed connect or a dropped connection, commands fail fast for a
  short cooldown instead of paying the retry budget again
- Optional key namespace for test isolation
- Every Redis failure surfaces as StoreUnavailableError

Usage:
    async with EphemeralStore.from_settings(settings) as store:
        await store.setex(store.key("visitor:hash:abc"), 86400, "1")
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar, Union

import redis.asyncio as aioredis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError
import structlog

from .config import Settings
from .errors import ConfigurationError, StoreUnavailableError
from .metrics import PresenceMetrics

logger = structlog.get_logger(__name__)

T = TypeVar("T")

Score = Union[int, float, str]

DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_MAX_RETRIES = 3
RETRY_BACKOFF_CAP = 3.0  # seconds
RETRY_BACKOFF_BASE = 1.0
RECONNECT_COOLDOWN_SECONDS = 5.0


class EphemeralStore:
    """
    Async Redis client wrapper owning one connection pool.

    Components never touch the underlying client; they go through the
    single-key commands below.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        key_prefix: Optional[str] = None,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        client: Optional[Any] = None,
        reconnect_cooldown: float = RECONNECT_COOLDOWN_SECONDS,
        monotonic: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the store.

        Args:
            url: Redis connection URL (required unless a client is injected)
            key_prefix: Namespace applied to every key (test isolation)
            connect_timeout: Socket connect timeout in seconds
            max_retries: Reconnect attempts before a command fails
            client: Pre-built redis.asyncio compatible client
            reconnect_cooldown: Seconds a failed connect is remembered; commands
                fail immediately during that window
            monotonic: Clock for the cooldown (injectable for tests)

        Raises:
            ConfigurationError: If neither url nor client is given
        """
        if not url and client is None:
            raise ConfigurationError("REDIS_URL environment variable is not set")

        self.url = url
        self.key_prefix = key_prefix
        self.connect_timeout = connect_timeout
        self.max_retries = max_retries
        self.reconnect_cooldown = reconnect_cooldown
        self._monotonic = monotonic

        self._client = client
        self._owns_client = client is None
        self._lock = asyncio.Lock()
        self._failed_at: Optional[float] = None

        logger.info(
            "ephemeral_store_initialized",
            injected_client=not self._owns_client,
            key_prefix=key_prefix,
            connect_timeout=connect_timeout,
            max_retries=max_retries
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "EphemeralStore":
        """Build a store from loaded settings."""
        return cls(
            url=settings.redis_url,
            key_prefix=settings.key_prefix,
            connect_timeout=settings.connect_timeout,
            max_retries=settings.max_retries
        )

    def key(self, name: str) -> str:
        """Apply the namespace prefix, if any."""
        return f"{self.key_prefix}:{name}" if self.key_prefix else name

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _build_client(self):
        retry = Retry(
            ExponentialBackoff(cap=RETRY_BACKOFF_CAP, base=RETRY_BACKOFF_BASE),
            self.max_retries,
            supported_errors=(RedisConnectionError, RedisTimeoutError, OSError)
        )
        return aioredis.from_url(
            self.url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=self.connect_timeout,
            retry=retry,
            retry_on_error=[RedisConnectionError, RedisTimeoutError]
        )

    async def connect(self):
        """
        Establish the connection if it does not exist yet.

        Concurrent first callers share one client. After a failed attempt,
        callers fail immediately until the cooldown has passed.

        Raises:
            StoreUnavailableError: If Redis cannot be reached
        """
        if self._client is not None:
            return self._client
        self._check_cooldown()

        async with self._lock:
            if self._client is not None:
                return self._client
            self._check_cooldown()

            client = self._build_client()
            try:
                await client.ping()
            except (RedisError, OSError, asyncio.TimeoutError) as e:
                self._failed_at = self._monotonic()
                logger.error(
                    "redis_connection_failed",
                    error=str(e),
                    cooldown_seconds=self.reconnect_cooldown
                )
                await self._dispose(client)
                raise StoreUnavailableError("connect", str(e)) from e

            self._failed_at = None
            self._client = client
            logger.info("redis_connected")
            return self._client

    async def close(self):
        """Tear the connection down. Safe to call more than once."""
        client, self._client = self._client, None
        self._failed_at = None
        if client is None or not self._owns_client:
            return
        await self._dispose(client)
        logger.info("redis_connection_closed")

    def _check_cooldown(self):
        if self._failed_at is None:
            return
        remaining = self.reconnect_cooldown - (self._monotonic() - self._failed_at)
        if remaining > 0:
            raise StoreUnavailableError(
                "connect", f"previous connect failed, retrying in {remaining:.1f}s"
            )

    async def _drop_connection(self, client, command: str, error: Exception):
        # Owned clients are rebuilt after the cooldown; injected ones are kept
        if not self._owns_client or self._client is not client:
            return
        self._client = None
        self._failed_at = self._monotonic()
        logger.error("redis_connection_lost", command=command, error=str(error))
        await self._dispose(client)

    async def _dispose(self, client):
        try:
            await client.aclose()
        except (RedisError, OSError) as e:
            logger.warning("redis_close_failed", error=str(e))

    async def health_check(self) -> bool:
        """
        Check if Redis answers PING.

        Returns:
            True if healthy, False otherwise
        """
        try:
            await self._execute("ping", lambda c: c.ping())
            return True
        except StoreUnavailableError as e:
            logger.error("redis_health_check_failed", error=str(e))
            return False

    async def __aenter__(self) -> "EphemeralStore":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def _execute(self, command: str, call: Callable[[Any], Awaitable[T]]) -> T:
        client = await self.connect()
        started = time.perf_counter()
        try:
            return await call(client)
        except (RedisConnectionError, RedisTimeoutError, OSError, asyncio.TimeoutError) as e:
            await self._drop_connection(client, command, e)
            raise StoreUnavailableError(command, str(e)) from e
        except RedisError as e:
            raise StoreUnavailableError(command, str(e)) from e
        finally:
            PresenceMetrics.store_command_duration.labels(command=command).observe(
                time.perf_counter() - started
            )

    async def get(self, key: str) -> Optional[str]:
        return await self._execute("get", lambda c: c.get(key))

    async def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        await self._execute("setex", lambda c: c.setex(key, ttl_seconds, value))

    async def zadd(self, key: str, mapping: Dict[str, float]) -> int:
        return await self._execute("zadd", lambda c: c.zadd(key, mapping))

    async def zremrangebyscore(self, key: str, min_score: Score, max_score: Score) -> int:
        return await self._execute(
            "zremrangebyscore", lambda c: c.zremrangebyscore(key, min_score, max_score)
        )

    async def zcount(self, key: str, min_score: Score, max_score: Score) -> int:
        return await self._execute("zcount", lambda c: c.zcount(key, min_score, max_score))

    async def zcard(self, key: str) -> int:
        return await self._execute("zcard", lambda c: c.zcard(key))
