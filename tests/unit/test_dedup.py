"""
Unit tests for the unique-visitor deduplicator.
"""

from visitor_presence.dedup import DEDUP_TTL_SECONDS, UniqueVisitorDeduplicator
from visitor_presence.store import EphemeralStore

VISITOR = "a" * 64


class TestUniqueVisitorDeduplicator:

    async def test_first_sighting_is_unique_then_returning(self, store):
        dedup = UniqueVisitorDeduplicator(store)

        first = await dedup.check_and_record(VISITOR)
        second = await dedup.check_and_record(VISITOR)

        assert first.value is True
        assert second.value is False
        assert not first.degraded and not second.degraded

    async def test_marker_key_and_ttl(self, store, fake_redis):
        dedup = UniqueVisitorDeduplicator(store)

        await dedup.check_and_record(VISITOR)

        assert await fake_redis.get(f"visitor:hash:{VISITOR}") == "1"
        assert await fake_redis.ttl(f"visitor:hash:{VISITOR}") == DEDUP_TTL_SECONDS

    async def test_unique_again_after_ttl_expires(self, store, clock):
        dedup = UniqueVisitorDeduplicator(store)

        assert (await dedup.check_and_record(VISITOR)).value is True
        clock.advance(DEDUP_TTL_SECONDS - 1)
        assert (await dedup.check_and_record(VISITOR)).value is False
        clock.advance(1)
        assert (await dedup.check_and_record(VISITOR)).value is True

    async def test_returning_visitor_does_not_extend_marker(self, store, fake_redis, clock):
        dedup = UniqueVisitorDeduplicator(store)

        await dedup.check_and_record(VISITOR)
        clock.advance(3600)
        await dedup.check_and_record(VISITOR)

        assert await fake_redis.ttl(f"visitor:hash:{VISITOR}") == DEDUP_TTL_SECONDS - 3600

    async def test_store_failure_assumes_unique(self, failing_store):
        dedup = UniqueVisitorDeduplicator(failing_store)

        result = await dedup.check_and_record(VISITOR)

        assert result.value is True
        assert result.degraded is True
        assert "Connection refused" in result.error

    async def test_key_prefix_applied(self, fake_redis):
        dedup = UniqueVisitorDeduplicator(EphemeralStore(client=fake_redis, key_prefix="test:worker1"))

        await dedup.check_and_record(VISITOR)

        assert await fake_redis.get(f"test:worker1:visitor:hash:{VISITOR}") == "1"
        assert await fake_redis.get(f"visitor:hash:{VISITOR}") is None
