"""
Unit tests for the active-presence tracker.
"""

from visitor_presence.presence import ACTIVE_VISITORS_KEY, ActivePresenceTracker


async def _insert_ages(fake_redis, clock, ages):
    now = int(clock())
    await fake_redis.zadd(ACTIVE_VISITORS_KEY, {f"visitor-{age}": now - age for age in ages})


class TestRecordActivity:

    async def test_records_current_timestamp(self, store, fake_redis, clock):
        tracker = ActivePresenceTracker(store, clock=clock)

        result = await tracker.record_activity("v1")

        assert not result.degraded
        assert fake_redis.sorted_sets[ACTIVE_VISITORS_KEY] == {"v1": int(clock())}

    async def test_repeat_activity_refreshes_score_without_duplicating(self, store, fake_redis, clock):
        tracker = ActivePresenceTracker(store, clock=clock)

        await tracker.record_activity("v1")
        clock.advance(120)
        await tracker.record_activity("v1")

        members = fake_redis.sorted_sets[ACTIVE_VISITORS_KEY]
        assert len(members) == 1
        assert members["v1"] == int(clock())

    async def test_store_failure_is_swallowed(self, failing_store):
        tracker = ActivePresenceTracker(failing_store)

        result = await tracker.record_activity("v1")

        assert result.degraded is True
        assert result.value is None


class TestGetActiveCount:

    async def test_window_boundary(self, store, fake_redis, clock):
        tracker = ActivePresenceTracker(store, clock=clock)
        await _insert_ages(fake_redis, clock, [0, 60, 120, 180, 240, 299, 301, 360, 600])

        result = await tracker.get_active_count()

        assert result.value == 6
        assert not result.degraded

    async def test_entry_exactly_window_old_is_excluded(self, store, fake_redis, clock):
        tracker = ActivePresenceTracker(store, clock=clock)
        await _insert_ages(fake_redis, clock, [299, 300])

        result = await tracker.get_active_count()

        assert result.value == 1
        assert set(fake_redis.sorted_sets[ACTIVE_VISITORS_KEY]) == {"visitor-299"}

    async def test_cleanup_leaves_only_counted_entries(self, store, fake_redis, clock):
        tracker = ActivePresenceTracker(store, clock=clock)
        await _insert_ages(fake_redis, clock, [0, 60, 120, 180, 240, 299, 301, 360, 600])

        result = await tracker.get_active_count()

        assert await fake_redis.zcard(ACTIVE_VISITORS_KEY) == result.value

    async def test_empty_set_counts_zero(self, store, clock):
        tracker = ActivePresenceTracker(store, clock=clock)

        result = await tracker.get_active_count()

        assert result.value == 0
        assert result.degraded is False

    async def test_visitor_ages_out_of_window(self, store, clock):
        tracker = ActivePresenceTracker(store, clock=clock)

        await tracker.record_activity("v1")
        clock.advance(299)
        assert (await tracker.get_active_count()).value == 1
        clock.advance(1)
        assert (await tracker.get_active_count()).value == 0

    async def test_store_failure_returns_none_not_zero(self, failing_store):
        tracker = ActivePresenceTracker(failing_store)

        result = await tracker.get_active_count()

        assert result.value is None
        assert result.degraded is True
