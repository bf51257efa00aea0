"""Tests for cache policy and per-key locking."""

import asyncio

from composer_proxy.asset_kind import CacheType
from composer_proxy.cache import CacheInfo, CachePolicy, KeyedLocks, default_policies


class TestCachePolicy:
    """Tests for CachePolicy freshness decisions."""

    def test_fresh_within_max_age(self):
        """An entry verified recently is fresh."""
        policy = CachePolicy(max_age=60)
        info = CacheInfo(fetched_at=1000.0, last_verified=1000.0)
        assert policy.is_stale(info, now=1059.0) is False

    def test_stale_after_max_age(self):
        """An entry older than max_age needs revalidation."""
        policy = CachePolicy(max_age=60)
        info = CacheInfo(fetched_at=1000.0, last_verified=1000.0)
        assert policy.is_stale(info, now=1060.0) is True

    def test_age_counts_from_last_verification(self):
        """Revalidation resets the age, not the original fetch time."""
        policy = CachePolicy(max_age=60)
        info = CacheInfo(fetched_at=0.0, last_verified=1000.0)
        assert policy.is_stale(info, now=1030.0) is False

    def test_negative_max_age_never_expires(self):
        """max_age -1 keeps entries fresh forever."""
        policy = CachePolicy(max_age=-1)
        info = CacheInfo(fetched_at=0.0, last_verified=0.0)
        assert policy.is_stale(info, now=10 ** 12) is False

    def test_zero_max_age_always_stale(self):
        """max_age 0 always revalidates."""
        policy = CachePolicy(max_age=0)
        info = CacheInfo(fetched_at=1000.0, last_verified=1000.0)
        assert policy.is_stale(info, now=1000.0) is True

    def test_default_policies(self):
        """Defaults cover both cache types."""
        policies = default_policies(metadata_max_age=10, content_max_age=-1,
                                    serve_stale_on_error=False)
        assert policies[CacheType.METADATA].max_age == 10
        assert policies[CacheType.CONTENT].max_age == -1
        assert not policies[CacheType.METADATA].serve_stale_on_error


class TestCacheInfo:
    """Tests for CacheInfo."""

    def test_verified_keeps_validators(self):
        """verified() only moves last_verified."""
        info = CacheInfo(fetched_at=1.0, last_verified=1.0, etag='"a"', last_modified="x")
        updated = info.verified(now=5.0)
        assert updated.last_verified == 5.0
        assert updated.fetched_at == 1.0
        assert updated.etag == '"a"'
        assert info.last_verified == 1.0

    def test_has_validators(self):
        assert CacheInfo(etag='"a"').has_validators
        assert CacheInfo(last_modified="Mon, 01 Jan 2024 00:00:00 GMT").has_validators
        assert not CacheInfo().has_validators

    def test_dict_round_trip(self):
        info = CacheInfo(fetched_at=1.5, last_verified=2.5, etag='"e"')
        assert CacheInfo.from_dict(info.to_dict()) == info


class TestKeyedLocks:
    """Tests for KeyedLocks."""

    def test_same_key_serialises(self):
        """Holders of one key run one at a time."""
        locks = KeyedLocks()
        order = []

        async def worker(name):
            async with locks.hold("k"):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        async def _run():
            await asyncio.gather(worker("a"), worker("b"))

        asyncio.run(_run())
        assert order == ["a-in", "a-out", "b-in", "b-out"]

    def test_different_keys_do_not_block(self):
        """Nested holds on distinct keys do not deadlock."""
        locks = KeyedLocks()

        async def _run():
            async with locks.hold("outer"):
                async with locks.hold("inner"):
                    return locks.in_flight()

        assert asyncio.run(_run()) == 2
        assert locks.in_flight() == 0

    def test_locks_released_on_error(self):
        """A failing holder releases and forgets its lock."""
        locks = KeyedLocks()

        async def _run():
            try:
                async with locks.hold("k"):
                    raise RuntimeError("boom")
            except RuntimeError:
                pass
            return locks.is_held("k"), locks.in_flight()

        assert asyncio.run(_run()) == (False, 0)
