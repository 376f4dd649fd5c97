"""Tests for debug session stores: TTL, size cap and the Redis backend."""

from datetime import UTC, datetime

import pytest
from fakeredis import FakeAsyncRedis

from app.schemas.diagnostics import DebugSession, DebugStep, StepStatus
from app.services.debug_sessions import KEY_PREFIX, InMemoryDebugSessionStore, RedisDebugSessionStore

pytestmark = pytest.mark.unit

STARTED = datetime(2026, 3, 14, 12, 0, tzinfo=UTC)


class FakeMonotonic:
    def __init__(self):
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value


def _session(session_id: str) -> DebugSession:
    return DebugSession(id=session_id, order_id=1, started_at=STARTED)


@pytest.fixture
async def redis():
    """Create a fake Redis instance for testing."""
    fake_redis = FakeAsyncRedis(decode_responses=True)
    yield fake_redis
    await fake_redis.flushall()
    await fake_redis.aclose()


class TestInMemoryStore:
    async def test_round_trip_returns_copy(self):
        store = InMemoryDebugSessionStore()
        session = _session("a")
        await store.save(session)

        session.steps.append(DebugStep(step="x", status=StepStatus.STARTED, started_at=STARTED))
        loaded = await store.get("a")

        assert loaded.steps == []

    async def test_expired_session_is_gone(self):
        clock = FakeMonotonic()
        store = InMemoryDebugSessionStore(ttl_seconds=60, clock=clock)
        await store.save(_session("a"))

        clock.value += 59
        assert await store.get("a") is not None

        clock.value += 1
        assert await store.get("a") is None
        assert len(store) == 0

    async def test_resave_extends_ttl(self):
        clock = FakeMonotonic()
        store = InMemoryDebugSessionStore(ttl_seconds=60, clock=clock)
        await store.save(_session("a"))

        clock.value += 50
        await store.save(_session("a"))
        clock.value += 50

        assert await store.get("a") is not None

    async def test_oldest_sessions_evicted_at_capacity(self):
        store = InMemoryDebugSessionStore(max_entries=2)
        for sid in ("a", "b", "c"):
            await store.save(_session(sid))

        assert len(store) == 2
        assert await store.get("a") is None
        assert await store.get("c") is not None

    async def test_expired_sessions_evicted_before_live_ones(self):
        clock = FakeMonotonic()
        store = InMemoryDebugSessionStore(ttl_seconds=10, max_entries=2, clock=clock)
        await store.save(_session("old"))
        clock.value += 5
        await store.save(_session("live"))
        clock.value += 6

        await store.save(_session("new"))

        assert await store.get("live") is not None
        assert await store.get("new") is not None

    async def test_unknown_session(self):
        assert await InMemoryDebugSessionStore().get("missing") is None


class TestRedisStore:
    async def test_round_trip_with_ttl(self, redis):
        store = RedisDebugSessionStore(redis, ttl_seconds=120)
        session = _session("r1")
        session.steps.append(DebugStep(step="check_configuration", status=StepStatus.COMPLETED, started_at=STARTED))

        await store.save(session)
        loaded = await store.get("r1")

        assert loaded == session
        ttl = await redis.ttl(f"{KEY_PREFIX}r1")
        assert 0 < ttl <= 120

    async def test_missing_key(self, redis):
        assert await RedisDebugSessionStore(redis).get("nope") is None
