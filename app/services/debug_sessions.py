"""Debug session stores for the webhook diagnostic pipeline.

Sessions are ephemeral: each store enforces a TTL, and the in-memory store
also caps its size by evicting the oldest sessions first.
"""

import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Protocol, runtime_checkable

import redis.asyncio as redis
import structlog

from app.schemas.diagnostics import DebugSession

logger = structlog.get_logger(__name__)

KEY_PREFIX = "webhook_debug_session:"


@runtime_checkable
class DebugSessionStore(Protocol):
    async def save(self, session: DebugSession) -> None: ...

    async def get(self, session_id: str) -> DebugSession | None: ...


class InMemoryDebugSessionStore:
    def __init__(
        self,
        ttl_seconds: int = 3600,
        max_entries: int = 500,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.clock = clock
        self._sessions: OrderedDict[str, tuple[float, DebugSession]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    def _evict_expired(self, now: float) -> None:
        expired = [sid for sid, (expires_at, _) in self._sessions.items() if expires_at <= now]
        for sid in expired:
            del self._sessions[sid]

    async def save(self, session: DebugSession) -> None:
        now = self.clock()
        self._evict_expired(now)
        if session.id in self._sessions:
            del self._sessions[session.id]
        while len(self._sessions) >= self.max_entries:
            evicted, _ = self._sessions.popitem(last=False)
            logger.debug("debug_session_evicted", debug_session_id=evicted)
        self._sessions[session.id] = (now + self.ttl_seconds, session.model_copy(deep=True))

    async def get(self, session_id: str) -> DebugSession | None:
        entry = self._sessions.get(session_id)
        if entry is None:
            return None
        expires_at, session = entry
        if expires_at <= self.clock():
            del self._sessions[session_id]
            return None
        return session.model_copy(deep=True)


class RedisDebugSessionStore:
    """Shared store for multi-worker deployments; Redis expires keys natively."""

    def __init__(self, client: redis.Redis, ttl_seconds: int = 3600):
        self.client = client
        self.ttl_seconds = ttl_seconds

    async def save(self, session: DebugSession) -> None:
        await self.client.set(f"{KEY_PREFIX}{session.id}", session.model_dump_json(), ex=self.ttl_seconds)

    async def get(self, session_id: str) -> DebugSession | None:
        raw = await self.client.get(f"{KEY_PREFIX}{session_id}")
        if raw is None:
            return None
        return DebugSession.model_validate_json(raw)
