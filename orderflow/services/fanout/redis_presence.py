"""
Redis Presence Store

Shares the live-session registry between API processes. Each session is a
JSON blob under ``presence:session:<connection_id>``; each scope is a set of
connection ids under ``presence:scope:<scope>``. Keys expire after a TTL so
sessions of a crashed process disappear on their own; the hub renews the
lease of its live sessions through ``touch`` on every client heartbeat.
"""

import json
import logging
from typing import Iterable, Optional

import redis.asyncio as aioredis

from orderflow.services.fanout.presence import LiveSession, PresenceStore
from orderflow.services.fanout.routing import order_scope

logger = logging.getLogger(__name__)

SESSION_KEY = "presence:session:{}"
SCOPE_KEY = "presence:scope:{}"


class RedisPresenceStore(PresenceStore):
    """Presence registry kept in Redis."""

    def __init__(self, client: aioredis.Redis, ttl_seconds: int = 3600):
        self._redis = client
        self._ttl = ttl_seconds

    @classmethod
    def from_url(cls, url: str, ttl_seconds: int = 3600) -> "RedisPresenceStore":
        return cls(aioredis.from_url(url, decode_responses=True), ttl_seconds)

    def _save(self, session: LiveSession, pipe) -> None:
        pipe.set(SESSION_KEY.format(session.connection_id), json.dumps(session.to_dict()), ex=self._ttl)

    async def add(self, session: LiveSession) -> None:
        await self.remove(session.connection_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            self._save(session, pipe)
            for scope in session.scopes():
                pipe.sadd(SCOPE_KEY.format(scope), session.connection_id)
                pipe.expire(SCOPE_KEY.format(scope), self._ttl)
            await pipe.execute()

    async def remove(self, connection_id: str) -> Optional[LiveSession]:
        session = await self.get(connection_id)
        if session is None:
            return None
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.delete(SESSION_KEY.format(connection_id))
            for scope in session.scopes():
                pipe.srem(SCOPE_KEY.format(scope), connection_id)
            await pipe.execute()
        return session

    async def get(self, connection_id: str) -> Optional[LiveSession]:
        raw = await self._redis.get(SESSION_KEY.format(connection_id))
        if raw is None:
            return None
        return LiveSession.from_dict(json.loads(raw))

    async def add_subscription(self, connection_id: str, order_id: int) -> bool:
        session = await self.get(connection_id)
        if session is None:
            return False
        session.subscriptions.add(order_id)
        scope = SCOPE_KEY.format(order_scope(order_id))
        async with self._redis.pipeline(transaction=True) as pipe:
            self._save(session, pipe)
            pipe.sadd(scope, connection_id)
            pipe.expire(scope, self._ttl)
            await pipe.execute()
        return True

    async def remove_subscription(self, connection_id: str, order_id: int) -> bool:
        session = await self.get(connection_id)
        if session is None:
            return False
        session.subscriptions.discard(order_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            self._save(session, pipe)
            pipe.srem(SCOPE_KEY.format(order_scope(order_id)), connection_id)
            await pipe.execute()
        return True

    async def touch(self, connection_id: str) -> bool:
        session = await self.get(connection_id)
        if session is None:
            return False
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.expire(SESSION_KEY.format(connection_id), self._ttl)
            for scope in session.scopes():
                pipe.expire(SCOPE_KEY.format(scope), self._ttl)
            await pipe.execute()
        return True

    async def match(self, scopes: Iterable[str]) -> list[LiveSession]:
        keys = [SCOPE_KEY.format(s) for s in scopes]
        if not keys:
            return []
        ids = sorted(await self._redis.sunion(keys))
        if not ids:
            return []
        blobs = await self._redis.mget([SESSION_KEY.format(i) for i in ids])
        return [LiveSession.from_dict(json.loads(b)) for b in blobs if b is not None]

    async def count(self) -> int:
        total = 0
        async for _ in self._redis.scan_iter(match=SESSION_KEY.format("*")):
            total += 1
        return total

    async def health_check(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except Exception as e:
            logger.error(f"Redis presence health check failed: {e}")
            return False

    async def close(self) -> None:
        await self._redis.aclose()
