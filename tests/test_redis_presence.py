"""
Redis Presence Store Tests

Runs the shared registry against fakeredis. Key expiry is simulated by
shortening or deleting keys instead of sleeping.
"""

import pytest
from fakeredis import aioredis as fake_aioredis

from orderflow.core.security import ActorRole
from orderflow.events import DomainEvent, EventKind
from orderflow.services.fanout import LiveSession, NotificationHub
from orderflow.services.fanout.redis_presence import SCOPE_KEY, SESSION_KEY, RedisPresenceStore
from orderflow.services.fanout.routing import KITCHEN, customer_scope, order_scope
from tests.helpers import Feed


@pytest.fixture
async def redis_client():
    client = fake_aioredis.FakeRedis(decode_responses=True)
    await client.flushall()
    yield client
    await client.flushall()


@pytest.fixture
def store(redis_client):
    return RedisPresenceStore(redis_client, ttl_seconds=100)


def low_stock_alert() -> DomainEvent:
    return DomainEvent(kind=EventKind.INVENTORY_ALERT, payload={"item_id": 2})


class TestRedisPresenceStore:

    async def test_add_match_remove(self, store):
        await store.add(LiveSession("k1", ActorRole.KITCHEN))
        await store.add(LiveSession("c1", ActorRole.CUSTOMER, "cust-1"))

        assert [s.connection_id for s in await store.match({KITCHEN})] == ["k1"]
        matched = await store.match({KITCHEN, customer_scope("cust-1")})
        assert [s.connection_id for s in matched] == ["c1", "k1"]
        assert await store.count() == 2

        removed = await store.remove("k1")
        assert removed.role == ActorRole.KITCHEN
        assert await store.match({KITCHEN}) == []
        assert await store.remove("k1") is None

    async def test_order_subscriptions(self, store):
        await store.add(LiveSession("c2", ActorRole.CUSTOMER, "cust-2"))

        assert await store.add_subscription("c2", 7)
        assert (await store.get("c2")).subscriptions == {7}
        assert [s.connection_id for s in await store.match({order_scope(7)})] == ["c2"]

        assert await store.remove_subscription("c2", 7)
        assert await store.match({order_scope(7)}) == []
        assert not await store.add_subscription("ghost", 7)

    async def test_touch_renews_every_key_of_the_session(self, store, redis_client):
        await store.add(LiveSession("k1", ActorRole.KITCHEN))
        session_key = SESSION_KEY.format("k1")
        scope_key = SCOPE_KEY.format(KITCHEN)
        await redis_client.expire(session_key, 5)
        await redis_client.expire(scope_key, 5)

        assert await store.touch("k1")

        assert await redis_client.ttl(session_key) > 50
        assert await redis_client.ttl(scope_key) > 50

    async def test_touch_unknown_session(self, store):
        assert not await store.touch("ghost")

    async def test_health_check(self, store):
        assert await store.health_check()


class TestHubOnRedisPresence:

    async def test_lapsed_entry_is_restored_and_still_delivered(self, store, redis_client):
        hub = NotificationHub(store, send_timeout_seconds=0.5)
        kitchen = Feed()
        await hub.register_session("k1", ActorRole.KITCHEN, sender=kitchen)
        # what the TTL does to a session nobody renewed
        await redis_client.delete(SESSION_KEY.format("k1"), SCOPE_KEY.format(KITCHEN))

        delivered = await hub.publish(low_stock_alert())

        assert delivered == 1
        assert kitchen.kinds() == ["inventory_alert"]
        assert await store.get("k1") is not None

    async def test_heartbeat_renews_the_lease(self, store, redis_client):
        hub = NotificationHub(store)
        await hub.register_session("k1", ActorRole.KITCHEN, sender=Feed())
        await redis_client.expire(SESSION_KEY.format("k1"), 5)

        assert await hub.heartbeat("k1")
        assert await redis_client.ttl(SESSION_KEY.format("k1")) > 50

    async def test_heartbeat_restores_an_expired_entry(self, store, redis_client):
        hub = NotificationHub(store)
        await hub.register_session("k1", ActorRole.KITCHEN, sender=Feed())
        await redis_client.delete(SESSION_KEY.format("k1"))

        assert await hub.heartbeat("k1")
        assert [s.connection_id for s in await store.match({KITCHEN})] == ["k1"]

    async def test_heartbeat_for_detached_session(self, store):
        hub = NotificationHub(store)
        await hub.register_session("k1", ActorRole.KITCHEN, sender=Feed())
        await hub.unregister_session("k1")

        assert not await hub.heartbeat("k1")
        assert await store.get("k1") is None
