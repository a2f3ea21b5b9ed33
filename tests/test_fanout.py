"""
Live Fan-Out Tests

Routing is a pure function; the hub is exercised with the in-memory presence
store, recording senders and a hand-driven clock.
"""

import asyncio

import pytest

from orderflow.core.security import ActorRole
from orderflow.events import DomainEvent, EventKind
from orderflow.services.fanout import InMemoryPresenceStore, LiveSession, NotificationHub
from orderflow.services.fanout.routing import (
    ADMIN,
    KITCHEN,
    customer_scope,
    driver_scope,
    order_scope,
    routing_targets,
)
from tests.helpers import Feed


def order_event(kind=EventKind.ORDER_CONFIRMED, order_id=1, customer_id="cust-1", driver_id=None):
    return DomainEvent(
        kind=kind,
        payload={"status": kind.value},
        order_id=order_id,
        customer_id=customer_id,
        driver_id=driver_id,
    )


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestRouting:

    def test_status_events_reach_owner_kitchen_and_admin(self):
        targets = routing_targets(order_event(EventKind.ORDER_PREPARING, driver_id="D1"))
        assert targets == {KITCHEN, ADMIN, customer_scope("cust-1"), order_scope(1)}

    def test_assigned_driver_hears_about_ready_and_cancelled(self):
        for kind in (EventKind.ORDER_READY, EventKind.ORDER_CANCELLED):
            assert driver_scope("D1") in routing_targets(order_event(kind, driver_id="D1"))

    def test_driver_assigned(self):
        targets = routing_targets(order_event(EventKind.DRIVER_ASSIGNED, driver_id="D1"))
        assert targets == {ADMIN, customer_scope("cust-1"), driver_scope("D1"), order_scope(1)}
        assert KITCHEN not in targets

    def test_location_updates_only_reach_route_trackers(self):
        targets = routing_targets(order_event(EventKind.DRIVER_LOCATION_UPDATE, driver_id="D1"))
        assert targets == {order_scope(1)}

    def test_inventory_alerts_never_reach_customers(self):
        alert = DomainEvent(kind=EventKind.INVENTORY_ALERT, payload={"item_id": 3})
        assert routing_targets(alert) == {KITCHEN, ADMIN}

    def test_session_scopes(self):
        session = LiveSession("c1", ActorRole.CUSTOMER, "cust-1", subscriptions={7})
        assert session.scopes() == {customer_scope("cust-1"), order_scope(7)}
        assert LiveSession("k1", ActorRole.KITCHEN).scopes() == {KITCHEN}
        # a driver session without an id gets nothing by default
        assert LiveSession("d?", ActorRole.DRIVER).scopes() == set()

    def test_session_round_trips_through_dict(self):
        session = LiveSession("d1", ActorRole.DRIVER, "D1", subscriptions={4, 2})
        restored = LiveSession.from_dict(session.to_dict())
        assert restored == session


class TestHubDelivery:

    def setup_method(self):
        self.hub = NotificationHub(InMemoryPresenceStore(), send_timeout_seconds=0.05)

    async def test_registration_is_acknowledged_first(self):
        feed = Feed()
        result = await self.hub.register_session("k1", ActorRole.KITCHEN, sender=feed)

        assert not result.resumed
        assert feed.messages == [result.to_dict()]
        assert feed.messages[0]["type"] == "registered"
        assert self.hub.connected_count == 1

    async def test_publish_reaches_entitled_sessions_only(self):
        kitchen, owner, stranger = Feed(), Feed(), Feed()
        await self.hub.register_session("k1", ActorRole.KITCHEN, sender=kitchen)
        await self.hub.register_session("c1", ActorRole.CUSTOMER, "cust-1", sender=owner)
        await self.hub.register_session("c2", ActorRole.CUSTOMER, "cust-2", sender=stranger)

        delivered = await self.hub.publish(order_event())

        assert delivered == 2
        assert kitchen.kinds() == ["order_confirmed"]
        assert owner.events[0]["seq"] == 1
        assert stranger.events == []

    async def test_ad_hoc_order_subscription(self):
        tracker = Feed()
        await self.hub.register_session("c2", ActorRole.CUSTOMER, "cust-2", sender=tracker)

        assert await self.hub.subscribe_to_order("c2", 1)
        await self.hub.publish(order_event(EventKind.DRIVER_LOCATION_UPDATE, driver_id="D1"))
        assert tracker.kinds() == ["driver_location_update"]

        assert await self.hub.unsubscribe_from_order("c2", 1)
        await self.hub.publish(order_event(EventKind.DRIVER_LOCATION_UPDATE, driver_id="D1"))
        assert len(tracker.events) == 1

        assert not await self.hub.subscribe_to_order("nobody", 1)

    async def test_failed_push_is_dropped_for_that_session_only(self):
        broken, healthy = Feed(fail=True), Feed()
        await self.hub.register_session("k1", ActorRole.KITCHEN, sender=broken)
        await self.hub.register_session("k2", ActorRole.KITCHEN, sender=healthy)

        delivered = await self.hub.publish(order_event())

        assert delivered == 1
        assert healthy.kinds() == ["order_confirmed"]

    async def test_slow_session_does_not_stall_the_hub(self):
        async def stuck(message):
            if message["type"] == "event":
                await asyncio.sleep(1)

        healthy = Feed()
        await self.hub.register_session("k1", ActorRole.KITCHEN, sender=stuck)
        await self.hub.register_session("k2", ActorRole.KITCHEN, sender=healthy)

        delivered = await asyncio.wait_for(self.hub.publish(order_event()), timeout=0.5)

        assert delivered == 1
        assert healthy.kinds() == ["order_confirmed"]

    async def test_stuck_sessions_cost_one_timeout_not_one_each(self):
        hub = NotificationHub(InMemoryPresenceStore(), send_timeout_seconds=0.2)

        async def stuck(message):
            if message["type"] == "event":
                await asyncio.sleep(5)

        healthy = Feed()
        for n in range(5):
            await hub.register_session(f"k{n}", ActorRole.KITCHEN, sender=stuck)
        await hub.register_session("k-ok", ActorRole.KITCHEN, sender=healthy)

        loop = asyncio.get_running_loop()
        started = loop.time()
        delivered = await hub.publish(order_event())
        elapsed = loop.time() - started

        assert delivered == 1
        assert healthy.kinds() == ["order_confirmed"]
        # five stuck sockets one after another would take a full second
        assert elapsed < 0.6

    async def test_concurrent_pushes_keep_publication_order(self):
        feeds = [Feed(), Feed()]

        def sender_for(feed):
            async def send(message):
                await asyncio.sleep(0.01 if message.get("seq") == 1 else 0)
                await feed(message)
            return send

        for n, feed in enumerate(feeds):
            await self.hub.register_session(f"k{n}", ActorRole.KITCHEN, sender=sender_for(feed))

        await asyncio.gather(
            self.hub.publish(order_event(EventKind.ORDER_CONFIRMED)),
            self.hub.publish(order_event(EventKind.ORDER_PREPARING)),
        )

        for feed in feeds:
            assert [e["seq"] for e in feed.events] == [1, 2]

    async def test_event_without_audience(self):
        event = DomainEvent(kind=EventKind.DRIVER_LOCATION_UPDATE, payload={})
        assert await self.hub.publish(event) == 0
        assert self.hub.last_seq == 0


class TestHubResume:

    def setup_method(self):
        self.clock = FakeClock()
        self.hub = NotificationHub(
            InMemoryPresenceStore(),
            replay_buffer_size=2,
            resume_window_seconds=60,
            clock=self.clock,
        )

    async def _connect_and_drop(self, feed):
        await self.hub.register_session("c1", ActorRole.CUSTOMER, "cust-1", sender=feed)
        await self.hub.publish(order_event(EventKind.ORDER_CONFIRMED))
        assert await self.hub.unregister_session("c1")

    async def test_reconnect_replays_missed_events_after_ack(self):
        await self._connect_and_drop(Feed())
        await self.hub.publish(order_event(EventKind.ORDER_PREPARING))
        await self.hub.publish(order_event(EventKind.ORDER_READY))

        feed = Feed()
        result = await self.hub.register_session(
            "c1", ActorRole.CUSTOMER, "cust-1", sender=feed, last_seq=1
        )

        assert result.resumed
        assert result.replayed == 2
        assert not result.reconcile_required
        assert feed.messages[0]["type"] == "registered"
        assert feed.kinds() == ["order_preparing", "order_ready"]
        assert [e["seq"] for e in feed.events] == [2, 3]

    async def test_overflowed_buffer_asks_for_reconciliation(self):
        await self._connect_and_drop(Feed())
        for kind in (EventKind.ORDER_PREPARING, EventKind.ORDER_READY, EventKind.ORDER_CANCELLED):
            await self.hub.publish(order_event(kind))

        feed = Feed()
        result = await self.hub.register_session(
            "c1", ActorRole.CUSTOMER, "cust-1", sender=feed, last_seq=1
        )

        assert result.resumed
        assert result.reconcile_required
        assert feed.kinds() == ["order_ready", "order_cancelled"]

    async def test_expired_window_starts_fresh(self):
        await self._connect_and_drop(Feed())
        self.clock.now += 61

        result = await self.hub.register_session(
            "c1", ActorRole.CUSTOMER, "cust-1", sender=Feed(), last_seq=1
        )

        assert not result.resumed
        assert result.reconcile_required

    async def test_only_same_role_and_scope_can_resume(self):
        await self._connect_and_drop(Feed())

        feed = Feed()
        result = await self.hub.register_session(
            "c1", ActorRole.CUSTOMER, "cust-2", sender=feed, last_seq=0
        )

        assert not result.resumed
        assert feed.events == []

    async def test_subscriptions_survive_a_resume(self):
        await self.hub.register_session("d1", ActorRole.DRIVER, "D1", sender=Feed())
        await self.hub.subscribe_to_order("d1", 5)
        await self.hub.unregister_session("d1")

        feed = Feed()
        result = await self.hub.register_session("d1", ActorRole.DRIVER, "D1", sender=feed)
        await self.hub.publish(order_event(EventKind.DRIVER_LOCATION_UPDATE, order_id=5))

        assert result.session.subscriptions == {5}
        assert feed.kinds() == ["driver_location_update"]

    async def test_fresh_session_without_last_seq_needs_no_reconcile(self):
        result = await self.hub.register_session("k9", ActorRole.KITCHEN, sender=Feed())
        assert not result.reconcile_required

    async def test_unregister_unknown(self):
        assert not await self.hub.unregister_session("ghost")


@pytest.mark.parametrize("role", [ActorRole.KITCHEN, ActorRole.ADMIN])
async def test_presence_count(role):
    presence = InMemoryPresenceStore()
    hub = NotificationHub(presence)
    await hub.register_session("s1", role, sender=Feed())
    assert await presence.count() == 1
    await hub.unregister_session("s1")
    assert await presence.count() == 0
