"""
Driver Location Relay Tests
"""

from datetime import datetime, timedelta, timezone

import pytest

from orderflow.core.exceptions import InvalidLocation, ValidationFailed
from orderflow.events import EventKind
from orderflow.models import OrderStatus
from orderflow.services.location import DriverLocationRelay
from tests.helpers import (
    ADMIN,
    CUSTOMER,
    DRIVER,
    OTHER_DRIVER,
    TO_READY,
    Feed,
    advance,
    place_order,
)


def utc_ago(seconds: float) -> datetime:
    return datetime.now(timezone.utc) - timedelta(seconds=seconds)


class TestDriverLocationRelay:

    def setup_method(self):
        self.routes = {"D1": [(11, "cust-1"), (12, "cust-2")]}
        self.published = []

        async def lookup(driver_id):
            return self.routes.get(driver_id, [])

        async def publish(event):
            self.published.append(event)

        self.relay = DriverLocationRelay(lookup, publisher=publish, stale_after_seconds=30)

    @pytest.mark.parametrize("lat, lng", [
        (90.5, 0.0),
        (-91, 0.0),
        (0.0, 180.01),
        (0.0, -181),
        (None, 10.0),
        (10.0, None),
        ("abc", 1.0),
        ("40.7", -73.9),
        (True, 1.0),
        (float("nan"), 0.0),
    ])
    async def test_rejects_bad_coordinates(self, lat, lng):
        with pytest.raises(InvalidLocation):
            await self.relay.report_location("D1", lat, lng)
        assert self.relay.latest("D1") is None

    async def test_rejects_non_numeric_speed_and_heading(self):
        with pytest.raises(ValidationFailed):
            await self.relay.report_location("D1", 1.0, 1.0, speed="fast")
        with pytest.raises(ValidationFailed):
            await self.relay.report_location("D1", 1.0, 1.0, heading=[90])
        assert self.relay.latest("D1") is None

    async def test_accepts_boundaries(self):
        report = await self.relay.report_location("D9", -90, 180)
        assert report.accepted

    async def test_republishes_to_each_active_order(self):
        report = await self.relay.report_location("D1", 40.75, -73.98, speed=8.5, heading=270)

        assert report.accepted
        assert report.order_ids == (11, 12)
        assert [e.order_id for e in self.published] == [11, 12]
        assert [e.customer_id for e in self.published] == ["cust-1", "cust-2"]
        event = self.published[0]
        assert event.kind == EventKind.DRIVER_LOCATION_UPDATE
        assert event.payload["latitude"] == 40.75
        assert event.payload["heading"] == 270

    async def test_last_write_wins(self):
        await self.relay.report_location("D1", 1.0, 1.0, recorded_at=utc_ago(10))
        await self.relay.report_location("D1", 2.0, 2.0, recorded_at=utc_ago(5))
        assert self.relay.latest("D1").latitude == 2.0

    async def test_stale_report_is_discarded(self):
        report = await self.relay.report_location("D1", 1.0, 1.0, recorded_at=utc_ago(60))

        assert not report.accepted
        assert report.reason == "stale"
        assert self.published == []
        assert self.relay.latest("D1") is None

    async def test_out_of_order_report_is_discarded(self):
        await self.relay.report_location("D1", 1.0, 1.0, recorded_at=utc_ago(5))
        self.published.clear()

        report = await self.relay.report_location("D1", 2.0, 2.0, recorded_at=utc_ago(10))

        assert not report.accepted
        assert report.reason == "out_of_order"
        assert self.relay.latest("D1").latitude == 1.0
        assert self.published == []

    async def test_naive_and_future_timestamps(self):
        naive = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(seconds=2)
        assert (await self.relay.report_location("D1", 1.0, 1.0, recorded_at=naive)).accepted

        future = datetime.now(timezone.utc) + timedelta(hours=1)
        report = await self.relay.report_location("D1", 2.0, 2.0, recorded_at=future)
        assert report.accepted
        assert report.position.recorded_at <= datetime.now(timezone.utc)

    async def test_driver_without_route_is_accepted_silently(self):
        report = await self.relay.report_location("D7", 1.0, 1.0)

        assert report.accepted
        assert report.order_ids == ()
        assert self.published == []
        assert self.relay.latest("D7") is not None

    async def test_route_lookup_failure_keeps_position(self):
        async def broken(driver_id):
            raise ConnectionError("database gone")

        relay = DriverLocationRelay(broken)
        report = await relay.report_location("D1", 1.0, 1.0)

        assert report.accepted
        assert relay.latest("D1") is not None

    def test_latest_without_driver(self):
        assert self.relay.latest(None) is None


class TestLocationFanOut:

    async def test_only_sessions_tracking_the_route_see_positions(self, container, catalogue):
        order = await place_order(container, catalogue)
        await advance(container, order.id, TO_READY)
        await container.orders.assign_driver(order.id, DRIVER.id, ADMIN)

        tracker, other_driver, admin = Feed(), Feed(), Feed()
        await container.hub.register_session("c", CUSTOMER.role, CUSTOMER.id, sender=tracker)
        await container.hub.subscribe_to_order("c", order.id)
        await container.hub.register_session("d2", OTHER_DRIVER.role, OTHER_DRIVER.id, sender=other_driver)
        await container.hub.register_session("a", ADMIN.role, sender=admin)

        report = await container.locations.report_location(DRIVER.id, 40.7, -73.9)

        assert report.order_ids == (order.id,)
        assert tracker.kinds() == ["driver_location_update"]
        assert other_driver.events == []
        assert admin.events == []

    async def test_reports_after_delivery_reach_nobody(self, container, catalogue):
        order = await place_order(container, catalogue)
        await advance(container, order.id, TO_READY)
        await container.orders.assign_driver(order.id, DRIVER.id, ADMIN)
        await advance(container, order.id, [
            (OrderStatus.OUT_FOR_DELIVERY, DRIVER),
            (OrderStatus.DELIVERED, DRIVER),
        ])

        report = await container.locations.report_location(DRIVER.id, 40.7, -73.9)

        assert report.accepted
        assert report.order_ids == ()
