"""
Driver Location Relay

Ingests driver position reports and republishes them to the sessions tracking
that driver's active orders. Positions are last-write-wins and kept in memory
only; nothing here touches the order or item locks.
"""

import logging
import math
import numbers
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orderflow.core.exceptions import InvalidLocation, ValidationFailed
from orderflow.events import DomainEvent, EventKind, utcnow
from orderflow.models import Order, OrderStatus

logger = logging.getLogger(__name__)

Publisher = Callable[[DomainEvent], Awaitable[object]]
RouteLookup = Callable[[str], Awaitable[list[tuple[int, str]]]]

ON_ROUTE_STATUSES = (OrderStatus.READY, OrderStatus.OUT_FOR_DELIVERY)


@dataclass(frozen=True)
class DriverPosition:
    driver_id: str
    latitude: float
    longitude: float
    speed: float
    heading: float
    recorded_at: datetime

    def to_dict(self) -> dict:
        return {
            "driver_id": self.driver_id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "speed": self.speed,
            "heading": self.heading,
            "recorded_at": self.recorded_at.isoformat(),
        }


@dataclass
class LocationReport:
    """Outcome of one report."""
    accepted: bool
    position: Optional[DriverPosition] = None
    order_ids: tuple[int, ...] = ()
    reason: Optional[str] = None


def orders_on_route(session_factory: async_sessionmaker[AsyncSession]) -> RouteLookup:
    """Lookup of (order id, customer id) pairs a driver is currently delivering."""

    async def lookup(driver_id: str) -> list[tuple[int, str]]:
        async with session_factory() as session:
            result = await session.execute(
                select(Order.id, Order.customer_id)
                .where(Order.driver_id == driver_id)
                .where(Order.status.in_(ON_ROUTE_STATUSES))
                .order_by(Order.id)
            )
            return [(order_id, customer_id) for order_id, customer_id in result.all()]

    return lookup


def _is_number(value) -> bool:
    # bool is an int subclass
    return (
        isinstance(value, numbers.Real)
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def validate_coordinates(latitude: Optional[float], longitude: Optional[float]) -> None:
    if not _is_number(latitude) or not _is_number(longitude):
        raise InvalidLocation(latitude, longitude)
    if not (-90 <= latitude <= 90) or not (-180 <= longitude <= 180):
        raise InvalidLocation(latitude, longitude)


class DriverLocationRelay:
    """Latest driver positions and their republication."""

    def __init__(
        self,
        route_lookup: RouteLookup,
        publisher: Optional[Publisher] = None,
        stale_after_seconds: float = 30,
    ):
        self._route_lookup = route_lookup
        self._publisher = publisher
        self._stale_after = stale_after_seconds
        self._positions: dict[str, DriverPosition] = {}

    async def report_location(
        self,
        driver_id: str,
        latitude: float,
        longitude: float,
        speed: float = 0.0,
        heading: float = 0.0,
        recorded_at: Optional[datetime] = None,
    ) -> LocationReport:
        """
        Store and republish one position report.

        Reports older than the staleness window, or older than the position
        already stored, are discarded (accepted=False) rather than queued.

        Raises:
            InvalidLocation: If coordinates are missing, not numbers or out of range
            ValidationFailed: If speed or heading is not a number
        """
        validate_coordinates(latitude, longitude)
        for name, value in (("speed", speed), ("heading", heading)):
            if value is not None and not _is_number(value):
                raise ValidationFailed(f"{name} must be a number (got {value!r})")

        now = utcnow()
        recorded_at = recorded_at or now
        if recorded_at.tzinfo is None:
            recorded_at = recorded_at.replace(tzinfo=timezone.utc)
        # device clocks run ahead; a future stamp would block later reports
        recorded_at = min(recorded_at, now)
        age = (now - recorded_at).total_seconds()
        if age > self._stale_after:
            logger.debug(f"Driver {driver_id}: discarded report {age:.0f}s old")
            return LocationReport(accepted=False, reason="stale")

        current = self._positions.get(driver_id)
        if current is not None and recorded_at < current.recorded_at:
            logger.debug(f"Driver {driver_id}: discarded out-of-order report")
            return LocationReport(accepted=False, position=current, reason="out_of_order")

        position = DriverPosition(
            driver_id=driver_id,
            latitude=latitude,
            longitude=longitude,
            speed=speed or 0.0,
            heading=heading or 0.0,
            recorded_at=recorded_at,
        )
        self._positions[driver_id] = position

        try:
            route = await self._route_lookup(driver_id)
        except Exception as e:
            logger.error(f"Driver {driver_id}: route lookup failed, position not relayed: {e}")
            return LocationReport(accepted=True, position=position)

        for order_id, customer_id in route:
            await self._publish(DomainEvent(
                kind=EventKind.DRIVER_LOCATION_UPDATE,
                payload=position.to_dict(),
                order_id=order_id,
                customer_id=customer_id,
                driver_id=driver_id,
                occurred_at=recorded_at,
            ))

        return LocationReport(
            accepted=True,
            position=position,
            order_ids=tuple(order_id for order_id, _ in route),
        )

    def latest(self, driver_id: Optional[str]) -> Optional[DriverPosition]:
        """Last accepted position of the driver, if any."""
        if not driver_id:
            return None
        return self._positions.get(driver_id)

    async def _publish(self, event: DomainEvent) -> None:
        if self._publisher is None:
            return
        try:
            await self._publisher(event)
        except Exception as e:
            logger.warning(f"Location relay publish failed for order #{event.order_id}: {e}")
