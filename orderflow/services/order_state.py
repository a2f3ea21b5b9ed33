"""
Order State Machine

Owns the canonical status of an order and the only code path that changes it.

Transition graph:

    PENDING → CONFIRMED → PREPARING → READY → OUT_FOR_DELIVERY → DELIVERED

CANCELLED and PAYMENT_FAILED are terminal failure states reachable from any
state before DELIVERED. Terminal orders never change again.

Every transition runs under the per-order lock and one database transaction:
the status change, its tracking entry and (on the first confirmation) the
ingredient consumption commit together. Live events go out after the commit
while the order lock is still held, so subscribers see an order's events in
the order they happened; customer SMS/e-mail follows once the lock is gone.
"""

import logging
from contextlib import AsyncExitStack
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orderflow.core.exceptions import (
    IllegalTransition,
    MissingDriverAssignment,
    OrderNotFound,
    StateConflict,
    Unauthorized,
)
from orderflow.core.locks import KeyedLockRegistry, order_key
from orderflow.core.security import Actor, ActorRole
from orderflow.events import DomainEvent, EventKind, status_event, utcnow
from orderflow.models import Order, OrderStatus, OrderTracking, PaymentStatus
from orderflow.services.inventory import ConsumptionResult, InventoryLedger
from orderflow.services.notifications.base import StatusNotice
from orderflow.services.notifications.dispatch import StatusNotifier
from orderflow.services.tracking import TrackingLedger, default_message

logger = logging.getLogger(__name__)

Publisher = Callable[[DomainEvent], Awaitable[object]]


# =============================================================================
# TRANSITION RULES
# =============================================================================

FAILURE_STATUSES = frozenset({OrderStatus.CANCELLED, OrderStatus.PAYMENT_FAILED})

FORWARD = {
    OrderStatus.PENDING: OrderStatus.CONFIRMED,
    OrderStatus.CONFIRMED: OrderStatus.PREPARING,
    OrderStatus.PREPARING: OrderStatus.READY,
    OrderStatus.READY: OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.OUT_FOR_DELIVERY: OrderStatus.DELIVERED,
}

TRANSITIONS: dict[OrderStatus, frozenset] = {
    status: frozenset({successor}) | FAILURE_STATUSES
    for status, successor in FORWARD.items()
}

EDGE_ROLES = {
    OrderStatus.CONFIRMED: frozenset({ActorRole.SYSTEM, ActorRole.ADMIN}),
    OrderStatus.PREPARING: frozenset({ActorRole.KITCHEN, ActorRole.ADMIN}),
    OrderStatus.READY: frozenset({ActorRole.KITCHEN, ActorRole.ADMIN}),
    OrderStatus.OUT_FOR_DELIVERY: frozenset({ActorRole.DRIVER, ActorRole.KITCHEN, ActorRole.ADMIN}),
    OrderStatus.DELIVERED: frozenset({ActorRole.DRIVER, ActorRole.ADMIN}),
    OrderStatus.PAYMENT_FAILED: frozenset({ActorRole.SYSTEM, ActorRole.ADMIN}),
    OrderStatus.CANCELLED: frozenset({ActorRole.SYSTEM, ActorRole.ADMIN, ActorRole.KITCHEN}),
}

# a customer may still call off their own order before the kitchen starts on it
CUSTOMER_CANCELLABLE = frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED})

DRIVER_ASSIGNABLE = frozenset({
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.READY,
})
ASSIGNING_ROLES = frozenset({ActorRole.ADMIN, ActorRole.KITCHEN})

# what the kitchen screen works through, and what a driver carries
KITCHEN_QUEUE = (OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.READY)
DRIVER_QUEUE = (OrderStatus.READY, OrderStatus.OUT_FOR_DELIVERY)


def is_legal(current: OrderStatus, target: OrderStatus) -> bool:
    """True if ``target`` is a direct successor of ``current``."""
    return target in TRANSITIONS.get(current, frozenset())


def check_can_view(order: Order, actor: Actor) -> None:
    """
    Read access to one order.

    Staff see everything, customers their own orders, drivers the orders
    assigned to them.

    Raises:
        Unauthorized: If the actor may not see the order
    """
    if actor.is_staff or actor.role == ActorRole.SYSTEM:
        return
    if actor.role == ActorRole.CUSTOMER and order.customer_id == actor.id:
        return
    if actor.role == ActorRole.DRIVER and order.driver_id == actor.id:
        return
    raise Unauthorized(f"{actor.role.value} {actor.id} may not view order #{order.id}")


@dataclass
class TransitionResult:
    """A committed transition."""
    order: Order
    entry: OrderTracking
    previous_status: OrderStatus
    event: DomainEvent
    consumption: Optional[ConsumptionResult] = None

    @property
    def message(self) -> str:
        return self.entry.message


class OrderStateMachine:
    """Validated status transitions and their side effects."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        locks: KeyedLockRegistry,
        tracking: TrackingLedger,
        inventory: InventoryLedger,
        publisher: Optional[Publisher] = None,
        notifier: Optional[StatusNotifier] = None,
        estimated_delivery_buffer_minutes: int = 25,
    ):
        self._session_factory = session_factory
        self._locks = locks
        self._tracking = tracking
        self._inventory = inventory
        self._publisher = publisher
        self._notifier = notifier
        self._delivery_buffer = timedelta(minutes=estimated_delivery_buffer_minutes)

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    async def transition(
        self,
        order_id: int,
        target: OrderStatus,
        actor: Actor,
        message: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
        only_from: Optional[frozenset] = None,
    ) -> TransitionResult:
        """
        Move an order to ``target``.

        ``only_from`` narrows the legal source states for this one call; it
        is checked under the order lock together with the graph.

        Raises:
            OrderNotFound: If the order does not exist
            IllegalTransition: If ``target`` is not a direct successor
            Unauthorized: If the actor may not take this edge
            MissingDriverAssignment: OUT_FOR_DELIVERY without a driver
            LockTimeout: If another request holds the order for too long
        """
        async with self._locks.hold(order_key(order_id)):
            async with AsyncExitStack() as held:
                async with self._session_factory() as session:
                    async with session.begin():
                        order = await self._load_order(session, order_id)
                        previous = order.status
                        if only_from is not None and previous not in only_from:
                            raise IllegalTransition(order.id, previous.value, target.value)
                        self._authorize(order, target, actor)

                        now = utcnow()
                        consumption = None
                        if target == OrderStatus.CONFIRMED and previous == OrderStatus.PENDING:
                            consumption = await self._inventory.consume_in(
                                session, order, held, performed_by=actor.id
                            )

                        self._apply(order, target, now)
                        text = message or default_message(target)
                        entry = await self._tracking.append_entry(
                            session, order.id, target, text, now, metadata
                        )

            logger.info(
                f"Order #{order.id} {previous.value} → {target.value} by "
                f"{actor.role.value}:{actor.id}"
            )
            event = status_event(order, text, now)
            await self._publish(event)
            if consumption is not None:
                for alert in consumption.alerts:
                    await self._publish(alert)

        await self._notify(StatusNotice.from_order(order, text))
        return TransitionResult(
            order=order,
            entry=entry,
            previous_status=previous,
            event=event,
            consumption=consumption,
        )

    async def assign_driver(self, order_id: int, driver_id: str, actor: Actor) -> Order:
        """
        Assign (or reassign) the delivering driver.

        Allowed while the order is CONFIRMED, PREPARING or READY. Does not
        change the status and writes no tracking entry.
        """
        if actor.role not in ASSIGNING_ROLES:
            raise Unauthorized(f"{actor.role.value} may not assign drivers")
        if not driver_id:
            raise StateConflict(f"Order #{order_id}: driver id is required")

        async with self._locks.hold(order_key(order_id)):
            async with self._session_factory() as session:
                async with session.begin():
                    order = await self._load_order(session, order_id)
                    if order.status not in DRIVER_ASSIGNABLE:
                        raise StateConflict(
                            f"Order #{order.id} is {order.status.value} and cannot be "
                            "assigned a driver"
                        )
                    previous_driver = order.driver_id
                    order.driver_id = driver_id
                    assigned_at = utcnow()

            logger.info(
                f"Order #{order.id}: driver {driver_id} assigned"
                + (f" (was {previous_driver})" if previous_driver else "")
            )
            await self._publish(DomainEvent(
                kind=EventKind.DRIVER_ASSIGNED,
                payload={
                    "order_number": order.order_number,
                    "driver_id": driver_id,
                    "previous_driver_id": previous_driver,
                    "status": order.status.value,
                    "assigned_at": assigned_at.isoformat(),
                },
                order_id=order.id,
                customer_id=order.customer_id,
                driver_id=driver_id,
                occurred_at=assigned_at,
            ))
        return order

    # =========================================================================
    # READS
    # =========================================================================

    async def get_order(self, order_id: int) -> Order:
        """Current committed state of an order. Never waits on the order lock."""
        async with self._session_factory() as session:
            order = await session.get(Order, order_id)
            if order is None:
                raise OrderNotFound(order_id)
            return order

    async def list_orders(
        self, statuses, driver_id: Optional[str] = None
    ) -> list[Order]:
        """Orders in any of ``statuses``, oldest first. Never waits on order locks."""
        query = (
            select(Order)
            .where(Order.status.in_(tuple(statuses)))
            .order_by(Order.created_at, Order.id)
        )
        if driver_id is not None:
            query = query.where(Order.driver_id == driver_id)
        async with self._session_factory() as session:
            result = await session.scalars(query)
            return list(result.all())

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    async def _load_order(session: AsyncSession, order_id: int) -> Order:
        order = await session.scalar(
            select(Order).where(Order.id == order_id).with_for_update()
        )
        if order is None:
            raise OrderNotFound(order_id)
        return order

    @staticmethod
    def _authorize(order: Order, target: OrderStatus, actor: Actor) -> None:
        current = order.status
        if not is_legal(current, target):
            raise IllegalTransition(order.id, current.value, target.value)

        allowed = EDGE_ROLES[target]
        customer_cancel = (
            target == OrderStatus.CANCELLED
            and actor.role == ActorRole.CUSTOMER
            and current in CUSTOMER_CANCELLABLE
        )
        if customer_cancel:
            if order.customer_id != actor.id:
                raise Unauthorized(f"Order #{order.id} belongs to another customer")
        elif actor.role not in allowed:
            raise Unauthorized(
                f"{actor.role.value} may not move order #{order.id} "
                f"from {current.value} to {target.value}"
            )

        if target == OrderStatus.OUT_FOR_DELIVERY and not order.driver_id:
            raise MissingDriverAssignment(order.id)

        if (
            actor.role == ActorRole.DRIVER
            and target in (OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED)
            and order.driver_id != actor.id
        ):
            raise Unauthorized(f"Order #{order.id} is assigned to another driver")

    def _apply(self, order: Order, target: OrderStatus, now: datetime) -> None:
        order.status = target

        if target == OrderStatus.CONFIRMED:
            order.payment_status = PaymentStatus.PAID
            order.paid_at = order.paid_at or now
        elif target == OrderStatus.READY:
            if order.estimated_delivery is None:
                order.estimated_delivery = now + self._delivery_buffer
        elif target == OrderStatus.DELIVERED:
            order.delivered_at = now
            order.actual_delivery = now
        elif target == OrderStatus.CANCELLED:
            order.cancelled_at = now
            if order.payment_status == PaymentStatus.PENDING:
                order.payment_status = PaymentStatus.CANCELLED
        elif target == OrderStatus.PAYMENT_FAILED:
            order.payment_status = PaymentStatus.FAILED

    async def _publish(self, event: DomainEvent) -> None:
        if self._publisher is None:
            return
        try:
            await self._publisher(event)
        except Exception as e:
            logger.error(f"Failed to publish {event.kind.value} for order #{event.order_id}: {e}")

    async def _notify(self, notice: StatusNotice) -> None:
        if self._notifier is None:
            return
        try:
            await self._notifier.notify(notice)
        except Exception as e:
            logger.error(f"Order #{notice.order_id}: customer notification failed: {e}")
