"""
Tracking Ledger

Append-only history of an order's status changes. Entries are written inside
the transition's transaction and never updated or deleted; the ascending
history is what a reconnecting client replays to catch up.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orderflow.core.exceptions import OrderNotFound
from orderflow.models import Order, OrderStatus, OrderTracking

logger = logging.getLogger(__name__)


DEFAULT_STATUS_MESSAGES = {
    OrderStatus.CONFIRMED: "Order confirmed and sent to kitchen",
    OrderStatus.PREPARING: "Kitchen is preparing your order",
    OrderStatus.READY: "Order is ready for pickup/delivery",
    OrderStatus.OUT_FOR_DELIVERY: "Driver is on the way",
    OrderStatus.DELIVERED: "Order has been delivered",
    OrderStatus.CANCELLED: "Order has been cancelled",
    OrderStatus.PAYMENT_FAILED: "Payment failed, order not placed",
}


def default_message(status: OrderStatus) -> str:
    return DEFAULT_STATUS_MESSAGES.get(status, f"Order status: {status.value}")


class TrackingLedger:
    """Reads and appends order tracking entries."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def append_entry(
        self,
        session: AsyncSession,
        order_id: int,
        status: OrderStatus,
        message: str,
        timestamp: datetime,
        metadata: Optional[dict[str, Any]] = None,
    ) -> OrderTracking:
        """
        Append one entry in the caller's transaction.

        The entry becomes visible when the caller commits, together with the
        status change it records.
        """
        entry = OrderTracking(
            order_id=order_id,
            status=status,
            message=message,
            timestamp=timestamp,
            details=metadata,
        )
        session.add(entry)
        await session.flush()
        logger.debug(f"Tracking entry appended: order #{order_id} -> {status.value}")
        return entry

    async def get_history(self, order_id: int) -> list[OrderTracking]:
        """
        Every entry for the order, oldest first.

        Raises:
            OrderNotFound: If the order does not exist
        """
        async with self._session_factory() as session:
            exists = await session.scalar(select(Order.id).where(Order.id == order_id))
            if exists is None:
                raise OrderNotFound(order_id)
            return await self.history_in(session, order_id)

    @staticmethod
    async def history_in(session: AsyncSession, order_id: int) -> list[OrderTracking]:
        """Ascending history using an already-open session."""
        result = await session.execute(
            select(OrderTracking)
            .where(OrderTracking.order_id == order_id)
            .order_by(OrderTracking.timestamp.asc(), OrderTracking.id.asc())
        )
        return list(result.scalars().all())
