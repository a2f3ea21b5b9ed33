"""
Domain Events

The unit published through the live fan-out. Events are transient: anything
a client needs after missing one can be rebuilt from the order tracking
history.
"""

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from orderflow.models import OrderStatus


class EventKind(str, enum.Enum):
    ORDER_CONFIRMED = "order_confirmed"
    ORDER_PREPARING = "order_preparing"
    ORDER_READY = "order_ready"
    ORDER_OUT_FOR_DELIVERY = "order_out_for_delivery"
    ORDER_DELIVERED = "order_delivered"
    ORDER_CANCELLED = "order_cancelled"
    ORDER_PAYMENT_FAILED = "order_payment_failed"
    DRIVER_ASSIGNED = "driver_assigned"
    DRIVER_LOCATION_UPDATE = "driver_location_update"
    INVENTORY_ALERT = "inventory_alert"


STATUS_EVENT_KINDS = {
    OrderStatus.CONFIRMED: EventKind.ORDER_CONFIRMED,
    OrderStatus.PREPARING: EventKind.ORDER_PREPARING,
    OrderStatus.READY: EventKind.ORDER_READY,
    OrderStatus.OUT_FOR_DELIVERY: EventKind.ORDER_OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED: EventKind.ORDER_DELIVERED,
    OrderStatus.CANCELLED: EventKind.ORDER_CANCELLED,
    OrderStatus.PAYMENT_FAILED: EventKind.ORDER_PAYMENT_FAILED,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DomainEvent:
    """
    A state change worth pushing to live sessions.

    ``customer_id`` and ``driver_id`` travel with the event so routing never
    needs a database read.
    """
    kind: EventKind
    payload: dict[str, Any] = field(default_factory=dict)
    order_id: Optional[int] = None
    customer_id: Optional[str] = None
    driver_id: Optional[str] = None
    occurred_at: datetime = field(default_factory=utcnow)
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "event_id": self.event_id,
            "kind": self.kind.value,
            "order_id": self.order_id,
            "driver_id": self.driver_id,
            "payload": self.payload,
            "occurred_at": self.occurred_at.isoformat(),
        }


def status_event(order, message: str, timestamp: datetime) -> DomainEvent:
    """Build the event announcing an order's new status."""
    payload = {
        "order_number": order.order_number,
        "status": order.status.value,
        "message": message,
        "timestamp": timestamp.isoformat(),
    }
    if order.estimated_delivery is not None:
        payload["estimated_delivery"] = order.estimated_delivery.isoformat()
    if order.delivered_at is not None:
        payload["delivered_at"] = order.delivered_at.isoformat()
    return DomainEvent(
        kind=STATUS_EVENT_KINDS[order.status],
        payload=payload,
        order_id=order.id,
        customer_id=order.customer_id,
        driver_id=order.driver_id,
        occurred_at=timestamp,
    )
