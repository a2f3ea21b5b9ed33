"""
Event Routing

Pure mapping from a domain event to the audience scopes entitled to it.
Sessions carry scopes too (see LiveSession.scopes); an event reaches a
session when the two sets intersect.

Scopes:
    kitchen            every kitchen screen
    admin              every admin dashboard
    customer:<id>      all sessions of one customer
    driver:<id>        all sessions of one driver
    order:<id>         sessions explicitly tracking one order
"""

from orderflow.events import DomainEvent, EventKind

KITCHEN = "kitchen"
ADMIN = "admin"


def customer_scope(customer_id: str) -> str:
    return f"customer:{customer_id}"


def driver_scope(driver_id: str) -> str:
    return f"driver:{driver_id}"


def order_scope(order_id: int) -> str:
    return f"order:{order_id}"


ORDER_PROGRESS_KINDS = frozenset({
    EventKind.ORDER_CONFIRMED,
    EventKind.ORDER_PREPARING,
    EventKind.ORDER_READY,
    EventKind.ORDER_OUT_FOR_DELIVERY,
    EventKind.ORDER_DELIVERED,
    EventKind.ORDER_CANCELLED,
    EventKind.ORDER_PAYMENT_FAILED,
})

# status changes the assigned driver must hear about
DRIVER_RELEVANT_KINDS = frozenset({
    EventKind.ORDER_READY,
    EventKind.ORDER_CANCELLED,
})


def routing_targets(event: DomainEvent) -> set[str]:
    """Scopes entitled to receive ``event``."""
    targets: set[str] = set()

    if event.kind in ORDER_PROGRESS_KINDS:
        targets.update({KITCHEN, ADMIN})
        if event.customer_id:
            targets.add(customer_scope(event.customer_id))
        if event.order_id is not None:
            targets.add(order_scope(event.order_id))
        if event.driver_id and event.kind in DRIVER_RELEVANT_KINDS:
            targets.add(driver_scope(event.driver_id))

    elif event.kind == EventKind.DRIVER_ASSIGNED:
        targets.add(ADMIN)
        if event.customer_id:
            targets.add(customer_scope(event.customer_id))
        if event.driver_id:
            targets.add(driver_scope(event.driver_id))
        if event.order_id is not None:
            targets.add(order_scope(event.order_id))

    elif event.kind == EventKind.DRIVER_LOCATION_UPDATE:
        # only sessions tracking this route; never a broadcast to drivers
        if event.order_id is not None:
            targets.add(order_scope(event.order_id))

    elif event.kind == EventKind.INVENTORY_ALERT:
        targets.update({KITCHEN, ADMIN})

    return targets
