"""
Payment Webhook Processing

Turns verified payment-provider events into order transitions made as the
system actor:

    payment_intent.succeeded       → CONFIRMED       (payment PAID)
    payment_intent.payment_failed  → PAYMENT_FAILED  (payment FAILED)
    payment_intent.canceled        → CANCELLED       (payment CANCELLED)

Providers retry deliveries, so every handled event id is stored and a replay
is acknowledged without touching the order. An order that already moved past
the target state is acknowledged as a no-op as well, and so is a failure or
cancellation for an order that is no longer waiting for its payment.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orderflow.core.exceptions import IllegalTransition, InvalidWebhook, OrderNotFound
from orderflow.core.security import SYSTEM_ACTOR
from orderflow.events import utcnow
from orderflow.models import Order, OrderStatus, PaymentWebhookEvent
from orderflow.services.order_state import OrderStateMachine
from orderflow.services.payment.base import BasePaymentService

logger = logging.getLogger(__name__)


EVENT_TARGETS = {
    "payment_intent.succeeded": OrderStatus.CONFIRMED,
    "payment_intent.payment_failed": OrderStatus.PAYMENT_FAILED,
    "payment_intent.canceled": OrderStatus.CANCELLED,
}

# providers do not order their events: a decline or cancellation that
# arrives after the payment went through must not undo a paid order
EVENT_SOURCES = {
    OrderStatus.PAYMENT_FAILED: frozenset({OrderStatus.PENDING}),
    OrderStatus.CANCELLED: frozenset({OrderStatus.PENDING}),
}

EVENT_MESSAGES = {
    OrderStatus.CONFIRMED: "Payment received, order confirmed and sent to kitchen",
    OrderStatus.PAYMENT_FAILED: "Payment failed, order not placed",
    OrderStatus.CANCELLED: "Payment was cancelled",
}


@dataclass
class WebhookOutcome:
    event_id: str
    event_type: str
    outcome: str
    order_id: Optional[int] = None
    status: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "received": True,
            "event_id": self.event_id,
            "event_type": self.event_type,
            "outcome": self.outcome,
            "order_id": self.order_id,
            "status": self.status,
        }


class PaymentWebhookProcessor:
    """Verifies, deduplicates and applies payment webhooks."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        payment_service: BasePaymentService,
        state_machine: OrderStateMachine,
    ):
        self._session_factory = session_factory
        self._payment = payment_service
        self._state_machine = state_machine

    async def process(self, payload: bytes, signature: Optional[str]) -> WebhookOutcome:
        """
        Handle one webhook delivery.

        Raises:
            InvalidWebhook: If the payload fails verification or is malformed
            LockTimeout: If the order is busy; the provider will retry
        """
        event = await self._payment.verify_webhook(payload, signature)
        if event is None:
            raise InvalidWebhook("Webhook verification failed")

        event_id = event.get("id")
        event_type = event.get("type")
        intent = (event.get("data") or {}).get("object") or {}
        if not event_id or not event_type:
            raise InvalidWebhook("Webhook event is missing its id or type")

        logger.info(f"Payment webhook {event_id}: {event_type}")

        if await self._already_handled(event_id):
            logger.info(f"Payment webhook {event_id} already handled, ignoring replay")
            return WebhookOutcome(event_id, event_type, "duplicate")

        target = EVENT_TARGETS.get(event_type)
        if target is None:
            logger.debug(f"Payment webhook {event_id}: unhandled type {event_type}")
            return WebhookOutcome(event_id, event_type, "ignored")

        order_id = await self._resolve_order_id(intent)
        if order_id is None:
            logger.warning(
                f"Payment webhook {event_id}: no order for intent {intent.get('id')}"
            )
            await self._record(event_id, event_type, None, "order_not_found")
            return WebhookOutcome(event_id, event_type, "order_not_found")

        try:
            result = await self._state_machine.transition(
                order_id,
                target,
                SYSTEM_ACTOR,
                message=EVENT_MESSAGES[target],
                metadata={
                    "provider_event_id": event_id,
                    "payment_intent_id": intent.get("id"),
                },
                only_from=EVENT_SOURCES.get(target),
            )
            outcome = WebhookOutcome(
                event_id, event_type, "applied", order_id, result.order.status.value
            )
        except IllegalTransition as e:
            logger.info(
                f"Payment webhook {event_id}: order #{order_id} is already "
                f"{e.current}, nothing to do"
            )
            outcome = WebhookOutcome(event_id, event_type, "no_op", order_id, e.current)
        except OrderNotFound:
            logger.warning(f"Payment webhook {event_id}: order #{order_id} does not exist")
            outcome = WebhookOutcome(event_id, event_type, "order_not_found", order_id)

        await self._record(event_id, event_type, outcome.order_id, outcome.outcome)
        return outcome

    async def _already_handled(self, event_id: str) -> bool:
        async with self._session_factory() as session:
            return await session.get(PaymentWebhookEvent, event_id) is not None

    async def _resolve_order_id(self, intent: dict[str, Any]) -> Optional[int]:
        metadata = intent.get("metadata") or {}
        raw = metadata.get("order_id")
        if raw is not None:
            try:
                return int(raw)
            except (TypeError, ValueError):
                logger.warning(f"Payment webhook carries a malformed order_id: {raw!r}")

        intent_id = intent.get("id")
        if not intent_id:
            return None
        async with self._session_factory() as session:
            return await session.scalar(
                select(Order.id).where(Order.payment_intent_id == intent_id)
            )

    async def _record(
        self, event_id: str, event_type: str, order_id: Optional[int], outcome: str
    ) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(PaymentWebhookEvent(
                        provider_event_id=event_id,
                        event_type=event_type,
                        order_id=order_id,
                        outcome=outcome,
                        received_at=utcnow(),
                    ))
        except IntegrityError:
            # a concurrent delivery of the same event got there first
            logger.info(f"Payment webhook {event_id} recorded concurrently")
