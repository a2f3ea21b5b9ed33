"""
Payment Webhook Tests

Mock payment service accepts unsigned JSON events shaped like Stripe's.
"""

import json

import pytest

from orderflow.core.exceptions import InvalidWebhook
from orderflow.models import OrderStatus, PaymentStatus
from tests.helpers import Feed, KITCHEN, place_order


def stripe_event(event_id, event_type, order=None, with_metadata=True, intent_id=None):
    intent = {"id": intent_id or (order.payment_intent_id if order else "pi_unknown")}
    if order is not None and with_metadata:
        intent["metadata"] = {"order_id": str(order.id), "order_number": order.order_number}
    return json.dumps({
        "id": event_id,
        "type": event_type,
        "data": {"object": intent},
    }).encode()


class TestPaymentWebhooks:

    async def test_success_confirms_and_consumes(self, container, catalogue):
        order = await place_order(container, catalogue)

        outcome = await container.webhooks.process(
            stripe_event("evt_1", "payment_intent.succeeded", order), None
        )

        assert outcome.outcome == "applied"
        assert outcome.status == "confirmed"
        stored = await container.orders.get_order(order.id)
        assert stored.status == OrderStatus.CONFIRMED
        assert stored.payment_status == PaymentStatus.PAID

        [entry] = await container.tracking.get_history(order.id)
        assert entry.details["provider_event_id"] == "evt_1"
        assert entry.details["payment_intent_id"] == order.payment_intent_id

    async def test_replayed_event_is_acknowledged_once(self, container, catalogue):
        kitchen_feed = Feed()
        await container.hub.register_session("k", KITCHEN.role, sender=kitchen_feed)
        order = await place_order(container, catalogue)
        payload = stripe_event("evt_1", "payment_intent.succeeded", order)

        first = await container.webhooks.process(payload, None)
        second = await container.webhooks.process(payload, None)

        assert first.outcome == "applied"
        assert second.outcome == "duplicate"
        assert kitchen_feed.kinds().count("order_confirmed") == 1
        dough = await container.inventory.get_item(catalogue.dough)
        assert dough.current_stock == pytest.approx(9.75)

    async def test_new_event_for_confirmed_order_is_a_no_op(self, container, catalogue):
        order = await place_order(container, catalogue)
        await container.webhooks.process(stripe_event("evt_1", "payment_intent.succeeded", order), None)

        outcome = await container.webhooks.process(
            stripe_event("evt_2", "payment_intent.succeeded", order), None
        )

        assert outcome.outcome == "no_op"
        assert outcome.status == "confirmed"
        assert len(await container.tracking.get_history(order.id)) == 1

    async def test_order_found_by_intent_id_alone(self, container, catalogue):
        order = await place_order(container, catalogue)

        outcome = await container.webhooks.process(
            stripe_event("evt_1", "payment_intent.succeeded", order, with_metadata=False), None
        )

        assert outcome.outcome == "applied"
        assert outcome.order_id == order.id

    async def test_payment_failure(self, container, catalogue):
        order = await place_order(container, catalogue)

        outcome = await container.webhooks.process(
            stripe_event("evt_f", "payment_intent.payment_failed", order), None
        )

        assert outcome.status == "payment_failed"
        stored = await container.orders.get_order(order.id)
        assert stored.payment_status == PaymentStatus.FAILED
        assert stored.status.is_terminal
        # nothing was consumed for an unpaid order
        dough = await container.inventory.get_item(catalogue.dough)
        assert dough.current_stock == pytest.approx(10.0)

    async def test_cancelled_intent(self, container, catalogue):
        order = await place_order(container, catalogue)
        outcome = await container.webhooks.process(
            stripe_event("evt_c", "payment_intent.canceled", order), None
        )
        assert outcome.status == "cancelled"
        stored = await container.orders.get_order(order.id)
        assert stored.payment_status == PaymentStatus.CANCELLED

    @pytest.mark.parametrize("late_type", [
        "payment_intent.payment_failed",
        "payment_intent.canceled",
    ])
    async def test_late_failure_does_not_undo_a_paid_order(self, container, catalogue, late_type):
        order = await place_order(container, catalogue)
        await container.webhooks.process(stripe_event("evt_ok", "payment_intent.succeeded", order), None)
        await container.orders.transition(order.id, OrderStatus.PREPARING, KITCHEN)

        outcome = await container.webhooks.process(stripe_event("evt_old", late_type, order), None)

        assert outcome.outcome == "no_op"
        assert outcome.status == "preparing"
        stored = await container.orders.get_order(order.id)
        assert stored.status == OrderStatus.PREPARING
        assert stored.payment_status == PaymentStatus.PAID
        assert len(await container.tracking.get_history(order.id)) == 2

    async def test_failure_while_confirmed_is_a_no_op(self, container, catalogue):
        order = await place_order(container, catalogue)
        await container.webhooks.process(stripe_event("evt_ok", "payment_intent.succeeded", order), None)

        outcome = await container.webhooks.process(
            stripe_event("evt_old", "payment_intent.payment_failed", order), None
        )

        assert outcome.outcome == "no_op"
        stored = await container.orders.get_order(order.id)
        assert stored.status == OrderStatus.CONFIRMED
        assert stored.payment_status == PaymentStatus.PAID

    async def test_unhandled_type_is_ignored(self, container):
        outcome = await container.webhooks.process(stripe_event("evt_x", "charge.refunded"), None)
        assert outcome.outcome == "ignored"

    async def test_unknown_order(self, container, catalogue):
        outcome = await container.webhooks.process(
            stripe_event("evt_n", "payment_intent.succeeded", intent_id="pi_nobody"), None
        )
        assert outcome.outcome == "order_not_found"

        again = await container.webhooks.process(
            stripe_event("evt_n", "payment_intent.succeeded", intent_id="pi_nobody"), None
        )
        assert again.outcome == "duplicate"

    @pytest.mark.parametrize("payload", [
        b"not json",
        b"[1, 2, 3]",
        json.dumps({"id": "evt_1"}).encode(),
        json.dumps({"type": "payment_intent.succeeded"}).encode(),
    ])
    async def test_malformed_payloads(self, container, payload):
        with pytest.raises(InvalidWebhook):
            await container.webhooks.process(payload, None)

    def test_outcome_body(self):
        from orderflow.services.webhooks import WebhookOutcome

        body = WebhookOutcome("evt_1", "payment_intent.succeeded", "applied", 4, "confirmed").to_dict()
        assert body["received"] is True
        assert body["outcome"] == "applied"
