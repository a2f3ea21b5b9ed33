"""
Collaborator Tests

Notification dispatch and wording, the mock payment service and
configuration.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from orderflow.core.config import EnvironmentMode, NotificationDispatch, Settings
from orderflow.core.exceptions import IllegalTransition, InvalidLocation, OrderNotFound
from orderflow.services.notifications.base import StatusNotice
from orderflow.services.notifications.dispatch import CeleryStatusNotifier, InlineStatusNotifier
from orderflow.services.notifications.mock import MockNotificationService
from orderflow.services.notifications.real import RealNotificationService
from orderflow.services.payment.mock import MockPaymentService


def notice(**contact) -> StatusNotice:
    return StatusNotice(
        order_id=7,
        order_number="ORD-1A2B3C4D",
        status="out_for_delivery",
        message="Driver is on the way",
        customer_name="Ana",
        **contact,
    )


class TestStatusNotifications:

    def setup_method(self):
        self.service = MockNotificationService(failure_rate=0.0, min_latency=0.0, max_latency=0.0)
        self.notifier = InlineStatusNotifier(self.service, "Orderflow Pizza")

    async def test_sms_and_email(self):
        await self.notifier.notify(notice(customer_phone="+15550100", customer_email="ana@example.com"))

        channels = [m["channel"] for m in self.service.sent]
        assert channels == ["sms", "email"]
        assert self.service.sent[1]["subject"] == "Order ORD-1A2B3C4D - Out For Delivery"
        assert self.service.sent[0]["body"].startswith("Hi Ana! Order ORD-1A2B3C4D")

    async def test_no_contact_sends_nothing(self):
        await self.notifier.notify(notice())
        assert self.service.sent == []

    async def test_channel_crash_is_logged_not_raised(self):
        self.service.send_sms = AsyncMock(side_effect=RuntimeError("twilio down"))
        await self.notifier.notify(notice(customer_phone="+15550100"))

    async def test_one_channel_is_enough(self):
        self.service.send_email = AsyncMock(side_effect=RuntimeError("unused"))
        result = await self.service.send_status_update(notice(customer_phone="+15550100"), "Orderflow Pizza")
        assert result.success
        self.service.send_email.assert_not_called()

    async def test_celery_dispatch_queues_the_notice(self):
        notifier = CeleryStatusNotifier()
        to_thread = AsyncMock()
        with patch("orderflow.services.notifications.dispatch.asyncio.to_thread", to_thread):
            await notifier.notify(notice(customer_email="ana@example.com"))
            await notifier.notify(notice())

        to_thread.assert_awaited_once()
        assert to_thread.await_args.args[1]["order_number"] == "ORD-1A2B3C4D"

    def test_worker_task_sends_the_notice(self):
        from orderflow.tasks import deliver_status_notification

        with patch("orderflow.tasks.get_notification_service", return_value=self.service):
            result = deliver_status_notification.apply(
                args=[notice(customer_phone="+15550100").to_dict()]
            ).get()

        assert result["success"] is True
        assert result["message_id"].startswith("sms_mock_")
        assert self.service.sent[0]["to"] == "+15550100"


def unconfigured_real_service() -> RealNotificationService:
    return RealNotificationService(Settings(
        _env_file=None,
        env_mode="production",
        twilio_account_sid=None,
        twilio_auth_token=None,
        twilio_phone_number="+15550000",
        sendgrid_api_key=None,
    ))


class TestRealNotifications:

    def test_status_wording(self):
        copy = unconfigured_real_service().compose_status_copy(notice(), "Orderflow Pizza")

        assert copy.subject == "Your order is on its way (ORD-1A2B3C4D)"
        assert copy.sms == (
            "Hi Ana! Your driver has picked up order ORD-1A2B3C4D and is heading to you.\n"
            "- Orderflow Pizza"
        )
        # the stock tracking message adds nothing to the template
        assert "Driver is on the way" not in copy.body_text

    def test_staff_note_and_escaping(self):
        service = unconfigured_real_service()
        custom = StatusNotice(
            order_id=7,
            order_number="ORD-1A2B3C4D",
            status="cancelled",
            message="Out of <basil> tonight",
            customer_name="Ana",
        )

        copy = service.compose_status_copy(custom, "Orderflow Pizza")

        assert copy.subject == "Your order was cancelled (ORD-1A2B3C4D)"
        assert "Out of <basil> tonight" in copy.body_text
        assert "Out of &lt;basil&gt; tonight" in copy.body_html
        assert "Out of <basil>" not in copy.sms

    def test_unknown_status_uses_plain_copy(self):
        refunded = StatusNotice(
            order_id=7, order_number="ORD-1A2B3C4D", status="refunded", message="Refund issued"
        )
        copy = unconfigured_real_service().compose_status_copy(refunded, "Orderflow Pizza")
        assert copy.subject == "Order ORD-1A2B3C4D - Refunded"

    async def test_unconfigured_channels(self):
        service = unconfigured_real_service()

        assert not await service.health_check()
        result = await service.send_status_update(
            notice(customer_phone="+15550100", customer_email="ana@example.com"), "Orderflow Pizza"
        )
        assert not result.success
        assert result.error_message == "Twilio not configured; SendGrid not configured"

    async def test_sms_through_twilio(self):
        service = unconfigured_real_service()
        service.twilio_client = MagicMock()
        service.twilio_client.messages.create.return_value = SimpleNamespace(sid="SM123")

        result = await service.send_status_update(notice(customer_phone="+15550100"), "Orderflow Pizza")

        assert result.success
        assert result.message_id == "SM123"
        kwargs = service.twilio_client.messages.create.call_args.kwargs
        assert kwargs["to"] == "+15550100"
        assert kwargs["from_"] == "+15550000"
        assert "heading to you" in kwargs["body"]

    async def test_rejected_email(self):
        service = unconfigured_real_service()
        service.sendgrid_client = MagicMock()
        service.sendgrid_client.send.return_value = SimpleNamespace(status_code=401, headers={})

        result = await service.send_email("ana@example.com", "Hi", "<p>Hi</p>")

        assert not result.success
        assert result.error_message == "SendGrid answered 401"


class TestMockPayments:

    async def test_intent(self):
        service = MockPaymentService(failure_rate=0.0, min_latency=0.0, max_latency=0.0)
        result = await service.create_payment_intent(18.0, metadata={"order_id": 3})

        assert result.success
        assert result.client_secret.endswith("_secret_mock")
        assert result.to_dict()["payment_intent_id"] == result.payment_intent_id

    async def test_non_positive_amount(self):
        service = MockPaymentService(failure_rate=0.0, min_latency=0.0, max_latency=0.0)
        result = await service.create_payment_intent(0)
        assert not result.success
        assert result.error_code == "invalid_amount"

    async def test_declines(self):
        service = MockPaymentService(failure_rate=1.0, min_latency=0.0, max_latency=0.0)
        result = await service.create_payment_intent(10.0)
        assert not result.success
        assert result.client_secret is None

    async def test_webhook_parsing(self):
        service = MockPaymentService()
        assert await service.verify_webhook(b'{"id": "evt_1", "type": "x"}', None) == {
            "id": "evt_1",
            "type": "x",
        }
        assert await service.verify_webhook(b"{broken", None) is None
        assert await service.verify_webhook(b'{"id": "evt_1"}', None) is None


class TestSettings:

    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.estimated_delivery_buffer_minutes == 25
        assert settings.lock_timeout_seconds == 5.0
        assert settings.notification_dispatch == NotificationDispatch.INLINE

    def test_env_mode_is_case_insensitive(self):
        settings = Settings(_env_file=None, env_mode="PRODUCTION")
        assert settings.env_mode == EnvironmentMode.PRODUCTION
        assert settings.use_real_services

    def test_invalid_env_mode(self):
        with pytest.raises(ValueError):
            Settings(_env_file=None, env_mode="moon")

    def test_production_config_lists_missing_keys(self):
        settings = Settings(_env_file=None, env_mode="production", stripe_secret_key="sk_test_x")
        missing = settings.validate_production_config()
        assert "STRIPE_SECRET_KEY" not in missing
        assert "STRIPE_WEBHOOK_SECRET" in missing
        assert "SENDGRID_API_KEY" in missing

        assert Settings(_env_file=None, env_mode="development").validate_production_config() == []


class TestErrorBodies:

    def test_to_dict(self):
        body = IllegalTransition(4, "confirmed", "delivered").to_dict()
        assert body == {
            "success": False,
            "error": "IllegalTransition",
            "detail": "Order #4 cannot move from confirmed to delivered",
            "retryable": False,
        }

    def test_status_codes(self):
        assert OrderNotFound(1).status_code == 404
        assert InvalidLocation(91, 0).status_code == 400
