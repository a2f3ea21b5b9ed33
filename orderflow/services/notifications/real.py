"""
Real Notification Service

Customer status updates over Twilio (SMS) and SendGrid (e-mail), worded per
order status. Both SDKs are blocking, so every send runs in a worker thread.
"""

import asyncio
import logging
from html import escape
from typing import Optional

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail
from twilio.base.exceptions import TwilioException
from twilio.rest import Client as TwilioClient

from orderflow.core.config import Settings, get_settings
from orderflow.models import OrderStatus
from orderflow.services.notifications.base import (
    BaseNotificationService,
    NotificationResult,
    StatusCopy,
    StatusNotice,
)
from orderflow.services.tracking import default_message

logger = logging.getLogger(__name__)


# status -> (e-mail headline, sentence for both channels)
STATUS_TEMPLATES = {
    OrderStatus.CONFIRMED: (
        "We've got your order",
        "Payment received. Order {order_number} is confirmed and with the kitchen.",
    ),
    OrderStatus.PREPARING: (
        "Your order is being prepared",
        "The kitchen has started on order {order_number}.",
    ),
    OrderStatus.READY: (
        "Your order is ready",
        "Order {order_number} is packed and waiting for its driver.",
    ),
    OrderStatus.OUT_FOR_DELIVERY: (
        "Your order is on its way",
        "Your driver has picked up order {order_number} and is heading to you.",
    ),
    OrderStatus.DELIVERED: (
        "Delivered. Enjoy your meal!",
        "Order {order_number} has been delivered.",
    ),
    OrderStatus.CANCELLED: (
        "Your order was cancelled",
        "Order {order_number} has been cancelled. You have not been charged.",
    ),
    OrderStatus.PAYMENT_FAILED: (
        "Payment did not go through",
        "We could not take payment for order {order_number}, so it was not placed.",
    ),
}

SENDGRID_ACCEPTED = (200, 201, 202)


class RealNotificationService(BaseNotificationService):
    """Production notification service using Twilio and SendGrid."""

    def __init__(self, settings: Optional[Settings] = None):
        settings = settings or get_settings()

        self.twilio_client = None
        self.twilio_from_number = settings.twilio_phone_number
        if settings.twilio_account_sid and settings.twilio_auth_token:
            self.twilio_client = TwilioClient(
                settings.twilio_account_sid, settings.twilio_auth_token
            )
        else:
            logger.warning("Twilio credentials not configured, SMS updates disabled")

        self.sendgrid_client = None
        self.sendgrid_from_email = settings.sendgrid_from_email
        if settings.sendgrid_api_key:
            self.sendgrid_client = SendGridAPIClient(settings.sendgrid_api_key)
        else:
            logger.warning("SendGrid API key not configured, e-mail updates disabled")

    @property
    def provider_name(self) -> str:
        return "real"

    def compose_status_copy(self, notice: StatusNotice, restaurant_name: str) -> StatusCopy:
        try:
            status = OrderStatus(notice.status)
            headline, sentence = STATUS_TEMPLATES[status]
        except (KeyError, ValueError):
            return super().compose_status_copy(notice, restaurant_name)

        sentence = sentence.format(order_number=notice.order_number)
        greeting = f"Hi {notice.customer_name}! " if notice.customer_name else ""
        sms = f"{greeting}{sentence}\n- {restaurant_name}"

        body_html = f"<h1>{escape(headline)}</h1><p>{escape(greeting + sentence)}</p>"
        body_text = f"{greeting}{sentence}"
        # staff notes ride along in the e-mail only
        if notice.message and notice.message != default_message(status):
            body_html += f"<p>{escape(notice.message)}</p>"
            body_text += f"\n{notice.message}"
        body_html += f"<p>{escape(restaurant_name)}</p>"
        body_text += f"\n- {restaurant_name}"

        return StatusCopy(
            sms=sms,
            subject=f"{headline} ({notice.order_number})",
            body_html=body_html,
            body_text=body_text,
        )

    async def send_sms(self, to_phone: str, message: str) -> NotificationResult:
        """Send SMS via Twilio."""
        if not self.twilio_client:
            return _failed("twilio", "Twilio not configured")

        try:
            result = await asyncio.to_thread(
                self.twilio_client.messages.create,
                body=message,
                from_=self.twilio_from_number,
                to=to_phone,
            )
        except TwilioException as e:
            logger.error(f"Twilio error for {to_phone}: {e}")
            return _failed("twilio", str(e))

        logger.info(f"Status SMS sent to {to_phone}: {result.sid}")
        return NotificationResult(success=True, message_id=result.sid, provider="twilio")

    async def send_email(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
    ) -> NotificationResult:
        """Send email via SendGrid."""
        if not self.sendgrid_client:
            return _failed("sendgrid", "SendGrid not configured")

        message = Mail(
            from_email=self.sendgrid_from_email,
            to_emails=to_email,
            subject=subject,
            html_content=body_html,
            plain_text_content=body_text,
        )
        try:
            response = await asyncio.to_thread(self.sendgrid_client.send, message)
        except Exception as e:
            # the SendGrid client raises python_http_client errors of many types
            logger.error(f"SendGrid error for {to_email}: {e}")
            return _failed("sendgrid", str(e))

        logger.info(f"Status e-mail sent to {to_email}: {response.status_code}")
        if response.status_code not in SENDGRID_ACCEPTED:
            return _failed("sendgrid", f"SendGrid answered {response.status_code}")
        return NotificationResult(
            success=True,
            message_id=response.headers.get("X-Message-Id"),
            provider="sendgrid",
        )

    async def health_check(self) -> bool:
        """Healthy when at least one channel is configured."""
        return self.twilio_client is not None or self.sendgrid_client is not None


def _failed(provider: str, error: str) -> NotificationResult:
    return NotificationResult(success=False, error_message=error, provider=provider)
