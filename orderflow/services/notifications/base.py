"""
Notification Service Abstract Base Class

Defines the interface for sending SMS and e-mail to customers when their
order changes status. Supports both Mock (development) and Real (production)
implementations. These channels are best effort: a failed send never affects
the order itself.
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Optional


@dataclass
class NotificationResult:
    """Result from sending a notification."""
    success: bool
    message_id: Optional[str] = None
    error_message: Optional[str] = None
    provider: str = "unknown"


@dataclass
class StatusNotice:
    """Everything a channel needs to tell a customer about a status change."""
    order_id: int
    order_number: str
    status: str
    message: str
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_order(cls, order, message: str) -> "StatusNotice":
        return cls(
            order_id=order.id,
            order_number=order.order_number,
            status=order.status.value,
            message=message,
            customer_name=order.customer_name,
            customer_phone=order.customer_phone,
            customer_email=order.customer_email,
        )

    @property
    def has_contact(self) -> bool:
        return bool(self.customer_phone or self.customer_email)


@dataclass
class StatusCopy:
    """Rendered text of one status update, per channel."""
    sms: str
    subject: str
    body_html: str
    body_text: str


class BaseNotificationService(ABC):
    """Abstract base class for notification services."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def send_sms(
        self,
        to_phone: str,
        message: str,
    ) -> NotificationResult:
        """Send an SMS message."""
        pass

    @abstractmethod
    async def send_email(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
    ) -> NotificationResult:
        """Send an email."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check service connectivity."""
        pass

    def compose_status_copy(self, notice: StatusNotice, restaurant_name: str) -> StatusCopy:
        """Plain copy built from the tracking message."""
        greeting = f"Hi {notice.customer_name}! " if notice.customer_name else ""
        text = (
            f"{greeting}Order {notice.order_number}: {notice.message}.\n"
            f"- {restaurant_name}"
        )
        return StatusCopy(
            sms=text,
            subject=f"Order {notice.order_number} - {notice.status.replace('_', ' ').title()}",
            body_html=f"<h1>{notice.message}</h1><p>{text}</p>",
            body_text=text,
        )

    async def send_status_update(
        self,
        notice: StatusNotice,
        restaurant_name: str,
    ) -> NotificationResult:
        """
        Tell the customer about a status change via SMS and/or e-mail.

        Succeeds if at least one channel went through.
        """
        copy = self.compose_status_copy(notice, restaurant_name)

        sms_result = None
        if notice.customer_phone:
            sms_result = await self.send_sms(notice.customer_phone, copy.sms)

        email_result = None
        if notice.customer_email:
            email_result = await self.send_email(
                to_email=notice.customer_email,
                subject=copy.subject,
                body_html=copy.body_html,
                body_text=copy.body_text,
            )

        results = [r for r in (sms_result, email_result) if r is not None]
        if not results:
            return NotificationResult(
                success=False,
                error_message="No customer contact on file",
                provider=self.provider_name,
            )
        first_ok = next((r for r in results if r.success), None)
        return NotificationResult(
            success=first_ok is not None,
            message_id=first_ok.message_id if first_ok else None,
            error_message=None if first_ok else "; ".join(
                r.error_message or "unknown error" for r in results
            ),
            provider=self.provider_name,
        )
