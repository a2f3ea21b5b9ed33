"""
Payment Service Abstract Base Class

Defines the interface contract for all payment service implementations.
Both MockPaymentService and StripePaymentService must implement these methods,
so checkout and the webhook endpoint behave the same regardless of which
service is active.

Only two payment concerns live in the order lifecycle core:
    - creating the payment intent when an order is placed
    - verifying the provider's webhook that later confirms or fails it
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class PaymentResult:
    """
    Standardized result from the payment provider.

    Attributes:
        success: Whether the call succeeded
        payment_intent_id: Identifier of the intent (Stripe format: pi_xxx)
        amount: Amount in dollars
        currency: Currency code (e.g., "usd")
        error_message: Error description if the call failed
        error_code: Machine-readable error code
        response_time_ms: Time taken by the provider
        metadata: Additional data (client_secret, provider status)
    """
    success: bool
    payment_intent_id: Optional[str] = None
    amount: Optional[float] = None
    currency: str = "usd"
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    response_time_ms: float = 0.0
    metadata: Optional[dict] = None

    @property
    def client_secret(self) -> Optional[str]:
        return (self.metadata or {}).get("client_secret")

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": self.success,
            "payment_intent_id": self.payment_intent_id,
            "amount": self.amount,
            "currency": self.currency,
            "error_message": self.error_message,
            "error_code": self.error_code,
            "response_time_ms": self.response_time_ms,
        }


class BasePaymentService(ABC):
    """Abstract base class for payment services."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name ("mock", "stripe")."""
        pass

    @abstractmethod
    async def create_payment_intent(
        self,
        amount: float,
        currency: str = "usd",
        metadata: Optional[dict] = None,
    ) -> PaymentResult:
        """
        Create a payment intent for client-side confirmation.

        Args:
            amount: Amount in dollars
            currency: Currency code
            metadata: Additional data to attach (order_id, order_number)

        Returns:
            PaymentResult: Contains client_secret for frontend
        """
        pass

    @abstractmethod
    async def verify_webhook(
        self,
        payload: bytes,
        signature: Optional[str],
    ) -> Optional[dict]:
        """
        Verify and parse a webhook from the payment provider.

        Args:
            payload: Raw request body bytes
            signature: Signature header from the request

        Returns:
            dict: Parsed webhook event if valid, None if invalid
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Verify connectivity to the payment service."""
        pass
