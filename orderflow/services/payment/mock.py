"""
Mock Payment Service Implementation

Simulates Stripe-like payment intents without making real API calls.
Used in development mode (ENV_MODE=development) and in tests.

Behavior:
    - Simulates response times (configurable, zero in tests)
    - Randomly fails a share of intents (failure_rate)
    - Generates Stripe-like IDs (pi_mock_xxx)
    - Accepts unsigned JSON webhooks shaped like Stripe events
"""

import asyncio
import json
import logging
import random
import uuid
from typing import Optional

from orderflow.services.payment.base import BasePaymentService, PaymentResult

logger = logging.getLogger(__name__)


class MockPaymentService(BasePaymentService):
    """
    Mock implementation of the payment service.

    Attributes:
        failure_rate: Probability of simulated failure (0.0-1.0)
        min_latency: Minimum simulated response time in seconds
        max_latency: Maximum simulated response time in seconds
    """

    DECLINE_REASONS = [
        ("card_declined", "Your card was declined."),
        ("processing_error", "An error occurred while processing your card."),
    ]

    def __init__(
        self,
        failure_rate: float = 0.10,
        min_latency: float = 0.2,
        max_latency: float = 0.8,
    ):
        self.failure_rate = failure_rate
        self.min_latency = min_latency
        self.max_latency = max_latency
        self.intents: dict[str, PaymentResult] = {}

        logger.info(
            f"MockPaymentService initialized "
            f"(failure_rate={failure_rate:.0%}, "
            f"latency={min_latency}-{max_latency}s)"
        )

    @property
    def provider_name(self) -> str:
        return "mock"

    async def _simulate_latency(self) -> float:
        """Sleep for a random latency; returns it in milliseconds."""
        if self.max_latency <= 0:
            return 0.0
        latency = random.uniform(self.min_latency, self.max_latency)
        await asyncio.sleep(latency)
        return latency * 1000

    def _should_fail(self) -> bool:
        return random.random() < self.failure_rate

    async def create_payment_intent(
        self,
        amount: float,
        currency: str = "usd",
        metadata: Optional[dict] = None,
    ) -> PaymentResult:
        """
        Simulate creating a payment intent.

        The fake client_secret will not work with Stripe.js.
        """
        latency_ms = await self._simulate_latency()

        if amount <= 0:
            return PaymentResult(
                success=False,
                error_message="Amount must be greater than 0",
                error_code="invalid_amount",
                response_time_ms=latency_ms,
            )

        if self._should_fail():
            error_code, error_message = random.choice(self.DECLINE_REASONS)
            logger.debug(f"Mock: Payment intent declined - {error_code}")
            return PaymentResult(
                success=False,
                amount=amount,
                currency=currency,
                error_message=error_message,
                error_code=error_code,
                response_time_ms=latency_ms,
            )

        payment_intent_id = f"pi_mock_{uuid.uuid4().hex[:24]}"
        result = PaymentResult(
            success=True,
            payment_intent_id=payment_intent_id,
            amount=amount,
            currency=currency,
            response_time_ms=latency_ms,
            metadata={
                "client_secret": f"{payment_intent_id}_secret_mock",
                **(metadata or {}),
            },
        )
        self.intents[payment_intent_id] = result

        logger.debug(f"Mock: Created payment intent {payment_intent_id} - ${amount:.2f}")
        return result

    async def verify_webhook(
        self,
        payload: bytes,
        signature: Optional[str],
    ) -> Optional[dict]:
        """Parse the payload without cryptographic verification."""
        try:
            event = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning("Mock: Invalid webhook payload")
            return None
        if not isinstance(event, dict) or "type" not in event:
            logger.warning("Mock: Webhook payload is not an event")
            return None
        return event

    async def health_check(self) -> bool:
        return True
