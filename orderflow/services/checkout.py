"""
Checkout

Creates orders from catalog products and opens the payment intent the
customer confirms client-side. Orders start PENDING; the payment webhook
moves them on through the state machine.
"""

import logging
import secrets
from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orderflow.core.exceptions import InvalidQuantity, ProductNotFound, ValidationFailed
from orderflow.models import Order, OrderItem, OrderStatus, PaymentStatus, Product
from orderflow.services.payment.base import BasePaymentService, PaymentResult

logger = logging.getLogger(__name__)


@dataclass
class LineRequest:
    """One requested line: a product and how many."""
    product_id: int
    quantity: int
    customizations: dict[str, Any] = field(default_factory=dict)


@dataclass
class CheckoutResult:
    order: Order
    payment: Optional[PaymentResult] = None

    @property
    def client_secret(self) -> Optional[str]:
        return self.payment.client_secret if self.payment else None


def calculate_order_totals(
    lines: list[tuple[float, int]],
    tax_rate: float,
    delivery_fee: float,
) -> dict[str, float]:
    """Calculate order subtotal, tax, and total from (unit_price, quantity) pairs."""
    subtotal = round(sum(price * quantity for price, quantity in lines), 2)
    tax = round(subtotal * tax_rate, 2)
    total = round(subtotal + tax + delivery_fee, 2)

    return {
        "subtotal": subtotal,
        "tax": tax,
        "delivery_fee": round(delivery_fee, 2),
        "total_amount": total,
    }


def generate_order_number() -> str:
    return f"ORD-{secrets.token_hex(4).upper()}"


class CheckoutService:
    """Order creation and payment intent."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        payment_service: BasePaymentService,
        tax_rate: float,
        delivery_fee: float,
        currency: str = "usd",
    ):
        self._session_factory = session_factory
        self._payment = payment_service
        self.tax_rate = tax_rate
        self.delivery_fee = delivery_fee
        self.currency = currency

    async def create_order(
        self,
        customer_id: str,
        lines: list[LineRequest],
        delivery_address: str,
        customer_name: Optional[str] = None,
        customer_phone: Optional[str] = None,
        customer_email: Optional[str] = None,
        delivery_instructions: Optional[str] = None,
    ) -> CheckoutResult:
        """
        Price the lines, store the order and create its payment intent.

        A failed payment intent is logged and leaves the order PENDING; the
        customer can retry payment and the webhook still drives the status.

        Raises:
            InvalidQuantity: If a line quantity is not positive
            ProductNotFound: If a product does not exist
        """
        if not lines:
            raise ValidationFailed("An order needs at least one line item")
        for line in lines:
            if line.quantity <= 0:
                raise InvalidQuantity(line.quantity)

        async with self._session_factory() as session:
            async with session.begin():
                products = await self._load_products(session, {line.product_id for line in lines})
                totals = calculate_order_totals(
                    [(products[line.product_id].base_price, line.quantity) for line in lines],
                    self.tax_rate,
                    self.delivery_fee,
                )
                order = Order(
                    order_number=generate_order_number(),
                    customer_id=customer_id,
                    customer_name=customer_name,
                    customer_phone=customer_phone,
                    customer_email=customer_email,
                    delivery_address=delivery_address,
                    delivery_instructions=delivery_instructions,
                    status=OrderStatus.PENDING,
                    payment_status=PaymentStatus.PENDING,
                    items=[
                        OrderItem(
                            product=products[line.product_id],
                            quantity=line.quantity,
                            unit_price=products[line.product_id].base_price,
                            customizations=line.customizations or None,
                        )
                        for line in lines
                    ],
                    **totals,
                )
                session.add(order)
                await session.flush()

        logger.info(
            f"Order #{order.id} ({order.order_number}) created for customer "
            f"{customer_id}: ${order.total_amount:.2f}"
        )

        payment = await self._payment.create_payment_intent(
            amount=order.total_amount,
            currency=self.currency,
            metadata={"order_id": order.id, "order_number": order.order_number},
        )
        if not payment.success:
            logger.warning(
                f"Order #{order.id}: payment intent failed ({payment.error_code}): "
                f"{payment.error_message}"
            )
            return CheckoutResult(order=order, payment=payment)

        async with self._session_factory() as session:
            async with session.begin():
                stored = await session.get(Order, order.id)
                stored.payment_intent_id = payment.payment_intent_id
        order.payment_intent_id = payment.payment_intent_id

        logger.info(f"Order #{order.id}: payment intent {payment.payment_intent_id}")
        return CheckoutResult(order=order, payment=payment)

    @staticmethod
    async def _load_products(session: AsyncSession, product_ids: set[int]) -> dict[int, Product]:
        result = await session.execute(select(Product).where(Product.id.in_(product_ids)))
        products = {product.id: product for product in result.scalars()}
        missing = product_ids - set(products)
        if missing:
            raise ProductNotFound(min(missing))
        return products
