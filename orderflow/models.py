"""
SQLAlchemy Database Models

Relational model of the order lifecycle core:
- Orders with line items, payment state and delivery timestamps
- Append-only order tracking entries
- Catalog products and their recipe ingredients
- Inventory items and their append-only stock movements
- Idempotency records for inventory consumption and payment webhooks
"""

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from orderflow.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatus(str, enum.Enum):
    """Order status workflow."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    PAYMENT_FAILED = "payment_failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
    OrderStatus.PAYMENT_FAILED,
})


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"


class MovementType(str, enum.Enum):
    """Direction of a stock movement."""
    IN = "in"
    OUT = "out"


class Order(Base):
    """
    Main Order table.

    Status is only ever changed by the order state machine; rows are never
    deleted.
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_number = Column(String(32), nullable=False, unique=True, index=True)

    # =========================================================================
    # PARTIES
    # =========================================================================
    customer_id = Column(String(64), nullable=False, index=True)
    customer_name = Column(String(100), nullable=True)
    customer_phone = Column(String(20), nullable=True)
    customer_email = Column(String(255), nullable=True)
    delivery_address = Column(String(255), nullable=False)
    delivery_instructions = Column(Text, nullable=True)
    driver_id = Column(String(64), nullable=True, index=True)

    # =========================================================================
    # PRICING
    # =========================================================================
    subtotal = Column(Float, nullable=False)
    tax = Column(Float, nullable=False, default=0.0)
    delivery_fee = Column(Float, nullable=False, default=0.0)
    total_amount = Column(Float, nullable=False)

    # =========================================================================
    # STATUS
    # =========================================================================
    status = Column(
        Enum(OrderStatus),
        default=OrderStatus.PENDING,
        nullable=False,
        index=True,
    )
    payment_status = Column(
        Enum(PaymentStatus),
        default=PaymentStatus.PENDING,
        nullable=False,
    )
    payment_intent_id = Column(String(100), nullable=True, index=True)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), onupdate=_utcnow)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    estimated_delivery = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    actual_delivery = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    items = relationship(
        "OrderItem",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<Order #{self.id} {self.order_number} - {self.status.value}>"


class OrderItem(Base):
    """One ordered line."""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Float, nullable=False)
    customizations = Column(JSON, nullable=True)

    order = relationship("Order", back_populates="items")
    product = relationship("Product", lazy="selectin")


class OrderTracking(Base):
    """
    Append-only audit trail of status changes.

    One row per transition; never updated or deleted.
    """
    __tablename__ = "order_tracking"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    status = Column(Enum(OrderStatus), nullable=False)
    message = Column(Text, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    # "metadata" is reserved on declarative classes
    details = Column("metadata", JSON, nullable=True)

    def __repr__(self):
        return f"<OrderTracking order={self.order_id} {self.status.value}>"


class Product(Base):
    """Catalog product. Only the fields the lifecycle core needs."""
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    slug = Column(String(100), nullable=False, unique=True)
    base_price = Column(Float, nullable=False)

    ingredients = relationship(
        "ProductIngredient",
        back_populates="product",
        lazy="selectin",
        cascade="all, delete-orphan",
    )


class ProductIngredient(Base):
    """
    Recipe line: how much of an ingredient one unit of a product uses.

    Resolved to an inventory item through ``inventory_item_id`` when set,
    otherwise by case-insensitive name match.
    """
    __tablename__ = "product_ingredients"

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    ingredient_name = Column(String(100), nullable=False)
    inventory_item_id = Column(Integer, ForeignKey("inventory_items.id"), nullable=True)
    quantity = Column(Float, nullable=False)

    product = relationship("Product", back_populates="ingredients")


class InventoryItem(Base):
    """
    Stock-on-hand for one ingredient.

    ``current_stock`` is a cache of the movement ledger and is only written
    by the inventory ledger service.
    """
    __tablename__ = "inventory_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False, unique=True, index=True)
    category = Column(String(50), nullable=True)
    current_stock = Column(Float, nullable=False, default=0.0)
    minimum_stock = Column(Float, nullable=False, default=0.0)
    unit = Column(String(20), nullable=False, default="unit")
    unit_cost = Column(Float, nullable=True)
    supplier = Column(String(100), nullable=True)
    last_restocked = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), onupdate=_utcnow)

    def __repr__(self):
        return f"<InventoryItem {self.name} {self.current_stock}{self.unit}>"


class StockMovement(Base):
    """
    Immutable stock ledger entry.

    ``quantity`` is what was requested; ``shortfall`` is the part of an OUT
    movement that could not be taken because stock hit zero. The applied
    change is therefore ``quantity - shortfall``.
    """
    __tablename__ = "stock_movements"

    id = Column(Integer, primary_key=True, autoincrement=True)
    inventory_item_id = Column(
        Integer, ForeignKey("inventory_items.id"), nullable=False, index=True
    )
    movement_type = Column(Enum(MovementType), nullable=False)
    quantity = Column(Float, nullable=False)
    shortfall = Column(Float, nullable=False, default=0.0)
    reason = Column(String(255), nullable=False)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True, index=True)
    performed_by = Column(String(64), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    @property
    def applied_quantity(self) -> float:
        return self.quantity - (self.shortfall or 0.0)


class InventoryConsumption(Base):
    """Idempotency key for per-order ingredient consumption."""
    __tablename__ = "inventory_consumptions"

    order_id = Column(Integer, ForeignKey("orders.id"), primary_key=True)
    consumed_at = Column(DateTime(timezone=True), nullable=False)


class PaymentWebhookEvent(Base):
    """Provider events already handled, keyed by the provider's event id."""
    __tablename__ = "payment_webhook_events"

    provider_event_id = Column(String(100), primary_key=True)
    event_type = Column(String(100), nullable=False)
    order_id = Column(Integer, nullable=True)
    outcome = Column(String(50), nullable=False)
    received_at = Column(DateTime(timezone=True), nullable=False)
