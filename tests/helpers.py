"""
Test helpers: actors, a recording live-session sender and a seeded catalogue.
"""

from dataclasses import dataclass
from typing import Any

from orderflow.container import Container
from orderflow.core.config import Settings
from orderflow.core.security import SYSTEM_ACTOR, Actor, ActorRole
from orderflow.database import build_engine
from orderflow.models import OrderStatus, Product, ProductIngredient
from orderflow.services.checkout import LineRequest
from orderflow.services.fanout import InMemoryPresenceStore
from orderflow.services.notifications.dispatch import InlineStatusNotifier
from orderflow.services.notifications.mock import MockNotificationService
from orderflow.services.payment.mock import MockPaymentService

KITCHEN = Actor(id="kitchen-1", role=ActorRole.KITCHEN)
ADMIN = Actor(id="admin-1", role=ActorRole.ADMIN)
CUSTOMER = Actor(id="cust-1", role=ActorRole.CUSTOMER)
OTHER_CUSTOMER = Actor(id="cust-2", role=ActorRole.CUSTOMER)
DRIVER = Actor(id="D1", role=ActorRole.DRIVER)
OTHER_DRIVER = Actor(id="D2", role=ActorRole.DRIVER)

TO_READY = [
    (OrderStatus.CONFIRMED, SYSTEM_ACTOR),
    (OrderStatus.PREPARING, KITCHEN),
    (OrderStatus.READY, KITCHEN),
]


def headers(actor: Actor) -> dict[str, str]:
    return {"x-actor-id": actor.id, "x-actor-role": actor.role.value}


def make_settings(tmp_path, **overrides) -> Settings:
    values = dict(
        env_mode="development",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'orderflow.db'}",
        tax_rate=0.0,
        delivery_fee=3.0,
        lock_timeout_seconds=2.0,
        session_send_timeout_seconds=0.5,
    )
    values.update(overrides)
    return Settings(**values)


def build_test_container(settings: Settings) -> Container:
    """Container on SQLite with silent, never-failing collaborators."""
    notifications = MockNotificationService(failure_rate=0.0, min_latency=0.0, max_latency=0.0)
    return Container.build(
        settings,
        engine=build_engine(settings.database_url),
        presence=InMemoryPresenceStore(),
        payment=MockPaymentService(failure_rate=0.0, min_latency=0.0, max_latency=0.0),
        notifier=InlineStatusNotifier(notifications, settings.restaurant_name),
    )


class Feed:
    """Records what the hub pushes to one live session."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.messages: list[dict[str, Any]] = []

    async def __call__(self, message: dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionError("socket closed")
        self.messages.append(message)

    @property
    def events(self) -> list[dict[str, Any]]:
        return [m for m in self.messages if m["type"] == "event"]

    def kinds(self) -> list[str]:
        return [m["kind"] for m in self.events]


@dataclass
class Catalogue:
    dough: int
    cheese: int
    sauce: int
    margherita: int


async def seed_catalogue(container: Container) -> Catalogue:
    """
    Three ingredients and a Margherita.

    Dough and cheese are linked by item id, the sauce by (lower-case) name,
    and basil has no inventory item at all.
    """
    inventory = container.inventory
    dough = await inventory.create_item("Pizza Dough", "kg", minimum_stock=2.0, initial_stock=10.0)
    cheese = await inventory.create_item(
        "Mozzarella Cheese", "kg", minimum_stock=15.0, initial_stock=8.0
    )
    sauce = await inventory.create_item("Tomato Sauce", "l", minimum_stock=1.0, initial_stock=5.0)

    async with container.session_factory() as session:
        async with session.begin():
            product = Product(
                name="Margherita",
                slug="margherita",
                base_price=15.00,
                ingredients=[
                    ProductIngredient(
                        ingredient_name="Pizza Dough", inventory_item_id=dough.id, quantity=0.25
                    ),
                    ProductIngredient(
                        ingredient_name="Mozzarella Cheese", inventory_item_id=cheese.id, quantity=0.2
                    ),
                    ProductIngredient(ingredient_name="tomato sauce", quantity=0.1),
                    ProductIngredient(ingredient_name="Fresh Basil", quantity=0.01),
                ],
            )
            session.add(product)
            await session.flush()

    return Catalogue(dough=dough.id, cheese=cheese.id, sauce=sauce.id, margherita=product.id)


async def place_order(
    container: Container,
    catalogue: Catalogue,
    customer: Actor = CUSTOMER,
    quantity: int = 1,
    **contact,
):
    result = await container.checkout.create_order(
        customer_id=customer.id,
        lines=[LineRequest(product_id=catalogue.margherita, quantity=quantity)],
        delivery_address="350 Fifth Avenue, New York",
        **contact,
    )
    return result.order


async def advance(container: Container, order_id: int, steps) -> None:
    for status, actor in steps:
        await container.orders.transition(order_id, status, actor)
