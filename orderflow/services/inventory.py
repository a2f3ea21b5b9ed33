"""
Inventory Ledger

Stock-on-hand per ingredient, changed only by appending stock movements.

Operations:
    - record_movement: append an IN/OUT movement and update the cached stock
    - restock: IN movement that also stamps ``last_restocked``
    - consume_for_order: OUT movements for every recipe ingredient of an
      order, exactly once per order id

OUT movements never take stock below zero; the part that could not be taken
is stored on the movement as ``shortfall`` and logged. Whenever an OUT
movement leaves an item at or below its minimum, an ``inventory_alert``
event is published after the transaction commits.
"""

import logging
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orderflow.core.exceptions import InvalidQuantity, ItemNotFound, OrderNotFound
from orderflow.core.locks import KeyedLockRegistry, item_key, order_key
from orderflow.events import DomainEvent, EventKind, utcnow
from orderflow.models import (
    InventoryConsumption,
    InventoryItem,
    MovementType,
    Order,
    StockMovement,
)

logger = logging.getLogger(__name__)

Publisher = Callable[[DomainEvent], Awaitable[object]]

# float noise from repeated decrements (0.1 + 0.2 ...) is rounded away
STOCK_PRECISION = 4


def stock_status(current: float, minimum: float) -> str:
    if current <= 0:
        return "out_of_stock"
    if current <= minimum:
        return "low_stock"
    return "in_stock"


def alert_level(current: float, minimum: float) -> str:
    if current <= 0 or current <= minimum * 0.5:
        return "critical"
    if current <= minimum:
        return "warning"
    return "info"


def inventory_alert_event(item: InventoryItem) -> DomainEvent:
    return DomainEvent(
        kind=EventKind.INVENTORY_ALERT,
        payload={
            "item_id": item.id,
            "item_name": item.name,
            "current_stock": item.current_stock,
            "minimum_stock": item.minimum_stock,
            "unit": item.unit,
            "status": stock_status(item.current_stock, item.minimum_stock),
            "alert_level": alert_level(item.current_stock, item.minimum_stock),
        },
    )


@dataclass
class MovementResult:
    """Outcome of a single stock movement."""
    item: InventoryItem
    movement: StockMovement
    alert: Optional[DomainEvent] = None

    @property
    def shortfall(self) -> float:
        return self.movement.shortfall


@dataclass
class ConsumptionResult:
    """Outcome of consuming an order's ingredients."""
    order_id: int
    already_consumed: bool = False
    movements: list[MovementResult] = field(default_factory=list)
    unmatched: list[str] = field(default_factory=list)

    @property
    def alerts(self) -> list[DomainEvent]:
        return [m.alert for m in self.movements if m.alert is not None]


class InventoryLedger:
    """Stock movements and the stock levels they maintain."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        locks: KeyedLockRegistry,
        publisher: Optional[Publisher] = None,
    ):
        self._session_factory = session_factory
        self._locks = locks
        self._publisher = publisher

    # =========================================================================
    # PUBLIC OPERATIONS
    # =========================================================================

    async def record_movement(
        self,
        item_id: int,
        direction: MovementType,
        quantity: float,
        reason: str,
        performed_by: str,
        order_id: Optional[int] = None,
    ) -> MovementResult:
        """
        Append a movement and update ``current_stock`` atomically.

        Raises:
            InvalidQuantity: If quantity is not positive
            ItemNotFound: If the item does not exist
        """
        self._check_quantity(quantity)

        async with self._locks.hold(item_key(item_id)):
            async with self._session_factory() as session:
                async with session.begin():
                    item = await self._load_item(session, item_id)
                    result = await self._apply(
                        session, item, direction, quantity, reason, performed_by, order_id
                    )

        if result.alert is not None:
            await self._publish(result.alert)
        return result

    async def restock(
        self,
        item_id: int,
        quantity: float,
        reason: str = "Manual restock",
        performed_by: str = "system",
    ) -> MovementResult:
        """IN movement that also records when the item was last restocked."""
        self._check_quantity(quantity)

        async with self._locks.hold(item_key(item_id)):
            async with self._session_factory() as session:
                async with session.begin():
                    item = await self._load_item(session, item_id)
                    result = await self._apply(
                        session, item, MovementType.IN, quantity, reason, performed_by
                    )
                    item.last_restocked = result.movement.created_at

        logger.info(
            f"Restocked {quantity} {result.item.unit} of {result.item.name} "
            f"(now {result.item.current_stock})"
        )
        return result

    async def consume_for_order(
        self,
        order_id: int,
        performed_by: str = "system",
    ) -> ConsumptionResult:
        """
        Deduct every recipe ingredient of the order, once.

        Safe to call repeatedly: later calls find the consumption record and
        change nothing.
        """
        async with self._locks.hold(order_key(order_id)):
            async with AsyncExitStack() as held:
                async with self._session_factory() as session:
                    async with session.begin():
                        order = await session.scalar(
                            select(Order).where(Order.id == order_id).with_for_update()
                        )
                        if order is None:
                            raise OrderNotFound(order_id)
                        result = await self.consume_in(session, order, held, performed_by)

        for alert in result.alerts:
            await self._publish(alert)
        return result

    # =========================================================================
    # IN-TRANSACTION OPERATIONS
    # =========================================================================

    async def consume_in(
        self,
        session: AsyncSession,
        order: Order,
        held: AsyncExitStack,
        performed_by: str = "system",
    ) -> ConsumptionResult:
        """
        Consume ingredients inside the caller's transaction.

        The caller must hold the order lock. Item locks are pushed onto
        ``held`` so they stay held until the caller's transaction commits.
        Alerts are returned, not published; the caller publishes after commit.
        """
        if await session.get(InventoryConsumption, order.id) is not None:
            logger.info(f"Order #{order.id}: ingredients already consumed, skipping")
            return ConsumptionResult(order_id=order.id, already_consumed=True)

        required, unmatched = await self._resolve_requirements(session, order)
        for name in unmatched:
            logger.warning(
                f"Order #{order.id}: ingredient '{name}' has no inventory item, "
                "not deducted"
            )

        result = ConsumptionResult(order_id=order.id, unmatched=unmatched)
        await held.enter_async_context(
            self._locks.hold_many(item_key(item_id) for item_id in required)
        )
        for item_id in sorted(required):
            item = await self._load_item(session, item_id)
            movement = await self._apply(
                session,
                item,
                MovementType.OUT,
                required[item_id],
                f"Order {order.order_number}",
                performed_by,
                order.id,
            )
            result.movements.append(movement)

        session.add(InventoryConsumption(order_id=order.id, consumed_at=utcnow()))
        await session.flush()
        logger.info(
            f"Order #{order.id}: consumed {len(result.movements)} inventory item(s)"
        )
        return result

    # =========================================================================
    # CATALOGUE
    # =========================================================================

    async def create_item(
        self,
        name: str,
        unit: str,
        minimum_stock: float = 0.0,
        initial_stock: float = 0.0,
        category: Optional[str] = None,
        unit_cost: Optional[float] = None,
        supplier: Optional[str] = None,
        performed_by: str = "system",
    ) -> InventoryItem:
        """Create an item; any opening stock goes through an IN movement."""
        async with self._session_factory() as session:
            async with session.begin():
                item = InventoryItem(
                    name=name,
                    unit=unit,
                    minimum_stock=minimum_stock,
                    current_stock=0.0,
                    category=category,
                    unit_cost=unit_cost,
                    supplier=supplier,
                )
                session.add(item)
                await session.flush()
                if initial_stock > 0:
                    await self._apply(
                        session, item, MovementType.IN, initial_stock, "Initial stock", performed_by
                    )
        logger.info(f"Inventory item created: {item.name} ({item.current_stock} {item.unit})")
        return item

    async def get_item(self, item_id: int) -> InventoryItem:
        async with self._session_factory() as session:
            item = await session.get(InventoryItem, item_id)
            if item is None:
                raise ItemNotFound(item_id)
            return item

    async def list_items(self, low_stock_only: bool = False) -> list[InventoryItem]:
        async with self._session_factory() as session:
            query = select(InventoryItem).order_by(InventoryItem.name)
            if low_stock_only:
                query = query.where(InventoryItem.current_stock <= InventoryItem.minimum_stock)
            result = await session.execute(query)
            return list(result.scalars().all())

    async def list_movements(self, item_id: int) -> list[StockMovement]:
        async with self._session_factory() as session:
            if await session.get(InventoryItem, item_id) is None:
                raise ItemNotFound(item_id)
            result = await session.execute(
                select(StockMovement)
                .where(StockMovement.inventory_item_id == item_id)
                .order_by(StockMovement.created_at.asc(), StockMovement.id.asc())
            )
            return list(result.scalars().all())

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _check_quantity(quantity: float) -> None:
        if quantity is None or quantity <= 0:
            raise InvalidQuantity(quantity)

    @staticmethod
    async def _load_item(session: AsyncSession, item_id: int) -> InventoryItem:
        item = await session.scalar(
            select(InventoryItem).where(InventoryItem.id == item_id).with_for_update()
        )
        if item is None:
            raise ItemNotFound(item_id)
        return item

    async def _apply(
        self,
        session: AsyncSession,
        item: InventoryItem,
        direction: MovementType,
        quantity: float,
        reason: str,
        performed_by: str,
        order_id: Optional[int] = None,
    ) -> MovementResult:
        """Read-modify-write of one item. Caller holds the item lock."""
        current = item.current_stock or 0.0
        shortfall = 0.0

        if direction == MovementType.IN:
            item.current_stock = round(current + quantity, STOCK_PRECISION)
        else:
            taken = min(current, quantity)
            shortfall = round(quantity - taken, STOCK_PRECISION)
            item.current_stock = round(current - taken, STOCK_PRECISION)
            if shortfall > 0:
                logger.warning(
                    f"Stock shortfall on {item.name}: needed {quantity} {item.unit}, "
                    f"only {current} available (short {shortfall})"
                )

        movement = StockMovement(
            inventory_item_id=item.id,
            movement_type=direction,
            quantity=quantity,
            shortfall=shortfall,
            reason=reason,
            order_id=order_id,
            performed_by=performed_by,
            created_at=utcnow(),
        )
        session.add(movement)
        await session.flush()

        alert = None
        if direction == MovementType.OUT and item.current_stock <= item.minimum_stock:
            alert = inventory_alert_event(item)
            logger.info(
                f"Inventory alert: {item.name} at {item.current_stock}/{item.minimum_stock} "
                f"{item.unit} ({alert.payload['status']})"
            )

        return MovementResult(item=item, movement=movement, alert=alert)

    async def _resolve_requirements(
        self, session: AsyncSession, order: Order
    ) -> tuple[dict[int, float], list[str]]:
        """Map inventory item id -> total quantity the order needs."""
        by_id: dict[int, float] = {}
        by_name: dict[str, float] = {}
        display_names: dict[str, str] = {}

        for line in order.items:
            for ingredient in line.product.ingredients:
                needed = ingredient.quantity * line.quantity
                if ingredient.inventory_item_id is not None:
                    by_id[ingredient.inventory_item_id] = (
                        by_id.get(ingredient.inventory_item_id, 0.0) + needed
                    )
                else:
                    key = ingredient.ingredient_name.strip().lower()
                    by_name[key] = by_name.get(key, 0.0) + needed
                    display_names.setdefault(key, ingredient.ingredient_name)

        required = dict(by_id)
        unmatched = []

        if by_id:
            found = set(
                (await session.execute(
                    select(InventoryItem.id).where(InventoryItem.id.in_(list(by_id)))
                )).scalars()
            )
            for missing in set(by_id) - found:
                unmatched.append(f"item #{missing}")
                required.pop(missing)

        if by_name:
            rows = await session.execute(
                select(InventoryItem.id, func.lower(InventoryItem.name))
                .where(func.lower(InventoryItem.name).in_(list(by_name)))
            )
            matched = {name: item_id for item_id, name in rows.all()}
            for key, needed in by_name.items():
                item_id = matched.get(key)
                if item_id is None:
                    unmatched.append(display_names[key])
                    continue
                required[item_id] = required.get(item_id, 0.0) + needed

        return required, unmatched

    async def _publish(self, event: DomainEvent) -> None:
        if self._publisher is None:
            return
        try:
            await self._publisher(event)
        except Exception as e:
            logger.error(f"Failed to publish {event.kind.value}: {e}")
