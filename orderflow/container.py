"""
Service Container

Builds and owns every long-lived object of a running process: the database
engine, the lock registry, the live hub and the services wired on top of
them. The FastAPI lifespan creates one per process and keeps it on
``app.state``; tests build their own against a throwaway database.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from orderflow.core.config import Settings
from orderflow.core.locks import KeyedLockRegistry
from orderflow.database import build_engine, build_session_factory, init_db
from orderflow.services.checkout import CheckoutService
from orderflow.services.fanout import NotificationHub, PresenceStore, build_presence_store
from orderflow.services.inventory import InventoryLedger
from orderflow.services.location import DriverLocationRelay, orders_on_route
from orderflow.services.notifications import get_status_notifier
from orderflow.services.notifications.dispatch import StatusNotifier
from orderflow.services.order_state import OrderStateMachine
from orderflow.services.payment import get_payment_service
from orderflow.services.payment.base import BasePaymentService
from orderflow.services.tracking import TrackingLedger
from orderflow.services.webhooks import PaymentWebhookProcessor

logger = logging.getLogger(__name__)


@dataclass
class Container:
    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    locks: KeyedLockRegistry
    presence: PresenceStore
    hub: NotificationHub
    tracking: TrackingLedger
    inventory: InventoryLedger
    orders: OrderStateMachine
    checkout: CheckoutService
    locations: DriverLocationRelay
    webhooks: PaymentWebhookProcessor
    payment: BasePaymentService
    notifier: Optional[StatusNotifier]

    @classmethod
    def build(
        cls,
        settings: Settings,
        engine: Optional[AsyncEngine] = None,
        presence: Optional[PresenceStore] = None,
        payment: Optional[BasePaymentService] = None,
        notifier: Optional[StatusNotifier] = None,
    ) -> "Container":
        """Wire the services; collaborators default to the configured ones."""
        engine = engine or build_engine(settings.database_url, echo=settings.db_echo)
        session_factory = build_session_factory(engine)
        locks = KeyedLockRegistry(timeout=settings.lock_timeout_seconds)
        presence = presence or build_presence_store(settings)
        hub = NotificationHub(
            presence,
            replay_buffer_size=settings.session_replay_buffer_size,
            resume_window_seconds=settings.session_resume_window_seconds,
            send_timeout_seconds=settings.session_send_timeout_seconds,
        )
        payment = payment or get_payment_service()
        notifier = notifier or get_status_notifier()

        tracking = TrackingLedger(session_factory)
        inventory = InventoryLedger(session_factory, locks, publisher=hub.publish)
        orders = OrderStateMachine(
            session_factory,
            locks,
            tracking,
            inventory,
            publisher=hub.publish,
            notifier=notifier,
            estimated_delivery_buffer_minutes=settings.estimated_delivery_buffer_minutes,
        )

        return cls(
            settings=settings,
            engine=engine,
            session_factory=session_factory,
            locks=locks,
            presence=presence,
            hub=hub,
            tracking=tracking,
            inventory=inventory,
            orders=orders,
            checkout=CheckoutService(
                session_factory,
                payment,
                tax_rate=settings.tax_rate,
                delivery_fee=settings.delivery_fee,
                currency=settings.stripe_currency,
            ),
            locations=DriverLocationRelay(
                orders_on_route(session_factory),
                publisher=hub.publish,
                stale_after_seconds=settings.location_stale_seconds,
            ),
            webhooks=PaymentWebhookProcessor(session_factory, payment, orders),
            payment=payment,
            notifier=notifier,
        )

    async def start(self) -> None:
        await init_db(self.engine)

    async def close(self) -> None:
        await self.presence.close()
        await self.engine.dispose()
        logger.info("Container closed")
