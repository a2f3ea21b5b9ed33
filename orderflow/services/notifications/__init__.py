"""
Notification Service Factory

Returns Mock or Real notification service based on ENV_MODE, and the
dispatcher (inline or Celery) the order state machine uses.
"""

import logging
from functools import lru_cache

from orderflow.core.config import NotificationDispatch, get_settings
from orderflow.services.notifications.base import (
    BaseNotificationService,
    NotificationResult,
    StatusNotice,
)
from orderflow.services.notifications.dispatch import (
    CeleryStatusNotifier,
    InlineStatusNotifier,
    StatusNotifier,
)
from orderflow.services.notifications.mock import MockNotificationService

logger = logging.getLogger(__name__)


@lru_cache()
def get_notification_service() -> BaseNotificationService:
    """Get the configured notification service."""
    settings = get_settings()

    if settings.is_development:
        logger.info("Notification Service: Using MockNotificationService (development mode)")
        return MockNotificationService(failure_rate=0.05)

    from orderflow.services.notifications.real import RealNotificationService

    logger.info(f"Notification Service: Using RealNotificationService ({settings.env_mode.value} mode)")
    return RealNotificationService()


def get_status_notifier() -> StatusNotifier:
    """Dispatcher selected by NOTIFICATION_DISPATCH."""
    settings = get_settings()
    if settings.notification_dispatch == NotificationDispatch.CELERY:
        return CeleryStatusNotifier()
    return InlineStatusNotifier(get_notification_service(), settings.restaurant_name)


def reset_notification_service() -> None:
    """Clear the cached service instance."""
    get_notification_service.cache_clear()


__all__ = [
    "get_notification_service",
    "get_status_notifier",
    "reset_notification_service",
    "BaseNotificationService",
    "NotificationResult",
    "StatusNotice",
    "StatusNotifier",
    "InlineStatusNotifier",
    "CeleryStatusNotifier",
]
