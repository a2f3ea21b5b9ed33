"""
Status Notification Dispatch

How the order state machine hands a committed status change to the customer
channels. Inline dispatch awaits the notification service directly; Celery
dispatch queues a task so the request never waits on Twilio or SendGrid.
Both are best effort and log instead of raising.
"""

import asyncio
import logging
from abc import ABC, abstractmethod

from orderflow.services.notifications.base import BaseNotificationService, StatusNotice

logger = logging.getLogger(__name__)


class StatusNotifier(ABC):
    """Channel the state machine calls after a transition commits."""

    @abstractmethod
    async def notify(self, notice: StatusNotice) -> None:
        pass


class InlineStatusNotifier(StatusNotifier):
    """Sends through the notification service in the calling task."""

    def __init__(self, service: BaseNotificationService, restaurant_name: str):
        self.service = service
        self.restaurant_name = restaurant_name

    async def notify(self, notice: StatusNotice) -> None:
        if not notice.has_contact:
            logger.debug(f"Order #{notice.order_id}: no customer contact, nothing sent")
            return
        try:
            result = await self.service.send_status_update(notice, self.restaurant_name)
        except Exception as e:
            logger.error(f"Order #{notice.order_id}: status notification crashed: {e}")
            return
        if not result.success:
            logger.warning(
                f"Order #{notice.order_id}: status notification failed "
                f"({result.error_message})"
            )


class CeleryStatusNotifier(StatusNotifier):
    """Queues the notification on the Celery worker."""

    async def notify(self, notice: StatusNotice) -> None:
        if not notice.has_contact:
            return
        from orderflow.tasks import deliver_status_notification

        try:
            await asyncio.to_thread(deliver_status_notification.delay, notice.to_dict())
        except Exception as e:
            logger.error(f"Order #{notice.order_id}: could not queue status notification: {e}")
