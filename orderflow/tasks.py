"""
Celery Tasks
Background delivery of customer status notifications.
"""

import asyncio
import logging
import time
from datetime import datetime

from orderflow.celery_worker import celery_app
from orderflow.core.config import get_settings
from orderflow.services.notifications import get_notification_service
from orderflow.services.notifications.base import StatusNotice

logger = logging.getLogger(__name__)


class NotificationNotDelivered(Exception):
    """Raised so Celery retries a failed send."""


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(NotificationNotDelivered,),
    retry_backoff=True
)
def deliver_status_notification(self, notice_data: dict) -> dict:
    """
    Send one status update to a customer.

    Args:
        notice_data: StatusNotice as a dict

    Returns:
        dict: Result of the send
    """
    task_id = self.request.id
    notice = StatusNotice(**notice_data)
    start_time = time.time()

    service = get_notification_service()
    result = asyncio.run(
        service.send_status_update(notice, get_settings().restaurant_name)
    )
    elapsed = round(time.time() - start_time, 3)

    if not result.success:
        logger.warning(
            f"Task {task_id}: order #{notice.order_id} notification failed "
            f"after {elapsed}s - {result.error_message}"
        )
        raise NotificationNotDelivered(result.error_message or "send failed")

    logger.info(f"Task {task_id}: order #{notice.order_id} notified in {elapsed}s")
    return {
        'success': True,
        'task_id': task_id,
        'message_id': result.message_id,
        'processing_time_seconds': elapsed,
    }


@celery_app.task
def health_check() -> dict:
    """
    Simple health check task to verify Celery is working.
    """
    return {
        'status': 'healthy',
        'worker': 'celery',
        'timestamp': datetime.now().isoformat()
    }
