"""
Live Fan-Out

Presence registry, routing and the hub that pushes domain events to live
sessions. The presence backend is chosen from settings; everything else
talks to the PresenceStore interface.
"""

import logging

from orderflow.core.config import PresenceBackend, Settings
from orderflow.services.fanout.hub import NotificationHub, RegistrationResult
from orderflow.services.fanout.presence import (
    InMemoryPresenceStore,
    LiveSession,
    PresenceStore,
)
from orderflow.services.fanout.routing import routing_targets

logger = logging.getLogger(__name__)


def build_presence_store(settings: Settings) -> PresenceStore:
    """Presence store for the configured backend."""
    if settings.presence_backend == PresenceBackend.REDIS:
        from orderflow.services.fanout.redis_presence import RedisPresenceStore

        logger.info("Presence: using RedisPresenceStore")
        return RedisPresenceStore.from_url(
            settings.redis_url,
            ttl_seconds=max(settings.session_resume_window_seconds * 30, 3600),
        )
    logger.info("Presence: using InMemoryPresenceStore")
    return InMemoryPresenceStore()


__all__ = [
    "build_presence_store",
    "NotificationHub",
    "RegistrationResult",
    "PresenceStore",
    "InMemoryPresenceStore",
    "LiveSession",
    "routing_targets",
]
