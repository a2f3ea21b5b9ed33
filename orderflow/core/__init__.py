"""
Core module initialization.
Exports configuration, logging and identity utilities.
"""

from orderflow.core.config import get_settings, setup_logging, Settings, EnvironmentMode
from orderflow.core.security import Actor, ActorRole, SYSTEM_ACTOR

__all__ = [
    "get_settings",
    "setup_logging",
    "Settings",
    "EnvironmentMode",
    "Actor",
    "ActorRole",
    "SYSTEM_ACTOR",
]
