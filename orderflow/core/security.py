"""
Actor Identity

Authentication happens upstream (session issuance is not part of this
service). The gateway forwards the authenticated principal in two headers,
X-Actor-Id and X-Actor-Role, which are turned into an Actor here.
"""

import enum
from dataclasses import dataclass
from typing import Optional

from fastapi import Header

from orderflow.core.exceptions import Unauthenticated


class ActorRole(str, enum.Enum):
    """Roles that may act on orders."""
    CUSTOMER = "customer"
    KITCHEN = "kitchen"
    DRIVER = "driver"
    ADMIN = "admin"
    SYSTEM = "system"


@dataclass(frozen=True)
class Actor:
    """Who is making the request."""
    id: str
    role: ActorRole

    @property
    def is_staff(self) -> bool:
        return self.role in (ActorRole.KITCHEN, ActorRole.ADMIN)


SYSTEM_ACTOR = Actor(id="system", role=ActorRole.SYSTEM)


def parse_actor(actor_id: Optional[str], role: Optional[str]) -> Actor:
    """Build an Actor from raw header/query values or raise Unauthenticated."""
    if not actor_id or not role:
        raise Unauthenticated("Missing actor credentials")
    try:
        parsed = ActorRole(role.lower())
    except ValueError:
        raise Unauthenticated(f"Unknown role '{role}'")
    if parsed == ActorRole.SYSTEM:
        # the system role is only ever assumed internally (payment webhooks)
        raise Unauthenticated("The system role cannot be claimed by a client")
    return Actor(id=actor_id, role=parsed)


async def get_current_actor(
    x_actor_id: Optional[str] = Header(None, alias="x-actor-id"),
    x_actor_role: Optional[str] = Header(None, alias="x-actor-role"),
) -> Actor:
    """FastAPI dependency resolving the calling actor."""
    return parse_actor(x_actor_id, x_actor_role)
