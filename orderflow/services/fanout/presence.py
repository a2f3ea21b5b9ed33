"""
Presence Store

Registry of live sessions, keyed so that a set of routing scopes can be
resolved to the connections entitled to them. The in-memory store serves a
single process; RedisPresenceStore shares the registry between processes.
Either way the registry is soft state: after a restart clients re-register
and reconcile through the tracking history.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from orderflow.core.security import ActorRole
from orderflow.events import utcnow
from orderflow.services.fanout.routing import (
    ADMIN,
    KITCHEN,
    customer_scope,
    driver_scope,
    order_scope,
)


@dataclass
class LiveSession:
    """One connected client."""
    connection_id: str
    role: ActorRole
    scope_id: Optional[str] = None
    subscriptions: set[int] = field(default_factory=set)
    connected_at: datetime = field(default_factory=utcnow)

    def base_scopes(self) -> set[str]:
        if self.role == ActorRole.KITCHEN:
            return {KITCHEN}
        if self.role == ActorRole.ADMIN:
            return {ADMIN}
        if self.role == ActorRole.CUSTOMER and self.scope_id:
            return {customer_scope(self.scope_id)}
        if self.role == ActorRole.DRIVER and self.scope_id:
            return {driver_scope(self.scope_id)}
        return set()

    def scopes(self) -> set[str]:
        return self.base_scopes() | {order_scope(o) for o in self.subscriptions}

    def to_dict(self) -> dict:
        return {
            "connection_id": self.connection_id,
            "role": self.role.value,
            "scope_id": self.scope_id,
            "subscriptions": sorted(self.subscriptions),
            "connected_at": self.connected_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LiveSession":
        return cls(
            connection_id=data["connection_id"],
            role=ActorRole(data["role"]),
            scope_id=data.get("scope_id"),
            subscriptions=set(data.get("subscriptions", [])),
            connected_at=datetime.fromisoformat(data["connected_at"]),
        )


class PresenceStore(ABC):
    """Abstract registry of live sessions."""

    @abstractmethod
    async def add(self, session: LiveSession) -> None:
        pass

    @abstractmethod
    async def remove(self, connection_id: str) -> Optional[LiveSession]:
        pass

    @abstractmethod
    async def get(self, connection_id: str) -> Optional[LiveSession]:
        pass

    @abstractmethod
    async def add_subscription(self, connection_id: str, order_id: int) -> bool:
        """Returns False if the connection is unknown."""

    @abstractmethod
    async def remove_subscription(self, connection_id: str, order_id: int) -> bool:
        pass

    @abstractmethod
    async def match(self, scopes: Iterable[str]) -> list[LiveSession]:
        """Sessions holding at least one of ``scopes``."""

    async def touch(self, connection_id: str) -> bool:
        """Renew the entry's lease. Returns False if it is gone."""
        return await self.get(connection_id) is not None

    @abstractmethod
    async def count(self) -> int:
        pass

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class InMemoryPresenceStore(PresenceStore):
    """Process-local registry: connection map plus a scope index."""

    def __init__(self):
        self._sessions: dict[str, LiveSession] = {}
        self._by_scope: dict[str, set[str]] = {}

    def _index(self, scope: str, connection_id: str) -> None:
        self._by_scope.setdefault(scope, set()).add(connection_id)

    def _unindex(self, scope: str, connection_id: str) -> None:
        members = self._by_scope.get(scope)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self._by_scope[scope]

    async def add(self, session: LiveSession) -> None:
        await self.remove(session.connection_id)
        self._sessions[session.connection_id] = session
        for scope in session.scopes():
            self._index(scope, session.connection_id)

    async def remove(self, connection_id: str) -> Optional[LiveSession]:
        session = self._sessions.pop(connection_id, None)
        if session is not None:
            for scope in session.scopes():
                self._unindex(scope, connection_id)
        return session

    async def get(self, connection_id: str) -> Optional[LiveSession]:
        return self._sessions.get(connection_id)

    async def add_subscription(self, connection_id: str, order_id: int) -> bool:
        session = self._sessions.get(connection_id)
        if session is None:
            return False
        session.subscriptions.add(order_id)
        self._index(order_scope(order_id), connection_id)
        return True

    async def remove_subscription(self, connection_id: str, order_id: int) -> bool:
        session = self._sessions.get(connection_id)
        if session is None:
            return False
        session.subscriptions.discard(order_id)
        self._unindex(order_scope(order_id), connection_id)
        return True

    async def match(self, scopes: Iterable[str]) -> list[LiveSession]:
        ids: set[str] = set()
        for scope in scopes:
            ids |= self._by_scope.get(scope, set())
        return [self._sessions[i] for i in sorted(ids) if i in self._sessions]

    async def count(self) -> int:
        return len(self._sessions)
