"""
Notification Hub

Routes domain events to the live sessions entitled to them.

Every published event gets a hub-wide sequence number and is pushed to each
matching connected session (at-least-once, best effort: a failed or slow push
is logged and dropped). Each session also keeps a bounded buffer of the
events routed to it. When a client disconnects, its buffer is kept for the
resume window and keeps collecting events; reconnecting with the same
connection id and the last sequence number it saw replays what it missed.
If the gap cannot be filled from the buffer, the client is told to reconcile
through the tracking history instead.

Events are published one at a time under the hub lock so every session sees
them in publication order; the pushes for one event go out concurrently.
Delivery is always done by the process holding the socket. The presence
store is the shared registry: an attached session whose entry has lapsed
(Redis TTL) is written back on the next publish or heartbeat.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from orderflow.core.security import ActorRole
from orderflow.events import DomainEvent
from orderflow.services.fanout.presence import LiveSession, PresenceStore
from orderflow.services.fanout.routing import routing_targets

logger = logging.getLogger(__name__)

Sender = Callable[[dict[str, Any]], Awaitable[None]]


@dataclass
class RegistrationResult:
    """What the client needs to know right after (re)connecting."""
    session: LiveSession
    resumed: bool = False
    replayed: int = 0
    reconcile_required: bool = False
    last_seq: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "registered",
            "connection_id": self.session.connection_id,
            "role": self.session.role.value,
            "subscriptions": sorted(self.session.subscriptions),
            "resumed": self.resumed,
            "replayed": self.replayed,
            "reconcile_required": self.reconcile_required,
            "last_seq": self.last_seq,
        }


@dataclass
class _Mailbox:
    session: LiveSession
    buffer: deque
    dropped_through: int = 0
    detached_at: Optional[float] = None

    def push(self, seq: int, envelope: dict[str, Any]) -> None:
        if self.buffer.maxlen and len(self.buffer) == self.buffer.maxlen:
            self.dropped_through = self.buffer[0][0]
        self.buffer.append((seq, envelope))

    def since(self, last_seq: int) -> list[dict[str, Any]]:
        return [envelope for seq, envelope in self.buffer if seq > last_seq]


class NotificationHub:
    """Live-session registry front end and event fan-out."""

    def __init__(
        self,
        presence: PresenceStore,
        replay_buffer_size: int = 200,
        resume_window_seconds: float = 120,
        send_timeout_seconds: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.presence = presence
        self._buffer_size = replay_buffer_size
        self._resume_window = resume_window_seconds
        self._send_timeout = send_timeout_seconds
        self._clock = clock
        self._senders: dict[str, Sender] = {}
        self._mailboxes: dict[str, _Mailbox] = {}
        self._seq = 0
        self._lock = asyncio.Lock()

    @property
    def last_seq(self) -> int:
        return self._seq

    @property
    def connected_count(self) -> int:
        return len(self._senders)

    # =========================================================================
    # SESSIONS
    # =========================================================================

    async def register_session(
        self,
        connection_id: str,
        role: ActorRole,
        scope_id: Optional[str] = None,
        sender: Optional[Sender] = None,
        last_seq: Optional[int] = None,
    ) -> RegistrationResult:
        """
        Register a connection, resuming a recently detached one if possible.

        A detached session is only resumed for the same role and scope, so a
        connection id cannot be used to pick up someone else's events.
        """
        async with self._lock:
            self._expire_detached()
            session = LiveSession(connection_id=connection_id, role=role, scope_id=scope_id)
            result = RegistrationResult(session=session)
            replay: list[dict[str, Any]] = []

            mailbox = self._mailboxes.get(connection_id)
            resumable = (
                mailbox is not None
                and mailbox.detached_at is not None
                and mailbox.session.role == role
                and mailbox.session.scope_id == scope_id
            )

            if resumable:
                session.subscriptions = set(mailbox.session.subscriptions)
                mailbox.session = session
                mailbox.detached_at = None
                result.resumed = True
                if last_seq is not None:
                    result.reconcile_required = last_seq < mailbox.dropped_through
                    replay = mailbox.since(last_seq)
            else:
                self._mailboxes[connection_id] = _Mailbox(
                    session=session, buffer=deque(maxlen=self._buffer_size)
                )
                # client had a stream we no longer know about (expired or restarted)
                result.reconcile_required = last_seq is not None

            await self.presence.add(session)
            if sender is not None:
                self._senders[connection_id] = sender

            result.replayed = len(replay)
            result.last_seq = self._seq

            # the acknowledgement always precedes the replayed events
            await self._deliver(connection_id, result.to_dict())
            for envelope in replay:
                await self._deliver(connection_id, envelope)

        logger.info(
            f"Live session registered: {connection_id} ({role.value}"
            f"{':' + scope_id if scope_id else ''}) resumed={result.resumed} "
            f"replayed={result.replayed}"
        )
        return result

    async def unregister_session(self, connection_id: str) -> bool:
        """
        Detach a connection. Its buffer stays for the resume window.

        Returns:
            True if the connection was registered
        """
        async with self._lock:
            self._senders.pop(connection_id, None)
            removed = await self.presence.remove(connection_id)
            mailbox = self._mailboxes.get(connection_id)
            if mailbox is not None:
                mailbox.detached_at = self._clock()

        if removed is not None:
            logger.info(f"Live session detached: {connection_id}")
        return removed is not None

    async def subscribe_to_order(self, connection_id: str, order_id: int) -> bool:
        """Add an ad-hoc order tracking subscription to a connected session."""
        async with self._lock:
            added = await self.presence.add_subscription(connection_id, order_id)
            mailbox = self._mailboxes.get(connection_id)
            if added and mailbox is not None:
                mailbox.session.subscriptions.add(order_id)
        if added:
            logger.debug(f"{connection_id} now tracking order #{order_id}")
        return added

    async def unsubscribe_from_order(self, connection_id: str, order_id: int) -> bool:
        async with self._lock:
            removed = await self.presence.remove_subscription(connection_id, order_id)
            mailbox = self._mailboxes.get(connection_id)
            if mailbox is not None:
                mailbox.session.subscriptions.discard(order_id)
        return removed

    # =========================================================================
    # FAN-OUT
    # =========================================================================

    async def publish(self, event: DomainEvent) -> int:
        """
        Push ``event`` to every entitled session.

        Pushes to the connected sessions run concurrently, so one stuck socket
        costs the publisher at most one send timeout. Events still go out one
        at a time, which keeps every session's stream in publication order.

        Returns:
            Number of sessions the event was pushed to successfully
        """
        targets = routing_targets(event)
        if not targets:
            logger.debug(f"No audience for {event.kind.value}, dropped")
            return 0

        async with self._lock:
            self._expire_detached()
            self._seq += 1
            envelope = {"type": "event", "seq": self._seq, **event.to_dict()}

            listed = {s.connection_id for s in await self.presence.match(targets)}
            recipients: list[str] = []
            for connection_id, mailbox in self._mailboxes.items():
                if not mailbox.session.scopes() & targets:
                    continue
                mailbox.push(self._seq, envelope)
                if mailbox.detached_at is None:
                    recipients.append(connection_id)
                    if connection_id not in listed:
                        await self._restore(mailbox.session)

            results = await asyncio.gather(
                *(self._deliver(connection_id, envelope) for connection_id in recipients)
            )

        delivered = sum(results)
        logger.debug(
            f"Published {event.kind.value} seq={envelope['seq']} to {delivered} session(s)"
        )
        return delivered

    async def heartbeat(self, connection_id: str) -> bool:
        """
        Keep a connected session's presence entry alive.

        Returns:
            False if the connection is not attached to this hub
        """
        async with self._lock:
            mailbox = self._mailboxes.get(connection_id)
            if mailbox is None or mailbox.detached_at is not None:
                return False
            if not await self.presence.touch(connection_id):
                await self._restore(mailbox.session)
        return True

    async def _restore(self, session: LiveSession) -> None:
        logger.warning(f"Presence entry for {session.connection_id} had lapsed, restoring it")
        await self.presence.add(session)

    async def _deliver(self, connection_id: str, envelope: dict[str, Any]) -> bool:
        sender = self._senders.get(connection_id)
        if sender is None:
            return False
        try:
            await asyncio.wait_for(sender(envelope), timeout=self._send_timeout)
            return True
        except Exception as e:
            logger.warning(
                f"Live push to {connection_id} failed "
                f"({envelope.get('kind')} seq={envelope.get('seq')}): {e!r}"
            )
            return False

    def _expire_detached(self) -> None:
        now = self._clock()
        expired = [
            cid for cid, mailbox in self._mailboxes.items()
            if mailbox.detached_at is not None
            and now - mailbox.detached_at > self._resume_window
        ]
        for cid in expired:
            del self._mailboxes[cid]
            logger.debug(f"Resume window closed for {cid}")
