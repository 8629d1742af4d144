"""
app/realtime/registry.py

Purpose: In-memory connection registry and presence broadcaster

- Maps each user id to its single live WebSocket (last connect wins)
- Announces online/offline transitions to every other live socket
- Point-to-point and broadcast push primitives
- Periodic liveness sweep that evicts sockets whose disconnect was missed

Single process, single event loop. Map mutations never span an await,
so register/unregister are atomic with respect to other handlers.
State is lost on restart.
"""

import asyncio
import contextlib
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from starlette.websockets import WebSocketState

from app.core.exceptions import DeliveryError
from app.core.logging import get_logger
from app.schemas.events import OutboundEvent, outbound

logger = get_logger(__name__)

PresenceCallback = Callable[[str, bool], Awaitable[Any]]


def transport_is_connected(transport: Any) -> bool:
    """True while both sides of the WebSocket still consider it open."""
    return (
        getattr(transport, "client_state", None) == WebSocketState.CONNECTED
        and getattr(transport, "application_state", None) == WebSocketState.CONNECTED
    )


class ConnectionRegistry:
    """
    Authoritative source of "is this user reachable right now".

    Owned by the event dispatcher (register/unregister); the chat and
    matching engines only read it and push through it.
    """

    def __init__(
        self,
        sweep_interval: float = 30.0,
        on_presence_change: Optional[PresenceCallback] = None,
    ):
        self.sweep_interval = sweep_interval
        self._connections: Dict[str, Any] = {}
        self._on_presence_change = on_presence_change
        self._sweeper: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._connections

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register(self, user_id: str, transport: Any):
        """
        Binds a user to a live transport, replacing any previous one, and
        announces the user to everyone else.
        """
        previous = self._connections.get(user_id)
        self._connections[user_id] = transport

        if previous is not None and previous is not transport:
            logger.info(
                "Replaced existing connection (last connect wins)",
                extra={"user_id": user_id}
            )
        else:
            logger.info("User connected", extra={"user_id": user_id})

        await self.broadcast_except(user_id, OutboundEvent.USER_ONLINE, {"userId": user_id})
        await self._notify_presence(user_id, True)

    async def unregister(self, user_id: str, transport: Any = None) -> bool:
        """
        Removes a user's mapping and announces them offline.

        Args:
            user_id: User to remove
            transport: When given, only remove if the registered transport
                is still this one (a replaced socket closing late must not
                evict its successor)

        Returns:
            True if an entry was removed
        """
        current = self._connections.get(user_id)
        if current is None:
            return False
        if transport is not None and current is not transport:
            logger.debug(
                "Ignoring disconnect of a replaced connection",
                extra={"user_id": user_id}
            )
            return False

        del self._connections[user_id]
        logger.info("User disconnected", extra={"user_id": user_id})

        await self.broadcast_except(user_id, OutboundEvent.USER_OFFLINE, {"userId": user_id})
        await self._notify_presence(user_id, False)
        return True

    def lookup(self, user_id: str) -> Optional[Any]:
        """Returns the live transport for a user, or None."""
        return self._connections.get(user_id)

    def list_online(self) -> Set[str]:
        """Snapshot of currently registered user ids."""
        return set(self._connections)

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    async def send_to(self, user_id: str, event: OutboundEvent, data: Dict[str, Any]) -> bool:
        """
        Pushes an event to one user's live transport.

        Returns:
            True if pushed, False if the user is not registered

        Raises:
            DeliveryError: If the transport rejected the frame
        """
        transport = self._connections.get(user_id)
        if transport is None:
            return False

        try:
            await transport.send_json(outbound(event, data))
        except Exception as e:
            raise DeliveryError(
                f"Failed to push {event.value} to user",
                details={"userId": user_id, "event": event.value}
            ) from e

        return True

    async def broadcast(self, event: OutboundEvent, data: Dict[str, Any]):
        """Pushes an event to every registered transport."""
        await self._fan_out(list(self._connections.items()), event, data)

    async def broadcast_except(self, self_id: str, event: OutboundEvent, data: Dict[str, Any]):
        """Pushes an event to every registered transport except `self_id`'s."""
        targets = [(uid, t) for uid, t in self._connections.items() if uid != self_id]
        await self._fan_out(targets, event, data)

    async def _fan_out(self, targets, event: OutboundEvent, data: Dict[str, Any]):
        if not targets:
            return

        frame = outbound(event, data)
        results = await asyncio.gather(
            *(transport.send_json(frame) for _, transport in targets),
            return_exceptions=True
        )

        # Fire-and-forget: failures are logged, the sweep evicts dead sockets
        for (user_id, _), result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning(
                    f"Broadcast of {event.value} failed: {result}",
                    extra={"user_id": user_id}
                )

    # ------------------------------------------------------------------
    # Liveness sweep
    # ------------------------------------------------------------------

    async def sweep(self) -> List[str]:
        """
        Evicts every entry whose transport reports itself closed and
        broadcasts user-offline for each.

        Returns:
            Evicted user ids
        """
        stale = [
            (user_id, transport)
            for user_id, transport in list(self._connections.items())
            if not transport_is_connected(transport)
        ]

        evicted = []
        for user_id, transport in stale:
            if self._connections.get(user_id) is not transport:
                continue
            del self._connections[user_id]
            evicted.append(user_id)
            logger.info("Removing inactive connection", extra={"user_id": user_id})

        for user_id in evicted:
            await self.broadcast(OutboundEvent.USER_OFFLINE, {"userId": user_id})
            await self._notify_presence(user_id, False)

        return evicted

    async def _sweep_loop(self):
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                evicted = await self.sweep()
                if evicted:
                    logger.info(f"Liveness sweep evicted {len(evicted)} connection(s)")
            except Exception as e:
                logger.error(f"Liveness sweep failed: {e}", exc_info=True)

    def start_sweeper(self):
        """Starts the periodic liveness sweep on the running loop."""
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.create_task(self._sweep_loop())
        logger.info(f"Liveness sweep started (every {self.sweep_interval}s)")

    async def stop_sweeper(self):
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweeper
        self._sweeper = None
        logger.info("Liveness sweep stopped")

    async def _notify_presence(self, user_id: str, online: bool):
        if self._on_presence_change is None:
            return
        try:
            await self._on_presence_change(user_id, online)
        except Exception as e:
            logger.warning(
                f"Failed to persist presence: {e}",
                extra={"user_id": user_id}
            )
