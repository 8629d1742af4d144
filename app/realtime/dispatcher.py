"""
app/realtime/dispatcher.py

Purpose: Central realtime event dispatcher

- Binds a WebSocket to the user id supplied at connect time
- Registers/unregisters it with the connection registry
- Routes inbound events to the chat engine or relays them point-to-point
- Converts handler failures into typed error events for the originating
  socket only; a failing handler never closes the connection

Per-connection states: unauthenticated transport -> bound -> closed.
Authentication happens before the socket is opened; this layer trusts
the supplied user id.
"""

from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import WebSocket, WebSocketDisconnect, status

from app.core.exceptions import CashMateError, DeliveryError, TransportError
from app.core.logging import get_logger
from app.realtime.registry import ConnectionRegistry
from app.schemas.events import (
    AcceptConnectionPayload,
    ConnectionRequestPayload,
    InboundEvent,
    MarkReadPayload,
    OutboundEvent,
    SendMessagePayload,
    TypingStatusPayload,
    error_event_for,
    outbound,
    parse_inbound,
)
from app.services.chat_service import ChatService
from utils.time_utils import iso_now

logger = get_logger(__name__)

Handler = Callable[[str, WebSocket, Any], Awaitable[None]]


class EventDispatcher:
    """Routes socket events for bound users."""

    def __init__(self, registry: ConnectionRegistry, chat_service: ChatService):
        self.registry = registry
        self.chat = chat_service
        self._handlers: Dict[InboundEvent, Handler] = {
            InboundEvent.SEND_MESSAGE: self.handle_send_message,
            InboundEvent.MARK_READ: self.handle_mark_read,
            InboundEvent.CONNECTION_REQUEST: self.handle_connection_request,
            InboundEvent.ACCEPT_CONNECTION: self.handle_accept_connection,
            InboundEvent.TYPING_STATUS: self.handle_typing_status,
        }

    async def serve(self, websocket: WebSocket, user_id: Optional[str]):
        """
        Runs one socket for its whole lifetime.

        Args:
            websocket: Freshly opened socket
            user_id: Identifier from the connect query string
        """
        await websocket.accept()

        user_id = (user_id or "").strip()
        if not user_id:
            logger.warning("Rejecting socket without userId")
            await self._emit_error(websocket, None, TransportError("userId query parameter is required"))
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        try:
            await self.bind(user_id, websocket)

            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", status.WS_1000_NORMAL_CLOSURE))
                # Text and binary frames are both parsed as JSON
                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes")
                await self.dispatch(user_id, websocket, raw)
        except WebSocketDisconnect as e:
            logger.info(f"Socket closed (code={e.code})", extra={"user_id": user_id})
        finally:
            await self.registry.unregister(user_id, websocket)

    async def bind(self, user_id: str, websocket: WebSocket):
        """Registers the socket and sends the initial online snapshot."""
        await self.registry.register(user_id, websocket)
        await websocket.send_json(outbound(
            OutboundEvent.ONLINE_USERS,
            {"users": sorted(self.registry.list_online()), "timestamp": iso_now()}
        ))

    async def dispatch(self, user_id: str, websocket: WebSocket, raw: Any):
        """
        Parses one inbound frame and runs its handler.
        Every failure is reported to `websocket` as a typed error event.
        """
        event: Optional[InboundEvent] = None

        try:
            event, payload = parse_inbound(raw)
            logger.debug(f"📨 {event.value}", extra={"user_id": user_id, "event": event.value})
            await self._handlers[event](user_id, websocket, payload)

        except CashMateError as e:
            logger.warning(
                f"{e.code}: {e.message}",
                extra={"user_id": user_id, "event": event.value if event else None}
            )
            await self._emit_error(websocket, event, e)

        except Exception as e:
            logger.error(
                f"❌ Handler error: {e}",
                extra={"user_id": user_id, "event": event.value if event else None},
                exc_info=True
            )
            await self._emit_error(websocket, event, CashMateError("An error occurred"))

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def handle_send_message(self, user_id: str, websocket: WebSocket, payload: SendMessagePayload):
        receipt = await self.chat.send_message(user_id, payload.recipientId, payload.message)
        await websocket.send_json(outbound(
            OutboundEvent.MESSAGE_SENT,
            {"messageId": receipt.message["_id"], "status": receipt.status.value}
        ))

    async def handle_mark_read(self, user_id: str, websocket: WebSocket, payload: MarkReadPayload):
        await self.chat.mark_read(user_id, payload.senderId)

    async def handle_connection_request(self, user_id: str, websocket: WebSocket, payload: ConnectionRequestPayload):
        details = payload.model_dump(exclude={"recipientId"})
        forwarded = {**details, "fromUserId": user_id}

        if not await self.registry.send_to(payload.recipientId, OutboundEvent.CONNECTION_REQUEST, forwarded):
            raise DeliveryError("Recipient is offline", details={"recipientId": payload.recipientId})

        await websocket.send_json(outbound(
            OutboundEvent.REQUEST_SENT,
            {"recipientId": payload.recipientId, "timestamp": iso_now()}
        ))

    async def handle_accept_connection(self, user_id: str, websocket: WebSocket, payload: AcceptConnectionPayload):
        details = payload.model_dump(exclude={"requesterId"})
        forwarded = {**details, "fromUserId": user_id, "timestamp": iso_now()}

        if not await self.registry.send_to(payload.requesterId, OutboundEvent.CONNECTION_ACCEPTED, forwarded):
            raise DeliveryError("Requester is offline", details={"requesterId": payload.requesterId})

    async def handle_typing_status(self, user_id: str, websocket: WebSocket, payload: TypingStatusPayload):
        # Pure relay; dropped when the recipient is offline
        try:
            await self.registry.send_to(
                payload.recipientId,
                OutboundEvent.USER_TYPING,
                {"userId": user_id, "isTyping": payload.isTyping, "timestamp": iso_now()}
            )
        except DeliveryError as e:
            logger.debug(f"Typing relay dropped: {e.message}", extra={"user_id": user_id})

    # ------------------------------------------------------------------

    async def _emit_error(self, websocket: WebSocket, event: Optional[InboundEvent], error: CashMateError):
        data = {
            "code": error.code,
            "error": error.message,
            "event": event.value if event else None,
            "details": error.details,
            "timestamp": iso_now(),
        }
        if event == InboundEvent.SEND_MESSAGE:
            data["status"] = "failed"

        try:
            await websocket.send_json(outbound(error_event_for(event), data))
        except Exception as e:
            logger.warning(f"Could not deliver error event: {e}")
