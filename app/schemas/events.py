"""
app/schemas/events.py

Purpose: Realtime transport event schemas

- Closed set of inbound event names with a payload model per event
- Outbound event names and envelope builder
- Parses raw frames into typed payloads, rejecting malformed input
  as TransportError before anything reaches the engines
"""

import json
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Type

from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from app.core.exceptions import TransportError


class InboundEvent(str, Enum):
    """Events a client may send over its socket."""

    SEND_MESSAGE = "send-message"
    MARK_READ = "mark-read"
    CONNECTION_REQUEST = "connection-request"
    ACCEPT_CONNECTION = "accept-connection"
    TYPING_STATUS = "typing-status"


class OutboundEvent(str, Enum):
    """Events the server pushes to clients."""

    # Chat
    NEW_MESSAGE = "new-message"
    MESSAGE_SENT = "message-sent"
    MESSAGE_ERROR = "message-error"
    MESSAGES_READ = "messages-read"
    USER_TYPING = "user-typing"

    # Point-to-point connection handshake
    CONNECTION_REQUEST = "connection-request"
    REQUEST_SENT = "request-sent"
    REQUEST_ERROR = "request-error"
    CONNECTION_ACCEPTED = "connection-accepted"
    ACCEPT_ERROR = "accept-error"

    # Presence
    USER_ONLINE = "user-online"
    USER_OFFLINE = "user-offline"
    ONLINE_USERS = "online-users"

    # Cash request broadcasts
    REQUEST_CONNECTED = "request-connected"
    REQUEST_DELETED = "request-deleted"

    SERVER_ERROR = "server-error"


class EventEnvelope(BaseModel):
    """Wire frame in both directions: {"event": ..., "data": {...}}."""

    event: str = Field(..., min_length=1)
    data: Dict[str, Any] = Field(default_factory=dict)


class SendMessagePayload(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    recipientId: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)


class MarkReadPayload(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    senderId: str = Field(..., min_length=1, description="Author whose messages were read")


class ConnectionRequestPayload(BaseModel):
    """Forwarded as-is; extra keys (senderName, amount, ...) are passed through."""

    model_config = ConfigDict(extra="allow", str_strip_whitespace=True)

    recipientId: str = Field(..., min_length=1)


class AcceptConnectionPayload(BaseModel):
    """Forwarded as-is; extra keys (senderName, amount, requestId, ...) are passed through."""

    model_config = ConfigDict(extra="allow", str_strip_whitespace=True)

    requesterId: str = Field(..., min_length=1)


class TypingStatusPayload(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    recipientId: str = Field(..., min_length=1)
    isTyping: bool


INBOUND_PAYLOADS: Dict[InboundEvent, Type[BaseModel]] = {
    InboundEvent.SEND_MESSAGE: SendMessagePayload,
    InboundEvent.MARK_READ: MarkReadPayload,
    InboundEvent.CONNECTION_REQUEST: ConnectionRequestPayload,
    InboundEvent.ACCEPT_CONNECTION: AcceptConnectionPayload,
    InboundEvent.TYPING_STATUS: TypingStatusPayload,
}

# Error event sent back to the originating socket when a handler fails
ERROR_EVENTS: Dict[InboundEvent, OutboundEvent] = {
    InboundEvent.SEND_MESSAGE: OutboundEvent.MESSAGE_ERROR,
    InboundEvent.CONNECTION_REQUEST: OutboundEvent.REQUEST_ERROR,
    InboundEvent.ACCEPT_CONNECTION: OutboundEvent.ACCEPT_ERROR,
}


def error_event_for(event: Optional[InboundEvent]) -> OutboundEvent:
    """Returns the typed error event for a failed inbound event."""
    if event is None:
        return OutboundEvent.SERVER_ERROR
    return ERROR_EVENTS.get(event, OutboundEvent.SERVER_ERROR)


def parse_inbound(raw: Any) -> Tuple[InboundEvent, BaseModel]:
    """
    Parses a raw inbound frame into its event name and typed payload.

    Args:
        raw: JSON text or an already-decoded dict

    Returns:
        (event, payload model)

    Raises:
        TransportError: On invalid JSON, unknown event or payload mismatch
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise TransportError("Event frame is not valid JSON") from e

    try:
        envelope = EventEnvelope.model_validate(raw)
    except PydanticValidationError as e:
        raise TransportError(
            "Event frame must be an object with 'event' and 'data'",
            details=e.errors(include_url=False, include_context=False)
        ) from e

    try:
        event = InboundEvent(envelope.event)
    except ValueError as e:
        raise TransportError(
            f"Unknown event: {envelope.event}",
            details={"event": envelope.event}
        ) from e

    try:
        payload = INBOUND_PAYLOADS[event].model_validate(envelope.data)
    except PydanticValidationError as e:
        raise TransportError(
            f"Invalid payload for {event.value}",
            details=e.errors(include_url=False, include_context=False)
        ) from e

    return event, payload


def outbound(event: OutboundEvent, data: Dict[str, Any]) -> Dict[str, Any]:
    """Builds a JSON-safe outbound frame."""
    return jsonable_encoder({"event": event.value, "data": data})
