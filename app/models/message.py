"""
app/models/message.py

Purpose: Chat thread document model

- One thread per unordered user pair, addressed by a canonical pair key
- Embedded, append-only message list
- Delivery status lifecycle: sent -> delivered -> read
"""

from enum import Enum
from typing import Any, Dict, Optional, Tuple

from bson import ObjectId

from utils.time_utils import utcnow, to_iso


class MessageStatus(str, Enum):
    """Per-message delivery status."""

    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"


PAIR_KEY_SEPARATOR = ":"


def canonical_pair(user_a: str, user_b: str) -> Tuple[str, str]:
    """
    Returns the two participant ids sorted ascending.
    A thread between A and B is addressed identically whoever initiates it.
    """
    first, second = sorted((str(user_a), str(user_b)))
    return first, second


def pair_key(user_a: str, user_b: str) -> str:
    """Unique lookup key of the thread between two users."""
    return PAIR_KEY_SEPARATOR.join(canonical_pair(user_a, user_b))


def build_message(sender_id: str, body: str) -> Dict[str, Any]:
    """Creates a new embedded message with status `sent`."""
    return {
        "_id": ObjectId(),
        "senderId": sender_id,
        "message": body,
        "timestamp": utcnow(),
        "status": MessageStatus.SENT.value,
    }


def build_thread(user_a: str, user_b: str) -> Dict[str, Any]:
    """Fields written only when a thread is first created."""
    now = utcnow()
    return {
        "participants": list(canonical_pair(user_a, user_b)),
        "createdAt": now,
    }


def other_participant(participants, user_id: str) -> Optional[str]:
    """Returns the participant that is not `user_id`."""
    for participant in participants:
        if participant != user_id:
            return participant
    return None


def serialize_message(message: Dict[str, Any], viewer_id: str, other_id: str) -> Dict[str, Any]:
    """
    Shapes an embedded message for API/event output.

    recipientId is derived from the viewer's point of view, since threads
    only store the sender.
    """
    sender_id = message.get("senderId")
    return {
        "_id": str(message.get("_id")),
        "senderId": sender_id,
        "recipientId": other_id if sender_id == viewer_id else viewer_id,
        "message": message.get("message"),
        "timestamp": to_iso(message.get("timestamp")),
        "status": message.get("status", MessageStatus.SENT.value),
    }
