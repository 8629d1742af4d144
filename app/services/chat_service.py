"""
app/services/chat_service.py

Purpose: Chat delivery engine

- Persists messages into one thread per user pair (atomic upsert)
- Pushes new messages to a live recipient and upgrades them to delivered
- Read receipts scoped to the other party's messages
- History and thread listings

Thread documents are only ever changed with $push and targeted $set on
array indexes, never replaced whole. Messages are append-only, so an
index stays valid once observed.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from app.core.config import settings
from app.core.exceptions import DeliveryError, PersistenceError, ValidationError
from app.core.logging import get_logger
from app.db.mongo import get_threads_collection
from app.models.message import (
    MessageStatus,
    build_message,
    build_thread,
    other_participant,
    pair_key,
    serialize_message,
)
from app.realtime.registry import ConnectionRegistry
from app.schemas.events import OutboundEvent
from utils.time_utils import iso_now, to_iso
from utils.validation_utils import require_identifier, sanitize_message

logger = get_logger(__name__)


@dataclass
class DeliveryReceipt:
    """Outcome of a send: the stored message and its final status."""

    message: Dict[str, Any]
    status: MessageStatus


class ChatService:
    """Persists chat messages and pushes them through the connection registry."""

    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry

    async def send_message(self, sender_id: str, recipient_id: str, body: str) -> DeliveryReceipt:
        """
        Persists a message and attempts immediate delivery.

        Args:
            sender_id: Author
            recipient_id: Other participant
            body: Message text

        Returns:
            DeliveryReceipt with status `delivered` if pushed to a live
            recipient, otherwise `sent`

        Raises:
            ValidationError: Missing ids, self-message or empty body
            PersistenceError: The message could not be stored (nothing is pushed)
        """
        sender_id = require_identifier(sender_id, "senderId")
        recipient_id = require_identifier(recipient_id, "recipientId")
        if sender_id == recipient_id:
            raise ValidationError("Cannot send a message to yourself", details={"recipientId": recipient_id})
        body = sanitize_message(body, settings.MESSAGE_MAX_LENGTH)

        key = pair_key(sender_id, recipient_id)
        message = build_message(sender_id, body)

        thread = await self._append_message(key, sender_id, recipient_id, message)
        index = self._index_of(thread, message["_id"])

        logger.info(
            "Message saved",
            extra={"user_id": sender_id, "peer_id": recipient_id}
        )

        status = MessageStatus.SENT
        if await self._push_to_recipient(recipient_id, message):
            if await self._upgrade_status(key, index, MessageStatus.SENT, MessageStatus.DELIVERED):
                status = MessageStatus.DELIVERED
                message["status"] = status.value

        return DeliveryReceipt(
            message=serialize_message(message, sender_id, recipient_id),
            status=status
        )

    async def mark_read(self, reader_id: str, other_party_id: str) -> int:
        """
        Marks every message authored by `other_party_id` in the pair's
        thread as read and notifies the author if they are online.

        Returns:
            Number of messages flipped to read (0 if no thread exists)
        """
        reader_id = require_identifier(reader_id, "readerId")
        other_party_id = require_identifier(other_party_id, "senderId")

        key = pair_key(reader_id, other_party_id)
        threads = get_threads_collection()

        try:
            thread = await threads.find_one({"pairKey": key})
        except PyMongoError as e:
            raise PersistenceError("Failed to load chat thread") from e

        if not thread:
            return 0

        unread = [
            i for i, msg in enumerate(thread.get("messages", []))
            if msg.get("senderId") == other_party_id
            and msg.get("status") != MessageStatus.READ.value
        ]

        if unread:
            try:
                await threads.update_one(
                    {"pairKey": key},
                    {"$set": {f"messages.{i}.status": MessageStatus.READ.value for i in unread}}
                )
            except PyMongoError as e:
                raise PersistenceError("Failed to update read receipts") from e

            logger.info(
                f"Marked {len(unread)} message(s) read",
                extra={"user_id": reader_id, "peer_id": other_party_id}
            )

        try:
            await self.registry.send_to(
                other_party_id,
                OutboundEvent.MESSAGES_READ,
                {"by": reader_id, "timestamp": iso_now()}
            )
        except DeliveryError as e:
            logger.warning(f"Read receipt not delivered: {e.message}", extra={"user_id": other_party_id})

        return len(unread)

    async def get_history(self, user_a: str, user_b: str) -> List[Dict[str, Any]]:
        """
        Returns all messages between two users in append order, shaped
        from `user_a`'s point of view. Empty if they have never chatted.
        """
        user_a = require_identifier(user_a, "userId")
        user_b = require_identifier(user_b, "otherUserId")

        threads = get_threads_collection()
        try:
            thread = await threads.find_one({"pairKey": pair_key(user_a, user_b)})
        except PyMongoError as e:
            raise PersistenceError("Failed to load chat history") from e

        if not thread:
            return []

        return [serialize_message(msg, user_a, user_b) for msg in thread.get("messages", [])]

    async def list_threads(self, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        """
        Lists a user's threads, most recently updated first, with the
        last message and the number of unread messages from the peer.
        """
        user_id = require_identifier(user_id, "userId")
        threads = get_threads_collection()

        try:
            cursor = threads.find({"participants": user_id}).sort("lastUpdated", -1).limit(limit)
            docs = await cursor.to_list(length=limit)
        except PyMongoError as e:
            raise PersistenceError("Failed to load chat threads") from e

        summaries = []
        for doc in docs:
            peer_id = other_participant(doc.get("participants", []), user_id)
            messages = doc.get("messages", [])
            unread = sum(
                1 for msg in messages
                if msg.get("senderId") == peer_id and msg.get("status") != MessageStatus.READ.value
            )
            summaries.append({
                "threadId": str(doc["_id"]),
                "otherUserId": peer_id,
                "online": self.registry.lookup(peer_id) is not None,
                "lastMessage": serialize_message(messages[-1], user_id, peer_id) if messages else None,
                "unreadCount": unread,
                "lastUpdated": to_iso(doc.get("lastUpdated")),
            })

        return summaries

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _append_message(self, key: str, sender_id: str, recipient_id: str, message: Dict[str, Any]) -> Dict[str, Any]:
        threads = get_threads_collection()
        update = {
            "$push": {"messages": message},
            "$set": {"lastUpdated": message["timestamp"]},
            "$setOnInsert": build_thread(sender_id, recipient_id),
        }

        try:
            try:
                thread = await threads.find_one_and_update(
                    {"pairKey": key},
                    update,
                    upsert=True,
                    return_document=ReturnDocument.AFTER
                )
            except DuplicateKeyError:
                # Lost a concurrent first-message race; the thread exists now
                logger.debug("Thread created concurrently, appending", extra={"user_id": sender_id})
                thread = await threads.find_one_and_update(
                    {"pairKey": key},
                    update,
                    return_document=ReturnDocument.AFTER
                )
        except PyMongoError as e:
            logger.error(f"Failed to persist message: {e}", extra={"user_id": sender_id})
            raise PersistenceError("Failed to send message") from e

        if thread is None:
            raise PersistenceError("Failed to send message")

        return thread

    @staticmethod
    def _index_of(thread: Dict[str, Any], message_id) -> Optional[int]:
        for i, msg in enumerate(thread.get("messages", [])):
            if msg.get("_id") == message_id:
                return i
        return None

    async def _push_to_recipient(self, recipient_id: str, message: Dict[str, Any]) -> bool:
        payload = {
            "messageId": str(message["_id"]),
            "senderId": message["senderId"],
            "recipientId": recipient_id,
            "message": message["message"],
            "timestamp": to_iso(message["timestamp"]),
            "status": MessageStatus.DELIVERED.value,
        }

        try:
            return await self.registry.send_to(recipient_id, OutboundEvent.NEW_MESSAGE, payload)
        except DeliveryError as e:
            # At-most-once push; history covers the gap on next fetch
            logger.warning(f"Live delivery failed: {e.message}", extra={"user_id": recipient_id})
            return False

    async def _upgrade_status(self, key: str, index: Optional[int], current: MessageStatus, new: MessageStatus) -> bool:
        """Moves one message forward, only if it is still in `current`."""
        if index is None:
            return False

        threads = get_threads_collection()
        try:
            result = await threads.update_one(
                {"pairKey": key, f"messages.{index}.status": current.value},
                {"$set": {f"messages.{index}.status": new.value}}
            )
        except PyMongoError as e:
            logger.error(f"Failed to mark message {new.value}: {e}")
            return False

        return result.modified_count > 0

