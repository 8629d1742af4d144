"""
app/services/matching_service.py

Purpose: Connection/matching engine

- Moves a cash request from pending to connected, exactly once
- Records the pair in both users' connections lists
- Broadcasts request-connected so every client drops the request
- Lists a user's matched peers with live presence

The pending -> connected transition is a single conditional update on
the request document. Of two concurrent initiators only one matches the
`status: pending` filter; the other observes AlreadyConnected.
"""

from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from app.core.exceptions import (
    AlreadyConnectedError,
    PersistenceError,
    RequestClosedError,
    ResourceNotFoundError,
    ValidationError,
)
from app.core.logging import get_logger, LogContext
from app.db.mongo import get_cash_requests_collection
from app.models.cash_request import CLOSED_STATUSES, CashRequestStatus, serialize_cash_request
from app.realtime.registry import ConnectionRegistry
from app.schemas.events import OutboundEvent
from app.services import user_service
from app.services.cash_request_service import attach_users
from utils.validation_utils import to_object_id

logger = get_logger(__name__)


def ensure_connectable(request: Dict[str, Any]):
    """
    Raises if a request can no longer be connected.

    Raises:
        AlreadyConnectedError: Another user already took the request
        RequestClosedError: The request was fulfilled or cancelled
    """
    status = request.get("status", CashRequestStatus.PENDING.value)

    if status == CashRequestStatus.CONNECTED.value:
        connected_to = request.get("connectedTo")
        raise AlreadyConnectedError(
            details={
                "requestId": str(request["_id"]),
                "connectedTo": str(connected_to) if connected_to else None
            }
        )

    if status in CLOSED_STATUSES:
        raise RequestClosedError(
            f"This request is {status}",
            details={"requestId": str(request["_id"]), "status": status}
        )


class MatchingService:
    """Connects responders to cash requests."""

    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry

    async def connect(
        self,
        initiator_id: Any,
        request_id: Any,
        target_user_id: Optional[Any] = None
    ) -> Dict[str, Any]:
        """
        Binds a pending cash request to the initiating user.

        Args:
            initiator_id: User accepting the request
            request_id: Cash request to connect
            target_user_id: Optional; must equal the request's owner when given

        Returns:
            The updated request (serialized, requester and connectedTo
            expanded into user summaries)

        Raises:
            InvalidIdError: Malformed id
            ResourceNotFoundError: Request or either user missing
            AlreadyConnectedError: Request already connected (race loser included)
            RequestClosedError: Request fulfilled or cancelled
            ValidationError: Self-connect or mismatched target
            PersistenceError: Database failure
        """
        initiator_oid = to_object_id(initiator_id, "userId")
        request_oid = to_object_id(request_id, "requestId")
        target_oid = to_object_id(target_user_id, "targetUserId") if target_user_id else None

        with LogContext(user_id=str(initiator_oid)):
            request = await self._load(request_oid)
            ensure_connectable(request)

            requester_oid = request["requester"]
            if target_oid is not None and target_oid != requester_oid:
                raise ValidationError(
                    "targetUserId does not match the request owner",
                    details={"requestId": str(request_oid)}
                )
            if requester_oid == initiator_oid:
                raise ValidationError("You cannot connect to your own request")

            await user_service.ensure_users_exist([initiator_oid, requester_oid])

            updated = await self._transition_to_connected(request_oid, initiator_oid)
            if updated is None:
                # Lost the race (or the request vanished) between load and update
                current = await self._load(request_oid)
                ensure_connectable(current)
                raise AlreadyConnectedError(details={"requestId": str(request_oid)})

            try:
                await user_service.add_mutual_connection(initiator_oid, requester_oid)
            except PersistenceError as e:
                # The match is already committed
                logger.error(
                    f"Connected request but failed to record connections: {e.message}",
                    extra={"peer_id": str(requester_oid), "request_id": str(request_oid)}
                )

            logger.info(
                "Cash request connected",
                extra={"peer_id": str(requester_oid), "request_id": str(request_oid)}
            )

        try:
            updated, = await attach_users([updated])
        except PersistenceError as e:
            logger.warning(f"Broadcasting request without user details: {e.message}")
        serialized = serialize_cash_request(updated)
        await self.registry.broadcast(
            OutboundEvent.REQUEST_CONNECTED,
            {
                "requestId": serialized["_id"],
                "connectedUsers": {
                    "userId": str(initiator_oid),
                    "targetUserId": str(requester_oid)
                },
                "request": serialized
            }
        )

        return serialized

    async def get_connections(self, user_id: Any) -> List[Dict[str, Any]]:
        """
        Lists a user's matched peers. `online` reflects the live registry,
        `isOnline` the last persisted presence.
        """
        connections = await user_service.get_connections(user_id)
        for peer in connections:
            peer["online"] = self.registry.lookup(peer["_id"]) is not None
        return connections

    async def _load(self, request_oid: ObjectId) -> Dict[str, Any]:
        requests = get_cash_requests_collection()
        try:
            request = await requests.find_one({"_id": request_oid})
        except PyMongoError as e:
            raise PersistenceError("Failed to load cash request") from e

        if not request:
            raise ResourceNotFoundError("Request not found", details={"requestId": str(request_oid)})
        return request

    async def _transition_to_connected(self, request_oid: ObjectId, initiator_oid: ObjectId) -> Optional[Dict[str, Any]]:
        """
        Conditional pending -> connected update.

        Returns:
            The updated document, or None if the request was not pending
        """
        requests = get_cash_requests_collection()
        try:
            return await requests.find_one_and_update(
                {"_id": request_oid, "status": CashRequestStatus.PENDING.value},
                {"$set": {
                    "status": CashRequestStatus.CONNECTED.value,
                    "connectedTo": initiator_oid
                }},
                return_document=ReturnDocument.AFTER
            )
        except PyMongoError as e:
            raise PersistenceError("Failed to connect cash request") from e
