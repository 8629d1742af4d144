"""
app/services/cash_request_service.py

Purpose: Cash request records

- Create pending requests
- List open requests (soft-deleted ones excluded by default)
- Fetch one request with requester/responder names
- Soft delete (history is kept)
- Full history for statistics

Listings are where deleted requests are filtered out; the matching
engine itself does not look at the deleted flag.
"""

from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from app.core.exceptions import PersistenceError, ResourceNotFoundError, ValidationError
from app.core.logging import get_logger
from app.db.mongo import get_cash_requests_collection
from app.models.cash_request import build_cash_request, serialize_cash_request
from app.services.user_service import get_user_summaries
from utils.validation_utils import to_object_id

logger = get_logger(__name__)


async def attach_users(docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Replaces requester/connectedTo ids with user summaries where known."""
    ids = []
    for doc in docs:
        ids.append(doc.get("requester"))
        if doc.get("connectedTo"):
            ids.append(doc["connectedTo"])

    summaries = await get_user_summaries(ids)

    for doc in docs:
        requester = doc.get("requester")
        if requester in summaries:
            doc["requester"] = summaries[requester]
        connected_to = doc.get("connectedTo")
        if connected_to in summaries:
            doc["connectedTo"] = summaries[connected_to]

    return docs


async def create_request(requester_id: Any, amount: float, reason: Optional[str] = None) -> Dict[str, Any]:
    """
    Creates a pending cash request.

    Raises:
        InvalidIdError: If requester_id is malformed
        ValidationError: If amount is not positive
    """
    requester_oid = to_object_id(requester_id, "requesterId")
    if amount is None or amount <= 0:
        raise ValidationError("Amount must be greater than zero", details={"amount": amount})

    doc = build_cash_request(requester_oid, amount, reason)
    requests = get_cash_requests_collection()

    try:
        result = await requests.insert_one(doc)
    except PyMongoError as e:
        raise PersistenceError("Error creating request") from e

    doc["_id"] = result.inserted_id
    logger.info(
        f"Cash request created for {amount}",
        extra={"user_id": str(requester_oid), "request_id": str(result.inserted_id)}
    )
    return serialize_cash_request(doc)


async def list_requests(include_deleted: bool = False) -> List[Dict[str, Any]]:
    """
    Lists cash requests, newest first.

    Args:
        include_deleted: Include soft-deleted requests (history view)
    """
    query = {} if include_deleted else {"deleted": {"$ne": True}}
    requests = get_cash_requests_collection()

    try:
        docs = await requests.find(query).sort("createdAt", -1).to_list(length=None)
    except PyMongoError as e:
        raise PersistenceError("Error fetching requests") from e

    docs = await attach_users(docs)
    return [serialize_cash_request(doc) for doc in docs]


async def list_history() -> List[Dict[str, Any]]:
    """Every request ever created, soft-deleted ones included."""
    return await list_requests(include_deleted=True)


async def get_request(request_id: Any) -> Dict[str, Any]:
    """
    Fetches one request (deleted or not).

    Raises:
        InvalidIdError: If request_id is malformed
        ResourceNotFoundError: If the request does not exist
    """
    request_oid = to_object_id(request_id, "requestId")
    requests = get_cash_requests_collection()

    try:
        doc = await requests.find_one({"_id": request_oid})
    except PyMongoError as e:
        raise PersistenceError("Error fetching request") from e

    if not doc:
        raise ResourceNotFoundError("Request not found", details={"requestId": str(request_oid)})

    doc, = await attach_users([doc])
    return serialize_cash_request(doc)


async def soft_delete_request(request_id: Any) -> Dict[str, Any]:
    """
    Flags a request as deleted. The document and its status are kept.

    Raises:
        InvalidIdError: If request_id is malformed
        ResourceNotFoundError: If the request does not exist
    """
    request_oid = to_object_id(request_id, "requestId")
    requests = get_cash_requests_collection()

    try:
        doc = await requests.find_one_and_update(
            {"_id": request_oid},
            {"$set": {"deleted": True}},
            return_document=ReturnDocument.AFTER
        )
    except PyMongoError as e:
        raise PersistenceError("Error deleting request") from e

    if not doc:
        raise ResourceNotFoundError("Request not found", details={"requestId": str(request_oid)})

    logger.info("Cash request soft-deleted", extra={"request_id": str(request_oid)})
    return serialize_cash_request(doc)
