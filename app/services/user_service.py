"""
app/services/user_service.py

Purpose: User data access for the realtime core

- Existence checks for matching
- Mutual connection lists (idempotent set-add)
- Advisory presence flag (isOnline / lastSeen)
- Connection and requester summaries
"""

import asyncio
from typing import Dict, Iterable, List, Optional, Any

from bson import ObjectId
from pymongo.errors import PyMongoError

from app.db.mongo import get_users_collection
from app.core.exceptions import PersistenceError, ResourceNotFoundError
from app.core.logging import get_logger
from app.models.user import USER_SUMMARY_PROJECTION, serialize_user_summary
from utils.time_utils import utcnow
from utils.validation_utils import is_valid_object_id, to_object_id

logger = get_logger(__name__)


async def get_user_by_id(user_id: Any) -> Optional[Dict[str, Any]]:
    """
    Retrieves a user by ID.

    Args:
        user_id: ObjectId or hex string

    Returns:
        User document or None if not found
    """
    users = get_users_collection()
    try:
        return await users.find_one({"_id": to_object_id(user_id, "userId")})
    except PyMongoError as e:
        raise PersistenceError("Failed to load user") from e


async def ensure_users_exist(user_ids: Iterable[ObjectId]):
    """
    Raises ResourceNotFoundError unless every id refers to an existing user.
    """
    ids = list(dict.fromkeys(user_ids))
    users = get_users_collection()

    try:
        found = await users.count_documents({"_id": {"$in": ids}})
    except PyMongoError as e:
        raise PersistenceError("Failed to load users") from e

    if found != len(ids):
        raise ResourceNotFoundError(
            "One or both users not found",
            details={"userIds": [str(i) for i in ids]}
        )


async def add_mutual_connection(user_a: ObjectId, user_b: ObjectId):
    """
    Adds each user to the other's connections list.
    $addToSet keeps this idempotent for previously matched pairs.
    """
    users = get_users_collection()

    try:
        await asyncio.gather(
            users.update_one({"_id": user_a}, {"$addToSet": {"connections": user_b}}),
            users.update_one({"_id": user_b}, {"$addToSet": {"connections": user_a}}),
        )
    except PyMongoError as e:
        raise PersistenceError("Failed to update user connections") from e

    logger.info(
        "Mutual connection recorded",
        extra={"user_id": str(user_a), "peer_id": str(user_b)}
    )


async def set_presence(user_id: str, online: bool) -> bool:
    """
    Mirrors a presence transition into the user document.

    The stored flag is advisory only; the connection registry is the
    authority for live reachability. Ids that are not ObjectIds are
    skipped.

    Returns:
        True if a user document was updated
    """
    if not is_valid_object_id(user_id):
        return False

    users = get_users_collection()
    result = await users.update_one(
        {"_id": ObjectId(user_id)},
        {"$set": {"isOnline": online, "lastSeen": utcnow()}}
    )
    return result.modified_count > 0


async def get_user_summaries(user_ids: Iterable[ObjectId]) -> Dict[ObjectId, Dict[str, Any]]:
    """
    Loads name/presence summaries for a set of users, keyed by ObjectId.
    """
    ids = [i for i in dict.fromkeys(user_ids) if isinstance(i, ObjectId)]
    if not ids:
        return {}

    users = get_users_collection()
    try:
        cursor = users.find({"_id": {"$in": ids}}, USER_SUMMARY_PROJECTION)
        docs = await cursor.to_list(length=None)
    except PyMongoError as e:
        raise PersistenceError("Failed to load users") from e

    return {doc["_id"]: serialize_user_summary(doc) for doc in docs}


async def get_connections(user_id: Any) -> List[Dict[str, Any]]:
    """
    Returns summaries of every peer the user has been matched with.

    Raises:
        InvalidIdError: If user_id is malformed
        ResourceNotFoundError: If the user does not exist
    """
    user = await get_user_by_id(user_id)
    if not user:
        raise ResourceNotFoundError("User not found", details={"userId": str(user_id)})

    connection_ids = user.get("connections", [])
    summaries = await get_user_summaries(connection_ids)

    # Preserve the order peers were added in
    return [summaries[c] for c in connection_ids if c in summaries]
