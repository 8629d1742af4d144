"""
app/api/connections.py

Purpose: Matching HTTP endpoints

- Connect a user to a pending cash request
- List a user's matched peers
"""

from fastapi import APIRouter, Depends

from app.api.dependencies import get_matching_service
from app.core.logging import get_logger
from app.schemas.api import ConnectRequest
from app.schemas.response import SuccessResponse
from app.services.matching_service import MatchingService

logger = get_logger(__name__)
router = APIRouter(prefix="/connections")


@router.post("/connect")
async def connect_users(body: ConnectRequest, matching: MatchingService = Depends(get_matching_service)):
    """
    Connects `userId` to the cash request.

    409 ALREADY_CONNECTED means another user took the request first.
    """
    request = await matching.connect(body.userId, body.requestId, body.targetUserId)
    return SuccessResponse(message="Users connected successfully", data=request)


@router.get("/{user_id}")
async def get_user_connections(user_id: str, matching: MatchingService = Depends(get_matching_service)):
    connections = await matching.get_connections(user_id)
    return SuccessResponse(message="Connections fetched", data=connections)
