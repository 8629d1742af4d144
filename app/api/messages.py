"""
app/api/messages.py

Purpose: Chat HTTP endpoints

- Persisted send (also pushes live when the recipient is online)
- History between two users
- Read receipts
- Thread listing for the active-chats view
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder

from app.api.dependencies import get_chat_service
from app.core.logging import get_logger
from app.schemas.api import MarkReadRequest, SendMessageRequest
from app.schemas.response import SuccessResponse
from app.services.chat_service import ChatService

logger = get_logger(__name__)
router = APIRouter(prefix="/messages")


@router.post("", status_code=201)
async def send_message(body: SendMessageRequest, chat: ChatService = Depends(get_chat_service)):
    """
    Sends a message over HTTP.

    The message is stored first; live delivery is attempted afterwards
    and reflected in `delivery` (sent | delivered).
    """
    receipt = await chat.send_message(body.senderId, body.recipientId, body.message)

    content = SuccessResponse(message="Message sent", data=receipt.message).model_dump()
    content["delivery"] = receipt.status.value
    return JSONResponse(status_code=201, content=jsonable_encoder(content))


@router.put("/read")
async def mark_messages_read(body: MarkReadRequest, chat: ChatService = Depends(get_chat_service)):
    """Marks every message from `senderId` to `recipientId` as read."""
    updated = await chat.mark_read(body.recipientId, body.senderId)
    return SuccessResponse(message="Messages marked as read", data={"updated": updated})


@router.get("/threads/{user_id}")
async def list_threads(user_id: str, chat: ChatService = Depends(get_chat_service)):
    """Lists a user's chat threads, most recent first."""
    threads = await chat.list_threads(user_id)
    return SuccessResponse(message="Threads fetched", data=threads)


@router.get("/{user_id}/{other_user_id}")
async def get_history(user_id: str, other_user_id: str, chat: ChatService = Depends(get_chat_service)):
    """
    Returns the chat history between two users in send order.
    An empty list means they have not chatted yet.
    """
    messages = await chat.get_history(user_id, other_user_id)
    return SuccessResponse(message="Messages fetched", data=messages)
