"""
app/schemas/api.py

Pydantic models for HTTP request bodies.
These schemas ensure type safety and automatic validation for all API endpoints.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


class SendMessageRequest(BaseModel):
    """Request schema for the persisted send-message endpoint."""

    model_config = ConfigDict(str_strip_whitespace=True)

    senderId: str = Field(..., min_length=1, description="Author of the message")
    recipientId: str = Field(..., min_length=1, description="Other participant")
    message: str = Field(..., min_length=1, description="Message text")


class MarkReadRequest(BaseModel):
    """
    Request schema for read receipts.

    `recipientId` has read every message `senderId` sent them.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    senderId: str = Field(..., min_length=1, description="Author whose messages were read")
    recipientId: str = Field(..., min_length=1, description="User who read them")


class CreateCashRequest(BaseModel):
    """Request schema for creating a cash request."""

    requesterId: str = Field(..., description="User asking for cash")
    amount: float = Field(..., gt=0, description="Requested amount")
    reason: Optional[str] = Field(default=None, max_length=500, description="Free-text reason")


class ConnectRequest(BaseModel):
    """Request schema for connecting a user to a cash request."""

    userId: str = Field(..., min_length=1, description="User accepting the request")
    requestId: str = Field(..., min_length=1, description="Cash request to connect")
    targetUserId: Optional[str] = Field(default=None, description="Owner of the request (optional cross-check)")
