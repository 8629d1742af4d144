"""
app/api/realtime.py

Purpose: WebSocket endpoint

- Accepts one persistent socket per user (?userId=...)
- Hands it to the event dispatcher for its lifetime
"""

from typing import Optional

from fastapi import APIRouter, Query, WebSocket

from app.core.config import settings

router = APIRouter()


@router.websocket(settings.WS_PATH)
async def realtime_socket(websocket: WebSocket, user_id: Optional[str] = Query(None, alias="userId")):
    dispatcher = websocket.app.state.dispatcher
    await dispatcher.serve(websocket, user_id)
