"""
app/api/dependencies.py

Purpose: FastAPI dependencies

- Hands route handlers the registry and engines held on app.state
"""

from fastapi import Request

from app.realtime.registry import ConnectionRegistry
from app.services.chat_service import ChatService
from app.services.matching_service import MatchingService


def get_registry(request: Request) -> ConnectionRegistry:
    return request.app.state.registry


def get_chat_service(request: Request) -> ChatService:
    return request.app.state.chat_service


def get_matching_service(request: Request) -> MatchingService:
    return request.app.state.matching_service
