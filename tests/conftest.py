"""
Shared test fixtures and utilities.

Persistence runs against mongomock-motor; live sockets are replaced by
FakeTransport, which records every frame pushed to it.
"""

import asyncio
from datetime import timedelta
from types import SimpleNamespace

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient
from starlette.websockets import WebSocketState

from app.db import mongo
from app.main import app, build_realtime
from app.models.cash_request import build_cash_request
from app.realtime.registry import ConnectionRegistry
from app.services.chat_service import ChatService
from app.services.matching_service import MatchingService
from utils.time_utils import utcnow


class FakeTransport:
    """Stands in for a connected WebSocket."""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED

    async def send_json(self, data, mode: str = "text"):
        if self.fail:
            raise RuntimeError("socket is closed")
        self.sent.append(data)

    def events(self, name: str):
        """Payloads of every pushed frame with the given event name."""
        return [frame["data"] for frame in self.sent if frame["event"] == name]

    def disconnect(self):
        self.client_state = WebSocketState.DISCONNECTED


@pytest.fixture
def transport_factory():
    return FakeTransport


@pytest.fixture
def database():
    """Fresh in-memory database bound as the application database."""
    client = AsyncMongoMockClient()
    db = client["cashmate_test"]
    mongo.use_database(db)
    yield db
    mongo.use_database(None)


@pytest.fixture
async def threads(database):
    collection = database[mongo.THREADS_COLLECTION]
    await collection.create_index("pairKey", unique=True)
    return collection


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def chat(registry):
    return ChatService(registry)


@pytest.fixture
def matching(registry):
    return MatchingService(registry)


async def insert_people(database):
    """Inserts a requester and two potential responders."""
    people = SimpleNamespace(requester=ObjectId(), alice=ObjectId(), bob=ObjectId())
    await database[mongo.USERS_COLLECTION].insert_many([
        {"_id": people.requester, "name": "priya", "phone": "+919193345922", "connections": []},
        {"_id": people.alice, "name": "alice", "phone": "+919000000001", "connections": []},
        {"_id": people.bob, "name": "bob", "phone": "+919000000002", "connections": []},
    ])
    return people


async def insert_request(database, requester, **overrides):
    doc = {**build_cash_request(requester, 200, "canteen change"), **overrides}
    result = await database[mongo.CASH_REQUESTS_COLLECTION].insert_one(doc)
    return result.inserted_id


@pytest.fixture
async def people(database):
    return await insert_people(database)


@pytest.fixture
async def pending_request(database, people):
    return await insert_request(database, people.requester)


@pytest.fixture
def request_factory(database, people):
    """Inserts extra requests owned by the requester, with field overrides."""
    async def make(**overrides):
        return await insert_request(database, people.requester, **overrides)
    return make


@pytest.fixture
def client(database):
    """HTTP/WebSocket client with a fresh registry and engines."""
    build_realtime(app)
    return TestClient(app)


@pytest.fixture
def seeded(database):
    """People and a pending request, inserted outside any running loop (sync tests)."""
    people = asyncio.run(insert_people(database))
    people.request = asyncio.run(insert_request(
        database, people.requester, createdAt=utcnow() - timedelta(minutes=5)
    ))
    return people
