import asyncio
import json

import pytest
from bson import ObjectId
from starlette.websockets import WebSocketDisconnect

from app.main import app


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

def test_send_message_and_fetch_history(client):
    response = client.post("/api/messages", json={"senderId": "alice", "recipientId": "bob", "message": "hello"})

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "success"
    assert body["delivery"] == "sent"
    assert body["data"]["senderId"] == "alice"
    assert body["data"]["recipientId"] == "bob"

    history = client.get("/api/messages/bob/alice").json()["data"]
    assert [m["message"] for m in history] == ["hello"]


def test_history_for_strangers_is_empty(client):
    response = client.get("/api/messages/alice/zed")

    assert response.status_code == 200
    assert response.json()["data"] == []


def test_mark_read_over_http(client):
    client.post("/api/messages", json={"senderId": "alice", "recipientId": "bob", "message": "one"})
    client.post("/api/messages", json={"senderId": "alice", "recipientId": "bob", "message": "two"})

    response = client.put("/api/messages/read", json={"senderId": "alice", "recipientId": "bob"})

    assert response.status_code == 200
    assert response.json()["data"] == {"updated": 2}
    statuses = [m["status"] for m in client.get("/api/messages/alice/bob").json()["data"]]
    assert statuses == ["read", "read"]


def test_list_threads(client):
    client.post("/api/messages", json={"senderId": "alice", "recipientId": "bob", "message": "hey"})

    threads = client.get("/api/messages/threads/bob").json()["data"]

    assert len(threads) == 1
    assert threads[0]["otherUserId"] == "alice"
    assert threads[0]["unreadCount"] == 1


@pytest.mark.parametrize("payload", [
    {"senderId": "alice", "recipientId": "bob", "message": "   "},
    {"senderId": "alice", "recipientId": "alice", "message": "me again"},
    {"senderId": "alice", "message": "to nobody"},
])
def test_send_message_rejects_bad_input(client, payload):
    response = client.post("/api/messages", json=payload)

    assert response.status_code == 422
    body = response.json()
    assert body["status"] == "error"
    assert body["code"] == "VALIDATION_ERROR"


# ---------------------------------------------------------------------------
# Cash requests
# ---------------------------------------------------------------------------

def test_create_and_list_cash_requests(client, seeded):
    response = client.post(
        "/api/cash-requests",
        json={"requesterId": str(seeded.alice), "amount": 50, "reason": "  bus fare "}
    )

    assert response.status_code == 201
    created = response.json()["data"]
    assert created["status"] == "pending"
    assert created["reason"] == "bus fare"
    assert created["requester"] == str(seeded.alice)

    listed = client.get("/api/cash-requests").json()["data"]
    assert [r["_id"] for r in listed] == [created["_id"], str(seeded.request)]
    assert listed[0]["requester"]["name"] == "alice"


def test_create_cash_request_requires_positive_amount(client, seeded):
    response = client.post("/api/cash-requests", json={"requesterId": str(seeded.alice), "amount": 0})

    assert response.status_code == 422
    assert response.json()["code"] == "VALIDATION_ERROR"


def test_soft_delete_hides_request_and_broadcasts(client, seeded, transport_factory):
    watcher = transport_factory()
    asyncio.run(app.state.registry.register("watcher", watcher))

    response = client.delete(f"/api/cash-requests/{seeded.request}")

    assert response.status_code == 200
    assert response.json()["data"]["deleted"] is True
    assert watcher.events("request-deleted") == [{"requestId": str(seeded.request)}]

    assert client.get("/api/cash-requests").json()["data"] == []
    shown = client.get("/api/cash-requests", params={"showDeleted": "true"}).json()["data"]
    assert [r["_id"] for r in shown] == [str(seeded.request)]
    history = client.get("/api/cash-requests/history").json()["data"]
    assert len(history) == 1

    # Still fetchable by id
    assert client.get(f"/api/cash-requests/{seeded.request}").status_code == 200


def test_get_cash_request_errors(client, seeded):
    invalid = client.get("/api/cash-requests/not-an-id")
    assert invalid.status_code == 400
    assert invalid.json()["code"] == "INVALID_ID"

    missing = client.get(f"/api/cash-requests/{ObjectId()}")
    assert missing.status_code == 404
    assert missing.json()["code"] == "NOT_FOUND"


# ---------------------------------------------------------------------------
# Connections
# ---------------------------------------------------------------------------

def test_connect_then_conflict(client, seeded):
    first = client.post(
        "/api/connections/connect",
        json={"userId": str(seeded.alice), "requestId": str(seeded.request), "targetUserId": str(seeded.requester)}
    )
    assert first.status_code == 200
    assert first.json()["data"]["connectedTo"]["_id"] == str(seeded.alice)

    second = client.post(
        "/api/connections/connect",
        json={"userId": str(seeded.bob), "requestId": str(seeded.request)}
    )
    assert second.status_code == 409
    assert second.json()["code"] == "ALREADY_CONNECTED"

    peers = client.get(f"/api/connections/{seeded.requester}").json()["data"]
    assert [p["_id"] for p in peers] == [str(seeded.alice)]


def test_connect_with_malformed_ids(client, seeded):
    response = client.post("/api/connections/connect", json={"userId": "abc", "requestId": str(seeded.request)})

    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_ID"


def test_connect_missing_request(client, seeded):
    response = client.post(
        "/api/connections/connect",
        json={"userId": str(seeded.alice), "requestId": str(ObjectId())}
    )

    assert response.status_code == 404


# ---------------------------------------------------------------------------
# WebSocket
# ---------------------------------------------------------------------------

def test_websocket_session(client):
    with client.websocket_connect("/ws?userId=alice") as ws:
        snapshot = ws.receive_json()
        assert snapshot["event"] == "online-users"
        assert snapshot["data"]["users"] == ["alice"]
        assert "alice" in app.state.registry

        ws.send_text("{not json")
        error = ws.receive_json()
        assert error["event"] == "server-error"
        assert error["data"]["code"] == "TRANSPORT_ERROR"

        ws.send_json({"event": "send-message", "data": {"recipientId": "bob", "message": "hi"}})
        ack = ws.receive_json()
        assert ack["event"] == "message-sent"
        assert ack["data"]["status"] == "sent"

    assert "alice" not in app.state.registry


def test_websocket_accepts_binary_frames(client):
    with client.websocket_connect("/ws?userId=alice") as ws:
        ws.receive_json()

        ws.send_bytes(b"not json")
        assert ws.receive_json()["event"] == "server-error"

        ws.send_bytes(json.dumps({"event": "send-message", "data": {"recipientId": "bob", "message": "hi"}}).encode())
        ack = ws.receive_json()
        assert ack["event"] == "message-sent"

    history = client.get("/api/messages/bob/alice").json()["data"]
    assert [m["message"] for m in history] == ["hi"]


def test_websocket_requires_user_id(client):
    with client.websocket_connect("/ws") as ws:
        error = ws.receive_json()
        assert error["event"] == "server-error"

        with pytest.raises(WebSocketDisconnect) as exc_info:
            ws.receive_json()

    assert exc_info.value.code == 1008


def test_health_reports_online_users(client):
    response = client.get("/health")

    # No Mongo client is connected under test, so the database check fails
    assert response.status_code == 503
    body = response.json()
    assert body["checks"]["database"] == "unhealthy"
    assert body["online_users"] == 0


def test_liveness_endpoint(client):
    assert client.get("/live").json() == {"status": "alive"}
