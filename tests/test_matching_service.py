import asyncio

import pytest
from bson import ObjectId

from app.core.exceptions import (
    AlreadyConnectedError,
    InvalidIdError,
    RequestClosedError,
    ResourceNotFoundError,
    PersistenceError,
    ValidationError,
)
from app.db.mongo import CASH_REQUESTS_COLLECTION, USERS_COLLECTION


@pytest.mark.asyncio
async def test_connect_pending_request(matching, registry, database, people, pending_request, transport_factory):
    watcher = transport_factory()
    await registry.register("watcher", watcher)

    request = await matching.connect(str(people.alice), str(pending_request))

    assert request["status"] == "connected"
    assert request["connectedTo"]["_id"] == str(people.alice)
    assert request["connectedTo"]["name"] == "alice"

    stored = await database[CASH_REQUESTS_COLLECTION].find_one({"_id": pending_request})
    assert stored["status"] == "connected"
    assert stored["connectedTo"] == people.alice

    event = watcher.events("request-connected")[0]
    assert event["requestId"] == str(pending_request)
    assert event["connectedUsers"] == {
        "userId": str(people.alice),
        "targetUserId": str(people.requester),
    }
    assert event["request"]["requester"]["name"] == "priya"
    assert event["request"]["connectedTo"]["name"] == "alice"


@pytest.mark.asyncio
async def test_connect_records_mutual_connections(matching, database, people, pending_request):
    await matching.connect(str(people.alice), str(pending_request), str(people.requester))

    users = database[USERS_COLLECTION]
    alice = await users.find_one({"_id": people.alice})
    requester = await users.find_one({"_id": people.requester})
    assert alice["connections"] == [people.requester]
    assert requester["connections"] == [people.alice]


@pytest.mark.asyncio
async def test_repeat_match_does_not_duplicate_connections(matching, database, people, pending_request, request_factory):
    second_request = await request_factory()

    await matching.connect(str(people.alice), str(pending_request))
    await matching.connect(str(people.alice), str(second_request))

    alice = await database[USERS_COLLECTION].find_one({"_id": people.alice})
    assert alice["connections"] == [people.requester]


@pytest.mark.asyncio
async def test_concurrent_connects_have_one_winner(matching, database, people, pending_request):
    results = await asyncio.gather(
        matching.connect(str(people.alice), str(pending_request)),
        matching.connect(str(people.bob), str(pending_request)),
        return_exceptions=True,
    )

    winners = [r for r in results if isinstance(r, dict)]
    losers = [r for r in results if isinstance(r, AlreadyConnectedError)]
    assert len(winners) == 1
    assert len(losers) == 1

    stored = await database[CASH_REQUESTS_COLLECTION].find_one({"_id": pending_request})
    assert stored["connectedTo"] == ObjectId(winners[0]["connectedTo"]["_id"])


@pytest.mark.asyncio
async def test_loser_of_race_after_read_gets_already_connected(matching, database, people, pending_request, monkeypatch):
    original_load = matching._load

    async def load_then_lose_race(request_oid):
        doc = await original_load(request_oid)
        # Another responder commits between our read and our update
        await database[CASH_REQUESTS_COLLECTION].update_one(
            {"_id": request_oid},
            {"$set": {"status": "connected", "connectedTo": people.bob}}
        )
        return doc

    monkeypatch.setattr(matching, "_load", load_then_lose_race)

    with pytest.raises(AlreadyConnectedError) as exc_info:
        await matching.connect(str(people.alice), str(pending_request))

    assert exc_info.value.status_code == 409
    stored = await database[CASH_REQUESTS_COLLECTION].find_one({"_id": pending_request})
    assert stored["connectedTo"] == people.bob

    alice = await database[USERS_COLLECTION].find_one({"_id": people.alice})
    assert alice["connections"] == []


@pytest.mark.asyncio
async def test_connect_already_connected_request(matching, database, people, request_factory):
    request_id = await request_factory(status="connected", connectedTo=people.bob)

    with pytest.raises(AlreadyConnectedError) as exc_info:
        await matching.connect(str(people.alice), str(request_id))

    assert exc_info.value.details["connectedTo"] == str(people.bob)


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["fulfilled", "cancelled"])
async def test_connect_closed_request(matching, database, people, status, request_factory):
    request_id = await request_factory(status=status)

    with pytest.raises(RequestClosedError):
        await matching.connect(str(people.alice), str(request_id))

    stored = await database[CASH_REQUESTS_COLLECTION].find_one({"_id": request_id})
    assert stored["status"] == status


@pytest.mark.asyncio
async def test_soft_deleted_pending_request_is_still_connectable(matching, database, people, request_factory):
    request_id = await request_factory(deleted=True)

    request = await matching.connect(str(people.alice), str(request_id))

    assert request["status"] == "connected"


@pytest.mark.asyncio
async def test_connect_missing_request(matching, people):
    with pytest.raises(ResourceNotFoundError):
        await matching.connect(str(people.alice), str(ObjectId()))


@pytest.mark.asyncio
async def test_connect_missing_user(matching, database, people, pending_request):
    with pytest.raises(ResourceNotFoundError):
        await matching.connect(str(ObjectId()), str(pending_request))

    stored = await database[CASH_REQUESTS_COLLECTION].find_one({"_id": pending_request})
    assert stored["status"] == "pending"


@pytest.mark.asyncio
@pytest.mark.parametrize("user_id,request_id", [
    ("not-an-id", None),
    (None, "12345"),
])
async def test_connect_malformed_ids(matching, people, pending_request, user_id, request_id):
    with pytest.raises(InvalidIdError) as exc_info:
        await matching.connect(user_id or str(people.alice), request_id or str(pending_request))

    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_cannot_connect_to_own_request(matching, people, pending_request):
    with pytest.raises(ValidationError):
        await matching.connect(str(people.requester), str(pending_request))


@pytest.mark.asyncio
async def test_target_must_match_request_owner(matching, people, pending_request):
    with pytest.raises(ValidationError):
        await matching.connect(str(people.alice), str(pending_request), str(people.bob))


@pytest.mark.asyncio
async def test_get_connections_reports_live_presence(matching, registry, people, pending_request, transport_factory):
    await matching.connect(str(people.alice), str(pending_request))

    connections = await matching.get_connections(str(people.alice))
    assert [c["_id"] for c in connections] == [str(people.requester)]
    assert connections[0]["name"] == "priya"
    assert connections[0]["online"] is False

    await registry.register(str(people.requester), transport_factory())

    connections = await matching.get_connections(str(people.alice))
    assert connections[0]["online"] is True


@pytest.mark.asyncio
async def test_get_connections_unknown_user(matching, people):
    with pytest.raises(ResourceNotFoundError):
        await matching.get_connections(str(ObjectId()))


@pytest.mark.asyncio
async def test_connections_write_failure_still_completes_match(matching, registry, database, people, pending_request, transport_factory, monkeypatch):
    async def broken_add(*args, **kwargs):
        raise PersistenceError("Failed to update user connections")

    monkeypatch.setattr("app.services.user_service.add_mutual_connection", broken_add)
    watcher = transport_factory()
    await registry.register("watcher", watcher)

    request = await matching.connect(str(people.alice), str(pending_request))

    assert request["status"] == "connected"
    assert watcher.events("request-connected")[0]["requestId"] == str(pending_request)

    stored = await database[CASH_REQUESTS_COLLECTION].find_one({"_id": pending_request})
    assert stored["connectedTo"] == people.alice
