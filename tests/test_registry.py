import asyncio

import pytest

from app.core.exceptions import DeliveryError
from app.realtime.registry import ConnectionRegistry, transport_is_connected
from app.schemas.events import OutboundEvent


@pytest.mark.asyncio
async def test_register_announces_online_to_others_only(registry, transport_factory):
    alice, bob = transport_factory(), transport_factory()

    await registry.register("alice", alice)
    await registry.register("bob", bob)

    assert alice.events("user-online") == [{"userId": "bob"}]
    assert bob.events("user-online") == []
    assert registry.list_online() == {"alice", "bob"}


@pytest.mark.asyncio
async def test_last_connect_wins(registry, transport_factory):
    t1, t2 = transport_factory(), transport_factory()

    await registry.register("alice", t1)
    await registry.register("alice", t2)

    assert registry.lookup("alice") is t2
    assert len(registry) == 1


@pytest.mark.asyncio
async def test_stale_disconnect_does_not_evict_replacement(registry, transport_factory):
    t1, t2 = transport_factory(), transport_factory()
    await registry.register("alice", t1)
    await registry.register("alice", t2)

    removed = await registry.unregister("alice", t1)

    assert removed is False
    assert registry.lookup("alice") is t2


@pytest.mark.asyncio
async def test_presence_under_churn(registry, transport_factory):
    for _ in range(5):
        await registry.register("alice", transport_factory())
        await registry.unregister("alice")

    assert registry.lookup("alice") is None

    latest = transport_factory()
    await registry.register("alice", latest)
    assert registry.lookup("alice") is latest


@pytest.mark.asyncio
async def test_unregister_announces_offline(registry, transport_factory):
    alice, bob = transport_factory(), transport_factory()
    await registry.register("alice", alice)
    await registry.register("bob", bob)

    assert await registry.unregister("alice", alice) is True

    assert bob.events("user-offline") == [{"userId": "alice"}]
    assert alice.events("user-offline") == []
    assert "alice" not in registry


@pytest.mark.asyncio
async def test_unregister_unknown_user_is_noop(registry):
    assert await registry.unregister("ghost") is False


@pytest.mark.asyncio
async def test_send_to_absent_user_returns_false(registry):
    assert await registry.send_to("nobody", OutboundEvent.USER_TYPING, {}) is False


@pytest.mark.asyncio
async def test_send_to_failing_transport_raises(registry, transport_factory):
    await registry.register("alice", transport_factory(fail=True))

    with pytest.raises(DeliveryError):
        await registry.send_to("alice", OutboundEvent.NEW_MESSAGE, {"message": "hi"})


@pytest.mark.asyncio
async def test_broadcast_skips_failing_transport(registry, transport_factory):
    broken, healthy = transport_factory(fail=True), transport_factory()
    await registry.register("broken", broken)
    await registry.register("healthy", healthy)

    await registry.broadcast(OutboundEvent.REQUEST_DELETED, {"requestId": "r1"})

    assert healthy.events("request-deleted") == [{"requestId": "r1"}]


@pytest.mark.asyncio
async def test_sweep_evicts_closed_transports(registry, transport_factory):
    alice, bob = transport_factory(), transport_factory()
    await registry.register("alice", alice)
    await registry.register("bob", bob)

    alice.disconnect()
    evicted = await registry.sweep()

    assert evicted == ["alice"]
    assert registry.lookup("alice") is None
    assert bob.events("user-offline") == [{"userId": "alice"}]


@pytest.mark.asyncio
async def test_sweeper_runs_periodically(transport_factory):
    registry = ConnectionRegistry(sweep_interval=0.01)
    dead = transport_factory()
    await registry.register("alice", dead)
    dead.disconnect()

    registry.start_sweeper()
    try:
        for _ in range(50):
            if registry.lookup("alice") is None:
                break
            await asyncio.sleep(0.01)
    finally:
        await registry.stop_sweeper()

    assert registry.lookup("alice") is None


@pytest.mark.asyncio
async def test_presence_callback_receives_transitions(transport_factory):
    calls = []

    async def record(user_id, online):
        calls.append((user_id, online))

    registry = ConnectionRegistry(on_presence_change=record)
    transport = transport_factory()
    await registry.register("alice", transport)
    await registry.unregister("alice", transport)

    assert calls == [("alice", True), ("alice", False)]


@pytest.mark.asyncio
async def test_presence_callback_failure_does_not_block_registration(transport_factory):
    async def broken(user_id, online):
        raise RuntimeError("database down")

    registry = ConnectionRegistry(on_presence_change=broken)
    transport = transport_factory()
    await registry.register("alice", transport)

    assert registry.lookup("alice") is transport


def test_transport_is_connected(transport_factory):
    transport = transport_factory()
    assert transport_is_connected(transport)

    transport.disconnect()
    assert not transport_is_connected(transport)
    assert not transport_is_connected(object())
