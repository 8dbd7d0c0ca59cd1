import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo.errors import ConnectionFailure, ServerSelectionTimeoutError

from app.services.mongo_service import MongoConnectionManager
from app.utils.errors import DatabaseConnectionError


def make_client(ping_side_effect=None):
    client = MagicMock()
    client.admin.command = AsyncMock(side_effect=ping_side_effect)
    collection = MagicMock()
    collection.create_indexes = AsyncMock()
    db = MagicMock()
    db.__getitem__.return_value = collection
    client.__getitem__.return_value = db
    return client


def make_manager(*clients):
    factory = MagicMock(side_effect=list(clients))
    manager = MongoConnectionManager("mongodb://db:27017", client_factory=factory)
    return manager, factory


@pytest.mark.asyncio
async def test_connection_is_opened_lazily_with_pool_and_timeouts():
    manager, factory = make_manager(make_client())
    assert not manager.connected
    factory.assert_not_called()

    await manager.get_database()

    assert manager.connected
    args, kwargs = factory.call_args
    assert args == ("mongodb://db:27017",)
    assert kwargs["maxPoolSize"] == 10
    assert kwargs["connectTimeoutMS"] == 10000
    assert kwargs["maxIdleTimeMS"] == 30000


@pytest.mark.asyncio
async def test_healthy_client_is_reused():
    client = make_client()
    manager, factory = make_manager(client)

    await manager.get_database()
    await manager.get_database()

    assert factory.call_count == 1
    assert client.admin.command.await_count == 2


@pytest.mark.asyncio
async def test_failed_ping_reconnects():
    stale = make_client(ping_side_effect=[None, ConnectionFailure("gone")])
    fresh = make_client()
    manager, factory = make_manager(stale, fresh)

    await manager.get_database()
    await manager.get_database()

    assert factory.call_count == 2
    stale.close.assert_called_once()


@pytest.mark.asyncio
async def test_unreachable_server_raises_connection_error():
    manager, _ = make_manager(
        make_client(ping_side_effect=ServerSelectionTimeoutError("timeout")),
        make_client(ping_side_effect=ServerSelectionTimeoutError("timeout")),
    )

    with pytest.raises(DatabaseConnectionError):
        await manager.get_database()
    assert not manager.connected
    assert await manager.ping() is False


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_connection_attempt():
    manager, factory = make_manager(make_client(), make_client())

    await asyncio.gather(*(manager.get_database() for _ in range(5)))

    assert factory.call_count == 1


@pytest.mark.asyncio
async def test_indexes_are_created_on_connect():
    client = make_client()
    manager, _ = make_manager(client)
    await manager.get_database()
    collection = client["nutribot_db"]["conversations"]
    collection.create_indexes.assert_awaited_once()


@pytest.mark.asyncio
async def test_invalidate_and_close_drop_the_client():
    first, second = make_client(), make_client()
    manager, factory = make_manager(first, second)
    await manager.get_database()

    manager.invalidate()
    assert not manager.connected
    first.close.assert_called_once()

    await manager.get_database()
    await manager.close()
    assert not manager.connected
    second.close.assert_called_once()
    assert factory.call_count == 2


@pytest.mark.asyncio
async def test_health_pings_on_a_live_client_run_concurrently():
    client = make_client()
    manager, _ = make_manager(client)
    await manager.get_database()

    in_flight = 0
    peak = 0

    async def slow_ping(*args, **kwargs):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.05)
        in_flight -= 1

    client.admin.command = AsyncMock(side_effect=slow_ping)
    await asyncio.gather(*(manager.get_database() for _ in range(5)))

    assert peak == 5


@pytest.mark.asyncio
async def test_concurrent_failed_pings_reconnect_once():
    stale = make_client(ping_side_effect=[None] + [ConnectionFailure("gone")] * 3)
    fresh = make_client()
    manager, factory = make_manager(stale, fresh)
    await manager.get_database()

    await asyncio.gather(*(manager.get_database() for _ in range(3)))

    assert factory.call_count == 2
    stale.close.assert_called_once()
