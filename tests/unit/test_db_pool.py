from contextlib import asynccontextmanager
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from app.db.pool import DatabasePoolManager


class _Cursor:
    async def fetchone(self):
        return {"ok": 1}


class _Connection:
    async def execute(self, query):
        return _Cursor()


def _manager(*, pool_size=4, available=3, waiting=0, max_size=20):
    @asynccontextmanager
    async def _connection():
        yield _Connection()

    manager = DatabasePoolManager()
    manager.pool = SimpleNamespace(
        get_stats=lambda: {
            "pool_size": pool_size,
            "pool_available": available,
            "requests_waiting": waiting,
        },
        connection=_connection,
        max_size=max_size,
        close=AsyncMock(),
    )
    manager._initialized = True
    return manager


@pytest.mark.asyncio
async def test_uninitialized_pool_is_unhealthy():
    health = await DatabasePoolManager().health_check()

    assert health["healthy"] is False
    assert health["error"] == "Pool not initialized"


@pytest.mark.asyncio
async def test_idle_pool_is_healthy():
    health = await _manager().health_check()

    assert health["healthy"] is True
    assert health["pool_stats"]["pool_utilization_percent"] == 25.0
    assert "warnings" not in health


@pytest.mark.asyncio
async def test_queued_requests_make_pool_unhealthy():
    health = await _manager(available=0, waiting=3).health_check()

    assert health["healthy"] is False
    assert health["error"] == "3 requests waiting for connections"


@pytest.mark.asyncio
async def test_small_pool_warns_about_batch_size():
    health = await _manager(max_size=2).health_check()

    assert health["healthy"] is True
    assert "below the default batch size" in health["warnings"][0]


@pytest.mark.asyncio
async def test_closed_pool_reports_closed():
    manager = _manager()
    await manager.close()

    health = await manager.health_check()

    assert health["error"] == "Pool is closed"
