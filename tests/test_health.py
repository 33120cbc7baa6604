import pytest
from aiohttp.test_utils import TestClient, TestServer

from randomcall.health import create_health_app
from randomcall.matchmaking.sweeper import Sweeper


@pytest.mark.asyncio
async def test_health_ok_when_sweeper_running(store, settings):
    sweeper = Sweeper(store, settings)
    sweeper.start()
    client = TestClient(TestServer(create_health_app(store, sweeper)))
    await client.start_server()
    try:
        response = await client.get("/health")
        assert response.status == 200
        body = await response.json()
        assert body["status"] == "ok"
        assert body["service"] == "randomcall"
        assert body["details"]["database"] is True
        assert body["details"]["sweeper"]["running"] is True
        assert "store_operations" in body["details"]["metrics"]
    finally:
        await client.close()
        await sweeper.stop()


@pytest.mark.asyncio
async def test_health_unhealthy_when_sweeper_stopped(store, settings):
    client = TestClient(TestServer(create_health_app(store, Sweeper(store, settings))))
    await client.start_server()
    try:
        response = await client.get("/")
        assert response.status == 503
        body = await response.json()
        assert body["status"] == "unhealthy"
    finally:
        await client.close()
