# tests/test_main.py — Application wiring: health, headers and error bodies
import pytest
from httpx import AsyncClient

from tests.conftest import get_auth_headers


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] in ("healthy", "degraded")


@pytest.mark.asyncio
async def test_request_id_is_echoed(client: AsyncClient):
    resp = await client.get("/", headers={"X-Request-ID": "abc-123"})
    assert resp.headers["X-Request-ID"] == "abc-123"
    assert resp.headers["X-Content-Type-Options"] == "nosniff"


@pytest.mark.asyncio
async def test_errors_use_message_body(client: AsyncClient, test_user):
    resp = await client.get("/api/v1/cards/missing", headers=get_auth_headers(test_user))
    assert resp.status_code == 404
    assert resp.json() == {"message": "Card not found"}


@pytest.mark.asyncio
async def test_unknown_route_uses_message_body(client: AsyncClient):
    resp = await client.get("/api/v1/nowhere")
    assert resp.status_code == 404
    assert "message" in resp.json()
