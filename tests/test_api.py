"""Test health endpoint and basic API structure."""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["app"] == "ABEngine-Lite"


@pytest.mark.asyncio
async def test_api_docs(client: AsyncClient):
    resp = await client.get("/docs")
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_active_endpoint_is_public(client: AsyncClient):
    resp = await client.get("/api/v1/ab-tests/active")
    assert resp.status_code == 200
    assert resp.json() == []


@pytest.mark.asyncio
async def test_auth_login_endpoint_exists(client: AsyncClient):
    resp = await client.post("/api/v1/auth/login", json={"email": "a@b.com", "password": "x"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_openapi_lists_routes(client: AsyncClient):
    paths = (await client.get("/openapi.json")).json()["paths"]
    assert "/api/v1/ab-tests/{test_id}/analyze" in paths
    assert "/api/v1/ab-tests/{test_id}/variants/{variant_id}/impression" in paths
