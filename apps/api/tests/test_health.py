"""Tests for Health endpoint."""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert "env" in data
    assert "version" in data


@pytest.mark.asyncio
async def test_health_does_not_require_internal_secret(client: AsyncClient):
    response = await client.get("/health", headers={"X-Internal-Secret": "wrong"})
    assert response.status_code == 200
