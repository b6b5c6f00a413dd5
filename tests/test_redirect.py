"""Redirect endpoint behavior tests."""

import pytest
from httpx import AsyncClient

from shortener.dependencies import ServiceManager


@pytest.mark.asyncio
async def test_redirect_valid_code(client: AsyncClient) -> None:
    create_response = await client.post("/api/shorten", json={"url": "https://www.google.com"})
    short_code = create_response.json()["shortCode"]

    response = await client.get(f"/{short_code}")
    assert response.status_code == 302
    assert response.headers["location"] == "https://www.google.com"


@pytest.mark.asyncio
async def test_redirect_nonexistent_code(client: AsyncClient) -> None:
    response = await client.get("/nonexistent123")
    assert response.status_code == 404
    assert response.json() == {"error": "Short URL not found"}


@pytest.mark.asyncio
async def test_redirect_records_click_metadata(client: AsyncClient, service_manager: ServiceManager) -> None:
    create_response = await client.post("/api/shorten", json={"url": "https://www.github.com"})
    short_code = create_response.json()["shortCode"]

    await client.get(f"/{short_code}", headers={"user-agent": "TestAgent/1.0", "referer": "https://blog.example"})
    await client.get(f"/{short_code}", headers={"user-agent": "TestAgent/1.0"})
    await service_manager.recorder.drain()

    stats = (await client.get(f"/api/analytics/{short_code}")).json()
    assert stats["stats"]["totalClicks"] == 2
    first, second = stats["recentAccesses"]
    assert first["userAgent"] == "TestAgent/1.0"
    assert first["referer"] == "https://blog.example"
    assert first["ipAddress"] == "127.0.0.1"
    assert second["referer"] == "Unknown"


@pytest.mark.asyncio
async def test_redirect_increments_clicks(client: AsyncClient, service_manager: ServiceManager) -> None:
    create_response = await client.post("/api/shorten", json={"url": "https://www.python.org"})
    short_code = create_response.json()["shortCode"]

    for _ in range(5):
        response = await client.get(f"/{short_code}")
        assert response.status_code == 302
    await service_manager.recorder.drain()

    stats = (await client.get(f"/api/analytics/{short_code}")).json()
    assert stats["stats"]["totalClicks"] == 5
    assert len(stats["recentAccesses"]) == 5


@pytest.mark.asyncio
async def test_redirect_expired_code(client: AsyncClient, make_mapping, days_ago) -> None:
    await make_mapping("expired1", "https://www.example.com/old", created_at=days_ago(2), expires_at=days_ago(1))

    response = await client.get("/expired1")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_redirect_deactivated_code(client: AsyncClient) -> None:
    create_response = await client.post("/api/shorten", json={"url": "https://www.example.com/gone"})
    short_code = create_response.json()["shortCode"]

    assert (await client.delete(f"/api/urls/{short_code}")).status_code == 200

    response = await client.get(f"/{short_code}")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_redirect_malformed_code(client: AsyncClient) -> None:
    response = await client.get("/not-a-code")
    assert response.status_code == 404
