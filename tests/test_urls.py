"""Listing and deletion endpoint tests."""

from unittest.mock import AsyncMock, patch

import pytest
import redis.asyncio as redis
from httpx import AsyncClient

from shortener.cache import RETIRED_MARKER
from shortener.dependencies import ServiceManager
from shortener.store import SQLMappingStore


async def shorten(client: AsyncClient, url: str, user_id: str | None = None, **fields) -> str:
    headers = {"x-user-id": user_id} if user_id else {}
    response = await client.post("/api/shorten", json={"url": url, **fields}, headers=headers)
    assert response.status_code == 201
    return response.json()["shortCode"]


@pytest.mark.asyncio
async def test_list_urls_newest_first(client: AsyncClient) -> None:
    codes = [await shorten(client, f"https://example.com/{index}") for index in range(3)]

    response = await client.get("/api/urls")
    assert response.status_code == 200
    body = response.json()
    assert [item["shortCode"] for item in body["data"]] == list(reversed(codes))
    assert body["pagination"] == {"page": 1, "limit": 20, "total": 3, "pages": 1}
    assert body["data"][0]["clickCount"] == 0
    assert body["data"][0]["isActive"] is True


@pytest.mark.asyncio
async def test_list_urls_pagination(client: AsyncClient) -> None:
    for index in range(5):
        await shorten(client, f"https://example.com/{index}")

    body = (await client.get("/api/urls", params={"page": 2, "limit": 2})).json()
    assert len(body["data"]) == 2
    assert body["pagination"] == {"page": 2, "limit": 2, "total": 5, "pages": 3}


@pytest.mark.asyncio
async def test_list_urls_limit_is_capped(client: AsyncClient) -> None:
    body = (await client.get("/api/urls", params={"limit": 500})).json()
    assert body["pagination"]["limit"] == 100
    assert body["pagination"]["pages"] == 0


@pytest.mark.asyncio
async def test_list_urls_rejects_bad_page(client: AsyncClient) -> None:
    response = await client.get("/api/urls", params={"page": 0})
    assert response.status_code == 400
    assert response.json()["details"][0]["field"] == "page"


@pytest.mark.asyncio
async def test_list_urls_active_only_and_mine(client: AsyncClient) -> None:
    mine = await shorten(client, "https://example.com/mine", user_id="user-1")
    await shorten(client, "https://example.com/theirs", user_id="user-2")
    retired = await shorten(client, "https://example.com/retired", user_id="user-1")
    await client.delete(f"/api/urls/{retired}", headers={"x-user-id": "user-1"})

    assert (await client.get("/api/urls")).json()["pagination"]["total"] == 2

    everything = (await client.get("/api/urls", params={"activeOnly": "false"})).json()
    assert everything["pagination"]["total"] == 3

    own = (await client.get("/api/urls", params={"mine": "true"}, headers={"x-user-id": "user-1"})).json()
    assert [item["shortCode"] for item in own["data"]] == [mine]


@pytest.mark.asyncio
async def test_delete_anonymous_url(client: AsyncClient) -> None:
    short_code = await shorten(client, "https://example.com/anon")

    response = await client.delete(f"/api/urls/{short_code}")
    assert response.status_code == 200
    body = response.json()
    assert body["shortCode"] == short_code
    assert body["deactivatedAt"]

    assert (await client.delete(f"/api/urls/{short_code}")).status_code == 404


@pytest.mark.asyncio
async def test_delete_requires_owner(client: AsyncClient) -> None:
    short_code = await shorten(client, "https://example.com/owned", user_id="user-1")

    assert (await client.delete(f"/api/urls/{short_code}")).status_code == 404
    assert (await client.delete(f"/api/urls/{short_code}", headers={"x-user-id": "user-2"})).status_code == 404
    assert (await client.get(f"/{short_code}")).status_code == 302

    response = await client.delete(f"/api/urls/{short_code}", headers={"x-user-id": "user-1"})
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_delete_unknown_code(client: AsyncClient) -> None:
    response = await client.delete("/api/urls/nothere")
    assert response.status_code == 404
    assert response.json() == {"error": "Short URL not found"}


@pytest.mark.asyncio
async def test_deleted_url_gets_fresh_code_and_old_code_stays_retired(client: AsyncClient) -> None:
    old_code = await shorten(client, "https://example.com/again", customCode="again1")
    await client.delete(f"/api/urls/{old_code}")

    new_code = await shorten(client, "https://example.com/again")
    assert new_code != old_code

    response = await client.post("/api/shorten", json={"url": "https://example.com/other", "customCode": "again1"})
    assert response.status_code == 409


async def use_mock_cache(service_manager: ServiceManager, settings_factory, session_factory) -> AsyncMock:
    mock_redis = AsyncMock(spec=redis.Redis)
    mock_redis.get = AsyncMock(return_value=None)
    mock_redis.set = AsyncMock(return_value=True)
    await service_manager.cleanup()
    await service_manager.initialize(
        settings=settings_factory(CACHE_ENABLED=True),
        session_factory=session_factory,
        cache_client=mock_redis,
    )
    return mock_redis


@pytest.mark.asyncio
async def test_delete_retires_cached_redirect(
    client: AsyncClient, service_manager: ServiceManager, settings_factory, session_factory
) -> None:
    mock_redis = await use_mock_cache(service_manager, settings_factory, session_factory)

    short_code = await shorten(client, "https://example.com/cached")
    assert (await client.get(f"/{short_code}")).status_code == 302
    mock_redis.set.assert_awaited_once()
    assert mock_redis.set.await_args.kwargs["nx"] is True

    assert (await client.delete(f"/api/urls/{short_code}")).status_code == 200
    mock_redis.set.assert_awaited_with(f"url:{short_code}", RETIRED_MARKER, ex=3600)


@pytest.mark.asyncio
async def test_delete_succeeds_when_cache_is_down(
    client: AsyncClient, service_manager: ServiceManager, settings_factory, session_factory
) -> None:
    mock_redis = await use_mock_cache(service_manager, settings_factory, session_factory)
    short_code = await shorten(client, "https://example.com/flaky-cache")

    mock_redis.set.side_effect = redis.ConnectionError("redis down")
    response = await client.delete(f"/api/urls/{short_code}")

    assert response.status_code == 200
    assert response.json()["shortCode"] == short_code
    # Retired before the write, tried again after it.
    assert mock_redis.set.await_count == 2
    assert (await client.get(f"/{short_code}")).status_code == 404


@pytest.mark.asyncio
async def test_concurrent_delete_reports_not_found(client: AsyncClient, session_factory) -> None:
    short_code = await shorten(client, "https://example.com/twice")
    real_deactivate = SQLMappingStore.deactivate

    async def deactivated_concurrently(self: SQLMappingStore, mapping_id: int) -> bool:
        async with session_factory() as session:
            await real_deactivate(SQLMappingStore(session), mapping_id)
        return await real_deactivate(self, mapping_id)

    with patch.object(SQLMappingStore, "deactivate", autospec=True, side_effect=deactivated_concurrently):
        response = await client.delete(f"/api/urls/{short_code}")

    assert response.status_code == 404
    assert (await client.get(f"/{short_code}")).status_code == 404
