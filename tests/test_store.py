"""SQL mapping store tests against a per-test SQLite database."""

import datetime

import pytest
from sqlalchemy.exc import IntegrityError

from shortener.errors import UniquenessConflict
from shortener.models import URLMapping, utcnow
from shortener.store import AccessRecord, MappingFilter, SQLMappingStore


@pytest.mark.asyncio
async def test_insert_and_find_by_code(store: SQLMappingStore, make_mapping) -> None:
    created = await make_mapping("abc123", "https://example.com/a", owner_id="user-1")
    assert created.id is not None

    found = await store.find_by_code("abc123")
    assert found is not None
    assert found.original_url == "https://example.com/a"
    assert found.owner_id == "user-1"
    assert found.click_count == 0


@pytest.mark.asyncio
async def test_insert_duplicate_code_raises_uniqueness_conflict(store: SQLMappingStore, make_mapping) -> None:
    await make_mapping("dup001", "https://example.com/a")

    with pytest.raises(UniquenessConflict) as exc_info:
        await make_mapping("dup001", "https://example.com/b")
    assert exc_info.value.short_code == "dup001"

    # The session is usable again after the rollback.
    assert await store.find_by_code("dup001") is not None


@pytest.mark.asyncio
async def test_find_active_by_url_ignores_inactive(store: SQLMappingStore, make_mapping) -> None:
    old = await make_mapping("old001", "https://example.com/a")
    await store.deactivate(old.id)
    assert await store.find_active_by_url("https://example.com/a") is None

    await make_mapping("new001", "https://example.com/a")
    found = await store.find_active_by_url("https://example.com/a")
    assert found is not None
    assert found.short_code == "new001"


@pytest.mark.asyncio
async def test_find_active_by_code_filters_inactive_and_expired(
    store: SQLMappingStore, make_mapping, days_ago
) -> None:
    await make_mapping("live01")
    gone = await make_mapping("gone01", "https://example.com/gone")
    await make_mapping("late01", "https://example.com/late", created_at=days_ago(2), expires_at=days_ago(1))
    await store.deactivate(gone.id)

    assert await store.find_active_by_code("live01") is not None
    assert await store.find_active_by_code("gone01") is None
    assert await store.find_active_by_code("late01") is None
    assert await store.find_active_by_code("missing") is None


@pytest.mark.asyncio
async def test_atomic_increment_and_log(store: SQLMappingStore, make_mapping, reload_mapping) -> None:
    mapping = await make_mapping("clk001")
    when = utcnow()

    assert await store.atomic_increment_and_log(mapping.id, 1, AccessRecord(timestamp=when, user_agent="curl/8"))
    assert await store.atomic_increment_and_log(mapping.id, 2, AccessRecord(timestamp=when))

    reloaded = await reload_mapping("clk001")
    assert reloaded.click_count == 3
    assert reloaded.last_accessed_at is not None

    entries = await store.recent_accesses(mapping.id, 10)
    assert [e.user_agent for e in entries] == ["curl/8", "Unknown"]
    assert entries[1].ip_address == "Unknown"
    assert entries[1].referer == "Unknown"


@pytest.mark.asyncio
async def test_atomic_increment_rejects_non_positive_delta(store: SQLMappingStore, make_mapping) -> None:
    mapping = await make_mapping("neg001")
    with pytest.raises(ValueError):
        await store.atomic_increment_and_log(mapping.id, 0, AccessRecord(timestamp=utcnow()))


@pytest.mark.asyncio
async def test_atomic_increment_on_missing_mapping(store: SQLMappingStore) -> None:
    assert await store.atomic_increment_and_log(9999, 1, AccessRecord(timestamp=utcnow())) is False


@pytest.mark.asyncio
async def test_deactivate_only_once(store: SQLMappingStore, make_mapping) -> None:
    mapping = await make_mapping("off001")
    assert await store.deactivate(mapping.id) is True
    assert await store.deactivate(mapping.id) is False
    assert (await store.find_by_code("off001")).is_active is False


@pytest.mark.asyncio
async def test_delete_removes_mapping_and_log(store: SQLMappingStore, make_mapping) -> None:
    mapping = await make_mapping("del001")
    await store.atomic_increment_and_log(mapping.id, 1, AccessRecord(timestamp=utcnow()))

    assert await store.delete(mapping.id) is True
    assert await store.recent_accesses(mapping.id, 10) == []
    assert await store.delete(mapping.id) is False


@pytest.mark.asyncio
async def test_list_page_newest_first_with_filters(store: SQLMappingStore, make_mapping, days_ago) -> None:
    for index in range(5):
        await make_mapping(f"lst00{index}", f"https://example.com/{index}", created_at=days_ago(5 - index))
    hidden = await make_mapping("lst009", "https://example.com/hidden", owner_id="user-1")
    await store.deactivate(hidden.id)

    items, total = await store.list_page(MappingFilter(), page=1, limit=2)
    assert total == 5
    assert [m.short_code for m in items] == ["lst004", "lst003"]

    items, _ = await store.list_page(MappingFilter(), page=3, limit=2)
    assert [m.short_code for m in items] == ["lst000"]

    items, total = await store.list_page(MappingFilter(active_only=False, owner_id="user-1"), page=1, limit=10)
    assert total == 1
    assert items[0].short_code == "lst009"


@pytest.mark.asyncio
async def test_aggregates_scope_to_active_and_owner(store: SQLMappingStore, make_mapping) -> None:
    a = await make_mapping("agg001", "https://example.com/a", owner_id="user-1")
    b = await make_mapping("agg002", "https://example.com/b")
    c = await make_mapping("agg003", "https://example.com/c", owner_id="user-1")
    now = utcnow()
    await store.atomic_increment_and_log(a.id, 3, AccessRecord(timestamp=now))
    await store.atomic_increment_and_log(b.id, 5, AccessRecord(timestamp=now))
    await store.atomic_increment_and_log(c.id, 7, AccessRecord(timestamp=now))
    await store.deactivate(c.id)

    assert await store.count_active() == 2
    assert await store.sum_clicks() == 8
    assert await store.count_active("user-1") == 1
    assert await store.sum_clicks("user-1") == 3
    assert await store.sum_clicks("nobody") == 0

    top = await store.top_by_clicks(10)
    assert [m.short_code for m in top] == ["agg002", "agg001"]


@pytest.mark.asyncio
async def test_daily_counts(store: SQLMappingStore, make_mapping, days_ago) -> None:
    old = await make_mapping("day001", "https://example.com/a", created_at=days_ago(3))
    await make_mapping("day002", "https://example.com/b")
    await store.atomic_increment_and_log(old.id, 1, AccessRecord(timestamp=days_ago(1)))
    await store.atomic_increment_and_log(old.id, 1, AccessRecord(timestamp=utcnow()))

    creations = await store.creations_by_day(days_ago(7))
    clicks = await store.clicks_by_day(days_ago(7))

    assert sum(creations.values()) == 2
    assert creations[days_ago(3).date()] >= 1
    assert sum(clicks.values()) == 2
    assert all(isinstance(day, datetime.date) for day in clicks)


@pytest.mark.asyncio
async def test_recent_accesses_are_chronological_and_bounded(store: SQLMappingStore, make_mapping) -> None:
    mapping = await make_mapping("rec001")
    start = utcnow()
    for index in range(5):
        await store.atomic_increment_and_log(
            mapping.id,
            1,
            AccessRecord(timestamp=start + datetime.timedelta(seconds=index), user_agent=f"agent-{index}"),
        )

    entries = await store.recent_accesses(mapping.id, 3)
    assert [e.user_agent for e in entries] == ["agent-2", "agent-3", "agent-4"]


@pytest.mark.asyncio
async def test_access_value_counts(store: SQLMappingStore, make_mapping) -> None:
    mapping = await make_mapping("uas001")
    now = utcnow()
    for agent, ip in [("curl", "10.0.0.1"), ("curl", "10.0.0.2"), ("firefox", "10.0.0.1")]:
        await store.atomic_increment_and_log(mapping.id, 1, AccessRecord(timestamp=now, user_agent=agent, ip_address=ip))

    assert await store.count_distinct_access_values(mapping.id, "user_agent") == 2
    assert await store.count_distinct_access_values(mapping.id, "ip_address") == 2

    top = await store.top_access_values(mapping.id, "user_agent", 5)
    assert [(c.value, c.count) for c in top] == [("curl", 2), ("firefox", 1)]

    with pytest.raises(ValueError):
        await store.count_distinct_access_values(mapping.id, "short_code")


@pytest.mark.asyncio
async def test_check_constraint_rejects_expiry_before_creation(store: SQLMappingStore) -> None:
    now = utcnow()
    mapping = URLMapping(
        short_code="bad001",
        original_url="https://example.com",
        created_at=now,
        updated_at=now,
        expires_at=now - datetime.timedelta(hours=1),
    )
    with pytest.raises(IntegrityError):
        await store.insert(mapping)
