"""Read-only analytics over the mapping store."""

import datetime
from collections.abc import Callable

from shortener.config import Settings
from shortener.errors import ShortenerError
from shortener.models import as_utc, utcnow
from shortener.schemas import (
    AccessEntry,
    AccessSummary,
    CountedItem,
    MappingBrief,
    MappingDetail,
    MappingStats,
    SystemSummary,
    TrendBucket,
    TrendsResponse,
)
from shortener.store import MappingStore

__all__ = ["AnalyticsAggregator", "clamp_days"]

MIN_TREND_DAYS = 1
MAX_TREND_DAYS = 365


def clamp_days(days: int) -> int:
    return max(MIN_TREND_DAYS, min(MAX_TREND_DAYS, days))


class AnalyticsAggregator:
    """Summaries, daily trends and per-mapping detail. Never writes."""

    def __init__(
        self,
        store: MappingStore,
        settings: Settings,
        clock: Callable[[], datetime.datetime] = utcnow,
    ) -> None:
        self._store = store
        self._settings = settings
        self._clock = clock

    async def system_summary(self, owner_id: str | None = None) -> SystemSummary:
        top_n = self._settings.ANALYTICS_TOP_N
        total_active = await self._store.count_active(owner_id)
        total_clicks = await self._store.sum_clicks(owner_id)
        top = await self._store.top_by_clicks(top_n, owner_id)
        recent = await self._store.most_recent(top_n, owner_id)

        return SystemSummary(
            total_active=total_active,
            total_clicks=total_clicks,
            average_clicks_per_mapping=total_clicks / total_active if total_active else 0.0,
            top_by_clicks=[MappingBrief.model_validate(m) for m in top],
            most_recent=[MappingBrief.model_validate(m) for m in recent],
            generated_at=self._clock(),
        )

    async def trends(self, days: int) -> TrendsResponse:
        """Daily creation and click counts over ``[now - days, now]``.

        ``days`` is clamped to [1, 365]. Every calendar day (UTC) in the window
        gets a bucket, including days with no activity.
        """
        days = clamp_days(days)
        now = self._clock()
        since = now - datetime.timedelta(days=days)

        creations = await self._store.creations_by_day(since)
        clicks = await self._store.clicks_by_day(since)

        start_date, end_date = since.date(), now.date()
        buckets = []
        day = start_date
        while day <= end_date:
            buckets.append(TrendBucket(date=day, creations=creations.get(day, 0), clicks=clicks.get(day, 0)))
            day += datetime.timedelta(days=1)

        return TrendsResponse(
            days=days,
            start_date=start_date,
            end_date=end_date,
            total_creations=sum(b.creations for b in buckets),
            total_clicks=sum(b.clicks for b in buckets),
            buckets=buckets,
        )

    async def detail(self, short_code: str, owner_id: str | None = None) -> MappingDetail:
        mapping = await self._store.find_by_code(short_code)
        if mapping is None or not mapping.is_active or not mapping.is_visible_to(owner_id):
            raise ShortenerError.not_found()

        now = self._clock()
        days_old = max(0, (now - as_utc(mapping.created_at)).days)
        recent = await self._store.recent_accesses(mapping.id, self._settings.ANALYTICS_RECENT_ACCESS_LIMIT)
        top_n = self._settings.ANALYTICS_TOP_ITEMS

        return MappingDetail(
            short_code=mapping.short_code,
            original_url=mapping.original_url,
            description=mapping.description,
            stats=MappingStats(
                total_clicks=mapping.click_count,
                last_accessed_at=mapping.last_accessed_at,
                created_at=mapping.created_at,
                expires_at=mapping.expires_at,
                is_expired=mapping.is_expired(now),
                days_old=days_old,
                avg_clicks_per_day=mapping.click_count / max(1, days_old),
            ),
            recent_accesses=[AccessEntry.model_validate(entry) for entry in recent],
            summary=AccessSummary(
                unique_user_agents=await self._store.count_distinct_access_values(mapping.id, "user_agent"),
                unique_ip_addresses=await self._store.count_distinct_access_values(mapping.id, "ip_address"),
                top_user_agents=[
                    CountedItem(item=c.value, count=c.count)
                    for c in await self._store.top_access_values(mapping.id, "user_agent", top_n)
                ],
                top_ip_addresses=[
                    CountedItem(item=c.value, count=c.count)
                    for c in await self._store.top_access_values(mapping.id, "ip_address", top_n)
                ],
            ),
        )
