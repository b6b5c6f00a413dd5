"""Mapping store: the persistence contract the shortening core relies on.

``MappingStore`` lists the operations the allocation engine, redirect tracker
and analytics aggregator need; ``SQLMappingStore`` implements them on an async
SQLAlchemy session. All mutation of mapping state goes through this module.

Atomicity
=========
::
    insert()                    one INSERT, unique(short_code) enforced by the database
    atomic_increment_and_log()  UPDATE click_count = click_count + delta
                                + INSERT access_log_entries, one transaction
    deactivate()                UPDATE is_active = false

Every method awaits the database, which makes each call a suspension point
for the caller.
"""

import datetime
from abc import ABC, abstractmethod
from dataclasses import dataclass

from sqlalchemy import Select, delete, distinct, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shortener.errors import UniquenessConflict
from shortener.models import UNKNOWN, AccessLogEntry, URLMapping, utcnow

__all__ = [
    "AccessRecord",
    "CountedValue",
    "MappingFilter",
    "MappingStore",
    "SQLMappingStore",
]

ACCESS_FIELDS = ("user_agent", "ip_address", "referer")


@dataclass(frozen=True)
class AccessRecord:
    """Metadata captured for one redirect."""

    timestamp: datetime.datetime
    user_agent: str = UNKNOWN
    ip_address: str = UNKNOWN
    referer: str = UNKNOWN


@dataclass(frozen=True)
class MappingFilter:
    active_only: bool = True
    owner_id: str | None = None


@dataclass(frozen=True)
class CountedValue:
    value: str
    count: int


class MappingStore(ABC):
    """Contract for mapping persistence.

    Implementations must:
      - enforce uniqueness of ``short_code`` across all rows and report a
        violation on insert as ``UniquenessConflict``,
      - apply click increments and access-log appends atomically,
      - never decrease ``click_count``.
    """

    @abstractmethod
    async def find_active_by_url(self, normalized_url: str) -> URLMapping | None:
        raise NotImplementedError

    @abstractmethod
    async def find_by_code(self, code: str) -> URLMapping | None:
        """Look up a code regardless of its active flag or expiry."""
        raise NotImplementedError

    @abstractmethod
    async def find_active_by_code(self, code: str, now: datetime.datetime | None = None) -> URLMapping | None:
        """Look up an active, unexpired mapping."""
        raise NotImplementedError

    @abstractmethod
    async def insert(self, mapping: URLMapping) -> URLMapping:
        raise NotImplementedError

    @abstractmethod
    async def atomic_increment_and_log(self, mapping_id: int, delta: int, entry: AccessRecord) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def deactivate(self, mapping_id: int) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, mapping_id: int) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def list_page(self, filters: MappingFilter, page: int, limit: int) -> tuple[list[URLMapping], int]:
        raise NotImplementedError

    @abstractmethod
    async def count_active(self, owner_id: str | None = None) -> int:
        raise NotImplementedError

    @abstractmethod
    async def sum_clicks(self, owner_id: str | None = None) -> int:
        raise NotImplementedError

    @abstractmethod
    async def top_by_clicks(self, limit: int, owner_id: str | None = None) -> list[URLMapping]:
        raise NotImplementedError

    @abstractmethod
    async def most_recent(self, limit: int, owner_id: str | None = None) -> list[URLMapping]:
        raise NotImplementedError

    @abstractmethod
    async def creations_by_day(self, since: datetime.datetime) -> dict[datetime.date, int]:
        raise NotImplementedError

    @abstractmethod
    async def clicks_by_day(self, since: datetime.datetime) -> dict[datetime.date, int]:
        raise NotImplementedError

    @abstractmethod
    async def recent_accesses(self, mapping_id: int, limit: int) -> list[AccessLogEntry]:
        """Return the last ``limit`` access entries in chronological order."""
        raise NotImplementedError

    @abstractmethod
    async def count_distinct_access_values(self, mapping_id: int, field_name: str) -> int:
        raise NotImplementedError

    @abstractmethod
    async def top_access_values(self, mapping_id: int, field_name: str, limit: int) -> list[CountedValue]:
        raise NotImplementedError


def _as_date(value) -> datetime.date:
    # PostgreSQL returns date objects, SQLite returns 'YYYY-MM-DD' strings.
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    return datetime.date.fromisoformat(str(value)[:10])


def _access_column(field_name: str):
    if field_name not in ACCESS_FIELDS:
        raise ValueError(f"unknown access field {field_name!r}")
    return getattr(AccessLogEntry, field_name)


class SQLMappingStore(MappingStore):
    """``MappingStore`` backed by an async SQLAlchemy session."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @property
    def session(self) -> AsyncSession:
        return self._session

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def find_active_by_url(self, normalized_url: str) -> URLMapping | None:
        # Oldest first: a lost dedup race may leave two active rows for one URL.
        result = await self._session.execute(
            select(URLMapping)
            .where(URLMapping.original_url == normalized_url, URLMapping.is_active.is_(True))
            .order_by(URLMapping.created_at.asc(), URLMapping.id.asc())
            .limit(1)
        )
        return result.scalars().first()

    async def find_by_code(self, code: str) -> URLMapping | None:
        result = await self._session.execute(select(URLMapping).where(URLMapping.short_code == code))
        return result.scalar_one_or_none()

    async def find_active_by_code(self, code: str, now: datetime.datetime | None = None) -> URLMapping | None:
        now = now or utcnow()
        result = await self._session.execute(
            select(URLMapping).where(
                URLMapping.short_code == code,
                URLMapping.is_active.is_(True),
                or_(URLMapping.expires_at.is_(None), URLMapping.expires_at > now),
            )
        )
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def insert(self, mapping: URLMapping) -> URLMapping:
        self._session.add(mapping)
        try:
            await self._session.commit()
        except IntegrityError as exc:
            await self._session.rollback()
            if await self.find_by_code(mapping.short_code) is not None:
                raise UniquenessConflict(mapping.short_code) from exc
            raise
        await self._session.refresh(mapping)
        return mapping

    async def atomic_increment_and_log(self, mapping_id: int, delta: int, entry: AccessRecord) -> bool:
        if delta < 1:
            raise ValueError(f"delta must be a positive integer, got {delta!r}")

        result = await self._session.execute(
            update(URLMapping)
            .where(URLMapping.id == mapping_id)
            .values(click_count=URLMapping.click_count + delta, last_accessed_at=entry.timestamp)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self._session.rollback()
            return False

        self._session.add(
            AccessLogEntry(
                mapping_id=mapping_id,
                timestamp=entry.timestamp,
                user_agent=entry.user_agent,
                ip_address=entry.ip_address,
                referer=entry.referer,
            )
        )
        await self._session.commit()
        return True

    async def deactivate(self, mapping_id: int) -> bool:
        result = await self._session.execute(
            update(URLMapping)
            .where(URLMapping.id == mapping_id, URLMapping.is_active == True)  # noqa: E712
            .values(is_active=False)
            .execution_options(synchronize_session="evaluate")
        )
        await self._session.commit()
        return result.rowcount > 0

    async def delete(self, mapping_id: int) -> bool:
        await self._session.execute(delete(AccessLogEntry).where(AccessLogEntry.mapping_id == mapping_id))
        result = await self._session.execute(delete(URLMapping).where(URLMapping.id == mapping_id))
        await self._session.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Listing and aggregates
    # ------------------------------------------------------------------

    def _scoped(self, statement: Select, owner_id: str | None, active_only: bool = True) -> Select:
        if active_only:
            statement = statement.where(URLMapping.is_active.is_(True))
        if owner_id is not None:
            statement = statement.where(URLMapping.owner_id == owner_id)
        return statement

    async def list_page(self, filters: MappingFilter, page: int, limit: int) -> tuple[list[URLMapping], int]:
        page = max(1, page)
        limit = max(1, limit)

        total = await self._session.scalar(
            self._scoped(select(func.count()).select_from(URLMapping), filters.owner_id, filters.active_only)
        )
        result = await self._session.execute(
            self._scoped(select(URLMapping), filters.owner_id, filters.active_only)
            .order_by(URLMapping.created_at.desc(), URLMapping.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), int(total or 0)

    async def count_active(self, owner_id: str | None = None) -> int:
        total = await self._session.scalar(self._scoped(select(func.count()).select_from(URLMapping), owner_id))
        return int(total or 0)

    async def sum_clicks(self, owner_id: str | None = None) -> int:
        total = await self._session.scalar(
            self._scoped(select(func.coalesce(func.sum(URLMapping.click_count), 0)), owner_id)
        )
        return int(total or 0)

    async def top_by_clicks(self, limit: int, owner_id: str | None = None) -> list[URLMapping]:
        result = await self._session.execute(
            self._scoped(select(URLMapping), owner_id)
            .order_by(URLMapping.click_count.desc(), URLMapping.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def most_recent(self, limit: int, owner_id: str | None = None) -> list[URLMapping]:
        result = await self._session.execute(
            self._scoped(select(URLMapping), owner_id)
            .order_by(URLMapping.created_at.desc(), URLMapping.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def creations_by_day(self, since: datetime.datetime) -> dict[datetime.date, int]:
        day = func.date(URLMapping.created_at)
        result = await self._session.execute(
            select(day, func.count())
            .where(URLMapping.created_at >= since, URLMapping.is_active.is_(True))
            .group_by(day)
        )
        return {_as_date(bucket): int(count) for bucket, count in result.all()}

    async def clicks_by_day(self, since: datetime.datetime) -> dict[datetime.date, int]:
        day = func.date(AccessLogEntry.timestamp)
        result = await self._session.execute(
            select(day, func.count())
            .join(URLMapping, URLMapping.id == AccessLogEntry.mapping_id)
            .where(AccessLogEntry.timestamp >= since, URLMapping.is_active.is_(True))
            .group_by(day)
        )
        return {_as_date(bucket): int(count) for bucket, count in result.all()}

    async def recent_accesses(self, mapping_id: int, limit: int) -> list[AccessLogEntry]:
        result = await self._session.execute(
            select(AccessLogEntry)
            .where(AccessLogEntry.mapping_id == mapping_id)
            .order_by(AccessLogEntry.timestamp.desc(), AccessLogEntry.id.desc())
            .limit(limit)
        )
        entries = list(result.scalars().all())
        entries.reverse()
        return entries

    async def count_distinct_access_values(self, mapping_id: int, field_name: str) -> int:
        column = _access_column(field_name)
        total = await self._session.scalar(
            select(func.count(distinct(column))).where(AccessLogEntry.mapping_id == mapping_id)
        )
        return int(total or 0)

    async def top_access_values(self, mapping_id: int, field_name: str, limit: int) -> list[CountedValue]:
        column = _access_column(field_name)
        hits = func.count()
        result = await self._session.execute(
            select(column, hits)
            .where(AccessLogEntry.mapping_id == mapping_id)
            .group_by(column)
            .order_by(hits.desc(), column.asc())
            .limit(limit)
        )
        return [CountedValue(value=value, count=int(count)) for value, count in result.all()]
