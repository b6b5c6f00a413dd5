"""SQLAlchemy ORM models for the URL shortener application.

This module defines the database schema using SQLAlchemy declarative models
with proper indexing and timestamp management for URL mappings and their
access logs.

Data Model Layout
=================
::
    url_mappings table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ short_code (VARCHAR(40) UNIQUE, INDEXED)
    ├─ original_url (VARCHAR(2048) NOT NULL, INDEXED with is_active)
    ├─ owner_id (VARCHAR(64) NULL, INDEXED)
    ├─ description (VARCHAR(500) NULL)
    ├─ click_count (INTEGER DEFAULT 0, CHECK >= 0)
    ├─ last_accessed_at (TIMESTAMPTZ NULL)
    ├─ expires_at (TIMESTAMPTZ NULL, CHECK > created_at)
    ├─ is_active (BOOLEAN DEFAULT TRUE)
    ├─ created_at (TIMESTAMPTZ)
    └─ updated_at (TIMESTAMPTZ, ON UPDATE)

    access_log_entries table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ mapping_id (FK url_mappings.id ON DELETE CASCADE, INDEXED)
    ├─ timestamp (TIMESTAMPTZ, INDEXED)
    ├─ user_agent (VARCHAR(512))
    ├─ ip_address (VARCHAR(64))
    └─ referer (VARCHAR(2048))

How to Use
===========
**Step 1 — Import**::
    from shortener.models import URLMapping

**Step 2 — Build a mapping (the allocation engine does this)**::
    mapping = URLMapping(short_code="abc123", original_url="https://example.com")

**Step 3 — Check redirectability**::
    if mapping.is_active and not mapping.is_expired():
        ...

Key Behaviours
===============
- short_code is unique across every row, active or not; retired codes are never re-issued.
- original_url is NOT unique: deactivated rows may share a URL with an active one.
- click_count only moves through the atomic increment in the mapping store.
- Timestamps are stored in UTC; naive values read back from SQLite are treated as UTC.

Classes:
    URLMapping:  A short code bound to an original URL with click tracking.
    AccessLogEntry:  One recorded redirect of a mapping.
"""

import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from shortener.config import SHORT_CODE_MAX_LENGTH
from shortener.database import Base

__all__ = ["URLMapping", "AccessLogEntry", "utcnow", "as_utc"]

UNKNOWN = "Unknown"


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def as_utc(value: datetime.datetime | None) -> datetime.datetime | None:
    """Return ``value`` as an aware UTC datetime (naive values are assumed UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


class URLMapping(Base):
    __tablename__ = "url_mappings"
    __table_args__ = (
        CheckConstraint("click_count >= 0", name="ck_url_mappings_click_count_non_negative"),
        CheckConstraint(
            "expires_at IS NULL OR expires_at > created_at",
            name="ck_url_mappings_expiry_after_creation",
        ),
        Index("ix_url_mappings_original_url_active", "original_url", "is_active"),
        Index("ix_url_mappings_created_at_active", "created_at", "is_active"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    short_code: Mapped[str] = mapped_column(
        String(SHORT_CODE_MAX_LENGTH), unique=True, index=True, nullable=False
    )
    original_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    owner_id: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    click_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_accessed_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    def is_expired(self, now: datetime.datetime | None = None) -> bool:
        expires_at = as_utc(self.expires_at)
        if expires_at is None:
            return False
        return (now or utcnow()) > expires_at

    def is_redirectable(self, now: datetime.datetime | None = None) -> bool:
        return bool(self.is_active) and not self.is_expired(now)

    def is_visible_to(self, requester_id: str | None) -> bool:
        """Anonymous mappings are visible to everyone, owned ones only to their owner."""
        return self.owner_id is None or self.owner_id == requester_id

    def __repr__(self) -> str:
        return (
            f"<URLMapping(id={self.id}, short_code='{self.short_code}', "
            f"clicks={self.click_count}, active={self.is_active})>"
        )


class AccessLogEntry(Base):
    __tablename__ = "access_log_entries"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    mapping_id: Mapped[int] = mapped_column(
        ForeignKey("url_mappings.id", ondelete="CASCADE"), index=True, nullable=False
    )
    timestamp: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    user_agent: Mapped[str] = mapped_column(String(512), default=UNKNOWN, nullable=False)
    ip_address: Mapped[str] = mapped_column(String(64), default=UNKNOWN, nullable=False)
    referer: Mapped[str] = mapped_column(String(2048), default=UNKNOWN, nullable=False)

    def __repr__(self) -> str:
        return f"<AccessLogEntry(mapping_id={self.mapping_id}, timestamp={self.timestamp})>"
