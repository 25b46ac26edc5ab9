"""SQLAlchemy declarative base and shared mixins.

Storage rationale:
- Canonical events are keyed by a content-derived UUID so that sibling loaders
  and retries converge on the same row instead of minting new ones.
- Explicit UTC-only, timezone-aware timestamps for strict audit timelines.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import JSON, DateTime, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


UTC = timezone.utc

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JSONPayload = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class CreatedAtMixin:
    """Created-at timestamp mixin (UTC timestamptz).

    Note: Postgres `timestamptz` is stored normalized; clients must supply UTC
    for semantic correctness. Model-level validators should enforce UTC where
    appropriate for non-server-generated timestamps.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class UpdatedAtMixin:
    """Updated-at timestamp mixin (UTC timestamptz).

    Only use for mutable tables. Canonical events and quarantine records are
    append-only; checkpoints are the only mutable rows.
    """

    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        onupdate=func.now(),
    )


def require_utc(key: str, value: Optional[datetime]) -> Optional[datetime]:
    """Enforce timezone-aware UTC datetimes for audit correctness."""
    if value is None:
        return None
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError(f"{key} must be timezone-aware (UTC).")
    if value.utcoffset() != timedelta(0):
        raise ValueError(f"{key} must be UTC (offset 0).")
    return value.astimezone(UTC)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Re-attach UTC to datetimes read back from backends that drop tzinfo (SQLite)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
