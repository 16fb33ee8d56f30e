"""Lifecycle state shared by soft-deletable records, plus UTC helpers."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Normalize *value* to an aware UTC datetime.

    Naive values (as returned by SQLite) are taken to be UTC already; aware
    values are converted. Timestamps must pass through here before they are
    stored, since SQLite drops the offset.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def is_past(value: datetime | None, now: datetime | None = None) -> bool:
    """True when *value* is set and strictly before *now*."""
    moment = as_utc(value)
    if moment is None:
        return False
    return moment < (now or utcnow())


class LifecycleState(str, Enum):
    """Soft-delete lifecycle: records move ACTIVE -> DELETED and back on restore."""

    ACTIVE = "active"
    DELETED = "deleted"


class SoftDeleteFields(SQLModel):
    """Lifecycle columns. ``deleted_at``/``deleted_by`` describe entry into DELETED."""

    state: str = Field(default=LifecycleState.ACTIVE.value, max_length=16, index=True)
    deleted_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
    deleted_by: str | None = Field(default=None)

    @property
    def is_deleted(self) -> bool:
        return self.state == LifecycleState.DELETED.value

    def mark_deleted(self, actor_id: str) -> None:
        self.state = LifecycleState.DELETED.value
        self.deleted_at = utcnow()
        self.deleted_by = actor_id

    def mark_active(self) -> None:
        self.state = LifecycleState.ACTIVE.value
        self.deleted_at = None
        self.deleted_by = None
