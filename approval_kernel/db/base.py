"""
Module: approval_kernel.db.base
Responsibility: Declarative base and the two portable column types every
    approval table relies on.
Architecture position: Kernel > DB.  Imported by every model module;
    imports nothing else from the kernel.

Invariants enforced:
    - Every row has a uuid4 primary key, kept as text so SQLite and
      PostgreSQL behave the same.
    - Datetimes go in as UTC and come out timezone-aware UTC.  Deadline
      and token-expiry comparisons done in SQL therefore agree with the
      ones done in Python.

Failure modes:
    - ValueError when a naive datetime is bound.
"""

from datetime import datetime, timezone
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID held in a CHAR-like column of 36 characters."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


class UTCDateTime(TypeDecorator):
    """Aware datetime stored and loaded as UTC; SQLite drops the offset, so it is re-attached."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Naive datetime not allowed: {value!r}")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        datetime: UTCDateTime(),
        UUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Adds ``created_at`` / ``updated_at``.

    Both are written by the service from its injected Clock, not by a
    server default.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)


__all__ = ["UUID", "Base", "TrackedBase", "UTCDateTime", "UUIDString"]
