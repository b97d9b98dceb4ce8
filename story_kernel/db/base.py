"""
Declarative base for story kernel models.

Every table gets a uuid4 primary key stored as ``String(36)`` so the same
schema runs on PostgreSQL and on the SQLite files the tests use.

Mutable rows (stories) derive from ``TrackedBase`` and carry who/when
columns for their creation and last write.  Ledger rows (approvals,
versions) derive from ``Base`` directly: they are written once and carry
their own actor and timestamp columns.

Nothing here imports from models/, services/, selectors/ or domain/.
"""

from datetime import datetime
from typing import Any, ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """``uuid.UUID`` in Python, 36-character text in the database."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> str | None:
        return None if value is None else str(value)

    def process_result_value(self, value: Any, dialect: Any) -> UUID | None:
        return None if value is None else UUID(str(value))


class Base(DeclarativeBase):

    type_annotation_map: ClassVar[dict] = {
        datetime: DateTime(timezone=True),
        UUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """Adds creation and last-write audit columns.

    Services pass ``updated_at`` from their injected clock on every write;
    the server default only covers rows inserted outside a service.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(),
    )
    created_by_id: Mapped[UUID] = mapped_column(UUIDString())
    updated_by_id: Mapped[UUID | None] = mapped_column(UUIDString())
