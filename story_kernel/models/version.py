"""
Module: story_kernel.models.version
Responsibility: ORM persistence for append-only story version snapshots.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - UNIQUE(story_id, version_number): one snapshot per committed version.
    - Append-only: UPDATE and DELETE are rejected by the listeners in
      db/immutability.py.

Failure modes:
    - IntegrityError on a duplicate (story_id, version_number).
    - ImmutabilityViolationError on any ORM UPDATE/DELETE.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from story_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from story_kernel.domain.dtos import VersionRecord


class StoryVersionModel(Base):
    """A point-in-time copy of every story column."""

    __tablename__ = "story_versions"

    __table_args__ = (
        UniqueConstraint(
            "story_id", "version_number", name="uq_story_versions_story_version",
        ),
    )

    story_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("user_stories.story_id"), nullable=False, index=True,
    )
    version_number: Mapped[int] = mapped_column(nullable=False)
    snapshot: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    change_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    changed_fields: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    changed_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_baseline: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    baseline_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    def __repr__(self) -> str:
        return f"<StoryVersion {self.story_id} v{self.version_number}>"

    def to_dto(self) -> VersionRecord:
        """Convert ORM model to frozen domain DTO."""
        from story_kernel.domain.dtos import VersionRecord

        return VersionRecord(
            id=self.id,
            story_id=self.story_id,
            version_number=self.version_number,
            snapshot=dict(self.snapshot),
            change_summary=self.change_summary,
            changed_fields=tuple(self.changed_fields or ()),
            changed_by=self.changed_by,
            changed_at=self.changed_at,
            is_baseline=self.is_baseline,
            baseline_name=self.baseline_name,
        )
