"""
Module: story_kernel.models.story
Responsibility: ORM persistence for the story record -- the authoritative
    row whose status and version the transition executor mutates.
Architecture position: Kernel > Models.  May import from db/base.py and the
    pure domain enums only.

Invariants enforced:
    - status is a member of StoryStatus (DB CHECK constraint; reads coerce
      through the enum).
    - version >= 1 (DB CHECK constraint).  Writers bump it by exactly one
      through a conditional UPDATE on (story_id, version).
    - story_id is globally unique.
    - Status-entry timestamps are write-once; the executor only sets a
      column that is still NULL.

Failure modes:
    - IntegrityError on duplicate story_id or an out-of-enum status.

Audit relevance:
    The story row is mutable; its history lives in the approval and version
    ledgers.  created_by_id / updated_by_id record the last writer.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from story_kernel.db.base import TrackedBase, UUIDString
from story_kernel.domain.transition_policy import STATUS_TIMESTAMP_FIELDS
from story_kernel.domain.workflow import StoryStatus

if TYPE_CHECKING:
    from story_kernel.domain.dtos import StoryView

_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in StoryStatus)

# Fields editable through StoryService.update_content.
CONTENT_FIELDS: tuple[str, ...] = (
    "title",
    "user_story",
    "acceptance_criteria",
    "priority",
    "category",
    "internal_notes",
    "client_feedback",
    "parent_story_id",
)

# Edit-lock columns, left out of version snapshots.
LOCK_FIELDS: tuple[str, ...] = ("locked_by", "locked_at")


class StoryModel(TrackedBase):
    """
    A regulated requirement record.

    Contract:
        Status only changes through TransitionExecutor; content only through
        StoryService.update_content.  Both paths bump version by one.

    Guarantees:
        - story_id unique, status in enum, version >= 1.
    """

    __tablename__ = "user_stories"

    __table_args__ = (
        CheckConstraint(
            f"status IN ({_STATUS_VALUES})",
            name="ck_user_stories_valid_status",
        ),
        CheckConstraint("version >= 1", name="ck_user_stories_version_positive"),
        Index("ix_user_stories_program_status", "program_id", "status"),
    )

    story_id: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    program_id: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    user_story: Mapped[str | None] = mapped_column(Text, nullable=True)
    acceptance_criteria: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[str | None] = mapped_column(String(20), nullable=True)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    internal_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    client_feedback: Mapped[str | None] = mapped_column(Text, nullable=True)
    parent_story_id: Mapped[str | None] = mapped_column(String(32), nullable=True)

    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default=StoryStatus.DRAFT.value,
    )
    version: Mapped[int] = mapped_column(nullable=False, default=1)

    # Status-entry timestamps, one per StoryStatus.
    draft_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    internal_review_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    client_review_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    development_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    uat_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    needs_discussion_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    out_of_scope_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    approved_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    stakeholder_approved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    stakeholder_approved_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # Edit lock; not versioned and not snapshotted.
    locked_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    locked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Story {self.story_id} status={self.status} v{self.version}>"

    @property
    def status_enum(self) -> StoryStatus:
        return StoryStatus(self.status)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def column_values(self, exclude: tuple[str, ...] = ()) -> dict[str, Any]:
        """Mapped columns keyed by attribute name, minus ``exclude``."""
        return {
            column.key: getattr(self, column.key)
            for column in self.__table__.columns
            if column.key not in exclude
        }

    def to_dto(self) -> StoryView:
        """Convert ORM model to frozen read model."""
        from story_kernel.domain.dtos import StoryView

        return StoryView(
            story_id=self.story_id,
            program_id=self.program_id,
            title=self.title,
            status=self.status_enum,
            version=self.version,
            created_at=self.created_at,
            updated_at=self.updated_at,
            deleted_at=self.deleted_at,
            deleted_by=self.deleted_by,
            approved_at=self.approved_at,
            approved_by=self.approved_by,
            stakeholder_approved_at=self.stakeholder_approved_at,
            stakeholder_approved_by=self.stakeholder_approved_by,
            status_dates={
                status.value: getattr(self, field_name)
                for status, field_name in STATUS_TIMESTAMP_FIELDS.items()
            },
        )
