"""
Module: story_kernel.models.approval
Responsibility: ORM persistence for the append-only approval ledger.
Architecture position: Kernel > Models.  May import from db/base.py and the
    pure domain enums only.

Invariants enforced:
    - Append-only: UPDATE and DELETE are rejected by the listeners in
      db/immutability.py.
    - approval_type and status are closed enum values (DB CHECK constraints).
    - record_hash is computed once at append over every field a reviewer
      relies on; ApprovalSelector recomputes it on every read.

Failure modes:
    - ImmutabilityViolationError on any ORM UPDATE/DELETE.
    - IntegrityError when story_id does not reference an existing story.

Audit relevance:
    This table is the primary compliance evidence for regulated
    transitions: who signed off, when, from which prior state, and why.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from story_kernel.db.base import Base, UUIDString
from story_kernel.domain.workflow import ApprovalOutcome, ApprovalType, StoryStatus

if TYPE_CHECKING:
    from story_kernel.domain.dtos import ApprovalRecord

_TYPE_VALUES = ", ".join(f"'{t.value}'" for t in ApprovalType)
_OUTCOME_VALUES = ", ".join(f"'{o.value}'" for o in ApprovalOutcome)


class StoryApprovalModel(Base):
    """
    One approval ledger entry.

    Contract:
        Written once by ApprovalLedger.append inside the transition's
        transaction; never modified or deleted afterwards.
    """

    __tablename__ = "story_approvals"

    __table_args__ = (
        CheckConstraint(
            f"approval_type IN ({_TYPE_VALUES})",
            name="ck_story_approvals_valid_type",
        ),
        CheckConstraint(
            f"status IN ({_OUTCOME_VALUES})",
            name="ck_story_approvals_valid_status",
        ),
        Index("ix_story_approvals_story_time", "story_id", "approved_at"),
    )

    story_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("user_stories.story_id"), nullable=False,
    )
    approved_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    approval_type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    previous_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    approved_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )
    session_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    record_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<StoryApproval {self.story_id} {self.approval_type} "
            f"status={self.status}>"
        )

    def to_dto(self) -> ApprovalRecord:
        """Convert ORM model to frozen domain DTO."""
        from story_kernel.domain.dtos import ApprovalRecord

        return ApprovalRecord(
            id=self.id,
            story_id=self.story_id,
            approved_by=self.approved_by,
            approval_type=ApprovalType(self.approval_type),
            status=ApprovalOutcome(self.status),
            previous_status=(
                StoryStatus(self.previous_status)
                if self.previous_status is not None
                else None
            ),
            notes=self.notes,
            approved_at=self.approved_at,
            session_id=self.session_id,
            ip_address=self.ip_address,
            record_hash=self.record_hash,
        )
