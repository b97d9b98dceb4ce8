"""
Module: story_kernel.selectors.approval_selector
Responsibility: Read side of the approval ledger with hash verification.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Every record returned has passed ``verify``; a record whose stored
      hash no longer matches its fields raises TamperDetectedError.
    - History is chronological (approved_at, then id for ties).
"""

from __future__ import annotations

from sqlalchemy import select

from story_kernel.domain.dtos import ApprovalRecord
from story_kernel.domain.workflow import ApprovalType
from story_kernel.exceptions import TamperDetectedError
from story_kernel.logging_config import get_logger
from story_kernel.models.approval import StoryApprovalModel
from story_kernel.selectors.base import BaseSelector
from story_kernel.utils.hashing import hash_approval_record

logger = get_logger("selectors.approval")


class ApprovalSelector(BaseSelector):
    """Query and verify approval records."""

    def history_for_story(self, story_id: str) -> list[ApprovalRecord]:
        rows = self.session.execute(
            select(StoryApprovalModel)
            .where(StoryApprovalModel.story_id == story_id)
            .order_by(StoryApprovalModel.approved_at, StoryApprovalModel.id)
        ).scalars().all()
        return [self.verify(row.to_dto()) for row in rows]

    def latest_for_story(
        self,
        story_id: str,
        approval_type: ApprovalType | None = None,
    ) -> ApprovalRecord | None:
        """Most recent record for the story, optionally of one type."""
        records = self.history_for_story(story_id)
        if approval_type is not None:
            records = [r for r in records if r.approval_type == approval_type]
        return records[-1] if records else None

    def verify(self, record: ApprovalRecord) -> ApprovalRecord:
        """Recompute the tamper-evidence hash and compare.

        Raises:
            TamperDetectedError: the stored hash does not match.
        """
        computed = hash_approval_record(
            approval_id=record.id,
            story_id=record.story_id,
            approved_by=record.approved_by,
            approval_type=record.approval_type.value,
            status=record.status.value,
            previous_status=(
                record.previous_status.value
                if record.previous_status is not None
                else None
            ),
            notes=record.notes,
            approved_at=record.approved_at,
        )
        if computed != record.record_hash:
            logger.error(
                "approval_tamper_detected",
                extra={
                    "approval_id": str(record.id),
                    "story_id": record.story_id,
                    "expected_hash": record.record_hash,
                    "computed_hash": computed,
                },
            )
            raise TamperDetectedError(
                approval_id=str(record.id),
                expected_hash=record.record_hash or "",
                computed_hash=computed,
            )
        return record
