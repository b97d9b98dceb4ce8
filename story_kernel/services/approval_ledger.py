"""
story_kernel.services.approval_ledger -- Append-only approval ledger (write side).

Responsibility:
    Records one approval event per regulated transition.  The only write
    operation is ``append``; there is no update or delete path, and the
    ORM listeners in ``db/immutability.py`` reject one if attempted.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/, utils/.
    The read side lives in ``selectors/approval_selector.py``.

Invariants enforced:
    - record_hash is computed at append over every immutable field, so a
      later out-of-band edit is detectable on read.
    - Flush only; the caller commits the approval together with the story
      mutation.
"""

from __future__ import annotations

from uuid import UUID, uuid4

from story_kernel.domain.dtos import ApprovalRecord
from story_kernel.domain.workflow import ApprovalOutcome, ApprovalType, StoryStatus
from story_kernel.logging_config import get_logger
from story_kernel.models.approval import StoryApprovalModel
from story_kernel.services.base import BaseService
from story_kernel.utils.hashing import hash_approval_record

logger = get_logger("services.approval_ledger")


class ApprovalLedger(BaseService):
    """Append-only writer for ``story_approvals``."""

    def append(
        self,
        story_id: str,
        approved_by: UUID,
        approval_type: ApprovalType,
        status: ApprovalOutcome,
        previous_status: StoryStatus | None,
        notes: str | None = None,
        *,
        session_id: str | None = None,
        ip_address: str | None = None,
    ) -> ApprovalRecord:
        """Append one approval record and flush it into the open transaction.

        Args:
            story_id: Human-readable story id.
            approved_by: User id of the acting approver.
            approval_type: Kind of sign-off the transition represents.
            status: Outcome tag implied by the target status.
            previous_status: Status the story left.
            notes: Justification text, stored verbatim.
            session_id: Request provenance, when the caller has it.
            ip_address: Request provenance, when the caller has it.

        Returns:
            The frozen ApprovalRecord as written.
        """
        approval_id = uuid4()
        approved_at = self.clock.now()
        previous_value = previous_status.value if previous_status is not None else None

        record_hash = hash_approval_record(
            approval_id=approval_id,
            story_id=story_id,
            approved_by=approved_by,
            approval_type=approval_type.value,
            status=status.value,
            previous_status=previous_value,
            notes=notes,
            approved_at=approved_at,
        )

        model = StoryApprovalModel(
            id=approval_id,
            story_id=story_id,
            approved_by=approved_by,
            approval_type=approval_type.value,
            status=status.value,
            previous_status=previous_value,
            notes=notes,
            approved_at=approved_at,
            session_id=session_id,
            ip_address=ip_address,
            record_hash=record_hash,
        )
        self.session.add(model)
        self.session.flush()

        logger.info(
            "approval_recorded",
            extra={
                "approval_id": str(approval_id),
                "story_id": story_id,
                "approval_type": approval_type.value,
                "approval_status": status.value,
                "previous_status": previous_value,
                "actor_id": str(approved_by),
            },
        )

        return model.to_dto()
