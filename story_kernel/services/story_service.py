"""
story_kernel.services.story_service -- Story creation, content edits, soft delete.

Responsibility:
    Owns every write to ``user_stories`` and the conditional version bump
    shared with the transition executor.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/, utils/ and
    sibling services.

Invariants enforced:
    - A new story starts at version 1 with its initial status timestamp
      stamped and version snapshot 1 appended in the same transaction.
    - Every mutation bumps version by exactly one through
      ``UPDATE ... WHERE story_id = ? AND version = ? AND deleted_at IS NULL``;
      a zero row count is a ConflictError, never a silent overwrite.
    - Status never changes here; only TransitionExecutor moves status.
    - Soft delete is Admin-only and refused in protected statuses.
    - The edit lock is taken with a conditional UPDATE that matches only
      a free, expired, or self-held lock.  Lock writes never bump version
      and never append a snapshot.

Failure modes:
    - StoryNotFoundError for unknown or soft-deleted stories.
    - ConflictError on a stale expected version.
    - StoryLockedError when another user holds an unexpired edit lock.
    - DeletionNotAllowedError when the guard refuses a delete.
    - ValidationError for unknown or status-bearing content changes.
"""

from __future__ import annotations

import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping
from uuid import UUID

from sqlalchemy import or_, select, update

from story_kernel.domain.authorization import (
    REASON_PROTECTED_STATUS,
    authorize_deletion,
)
from story_kernel.domain.dtos import Actor, StoryLock, StoryView
from story_kernel.domain.transition_policy import status_timestamp_field
from story_kernel.domain.workflow import StoryStatus, parse_status
from story_kernel.exceptions import (
    ConflictError,
    DeletionNotAllowedError,
    StoryLockedError,
    StoryNotFoundError,
    ValidationError,
)
from story_kernel.logging_config import get_logger
from story_kernel.models.story import CONTENT_FIELDS, StoryModel
from story_kernel.models.user import UserModel
from story_kernel.services.base import BaseService
from story_kernel.services.version_snapshotter import VersionSnapshotter

logger = get_logger("services.story")

# Statuses a story may be created in.
INITIAL_STATUSES: frozenset[StoryStatus] = frozenset({
    StoryStatus.DRAFT,
    StoryStatus.INTERNAL_REVIEW,
    StoryStatus.PENDING_CLIENT_REVIEW,
    StoryStatus.NEEDS_DISCUSSION,
})

_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits
_MAX_ID_ATTEMPTS = 5

# An edit lock older than this is treated as released.
LOCK_TIMEOUT = timedelta(minutes=30)


def generate_story_id(program_id: str, when: datetime) -> str:
    """``PREFIX-YYYYMMDD-XXXX``: program prefix, creation date, random suffix."""
    prefix = program_id[:4].upper()
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(4))
    return f"{prefix}-{when.strftime('%Y%m%d')}-{suffix}"


class StoryService(BaseService):
    """Write operations on stories."""

    # ------------------------------------------------------------------
    # Shared helpers (also used by TransitionExecutor)
    # ------------------------------------------------------------------

    def load_active_story(self, story_id: str) -> StoryModel:
        """Fresh read of a non-deleted story.

        Raises:
            StoryNotFoundError: unknown id or soft-deleted.
        """
        story = self.session.execute(
            select(StoryModel)
            .where(StoryModel.story_id == story_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if story is None or story.is_deleted:
            raise StoryNotFoundError(story_id)
        return story

    def bump_version(
        self,
        story_id: str,
        expected_version: int,
        values: Mapping[str, Any],
        actor_id: UUID,
    ) -> int:
        """Apply ``values`` and version+1 iff the row is still at ``expected_version``.

        Returns:
            The new version number.

        Raises:
            ConflictError: no live row matched (concurrent writer or stale
                version).
        """
        new_version = expected_version + 1
        result = self.session.execute(
            update(StoryModel)
            .where(
                StoryModel.story_id == story_id,
                StoryModel.version == expected_version,
                StoryModel.deleted_at.is_(None),
            )
            .values(
                **values,
                version=new_version,
                updated_at=self.clock.now(),
                updated_by_id=actor_id,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            actual = self.session.execute(
                select(StoryModel.version).where(StoryModel.story_id == story_id)
            ).scalar_one_or_none()
            logger.warning(
                "story_version_conflict",
                extra={
                    "story_id": story_id,
                    "expected_version": expected_version,
                    "actual_version": actual,
                },
            )
            raise ConflictError(story_id, expected_version, actual)
        return new_version

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create_story(
        self,
        actor: Actor,
        program_id: str,
        title: str,
        *,
        status: StoryStatus | str = StoryStatus.DRAFT,
        **content: Any,
    ) -> StoryView:
        """Insert a story at version 1 and append its initial snapshot."""
        initial = parse_status(status)
        if initial not in INITIAL_STATUSES:
            raise ValidationError(
                f"Stories cannot be created in status {initial.value!r}"
            )
        if not title or not title.strip():
            raise ValidationError("Story title is required")
        unknown = sorted(set(content) - set(CONTENT_FIELDS))
        if unknown:
            raise ValidationError(f"Unknown story fields: {unknown}")

        now = self.clock.now()
        story = StoryModel(
            story_id=self._unused_story_id(program_id, now),
            program_id=program_id,
            title=title,
            status=initial.value,
            version=1,
            created_at=now,
            updated_at=now,
            created_by_id=actor.user_id,
            **content,
        )
        setattr(story, status_timestamp_field(initial), now)
        self.session.add(story)
        self.session.flush()

        VersionSnapshotter(self.session, self.clock).append_snapshot(
            story,
            change_summary="Initial creation",
            changed_fields=(),
            changed_by=actor.user_id,
        )

        logger.info(
            "story_created",
            extra={
                "story_id": story.story_id,
                "program_id": program_id,
                "status": initial.value,
                "actor_id": str(actor.user_id),
            },
        )
        return story.to_dto()

    def update_content(
        self,
        story_id: str,
        changes: Mapping[str, Any],
        actor: Actor,
        expected_version: int,
    ) -> StoryView:
        """Edit content fields with a conditional version bump.

        A call whose values all match the stored ones writes nothing and
        returns the current view.
        """
        if "status" in changes:
            raise ValidationError(
                "Status can only change through a status transition"
            )
        unknown = sorted(set(changes) - set(CONTENT_FIELDS))
        if unknown:
            raise ValidationError(f"Unknown story fields: {unknown}")

        story = self.load_active_story(story_id)
        self._check_not_locked_by_other(story, actor)
        if story.version != expected_version:
            raise ConflictError(story_id, expected_version, story.version)

        changed = {k: v for k, v in changes.items() if getattr(story, k) != v}
        if not changed:
            return story.to_dto()

        self.bump_version(story_id, expected_version, changed, actor.user_id)
        self.session.refresh(story)

        VersionSnapshotter(self.session, self.clock).append_snapshot(
            story,
            change_summary=f"Updated {', '.join(sorted(changed))}",
            changed_fields=changed.keys(),
            changed_by=actor.user_id,
        )

        logger.info(
            "story_content_updated",
            extra={
                "story_id": story_id,
                "version": story.version,
                "changed_fields": sorted(changed),
                "actor_id": str(actor.user_id),
            },
        )
        return story.to_dto()

    def soft_delete(self, story_id: str, actor: Actor) -> StoryView:
        """Mark a story deleted.  Ledger rows are never removed."""
        story = self.load_active_story(story_id)
        decision = authorize_deletion(story.status_enum, actor.role)
        if not decision.allowed:
            if decision.reason == REASON_PROTECTED_STATUS:
                message = (
                    "Cannot delete stories in Approved, In Development, "
                    "or In UAT status"
                )
            else:
                message = "Only administrators can delete stories"
            logger.warning(
                "story_delete_refused",
                extra={
                    "story_id": story_id,
                    "status": story.status,
                    "role": actor.role,
                    "reason": decision.reason,
                },
            )
            raise DeletionNotAllowedError(
                story_id=story_id,
                status=story.status,
                role=actor.role.value if actor.role is not None else None,
                reason=message,
            )

        story.deleted_at = self.clock.now()
        story.deleted_by = actor.user_id
        story.updated_by_id = actor.user_id
        self.session.flush()

        logger.info(
            "story_soft_deleted",
            extra={"story_id": story_id, "actor_id": str(actor.user_id)},
        )
        return story.to_dto()

    # ------------------------------------------------------------------
    # Edit lock
    # ------------------------------------------------------------------

    def acquire_lock(self, story_id: str, actor: Actor) -> bool:
        """Take the edit lock if it is free, expired, or already ours.

        Returns False when another user holds a live lock.  Re-acquiring
        our own lock refreshes ``locked_at``.

        Raises:
            StoryNotFoundError: unknown id or soft-deleted.
        """
        self.load_active_story(story_id)
        now = self.clock.now()
        result = self.session.execute(
            update(StoryModel)
            .where(
                StoryModel.story_id == story_id,
                StoryModel.deleted_at.is_(None),
                or_(
                    StoryModel.locked_by.is_(None),
                    StoryModel.locked_at.is_(None),
                    StoryModel.locked_by == actor.user_id,
                    StoryModel.locked_at < now - LOCK_TIMEOUT,
                ),
            )
            .values(
                locked_by=actor.user_id,
                locked_at=now,
                updated_at=StoryModel.updated_at,
            )
            .execution_options(synchronize_session=False)
        )
        acquired = result.rowcount == 1
        logger.info(
            "story_lock_acquired" if acquired else "story_lock_refused",
            extra={"story_id": story_id, "actor_id": str(actor.user_id)},
        )
        return acquired

    def release_lock(self, story_id: str, actor: Actor) -> bool:
        """Drop the edit lock.  Only the holder can release it."""
        result = self.session.execute(
            update(StoryModel)
            .where(
                StoryModel.story_id == story_id,
                StoryModel.locked_by == actor.user_id,
            )
            .values(
                locked_by=None,
                locked_at=None,
                updated_at=StoryModel.updated_at,
            )
            .execution_options(synchronize_session=False)
        )
        released = result.rowcount == 1
        if released:
            logger.info(
                "story_lock_released",
                extra={"story_id": story_id, "actor_id": str(actor.user_id)},
            )
        return released

    def lock_status(self, story_id: str, actor: Actor | None = None) -> StoryLock:
        story = self.load_active_story(story_id)
        if not self._lock_is_live(story):
            return StoryLock(story_id=story_id, is_locked=False)

        holder_name = self.session.execute(
            select(UserModel.name).where(UserModel.id == story.locked_by)
        ).scalar_one_or_none()
        held_by_caller = actor is not None and story.locked_by == actor.user_id
        return StoryLock(
            story_id=story_id,
            is_locked=not held_by_caller,
            locked_by=story.locked_by,
            locked_by_name=holder_name,
            locked_since=story.locked_at,
            held_by_caller=held_by_caller,
        )

    def _lock_is_live(self, story: StoryModel) -> bool:
        if story.locked_by is None or story.locked_at is None:
            return False
        locked_at = story.locked_at
        if locked_at.tzinfo is None:
            # SQLite hands back naive values; stored times are UTC.
            locked_at = locked_at.replace(tzinfo=timezone.utc)
        return locked_at >= self.clock.now() - LOCK_TIMEOUT

    def _check_not_locked_by_other(self, story: StoryModel, actor: Actor) -> None:
        if self._lock_is_live(story) and story.locked_by != actor.user_id:
            logger.warning(
                "story_edit_blocked_by_lock",
                extra={
                    "story_id": story.story_id,
                    "locked_by": str(story.locked_by),
                    "actor_id": str(actor.user_id),
                },
            )
            raise StoryLockedError(story.story_id, story.locked_by, story.locked_at)

    def _unused_story_id(self, program_id: str, when: datetime) -> str:
        for _ in range(_MAX_ID_ATTEMPTS):
            candidate = generate_story_id(program_id, when)
            taken = self.session.execute(
                select(StoryModel.id).where(StoryModel.story_id == candidate)
            ).first()
            if taken is None:
                return candidate
        raise ValidationError(
            f"Could not allocate a unique story id for program {program_id!r}"
        )
