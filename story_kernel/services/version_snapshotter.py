"""
story_kernel.services.version_snapshotter -- Append-only version snapshots.

Responsibility:
    Serializes every story column into a JSON snapshot and appends one
    ``story_versions`` row per committed version.

Architecture position:
    Kernel > Services.  Read side lives in ``selectors/story_selector.py``.

Invariants enforced:
    - version_number always equals the snapshotted story's version;
      anything else raises SnapshotVersionMismatchError.
    - One row per (story_id, version_number).  Re-appending an existing
      version returns the stored record instead of writing a second row,
      so a retried side effect is harmless.

Failure modes:
    - SnapshotVersionMismatchError on a version mismatch.
    - IntegrityError if a concurrent writer inserts the same version first.
"""

from __future__ import annotations

from typing import Any, Iterable
from uuid import UUID

from sqlalchemy import select

from story_kernel.domain.dtos import VersionRecord
from story_kernel.exceptions import SnapshotVersionMismatchError
from story_kernel.logging_config import get_logger
from story_kernel.models.story import LOCK_FIELDS, StoryModel
from story_kernel.models.version import StoryVersionModel
from story_kernel.services.base import BaseService
from story_kernel.utils.hashing import to_json_safe

logger = get_logger("services.version_snapshotter")


def snapshot_of(story: StoryModel) -> dict[str, Any]:
    """JSON-safe copy of every story column except the edit lock."""
    return to_json_safe(story.column_values(exclude=LOCK_FIELDS))


class VersionSnapshotter(BaseService):
    """Append-only writer for ``story_versions``."""

    def append_snapshot(
        self,
        story: StoryModel,
        change_summary: str | None,
        changed_fields: Iterable[str],
        changed_by: UUID,
        *,
        is_baseline: bool = False,
        baseline_name: str | None = None,
    ) -> VersionRecord:
        """Snapshot ``story`` as it stands in this session and append it."""
        return self.append_record(
            story_id=story.story_id,
            version_number=story.version,
            snapshot=snapshot_of(story),
            change_summary=change_summary,
            changed_fields=changed_fields,
            changed_by=changed_by,
            is_baseline=is_baseline,
            baseline_name=baseline_name,
        )

    def append_record(
        self,
        *,
        story_id: str,
        version_number: int,
        snapshot: dict[str, Any],
        change_summary: str | None,
        changed_fields: Iterable[str],
        changed_by: UUID,
        is_baseline: bool = False,
        baseline_name: str | None = None,
    ) -> VersionRecord:
        """Append a snapshot captured earlier (for example, at commit time).

        Raises:
            SnapshotVersionMismatchError: ``snapshot["version"]`` is not
                ``version_number``.
        """
        snapshot_version = snapshot.get("version")
        if snapshot_version != version_number:
            raise SnapshotVersionMismatchError(
                story_id=story_id,
                version_number=version_number,
                story_version=snapshot_version,
            )

        existing = self.session.execute(
            select(StoryVersionModel).where(
                StoryVersionModel.story_id == story_id,
                StoryVersionModel.version_number == version_number,
            )
        ).scalar_one_or_none()
        if existing is not None:
            logger.info(
                "version_snapshot_already_present",
                extra={"story_id": story_id, "version_number": version_number},
            )
            return existing.to_dto()

        fields = sorted(set(changed_fields))
        model = StoryVersionModel(
            story_id=story_id,
            version_number=version_number,
            snapshot=snapshot,
            change_summary=change_summary,
            changed_fields=fields,
            changed_by=changed_by,
            changed_at=self.clock.now(),
            is_baseline=is_baseline,
            baseline_name=baseline_name,
        )
        self.session.add(model)
        self.session.flush()

        logger.info(
            "version_snapshot_appended",
            extra={
                "story_id": story_id,
                "version_number": version_number,
                "changed_fields": fields,
                "actor_id": str(changed_by),
            },
        )

        return model.to_dto()
