"""
Module: story_kernel.selectors.story_selector
Responsibility: Read-only access to stories and their version history.
Architecture position: Kernel > Selectors.
"""

from __future__ import annotations

from sqlalchemy import select

from story_kernel.domain.dtos import StoryView, VersionRecord
from story_kernel.domain.workflow import StoryStatus
from story_kernel.models.story import StoryModel
from story_kernel.models.version import StoryVersionModel
from story_kernel.selectors.base import BaseSelector


class StorySelector(BaseSelector):
    """Story and version-snapshot queries."""

    def get(self, story_id: str, *, include_deleted: bool = False) -> StoryView | None:
        story = self.session.execute(
            select(StoryModel).where(StoryModel.story_id == story_id)
        ).scalar_one_or_none()
        if story is None or (story.is_deleted and not include_deleted):
            return None
        return story.to_dto()

    def list_for_program(
        self,
        program_id: str,
        status: StoryStatus | None = None,
    ) -> list[StoryView]:
        """Live stories of a program, oldest first."""
        query = select(StoryModel).where(
            StoryModel.program_id == program_id,
            StoryModel.deleted_at.is_(None),
        )
        if status is not None:
            query = query.where(StoryModel.status == status.value)
        rows = self.session.execute(
            query.order_by(StoryModel.created_at, StoryModel.story_id)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def version_history(self, story_id: str) -> list[VersionRecord]:
        """All snapshots for the story, ascending by version number."""
        rows = self.session.execute(
            select(StoryVersionModel)
            .where(StoryVersionModel.story_id == story_id)
            .order_by(StoryVersionModel.version_number)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def version(self, story_id: str, version_number: int) -> VersionRecord | None:
        row = self.session.execute(
            select(StoryVersionModel).where(
                StoryVersionModel.story_id == story_id,
                StoryVersionModel.version_number == version_number,
            )
        ).scalar_one_or_none()
        return row.to_dto() if row is not None else None
