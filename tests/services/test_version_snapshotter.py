"""
Version snapshotter tests.

Covers:
- snapshot_of serializes every story column
- append_record rejects a snapshot whose version differs
- re-appending an existing version returns the stored row
- baseline flags are stored
"""

import pytest
from sqlalchemy import select

from story_kernel.exceptions import SnapshotVersionMismatchError
from story_kernel.models.story import LOCK_FIELDS, StoryModel
from story_kernel.selectors.story_selector import StorySelector
from story_kernel.services.story_service import StoryService
from story_kernel.services.version_snapshotter import VersionSnapshotter, snapshot_of


@pytest.fixture
def story(session, clock, admin):
    view = StoryService(session, clock).create_story(
        admin, "prog-alpha", "Export records", category="Reporting",
    )
    return session.execute(
        select(StoryModel).where(StoryModel.story_id == view.story_id)
    ).scalar_one()


class TestSnapshotOf:

    def test_every_column_but_edit_lock_present(self, story):
        snapshot = snapshot_of(story)
        columns = {c.key for c in StoryModel.__table__.columns}
        assert set(snapshot) == columns - set(LOCK_FIELDS)
        assert "locked_by" not in snapshot

    def test_values_are_json_safe(self, story):
        snapshot = snapshot_of(story)
        assert snapshot["id"] == str(story.id)
        assert snapshot["created_by_id"] == str(story.created_by_id)
        assert isinstance(snapshot["draft_date"], str)
        assert snapshot["approved_at"] is None
        assert snapshot["category"] == "Reporting"


class TestAppendRecord:

    def test_mismatched_version_rejected(self, session, clock, story, admin):
        snapshot = snapshot_of(story)
        with pytest.raises(SnapshotVersionMismatchError) as exc_info:
            VersionSnapshotter(session, clock).append_record(
                story_id=story.story_id,
                version_number=2,
                snapshot=snapshot,
                change_summary="bad",
                changed_fields=(),
                changed_by=admin.user_id,
            )
        assert exc_info.value.version_number == 2
        assert exc_info.value.story_version == 1

    def test_existing_version_is_returned_not_duplicated(self, session, clock, story, admin):
        first = StorySelector(session).version(story.story_id, 1)

        again = VersionSnapshotter(session, clock).append_record(
            story_id=story.story_id,
            version_number=1,
            snapshot=snapshot_of(story),
            change_summary="retry",
            changed_fields=("title",),
            changed_by=admin.user_id,
        )

        assert again.id == first.id
        assert again.change_summary == "Initial creation"
        assert len(StorySelector(session).version_history(story.story_id)) == 1

    def test_changed_fields_sorted_and_deduplicated(self, session, clock, story, admin):
        StoryService(session, clock).bump_version(
            story.story_id, 1, {"priority": "Low", "category": "Ops"}, admin.user_id,
        )
        session.refresh(story)

        record = VersionSnapshotter(session, clock).append_snapshot(
            story,
            change_summary="Updated category, priority",
            changed_fields=["priority", "category", "priority"],
            changed_by=admin.user_id,
        )
        assert record.version_number == 2
        assert record.changed_fields == ("category", "priority")

    def test_baseline_flags(self, session, clock, story, admin):
        StoryService(session, clock).bump_version(story.story_id, 1, {}, admin.user_id)
        session.refresh(story)

        record = VersionSnapshotter(session, clock).append_snapshot(
            story,
            change_summary="Release 1 baseline",
            changed_fields=(),
            changed_by=admin.user_id,
            is_baseline=True,
            baseline_name="R1",
        )
        stored = StorySelector(session).version(story.story_id, 2)
        assert record.is_baseline and stored.is_baseline
        assert stored.baseline_name == "R1"
