"""
TransitionExecutor tests.

Covers:
- Successful transitions: version bump, status-entry timestamps,
  approval records on the two regulated edges, stakeholder fields
- Precondition order and the user-facing error of each failure
- Optimistic concurrency through expected_version
- Post-commit side effects: snapshot per version, notification event,
  failures isolated from the result
- Exactly one structured ``story_transition`` record per call
- Collaborator failures reported as PERSISTENCE_FAILURE results
"""

from datetime import timezone

import pytest

from story_config.schema import SideEffectSettings
from story_kernel.domain.dtos import CallerIdentity
from story_kernel.domain.workflow import (
    ApprovalOutcome,
    ApprovalType,
    StoryStatus,
    UserRole,
)
from story_kernel.selectors.approval_selector import ApprovalSelector
from story_kernel.selectors.story_selector import StorySelector
from story_kernel.services.story_service import StoryService
from story_kernel.services.version_snapshotter import VersionSnapshotter
from story_services.identity import StaticIdentityProvider
from story_services.notification_dispatcher import DeliveryReport
from story_services.side_effects import InlineSideEffectRunner
from story_services.transition_executor import TransitionExecutor

S = StoryStatus

FAST_SIDE_EFFECTS = SideEffectSettings(
    max_attempts=3,
    initial_backoff_seconds=0,
    max_backoff_seconds=0,
)


def _utc_naive(value):
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class RecordingNotifier:
    """NotificationDispatcher that records events."""

    def __init__(self):
        self.events = []

    def dispatch(self, event):
        self.events.append(event)
        return DeliveryReport(story_id=event.story_id)


class ExplodingNotifier:
    def __init__(self):
        self.calls = 0

    def dispatch(self, event):
        self.calls += 1
        raise ConnectionError("mail relay unreachable")


class UnreachableDirectory:
    """UserDirectory whose backing service is down."""

    def resolve(self, auth_id):
        raise ConnectionError("directory service unreachable")


class BrokenIdentityProvider:
    def current_identity(self):
        raise TimeoutError("auth provider timed out")


def _approvals(session_factory, story_id):
    with session_factory() as s:
        return ApprovalSelector(s).history_for_story(story_id)


def _versions(session_factory, story_id):
    with session_factory() as s:
        return StorySelector(s).version_history(story_id)


# =============================================================================
# Successful transitions
# =============================================================================


class TestSuccessfulTransitions:

    def test_draft_to_internal_review(
        self, make_story, program_manager, executor_for, load_story, session_factory, clock,
    ):
        story_id = make_story(S.DRAFT, version=3)

        result = executor_for(program_manager).transition(story_id, S.INTERNAL_REVIEW)

        assert result.success, result.error
        assert result.error is None
        assert result.previous_status == S.DRAFT
        assert result.new_status == S.INTERNAL_REVIEW
        assert result.version == 4
        assert result.approval_id is None

        story = load_story(story_id)
        assert story.status == "Internal Review"
        assert story.version == 4
        assert _utc_naive(story.internal_review_date) == _utc_naive(clock.now())
        assert story.updated_by_id == program_manager.user_id
        assert _approvals(session_factory, story_id) == []

    def test_string_target_accepted(self, make_story, admin, executor_for):
        story_id = make_story()
        result = executor_for(admin).transition(story_id, "Internal Review")
        assert result.success
        assert result.new_status == S.INTERNAL_REVIEW

    def test_internal_review_approval_recorded(
        self, make_story, program_manager, executor_for, session_factory,
    ):
        story_id = make_story(S.INTERNAL_REVIEW)

        result = executor_for(program_manager).transition(
            story_id, S.PENDING_CLIENT_REVIEW, notes="Ready for the client",
        )

        assert result.success
        approvals = _approvals(session_factory, story_id)
        assert len(approvals) == 1
        approval = approvals[0]
        assert approval.id == result.approval_id
        assert approval.approval_type == ApprovalType.INTERNAL_REVIEW
        assert approval.status == ApprovalOutcome.APPROVED
        assert approval.previous_status == S.INTERNAL_REVIEW
        assert approval.approved_by == program_manager.user_id
        assert approval.notes == "Ready for the client"
        assert approval.session_id == "sess-1"
        assert approval.ip_address == "10.0.0.1"

    def test_stakeholder_approval_sets_approval_fields(
        self, make_story, portfolio_manager, executor_for, load_story, session_factory, clock,
    ):
        story_id = make_story(S.PENDING_CLIENT_REVIEW)

        result = executor_for(portfolio_manager).transition(story_id, S.APPROVED)

        assert result.success
        story = load_story(story_id)
        assert _utc_naive(story.approved_at) == _utc_naive(clock.now())
        assert story.approved_by == portfolio_manager.user_id
        assert _utc_naive(story.stakeholder_approved_at) == _utc_naive(clock.now())
        assert story.stakeholder_approved_by == portfolio_manager.user_id

        approvals = _approvals(session_factory, story_id)
        assert [a.approval_type for a in approvals] == [ApprovalType.STAKEHOLDER]
        assert approvals[0].previous_status == S.PENDING_CLIENT_REVIEW

    def test_uat_acceptance_records_no_approval(
        self, make_story, make_user, executor_for, session_factory,
    ):
        uat_manager = make_user(UserRole.UAT_MANAGER)
        story_id = make_story(S.IN_UAT)

        result = executor_for(uat_manager).transition(story_id, S.APPROVED)

        assert result.success
        assert result.approval_id is None
        assert _approvals(session_factory, story_id) == []

    def test_status_timestamp_is_set_only_once(
        self, make_story, admin, developer, executor_for, load_story, clock,
    ):
        story_id = make_story(S.PENDING_CLIENT_REVIEW)
        executor_for(admin).transition(story_id, S.APPROVED)
        first_approved_at = load_story(story_id).approved_at

        clock.advance(3600)
        executor_for(admin).transition(story_id, S.IN_DEVELOPMENT)
        clock.advance(3600)
        executor_for(developer).transition(story_id, S.IN_UAT)
        clock.advance(3600)
        executor_for(admin).transition(story_id, S.APPROVED)

        story = load_story(story_id)
        assert story.status == "Approved"
        assert story.approved_at == first_approved_at
        assert story.version == 5

    def test_full_lifecycle_versions_are_sequential(
        self, make_story, admin, executor_for, session_factory, clock,
    ):
        story_id = make_story()
        executor = executor_for(admin)
        path = [
            S.INTERNAL_REVIEW,
            S.PENDING_CLIENT_REVIEW,
            S.APPROVED,
            S.IN_DEVELOPMENT,
            S.IN_UAT,
            S.APPROVED,
        ]
        versions = []
        for target in path:
            clock.advance(60)
            versions.append(executor.transition(story_id, target).version)

        assert versions == [2, 3, 4, 5, 6, 7]
        assert [v.version_number for v in _versions(session_factory, story_id)] == [
            1, 2, 3, 4, 5, 6, 7,
        ]
        assert [a.approval_type for a in _approvals(session_factory, story_id)] == [
            ApprovalType.INTERNAL_REVIEW,
            ApprovalType.STAKEHOLDER,
        ]

    def test_out_of_scope_reopen_by_admin(self, make_story, admin, executor_for):
        story_id = make_story(S.OUT_OF_SCOPE)
        result = executor_for(admin).transition(
            story_id, S.DRAFT, notes="Client re-prioritised the feature",
        )
        assert result.success
        assert result.new_status == S.DRAFT


# =============================================================================
# Failures
# =============================================================================


class TestRejectedTransitions:

    def test_role_not_permitted(self, make_story, developer, executor_for, load_story):
        story_id = make_story(S.DRAFT, version=3)

        result = executor_for(developer).transition(story_id, S.INTERNAL_REVIEW)

        assert not result.success
        assert result.error == "This status transition is not allowed"
        assert result.error_code == "TRANSITION_NOT_ALLOWED"
        story = load_story(story_id)
        assert story.status == "Draft"
        assert story.version == 3

    def test_edge_not_in_policy(self, make_story, admin, executor_for):
        story_id = make_story()
        result = executor_for(admin).transition(story_id, S.APPROVED)
        assert result.error == "This status transition is not allowed"

    def test_unknown_target_status(self, make_story, admin, executor_for):
        story_id = make_story()
        result = executor_for(admin).transition(story_id, "Shipped")
        assert not result.success
        assert result.error_code == "TRANSITION_NOT_ALLOWED"

    def test_program_manager_cannot_reopen_out_of_scope(
        self, make_story, program_manager, executor_for,
    ):
        story_id = make_story(S.OUT_OF_SCOPE)
        result = executor_for(program_manager).transition(
            story_id, S.DRAFT, notes="please",
        )
        assert result.error == "This status transition is not allowed"

    @pytest.mark.parametrize("notes", [None, "", "   "])
    def test_notes_required(self, make_story, admin, executor_for, load_story, notes):
        story_id = make_story(S.INTERNAL_REVIEW)

        result = executor_for(admin).transition(story_id, S.DRAFT, notes=notes)

        assert not result.success
        assert result.error == "Notes are required for this transition"
        assert result.error_code == "NOTES_REQUIRED"
        assert load_story(story_id).status == "Internal Review"

    def test_unauthenticated(self, make_story, executor_for):
        story_id = make_story()
        result = executor_for(None).transition(story_id, S.INTERNAL_REVIEW)
        assert result.error == "Not authenticated"
        assert result.error_code == "NOT_AUTHENTICATED"

    def test_unknown_user(self, make_story, session_factory, user_directory, side_effects):
        story_id = make_story()
        executor = TransitionExecutor(
            session_factory=session_factory,
            identity_provider=StaticIdentityProvider(CallerIdentity(auth_id="auth-ghost")),
            user_directory=user_directory,
            side_effects=side_effects,
        )
        result = executor.transition(story_id, S.INTERNAL_REVIEW)
        assert result.error == "User not found"
        assert result.error_code == "USER_NOT_FOUND"

    def test_directory_failure_is_a_persistence_failure(
        self, make_story, admin, executor_for, load_story, captured_logs,
    ):
        story_id = make_story()

        result = executor_for(
            admin, user_directory=UnreachableDirectory(),
        ).transition(story_id, S.INTERNAL_REVIEW)

        assert result.success is False
        assert result.error_code == "PERSISTENCE_FAILURE"
        assert "directory service unreachable" in result.error
        assert load_story(story_id).status == S.DRAFT.value
        traces = [r for r in captured_logs() if r["message"] == "story_transition"]
        assert [t["outcome"] for t in traces] == ["PERSISTENCE_FAILURE"]

    def test_identity_provider_failure_is_a_persistence_failure(
        self, make_story, session_factory, user_directory, side_effects,
    ):
        story_id = make_story()
        executor = TransitionExecutor(
            session_factory=session_factory,
            identity_provider=BrokenIdentityProvider(),
            user_directory=user_directory,
            side_effects=side_effects,
        )

        result = executor.transition(story_id, S.INTERNAL_REVIEW)

        assert result.success is False
        assert result.error_code == "PERSISTENCE_FAILURE"

    def test_user_without_role(self, make_story, make_user, executor_for):
        story_id = make_story()
        no_role = make_user(None)
        result = executor_for(no_role).transition(story_id, S.INTERNAL_REVIEW)
        assert result.error_code == "TRANSITION_NOT_ALLOWED"

    def test_story_not_found(self, admin, executor_for):
        result = executor_for(admin).transition("NOPE-20240101-0000", S.INTERNAL_REVIEW)
        assert result.error == "Story not found"
        assert result.error_code == "STORY_NOT_FOUND"
        assert result.story_id == "NOPE-20240101-0000"

    def test_deleted_story_not_found(self, make_story, admin, executor_for, session_factory, clock):
        story_id = make_story()
        with session_factory() as s:
            StoryService(s, clock).soft_delete(story_id, admin)
            s.commit()

        result = executor_for(admin).transition(story_id, S.INTERNAL_REVIEW)
        assert result.error == "Story not found"

    def test_authentication_checked_before_story(self, executor_for):
        result = executor_for(None).transition("NOPE-20240101-0000", S.INTERNAL_REVIEW)
        assert result.error_code == "NOT_AUTHENTICATED"

    def test_authorization_checked_before_notes(self, make_story, developer, executor_for):
        story_id = make_story(S.INTERNAL_REVIEW)
        result = executor_for(developer).transition(story_id, S.DRAFT)
        assert result.error_code == "TRANSITION_NOT_ALLOWED"

    def test_rejected_transition_writes_nothing(
        self, make_story, developer, executor_for, session_factory,
    ):
        story_id = make_story(S.INTERNAL_REVIEW)
        executor_for(developer).transition(story_id, S.PENDING_CLIENT_REVIEW)

        assert _approvals(session_factory, story_id) == []
        assert len(_versions(session_factory, story_id)) == 1


class TestExpectedVersion:

    def test_matching_version_succeeds(self, make_story, admin, executor_for):
        story_id = make_story(S.DRAFT, version=3)
        result = executor_for(admin).transition(
            story_id, S.INTERNAL_REVIEW, expected_version=3,
        )
        assert result.success
        assert result.version == 4

    def test_stale_version_conflicts(self, make_story, admin, executor_for, load_story):
        story_id = make_story(S.DRAFT, version=3)

        result = executor_for(admin).transition(
            story_id, S.INTERNAL_REVIEW, expected_version=2,
        )

        assert not result.success
        assert result.error_code == "VERSION_CONFLICT"
        assert "modified by another user" in result.error
        assert load_story(story_id).version == 3


# =============================================================================
# Side effects
# =============================================================================


class TestSideEffects:

    def test_snapshot_records_the_transition(self, make_story, admin, executor_for, session_factory):
        story_id = make_story(S.INTERNAL_REVIEW)

        executor_for(admin).transition(story_id, S.DRAFT, notes="Missing criteria")

        latest = _versions(session_factory, story_id)[-1]
        assert latest.version_number == 2
        assert latest.change_summary == (
            "Status changed from Internal Review to Draft: Missing criteria"
        )
        assert latest.changed_by == admin.user_id
        assert latest.snapshot["status"] == "Draft"
        assert latest.snapshot["version"] == 2
        assert "status" in latest.changed_fields
        assert "draft_date" not in latest.changed_fields

    def test_snapshot_summary_without_notes(self, make_story, admin, executor_for, session_factory):
        story_id = make_story()
        executor_for(admin).transition(story_id, S.INTERNAL_REVIEW)

        latest = _versions(session_factory, story_id)[-1]
        assert latest.change_summary == "Status changed from Draft to Internal Review"
        assert latest.changed_fields == ("internal_review_date", "status")

    def test_notification_event(self, make_story, admin, executor_for):
        story_id = make_story(S.INTERNAL_REVIEW)
        notifier = RecordingNotifier()

        executor_for(admin, notifier=notifier).transition(
            story_id, S.NEEDS_DISCUSSION, notes="Scope unclear",
        )

        assert len(notifier.events) == 1
        event = notifier.events[0]
        assert event.story_id == story_id
        assert event.program_id == "prog-alpha"
        assert event.previous_status == S.INTERNAL_REVIEW
        assert event.new_status == S.NEEDS_DISCUSSION
        assert event.changed_by == admin.user_id
        assert event.notes == "Scope unclear"
        assert event.story_title == "Patients can export their records"

    def test_no_notification_for_failed_transition(self, make_story, developer, executor_for):
        notifier = RecordingNotifier()
        story_id = make_story()
        executor_for(developer, notifier=notifier).transition(story_id, S.INTERNAL_REVIEW)
        assert notifier.events == []

    def test_notification_failure_does_not_fail_transition(
        self, make_story, admin, executor_for, load_story,
    ):
        story_id = make_story()
        notifier = ExplodingNotifier()
        runner = InlineSideEffectRunner(FAST_SIDE_EFFECTS)

        result = executor_for(admin, notifier=notifier, side_effects=runner).transition(
            story_id, S.INTERNAL_REVIEW,
        )

        assert result.success
        assert load_story(story_id).status == "Internal Review"
        assert notifier.calls == FAST_SIDE_EFFECTS.max_attempts
        outcomes = {o.name: o for o in runner.outcomes}
        assert outcomes["version_snapshot"].succeeded
        assert not outcomes["status_notification"].succeeded
        assert outcomes["status_notification"].attempts == FAST_SIDE_EFFECTS.max_attempts

    def test_snapshot_failure_does_not_fail_transition(
        self, make_story, admin, executor_for, load_story, monkeypatch,
    ):
        story_id = make_story()

        def _broken(self, **kwargs):
            raise RuntimeError("snapshot store down")

        monkeypatch.setattr(VersionSnapshotter, "append_record", _broken)

        result = executor_for(admin).transition(story_id, S.INTERNAL_REVIEW)

        assert result.success
        assert load_story(story_id).version == 2


# =============================================================================
# Trace record
# =============================================================================


class TestTransitionTrace:

    @staticmethod
    def _traces(captured_logs):
        return [r for r in captured_logs() if r["message"] == "story_transition"]

    def test_success_emits_one_record(self, make_story, admin, executor_for, captured_logs):
        story_id = make_story(S.INTERNAL_REVIEW)

        result = executor_for(admin).transition(story_id, S.PENDING_CLIENT_REVIEW)

        traces = self._traces(captured_logs)
        assert len(traces) == 1
        trace = traces[0]
        assert trace["trace_type"] == "STORY_TRANSITION"
        assert trace["outcome"] == "success"
        assert trace["story_id"] == story_id
        assert trace["from_status"] == "Internal Review"
        assert trace["to_status"] == "Pending Client Review"
        assert trace["version"] == 2
        assert trace["actor_id"] == str(admin.user_id)
        assert trace["approval_id"] == str(result.approval_id)
        assert trace["level"] == "INFO"
        assert "correlation_id" in trace
        assert trace["duration_ms"] >= 0

    def test_failure_emits_one_warning(self, make_story, developer, executor_for, captured_logs):
        story_id = make_story()

        executor_for(developer).transition(story_id, S.INTERNAL_REVIEW)

        traces = self._traces(captured_logs)
        assert len(traces) == 1
        assert traces[0]["outcome"] == "TRANSITION_NOT_ALLOWED"
        assert traces[0]["reason"] == "role_not_permitted"
        assert traces[0]["level"] == "WARNING"

    def test_outcome_sink_receives_the_record(self, make_story, admin, executor_for):
        records = []
        story_id = make_story()

        executor_for(admin, outcome_sink=records.append).transition(story_id, S.INTERNAL_REVIEW)

        assert len(records) == 1
        assert records[0]["message"] == "story_transition"
        assert records[0]["outcome"] == "success"

    def test_side_effect_logs_share_correlation_id(
        self, make_story, admin, executor_for, captured_logs,
    ):
        story_id = make_story()
        executor_for(admin).transition(story_id, S.INTERNAL_REVIEW)

        logs = captured_logs()
        trace = next(r for r in logs if r["message"] == "story_transition")
        snapshot = next(r for r in logs if r["message"] == "version_snapshot_appended")
        assert snapshot["correlation_id"] == trace["correlation_id"]

    def test_timestamp_comes_from_executor_clock(self, make_story, admin, developer, executor_for, clock):
        records = []
        story_id = make_story()
        clock.advance(3600)

        executor_for(admin, outcome_sink=records.append).transition(story_id, S.INTERNAL_REVIEW)
        executor_for(developer, outcome_sink=records.append).transition(story_id, S.DRAFT)

        assert [r["ts"] for r in records] == [clock.now().isoformat()] * 2
