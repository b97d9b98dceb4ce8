"""
Authorization guard tests.

Covers:
- authorize_transition decision and reason codes
- notes_missing for blank, whitespace and missing notes
- authorize_deletion: Admin-only, protected statuses refused
"""

import pytest

from story_kernel.domain.authorization import (
    REASON_NO_ROLE,
    REASON_NO_SUCH_TRANSITION,
    REASON_PROTECTED_STATUS,
    REASON_ROLE_NOT_PERMITTED,
    REASON_UNKNOWN_STATUS,
    authorize_deletion,
    authorize_transition,
    notes_missing,
)
from story_kernel.domain.transition_policy import find_rule
from story_kernel.domain.workflow import StoryStatus, UserRole

S = StoryStatus
R = UserRole


class TestAuthorizeTransition:

    def test_allowed_edge(self):
        decision = authorize_transition(S.DRAFT, S.INTERNAL_REVIEW, R.PROGRAM_MANAGER)
        assert decision.allowed
        assert decision.rule is find_rule(S.DRAFT, S.INTERNAL_REVIEW)
        assert decision.reason == ""

    def test_edge_not_in_policy(self):
        decision = authorize_transition(S.DRAFT, S.APPROVED, R.ADMIN)
        assert not decision.allowed
        assert decision.rule is None
        assert decision.reason == REASON_NO_SUCH_TRANSITION

    def test_role_not_permitted_keeps_rule(self):
        decision = authorize_transition(S.OUT_OF_SCOPE, S.DRAFT, R.PROGRAM_MANAGER)
        assert not decision.allowed
        assert decision.rule is not None
        assert decision.reason == REASON_ROLE_NOT_PERMITTED

    def test_missing_role(self):
        decision = authorize_transition(S.DRAFT, S.INTERNAL_REVIEW, None)
        assert not decision.allowed
        assert decision.reason == REASON_NO_ROLE

    def test_unrecognized_role_string(self):
        decision = authorize_transition(S.DRAFT, S.INTERNAL_REVIEW, "Intern")
        assert not decision.allowed
        assert decision.reason == REASON_NO_ROLE

    def test_unknown_from_status(self):
        decision = authorize_transition("Archived", S.DRAFT, R.ADMIN)
        assert not decision.allowed
        assert decision.reason == REASON_UNKNOWN_STATUS


class TestNotesMissing:

    @pytest.fixture
    def notes_rule(self):
        return find_rule(S.INTERNAL_REVIEW, S.DRAFT)

    @pytest.fixture
    def plain_rule(self):
        return find_rule(S.DRAFT, S.INTERNAL_REVIEW)

    @pytest.mark.parametrize("notes", [None, "", "   ", "\n\t"])
    def test_blank_notes_are_missing(self, notes_rule, notes):
        assert notes_missing(notes_rule, notes)

    def test_real_notes_satisfy(self, notes_rule):
        assert not notes_missing(notes_rule, "Acceptance criteria incomplete")

    @pytest.mark.parametrize("notes", [None, "", "anything"])
    def test_rule_without_notes_requirement(self, plain_rule, notes):
        assert not notes_missing(plain_rule, notes)


class TestAuthorizeDeletion:

    @pytest.mark.parametrize(
        "status",
        [S.DRAFT, S.INTERNAL_REVIEW, S.PENDING_CLIENT_REVIEW, S.NEEDS_DISCUSSION, S.OUT_OF_SCOPE],
    )
    def test_admin_may_delete_unprotected(self, status):
        assert authorize_deletion(status, R.ADMIN).allowed

    @pytest.mark.parametrize("status", [S.APPROVED, S.IN_DEVELOPMENT, S.IN_UAT])
    def test_protected_status_refused_even_for_admin(self, status):
        decision = authorize_deletion(status, R.ADMIN)
        assert not decision.allowed
        assert decision.reason == REASON_PROTECTED_STATUS

    @pytest.mark.parametrize(
        "role",
        [R.PORTFOLIO_MANAGER, R.PROGRAM_MANAGER, R.DEVELOPER, R.UAT_MANAGER, None],
    )
    def test_non_admin_refused(self, role):
        decision = authorize_deletion(S.DRAFT, role)
        assert not decision.allowed
        assert decision.reason == REASON_ROLE_NOT_PERMITTED

    def test_role_checked_before_status(self):
        decision = authorize_deletion(S.APPROVED, R.DEVELOPER)
        assert decision.reason == REASON_ROLE_NOT_PERMITTED
