"""Kernel domain layer: pure value objects, the transition policy and its guard."""

from story_kernel.domain.authorization import (
    GuardDecision,
    authorize_deletion,
    authorize_transition,
    notes_missing,
)
from story_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from story_kernel.domain.transition_policy import (
    PROTECTED_STATUSES,
    STATUS_CONFIG,
    approval_outcome_for,
    can_transition,
    find_rule,
    get_allowed_transitions,
    get_config,
    status_timestamp_field,
)
from story_kernel.domain.workflow import (
    ApprovalOutcome,
    ApprovalType,
    StatusConfig,
    StoryStatus,
    TransitionRule,
    UserRole,
)

__all__ = [
    "ApprovalOutcome",
    "ApprovalType",
    "Clock",
    "DeterministicClock",
    "GuardDecision",
    "PROTECTED_STATUSES",
    "STATUS_CONFIG",
    "StatusConfig",
    "StoryStatus",
    "SystemClock",
    "TransitionRule",
    "UserRole",
    "approval_outcome_for",
    "authorize_deletion",
    "authorize_transition",
    "can_transition",
    "find_rule",
    "get_allowed_transitions",
    "get_config",
    "notes_missing",
    "status_timestamp_field",
]
