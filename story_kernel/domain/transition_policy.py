"""
Transition policy table (``story_kernel.domain.transition_policy``).

Responsibility
--------------
The single, immutable table of legal story transitions and the pure
lookups over it.  Built once at import; exposed read-only through
``MappingProxyType`` and tuples of frozen rules.

Architecture position
---------------------
**Kernel domain layer** -- pure functions.  ZERO I/O.

Invariants enforced
-------------------
* Every ``StoryStatus`` has a config with at least one outgoing rule
  (no dead ends).  Checked at import by ``_validate_policy``.
* Unrecognized statuses resolve to an empty fallback -- nothing is
  permitted, nothing raises.
* ``role=None`` never permits anything.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

from story_kernel.domain.workflow import (
    CORE_ROLES,
    SENIOR_ROLES,
    ApprovalOutcome,
    ApprovalType,
    StatusConfig,
    StoryStatus,
    TransitionRule,
    UserRole,
    parse_role,
)

S = StoryStatus


def _rules(
    from_status: StoryStatus,
    roles: frozenset[UserRole],
    *edges: tuple[StoryStatus, str, bool, ApprovalType | None],
) -> tuple[TransitionRule, ...]:
    return tuple(
        TransitionRule(
            from_status=from_status,
            to_status=to_status,
            label=label,
            allowed_roles=roles,
            requires_notes=requires_notes,
            requires_approval=approval_type is not None,
            approval_type=approval_type,
        )
        for to_status, label, requires_notes, approval_type in edges
    )


_RULES: tuple[TransitionRule, ...] = (
    *_rules(
        S.DRAFT, CORE_ROLES,
        (S.INTERNAL_REVIEW, "Submit for Internal Review", False, None),
        (S.NEEDS_DISCUSSION, "Flag for Discussion", True, None),
        (S.OUT_OF_SCOPE, "Mark Out of Scope", True, None),
    ),
    *_rules(
        S.INTERNAL_REVIEW, CORE_ROLES,
        (S.PENDING_CLIENT_REVIEW, "Approve & Send to Client", False,
         ApprovalType.INTERNAL_REVIEW),
        (S.DRAFT, "Return to Draft", True, None),
        (S.NEEDS_DISCUSSION, "Flag for Discussion", True, None),
    ),
    *_rules(
        S.PENDING_CLIENT_REVIEW, CORE_ROLES,
        (S.APPROVED, "Client Approved", False, ApprovalType.STAKEHOLDER),
        (S.NEEDS_DISCUSSION, "Client Needs Discussion", True, None),
        (S.INTERNAL_REVIEW, "Return to Internal Review", True, None),
    ),
    *_rules(
        S.APPROVED, CORE_ROLES,
        (S.IN_DEVELOPMENT, "Start Development", False, None),
        (S.NEEDS_DISCUSSION, "Flag for Discussion", True, None),
    ),
    *_rules(
        S.IN_DEVELOPMENT, CORE_ROLES | {UserRole.DEVELOPER},
        (S.IN_UAT, "Move to UAT", False, None),
        (S.NEEDS_DISCUSSION, "Flag for Discussion", True, None),
    ),
    *_rules(
        S.IN_UAT, CORE_ROLES | {UserRole.UAT_MANAGER},
        (S.APPROVED, "UAT Complete - Accept", False, None),
        (S.IN_DEVELOPMENT, "Return to Development", True, None),
        (S.NEEDS_DISCUSSION, "Flag for Discussion", True, None),
    ),
    *_rules(
        S.NEEDS_DISCUSSION, CORE_ROLES,
        (S.DRAFT, "Return to Draft", False, None),
        (S.INTERNAL_REVIEW, "Submit for Internal Review", False, None),
        (S.PENDING_CLIENT_REVIEW, "Send to Client Review", False, None),
        (S.OUT_OF_SCOPE, "Mark Out of Scope", True, None),
    ),
    *_rules(
        S.OUT_OF_SCOPE, SENIOR_ROLES,
        (S.DRAFT, "Reopen as Draft", True, None),
    ),
)


def _build_config() -> Mapping[StoryStatus, StatusConfig]:
    table: dict[StoryStatus, StatusConfig] = {}
    for status in StoryStatus:
        outgoing = tuple(r for r in _RULES if r.from_status == status)
        roles: frozenset[UserRole] = frozenset()
        for rule in outgoing:
            roles |= rule.allowed_roles
        table[status] = StatusConfig(
            status=status.value,
            label=status.value,
            transitions=outgoing,
            allowed_roles=roles,
        )
    return MappingProxyType(table)


def _validate_policy(config: Mapping[StoryStatus, StatusConfig]) -> None:
    missing = [s.value for s in StoryStatus if s not in config]
    if missing:
        raise RuntimeError(f"Transition policy missing statuses: {missing}")
    dead_ends = [s.value for s, c in config.items() if not c.transitions]
    if dead_ends:
        raise RuntimeError(f"Transition policy has dead-end statuses: {dead_ends}")
    seen: set[tuple[StoryStatus, StoryStatus]] = set()
    for rule in _RULES:
        key = (rule.from_status, rule.to_status)
        if key in seen:
            raise RuntimeError(f"Duplicate transition rule: {key}")
        seen.add(key)


STATUS_CONFIG: Mapping[StoryStatus, StatusConfig] = _build_config()
_validate_policy(STATUS_CONFIG)

# Entering one of these states stamps the corresponding story column, once.
STATUS_TIMESTAMP_FIELDS: Mapping[StoryStatus, str] = MappingProxyType({
    S.DRAFT: "draft_date",
    S.INTERNAL_REVIEW: "internal_review_date",
    S.PENDING_CLIENT_REVIEW: "client_review_date",
    S.APPROVED: "approved_at",
    S.IN_DEVELOPMENT: "development_date",
    S.IN_UAT: "uat_date",
    S.NEEDS_DISCUSSION: "needs_discussion_date",
    S.OUT_OF_SCOPE: "out_of_scope_date",
})
if set(STATUS_TIMESTAMP_FIELDS) != set(StoryStatus):
    raise RuntimeError("Every StoryStatus needs a status-entry timestamp field")

# Statuses in which a story may not be soft-deleted.
PROTECTED_STATUSES: frozenset[StoryStatus] = frozenset({
    S.APPROVED,
    S.IN_DEVELOPMENT,
    S.IN_UAT,
})


def _coerce_status(status: StoryStatus | str) -> StoryStatus | None:
    if isinstance(status, StoryStatus):
        return status
    try:
        return StoryStatus(status)
    except ValueError:
        return None


def get_config(status: StoryStatus | str) -> StatusConfig:
    """Return the config for ``status``, or an empty fallback if unknown."""
    known = _coerce_status(status)
    if known is None:
        raw = str(status)
        return StatusConfig(
            status=raw,
            label=raw,
            transitions=(),
            allowed_roles=frozenset(),
        )
    return STATUS_CONFIG[known]


def get_allowed_transitions(
    status: StoryStatus | str,
    role: UserRole | str | None,
) -> tuple[TransitionRule, ...]:
    """Rules out of ``status`` that ``role`` may fire."""
    resolved = parse_role(role)
    if resolved is None:
        return ()
    return tuple(
        rule for rule in get_config(status).transitions
        if resolved in rule.allowed_roles
    )


def can_transition(
    from_status: StoryStatus | str,
    to_status: StoryStatus | str,
    role: UserRole | str | None,
) -> bool:
    target = _coerce_status(to_status)
    if target is None:
        return False
    return any(
        rule.to_status == target
        for rule in get_allowed_transitions(from_status, role)
    )


def find_rule(
    from_status: StoryStatus | str,
    to_status: StoryStatus | str,
) -> TransitionRule | None:
    """The rule for (from, to) regardless of role, or None."""
    target = _coerce_status(to_status)
    if target is None:
        return None
    for rule in get_config(from_status).transitions:
        if rule.to_status == target:
            return rule
    return None


def status_timestamp_field(status: StoryStatus) -> str:
    return STATUS_TIMESTAMP_FIELDS[status]


def approval_outcome_for(target: StoryStatus) -> ApprovalOutcome:
    """The approval-record status tag implied by entering ``target``."""
    if target == S.NEEDS_DISCUSSION:
        return ApprovalOutcome.NEEDS_DISCUSSION
    if target in (S.DRAFT, S.OUT_OF_SCOPE):
        return ApprovalOutcome.REJECTED
    return ApprovalOutcome.APPROVED


def all_rules() -> tuple[TransitionRule, ...]:
    return _RULES
