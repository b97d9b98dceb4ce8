"""
Authorization guard (``story_kernel.domain.authorization``).

Responsibility
--------------
Pure decisions over the transition policy: may this role fire this
transition, are the supplied notes sufficient, may this role soft-delete
a story in this status.

Architecture position
---------------------
**Kernel domain layer** -- pure functions, ZERO I/O.  Consumed by
``TransitionExecutor`` and ``StoryService``; never raises for a denial,
returns a ``GuardDecision`` so the caller decides how to surface it.
"""

from __future__ import annotations

from dataclasses import dataclass

from story_kernel.domain.transition_policy import (
    PROTECTED_STATUSES,
    find_rule,
    get_config,
)
from story_kernel.domain.workflow import StoryStatus, TransitionRule, UserRole, parse_role

REASON_UNKNOWN_STATUS = "unknown_status"
REASON_NO_SUCH_TRANSITION = "no_such_transition"
REASON_ROLE_NOT_PERMITTED = "role_not_permitted"
REASON_NO_ROLE = "no_role"
REASON_PROTECTED_STATUS = "protected_status"


@dataclass(frozen=True)
class GuardDecision:
    """Outcome of a guard check.

    ``reason`` is a machine code for logs; it is empty when allowed.
    ``rule`` is set whenever the (from, to) edge exists, even if denied.
    """

    allowed: bool
    rule: TransitionRule | None = None
    reason: str = ""


def authorize_transition(
    from_status: StoryStatus | str,
    to_status: StoryStatus | str,
    role: UserRole | str | None,
) -> GuardDecision:
    if not get_config(from_status).transitions:
        return GuardDecision(allowed=False, reason=REASON_UNKNOWN_STATUS)
    rule = find_rule(from_status, to_status)
    if rule is None:
        return GuardDecision(allowed=False, reason=REASON_NO_SUCH_TRANSITION)
    resolved = parse_role(role)
    if resolved is None:
        return GuardDecision(allowed=False, rule=rule, reason=REASON_NO_ROLE)
    if resolved not in rule.allowed_roles:
        return GuardDecision(allowed=False, rule=rule, reason=REASON_ROLE_NOT_PERMITTED)
    return GuardDecision(allowed=True, rule=rule)


def notes_missing(rule: TransitionRule, notes: str | None) -> bool:
    """True when ``rule`` requires notes and ``notes`` is blank."""
    if not rule.requires_notes:
        return False
    return notes is None or not notes.strip()


def authorize_deletion(
    status: StoryStatus,
    role: UserRole | str | None,
) -> GuardDecision:
    """Only Admin may soft-delete, and never from a protected status."""
    if parse_role(role) != UserRole.ADMIN:
        return GuardDecision(allowed=False, reason=REASON_ROLE_NOT_PERMITTED)
    if status in PROTECTED_STATUSES:
        return GuardDecision(allowed=False, reason=REASON_PROTECTED_STATUS)
    return GuardDecision(allowed=True)
