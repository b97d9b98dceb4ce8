"""
Canonical workflow types (``story_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the story lifecycle state machine: the closed
status, role, approval-type and approval-outcome enumerations, and the
frozen rule/config records the policy table is built from.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Status and role values are closed ``str`` enums; anything else is
  rejected at the boundary by ``parse_status`` / ``parse_role``.
* ``requires_approval=True`` iff ``approval_type`` is set.
* ``from_status != to_status`` (no self-loops in the lifecycle).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from story_kernel.exceptions import InvalidStatusError


class StoryStatus(str, Enum):
    """The eight lifecycle states of a story."""

    DRAFT = "Draft"
    INTERNAL_REVIEW = "Internal Review"
    PENDING_CLIENT_REVIEW = "Pending Client Review"
    APPROVED = "Approved"
    IN_DEVELOPMENT = "In Development"
    IN_UAT = "In UAT"
    NEEDS_DISCUSSION = "Needs Discussion"
    OUT_OF_SCOPE = "Out of Scope"


class UserRole(str, Enum):
    """Caller roles, most senior first."""

    ADMIN = "Admin"
    PORTFOLIO_MANAGER = "Portfolio Manager"
    PROGRAM_MANAGER = "Program Manager"
    DEVELOPER = "Developer"
    UAT_MANAGER = "UAT Manager"


class ApprovalType(str, Enum):
    """Kind of regulated sign-off a transition records."""

    INTERNAL_REVIEW = "internal_review"
    STAKEHOLDER = "stakeholder"
    PORTFOLIO = "portfolio"


class ApprovalOutcome(str, Enum):
    """Status tag stored on an approval record."""

    APPROVED = "approved"
    REJECTED = "rejected"
    NEEDS_DISCUSSION = "needs_discussion"


# Roles allowed to act on most states.
CORE_ROLES: frozenset[UserRole] = frozenset({
    UserRole.ADMIN,
    UserRole.PORTFOLIO_MANAGER,
    UserRole.PROGRAM_MANAGER,
})

# The two most senior roles.
SENIOR_ROLES: frozenset[UserRole] = frozenset({
    UserRole.ADMIN,
    UserRole.PORTFOLIO_MANAGER,
})


def parse_status(value: StoryStatus | str) -> StoryStatus:
    """Coerce a raw string into ``StoryStatus`` or raise InvalidStatusError."""
    if isinstance(value, StoryStatus):
        return value
    try:
        return StoryStatus(value)
    except ValueError:
        raise InvalidStatusError(str(value)) from None


def parse_role(value: UserRole | str | None) -> UserRole | None:
    """Coerce a raw role string; unknown or missing roles map to None."""
    if value is None or isinstance(value, UserRole):
        return value
    try:
        return UserRole(value)
    except ValueError:
        return None


@dataclass(frozen=True)
class TransitionRule:
    """A legal (from, to) edge of the lifecycle with its guards.

    Contract: frozen; fixed at build time, never user-editable.
    ``allowed_roles`` gates who may fire the edge; ``requires_notes``
    demands non-blank justification; ``requires_approval`` makes the
    executor append exactly one approval record of ``approval_type``.
    """

    from_status: StoryStatus
    to_status: StoryStatus
    label: str
    allowed_roles: frozenset[UserRole]
    requires_notes: bool = False
    requires_approval: bool = False
    approval_type: ApprovalType | None = None

    def __post_init__(self) -> None:
        if self.from_status == self.to_status:
            raise ValueError(f"Self-transition on {self.from_status.value}")
        if self.requires_approval != (self.approval_type is not None):
            raise ValueError(
                f"Rule {self.from_status.value} -> {self.to_status.value}: "
                "approval_type must be set iff requires_approval"
            )
        if not self.allowed_roles:
            raise ValueError(
                f"Rule {self.from_status.value} -> {self.to_status.value} "
                "has no allowed roles"
            )


@dataclass(frozen=True)
class StatusConfig:
    """Display label and outgoing rules for one status.

    ``allowed_roles`` is the union of the roles of all outgoing rules; it is
    empty only for the fallback config of an unrecognized status.
    """

    status: str
    label: str
    transitions: tuple[TransitionRule, ...]
    allowed_roles: frozenset[UserRole]

    @property
    def targets(self) -> tuple[StoryStatus, ...]:
        return tuple(rule.to_status for rule in self.transitions)
