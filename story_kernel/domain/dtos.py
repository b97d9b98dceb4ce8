"""
Domain DTOs (``story_kernel.domain.dtos``).

Frozen records that cross layer boundaries: caller identity, resolved
actor, ledger records, the status-change event handed to notification
fan-out, and the transition result returned to callers.  Pure data,
ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from story_kernel.domain.workflow import (
    ApprovalOutcome,
    ApprovalType,
    StoryStatus,
    UserRole,
)


@dataclass(frozen=True)
class CallerIdentity:
    """Who is calling, as asserted by the authentication provider."""

    auth_id: str
    session_id: str | None = None
    ip_address: str | None = None


@dataclass(frozen=True)
class Actor:
    """A resolved user record with its role."""

    user_id: UUID
    auth_id: str
    name: str
    role: UserRole | None
    email: str | None = None
    assigned_programs: tuple[str, ...] = ()


@dataclass(frozen=True)
class StoryView:
    """Read model of a story row."""

    story_id: str
    program_id: str
    title: str
    status: StoryStatus
    version: int
    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted_at: datetime | None = None
    deleted_by: UUID | None = None
    approved_at: datetime | None = None
    approved_by: UUID | None = None
    stakeholder_approved_at: datetime | None = None
    stakeholder_approved_by: UUID | None = None
    status_dates: dict[str, datetime | None] = field(default_factory=dict)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


@dataclass(frozen=True)
class ApprovalRecord:
    """One append-only approval ledger entry."""

    id: UUID
    story_id: str
    approved_by: UUID
    approval_type: ApprovalType
    status: ApprovalOutcome
    previous_status: StoryStatus | None
    notes: str | None
    approved_at: datetime
    session_id: str | None = None
    ip_address: str | None = None
    record_hash: str | None = None


@dataclass(frozen=True)
class VersionRecord:
    """One append-only version snapshot."""

    id: UUID
    story_id: str
    version_number: int
    snapshot: dict[str, Any]
    change_summary: str | None
    changed_fields: tuple[str, ...]
    changed_by: UUID
    changed_at: datetime
    is_baseline: bool = False
    baseline_name: str | None = None


@dataclass(frozen=True)
class StoryLock:
    """Edit-lock state of a story as seen by one caller.

    ``is_locked`` is true only when someone other than the caller holds an
    unexpired lock.  The holder fields are filled whenever a live lock
    exists, including the caller's own.
    """

    story_id: str
    is_locked: bool
    locked_by: UUID | None = None
    locked_by_name: str | None = None
    locked_since: datetime | None = None
    held_by_caller: bool = False


@dataclass(frozen=True)
class StatusChangeEvent:
    """Payload handed to notification fan-out after a committed transition."""

    story_id: str
    program_id: str
    previous_status: StoryStatus
    new_status: StoryStatus
    changed_by: UUID
    story_title: str = ""
    notes: str | None = None


@dataclass(frozen=True)
class TransitionResult:
    """Result of ``TransitionExecutor.transition``.

    ``error`` is the user-facing message, surfaced verbatim; ``error_code``
    is the machine code of the typed error that produced it.
    """

    success: bool
    error: str | None = None
    error_code: str | None = None
    story_id: str | None = None
    previous_status: StoryStatus | None = None
    new_status: StoryStatus | None = None
    version: int | None = None
    approval_id: UUID | None = None
