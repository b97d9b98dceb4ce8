"""
Typed Exception Hierarchy for the Story Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

A regulated workflow must report failures precisely. Callers of the
transition entry point receive a user-facing string, but everything below
that boundary catches by TYPE, never by message:

  1. Every error has a typed exception class
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (story_id, status, role, version)

Example - WRONG way to handle errors:
    try:
        executor.transition(...)
    except Exception as e:
        if "modified by another user" in str(e):  # FRAGILE
            reload()

Example - RIGHT way:
    except ConflictError as e:
        reload(e.story_id, e.expected_version)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    StoryKernelError (base)
    |
    +-- AuthenticationError
    +-- AuthorizationError
    |   +-- DeletionNotAllowedError
    +-- NotFoundError
    |   +-- StoryNotFoundError
    |   +-- UserNotFoundError
    +-- ValidationError
    |   +-- NotesRequiredError
    |   +-- InvalidStatusError
    +-- ConflictError
    +-- StoryLockedError
    +-- PersistenceError
    +-- ImmutabilityViolationError
    +-- TamperDetectedError
    +-- SnapshotVersionMismatchError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                        | When Raised
----------------------------|---------------------------------------------------
NOT_AUTHENTICATED           | No caller identity on the request
TRANSITION_NOT_ALLOWED      | (from, to) not in policy, or role not permitted
DELETION_NOT_ALLOWED        | Non-admin delete, or story in a protected status
STORY_NOT_FOUND             | story_id unknown or soft-deleted
USER_NOT_FOUND              | Caller's user/role record does not resolve
NOTES_REQUIRED              | Rule requires notes, notes blank
INVALID_STATUS              | Status string is not a member of StoryStatus
VERSION_CONFLICT            | Conditional update matched no row (stale version)
STORY_LOCKED                | Another user holds an unexpired edit lock
PERSISTENCE_FAILURE         | Underlying store raised
IMMUTABILITY_VIOLATION      | UPDATE/DELETE on an append-only ledger row
APPROVAL_TAMPER_DETECTED    | Approval record hash does not verify
SNAPSHOT_VERSION_MISMATCH   | Snapshot version_number != story.version

===============================================================================
"""

from datetime import datetime
from uuid import UUID


class StoryKernelError(Exception):
    """
    Base exception for all story kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "STORY_KERNEL_ERROR"


class AuthenticationError(StoryKernelError):
    """No authenticated caller."""

    code: str = "NOT_AUTHENTICATED"

    def __init__(self):
        super().__init__("Not authenticated")


class AuthorizationError(StoryKernelError):
    """Transition is not permitted for the caller's role."""

    code: str = "TRANSITION_NOT_ALLOWED"

    def __init__(
        self,
        from_status: str,
        to_status: str,
        role: str | None,
        reason: str = "",
    ):
        self.from_status = from_status
        self.to_status = to_status
        self.role = role
        self.reason = reason
        super().__init__("This status transition is not allowed")


class DeletionNotAllowedError(AuthorizationError):
    """Soft deletion refused (role or protected status)."""

    code: str = "DELETION_NOT_ALLOWED"

    def __init__(self, story_id: str, status: str, role: str | None, reason: str):
        self.story_id = story_id
        self.status = status
        self.role = role
        self.reason = reason
        StoryKernelError.__init__(self, reason)


class NotFoundError(StoryKernelError):
    """Base for missing-record errors."""

    code: str = "NOT_FOUND"


class StoryNotFoundError(NotFoundError):
    """Story does not exist or has been soft-deleted."""

    code: str = "STORY_NOT_FOUND"

    def __init__(self, story_id: str):
        self.story_id = story_id
        super().__init__("Story not found")


class UserNotFoundError(NotFoundError):
    """Caller's user record (and therefore role) could not be resolved."""

    code: str = "USER_NOT_FOUND"

    def __init__(self, auth_id: str):
        self.auth_id = auth_id
        super().__init__("User not found")


class ValidationError(StoryKernelError):
    """Base for input validation errors."""

    code: str = "VALIDATION_FAILED"


class NotesRequiredError(ValidationError):
    """The matched transition rule requires justification notes."""

    code: str = "NOTES_REQUIRED"

    def __init__(self, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__("Notes are required for this transition")


class InvalidStatusError(ValidationError):
    """A status string is not a member of the closed StoryStatus enum."""

    code: str = "INVALID_STATUS"

    def __init__(self, value: str):
        self.value = value
        super().__init__(f"Unknown story status: {value!r}")


class ConflictError(StoryKernelError):
    """
    Optimistic concurrency conflict.

    The conditional UPDATE matched no row: another writer bumped the
    version between our read and our write (or the caller's pre-fetched
    version is stale).
    """

    code: str = "VERSION_CONFLICT"

    def __init__(
        self,
        story_id: str,
        expected_version: int,
        actual_version: int | None = None,
    ):
        self.story_id = story_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            "Story was modified by another user; reload and try again"
        )


class StoryLockedError(StoryKernelError):
    """Another user holds the story's edit lock."""

    code: str = "STORY_LOCKED"

    def __init__(self, story_id: str, locked_by: UUID, locked_at: datetime):
        self.story_id = story_id
        self.locked_by = locked_by
        self.locked_at = locked_at
        super().__init__("Story is being edited by another user")


class PersistenceError(StoryKernelError):
    """Wraps an underlying store failure."""

    code: str = "PERSISTENCE_FAILURE"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Failed to {operation}: {detail}")


class ImmutabilityViolationError(StoryKernelError):
    """
    Attempted to modify or delete an append-only record.

    ApprovalRecord and VersionRecord rows are write-once.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class TamperDetectedError(StoryKernelError):
    """Stored approval record no longer matches its write-time hash."""

    code: str = "APPROVAL_TAMPER_DETECTED"

    def __init__(self, approval_id: str, expected_hash: str, computed_hash: str):
        self.approval_id = approval_id
        self.expected_hash = expected_hash
        self.computed_hash = computed_hash
        super().__init__(f"Approval record {approval_id} failed hash verification")


class SnapshotVersionMismatchError(StoryKernelError):
    """A version snapshot must carry the story's current version number."""

    code: str = "SNAPSHOT_VERSION_MISMATCH"

    def __init__(self, story_id: str, version_number: int, story_version: int):
        self.story_id = story_id
        self.version_number = version_number
        self.story_version = story_version
        super().__init__(
            f"Snapshot version {version_number} does not match "
            f"story {story_id} version {story_version}"
        )
