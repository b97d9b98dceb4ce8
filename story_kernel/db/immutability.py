"""
ORM-level append-only enforcement for the story ledgers.

===============================================================================
WHAT IS PROTECTED
===============================================================================

Entity                 | When Immutable         | Reason
-----------------------|------------------------|-------------------------------
StoryApprovalModel     | ALWAYS (from creation) | Regulated sign-off evidence
StoryVersionModel      | ALWAYS (from creation) | Point-in-time record history

Both ledgers are insert-only.  Corrections are new rows, never edits.

===============================================================================
HOW IT WORKS
===============================================================================

    session.flush()
         |
         v
    [before_update] --> _reject_*_update() --> ImmutabilityViolationError
         |
         v
    [before_delete] --> _reject_*_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (inserts only)

The listeners fire on ORM unit-of-work flushes.  Raw Core statements that
bypass the ORM are outside their reach; services never issue such
statements against the ledger tables.

===============================================================================
USAGE
===============================================================================

Registered by ``create_tables()``; call directly when tables already exist:

    from story_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

Tests that must bypass the guard (to prove tamper detection, for example):

    unregister_immutability_listeners()
    # ... forbidden operation ...
    register_immutability_listeners()
"""

from sqlalchemy import event

from story_kernel.exceptions import ImmutabilityViolationError
from story_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _reject(entity_type: str, target, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "story_id": getattr(target, "story_id", None),
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _reject_approval_update(mapper, connection, target):
    _reject("StoryApproval", target, "Approval records are append-only and cannot be modified")


def _reject_approval_delete(mapper, connection, target):
    _reject("StoryApproval", target, "Approval records are append-only and cannot be deleted")


def _reject_version_update(mapper, connection, target):
    _reject("StoryVersion", target, "Version snapshots are append-only and cannot be modified")


def _reject_version_delete(mapper, connection, target):
    _reject("StoryVersion", target, "Version snapshots are append-only and cannot be deleted")


_LISTENERS = (
    ("approval", "before_update", _reject_approval_update),
    ("approval", "before_delete", _reject_approval_delete),
    ("version", "before_update", _reject_version_update),
    ("version", "before_delete", _reject_version_delete),
)


def _targets():
    from story_kernel.models.approval import StoryApprovalModel
    from story_kernel.models.version import StoryVersionModel

    return {"approval": StoryApprovalModel, "version": StoryVersionModel}


def register_immutability_listeners() -> None:
    """
    Register the append-only listeners on both ledger models.

    Safe to call more than once; an already-registered listener is not
    added twice.
    """
    targets = _targets()
    for key, event_name, listener_fn in _LISTENERS:
        if not event.contains(targets[key], event_name, listener_fn):
            event.listen(targets[key], event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """
    Remove the append-only listeners.

    WARNING: Only use this in tests that deliberately corrupt a ledger
    row to verify detection.
    """
    targets = _targets()
    for key, event_name, listener_fn in _LISTENERS:
        _safe_remove_listener(targets[key], event_name, listener_fn)
