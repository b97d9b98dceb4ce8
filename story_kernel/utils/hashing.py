"""
Deterministic hashing utilities.

All hashing in the story kernel must be deterministic and reproducible.
This module provides the canonical hashing functions used for approval
record tamper evidence and configuration checksums.
"""

import hashlib
import json
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID


def _normalize_datetime(value: datetime) -> str:
    """UTC, tz-naive ISO string.

    Some backends (SQLite) return naive datetimes for tz-aware columns, so
    the hash input must not depend on whether tzinfo survived the round
    trip.
    """
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat()


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, datetime):
        return _normalize_datetime(obj)
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, (set, frozenset, tuple)):
        return sorted(obj) if isinstance(obj, (set, frozenset)) else list(obj)

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    Keys sorted, no whitespace, consistent handling of datetime, UUID and
    enums.
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def hash_payload(payload: dict) -> str:
    """
    Compute SHA-256 hash of a payload.

    Returns:
        Hex-encoded SHA-256 hash (64 characters).
    """
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def to_json_safe(data: dict) -> dict:
    """Round-trip ``data`` through canonical JSON so it fits a JSON column."""
    return json.loads(canonicalize_json(data))


def hash_approval_record(
    *,
    approval_id: UUID,
    story_id: str,
    approved_by: UUID,
    approval_type: str,
    status: str,
    previous_status: str | None,
    notes: str | None,
    approved_at: datetime,
) -> str:
    """
    Tamper-evidence hash for an approval record.

    Covers every field a reviewer relies on for non-repudiation: who,
    what, when, from which prior state, and the justification.
    """
    return hash_payload({
        "id": str(approval_id),
        "story_id": story_id,
        "approved_by": str(approved_by),
        "approval_type": approval_type,
        "status": status,
        "previous_status": previous_status,
        "notes": notes,
        "approved_at": approved_at,
    })
