"""
Module: story_kernel.models.user
Responsibility: ORM persistence for the user directory -- role, account
    status, program assignments, and notification preferences.
Architecture position: Kernel > Models.  May import from db/base.py and the
    pure domain enums only.

Invariants enforced:
    - auth_id is unique (one directory row per authenticated principal).
    - role is a UserRole value or NULL (DB CHECK constraint).  A NULL or
      unrecognized role resolves to "no role", which permits nothing.

Audit relevance:
    The user's primary key is the actor id written into approval records,
    version snapshots, and the story's updated_by_id.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, CheckConstraint, DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from story_kernel.db.base import Base
from story_kernel.domain.workflow import UserRole

_ROLE_VALUES = ", ".join(f"'{r.value}'" for r in UserRole)

DEFAULT_NOTIFICATION_PREFERENCES: dict[str, bool] = {
    "email_enabled": True,
    "status_changes": True,
    "comments": True,
    "approvals": True,
    "mentions": True,
}


class UserStatus(str, Enum):
    """Directory account status; only ACTIVE users receive notifications."""

    ACTIVE = "Active"
    INACTIVE = "Inactive"


class UserModel(Base):
    """
    A directory entry for an authenticated principal.

    Contract:
        ``id`` is the user id recorded as the actor on every ledger row.
        ``assigned_programs`` scopes program-level roles for notification
        fan-out.
    """

    __tablename__ = "users"

    __table_args__ = (
        CheckConstraint(
            f"role IS NULL OR role IN ({_ROLE_VALUES})",
            name="ck_users_valid_role",
        ),
        CheckConstraint(
            "status IN ('Active', 'Inactive')",
            name="ck_users_valid_status",
        ),
    )

    auth_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    role: Mapped[str | None] = mapped_column(String(50), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=UserStatus.ACTIVE.value,
    )
    assigned_programs: Mapped[list[str]] = mapped_column(
        JSON, nullable=False, default=list,
    )
    notification_preferences: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False,
    )

    def __repr__(self) -> str:
        return f"<User {self.auth_id} role={self.role} status={self.status}>"

    @property
    def user_id(self) -> UUID:
        return self.id

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE.value

    def preference(self, key: str) -> bool:
        """A notification preference, defaulting to enabled when unset."""
        prefs = self.notification_preferences or {}
        value = prefs.get(key)
        if value is None:
            return DEFAULT_NOTIFICATION_PREFERENCES.get(key, True)
        return bool(value)
