"""
story_services.identity -- Caller identity and user directory adapters.

Responsibility:
    Answers two questions for the executor and the notifier: who is
    calling (``IdentityProvider``) and what user record, role and
    notification preferences sit behind an auth id or a role
    (``UserDirectory``).

Architecture position:
    Services layer.  Authentication itself is external; this module only
    consumes its result.  ``SqlUserDirectory`` reads the ``users`` table
    through its own short-lived sessions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from story_kernel.domain.dtos import Actor, CallerIdentity
from story_kernel.domain.workflow import UserRole, parse_role
from story_kernel.models.user import UserModel, UserStatus


@dataclass(frozen=True)
class DirectoryUser:
    """A potential notification recipient."""

    user_id: UUID
    name: str
    email: str | None
    role: UserRole | None
    active: bool
    assigned_programs: tuple[str, ...]
    email_enabled: bool
    status_changes: bool


class IdentityProvider(Protocol):
    """Pluggable source of the authenticated caller."""

    def current_identity(self) -> CallerIdentity | None:
        """The caller, or None when unauthenticated."""
        ...


class UserDirectory(Protocol):
    """Pluggable user/role lookup."""

    def resolve(self, auth_id: str) -> Actor | None:
        """The user record behind ``auth_id``, or None."""
        ...

    def users_with_roles(self, roles: Iterable[UserRole]) -> list[DirectoryUser]:
        """Every user holding one of ``roles``, active or not."""
        ...

    def display_name(self, user_id: UUID) -> str | None:
        ...


class StaticIdentityProvider:
    """IdentityProvider holding one fixed identity (scripts and tests)."""

    def __init__(self, identity: CallerIdentity | None = None) -> None:
        self._identity = identity

    def set_identity(self, identity: CallerIdentity | None) -> None:
        self._identity = identity

    def current_identity(self) -> CallerIdentity | None:
        return self._identity


def _to_actor(user: UserModel) -> Actor:
    return Actor(
        user_id=user.id,
        auth_id=user.auth_id,
        name=user.name,
        role=parse_role(user.role),
        email=user.email,
        assigned_programs=tuple(user.assigned_programs or ()),
    )


def _to_directory_user(user: UserModel) -> DirectoryUser:
    return DirectoryUser(
        user_id=user.id,
        name=user.name,
        email=user.email,
        role=parse_role(user.role),
        active=user.status == UserStatus.ACTIVE.value,
        assigned_programs=tuple(user.assigned_programs or ()),
        email_enabled=user.preference("email_enabled"),
        status_changes=user.preference("status_changes"),
    )


class SqlUserDirectory:
    """UserDirectory backed by the ``users`` table."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def resolve(self, auth_id: str) -> Actor | None:
        with self._session_factory() as session:
            user = session.execute(
                select(UserModel).where(UserModel.auth_id == auth_id)
            ).scalar_one_or_none()
            return _to_actor(user) if user is not None else None

    def users_with_roles(self, roles: Iterable[UserRole]) -> list[DirectoryUser]:
        values = [role.value for role in roles]
        if not values:
            return []
        with self._session_factory() as session:
            users = session.execute(
                select(UserModel)
                .where(UserModel.role.in_(values))
                .order_by(UserModel.name)
            ).scalars().all()
            return [_to_directory_user(u) for u in users]

    def display_name(self, user_id: UUID) -> str | None:
        with self._session_factory() as session:
            return session.execute(
                select(UserModel.name).where(UserModel.id == user_id)
            ).scalar_one_or_none()
