"""
Pytest fixtures for the story kernel test suite.

Provides:
- A fresh file-backed SQLite database per test (separate connections per
  session, so concurrency tests see real isolation)
- User and story factories
- A transition executor wired with inline side effects
- Structured-log capture

Environment Variables:
- STORY_TEST_DATABASE_URL: run against another database (for example
  PostgreSQL) instead of the per-test SQLite file.  Tables are dropped
  and recreated for every test.
"""

import json
import logging
import os
from io import StringIO
from uuid import uuid4

import pytest
from sqlalchemy import select, update

from story_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from story_kernel.domain.clock import DeterministicClock
from story_kernel.domain.dtos import Actor, CallerIdentity
from story_kernel.domain.workflow import StoryStatus, UserRole
from story_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from story_kernel.models.story import StoryModel
from story_kernel.models.user import UserModel, UserStatus
from story_kernel.services.story_service import StoryService
from story_config.schema import SideEffectSettings
from story_services.identity import SqlUserDirectory, StaticIdentityProvider
from story_services.side_effects import InlineSideEffectRunner
from story_services.transition_executor import TransitionExecutor

DEFAULT_PROGRAM = "prog-alpha"
_AUTO_EMAIL = object()

# Retries without sleeping.
FAST_SIDE_EFFECTS = SideEffectSettings(
    max_attempts=3,
    initial_backoff_seconds=0,
    max_backoff_seconds=0,
    max_workers=2,
)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture story_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, executor_for):
            executor_for(admin).transition(...)
            logs = captured_logs()
            assert any(r["message"] == "story_transition" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("story_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine(tmp_path):
    url = os.environ.get("STORY_TEST_DATABASE_URL") or f"sqlite:///{tmp_path / 'stories.db'}"
    eng = init_engine_from_url(url)
    drop_tables()
    create_tables()
    yield eng
    drop_tables()
    reset_engine()


@pytest.fixture
def session_factory(engine):
    return get_session_factory()


@pytest.fixture
def session(session_factory):
    """A session for direct kernel-service tests.  Rolled back on teardown."""
    s = session_factory()
    yield s
    s.rollback()
    s.close()


@pytest.fixture
def clock():
    return DeterministicClock()


# =============================================================================
# Factories
# =============================================================================


@pytest.fixture
def make_user(session_factory):
    """Create and commit a directory user; returns the resolved Actor."""

    def _make(
        role: UserRole | None,
        *,
        name: str | None = None,
        email: str | None | object = _AUTO_EMAIL,
        status: UserStatus = UserStatus.ACTIVE,
        assigned_programs: tuple[str, ...] = (),
        preferences: dict | None = None,
    ) -> Actor:
        auth_id = f"auth-{uuid4().hex[:12]}"
        display = name or f"{role.value if role else 'No Role'} {auth_id[-4:]}"
        address = f"{auth_id}@example.com" if email is _AUTO_EMAIL else email
        with session_factory() as s:
            user = UserModel(
                auth_id=auth_id,
                name=display,
                email=address,
                role=role.value if role is not None else None,
                status=status.value,
                assigned_programs=list(assigned_programs),
                notification_preferences=preferences,
            )
            s.add(user)
            s.commit()
            return Actor(
                user_id=user.id,
                auth_id=auth_id,
                name=display,
                role=role,
                email=address,
                assigned_programs=tuple(assigned_programs),
            )

    return _make


@pytest.fixture
def admin(make_user):
    return make_user(UserRole.ADMIN, name="Ada Admin")


@pytest.fixture
def portfolio_manager(make_user):
    return make_user(UserRole.PORTFOLIO_MANAGER, name="Pat Portfolio")


@pytest.fixture
def program_manager(make_user):
    return make_user(
        UserRole.PROGRAM_MANAGER,
        name="Pam Program",
        assigned_programs=(DEFAULT_PROGRAM,),
    )


@pytest.fixture
def developer(make_user):
    return make_user(UserRole.DEVELOPER, name="Dev Eloper")


@pytest.fixture
def make_story(session_factory, clock, admin):
    """Create a committed story, optionally forced into a status/version.

    Forcing writes the row directly, the way a migrated legacy record
    would arrive; no ledger rows are written for the forced state.
    """

    def _make(
        status: StoryStatus = StoryStatus.DRAFT,
        *,
        version: int | None = None,
        program_id: str = DEFAULT_PROGRAM,
        title: str = "Patients can export their records",
        created_by: Actor | None = None,
    ) -> str:
        with session_factory() as s:
            view = StoryService(s, clock).create_story(
                created_by or admin, program_id, title,
            )
            s.commit()
        if status != StoryStatus.DRAFT or version is not None:
            _force_story_state(session_factory, view.story_id, status=status, version=version)
        return view.story_id

    return _make


def _force_story_state(session_factory, story_id, *, status=None, version=None, **values):
    if status is not None:
        values["status"] = status.value
    if version is not None:
        values["version"] = version
    with session_factory() as s:
        s.execute(
            update(StoryModel)
            .where(StoryModel.story_id == story_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        s.commit()


@pytest.fixture
def force_story_state(session_factory):
    """Overwrite story columns directly (test setup only)."""

    def _force(story_id, **kwargs):
        _force_story_state(session_factory, story_id, **kwargs)

    return _force


@pytest.fixture
def load_story(session_factory):
    """Fresh, detached copy of a story row."""

    def _load(story_id) -> StoryModel:
        with session_factory() as s:
            story = s.execute(
                select(StoryModel).where(StoryModel.story_id == story_id)
            ).scalar_one()
            s.expunge(story)
            return story

    return _load


# =============================================================================
# Executor fixtures
# =============================================================================


@pytest.fixture
def user_directory(session_factory):
    return SqlUserDirectory(session_factory)


@pytest.fixture
def side_effects():
    return InlineSideEffectRunner(FAST_SIDE_EFFECTS)


@pytest.fixture
def executor_for(session_factory, user_directory, side_effects, clock):
    """Build a TransitionExecutor acting as ``actor`` (None = anonymous)."""

    def _make(actor: Actor | None, **kwargs) -> TransitionExecutor:
        identity = (
            CallerIdentity(auth_id=actor.auth_id, session_id="sess-1", ip_address="10.0.0.1")
            if actor is not None
            else None
        )
        kwargs.setdefault("side_effects", side_effects)
        kwargs.setdefault("clock", clock)
        return TransitionExecutor(
            session_factory=session_factory,
            identity_provider=StaticIdentityProvider(identity),
            user_directory=kwargs.pop("user_directory", user_directory),
            **kwargs,
        )

    return _make
