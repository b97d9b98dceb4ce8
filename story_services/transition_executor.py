"""
story_services.transition_executor -- Story status transitions.

Responsibility:
    The single entry point for moving a story between lifecycle states.
    Checks preconditions in a fixed order, applies the status change and
    its approval record atomically, then hands the version snapshot and
    the notification fan-out to the side-effect runner.

Architecture position:
    Services layer.  Thin coordinator: policy and guard decisions come
    from ``story_kernel.domain``; persistence goes through the kernel's
    StoryService, ApprovalLedger and VersionSnapshotter.

Preconditions (in order; the first failure short-circuits with no writes):
    1. caller is authenticated                     -> AuthenticationError
    2. caller's user record resolves               -> UserNotFoundError
    3. story exists and is not soft-deleted        -> StoryNotFoundError
    4. (from, to) is legal for the caller's role   -> AuthorizationError
    5. notes present when the rule requires them   -> NotesRequiredError
    6. ``expected_version`` (if given) is current  -> ConflictError

Invariants enforced:
    - The status update is ``UPDATE ... WHERE version = <read version>``;
      a concurrent writer makes it match nothing and the call fails with
      ConflictError instead of overwriting.
    - Story update and approval record commit together or not at all.
    - Snapshot and notification failures never change the returned result.
    - No exception crosses ``transition``: every StoryKernelError becomes
      ``TransitionResult(success=False, error=..., error_code=...)``, and
      any other failure from the store or a collaborator is first wrapped
      in PersistenceError.
    - Trace timestamps come from the injected clock.
    - Every call emits exactly one ``story_transition`` log record.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from story_kernel.domain.authorization import authorize_transition, notes_missing
from story_kernel.domain.clock import Clock, SystemClock
from story_kernel.domain.dtos import (
    Actor,
    ApprovalRecord,
    CallerIdentity,
    StatusChangeEvent,
    TransitionResult,
)
from story_kernel.domain.transition_policy import (
    approval_outcome_for,
    status_timestamp_field,
)
from story_kernel.domain.workflow import ApprovalType, StoryStatus, parse_status
from story_kernel.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    InvalidStatusError,
    NotesRequiredError,
    PersistenceError,
    StoryKernelError,
    UserNotFoundError,
)
from story_kernel.logging_config import LogContext, get_logger
from story_kernel.services.approval_ledger import ApprovalLedger
from story_kernel.services.story_service import StoryService
from story_kernel.services.version_snapshotter import VersionSnapshotter, snapshot_of
from story_services.identity import IdentityProvider, UserDirectory
from story_services.notification_dispatcher import (
    NotificationDispatcher,
    NullNotificationDispatcher,
)
from story_services.side_effects import InlineSideEffectRunner, SideEffectRunner

logger = get_logger("services.transition_executor")

TRACE_TYPE_STORY_TRANSITION = "STORY_TRANSITION"
OUTCOME_SUCCESS = "success"
REASON_UNKNOWN_TARGET = "unknown_target_status"


@dataclass(frozen=True)
class _CommittedTransition:
    """Everything the post-commit side effects need."""

    story_id: str
    program_id: str
    title: str
    previous_status: StoryStatus
    new_status: StoryStatus
    version: int
    changed_fields: tuple[str, ...]
    snapshot: dict[str, Any]
    actor: Actor
    notes: str | None
    approval: ApprovalRecord | None


def _emit_transition_trace(
    *,
    clock: Clock,
    story_id: str,
    target_status: str,
    outcome: str,
    duration_ms: float,
    from_status: str | None = None,
    version: int | None = None,
    actor_id: UUID | None = None,
    approval_id: UUID | None = None,
    reason: str = "",
    outcome_sink: Callable[[dict], None] | None = None,
) -> None:
    record: dict[str, Any] = {
        "trace_type": TRACE_TYPE_STORY_TRANSITION,
        "ts": clock.now().isoformat(),
        "story_id": story_id,
        "from_status": from_status,
        "to_status": target_status,
        "outcome": outcome,
        "reason": reason,
        "duration_ms": round(duration_ms, 3),
    }
    if version is not None:
        record["version"] = version
    if actor_id is not None:
        record["actor_id"] = str(actor_id)
    if approval_id is not None:
        record["approval_id"] = str(approval_id)
    record.update(LogContext.get_all())
    if outcome == OUTCOME_SUCCESS:
        logger.info("story_transition", extra=record)
    else:
        logger.warning("story_transition", extra=record)
    if outcome_sink is not None:
        outcome_sink({**record, "message": "story_transition"})


class TransitionExecutor:
    """Executes story status transitions.

    Each call opens its own session from ``session_factory`` and owns its
    transaction: commit on success, rollback on any failure.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        identity_provider: IdentityProvider,
        user_directory: UserDirectory,
        side_effects: SideEffectRunner | None = None,
        notifier: NotificationDispatcher | None = None,
        clock: Clock | None = None,
        outcome_sink: Callable[[dict], None] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._identity_provider = identity_provider
        self._user_directory = user_directory
        self._side_effects = side_effects or InlineSideEffectRunner()
        self._notifier = notifier or NullNotificationDispatcher()
        self._clock = clock or SystemClock()
        self._outcome_sink = outcome_sink

    def transition(
        self,
        story_id: str,
        target_status: StoryStatus | str,
        notes: str | None = None,
        *,
        expected_version: int | None = None,
    ) -> TransitionResult:
        """Move ``story_id`` to ``target_status``.

        Args:
            story_id: Human-readable story id.
            target_status: Desired status, as enum or raw string.
            notes: Justification; required by some rules.
            expected_version: The version the caller last read.  When
                given, a mismatch fails with ConflictError before any write.

        Returns:
            TransitionResult; ``success=False`` carries the user-facing
            message in ``error`` and the machine code in ``error_code``.
        """
        t0 = time.monotonic()
        target_value = (
            target_status.value
            if isinstance(target_status, StoryStatus)
            else str(target_status)
        )
        progress: dict[str, Any] = {}

        with LogContext.bind(correlation_id=str(uuid4()), story_id=story_id):
            try:
                committed = self._execute(
                    story_id, target_status, notes, expected_version, progress,
                )
            except StoryKernelError as exc:
                _emit_transition_trace(
                    clock=self._clock,
                    story_id=story_id,
                    target_status=target_value,
                    outcome=exc.code,
                    duration_ms=(time.monotonic() - t0) * 1000,
                    from_status=progress.get("from_status"),
                    version=progress.get("version"),
                    actor_id=progress.get("actor_id"),
                    reason=getattr(exc, "reason", "") or str(exc),
                    outcome_sink=self._outcome_sink,
                )
                return TransitionResult(
                    success=False,
                    error=str(exc),
                    error_code=exc.code,
                    story_id=story_id,
                )

            self._submit_side_effects(committed)

            _emit_transition_trace(
                clock=self._clock,
                story_id=story_id,
                target_status=target_value,
                outcome=OUTCOME_SUCCESS,
                duration_ms=(time.monotonic() - t0) * 1000,
                from_status=committed.previous_status.value,
                version=committed.version,
                actor_id=committed.actor.user_id,
                approval_id=committed.approval.id if committed.approval else None,
                outcome_sink=self._outcome_sink,
            )

        return TransitionResult(
            success=True,
            story_id=story_id,
            previous_status=committed.previous_status,
            new_status=committed.new_status,
            version=committed.version,
            approval_id=committed.approval.id if committed.approval else None,
        )

    # ------------------------------------------------------------------
    # Preconditions and the authoritative write
    # ------------------------------------------------------------------

    def _resolve_caller(self) -> tuple[CallerIdentity, Actor]:
        try:
            identity = self._identity_provider.current_identity()
        except StoryKernelError:
            raise
        except Exception as exc:
            logger.error("caller_identity_lookup_failed", exc_info=True)
            raise PersistenceError("read caller identity", str(exc)) from exc
        if identity is None:
            raise AuthenticationError()
        try:
            actor = self._user_directory.resolve(identity.auth_id)
        except StoryKernelError:
            raise
        except Exception as exc:
            logger.error(
                "user_directory_lookup_failed",
                extra={"auth_id": identity.auth_id},
                exc_info=True,
            )
            raise PersistenceError("resolve user", str(exc)) from exc
        if actor is None:
            raise UserNotFoundError(identity.auth_id)
        return identity, actor

    def _execute(
        self,
        story_id: str,
        target_status: StoryStatus | str,
        notes: str | None,
        expected_version: int | None,
        progress: dict[str, Any],
    ) -> _CommittedTransition:
        identity, actor = self._resolve_caller()
        progress["actor_id"] = actor.user_id

        with self._session_factory() as session:
            try:
                committed = self._apply(
                    session, identity, actor, story_id, target_status,
                    notes, expected_version, progress,
                )
                session.commit()
            except StoryKernelError:
                session.rollback()
                raise
            except SQLAlchemyError as exc:
                session.rollback()
                logger.error(
                    "story_transition_store_failure",
                    extra={"story_id": story_id},
                    exc_info=True,
                )
                raise PersistenceError("update story status", str(exc)) from exc
            except Exception as exc:
                session.rollback()
                logger.error(
                    "story_transition_unexpected_failure",
                    extra={"story_id": story_id},
                    exc_info=True,
                )
                raise PersistenceError("update story status", str(exc)) from exc
        return committed

    def _apply(
        self,
        session: Session,
        identity: CallerIdentity,
        actor: Actor,
        story_id: str,
        target_status: StoryStatus | str,
        notes: str | None,
        expected_version: int | None,
        progress: dict[str, Any],
    ) -> _CommittedTransition:
        stories = StoryService(session, self._clock)
        story = stories.load_active_story(story_id)
        from_status = story.status_enum
        read_version = story.version
        progress["from_status"] = from_status.value
        progress["version"] = read_version

        role_value = actor.role.value if actor.role is not None else None
        try:
            target = parse_status(target_status)
        except InvalidStatusError:
            raise AuthorizationError(
                from_status.value, str(target_status), role_value,
                reason=REASON_UNKNOWN_TARGET,
            ) from None

        decision = authorize_transition(from_status, target, actor.role)
        if not decision.allowed:
            raise AuthorizationError(
                from_status.value, target.value, role_value, reason=decision.reason,
            )
        rule = decision.rule

        if notes_missing(rule, notes):
            raise NotesRequiredError(from_status.value, target.value)

        if expected_version is not None and expected_version != read_version:
            raise ConflictError(story_id, expected_version, read_version)

        now = self._clock.now()
        values: dict[str, Any] = {"status": target.value}
        timestamp_field = status_timestamp_field(target)
        if getattr(story, timestamp_field) is None:
            values[timestamp_field] = now
            if target == StoryStatus.APPROVED:
                values["approved_by"] = actor.user_id
        if rule.approval_type == ApprovalType.STAKEHOLDER:
            values["stakeholder_approved_at"] = now
            values["stakeholder_approved_by"] = actor.user_id

        new_version = stories.bump_version(story_id, read_version, values, actor.user_id)

        approval = None
        if rule.requires_approval:
            approval = ApprovalLedger(session, self._clock).append(
                story_id=story_id,
                approved_by=actor.user_id,
                approval_type=rule.approval_type,
                status=approval_outcome_for(target),
                previous_status=from_status,
                notes=notes,
                session_id=identity.session_id,
                ip_address=identity.ip_address,
            )

        session.refresh(story)
        return _CommittedTransition(
            story_id=story_id,
            program_id=story.program_id,
            title=story.title,
            previous_status=from_status,
            new_status=target,
            version=new_version,
            changed_fields=tuple(sorted(values)),
            snapshot=snapshot_of(story),
            actor=actor,
            notes=notes,
            approval=approval,
        )

    # ------------------------------------------------------------------
    # Post-commit side effects
    # ------------------------------------------------------------------

    def _submit_side_effects(self, committed: _CommittedTransition) -> None:
        context = {"story_id": committed.story_id, "version": committed.version}
        effects = (
            ("version_snapshot", lambda: self._append_snapshot(committed)),
            ("status_notification", lambda: self._notify(committed)),
        )
        for name, fn in effects:
            try:
                self._side_effects.submit(name, fn, **context)
            except Exception:
                logger.error(
                    "side_effect_submit_failed",
                    extra={"side_effect": name, **context},
                    exc_info=True,
                )

    def _append_snapshot(self, committed: _CommittedTransition) -> None:
        summary = (
            f"Status changed from {committed.previous_status.value} "
            f"to {committed.new_status.value}"
        )
        if committed.notes:
            summary = f"{summary}: {committed.notes}"
        with self._session_factory() as session:
            with session.begin():
                VersionSnapshotter(session, self._clock).append_record(
                    story_id=committed.story_id,
                    version_number=committed.version,
                    snapshot=committed.snapshot,
                    change_summary=summary,
                    changed_fields=committed.changed_fields,
                    changed_by=committed.actor.user_id,
                )

    def _notify(self, committed: _CommittedTransition) -> None:
        self._notifier.dispatch(StatusChangeEvent(
            story_id=committed.story_id,
            program_id=committed.program_id,
            previous_status=committed.previous_status,
            new_status=committed.new_status,
            changed_by=committed.actor.user_id,
            story_title=committed.title,
            notes=committed.notes,
        ))
