"""
story_services.side_effects -- Post-commit side-effect execution.

Responsibility:
    Runs the secondary effects of a committed transition (version
    snapshot, notification fan-out) with retry and exponential backoff,
    and isolates their failures from the caller.

Architecture position:
    Services layer.  The executor submits effects only after its
    transaction commits; nothing submitted here can undo or fail a
    transition.

Invariants enforced:
    - A failing effect is retried up to ``max_attempts`` times, then
      logged with ``exc_info`` and swallowed.
    - Deterministic kernel errors (``StoryKernelError``) are not retried.
    - Only the last ``outcome_history`` outcomes are kept in memory.
    - ``ThreadedSideEffectRunner`` copies the submitting thread's
      ``LogContext`` so worker log records keep the correlation fields.
"""

from __future__ import annotations

import contextvars
import threading
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from story_config.schema import SideEffectSettings
from story_kernel.exceptions import StoryKernelError
from story_kernel.logging_config import get_logger

logger = get_logger("services.side_effects")


@dataclass(frozen=True)
class SideEffectOutcome:
    name: str
    succeeded: bool
    attempts: int
    duration_ms: float
    error: str | None = None


class SideEffectRunner(Protocol):
    """Accepts post-commit work; never raises into the submitter."""

    def submit(self, name: str, fn: Callable[[], Any], **context: Any) -> None:
        ...


class _RetryingRunner:
    """Shared retry loop and outcome bookkeeping."""

    def __init__(self, settings: SideEffectSettings | None = None) -> None:
        self.settings = settings or SideEffectSettings()
        self._outcomes: deque[SideEffectOutcome] = deque(maxlen=self.settings.outcome_history)
        self._outcomes_lock = threading.Lock()

    @property
    def outcomes(self) -> list[SideEffectOutcome]:
        with self._outcomes_lock:
            return list(self._outcomes)

    def _retrying(self, name: str, context: dict[str, Any]) -> Retrying:
        def _log_retry(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "side_effect_retry",
                extra={
                    "side_effect": name,
                    "attempt": retry_state.attempt_number,
                    "error": str(exc) if exc is not None else None,
                    **context,
                },
            )

        return Retrying(
            stop=stop_after_attempt(self.settings.max_attempts),
            wait=wait_exponential(
                multiplier=self.settings.initial_backoff_seconds,
                max=self.settings.max_backoff_seconds,
            ),
            retry=(
                retry_if_exception_type(Exception)
                & retry_if_not_exception_type(StoryKernelError)
            ),
            before_sleep=_log_retry,
            reraise=True,
        )

    def _run(self, name: str, fn: Callable[[], Any], context: dict[str, Any]) -> SideEffectOutcome:
        start = time.monotonic()
        attempts = 0
        try:
            for attempt in self._retrying(name, context):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    fn()
        except Exception as exc:
            outcome = SideEffectOutcome(
                name=name,
                succeeded=False,
                attempts=attempts,
                duration_ms=round((time.monotonic() - start) * 1000, 2),
                error=str(exc),
            )
            logger.error(
                "side_effect_failed",
                extra={"side_effect": name, "attempts": attempts, **context},
                exc_info=True,
            )
        else:
            outcome = SideEffectOutcome(
                name=name,
                succeeded=True,
                attempts=attempts,
                duration_ms=round((time.monotonic() - start) * 1000, 2),
            )
            logger.debug(
                "side_effect_completed",
                extra={"side_effect": name, "attempts": attempts, **context},
            )
        with self._outcomes_lock:
            self._outcomes.append(outcome)
        return outcome


class InlineSideEffectRunner(_RetryingRunner):
    """Runs each effect immediately on the submitting thread."""

    def submit(self, name: str, fn: Callable[[], Any], **context: Any) -> None:
        self._run(name, fn, context)


class ThreadedSideEffectRunner(_RetryingRunner):
    """Runs effects on a worker pool so the caller returns at commit."""

    def __init__(self, settings: SideEffectSettings | None = None) -> None:
        super().__init__(settings)
        self._executor = ThreadPoolExecutor(
            max_workers=self.settings.max_workers,
            thread_name_prefix="story-side-effect",
        )
        self._pending: set[Future] = set()
        self._pending_lock = threading.Lock()

    def submit(self, name: str, fn: Callable[[], Any], **context: Any) -> None:
        ctx = contextvars.copy_context()
        future = self._executor.submit(ctx.run, self._run, name, fn, context)
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._discard)

    def _discard(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)

    def drain(self, timeout: float | None = None) -> bool:
        """Block until every submitted effect finished.  False on timeout."""
        with self._pending_lock:
            pending = set(self._pending)
        if not pending:
            return True
        _, not_done = wait_futures(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
