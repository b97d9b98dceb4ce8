"""Shared constructor for kernel write services."""

from sqlalchemy.orm import Session

from story_kernel.domain.clock import Clock, SystemClock


class BaseService:
    """Write service bound to a caller-owned session.

    Subclasses persist with ``flush()`` only.  The caller commits or rolls
    back, so a story update and its approval record share one transaction.
    """

    def __init__(self, session: Session, clock: Clock | None = None) -> None:
        self.session = session
        self.clock = clock or SystemClock()
