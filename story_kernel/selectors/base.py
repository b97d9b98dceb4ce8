"""Shared constructor for read-only selectors."""

from sqlalchemy.orm import Session


class BaseSelector:
    """Query helper over a caller-owned session.

    Selectors only read and always hand back frozen DTOs, never ORM rows.
    """

    def __init__(self, session: Session) -> None:
        self.session = session
