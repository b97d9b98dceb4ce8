"""
Lifecycle configuration schema.

Frozen dataclasses the YAML source is parsed into.  Nothing here reads
files or the environment; see ``story_config.loader``.
"""

from __future__ import annotations

from dataclasses import dataclass

from story_kernel.domain.workflow import StoryStatus, UserRole


@dataclass(frozen=True)
class NotificationRule:
    """Who hears about a story entering ``status``, and with which wording."""

    status: StoryStatus
    notify_roles: tuple[UserRole, ...]
    subject: str
    description: str = ""


@dataclass(frozen=True)
class EmailSettings:
    provider: str = "resend"
    api_url: str = "https://api.resend.com/emails"
    api_key_env: str = "RESEND_API_KEY"
    api_key: str | None = None
    from_address: str = "Propel Health <notifications@propelhealth.com>"
    dashboard_url: str = "http://localhost:3000"
    timeout_seconds: float = 10.0


@dataclass(frozen=True)
class SideEffectSettings:
    """Retry and concurrency for post-commit side effects."""

    max_attempts: int = 3
    initial_backoff_seconds: float = 0.5
    max_backoff_seconds: float = 8.0
    max_workers: int = 4
    # Most recent outcomes kept in memory for inspection.
    outcome_history: int = 200


@dataclass(frozen=True)
class DatabaseSettings:
    url: str
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10


@dataclass(frozen=True)
class LifecycleConfig:
    """The runtime configuration artifact returned by ``get_active_config``."""

    config_id: str
    version: int
    notification_rules: tuple[NotificationRule, ...]
    program_scoped_roles: frozenset[UserRole]
    email: EmailSettings
    side_effects: SideEffectSettings
    database: DatabaseSettings
    checksum: str

    def rule_for(self, status: StoryStatus) -> NotificationRule:
        for rule in self.notification_rules:
            if rule.status == status:
                return rule
        raise KeyError(f"No notification rule for status {status.value!r}")
