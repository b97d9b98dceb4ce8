"""
Configuration Loader (``story_config.loader``).

Responsibility
--------------
Loads the lifecycle YAML file and parses it into the frozen dataclasses
of ``story_config.schema``.  Runtime callers go through
``story_config.get_active_config()``; this module is the parsing layer
underneath it.

Invariants enforced
-------------------
* Every ``StoryStatus`` has exactly one notification rule.
* Every role named anywhere is a ``UserRole`` value.
* Numeric retry settings are positive.
* ``compute_checksum`` is deterministic for identical input.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Validation failures  -> ``ValueError`` listing every problem found.
"""

from __future__ import annotations

import hashlib
import json
import os
from pathlib import Path
from typing import Any, Mapping

import yaml

from story_config.schema import (
    DatabaseSettings,
    EmailSettings,
    LifecycleConfig,
    NotificationRule,
    SideEffectSettings,
)
from story_kernel.domain.workflow import StoryStatus, UserRole


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load one YAML file; an empty file yields an empty dict."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _parse_roles(values: Any, where: str, errors: list[str]) -> tuple[UserRole, ...]:
    roles: list[UserRole] = []
    for value in values or ():
        try:
            roles.append(UserRole(value))
        except ValueError:
            errors.append(f"{where}: unknown role {value!r}")
    return tuple(roles)


def parse_notification_rules(
    data: Mapping[str, Any],
    errors: list[str],
) -> tuple[NotificationRule, ...]:
    rules: list[NotificationRule] = []
    for status_name, body in data.items():
        try:
            status = StoryStatus(status_name)
        except ValueError:
            errors.append(f"notifications.rules: unknown status {status_name!r}")
            continue
        rules.append(NotificationRule(
            status=status,
            notify_roles=_parse_roles(
                body.get("notify_roles"), f"notifications.rules[{status_name}]", errors,
            ),
            subject=body["subject"],
            description=body.get("description", ""),
        ))
    covered = {rule.status for rule in rules}
    for status in StoryStatus:
        if status not in covered:
            errors.append(f"notifications.rules: missing rule for {status.value!r}")
    return tuple(rules)


def parse_email(data: Mapping[str, Any], environ: Mapping[str, str]) -> EmailSettings:
    api_key_env = data.get("api_key_env", "RESEND_API_KEY")
    return EmailSettings(
        provider=data.get("provider", "resend"),
        api_url=data.get("api_url", EmailSettings.api_url),
        api_key_env=api_key_env,
        api_key=environ.get(api_key_env) or None,
        from_address=data.get("from_address", EmailSettings.from_address),
        dashboard_url=data.get("dashboard_url", EmailSettings.dashboard_url),
        timeout_seconds=float(data.get("timeout_seconds", EmailSettings.timeout_seconds)),
    )


def parse_side_effects(data: Mapping[str, Any], errors: list[str]) -> SideEffectSettings:
    settings = SideEffectSettings(
        max_attempts=int(data.get("max_attempts", SideEffectSettings.max_attempts)),
        initial_backoff_seconds=float(
            data.get("initial_backoff_seconds", SideEffectSettings.initial_backoff_seconds)
        ),
        max_backoff_seconds=float(
            data.get("max_backoff_seconds", SideEffectSettings.max_backoff_seconds)
        ),
        max_workers=int(data.get("max_workers", SideEffectSettings.max_workers)),
        outcome_history=int(data.get("outcome_history", SideEffectSettings.outcome_history)),
    )
    if settings.max_attempts < 1:
        errors.append("side_effects.max_attempts must be >= 1")
    if settings.max_workers < 1:
        errors.append("side_effects.max_workers must be >= 1")
    if settings.outcome_history < 1:
        errors.append("side_effects.outcome_history must be >= 1")
    if settings.initial_backoff_seconds < 0 or settings.max_backoff_seconds < 0:
        errors.append("side_effects backoff values must be >= 0")
    return settings


def parse_database(data: Mapping[str, Any], environ: Mapping[str, str]) -> DatabaseSettings:
    url_env = data.get("url_env")
    url = (environ.get(url_env) if url_env else None) or data["url"]
    return DatabaseSettings(
        url=url,
        echo=bool(data.get("echo", False)),
        pool_size=int(data.get("pool_size", 20)),
        max_overflow=int(data.get("max_overflow", 10)),
    )


def parse_lifecycle_config(
    data: dict[str, Any],
    environ: Mapping[str, str] | None = None,
) -> LifecycleConfig:
    """
    Parse and validate a raw config dict.

    Raises:
        KeyError: required keys missing.
        ValueError: validation failed; the message lists every problem.
    """
    env = os.environ if environ is None else environ
    errors: list[str] = []

    notifications = data.get("notifications", {})
    rules = parse_notification_rules(notifications.get("rules", {}), errors)
    scoped = _parse_roles(
        notifications.get("program_scoped_roles", [UserRole.PROGRAM_MANAGER.value]),
        "notifications.program_scoped_roles",
        errors,
    )
    side_effects = parse_side_effects(data.get("side_effects", {}), errors)

    if errors:
        raise ValueError(
            "Lifecycle configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )

    return LifecycleConfig(
        config_id=data["config_id"],
        version=int(data.get("version", 1)),
        notification_rules=rules,
        program_scoped_roles=frozenset(scoped),
        email=parse_email(data.get("email", {}), env),
        side_effects=side_effects,
        database=parse_database(data["database"], env),
        checksum=compute_checksum(data),
    )
