"""
story_config -- single public entrypoint for story lifecycle configuration.

Responsibility:
    ``get_active_config()`` is the only way runtime code obtains
    notification rules, email settings, side-effect retry settings, and
    database settings.  No other component reads the YAML files or the
    environment directly.

Architecture position:
    Configuration.  Sits above ``story_kernel`` and below
    ``story_services``.  The kernel never imports from ``story_config``.

Failure modes:
    - ``FileNotFoundError`` when the configuration file does not exist.
    - ``ValueError`` when validation fails.

Audit relevance:
    Every successful call emits a ``STORY_CONFIG_TRACE`` log record with
    the config id, version, and checksum, tying each notification run to
    the exact configuration that governed it.
"""

from __future__ import annotations

from pathlib import Path
from typing import Mapping

from story_config.loader import compute_checksum, load_yaml_file, parse_lifecycle_config
from story_config.schema import (
    DatabaseSettings,
    EmailSettings,
    LifecycleConfig,
    NotificationRule,
    SideEffectSettings,
)
from story_kernel.logging_config import get_logger

_logger = get_logger("config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults" / "lifecycle.yaml"


def get_active_config(
    config_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> LifecycleConfig:
    """Load, validate and return the lifecycle configuration.

    Args:
        config_path: Override the YAML file.  Defaults to
            ``story_config/defaults/lifecycle.yaml``.
        environ: Environment mapping for secrets and URL overrides.
            Defaults to ``os.environ``.
    """
    path = config_path or _DEFAULT_CONFIG_PATH
    config = parse_lifecycle_config(load_yaml_file(path), environ)

    _logger.info(
        "STORY_CONFIG_TRACE",
        extra={
            "trace_type": "STORY_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "config_path": str(path),
            "rule_count": len(config.notification_rules),
            "email_configured": config.email.api_key is not None,
        },
    )
    return config


__all__ = [
    "DatabaseSettings",
    "EmailSettings",
    "LifecycleConfig",
    "NotificationRule",
    "SideEffectSettings",
    "compute_checksum",
    "get_active_config",
]
