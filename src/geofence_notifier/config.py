"""Configuration loading, environment-variable interpolation, and validation.

Resolution order for ``${VAR}`` placeholders:
    CLI overrides → environment variables → raw config value.

``${VAR}`` (no default) raises if unresolvable.
``${VAR:-default}`` falls back to *default*.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
import orjson

logger = logging.getLogger(__name__)

_VAR_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-(.*?))?\}")

_SCHEMA_PATH = Path(__file__).resolve().parent.parent.parent / "config" / "config.schema.json"

# Firestore rejects write batches with more than 500 operations.
MAX_BATCH_WRITES = 500


@dataclass
class RetryConfig:
    """Backoff parameters for retrying transport failures."""

    max_attempts: int = 3
    initial_delay_ms: int = 500
    max_delay_ms: int = 8000
    backoff_multiplier: int = 2
    jitter_pct: int = 20


@dataclass
class FirebaseConfig:
    """Firebase project settings.

    An empty ``credentials_path`` selects application-default credentials.
    """

    project_id: str = ""
    credentials_path: str = ""


@dataclass
class CollectionsConfig:
    """Document-store collection and field names."""

    events: str = "geofence_events"
    families: str = "families"
    users: str = "users"
    token_field: str = "fcmTokens"


@dataclass
class DispatchConfig:
    """Multicast dispatch settings."""

    retry: RetryConfig = field(default_factory=RetryConfig)
    dry_run: bool = False


@dataclass
class ReconcileConfig:
    """Token cleanup settings."""

    batch_limit: int = MAX_BATCH_WRITES


@dataclass
class NotificationConfig:
    """Placeholders used when an event lacks display fields."""

    default_subject_name: str = "Your family member"
    default_region_name: str = "a safe zone"
    unknown_location: str = "Unknown location"


@dataclass
class LoggingConfig:
    """Logging settings."""

    level: str = "info"
    format: str = "json"
    redact_tokens: bool = True


@dataclass
class AppConfig:
    """Top-level application configuration."""

    instance_id: str = "notifier-01"
    firebase: FirebaseConfig = field(default_factory=FirebaseConfig)
    collections: CollectionsConfig = field(default_factory=CollectionsConfig)
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)
    reconcile: ReconcileConfig = field(default_factory=ReconcileConfig)
    notification: NotificationConfig = field(default_factory=NotificationConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _interpolate_value(value: str, overrides: dict[str, str] | None = None) -> str:
    """Replace ``${VAR}`` / ``${VAR:-default}`` in *value*."""

    def _replacer(match: re.Match) -> str:
        var_name = match.group(1)
        default = match.group(2)  # None when no ``:-`` present

        # 1. CLI overrides
        if overrides and var_name in overrides:
            return overrides[var_name]
        # 2. Environment variables
        env_val = os.environ.get(var_name)
        if env_val is not None:
            return env_val
        # 3. Default
        if default is not None:
            return default

        raise ValueError(
            f"Required variable ${{{var_name}}} is not set in environment "
            f"or CLI overrides"
        )

    return _VAR_RE.sub(_replacer, value)


def _walk_and_interpolate(obj: Any, overrides: dict[str, str] | None = None) -> Any:
    """Recursively interpolate all string values in a JSON-like structure."""
    if isinstance(obj, str):
        return _interpolate_value(obj, overrides)
    if isinstance(obj, dict):
        return {k: _walk_and_interpolate(v, overrides) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_walk_and_interpolate(item, overrides) for item in obj]
    return obj


def _pick(cls: type, raw: dict[str, Any]) -> Any:
    """Build dataclass *cls* from the keys of *raw* it declares."""
    return cls(**{k: raw[k] for k in raw if k in cls.__dataclass_fields__})


def _dict_to_config(raw: dict[str, Any]) -> AppConfig:
    """Convert a raw dict into a typed :class:`AppConfig`."""
    dispatch_raw = raw.get("dispatch", {})

    return AppConfig(
        instance_id=raw.get("instance_id", "notifier-01"),
        firebase=_pick(FirebaseConfig, raw.get("firebase", {})),
        collections=_pick(CollectionsConfig, raw.get("collections", {})),
        dispatch=DispatchConfig(
            retry=_pick(RetryConfig, dispatch_raw.get("retry", {})),
            dry_run=bool(dispatch_raw.get("dry_run", False)),
        ),
        reconcile=_pick(ReconcileConfig, raw.get("reconcile", {})),
        notification=_pick(NotificationConfig, raw.get("notification", {})),
        logging=_pick(LoggingConfig, raw.get("logging", {})),
    )


def load_config(
    path: str | Path | None,
    overrides: dict[str, str] | None = None,
    schema_path: str | Path | None = None,
) -> AppConfig:
    """Load, interpolate, validate, and return the application config.

    Parameters
    ----------
    path:
        Filesystem path to the JSON config.  ``None`` returns defaults.
    overrides:
        CLI-supplied variable overrides.
    schema_path:
        Path to the JSON Schema file.  Defaults to
        ``config/config.schema.json`` relative to the project root.

    Raises
    ------
    ValueError
        If a required ``${VAR}`` cannot be resolved, or the batch limit
        exceeds what the store accepts.
    jsonschema.ValidationError
        If the config fails schema validation.
    """
    if path is None:
        logger.debug("No config file given — using defaults")
        return AppConfig()

    raw: dict[str, Any] = orjson.loads(Path(path).read_bytes())
    interpolated = _walk_and_interpolate(raw, overrides=overrides)

    # --- schema validation ---
    sp = Path(schema_path) if schema_path else _SCHEMA_PATH
    if sp.exists():
        schema = orjson.loads(sp.read_bytes())
        jsonschema.validate(instance=interpolated, schema=schema)
        logger.debug("Config passed schema validation")
    else:
        logger.warning("Schema file not found at %s — skipping validation", sp)

    cfg = _dict_to_config(interpolated)
    if not 1 <= cfg.reconcile.batch_limit <= MAX_BATCH_WRITES:
        raise ValueError(
            f"reconcile.batch_limit must be between 1 and {MAX_BATCH_WRITES}, "
            f"got {cfg.reconcile.batch_limit}"
        )
    if cfg.dispatch.retry.max_attempts < 1:
        raise ValueError("dispatch.retry.max_attempts must be at least 1")
    return cfg


def resolve_config_path(explicit: str | None = None) -> str | None:
    """Pick the config path from *explicit* or ``GEOFENCE_NOTIFIER_CONFIG``.

    Returns ``None`` when neither names an existing file.
    """
    candidate = explicit or os.environ.get("GEOFENCE_NOTIFIER_CONFIG")
    if candidate and Path(candidate).exists():
        return candidate
    if candidate:
        logger.warning("Config file %s not found — using defaults", candidate)
    return None
