"""Configuration loading & validation.

Precedence (last wins): base.yaml -> overrides.local.yaml -> ENV
(FANCHAT__SECTION__KEY). Directory from FANCHAT_CONFIG_DIR (default
``configs``).

Legacy files without ``schema_version`` are migrated (assume 1, warn).
Unknown keys are rejected by every sub-schema.
"""
from __future__ import annotations

import logging
import os
import pathlib
import threading
from functools import lru_cache
from typing import Any, Dict, Type

import yaml
from core import metrics
from core.errors import validate_error_type
from pydantic import BaseModel, ConfigDict

from .schemas.messaging import MessagingConfig
from .schemas.observability import MetricsConfig, LoggingConfig

_log = logging.getLogger("fanchat.config")


class AggregatedConfig(BaseModel):
    schema_version: int = 1
    messaging: MessagingConfig = MessagingConfig()
    metrics: MetricsConfig = MetricsConfig()
    logging: LoggingConfig = LoggingConfig()

    model_config = ConfigDict(extra="forbid")


DEFAULT_CONFIG_DIR = "configs"
ENV_PREFIX = "FANCHAT__"
CURRENT_SCHEMA_VERSION = 1

SUB_SCHEMA_CLASSES: Dict[str, Type[BaseModel]] = {
    "messaging": MessagingConfig,
    "metrics": MetricsConfig,
    "logging": LoggingConfig,
}


class ConfigError(Exception):
    pass


def _load_yaml_if_exists(path: pathlib.Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _merge_dict(
    base: Dict[str, Any], override: Dict[str, Any]
) -> Dict[str, Any]:
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(base.get(k), dict):
            base[k] = _merge_dict(base[k], v)
        else:
            base[k] = v
    return base


def _cast_env_value(value: str) -> Any:
    if value.lower() in {"true", "false"}:
        return value.lower() == "true"
    if "," in value:
        return [part.strip() for part in value.split(",") if part.strip()]
    try:
        return int(value)
    except ValueError:
        try:
            return float(value)
        except ValueError:
            return value


def _apply_env(cfg: Dict[str, Any]) -> None:
    prefix_len = len(ENV_PREFIX)
    for env_key, value in os.environ.items():
        if not env_key.startswith(ENV_PREFIX):
            continue
        path_parts = env_key[prefix_len:].lower().split("__")
        target = cfg
        for part in path_parts[:-1]:
            if part not in target or not isinstance(target[part], dict):
                target[part] = {}
            target = target[part]
        target[path_parts[-1]] = _cast_env_value(value)
        dotted_path = ".".join(path_parts)
        metrics.inc("env_override_total", {"path": dotted_path})
        _log.info("config env override path=%s source=env", dotted_path)


_lock = threading.Lock()


def _resolve_config_dir() -> pathlib.Path:
    """Resolve config directory each call honoring env var changes."""
    return pathlib.Path(os.getenv("FANCHAT_CONFIG_DIR", DEFAULT_CONFIG_DIR))


def _migrate_legacy(data: Dict[str, Any]) -> Dict[str, Any]:
    """Apply in-place migrations for legacy configs.

    - ``schema_version`` absent -> 1 (warn).
    - top-level ``socket``/``api`` sections (pre-``messaging`` layout) are
      moved under ``messaging``.
    """
    if "schema_version" not in data:
        _log.warning("config schema_version missing; assuming 1")
        data["schema_version"] = CURRENT_SCHEMA_VERSION
    for legacy in ("socket", "api"):
        if legacy in data:
            section = data.setdefault("messaging", {})
            section.setdefault(legacy, data.pop(legacy))
            _log.warning(
                "config section '%s' moved under 'messaging'", legacy
            )
    return data


def _validate_sub_schemas(raw: Dict[str, Any]) -> Dict[str, Any]:
    validated: Dict[str, Any] = {}
    for name, cls in SUB_SCHEMA_CLASSES.items():
        if name in raw:
            try:
                validated[name] = cls.model_validate(raw[name] or {})
            except Exception as e:  # noqa: BLE001
                raise ConfigError(
                    f"Validation failed for module '{name}': {e}"
                ) from e
    return validated


def _normalize_and_validate(raw: Dict[str, Any]) -> None:
    """Cross-field normalizations and bounds validation.

    Normalizations:
      - messaging.socket.path: leading '/' stripped.
    Validations (error -> raise):
      - messaging.recent_chats.ttl_s > 0
      - messaging.recent_chats.max_entries > 0
      - messaging.notifications.max_entries > 0
      - messaging.notifications.toast_duration_s >= 0
      - messaging.message_max_length > 0
    """
    errors: list[tuple[str, str, str]] = []  # (path, code, msg)
    msg_cfg = raw.get("messaging") or {}
    if not isinstance(msg_cfg, dict):
        return
    sock = msg_cfg.get("socket") or {}
    if isinstance(sock.get("path"), str):
        sock["path"] = sock["path"].lstrip("/")

    def _check(path: str, value: Any, ok: bool, msg: str) -> None:
        if value is not None and not ok:
            errors.append((path, "config-out-of-range", msg))

    recent = msg_cfg.get("recent_chats") or {}
    ttl = recent.get("ttl_s")
    _check(
        "messaging.recent_chats.ttl_s",
        ttl,
        isinstance(ttl, (int, float)) and ttl > 0,
        ">0 required",
    )
    cap = recent.get("max_entries")
    _check(
        "messaging.recent_chats.max_entries",
        cap,
        isinstance(cap, int) and cap > 0,
        ">0 required",
    )
    notif = msg_cfg.get("notifications") or {}
    ncap = notif.get("max_entries")
    _check(
        "messaging.notifications.max_entries",
        ncap,
        isinstance(ncap, int) and ncap > 0,
        ">0 required",
    )
    dur = notif.get("toast_duration_s")
    _check(
        "messaging.notifications.toast_duration_s",
        dur,
        isinstance(dur, (int, float)) and dur >= 0,
        ">=0 required",
    )
    mlen = msg_cfg.get("message_max_length")
    _check(
        "messaging.message_max_length",
        mlen,
        isinstance(mlen, int) and mlen > 0,
        ">0 required",
    )

    if errors:
        for path, code, _ in errors:
            metrics.inc(
                "config_validation_errors_total",
                {"path": path, "code": code},
            )
        for _, code, _ in errors:
            validate_error_type(code)
        details = ", ".join(f"{p}:{c}:{m}" for p, c, m in errors)
        raise ConfigError(f"config validation failed: {details}")


@lru_cache(maxsize=1)
def get_config() -> AggregatedConfig:  # noqa: D401
    with _lock:
        cfg_dir = _resolve_config_dir()
        base_cfg = _load_yaml_if_exists(cfg_dir / "base.yaml")
        overrides_cfg = _load_yaml_if_exists(cfg_dir / "overrides.local.yaml")
        merged = _merge_dict(base_cfg, overrides_cfg)
        _apply_env(merged)
        migrated = _migrate_legacy(merged)
        _normalize_and_validate(migrated)
        validated_sub = _validate_sub_schemas(migrated)
        unknown = set(migrated) - set(SUB_SCHEMA_CLASSES) - {"schema_version"}
        if unknown:
            raise ConfigError(f"unknown config sections: {sorted(unknown)}")
        try:
            return AggregatedConfig(
                schema_version=migrated["schema_version"], **validated_sub
            )
        except Exception as e:  # noqa: BLE001
            raise ConfigError(str(e)) from e


def clear_config_cache() -> None:
    """Clear cached config (primarily for tests)."""
    get_config.cache_clear()


def as_dict() -> Dict[str, Any]:
    return get_config().model_dump()
