"""Centralize defaults and environment lookups for the date tracker."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Dict

from dotenv import load_dotenv

load_dotenv()

# ---------------------------------------------------------------------------
# Default configuration values
# ---------------------------------------------------------------------------
_DEFAULT_LLM_MODEL: str = "gpt-4o-mini"
_DEFAULT_LLM_TIMEOUT_SECONDS: float = 20.0
_DEFAULT_SOURCE_TIMEOUT_SECONDS: float = 8.0
_DEFAULT_SOURCE_TEXT_FIELD = "query"
_DEFAULT_POLL_INTERVAL_SECONDS: float = 5.0
_DEFAULT_TIMEZONE = "UTC"
_DEFAULT_ENTITIES_PATH = "config/entities.yml"
_DEFAULT_CYCLE_LOG_ENABLED: bool = True
_DEFAULT_LOG_REDACTION_ENABLED: bool = True
_DEFAULT_LOG_DIR = "logs"
_CYCLE_LOG_FILENAME = "cycles.jsonl"
_DEFAULT_LOG_MAX_BYTES = 1_000_000
_DEFAULT_LOG_BACKUP_COUNT = 5
_DEFAULT_LOG_LEVEL = "INFO"
_DEFAULT_WEB_UI_HOST = "127.0.0.1"
_DEFAULT_WEB_UI_PORT = 3000
_DEFAULT_STATIC_DIR = "web/static"

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def _read_bool(source: Dict[str, str], key: str, default: bool) -> bool:
    raw = source.get(key)
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if normalized in _FALSY:
        return False
    if normalized in _TRUTHY:
        return True
    return default


def _read_positive_float(source: Dict[str, str], key: str, default: float) -> float:
    raw = source.get(key)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


# ---------------------------------------------------------------------------
# Language model settings
# ---------------------------------------------------------------------------
def get_llm_model(env: Dict[str, str] | None = None) -> str:
    """Return the model identifier used for date extraction."""

    source = env if env is not None else os.environ
    return source.get("LLM_MODEL") or _DEFAULT_LLM_MODEL


def get_llm_api_key(env: Dict[str, str] | None = None) -> str | None:
    """Return the fallback API key for entities registered without one.

    Args:
        env: Optional mapping used instead of ``os.environ`` to simplify testing.

    Returns:
        The API key string if present, otherwise ``None``.
    """

    source = env if env is not None else os.environ
    return source.get("OPENAI_API_KEY") or None


def get_llm_timeout_seconds(env: Dict[str, str] | None = None) -> float:
    """Return the upper bound on a single extraction request."""

    source = env if env is not None else os.environ
    return _read_positive_float(source, "LLM_TIMEOUT_SECONDS", _DEFAULT_LLM_TIMEOUT_SECONDS)


# ---------------------------------------------------------------------------
# Source service settings
# ---------------------------------------------------------------------------
def get_source_timeout_seconds(env: Dict[str, str] | None = None) -> float:
    source = env if env is not None else os.environ
    return _read_positive_float(source, "SOURCE_TIMEOUT_SECONDS", _DEFAULT_SOURCE_TIMEOUT_SECONDS)


def get_source_text_field(env: Dict[str, str] | None = None) -> str:
    """Return the JSON field that carries the source text."""

    source = env if env is not None else os.environ
    return source.get("SOURCE_TEXT_FIELD") or _DEFAULT_SOURCE_TEXT_FIELD


# ---------------------------------------------------------------------------
# Entity defaults
# ---------------------------------------------------------------------------
def get_default_poll_interval_seconds(env: Dict[str, str] | None = None) -> float:
    """Return the poll interval used when a registration omits one."""

    source = env if env is not None else os.environ
    return _read_positive_float(source, "DEFAULT_POLL_INTERVAL_SECONDS", _DEFAULT_POLL_INTERVAL_SECONDS)


def get_default_timezone(env: Dict[str, str] | None = None) -> str:
    """Return the IANA zone used for day counts when an entity names none."""

    source = env if env is not None else os.environ
    return source.get("DEFAULT_TIMEZONE") or _DEFAULT_TIMEZONE


def get_entities_path(env: Dict[str, str] | None = None) -> Path:
    """Return the path to the YAML file of entities registered at boot."""

    source = env if env is not None else os.environ
    override = source.get("ENTITIES_PATH")
    return Path(override) if override else Path(_DEFAULT_ENTITIES_PATH)


# ---------------------------------------------------------------------------
# Admin access
# ---------------------------------------------------------------------------
def get_admin_token(env: Dict[str, str] | None = None) -> str | None:
    """Return the shared secret expected in ``X-Admin-Token``."""

    source = env if env is not None else os.environ
    raw = source.get("ADMIN_TOKEN")
    if raw is None:
        return None
    value = raw.strip()
    return value or None


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
def is_cycle_log_enabled(env: Dict[str, str] | None = None) -> bool:
    """Determine whether poll cycles are appended to the JSONL audit log."""

    source = env if env is not None else os.environ
    return _read_bool(source, "CYCLE_LOG_ENABLED", _DEFAULT_CYCLE_LOG_ENABLED)


def is_log_redaction_enabled(env: Dict[str, str] | None = None) -> bool:
    """Determine whether secret-looking values should be scrubbed before logging."""

    source = env if env is not None else os.environ
    return _read_bool(source, "LOG_REDACTION_ENABLED", _DEFAULT_LOG_REDACTION_ENABLED)


def get_log_dir(env: Dict[str, str] | None = None) -> Path:
    source = env if env is not None else os.environ
    override = source.get("LOG_DIR")
    return Path(override) if override else Path(_DEFAULT_LOG_DIR)


def get_cycle_log_path(env: Dict[str, str] | None = None) -> Path:
    """Return the full path for the cycle log JSONL file."""

    return get_log_dir(env) / _CYCLE_LOG_FILENAME


def get_log_max_bytes(env: Dict[str, str] | None = None) -> int:
    """Return the maximum size in bytes before rotating log files."""

    source = env if env is not None else os.environ
    raw = source.get("LOG_MAX_BYTES")
    if raw is None:
        return _DEFAULT_LOG_MAX_BYTES
    try:
        value = int(raw)
    except ValueError:
        return _DEFAULT_LOG_MAX_BYTES
    return max(value, 0)


def get_log_backup_count(env: Dict[str, str] | None = None) -> int:
    """Return the number of rotated log files to retain."""

    source = env if env is not None else os.environ
    raw = source.get("LOG_BACKUP_COUNT")
    if raw is None:
        return _DEFAULT_LOG_BACKUP_COUNT
    try:
        value = int(raw)
    except ValueError:
        return _DEFAULT_LOG_BACKUP_COUNT
    return max(value, 0)


def get_log_level(env: Dict[str, str] | None = None) -> str:
    source = env if env is not None else os.environ
    raw = (source.get("LOG_LEVEL") or _DEFAULT_LOG_LEVEL).strip().upper()
    if raw not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        return _DEFAULT_LOG_LEVEL
    return raw


# ---------------------------------------------------------------------------
# Web server
# ---------------------------------------------------------------------------
def get_web_ui_host(env: Dict[str, str] | None = None) -> str:
    source = env if env is not None else os.environ
    return source.get("WEB_UI_HOST", _DEFAULT_WEB_UI_HOST)


def get_web_ui_port(env: Dict[str, str] | None = None) -> int:
    source = env if env is not None else os.environ
    raw = source.get("WEB_UI_PORT") or source.get("PORT")
    if raw is None:
        return _DEFAULT_WEB_UI_PORT
    try:
        value = int(raw)
    except ValueError:
        return _DEFAULT_WEB_UI_PORT
    return value if 0 < value <= 65535 else _DEFAULT_WEB_UI_PORT


def get_static_dir(env: Dict[str, str] | None = None) -> Path:
    """Return the directory holding the admin page assets."""

    source = env if env is not None else os.environ
    override = source.get("STATIC_DIR")
    return Path(override) if override else Path(_DEFAULT_STATIC_DIR)
