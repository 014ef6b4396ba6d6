"""
Request Context and Configuration State for Logging.

The request id lives in a ContextVar so it follows a request across
awaits. Tasks spawned while handling a request (the persistence upload,
the fork pump) copy the context at creation, so their log lines carry the
id of the request that started them.

Environment Variables:
    - TTS_RELAY_LOG_LEVEL: Override log level (1-4 or name)
    - TTS_RELAY_LOG_DIR: Directory for the JSONL log file
    - TTS_RELAY_JSONL_FILE: JSONL log filename
    - TTS_RELAY_LOG_ROTATE_BYTES: Max log file size
    - TTS_RELAY_LOG_ROTATE_BACKUP: Number of backup files
"""
from __future__ import annotations

import os
from contextvars import ContextVar
from typing import Any, Dict

import yaml

from .levels import LEVEL_NAMES, LogLevel

# "-" marks log lines emitted outside any request
_request_id: ContextVar[str] = ContextVar("request_id", default="-")

_configured: bool = False
_log_config: Dict[str, Any] = {}
_current_level: LogLevel = LogLevel.NORMAL


def get_request_id() -> str:
    return _request_id.get()


def set_request_id(rid: str) -> None:
    """Set the request id for log correlation in the current context."""
    _request_id.set(rid)


def get_level() -> LogLevel:
    return _current_level


def set_level(level: LogLevel) -> None:
    global _current_level
    _current_level = level


def get_level_name() -> str:
    return LEVEL_NAMES.get(_current_level, "NORMAL")


def is_configured() -> bool:
    return _configured


def set_configured(value: bool) -> None:
    global _configured
    _configured = value


def get_log_config() -> Dict[str, Any]:
    return _log_config


def set_log_config(config: Dict[str, Any]) -> None:
    global _log_config
    _log_config = config


def read_logging_config() -> Dict[str, Any]:
    """
    Read logging configuration from the settings file and environment.

    Priority (highest to lowest):
        1. TTS_RELAY_* environment variables
        2. settings.yaml logging section
        3. Defaults

    Returns:
        Dictionary with resolved logging configuration.
    """
    cfg: Dict[str, Any] = {}

    try:
        from tts_relay.core.config import load_settings
        cfg.update(load_settings().raw.get("logging", {}) or {})
    except (OSError, ValueError, yaml.YAMLError):
        # Unreadable settings file: logging still comes up with defaults
        pass

    if os.getenv("TTS_RELAY_LOG_LEVEL"):
        cfg["level"] = os.environ["TTS_RELAY_LOG_LEVEL"]
    if os.getenv("TTS_RELAY_LOG_DIR"):
        cfg["log_dir"] = os.environ["TTS_RELAY_LOG_DIR"]
    if os.getenv("TTS_RELAY_JSONL_FILE"):
        cfg["jsonl_file"] = os.environ["TTS_RELAY_JSONL_FILE"]
    for env_name, key in (
        ("TTS_RELAY_LOG_ROTATE_BYTES", "rotate_max_bytes"),
        ("TTS_RELAY_LOG_ROTATE_BACKUP", "rotate_backup_count"),
    ):
        value = os.getenv(env_name)
        if value and value.isdigit():
            cfg[key] = int(value)

    return cfg
