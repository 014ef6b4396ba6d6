"""
Configuration Management for tts-relay.

This module provides centralized configuration handling with:
    - Default values (Defaults class)
    - Dataclass-based configuration sections
    - YAML file loading with environment variable overrides
    - Validation with meaningful error messages

Configuration Hierarchy (highest priority first):
    1. Environment variables (OPENAI_API_KEY, APP_SUPABASE_URL, ...)
    2. YAML config file (config/settings.yaml, or $TTS_RELAY_SETTINGS)
    3. Defaults class values

Example settings.yaml:
    proxy:
      default_voice_id: JBFqnCBsd6RMkjVDRZzb
      signed_url_ttl_seconds: 60

    generator:
      model: gpt-4o-mini-tts

    storage:
      backend: supabase
      bucket: audio

    logging:
      level: 2  # NORMAL

Secrets are never read from YAML defaults; they come from the environment:
    OPENAI_API_KEY                 -> generator.api_key
    OPENAI_BASE_URL                -> generator.base_url
    APP_SUPABASE_URL               -> storage.supabase_url
    APP_SUPABASE_SERVICE_ROLE_KEY  -> storage.service_role_key
    TTS_RELAY_STORAGE_BACKEND      -> storage.backend
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

DEFAULT_SETTINGS_PATH = "config/settings.yaml"


class ConfigValidationError(Exception):
    """Raised when a configuration value is out of bounds or of the wrong type."""
    pass


class Defaults:
    """
    Centralized default configuration values.

    Sections:
        - Proxy: request handling and cache lookup
        - Generator: upstream speech generation API
        - Storage: blob store backend
        - Fork: stream fork buffering
        - Jobs: background persistence jobs
        - Logging: log level and formatting
    """

    # ─────────────────────────────────────────────────────────────────────────
    # Proxy
    # ─────────────────────────────────────────────────────────────────────────
    PROXY_DEFAULT_VOICE_ID = "JBFqnCBsd6RMkjVDRZzb"
    PROXY_SIGNED_URL_TTL_SECONDS = 60     # Lifetime of a cache read URL
    PROXY_FETCH_TIMEOUT_S = 10.0          # Cache fetch through a signed URL
    PROXY_MAX_TEXT_CHARS = 4096           # Upstream input limit

    # ─────────────────────────────────────────────────────────────────────────
    # Generator
    # ─────────────────────────────────────────────────────────────────────────
    GENERATOR_BASE_URL = "https://api.openai.com/v1"
    GENERATOR_MODEL = "gpt-4o-mini-tts"
    GENERATOR_INSTRUCTIONS = "Speak in a cheerful and positive tone."
    GENERATOR_RESPONSE_FORMAT = "mp3"
    GENERATOR_TIMEOUT_S = 60.0

    # ─────────────────────────────────────────────────────────────────────────
    # Storage
    # ─────────────────────────────────────────────────────────────────────────
    STORAGE_BACKEND = "supabase"          # supabase | local
    STORAGE_BUCKET = "audio"
    STORAGE_UPSERT = True                 # Last writer wins
    STORAGE_TIMEOUT_S = 60.0
    STORAGE_BASE_DIR = "./storage"        # local backend only
    STORAGE_PUBLIC_BASE_URL = "http://127.0.0.1:8000"

    # ─────────────────────────────────────────────────────────────────────────
    # Fork / Jobs
    # ─────────────────────────────────────────────────────────────────────────
    FORK_MAX_BUFFERED_CHUNKS = 64         # Per-branch queue bound (0 = unbounded)
    JOBS_DRAIN_TIMEOUT_S = 30.0           # Shutdown wait for pending uploads

    # ─────────────────────────────────────────────────────────────────────────
    # Logging
    # ─────────────────────────────────────────────────────────────────────────
    LOGGING_LEVEL = 2                     # 1=MINIMAL, 2=NORMAL, 3=VERBOSE, 4=DEBUG
    LOGGING_TEXT_PREVIEW_CHARS = 60


STORAGE_BACKENDS = ("supabase", "local")


@dataclass
class ProxyConfig:
    """Request handling: default voice, cache lookup and input limits."""
    default_voice_id: str = Defaults.PROXY_DEFAULT_VOICE_ID
    signed_url_ttl_seconds: int = Defaults.PROXY_SIGNED_URL_TTL_SECONDS
    fetch_timeout_s: float = Defaults.PROXY_FETCH_TIMEOUT_S
    max_text_chars: int = Defaults.PROXY_MAX_TEXT_CHARS


@dataclass
class GeneratorConfig:
    """
    Upstream speech generation API.

    The request sent upstream is {model, voice, input, instructions,
    response_format}; only voice and input vary per request.
    """
    base_url: str = Defaults.GENERATOR_BASE_URL
    api_key: str = ""
    model: str = Defaults.GENERATOR_MODEL
    instructions: str = Defaults.GENERATOR_INSTRUCTIONS
    response_format: str = Defaults.GENERATOR_RESPONSE_FORMAT
    timeout_s: float = Defaults.GENERATOR_TIMEOUT_S


@dataclass
class StorageConfig:
    """
    Blob store configuration.

    backend=supabase uses the Storage REST API of a Supabase project;
    backend=local keeps blobs on disk and signs read URLs with HMAC.
    """
    backend: str = Defaults.STORAGE_BACKEND
    bucket: str = Defaults.STORAGE_BUCKET
    supabase_url: str = ""
    service_role_key: str = ""
    upsert: bool = Defaults.STORAGE_UPSERT
    timeout_s: float = Defaults.STORAGE_TIMEOUT_S
    base_dir: str = Defaults.STORAGE_BASE_DIR
    public_base_url: str = Defaults.STORAGE_PUBLIC_BASE_URL
    signing_secret: str = ""


@dataclass
class ForkConfig:
    max_buffered_chunks: int = Defaults.FORK_MAX_BUFFERED_CHUNKS


@dataclass
class JobsConfig:
    drain_timeout_s: float = Defaults.JOBS_DRAIN_TIMEOUT_S


@dataclass
class LoggingConfig:
    """
    Logging configuration.

    Log levels:
        1 = MINIMAL: Startup, shutdown, errors only
        2 = NORMAL: Request lifecycle, cache status (default)
        3 = VERBOSE: Per-stage timing, detailed flow
        4 = DEBUG: Internal state
    """
    level: int = Defaults.LOGGING_LEVEL
    text_preview_chars: int = Defaults.LOGGING_TEXT_PREVIEW_CHARS


@dataclass
class RelayConfig:
    """
    Validated configuration for the relay.

    Usage:
        settings = load_settings("config/settings.yaml")
        config = RelayConfig.from_settings(settings)
        print(config.storage.bucket)
    """
    proxy: ProxyConfig = field(default_factory=ProxyConfig)
    generator: GeneratorConfig = field(default_factory=GeneratorConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    fork: ForkConfig = field(default_factory=ForkConfig)
    jobs: JobsConfig = field(default_factory=JobsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "RelayConfig":
        """
        Create RelayConfig from Settings with validation.

        Reads the raw configuration dictionary, applies defaults for missing
        values, validates constraints and returns typed configuration.

        Raises:
            ConfigValidationError: If any value fails validation.
        """
        raw = settings.raw

        # ─────────────────────────────────────────────────────────────────────
        # Proxy
        # ─────────────────────────────────────────────────────────────────────
        proxy_raw = raw.get("proxy", {}) or {}
        proxy = ProxyConfig(
            default_voice_id=str(proxy_raw.get("default_voice_id", Defaults.PROXY_DEFAULT_VOICE_ID)),
            signed_url_ttl_seconds=int(proxy_raw.get("signed_url_ttl_seconds", Defaults.PROXY_SIGNED_URL_TTL_SECONDS)),
            fetch_timeout_s=float(proxy_raw.get("fetch_timeout_s", Defaults.PROXY_FETCH_TIMEOUT_S)),
            max_text_chars=int(proxy_raw.get("max_text_chars", Defaults.PROXY_MAX_TEXT_CHARS)),
        )
        if not proxy.default_voice_id:
            raise ConfigValidationError("proxy.default_voice_id must not be empty")
        cls._validate_positive("proxy.signed_url_ttl_seconds", proxy.signed_url_ttl_seconds)
        cls._validate_positive("proxy.fetch_timeout_s", proxy.fetch_timeout_s)
        cls._validate_positive("proxy.max_text_chars", proxy.max_text_chars)

        # ─────────────────────────────────────────────────────────────────────
        # Generator
        # ─────────────────────────────────────────────────────────────────────
        gen_raw = raw.get("generator", {}) or {}
        generator = GeneratorConfig(
            base_url=str(gen_raw.get("base_url", Defaults.GENERATOR_BASE_URL)).rstrip("/"),
            api_key=str(gen_raw.get("api_key", "") or ""),
            model=str(gen_raw.get("model", Defaults.GENERATOR_MODEL)),
            instructions=str(gen_raw.get("instructions", Defaults.GENERATOR_INSTRUCTIONS)),
            response_format=str(gen_raw.get("response_format", Defaults.GENERATOR_RESPONSE_FORMAT)),
            timeout_s=float(gen_raw.get("timeout_s", Defaults.GENERATOR_TIMEOUT_S)),
        )
        cls._validate_positive("generator.timeout_s", generator.timeout_s)

        # ─────────────────────────────────────────────────────────────────────
        # Storage
        # ─────────────────────────────────────────────────────────────────────
        storage_raw = raw.get("storage", {}) or {}
        storage = StorageConfig(
            backend=str(storage_raw.get("backend", Defaults.STORAGE_BACKEND)).strip().lower(),
            bucket=str(storage_raw.get("bucket", Defaults.STORAGE_BUCKET)),
            supabase_url=str(storage_raw.get("supabase_url", "") or "").rstrip("/"),
            service_role_key=str(storage_raw.get("service_role_key", "") or ""),
            upsert=bool(storage_raw.get("upsert", Defaults.STORAGE_UPSERT)),
            timeout_s=float(storage_raw.get("timeout_s", Defaults.STORAGE_TIMEOUT_S)),
            base_dir=str(storage_raw.get("base_dir", Defaults.STORAGE_BASE_DIR)),
            public_base_url=str(storage_raw.get("public_base_url", Defaults.STORAGE_PUBLIC_BASE_URL)).rstrip("/"),
            signing_secret=str(storage_raw.get("signing_secret", "") or ""),
        )
        if storage.backend not in STORAGE_BACKENDS:
            raise ConfigValidationError(
                f"storage.backend must be one of {', '.join(STORAGE_BACKENDS)}, got {storage.backend!r}"
            )
        if not storage.bucket:
            raise ConfigValidationError("storage.bucket must not be empty")
        cls._validate_positive("storage.timeout_s", storage.timeout_s)

        # ─────────────────────────────────────────────────────────────────────
        # Fork / Jobs
        # ─────────────────────────────────────────────────────────────────────
        fork_raw = raw.get("fork", {}) or {}
        fork = ForkConfig(
            max_buffered_chunks=int(fork_raw.get("max_buffered_chunks", Defaults.FORK_MAX_BUFFERED_CHUNKS)),
        )
        cls._validate_non_negative("fork.max_buffered_chunks", fork.max_buffered_chunks)

        jobs_raw = raw.get("jobs", {}) or {}
        jobs = JobsConfig(
            drain_timeout_s=float(jobs_raw.get("drain_timeout_s", Defaults.JOBS_DRAIN_TIMEOUT_S)),
        )
        cls._validate_positive("jobs.drain_timeout_s", jobs.drain_timeout_s)

        # ─────────────────────────────────────────────────────────────────────
        # Logging
        # ─────────────────────────────────────────────────────────────────────
        logging_raw = raw.get("logging", {}) or {}
        log_level_raw = logging_raw.get("level", Defaults.LOGGING_LEVEL)
        if isinstance(log_level_raw, str):
            level_map = {
                "MINIMAL": 1, "1": 1,
                "NORMAL": 2, "INFO": 2, "2": 2,
                "VERBOSE": 3, "3": 3,
                "DEBUG": 4, "TRACE": 4, "4": 4,
            }
            log_level = level_map.get(log_level_raw.upper(), Defaults.LOGGING_LEVEL)
        else:
            log_level = int(log_level_raw)

        logging_cfg = LoggingConfig(
            level=log_level,
            text_preview_chars=int(logging_raw.get("text_preview_chars", Defaults.LOGGING_TEXT_PREVIEW_CHARS)),
        )
        cls._validate_range("logging.level", logging_cfg.level, 1, 4)
        cls._validate_non_negative("logging.text_preview_chars", logging_cfg.text_preview_chars)

        return cls(
            proxy=proxy,
            generator=generator,
            storage=storage,
            fork=fork,
            jobs=jobs,
            logging=logging_cfg,
        )

    @staticmethod
    def _validate_positive(name: str, value: int | float) -> None:
        if value <= 0:
            raise ConfigValidationError(f"{name} must be positive, got {value}")

    @staticmethod
    def _validate_non_negative(name: str, value: int | float) -> None:
        if value < 0:
            raise ConfigValidationError(f"{name} must be non-negative, got {value}")

    @staticmethod
    def _validate_range(name: str, value: int | float, min_val: int | float, max_val: int | float) -> None:
        if not (min_val <= value <= max_val):
            raise ConfigValidationError(f"{name} must be between {min_val} and {max_val}, got {value}")


@dataclass(frozen=True)
class Settings:
    """
    Immutable settings container loaded from YAML.

    This is the raw settings object before validation. Use
    get_relay_config() to get the validated RelayConfig.
    """
    raw: Dict[str, Any]

    @property
    def storage_backend(self) -> str:
        return str(self.raw.get("storage", {}).get("backend", Defaults.STORAGE_BACKEND))

    @property
    def default_voice_id(self) -> str:
        return str(self.raw.get("proxy", {}).get("default_voice_id", Defaults.PROXY_DEFAULT_VOICE_ID))

    def get_relay_config(self) -> RelayConfig:
        """
        Get validated RelayConfig from these settings.

        Raises:
            ConfigValidationError: If validation fails.
        """
        return RelayConfig.from_settings(self)


# Environment variable -> (section, key)
_ENV_OVERRIDES = {
    "OPENAI_API_KEY": ("generator", "api_key"),
    "OPENAI_BASE_URL": ("generator", "base_url"),
    "APP_SUPABASE_URL": ("storage", "supabase_url"),
    "APP_SUPABASE_SERVICE_ROLE_KEY": ("storage", "service_role_key"),
    "TTS_RELAY_STORAGE_BACKEND": ("storage", "backend"),
}


def apply_env_overrides(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Copy non-empty environment overrides into the raw settings dict."""
    for env_name, (section, key) in _ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            raw.setdefault(section, {})[key] = value
    return raw


def load_settings(path: Optional[str] = None) -> Settings:
    """
    Load settings from a YAML configuration file.

    When no path is given, $TTS_RELAY_SETTINGS or config/settings.yaml is
    used, and a missing default file falls back to built-in defaults.
    An explicitly requested file must exist.

    Raises:
        FileNotFoundError: If an explicitly requested file doesn't exist.
    """
    explicit = path is not None or bool(os.getenv("TTS_RELAY_SETTINGS"))
    p = Path(path or os.getenv("TTS_RELAY_SETTINGS") or DEFAULT_SETTINGS_PATH)

    raw: Dict[str, Any] = {}
    if p.exists():
        with p.open("r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    elif explicit:
        raise FileNotFoundError(f"settings file not found: {p.resolve()}")

    return Settings(raw=apply_env_overrides(raw))
