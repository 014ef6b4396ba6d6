"""
Tests for configuration validation and defaults.

Tests cover:
- Defaults class values
- RelayConfig.from_settings() - all sections
- ConfigValidationError on invalid values
- String log level coercion ("DEBUG" -> 4)
- Environment overrides for secrets and backend
- load_settings() file resolution
"""

import pytest

from tts_relay.core.config import (
    ConfigValidationError,
    Defaults,
    RelayConfig,
    Settings,
    apply_env_overrides,
    load_settings,
)

_ENV_KEYS = (
    "OPENAI_API_KEY",
    "OPENAI_BASE_URL",
    "APP_SUPABASE_URL",
    "APP_SUPABASE_SERVICE_ROLE_KEY",
    "TTS_RELAY_STORAGE_BACKEND",
    "TTS_RELAY_SETTINGS",
)


@pytest.fixture
def clean_env(monkeypatch):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


class TestDefaults:
    """Tests for Defaults class values."""

    def test_proxy_defaults(self):
        """The default voice and signed URL lifetime match the deployed relay."""
        assert Defaults.PROXY_DEFAULT_VOICE_ID == "JBFqnCBsd6RMkjVDRZzb"
        assert Defaults.PROXY_SIGNED_URL_TTL_SECONDS == 60
        assert Defaults.PROXY_MAX_TEXT_CHARS == 4096

    def test_generator_defaults(self):
        assert Defaults.GENERATOR_MODEL == "gpt-4o-mini-tts"
        assert Defaults.GENERATOR_INSTRUCTIONS == "Speak in a cheerful and positive tone."
        assert Defaults.GENERATOR_RESPONSE_FORMAT == "mp3"

    def test_storage_defaults(self):
        assert Defaults.STORAGE_BACKEND == "supabase"
        assert Defaults.STORAGE_BUCKET == "audio"
        assert Defaults.STORAGE_UPSERT is True

    def test_fork_and_jobs_defaults(self):
        assert Defaults.FORK_MAX_BUFFERED_CHUNKS == 64
        assert Defaults.JOBS_DRAIN_TIMEOUT_S == 30.0


class TestRelayConfigFromSettings:
    """Tests for RelayConfig.from_settings()."""

    def test_from_settings_with_empty_raw(self):
        """Empty settings should give all defaults."""
        config = RelayConfig.from_settings(Settings(raw={}))

        assert config.proxy.default_voice_id == Defaults.PROXY_DEFAULT_VOICE_ID
        assert config.generator.base_url == Defaults.GENERATOR_BASE_URL
        assert config.generator.api_key == ""
        assert config.storage.backend == "supabase"
        assert config.fork.max_buffered_chunks == 64
        assert config.logging.level == 2

    def test_from_settings_with_proxy_section(self):
        settings = Settings(raw={"proxy": {
            "default_voice_id": "alloy",
            "signed_url_ttl_seconds": 120,
            "max_text_chars": 100,
        }})
        config = RelayConfig.from_settings(settings)

        assert config.proxy.default_voice_id == "alloy"
        assert config.proxy.signed_url_ttl_seconds == 120
        assert config.proxy.max_text_chars == 100

    def test_from_settings_strips_trailing_slashes(self):
        """URLs are joined with paths later; trailing slashes are removed."""
        settings = Settings(raw={
            "generator": {"base_url": "http://localhost:9000/v1/"},
            "storage": {"supabase_url": "https://proj.supabase.co/", "public_base_url": "http://relay/"},
        })
        config = RelayConfig.from_settings(settings)

        assert config.generator.base_url == "http://localhost:9000/v1"
        assert config.storage.supabase_url == "https://proj.supabase.co"
        assert config.storage.public_base_url == "http://relay"

    def test_backend_is_lowercased(self):
        config = RelayConfig.from_settings(Settings(raw={"storage": {"backend": " LOCAL "}}))
        assert config.storage.backend == "local"

    def test_zero_buffer_means_unbounded(self):
        """fork.max_buffered_chunks=0 is allowed (unbounded buffers)."""
        config = RelayConfig.from_settings(Settings(raw={"fork": {"max_buffered_chunks": 0}}))
        assert config.fork.max_buffered_chunks == 0

    def test_string_level_verbose(self):
        config = RelayConfig.from_settings(Settings(raw={"logging": {"level": "verbose"}}))
        assert config.logging.level == 3

    def test_string_level_trace(self):
        config = RelayConfig.from_settings(Settings(raw={"logging": {"level": "TRACE"}}))
        assert config.logging.level == 4

    def test_string_level_unknown_uses_default(self):
        config = RelayConfig.from_settings(Settings(raw={"logging": {"level": "LOUD"}}))
        assert config.logging.level == Defaults.LOGGING_LEVEL


class TestValidation:
    """Tests for ConfigValidationError on invalid values."""

    def test_unknown_backend_raises(self):
        with pytest.raises(ConfigValidationError) as exc_info:
            RelayConfig.from_settings(Settings(raw={"storage": {"backend": "s3"}}))
        assert "storage.backend" in str(exc_info.value)

    def test_zero_signed_url_ttl_raises(self):
        with pytest.raises(ConfigValidationError) as exc_info:
            RelayConfig.from_settings(Settings(raw={"proxy": {"signed_url_ttl_seconds": 0}}))
        assert "proxy.signed_url_ttl_seconds" in str(exc_info.value)

    def test_negative_buffer_raises(self):
        with pytest.raises(ConfigValidationError) as exc_info:
            RelayConfig.from_settings(Settings(raw={"fork": {"max_buffered_chunks": -1}}))
        assert "fork.max_buffered_chunks" in str(exc_info.value)

    def test_empty_default_voice_raises(self):
        with pytest.raises(ConfigValidationError):
            RelayConfig.from_settings(Settings(raw={"proxy": {"default_voice_id": ""}}))

    def test_empty_bucket_raises(self):
        with pytest.raises(ConfigValidationError):
            RelayConfig.from_settings(Settings(raw={"storage": {"bucket": ""}}))

    def test_logging_level_above_range_raises(self):
        with pytest.raises(ConfigValidationError) as exc_info:
            RelayConfig.from_settings(Settings(raw={"logging": {"level": 5}}))
        assert "logging.level" in str(exc_info.value)

    def test_negative_drain_timeout_raises(self):
        with pytest.raises(ConfigValidationError):
            RelayConfig.from_settings(Settings(raw={"jobs": {"drain_timeout_s": -1}}))


class TestSettings:
    """Tests for Settings properties."""

    def test_storage_backend_property(self):
        assert Settings(raw={"storage": {"backend": "local"}}).storage_backend == "local"

    def test_storage_backend_default(self):
        assert Settings(raw={}).storage_backend == "supabase"

    def test_default_voice_id_default(self):
        assert Settings(raw={}).default_voice_id == "JBFqnCBsd6RMkjVDRZzb"

    def test_settings_is_frozen(self):
        settings = Settings(raw={})
        with pytest.raises(Exception):
            settings.raw = {"x": 1}

    def test_get_relay_config(self):
        config = Settings(raw={"storage": {"bucket": "speech"}}).get_relay_config()
        assert config.storage.bucket == "speech"


class TestEnvironmentOverrides:
    """Secrets and backend selection come from the environment."""

    def test_env_overrides_applied(self, clean_env):
        clean_env.setenv("OPENAI_API_KEY", "sk-test")
        clean_env.setenv("APP_SUPABASE_URL", "https://proj.supabase.co")
        clean_env.setenv("APP_SUPABASE_SERVICE_ROLE_KEY", "service-key")
        clean_env.setenv("TTS_RELAY_STORAGE_BACKEND", "local")

        raw = apply_env_overrides({"storage": {"bucket": "audio"}})

        assert raw["generator"]["api_key"] == "sk-test"
        assert raw["storage"]["supabase_url"] == "https://proj.supabase.co"
        assert raw["storage"]["service_role_key"] == "service-key"
        assert raw["storage"]["backend"] == "local"
        assert raw["storage"]["bucket"] == "audio"

    def test_empty_env_values_ignored(self, clean_env):
        clean_env.setenv("OPENAI_API_KEY", "")
        raw = apply_env_overrides({"generator": {"api_key": "from-yaml"}})
        assert raw["generator"]["api_key"] == "from-yaml"


class TestLoadSettings:
    """Tests for load_settings() file resolution."""

    def test_explicit_path(self, clean_env, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("storage:\n  bucket: speech\n", encoding="utf-8")

        settings = load_settings(str(path))
        assert settings.raw["storage"]["bucket"] == "speech"

    def test_explicit_missing_path_raises(self, clean_env, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_settings(str(tmp_path / "missing.yaml"))

    def test_env_path_missing_raises(self, clean_env, tmp_path):
        clean_env.setenv("TTS_RELAY_SETTINGS", str(tmp_path / "missing.yaml"))
        with pytest.raises(FileNotFoundError):
            load_settings()

    def test_missing_default_file_gives_defaults(self, clean_env, tmp_path):
        clean_env.chdir(tmp_path)
        settings = load_settings()
        assert settings.raw == {}
        assert settings.get_relay_config().storage.backend == "supabase"

    def test_env_overrides_on_loaded_file(self, clean_env, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("storage:\n  backend: supabase\n", encoding="utf-8")
        clean_env.setenv("TTS_RELAY_STORAGE_BACKEND", "local")

        settings = load_settings(str(path))
        assert settings.storage_backend == "local"

    def test_shipped_settings_file_is_valid(self, clean_env):
        """config/settings.yaml validates and matches the defaults."""
        from pathlib import Path

        path = Path(__file__).parent.parent / "config" / "settings.yaml"
        config = load_settings(str(path)).get_relay_config()

        assert config.proxy.default_voice_id == Defaults.PROXY_DEFAULT_VOICE_ID
        assert config.generator.model == Defaults.GENERATOR_MODEL
        assert config.storage.bucket == "audio"
