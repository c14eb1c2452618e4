"""Tests for configuration loading and environment variable handling."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from winerec.utils.config import Settings, _resolve_env_vars, config, load_config


class TestLoadConfig:
    """Tests for the load_config function."""

    def test_load_valid_config(self, sample_config_yaml: Path) -> None:
        """Config loading returns a dict with expected keys."""
        loaded = load_config(str(sample_config_yaml))
        assert isinstance(loaded, dict)
        assert loaded["app"]["name"] == "test-engine"

    def test_load_missing_config_raises(self, tmp_dir: Path) -> None:
        """Loading a non-existent config raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_dir / "nonexistent.yaml"))

    def test_load_invalid_yaml(self, tmp_dir: Path) -> None:
        """Loading invalid YAML content raises an error."""
        bad_config = tmp_dir / "bad.yaml"
        bad_config.write_text(": invalid: yaml: [")
        with pytest.raises(Exception):
            load_config(str(bad_config))

    def test_nested_values_preserved(self, sample_config_yaml: Path) -> None:
        """Nested config values are accessible."""
        loaded = load_config(str(sample_config_yaml))
        assert loaded["redis"]["port"] == 6379
        assert loaded["collaborative"]["min_common_items"] == 3

    def test_env_reference_resolved(
        self, tmp_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Env var references inside nested sections are resolved on load."""
        monkeypatch.setenv("WINEREC_TEST_DB", "/tmp/wines.db")
        path = tmp_dir / "env.yaml"
        path.write_text("sqlite:\n  path: ${WINEREC_TEST_DB:data/winerec.db}\n")
        assert load_config(str(path))["sqlite"]["path"] == "/tmp/wines.db"

    def test_missing_keys_get_defaults(self, sample_config_yaml: Path) -> None:
        """Sections and keys absent from the file take their defaults."""
        loaded = load_config(str(sample_config_yaml))
        assert loaded["collaborative"]["k_neighbors"] == 20
        assert loaded["hybrid"]["alpha"] == 0.7

    def test_numeric_env_values_coerced(
        self, tmp_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Numbers supplied through env references are validated as numbers."""
        monkeypatch.setenv("WINEREC_TEST_PORT", "6380")
        path = tmp_dir / "port.yaml"
        path.write_text("redis:\n  port: ${WINEREC_TEST_PORT:6379}\n")
        assert load_config(str(path))["redis"]["port"] == 6380

    @pytest.mark.parametrize(
        "body",
        [
            "hybrid:\n  alpha: 1.5\n",
            "cold_start:\n  popularity_method: median\n",
            "model_manager:\n  test_ratio: 0\n",
            "collaborative:\n  item_weight: -0.1\n",
        ],
    )
    def test_out_of_range_rejected(self, tmp_dir: Path, body: str) -> None:
        """Invalid engine settings fail at load time."""
        path = tmp_dir / "invalid.yaml"
        path.write_text(body)
        with pytest.raises(ValidationError):
            load_config(str(path))


class TestPackagedDefaults:
    """Tests for the shipped engine defaults."""

    def test_engine_sections_present(self) -> None:
        """Every engine finds its section in the default config."""
        for section in (
            "collaborative",
            "cold_start",
            "content_based",
            "hybrid",
            "model_manager",
            "redis",
            "sqlite",
        ):
            assert section in config

    def test_default_thresholds(self) -> None:
        """Default thresholds match the documented engine behaviour."""
        assert config["collaborative"]["min_similarity"] == 0.3
        assert config["collaborative"]["min_common_items"] == 2
        assert config["cold_start"]["full_cf_ratings"] == 6
        assert config["hybrid"]["max_ratings"] == 20
        assert config["collaborative"]["user_weight"] == 0.6
        assert config["collaborative"]["item_weight"] == 0.4


class TestResolveEnvVars:
    """Tests for environment variable resolution in config values."""

    def test_resolve_env_var_with_default(self) -> None:
        """Env var syntax with default returns default when var not set."""
        assert _resolve_env_vars("${NONEXISTENT_VAR:fallback}") == "fallback"

    def test_resolve_env_var_set(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Env var syntax returns actual value when var is set."""
        monkeypatch.setenv("TEST_CONFIG_VAR", "custom_value")
        assert _resolve_env_vars("${TEST_CONFIG_VAR:default}") == "custom_value"

    def test_plain_string_unchanged(self) -> None:
        """Strings without env var syntax are returned unchanged."""
        assert _resolve_env_vars("plain_string") == "plain_string"

    def test_embedded_and_bare_references(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """References inside longer strings and without defaults resolve."""
        monkeypatch.setenv("WINEREC_TEST_HOST", "db.local")
        monkeypatch.delenv("WINEREC_TEST_UNSET", raising=False)
        assert _resolve_env_vars("redis://${WINEREC_TEST_HOST}:6379") == "redis://db.local:6379"
        assert _resolve_env_vars("x${WINEREC_TEST_UNSET}y") == "xy"

    def test_non_string_passthrough(self) -> None:
        """Non-string values are returned as-is."""
        assert _resolve_env_vars(42) == 42


class TestSettings:
    """Tests for the Settings pydantic model."""

    def test_default_values(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Settings have sensible defaults."""
        monkeypatch.delenv("REDIS_HOST", raising=False)
        monkeypatch.delenv("REDIS_PORT", raising=False)
        s = Settings()
        assert s.redis_host == "localhost"
        assert s.redis_port == 6379
        assert s.config_path.endswith("config.yaml")

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Environment variables override default settings."""
        monkeypatch.setenv("REDIS_HOST", "redis-server")
        monkeypatch.setenv("REDIS_PORT", "6380")
        s = Settings()
        assert s.redis_host == "redis-server"
        assert s.redis_port == 6380
