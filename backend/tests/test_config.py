"""Tests for configuration loading and validation."""

import pytest
import yaml

from finterm.services.config import (
    ConfigService,
    ConfigValidationException,
    validate_against_schema,
    CONFIG_SCHEMA,
)


def _write(tmp_path, data):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(data) if not isinstance(data, str) else data)
    return str(path)


class TestConfigService:

    def test_missing_file_uses_defaults(self, tmp_path):
        service = ConfigService(str(tmp_path / "absent.yaml"))
        assert service.load_and_validate() == {}
        assert service.get("cache.sweep_interval_minutes", 60) == 60

    def test_valid_config(self, tmp_path):
        service = ConfigService(_write(tmp_path, {
            "server": {"host": "0.0.0.0", "port": 8000},
            "cache": {"sweep_interval_minutes": 30},
            "logging": {"level": "DEBUG"},
            "markets": {"EU": {"regular_close": 17}},
        }))
        config = service.load_and_validate()

        assert config["server"]["port"] == 8000
        assert service.get("cache.sweep_interval_minutes") == 30
        assert service.get("markets.EU.regular_close") == 17
        assert service.get("cache.missing", "fallback") == "fallback"

    def test_empty_file(self, tmp_path):
        assert ConfigService(_write(tmp_path, "")).load_and_validate() == {}

    def test_invalid_yaml(self, tmp_path):
        service = ConfigService(_write(tmp_path, "cache: [unclosed"))
        with pytest.raises(ConfigValidationException) as exc_info:
            service.load_and_validate()
        assert "Invalid YAML" in exc_info.value.errors[0].message

    def test_top_level_must_be_mapping(self, tmp_path):
        with pytest.raises(ConfigValidationException):
            ConfigService(_write(tmp_path, "- a\n- b\n")).load_and_validate()

    def test_env_var_path(self, tmp_path, monkeypatch):
        path = _write(tmp_path, {"logging": {"level": "WARNING"}})
        monkeypatch.setenv("FINTERM_CONFIG", path)
        service = ConfigService()
        service.load_and_validate()
        assert service.get("logging.level") == "WARNING"


class TestSchemaValidation:

    def test_unknown_key(self):
        errors = validate_against_schema({"cache": {"size": 10}}, CONFIG_SCHEMA)
        assert errors[0].path == "cache.size"

    def test_wrong_type(self):
        errors = validate_against_schema({"server": {"port": "8000"}}, CONFIG_SCHEMA)
        assert errors[0].path == "server.port"
        assert "Expected int" in errors[0].message

    def test_bool_is_not_a_number(self):
        errors = validate_against_schema({"cache": {"default_ttl_minutes": True}}, CONFIG_SCHEMA)
        assert len(errors) == 1

    def test_minimum(self):
        errors = validate_against_schema({"cache": {"sweep_interval_minutes": 0}}, CONFIG_SCHEMA)
        assert "below minimum" in errors[0].message

    def test_options(self):
        errors = validate_against_schema({"logging": {"level": "LOUD"}}, CONFIG_SCHEMA)
        assert "not in allowed options" in errors[0].message

    def test_all_errors_reported(self, tmp_path):
        service = ConfigService(_write(tmp_path, {
            "server": {"port": 0},
            "logging": {"level": "LOUD"},
            "extra": 1,
        }))
        with pytest.raises(ConfigValidationException) as exc_info:
            service.load_and_validate()
        assert len(exc_info.value.errors) == 3
