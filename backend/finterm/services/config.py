"""Configuration management and validation service."""

import os
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional
from dataclasses import dataclass

import yaml

logger = logging.getLogger(__name__)


@dataclass
class ConfigValidationError:
    """Represents a configuration validation error."""
    path: str
    message: str


class ConfigValidationException(Exception):
    """Raised when config validation fails."""

    def __init__(self, errors: List[ConfigValidationError]):
        self.errors = errors
        messages = [f"{e.path}: {e.message}" for e in errors]
        super().__init__("Configuration validation failed:\n" + "\n".join(messages))


LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

# Configuration schema definition.
# ``markets`` is free-form here; session overrides are validated by the
# market registry when the session clock is configured.
CONFIG_SCHEMA = {
    "server": {
        "type": "dict",
        "properties": {
            "host": {"type": "str"},
            "port": {"type": "int", "min": 1, "max": 65535},
            "debug": {"type": "bool"},
        }
    },
    "cache": {
        "type": "dict",
        "properties": {
            "sweep_interval_minutes": {"type": "int", "min": 1},
            "default_ttl_minutes": {"type": "int", "min": 1},
        }
    },
    "logging": {
        "type": "dict",
        "properties": {
            "level": {"type": "str", "options": LOG_LEVELS},
            "format": {"type": "str"},
        }
    },
    "markets": {"type": "dict"},
}

_PY_TYPES = {
    "str": str,
    "int": int,
    "float": (int, float),
    "bool": bool,
    "list": list,
    "dict": dict,
}


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


def validate_against_schema(
    data: Dict[str, Any],
    schema: Dict[str, Any],
    path: str = "",
) -> List[ConfigValidationError]:
    """Validate a mapping against a schema of typed properties.

    Unknown keys are errors; missing keys are errors only when the property
    is marked ``required``.
    """
    errors = [
        ConfigValidationError(path=_join(path, key), message=f"Unknown configuration key '{key}'")
        for key in data
        if key not in schema
    ]

    for key, prop in schema.items():
        current = _join(path, key)
        if key not in data:
            if prop.get("required", False):
                errors.append(ConfigValidationError(path=current, message="Required field missing"))
            continue
        errors.extend(_validate_value(data[key], prop, current))

    return errors


def _validate_value(value: Any, prop: Dict[str, Any], path: str) -> List[ConfigValidationError]:
    expected_type = prop["type"]
    expected = _PY_TYPES[expected_type]

    # bool is an int subclass; a flag is never a valid count
    wrong_type = not isinstance(value, expected) or (
        expected_type in ("int", "float") and isinstance(value, bool)
    )
    if wrong_type:
        return [ConfigValidationError(
            path=path,
            message=f"Expected {expected_type}, got {type(value).__name__}"
        )]

    if expected_type == "dict":
        if "properties" in prop:
            return validate_against_schema(value, prop["properties"], path)
        return []

    errors = []
    if "min" in prop and value < prop["min"]:
        errors.append(ConfigValidationError(path=path, message=f"Value {value} is below minimum {prop['min']}"))
    if "max" in prop and value > prop["max"]:
        errors.append(ConfigValidationError(path=path, message=f"Value {value} is above maximum {prop['max']}"))
    if "options" in prop and value not in prop["options"]:
        errors.append(ConfigValidationError(
            path=path,
            message=f"Value '{value}' not in allowed options: {prop['options']}"
        ))
    return errors


class ConfigService:
    """Service for loading and validating configuration."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize config service.

        Args:
            config_path: Path to config file. If None, uses ``FINTERM_CONFIG``
                or ``config.yaml`` in the backend directory.
        """
        if config_path is None:
            backend_dir = Path(__file__).parent.parent.parent
            config_path = os.environ.get("FINTERM_CONFIG", str(backend_dir / "config.yaml"))

        self.config_path = config_path
        self._config: Dict[str, Any] = {}

    def load_and_validate(self) -> Dict[str, Any]:
        """Load and validate the configuration file.

        A missing file is not an error: defaults apply.

        Returns:
            Validated configuration dictionary.

        Raises:
            ConfigValidationException: If the file is not valid YAML or does
                not match the schema.
        """
        if not os.path.exists(self.config_path):
            logger.warning(f"Config file not found at {self.config_path}, using defaults")
            self._config = {}
            return self._config

        try:
            with open(self.config_path, 'r') as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigValidationException([
                ConfigValidationError(path="", message=f"Invalid YAML syntax: {e}")
            ])

        if config is None:
            config = {}

        if not isinstance(config, dict):
            raise ConfigValidationException([
                ConfigValidationError(
                    path="",
                    message=f"Config must be a dictionary, got {type(config).__name__}"
                )
            ])

        errors = validate_against_schema(config, CONFIG_SCHEMA)
        if errors:
            raise ConfigValidationException(errors)

        self._config = config
        logger.info(f"Configuration loaded and validated from {self.config_path}")
        return config

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value.

        Args:
            key: Dot-notation key (e.g., "cache.sweep_interval_minutes")
            default: Default value if not found

        Returns:
            Configuration value
        """
        value = self._config
        for k in key.split("."):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value


# Global config service instance
config_service = ConfigService()
