"""Configuration loading, validation and environment overrides."""

import os
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional
from dataclasses import dataclass

import yaml

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "MARKETDATA_CONFIG"

# Secrets and deployment-specific values may come from the environment
ENV_OVERRIDES = {
    "database.url": "DATABASE_URL",
    "upstream.fred_api_key": "FRED_API_KEY",
    "upstream.coinmarketcap_api_key": "COINMARKETCAP_API_KEY",
    "upstream.whale_alert_api_key": "WHALE_ALERT_API_KEY",
}

PROXY_ENV_VARS = [f"COINGECKO_PROXY_{i}" for i in range(1, 6)]


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


CONFIG_SCHEMA = {
    "server": {
        "type": "dict",
        "properties": {
            "host": {"type": "str"},
            "port": {"type": "int", "min": 1, "max": 65535},
        }
    },
    "database": {
        "type": "dict",
        "properties": {
            "url": {"type": "str"},
        }
    },
    "logging": {
        "type": "dict",
        "properties": {
            "level": {"type": "str", "options": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]},
            "format": {"type": "str"},
        }
    },
    "upstream": {
        "type": "dict",
        "properties": {
            "coingecko_url": {"type": "str"},
            "fred_api_key": {"type": "str"},
            "coinmarketcap_api_key": {"type": "str"},
            "whale_alert_api_key": {"type": "str"},
            "whale_min_value_usd": {"type": "int", "min": 0},
            "news_feeds": {"type": "dict"},
        }
    },
    "proxies": {
        "type": "dict",
        "properties": {
            "endpoints": {"type": "list", "items": "str"},
            "probe_timeout_seconds": {"type": "float", "min": 1},
        }
    },
    "acquisition": {
        "type": "dict",
        "properties": {
            "core_pages": {"type": "int", "min": 1, "max": 10},
            "max_pages": {"type": "int", "min": 1, "max": 10},
            "page_timeout_seconds": {"type": "float", "min": 1, "max": 60},
            "inter_page_delay_seconds": {"type": "float", "min": 0},
            "rate_limit_cooldown_seconds": {"type": "float", "min": 0},
            "supply_backfill_budget_seconds": {"type": "float", "min": 0},
        }
    },
    "scheduler": {
        "type": "dict",
        "properties": {
            "enabled": {"type": "bool"},
            "run_on_start": {"type": "bool"},
        }
    },
}

_TYPE_MAP = {
    "str": str,
    "int": int,
    "float": (int, float),
    "bool": bool,
    "list": list,
    "dict": dict,
}


class ConfigService:
    """Service for loading and validating configuration."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize config service.

        Args:
            config_path: Path to config file. If None, uses $MARKETDATA_CONFIG
                or ``config.yaml`` in the backend directory.
        """
        if config_path is None:
            config_path = os.environ.get(CONFIG_PATH_ENV)
        if config_path is None:
            backend_dir = Path(__file__).parent.parent.parent
            config_path = str(backend_dir / "config.yaml")

        self.config_path = config_path
        self._config: Dict[str, Any] = {}

    def load_and_validate(self) -> Dict[str, Any]:
        """Load and validate the configuration file.

        Returns:
            Validated configuration dictionary (empty when the file is absent).

        Raises:
            ConfigValidationException: If the file is not valid YAML or does
                not match CONFIG_SCHEMA.
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

        config = self.validate(config)
        self._config = config
        logger.info(f"Configuration loaded and validated from {self.config_path}")
        return config

    def validate(self, config: Any) -> Dict[str, Any]:
        """Validate an already-parsed configuration mapping."""
        if config is None:
            config = {}

        if not isinstance(config, dict):
            raise ConfigValidationException([ConfigValidationError(
                path="",
                message=f"Config must be a dictionary, got {type(config).__name__}"
            )])

        errors = self._validate_dict(config, CONFIG_SCHEMA, "")
        if errors:
            raise ConfigValidationException(errors)
        return config

    def _validate_dict(
        self,
        data: Dict[str, Any],
        schema: Dict[str, Any],
        path: str
    ) -> List[ConfigValidationError]:
        errors = []

        for key in data:
            if key not in schema:
                errors.append(ConfigValidationError(
                    path=f"{path}.{key}" if path else key,
                    message=f"Unknown configuration key '{key}'"
                ))

        for key, prop_schema in schema.items():
            if key in data:
                current_path = f"{path}.{key}" if path else key
                errors.extend(self._validate_value(data[key], prop_schema, current_path))

        return errors

    def _validate_value(
        self,
        value: Any,
        schema: Dict[str, Any],
        path: str
    ) -> List[ConfigValidationError]:
        expected_type = schema["type"]
        expected = _TYPE_MAP[expected_type]

        # bool is an int subclass; don't let `port: true` through
        if not isinstance(value, expected) or (
            expected_type in ("int", "float") and isinstance(value, bool)
        ):
            return [ConfigValidationError(
                path=path,
                message=f"Expected {expected_type}, got {type(value).__name__}"
            )]

        errors = []
        if expected_type == "dict" and "properties" in schema:
            errors.extend(self._validate_dict(value, schema["properties"], path))

        if expected_type == "list" and "items" in schema:
            item_type = _TYPE_MAP[schema["items"]]
            for index, item in enumerate(value):
                if not isinstance(item, item_type):
                    errors.append(ConfigValidationError(
                        path=f"{path}[{index}]",
                        message=f"Expected {schema['items']}, got {type(item).__name__}"
                    ))

        if expected_type in ("int", "float"):
            if "min" in schema and value < schema["min"]:
                errors.append(ConfigValidationError(
                    path=path,
                    message=f"Value {value} is below minimum {schema['min']}"
                ))
            if "max" in schema and value > schema["max"]:
                errors.append(ConfigValidationError(
                    path=path,
                    message=f"Value {value} is above maximum {schema['max']}"
                ))

        if "options" in schema and value not in schema["options"]:
            errors.append(ConfigValidationError(
                path=path,
                message=f"Value '{value}' not in allowed options: {schema['options']}"
            ))

        return errors

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value.

        Environment overrides (see ENV_OVERRIDES) win over the file.

        Args:
            key: Dot-notation key (e.g., "acquisition.page_timeout_seconds")
            default: Default value if not found
        """
        env_var = ENV_OVERRIDES.get(key)
        if env_var and os.environ.get(env_var):
            return os.environ[env_var]

        value = self._config
        for k in key.split("."):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def proxy_endpoints(self) -> List[str]:
        """Explicitly configured relay endpoints; empty means use the built-in pool."""
        from_env = [os.environ[name] for name in PROXY_ENV_VARS if os.environ.get(name)]
        if from_env:
            return from_env
        return list(self.get("proxies.endpoints", []) or [])


def configure_logging(config: ConfigService) -> None:
    """Apply logging.level / logging.format from configuration."""
    level = config.get("logging.level", "INFO")
    fmt = config.get("logging.format", "%(asctime)s %(levelname)s [%(name)s] %(message)s")
    logging.basicConfig(level=getattr(logging, level), format=fmt)


# Global config service instance
config_service = ConfigService()
