"""Configuration management and validation service."""

import os
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional
from dataclasses import dataclass

import yaml

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "CRYPTOTRACKER_CONFIG"


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


@dataclass
class CoinGeckoOptions:
    """Options for the CoinGecko market data endpoint."""
    base_url: Optional[str] = "https://api.coingecko.com"
    market_data_endpoint: Optional[str] = "/api/v3/coins/markets"
    vs_currency: Optional[str] = "usd"
    per_page: int = 250
    max_page: int = 1
    user_agent: Optional[str] = "CryptoPriceService/1.1"
    request_timeout_seconds: float = 30.0


DEFAULT_LATEST_PRICES_TTL_SECONDS = 60
DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Configuration schema definition
CONFIG_SCHEMA = {
    "coingecko": {
        "type": "dict",
        "required": False,
        "properties": {
            "base_url": {"type": "str", "required": False, "non_blank": True},
            "market_data_endpoint": {"type": "str", "required": False, "non_blank": True},
            "vs_currency": {"type": "str", "required": False, "non_blank": True},
            "per_page": {"type": "int", "required": False, "min": 1, "max": 250},
            "max_page": {"type": "int", "required": False, "min": 1},
            "user_agent": {"type": "str", "required": False, "non_blank": True},
            "request_timeout_seconds": {"type": "float", "required": False, "min": 1},
        }
    },
    "cache": {
        "type": "dict",
        "required": False,
        "properties": {
            "latest_prices_ttl_seconds": {"type": "int", "required": False, "min": 0},
        }
    },
    "ingestion": {
        "type": "dict",
        "required": False,
        "properties": {
            "interval_seconds": {"type": "int", "required": False, "min": 0},
        }
    },
    "logging": {
        "type": "dict",
        "required": False,
        "properties": {
            "level": {"type": "str", "required": False, "options": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]},
            "format": {"type": "str", "required": False},
        }
    },
}


class ConfigService:
    """Service for loading and validating configuration."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize config service.

        Args:
            config_path: Path to config file. If None, uses $CRYPTOTRACKER_CONFIG
                or config.yaml in the backend directory.
        """
        if config_path is None:
            # Environment override first, then the file beside the package
            config_path = os.environ.get(CONFIG_PATH_ENV)
        if config_path is None:
            backend_dir = Path(__file__).parent.parent.parent
            config_path = str(backend_dir / "config.yaml")

        self.config_path = config_path
        self._config: Dict[str, Any] = {}

    def load_and_validate(self) -> Dict[str, Any]:
        """Load and validate the configuration file.

        Returns:
            Validated configuration dictionary.

        Raises:
            ConfigValidationException: If validation fails.
        """
        errors: List[ConfigValidationError] = []

        # Check if file exists
        if not os.path.exists(self.config_path):
            logger.warning(f"Config file not found at {self.config_path}, using defaults")
            self._config = {}
            return self._config

        # Load YAML
        try:
            with open(self.config_path, 'r') as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            errors.append(ConfigValidationError(
                path="",
                message=f"Invalid YAML syntax: {str(e)}"
            ))
            raise ConfigValidationException(errors)

        if config is None:
            config = {}

        if not isinstance(config, dict):
            errors.append(ConfigValidationError(
                path="",
                message=f"Config must be a dictionary, got {type(config).__name__}"
            ))
            raise ConfigValidationException(errors)

        # Validate against schema
        errors.extend(self._validate_dict(config, CONFIG_SCHEMA, ""))

        if errors:
            raise ConfigValidationException(errors)

        self._config = config
        logger.info(f"Configuration loaded and validated from {self.config_path}")
        return config

    def _validate_dict(
        self,
        data: Dict[str, Any],
        schema: Dict[str, Any],
        path: str
    ) -> List[ConfigValidationError]:
        """Validate a dictionary against schema.

        Args:
            data: Data to validate
            schema: Schema to validate against
            path: Current path for error messages

        Returns:
            List of validation errors
        """
        errors = []

        # Check for unknown keys
        for key in data:
            if key not in schema:
                errors.append(ConfigValidationError(
                    path=f"{path}.{key}" if path else key,
                    message=f"Unknown configuration key '{key}'"
                ))

        # Validate each schema property
        for key, prop_schema in schema.items():
            current_path = f"{path}.{key}" if path else key

            if key not in data:
                if prop_schema.get("required", False):
                    errors.append(ConfigValidationError(
                        path=current_path,
                        message="Required field missing"
                    ))
                continue

            value = data[key]
            errors.extend(self._validate_value(value, prop_schema, current_path))

        return errors

    def _validate_value(
        self,
        value: Any,
        schema: Dict[str, Any],
        path: str
    ) -> List[ConfigValidationError]:
        """Validate a single value against schema.

        Args:
            value: Value to validate
            schema: Schema to validate against
            path: Current path for error messages

        Returns:
            List of validation errors
        """
        errors = []
        expected_type = schema.get("type")

        # Type validation
        type_map = {
            "str": str,
            "int": int,
            "float": (int, float),
            "bool": bool,
            "dict": dict,
        }

        if expected_type == "dict":
            if not isinstance(value, dict):
                errors.append(ConfigValidationError(
                    path=path,
                    message=f"Expected dict, got {type(value).__name__}"
                ))
                return errors

            # Validate nested properties
            if "properties" in schema:
                errors.extend(self._validate_dict(value, schema["properties"], path))

        elif expected_type in type_map:
            expected = type_map[expected_type]
            # YAML booleans are ints in Python; never accept them as numbers
            if not isinstance(value, expected) or (expected_type in ("int", "float") and isinstance(value, bool)):
                errors.append(ConfigValidationError(
                    path=path,
                    message=f"Expected {expected_type}, got {type(value).__name__}"
                ))
                return errors

            # Numeric range validation
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

            # Blank string validation
            if expected_type == "str" and schema.get("non_blank") and not value.strip():
                errors.append(ConfigValidationError(
                    path=path,
                    message="Value must not be blank"
                ))

            # Allowed options validation
            if "options" in schema and value not in schema["options"]:
                errors.append(ConfigValidationError(
                    path=path,
                    message=f"Value '{value}' not in allowed options: {schema['options']}"
                ))

        return errors

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value.

        Args:
            key: Dot-notation key (e.g., "coingecko.per_page")
            default: Default value if not found

        Returns:
            Configuration value
        """
        keys = key.split(".")
        value = self._config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def get_coingecko_options(self) -> CoinGeckoOptions:
        """Build CoinGecko options from the loaded config, falling back to defaults."""
        defaults = CoinGeckoOptions()
        return CoinGeckoOptions(
            base_url=self.get("coingecko.base_url", defaults.base_url),
            market_data_endpoint=self.get("coingecko.market_data_endpoint", defaults.market_data_endpoint),
            vs_currency=self.get("coingecko.vs_currency", defaults.vs_currency),
            per_page=self.get("coingecko.per_page", defaults.per_page),
            max_page=self.get("coingecko.max_page", defaults.max_page),
            user_agent=self.get("coingecko.user_agent", defaults.user_agent),
            request_timeout_seconds=self.get(
                "coingecko.request_timeout_seconds", defaults.request_timeout_seconds
            ),
        )

    @property
    def latest_prices_ttl_seconds(self) -> int:
        return self.get("cache.latest_prices_ttl_seconds", DEFAULT_LATEST_PRICES_TTL_SECONDS)

    @property
    def ingestion_interval_seconds(self) -> int:
        return self.get("ingestion.interval_seconds", 0)


def configure_logging(service: ConfigService) -> None:
    """Apply the configured log level and format to the root logger."""
    level = service.get("logging.level", "INFO")
    log_format = service.get("logging.format", DEFAULT_LOG_FORMAT)
    logging.basicConfig(level=getattr(logging, level), format=log_format)
    logger.debug(f"Logging configured at level {level}")


# Global config service instance
config_service = ConfigService()
