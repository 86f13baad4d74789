"""
ConfigLoader module for loading and validating TOML configuration files
"""

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple


class ConfigurationError(Exception):
    """Raised when configuration is invalid or incomplete"""
    pass


class EnvironmentError(Exception):
    """Raised when required environment variables are missing or malformed"""
    pass


DEFAULT_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


@dataclass
class AdapterConfig:
    """Configuration data class for the catalog adapter from TOML file"""
    name: str
    base_url: str
    transport: Dict[str, Any]
    rate_limits: Dict[str, Any] = field(default_factory=dict)
    pagination: Dict[str, Any] = field(default_factory=dict)
    extraction: Dict[str, Any] = field(default_factory=dict)
    cache: Dict[str, Any] = field(default_factory=dict)
    logging: Dict[str, Any] = field(default_factory=dict)
    payload_validation: Dict[str, Any] = field(default_factory=dict)
    normalization: Dict[str, Any] = field(default_factory=dict)


class ConfigLoader:
    """Loads and validates TOML configuration files"""

    # Required configuration sections and their mandatory keys
    REQUIRED_SECTIONS = {
        'api': ['name', 'base_url'],
        'transport': ['max_retries']
    }

    # Optional sections that can have default empty values
    OPTIONAL_SECTIONS = [
        'rate_limits',
        'pagination',
        'extraction',
        'cache',
        'logging',
        'payload_validation',
        'normalization'
    ]

    # Environment variable -> (section, key, converter); section None targets the [api] base URL
    ENVIRONMENT_OVERRIDES: Dict[str, Tuple[Optional[str], str, Callable[[str], Any]]] = {
        'CATALOG_BASE_URL': (None, 'base_url', str),
        'CATALOG_MAX_RETRIES': ('transport', 'max_retries', int),
        'CATALOG_TIMEOUT_SECONDS': ('transport', 'timeout_seconds', float),
        'CATALOG_MIN_DELAY_MS': ('rate_limits', 'min_delay_ms', int),
        'CATALOG_CACHE_TTL_SECONDS': ('cache', 'ttl_seconds', int),
        'CATALOG_CACHE_DATABASE': ('cache', 'database', str),
        'CATALOG_LOG_LEVEL': ('logging', 'level', str)
    }

    @staticmethod
    def load_toml_config(config_path: Path) -> AdapterConfig:
        """
        Load adapter configuration from TOML file

        Args:
            config_path: Path to the TOML configuration file

        Returns:
            AdapterConfig object with all configuration data

        Raises:
            FileNotFoundError: If config file doesn't exist
            ConfigurationError: If TOML syntax is invalid or required configuration is missing
        """
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        try:
            with open(config_path, 'rb') as f:
                config_data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"Invalid TOML syntax in {config_path}: {e}") from e

        # Validate required sections and keys
        ConfigLoader._validate_required_sections(config_data)

        return AdapterConfig(
            name=config_data['api']['name'],
            base_url=config_data['api']['base_url'],
            transport=config_data['transport'],
            **{section: config_data.get(section, {}) for section in ConfigLoader.OPTIONAL_SECTIONS}
        )

    @staticmethod
    def _validate_required_sections(config_data: Dict[str, Any]) -> None:
        """
        Validate that all required configuration sections and keys are present

        Args:
            config_data: Parsed TOML configuration data

        Raises:
            ConfigurationError: If any required section or key is missing
        """
        missing_items = []

        for section_name, required_keys in ConfigLoader.REQUIRED_SECTIONS.items():
            if section_name not in config_data:
                missing_items.append(f"Section [{section_name}]")
            else:
                section_data = config_data[section_name]
                for key in required_keys:
                    if key not in section_data:
                        missing_items.append(f"Key '{key}' in section [{section_name}]")

        if missing_items:
            raise ConfigurationError(
                f"Missing required configuration items: {', '.join(missing_items)}"
            )

    @staticmethod
    def apply_environment_overrides(config: AdapterConfig) -> AdapterConfig:
        """
        Overlay CATALOG_* environment variables onto a loaded configuration

        Args:
            config: AdapterConfig to update in place

        Returns:
            The same AdapterConfig, for chaining

        Raises:
            EnvironmentError: If a numeric override cannot be parsed
        """
        for env_var_name, (section, key, converter) in ConfigLoader.ENVIRONMENT_OVERRIDES.items():
            raw_value = os.getenv(env_var_name)
            if raw_value is None or raw_value == '':
                continue

            try:
                value = converter(raw_value)
            except ValueError as e:
                raise EnvironmentError(
                    f"Environment variable '{env_var_name}' has invalid value '{raw_value}'"
                ) from e

            if section is None:
                setattr(config, key, value)
            else:
                getattr(config, section)[key] = value

        return config

    @staticmethod
    def get_environment_value(env_var_name: str) -> str:
        """
        Get environment variable value with proper error handling

        Args:
            env_var_name: Name of the environment variable

        Returns:
            Value of the environment variable

        Raises:
            EnvironmentError: If environment variable is not set
        """
        value = os.getenv(env_var_name)
        if value is None:
            raise EnvironmentError(f"Environment variable '{env_var_name}' is not set")
        return value


def configure_logging(logging_config: Optional[Dict[str, Any]] = None) -> None:
    """
    Configure the root logger from a [logging] section

    Args:
        logging_config: Mapping with optional 'level' and 'format' keys

    Raises:
        ConfigurationError: If the level name is unknown
    """
    logging_config = logging_config or {}
    level_name = str(logging_config.get('level', 'INFO')).upper()
    level = logging.getLevelName(level_name)

    if not isinstance(level, int):
        raise ConfigurationError(f"Unknown log level: {level_name}")

    logging.basicConfig(
        level=level,
        format=logging_config.get('format', DEFAULT_LOG_FORMAT),
        force=True
    )
