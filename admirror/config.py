"""
Configuration loading for AD Mirror.

Configuration comes from a YAML file, with secrets overridable from the
environment. Every validation problem is reported at once.
"""

import logging
import os
from typing import Any, Dict, Optional

import yaml

from admirror.constants import (
    DEFAULT_BIND_USER,
    DEFAULT_MIN_GID,
    DEFAULT_MIN_UID,
    DEFAULT_NIS_DOMAIN,
    DEFAULT_PORT,
    DEFAULT_SERVER,
    LogLevel,
)

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = 'ADMIRROR_CONFIG'


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


class ConfigLoader:
    """Loads, validates and completes the configuration file."""

    ENV_OVERRIDES = {
        'directory.bind_password': 'ADMIRROR_BIND_PASSWORD',
    }

    DEFAULTS = {
        'directory': {
            'server': DEFAULT_SERVER,
            'port': DEFAULT_PORT,
            'bind_user': DEFAULT_BIND_USER,
            'use_ssl': True,
            'verify_ssl': True,
            'ca_cert_file': None,
            'connection_timeout': 10,
            'receive_timeout': 10,
            'page_size': 1000,
        },
        'identifiers': {
            'min_uid': DEFAULT_MIN_UID,
            'min_gid': DEFAULT_MIN_GID,
            'nis_domain': DEFAULT_NIS_DOMAIN,
        },
        'logging': {
            'level': 'INFO',
            'directory_level': 'NORMAL',
            'log_dir': 'logs',
            'rotation': 'daily',
            'retention_days': 7,
            'console_output': True,
            'console_level': 'WARNING',
        },
        'error_handling': {
            'max_retries': 3,
            'retry_wait_seconds': 5,
        },
    }

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize config loader.

        Args:
            config_path: Path to the config file. If None, uses the
                ADMIRROR_CONFIG environment variable or 'config.yaml'
        """
        self.config_path = config_path or os.getenv(CONFIG_PATH_ENV, 'config.yaml')
        self.config = {}

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from file and apply environment overrides.

        Returns:
            Parsed and validated configuration dictionary

        Raises:
            ConfigurationError: If the file is missing, unparsable or invalid
        """
        try:
            with open(self.config_path, 'r') as f:
                self.config = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")
        if not isinstance(self.config, dict):
            raise ConfigurationError("Configuration file must contain a mapping")

        self._apply_env_overrides()
        self._apply_defaults()
        self._validate()

        logger.info(f"Configuration loaded successfully from {self.config_path}")
        return self.config

    def _apply_env_overrides(self):
        for config_key, env_var in self.ENV_OVERRIDES.items():
            env_value = os.getenv(env_var)
            if env_value:
                self._set_nested_value(self.config, config_key, env_value)
                logger.debug(f"Applied environment override for {config_key}")

    def _set_nested_value(self, config: Dict, key_path: str, value: Any):
        keys = key_path.split('.')
        current = config
        for key in keys[:-1]:
            current = current.setdefault(key, {})
        current[keys[-1]] = value

    def _apply_defaults(self):
        for section, defaults in self.DEFAULTS.items():
            values = self.config.get(section)
            if values is None:
                values = self.config[section] = {}
            if not isinstance(values, dict):
                continue
            for key, value in defaults.items():
                values.setdefault(key, value)

    def _validate(self):
        errors = []

        for section in self.DEFAULTS:
            if not isinstance(self.config.get(section), dict):
                errors.append(f"Section {section} must be a mapping")
        if errors:
            raise ConfigurationError(self._format(errors))

        directory = self.config['directory']
        for field in ('root', 'bind_password'):
            if not directory.get(field):
                errors.append(f"Missing required directory field: {field}")
        if directory.get('root') and 'dc=' not in str(directory['root']).lower():
            errors.append(f"Directory root must contain dc= components: {directory['root']}")
        for field in ('port', 'connection_timeout', 'receive_timeout', 'page_size'):
            if not self._positive_int(directory.get(field)):
                errors.append(f"directory.{field} must be a positive integer")

        identifiers = self.config['identifiers']
        for field in ('min_uid', 'min_gid'):
            if not self._positive_int(identifiers.get(field), allow_zero=True):
                errors.append(f"identifiers.{field} must be a non-negative integer")

        level = str(self.config['logging'].get('directory_level', '')).upper()
        if level not in LogLevel.__members__:
            errors.append(f"logging.directory_level must be one of {', '.join(LogLevel.__members__)}")

        error_handling = self.config['error_handling']
        if not self._positive_int(error_handling.get('max_retries'), allow_zero=True):
            errors.append("error_handling.max_retries must be a non-negative integer")
        if not isinstance(error_handling.get('retry_wait_seconds'), (int, float)) or \
                error_handling['retry_wait_seconds'] < 0:
            errors.append("error_handling.retry_wait_seconds must be a non-negative number")

        if errors:
            raise ConfigurationError(self._format(errors))

    @staticmethod
    def _positive_int(value, allow_zero: bool = False) -> bool:
        if isinstance(value, bool) or not isinstance(value, int):
            return False
        return value >= 0 if allow_zero else value > 0

    @staticmethod
    def _format(errors):
        return "Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors)


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Convenience function to load configuration.

    Args:
        config_path: Path to config file

    Returns:
        Loaded configuration dictionary
    """
    return ConfigLoader(config_path).load()
