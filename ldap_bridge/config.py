"""
Configuration loading and management for the LDAP bridge.

This module loads the YAML settings file, applies environment overrides,
validates required fields and fills in defaults. Sync settings are then
exposed through ConfigStore, a read-only key lookup that the sync service
rebuilds its mapping snapshot from.
"""

import os
import copy
import yaml
import logging
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


class ConfigLoader:
    """Handles loading and validation of application configuration."""

    # Environment variable mappings for sensitive fields
    ENV_OVERRIDES = {
        'ldap.bind_password': 'LDAP_BIND_PASSWORD',
    }

    SYNC_DEFAULTS = {
        'server_base_dn': '',
        'user_filter': '(objectClass=inetOrgPerson)',
        'role_filter': '(objectClass=groupOfNames)',
        'role_id_attribute': 'cn',
        'role_user_id_attribute': 'member',
        'export_user_base_dn': '',
        'export_user_class': 'inetOrgPerson',
        'role_mapping': [],
        'user_mapping': {},
    }

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize config loader.

        Args:
            config_path: Path to config file. If None, uses CONFIG_PATH env var or 'config.yaml'
        """
        self.config_path = config_path or os.getenv('CONFIG_PATH', 'config.yaml')
        self.config = {}

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from file and apply environment overrides.

        Returns:
            Parsed and validated configuration dictionary

        Raises:
            ConfigurationError: If config file not found or validation fails
        """
        try:
            with open(self.config_path, 'r') as f:
                self.config = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")

        if not isinstance(self.config, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {self.config_path}")

        self._apply_env_overrides()
        self._validate()
        self._apply_defaults()

        logger.info(f"Configuration loaded successfully from {self.config_path}")
        return self.config

    def _apply_env_overrides(self):
        """Apply environment variable overrides for sensitive fields."""
        for config_key, env_var in self.ENV_OVERRIDES.items():
            env_value = os.getenv(env_var)
            if env_value:
                self._set_nested_value(self.config, config_key, env_value)
                logger.debug(f"Applied environment override for {config_key}")

    def _set_nested_value(self, config: Dict, key_path: str, value: Any):
        """Set a nested configuration value using dot notation."""
        keys = key_path.split('.')
        current = config
        for key in keys[:-1]:
            if key not in current or current[key] is None:
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value

    def _validate(self):
        """Validate required configuration fields."""
        errors = []

        ldap_config = self.config.get('ldap') or {}
        for field in ['server_url', 'bind_dn', 'bind_password']:
            if not ldap_config.get(field):
                errors.append(f"Missing required LDAP field: {field}")

        sync_config = self.config.get('sync') or {}
        user_mapping = sync_config.get('user_mapping', {})
        if not isinstance(user_mapping, dict):
            errors.append("sync.user_mapping must be a mapping of user field to LDAP attribute")

        role_mapping = sync_config.get('role_mapping', [])
        if not isinstance(role_mapping, list):
            errors.append("sync.role_mapping must be a list")
        else:
            for i, mapping in enumerate(role_mapping):
                if not isinstance(mapping, dict):
                    errors.append(f"sync.role_mapping[{i}] must be a mapping")

        entities = self.config.get('entities') or {}
        if not isinstance(entities, dict):
            errors.append("entities must be a mapping of entity type to config")
        else:
            for entity_type, entity_config in entities.items():
                if entity_config is not None and not isinstance(entity_config, dict):
                    errors.append(f"entities.{entity_type} must be a mapping")

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))

    def _apply_defaults(self):
        """Apply default values for optional configuration fields."""
        ldap_defaults = {
            'connection_timeout': 10,
            'receive_timeout': 10,
            'page_size': 1000,
        }
        ldap_config = self.config.setdefault('ldap', {})
        for key, value in ldap_defaults.items():
            ldap_config.setdefault(key, value)

        sync_config = self.config.get('sync') or {}
        self.config['sync'] = sync_config
        for key, value in self.SYNC_DEFAULTS.items():
            sync_config.setdefault(key, copy.deepcopy(value))

        entities = self.config.get('entities') or {}
        self.config['entities'] = {name: (cfg or {}) for name, cfg in entities.items()}

        logging_defaults = {
            'level': 'INFO',
            'log_dir': 'logs',
            'rotation': 'daily',
            'retention_days': 7
        }
        logging_config = self.config.setdefault('logging', {})
        for key, value in logging_defaults.items():
            logging_config.setdefault(key, value)

        error_defaults = {
            'max_retries': 3,
            'retry_wait_seconds': 5,
        }
        error_config = self.config.setdefault('error_handling', {})
        for key, value in error_defaults.items():
            error_config.setdefault(key, value)


class ConfigStore:
    """
    Read-only access to loaded settings.

    Plain keys are looked up in the ``sync`` section; dotted keys such as
    ``ldap.server_url`` walk the whole tree.
    """

    def __init__(self, config: Dict[str, Any]):
        self._config = config

    def get(self, key: str, default: Any = None) -> Any:
        if '.' not in key:
            return (self._config.get('sync') or {}).get(key, default)

        current = self._config
        for part in key.split('.'):
            if not isinstance(current, dict) or part not in current:
                return default
            current = current[part]
        return current

    def entity_config(self, entity_type: str) -> Dict[str, Any]:
        """Serialization config of an entity type, empty when not declared."""
        return (self._config.get('entities') or {}).get(entity_type) or {}

    def as_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self._config)


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Convenience function to load configuration.

    Args:
        config_path: Path to config file

    Returns:
        Loaded configuration dictionary
    """
    loader = ConfigLoader(config_path)
    return loader.load()
