"""
Configuration loading and management for OU Group Sync.

This module handles loading configuration from YAML files and environment variables,
with validation and defaults.
"""

import os
import yaml
import logging
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_LDAP_PORT = 389


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


class ConfigLoader:
    """Handles loading and validation of application configuration."""

    # Environment variable mappings for sensitive fields
    ENV_OVERRIDES = {
        'ldap.bind_password': 'LDAP_BIND_PASSWORD',
        'notifications.smtp_password': 'SMTP_PASSWORD',
    }

    # Flat camelCase keys accepted at the top level of the file
    FLAT_KEYS = {
        'bindUsername': 'bind_dn',
        'bindPassword': 'bind_password',
        'userBaseDN': 'user_base_dn',
        'userBaseOU': 'user_base_ou',
        'groupBaseDN': 'group_base_dn',
        'domainController': 'domain_controller',
    }

    REQUIRED_LDAP_FIELDS = ['bind_dn', 'bind_password', 'user_base_dn', 'user_base_ou', 'group_base_dn']

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

        self._apply_flat_keys()
        self._apply_env_overrides()
        self._resolve_server_url()
        self._validate()
        self._apply_defaults()

        logger.info(f"Configuration loaded successfully from {self.config_path}")
        return self.config

    def _apply_flat_keys(self):
        """Move flat camelCase settings into the ldap section."""
        ldap_config = self.config.get('ldap') or {}
        self.config['ldap'] = ldap_config
        for flat_key, ldap_key in self.FLAT_KEYS.items():
            if flat_key in self.config:
                value = self.config.pop(flat_key)
                ldap_config.setdefault(ldap_key, value)
                logger.debug(f"Mapped top-level {flat_key} to ldap.{ldap_key}")

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
            if not current.get(key):
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value

    def _resolve_server_url(self):
        """Derive server_url from a bare domain controller name."""
        ldap_config = self.config['ldap']
        domain_controller = ldap_config.get('domain_controller')
        if not ldap_config.get('server_url') and domain_controller:
            ldap_config['server_url'] = f"ldap://{domain_controller}:{DEFAULT_LDAP_PORT}"

    def _validate(self):
        """Validate required configuration fields."""
        errors = []

        ldap_config = self.config.get('ldap', {})
        if not ldap_config.get('server_url'):
            errors.append("Missing required LDAP field: server_url (or domain_controller)")
        for field in self.REQUIRED_LDAP_FIELDS:
            if not ldap_config.get(field):
                errors.append(f"Missing required LDAP field: {field}")

        notifications = self.config.get('notifications') or {}
        email_to = notifications.get('email_to')
        if email_to is not None and not isinstance(email_to, (str, list)):
            errors.append("notifications.email_to must be a string or a list")

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))

    def _apply_defaults(self):
        """Apply default values for optional configuration fields."""
        ldap_defaults = {
            'start_tls': False,
            'verify_ssl': True,
            'connection_timeout': 10,
            'receive_timeout': 10
        }
        ldap_config = self.config['ldap']
        for key, value in ldap_defaults.items():
            ldap_config.setdefault(key, value)

        logging_defaults = {
            'level': 'INFO',
            'log_dir': 'logs',
            'rotation': 'daily',
            'retention_days': 7,
            'console_output': True,
            'console_level': 'INFO'
        }
        logging_config = self.config.get('logging') or {}
        self.config['logging'] = logging_config
        for key, value in logging_defaults.items():
            logging_config.setdefault(key, value)

        notification_defaults = {
            'enable_email': False,
            'email_on_failure': True,
            'email_on_success': False,
            'smtp_port': 587,
            'smtp_tls': True
        }
        notification_config = self.config.get('notifications') or {}
        self.config['notifications'] = notification_config
        for key, value in notification_defaults.items():
            notification_config.setdefault(key, value)


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
