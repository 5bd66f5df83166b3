#!/usr/bin/env python3
"""
Configuration - YAML settings and logging setup for the supervisor.
"""

import os
import sys
import copy
import logging
from typing import Dict, Any, Optional

import yaml

from ..errors import ConfigError
from ..security.masker import LogMasker, SecretMaskingFilter


DEFAULT_CONFIG_PATH = os.path.join("~", ".config", "mailops-supervisor", "config.yaml")

FORBIDDEN_KEYS = {'token', 'api_token', 'cf_api_token'}


def get_default_config() -> Dict[str, Any]:
    """Return default configuration."""
    return {
        'service': {
            'executable': 'mailops-service',
            'base_dir': None,
            'http_addr': '127.0.0.1:8080',
            'grace_period': 5,
            'token_env_var': 'CF_API_TOKEN',
            'addr_env_var': 'MAILOPS_HTTP_ADDR',
            'addr_flag': '--http-addr',
            'require_credential': True
        },
        'api': {
            'request_timeout': 30,
            'ready_timeout_ms': 10000,
            'poll_interval_ms': 500
        },
        'workflow': {
            'profile': 'cloudflare',
            'config_file': ''
        },
        'logging': {
            'log_level': 'INFO',
            'log_file': None
        }
    }


def merge_config(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep-merge override into a copy of base."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = value
    return merged


def _find_forbidden_keys(data: Any, prefix: str = "") -> list:
    found = []
    if isinstance(data, dict):
        for key, value in data.items():
            path = f"{prefix}.{key}" if prefix else str(key)
            if str(key).lower() in FORBIDDEN_KEYS:
                found.append(path)
            found.extend(_find_forbidden_keys(value, path))
    return found


def load_config(config_path: Optional[str] = None, create_missing: bool = True) -> Dict[str, Any]:
    """Load configuration from a YAML file, falling back to defaults."""
    path = os.path.expanduser(config_path or DEFAULT_CONFIG_PATH)
    defaults = get_default_config()

    try:
        with open(path, 'r') as f:
            user_config = yaml.safe_load(f) or {}
    except FileNotFoundError:
        if create_missing:
            _create_default_config_file(path, defaults)
        return defaults
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing configuration file: {e}")

    if not isinstance(user_config, dict):
        raise ConfigError(f"Configuration file must contain a mapping: {path}")

    forbidden = _find_forbidden_keys(user_config)
    if forbidden:
        raise ConfigError(f"API tokens must not be stored in configuration ({', '.join(forbidden)})")

    return merge_config(defaults, user_config)


def _create_default_config_file(path: str, config: Dict[str, Any]) -> None:
    """Create default configuration file."""
    logger = logging.getLogger(__name__)
    try:
        config_dir = os.path.dirname(path)
        if config_dir:
            os.makedirs(config_dir, exist_ok=True)
        with open(path, 'w') as f:
            yaml.dump(config, f, default_flow_style=False, indent=2)
    except OSError as e:
        logger.warning(f"Could not write default configuration to {path}: {e}")


def setup_logging(config: Dict[str, Any], masker: Optional[LogMasker] = None,
                  verbose: bool = False) -> logging.Logger:
    """Setup logging with secret masking on every handler."""
    log_config = config.get('logging', {})
    level_name = 'DEBUG' if verbose else str(log_config.get('log_level', 'INFO')).upper()
    log_level = getattr(logging, level_name, logging.INFO)
    log_file = log_config.get('log_file')

    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        log_file = os.path.expanduser(log_file)
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    masking_filter = SecretMaskingFilter(masker or LogMasker())
    for handler in handlers:
        handler.addFilter(masking_filter)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True
    )

    return logging.getLogger("mailops_supervisor")
