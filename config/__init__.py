"""Configuration management for the anonymous voting service."""

from .config import (
    SystemConfig, ZKConfig, LedgerConfig, ApiConfig,
    load_config, save_config, config_from_dict, config_to_dict,
)

__all__ = [
    'SystemConfig', 'ZKConfig', 'LedgerConfig', 'ApiConfig',
    'load_config', 'save_config', 'config_from_dict', 'config_to_dict',
]
