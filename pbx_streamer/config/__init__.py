"""
Configuration package for the PBX audio streamer.

- loaders: YAML file loading and parsing
- security: OAuth client credential injection (environment only)
- defaults: default values with environment overrides
- schema: Pydantic models, load_config and validate_production_config
"""

from .schema import (
    PBXConfig,
    MediaConfig,
    EventFeedConfig,
    HTTPConfig,
    LoggingConfig,
    AppConfig,
    DEFAULT_CONFIG_PATH,
    load_config,
    validate_production_config,
)

__all__ = [
    'PBXConfig',
    'MediaConfig',
    'EventFeedConfig',
    'HTTPConfig',
    'LoggingConfig',
    'AppConfig',
    'DEFAULT_CONFIG_PATH',
    'load_config',
    'validate_production_config',
]
