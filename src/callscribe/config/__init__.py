"""
Configuration package for callscribe.

- loaders: YAML file loading and path resolution
- security: secret injection from the environment
- defaults: environment overrides
- settings: pydantic models, load_config, validate_production_config
"""

from callscribe.config.settings import (
    DEFAULT_CONFIG_PATH,
    MIN_STALE_CALL_MINUTES,
    AppConfig,
    FeatureFlagsConfig,
    LoggingConfig,
    OpenAIConfig,
    ReaperConfig,
    StoreConfig,
    WebhookConfig,
    load_config,
    validate_production_config,
)

__all__ = [
    'DEFAULT_CONFIG_PATH',
    'MIN_STALE_CALL_MINUTES',
    'AppConfig',
    'FeatureFlagsConfig',
    'LoggingConfig',
    'OpenAIConfig',
    'ReaperConfig',
    'StoreConfig',
    'WebhookConfig',
    'load_config',
    'validate_production_config',
]
