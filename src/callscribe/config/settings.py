"""
Configuration models and loader for callscribe.

Pydantic v2 models give validation and type safety; ``load_config`` runs the
YAML → secrets → defaults → validation phases.
"""

import os
from typing import Optional

import structlog
from pydantic import BaseModel, Field, field_validator

from callscribe.config.defaults import (
    apply_feature_defaults,
    apply_logging_defaults,
    apply_reaper_defaults,
    apply_store_defaults,
    apply_webhook_defaults,
)
from callscribe.config.loaders import load_yaml_with_env_expansion, resolve_config_path
from callscribe.config.security import inject_openai_credentials, inject_webhook_key

logger = structlog.get_logger(__name__)

DEFAULT_CONFIG_PATH = "config/callscribe.yaml"

# Stale-call floor; a misconfigured window can never reap calls younger than this.
MIN_STALE_CALL_MINUTES = 5


class WebhookConfig(BaseModel):
    header_name: str = Field(default="x-webhook-key")
    key: Optional[str] = None
    enforce_key: bool = Field(default=True)
    path: str = Field(default="/api/call-events")

    @property
    def auth_required(self) -> bool:
        return self.enforce_key and bool(self.key)


class FeatureFlagsConfig(BaseModel):
    enable_transcription: bool = Field(default=True)
    enable_summaries: bool = Field(default=True)


class ReaperConfig(BaseModel):
    enabled: bool = Field(default=True)
    stale_call_minutes: int = Field(default=120)
    min_stale_minutes: int = Field(default=MIN_STALE_CALL_MINUTES)
    interval_minutes: int = Field(default=15)

    @field_validator("interval_minutes")
    @classmethod
    def _positive_interval(cls, value: int) -> int:
        if value < 1:
            raise ValueError("interval_minutes must be >= 1")
        return value

    @property
    def effective_stale_minutes(self) -> int:
        return max(self.min_stale_minutes, MIN_STALE_CALL_MINUTES, self.stale_call_minutes)


class StoreConfig(BaseModel):
    backend: str = Field(default="memory")  # memory | sqlite
    db_path: str = Field(default="data/callscribe.db")

    @field_validator("backend")
    @classmethod
    def _known_backend(cls, value: str) -> str:
        value = (value or "").strip().lower()
        if value not in ("memory", "sqlite"):
            raise ValueError(f"Unsupported store backend: {value!r} (expected 'memory' or 'sqlite')")
        return value


class OpenAIConfig(BaseModel):
    api_key: Optional[str] = None
    organization: Optional[str] = None
    base_url: str = Field(default="https://api.openai.com/v1")
    model: str = Field(default="gpt-4o-mini")
    temperature: float = Field(default=0.35)
    max_tokens: int = Field(default=700)
    timeout_sec: float = Field(default=30.0)

    @property
    def configured(self) -> bool:
        return bool(self.api_key) and bool(self.model) and bool(self.base_url)


class LoggingConfig(BaseModel):
    """Top-level logging configuration for the service."""
    level: str = Field(default="info")  # debug|info|warning|error|critical


class AppConfig(BaseModel):
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    features: FeatureFlagsConfig = Field(default_factory=FeatureFlagsConfig)
    reaper: ReaperConfig = Field(default_factory=ReaperConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    openai: OpenAIConfig = Field(default_factory=OpenAIConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(path: str = DEFAULT_CONFIG_PATH) -> AppConfig:
    """
    Load and validate configuration from YAML file.

    A missing file is tolerated only for the default path (the service then
    runs on defaults plus environment overrides).

    Args:
        path: Path to YAML configuration file (absolute or relative to project root)

    Returns:
        Validated AppConfig instance

    Raises:
        FileNotFoundError: If an explicitly requested configuration file doesn't exist
        yaml.YAMLError: If YAML parsing fails
    """
    # Phase 1: Load YAML file with environment variable expansion
    resolved = resolve_config_path(path)
    if path == DEFAULT_CONFIG_PATH and not os.path.exists(resolved):
        logger.info("No configuration file found; using defaults", config_path=resolved)
        config_data = {}
    else:
        config_data = load_yaml_with_env_expansion(resolved)

    # Phase 2: Security - inject secrets from environment variables only
    inject_openai_credentials(config_data)
    inject_webhook_key(config_data)

    # Phase 3: Apply default values / env overrides
    apply_store_defaults(config_data)
    apply_feature_defaults(config_data)
    apply_reaper_defaults(config_data)
    apply_webhook_defaults(config_data)
    apply_logging_defaults(config_data)

    # Phase 4: Validate and return
    return AppConfig(**config_data)


def validate_production_config(config: AppConfig) -> tuple[list[str], list[str]]:
    """Validate configuration for production deployment.

    Returns:
        (errors, warnings): errors block startup, warnings are logged but non-blocking.
    """
    errors = []
    warnings = []

    if config.webhook.enforce_key and not config.webhook.key:
        warnings.append("Webhook key enforcement enabled but CALLSCRIBE_WEBHOOK_KEY is not set; events are accepted unauthenticated")
    if not config.webhook.header_name.strip():
        errors.append("webhook.header_name must not be empty")

    if config.features.enable_summaries and not config.openai.configured:
        warnings.append("OPENAI_API_KEY not configured; call summaries will use the deterministic fallback")

    if config.reaper.stale_call_minutes < MIN_STALE_CALL_MINUTES:
        warnings.append(
            f"reaper.stale_call_minutes={config.reaper.stale_call_minutes} is below the {MIN_STALE_CALL_MINUTES} minute floor; the floor applies"
        )

    if config.store.backend == "memory":
        warnings.append("In-memory store selected; call sessions are lost on restart")

    if config.logging.level.lower() == "debug":
        warnings.append("Debug logging enabled (security/performance risk in production)")

    return errors, warnings
