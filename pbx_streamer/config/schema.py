"""
Configuration models for the PBX audio streamer, validated with Pydantic v2.
"""

import os
from typing import Optional

from pydantic import BaseModel, Field
import structlog

from .loaders import resolve_config_path, load_yaml_with_env_expansion
from .security import inject_pbx_credentials
from .defaults import (
    apply_media_defaults,
    apply_event_feed_defaults,
    apply_http_defaults,
    apply_logging_defaults,
)

logger = structlog.get_logger(__name__)

DEFAULT_CONFIG_PATH = "config/pbx-streamer.yaml"


class PBXConfig(BaseModel):
    base_url: str
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    extension: str
    # Optional outbound call placed once the event feed is subscribed
    dial_destination: Optional[str] = None


class MediaConfig(BaseModel):
    audio_path: str
    chunk_size: int = Field(default=8192, gt=0)


class EventFeedConfig(BaseModel):
    reconnect_delay_sec: float = Field(default=5.0, ge=0)
    max_consecutive_failures: Optional[int] = Field(default=None, gt=0)
    subscribe_path: str = Field(default="/callcontrol")


class HTTPConfig(BaseModel):
    request_timeout_sec: float = Field(default=10.0, gt=0)


class LoggingConfig(BaseModel):
    level: str = Field(default="info")  # debug|info|warning|error|critical


class AppConfig(BaseModel):
    pbx: PBXConfig
    media: MediaConfig
    event_feed: EventFeedConfig = Field(default_factory=EventFeedConfig)
    http: HTTPConfig = Field(default_factory=HTTPConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(path: Optional[str] = None) -> AppConfig:
    """
    Load and validate configuration from YAML file.

    Args:
        path: YAML path (absolute or relative to project root). Defaults to
            $PBX_STREAMER_CONFIG, then config/pbx-streamer.yaml.

    Raises:
        FileNotFoundError: If configuration file doesn't exist
        yaml.YAMLError: If YAML parsing fails
        pydantic.ValidationError: If required values are missing
    """
    path = resolve_config_path(path or os.getenv("PBX_STREAMER_CONFIG", DEFAULT_CONFIG_PATH))
    config_data = load_yaml_with_env_expansion(path)
    logger.info("Loaded configuration file", path=path)

    inject_pbx_credentials(config_data)

    apply_media_defaults(config_data)
    apply_event_feed_defaults(config_data)
    apply_http_defaults(config_data)
    apply_logging_defaults(config_data)

    return AppConfig(**config_data)


def validate_production_config(config: AppConfig) -> tuple[list[str], list[str]]:
    """Validate configuration before startup.

    Returns:
        (errors, warnings): errors block startup, warnings are only logged.
    """
    errors = []
    warnings = []

    base_url = config.pbx.base_url or ""
    if not base_url.startswith(("http://", "https://")):
        errors.append(f"pbx.base_url must start with http:// or https:// (got {base_url!r})")
    elif base_url.startswith("http://"):
        warnings.append("pbx.base_url uses plain HTTP; client credentials and bearer tokens are sent unencrypted")

    if not config.pbx.client_id:
        errors.append("PBX_CLIENT_ID is not set")
    if not config.pbx.client_secret:
        errors.append("PBX_CLIENT_SECRET is not set")
    if not config.pbx.extension.strip():
        errors.append("pbx.extension is empty")

    if config.event_feed.reconnect_delay_sec < 1:
        warnings.append(
            f"Reconnect delay very small: {config.event_feed.reconnect_delay_sec}s (may hammer the PBX while it is down)"
        )

    if config.logging.level.lower() == 'debug':
        warnings.append("Debug logging enabled (tracebacks and event payloads are logged)")

    return errors, warnings
