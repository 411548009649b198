"""Configuration settings using Pydantic for validation."""

import ipaddress
import logging
import os
import re
from pathlib import Path
from typing import Any, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..codec.touchline import FieldMapping

logger = logging.getLogger(__name__)

HOSTNAME_PATTERN = re.compile(
    r"^([a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?\.)*"
    r"[a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?$"
)
MAX_USER_ID_LENGTH = 12


def validate_host(host: str) -> str:
    if not host or not host.strip():
        raise ValueError("host cannot be empty")
    try:
        ipaddress.ip_address(host)
        return host
    except ValueError:
        pass
    if not HOSTNAME_PATTERN.match(host):
        raise ValueError(f"invalid host format: {host}")
    return host


def validate_port(port: int) -> int:
    if port < 1 or port > 65535:
        raise ValueError(f"port must be between 1 and 65535, got: {port}")
    return port


def validate_user_id(user_id: str) -> str:
    if not user_id or not user_id.strip():
        raise ValueError("userID cannot be empty")
    if len(user_id) > MAX_USER_ID_LENGTH:
        raise ValueError(f"userID is too long (max {MAX_USER_ID_LENGTH} characters)")
    return user_id


class ConnectionConfig(BaseModel):
    """Market feed server connection."""
    host: str = Field(default="localhost", description="Feed server host name or IP")
    port: int = Field(default=4509, description="Feed server port")
    use_ssl: bool = Field(default=False, description="Connect with wss:// instead of ws://")
    user_id: str = Field(default="DEMO_TEST", description="Login user id")
    api_key: str = Field(default="", description="API key; empty for password-less login")
    open_timeout_seconds: float = Field(default=10.0, description="WebSocket handshake timeout")
    ping_interval_seconds: Optional[float] = Field(default=20.0, description="Keepalive ping interval")
    max_message_size: int = Field(default=2**20, description="Largest accepted WebSocket message")

    @field_validator('host')
    @classmethod
    def check_host(cls, v):
        return validate_host(v)

    @field_validator('port')
    @classmethod
    def check_port(cls, v):
        return validate_port(v)

    @field_validator('user_id')
    @classmethod
    def check_user_id(cls, v):
        return validate_user_id(v)


class CodecConfig(BaseModel):
    """Frame codec behaviour."""
    compression: bool = Field(default=True, description="Compression preference reported to the client")
    max_resync_bytes: Optional[int] = Field(
        default=1024 * 1024,
        description="Consecutive skipped bytes tolerated before the stream is declared lost"
    )
    touchline_field_mapping: FieldMapping = Field(
        default=FieldMapping.CORRECTED,
        description="corrected or legacy sell/OHLC token mapping"
    )

    @field_validator('max_resync_bytes')
    @classmethod
    def check_resync_limit(cls, v):
        if v is not None and v <= 0:
            raise ValueError("max_resync_bytes must be positive or null")
        return v


class RetryConfig(BaseModel):
    """Retry configuration for connection attempts."""
    max_attempts: int = Field(default=3, description="Maximum connection attempts")
    initial_backoff_seconds: float = Field(default=1.0, description="Initial backoff delay")
    max_backoff_seconds: float = Field(default=30.0, description="Maximum backoff delay")
    backoff_multiplier: float = Field(default=2.0, description="Backoff multiplier")
    jitter: bool = Field(default=True, description="Add jitter to backoff")


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="text", description="Log format: json or text")
    output: str = Field(default="stdout", description="Log output destination")

    @field_validator('level')
    @classmethod
    def check_level(cls, v):
        if v.upper() not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ValueError(f"Unknown log level: {v}")
        return v.upper()


class SubscriptionConfig(BaseModel):
    """Subscriptions applied by the service after login."""
    touchline: List[str] = Field(default_factory=list, description="MarketSegmentID_Token entries")
    touchline_response_type: str = Field(default="0", description="0 = text, 1 = native binary")
    ltp_change_only: bool = Field(default=False, description="Only push on LTP change")
    ltp_touchline: List[str] = Field(default_factory=list, description="LTP touchline entries")
    best_five: List[str] = Field(default_factory=list, description="Best five entries")

    @field_validator('touchline_response_type')
    @classmethod
    def check_response_type(cls, v):
        if v not in ('0', '1'):
            raise ValueError("touchline_response_type must be '0' or '1'")
        return v


class FeedSettings(BaseSettings):
    """Main market feed client settings."""

    model_config = SettingsConfigDict(
        env_prefix="ODIN_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    service_name: str = Field(default="odin-market-feed", description="Service name")
    environment: str = Field(default="local", description="Environment: local, dev, prod")

    connection: ConnectionConfig = Field(default_factory=ConnectionConfig)
    codec: CodecConfig = Field(default_factory=CodecConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    subscriptions: SubscriptionConfig = Field(default_factory=SubscriptionConfig)

    @field_validator('environment')
    @classmethod
    def validate_environment(cls, v):
        if v not in ['local', 'dev', 'prod']:
            raise ValueError("Environment must be 'local', 'dev', or 'prod'")
        return v


def load_settings(config_file: Optional[str] = None) -> FeedSettings:
    """
    Load settings from a YAML file.

    String values of the form ``${VAR}`` or ``${VAR:default}`` are replaced
    from the environment. A missing file yields the defaults (plus any
    ``ODIN_*`` environment overrides).
    """
    if not config_file or not Path(config_file).exists():
        if config_file:
            logger.warning(f"Config file {config_file} not found, using defaults")
        return FeedSettings()

    with open(config_file, 'r') as f:
        config_data = yaml.safe_load(f) or {}

    config_data = _substitute_env_vars(config_data)
    return FeedSettings(**config_data)


def _substitute_env_vars(data: Any) -> Any:
    """Recursively substitute environment variables in configuration."""
    if isinstance(data, dict):
        return {key: _substitute_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_vars(item) for item in data]
    elif isinstance(data, str) and data.startswith('${') and data.endswith('}'):
        env_spec = data[2:-1]

        if ':' in env_spec:
            env_name, default_value = env_spec.split(':', 1)
        else:
            env_name, default_value = env_spec, None

        return os.getenv(env_name, default_value)
    else:
        return data
