# src/s3_gateway/config/settings.py
import logging
import re
from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# LOG_LEVEL accepts the names operators already use for the Node deployment.
LOG_LEVELS = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
    "critical": logging.CRITICAL,
    "silent": logging.CRITICAL + 10,
}

PRODUCTION_PATTERN = re.compile(r"^prod", re.IGNORECASE)


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""

    def __init__(self, message: str, missing: Optional[list] = None):
        super().__init__(message)
        self.missing = missing or []


class Settings(BaseSettings):
    """
    Single source of truth for the gateway settings.

    Configuration precedence:
    1. Environment variables (highest priority)
    2. .env file (if exists)
    3. Default values in this class (lowest priority)

    ``BUCKET`` and ``PORT`` have no defaults; the process refuses to start
    without them.
    """

    # Required
    bucket: str = Field(
        alias="BUCKET",
        min_length=1,
        description="Name of the S3 bucket exposed by the gateway",
    )

    port: int = Field(
        alias="PORT",
        ge=1,
        le=65535,
        description="TCP port the HTTP listener binds to",
    )

    # Listener
    host: str = Field(
        default="0.0.0.0",
        alias="HOST",
        description="Address the HTTP listener binds to",
    )

    # Deployment mode
    environment: str = Field(
        default="production",
        validation_alias=AliasChoices("NODE_ENV", "DEPLOYMENT_MODE"),
        description="Deployment mode; any value starting with 'prod' disables credential files",
    )

    # Logging
    log_level: str = Field(
        default="info",
        alias="LOG_LEVEL",
        description="One of trace, debug, info, warn, error, fatal, silent",
    )

    # Credentials
    credentials_file: Optional[str] = Field(
        default="./credentials.json",
        alias="CREDENTIALS_FILE",
        description="Output of `aws sts get-session-token`, used outside production only",
    )

    # AWS
    aws_region: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("AWS_REGION", "AWS_DEFAULT_REGION"),
    )

    aws_endpoint_url: Optional[str] = Field(
        default=None,
        alias="AWS_ENDPOINT_URL",
        description="Override for S3-compatible endpoints (MinIO, moto server)",
    )

    # Streaming and shutdown
    stream_chunk_size: int = Field(
        default=64 * 1024,
        alias="STREAM_CHUNK_SIZE",
        gt=0,
        description="Bytes read from the backend per relayed chunk",
    )

    shutdown_timeout: float = Field(
        default=10.0,
        alias="SHUTDOWN_TIMEOUT",
        gt=0,
        description="Seconds to wait for in-flight responses on shutdown",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and validate the log level name."""
        level = (v or "info").strip().lower()
        if level not in LOG_LEVELS:
            raise ValueError(f"Invalid LOG_LEVEL: {v}. Must be one of {sorted(LOG_LEVELS)}")
        return level

    @property
    def is_production(self) -> bool:
        return bool(PRODUCTION_PATTERN.match(self.environment or ""))

    @property
    def logging_level(self) -> int:
        """Numeric level for the standard logging module."""
        return LOG_LEVELS[self.log_level]

    def describe(self) -> dict:
        """Non-secret view of the settings, used by `show-config` and startup logs."""
        return {
            "bucket": self.bucket,
            "host": self.host,
            "port": self.port,
            "environment": self.environment,
            "production": self.is_production,
            "log_level": self.log_level,
            "credentials_file": self.credentials_file,
            "aws_region": self.aws_region,
            "aws_endpoint_url": self.aws_endpoint_url,
            "stream_chunk_size": self.stream_chunk_size,
            "shutdown_timeout": self.shutdown_timeout,
        }

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


def load_settings(**overrides) -> Settings:
    """
    Build a Settings instance, converting validation failures into a
    ConfigurationError that names the offending environment variables.
    """
    try:
        return Settings(**overrides)
    except ValidationError as e:
        missing = [
            str(err["loc"][0]) for err in e.errors() if err.get("type") == "missing" and err.get("loc")
        ]
        if missing:
            message = f"Missing required environment variables: {', '.join(missing)}"
        else:
            invalid = ", ".join(
                f"{err['loc'][0] if err.get('loc') else '?'} ({err['msg']})" for err in e.errors()
            )
            message = f"Invalid configuration: {invalid}"
        raise ConfigurationError(message, missing=missing) from e


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    This ensures we only create one Settings instance per process.
    """
    return load_settings()
