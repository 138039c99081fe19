"""Centralized webhook settings using pydantic-settings.

This module provides a single source of truth for all webhook configuration
loaded from environment variables. Uses pydantic for automatic validation,
type coercion, and documentation.
"""

import logging
from typing import Any

from pydantic import (
    Field,
    ValidationError,
    ValidationInfo,
    ValidatorFunctionWrapHandler,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# client-go defaults
DEFAULT_QPS = 5.0
DEFAULT_BURST = 10


class Settings(BaseSettings):
    """Webhook configuration loaded from environment variables.

    All settings have sensible defaults for production use, except for the
    TLS certificate and key paths which must be provided.
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # TLS serving
    tls_crt: str = Field(
        default="",
        validation_alias="TLS_CRT",
        description="Path to the PEM-encoded serving certificate",
    )
    tls_key: str = Field(
        default="",
        validation_alias="TLS_KEY",
        description="Path to the PEM-encoded serving private key",
    )
    https_port: int = Field(
        default=443,
        validation_alias="HTTPS_PORT",
        description="Port for the admission webhook server",
    )
    https_host: str = Field(
        default="0.0.0.0",
        validation_alias="HTTPS_HOST",
        description="Host address to bind the admission webhook server",
    )
    cert_reload: bool = Field(
        default=False,
        validation_alias="CERT_RELOAD",
        description="Watch the certificate files and reload them on change",
    )

    # Mutation behavior
    random_hostname: bool = Field(
        default=False,
        validation_alias="RANDOM_HOSTNAME",
        description="Assign a random hostname to pods that get a GMSA cred spec inlined",
    )

    # Kubernetes API client throttling
    qps: float = Field(
        default=DEFAULT_QPS,
        gt=0,
        validation_alias="QPS",
        description="Sustained Kubernetes API requests per second",
    )
    burst: int = Field(
        default=DEFAULT_BURST,
        ge=1,
        validation_alias="BURST",
        description="Kubernetes API requests allowed in a burst above QPS",
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=True,
        validation_alias="JSON_LOGS",
        description="Enable JSON formatted logging for structured log aggregation",
    )
    correlation_ids: bool = Field(
        default=True,
        validation_alias="CORRELATION_IDS",
        description="Enable correlation IDs in logs for request tracing",
    )
    log_health_probes: bool = Field(
        default=False,
        validation_alias="LOG_HEALTH_PROBES",
        description="Log health probe requests",
    )

    # Metrics and observability
    enable_metrics: bool = Field(
        default=True,
        validation_alias="ENABLE_METRICS",
        description="Serve Prometheus metrics on a separate plain HTTP port",
    )
    metrics_port: int = Field(
        default=8081,
        validation_alias="METRICS_PORT",
        description="Port for Prometheus metrics endpoint",
    )
    metrics_host: str = Field(
        default="0.0.0.0",
        validation_alias="METRICS_HOST",
        description="Host address to bind metrics server",
    )

    @field_validator("qps", "burst", mode="wrap")
    @classmethod
    def default_on_parse_failure(
        cls, value: Any, handler: ValidatorFunctionWrapHandler, info: ValidationInfo
    ) -> Any:
        """Fall back to the default for throttling values that don't parse."""
        try:
            return handler(value)
        except ValidationError:
            default = cls.model_fields[info.field_name].default
            logger.warning(
                f"unable to parse environment variable {info.field_name.upper()} "
                f"with value {value!r}; using default value {default}"
            )
            return default

    @property
    def effective_log_level(self) -> str:
        """Log level to apply, falling back to INFO for unknown values."""
        level = self.log_level.upper()
        if level in VALID_LOG_LEVELS:
            return level
        return "INFO"


# Global settings instance - initialized once at module import
settings = Settings()
