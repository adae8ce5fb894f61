"""Configuration schema for the signaling relay.

Defines Pydantic models for loading and validating relay configuration from
YAML files and environment variables.
"""

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class WebSocketConfig(BaseModel):
    """WebSocket transport configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host address")  # noqa: S104
    port: int = Field(default=8080, ge=1024, le=65535, description="Bind port")
    max_connections: int = Field(
        default=1000, ge=1, description="Maximum concurrent connections"
    )
    max_message_size: int = Field(
        default=2**20, ge=1024, description="Maximum inbound message size in bytes"
    )
    send_queue_size: int = Field(
        default=64, ge=1, description="Undelivered outbound messages allowed per connection"
    )


class TransportConfig(BaseModel):
    """Transport layer configuration."""

    websocket: WebSocketConfig = Field(default_factory=WebSocketConfig)


class HealthConfig(BaseModel):
    """Health check HTTP server configuration."""

    enabled: bool = Field(default=True, description="Serve health and metrics endpoints")
    host: str = Field(default="127.0.0.1", description="Bind host address")
    port: int | None = Field(
        default=None,
        ge=1024,
        le=65535,
        description="Bind port (defaults to WebSocket port + 1)",
    )


class IdentityConfig(BaseModel):
    """Connection identity generation configuration."""

    length: int = Field(
        default=8,
        ge=4,
        le=32,
        description="Number of base-36 characters in generated identities",
    )


class RelayConfig(BaseModel):
    """Root relay configuration."""

    transport: TransportConfig = Field(default_factory=TransportConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
    identity: IdentityConfig = Field(default_factory=IdentityConfig)

    # Operational settings
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    graceful_shutdown_timeout_s: int = Field(
        default=10,
        ge=1,
        description="Graceful shutdown timeout in seconds",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize logging level name."""
        level = v.upper()
        if level not in VALID_LOG_LEVELS:
            raise ValueError(f"log_level must be one of {VALID_LOG_LEVELS}, got '{v}'")
        return level

    @property
    def health_port(self) -> int:
        """Effective health server port."""
        if self.health.port is not None:
            return self.health.port
        return self.transport.websocket.port + 1

    @classmethod
    def from_yaml(cls, path: Path) -> "RelayConfig":
        """Load configuration from YAML file with environment variable overrides.

        Args:
            path: Path to YAML configuration file

        Returns:
            Loaded configuration

        Raises:
            FileNotFoundError: If configuration file doesn't exist
            ValueError: If YAML is invalid or validation fails
        """
        import yaml  # type: ignore[import-untyped]

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Configuration root must be a mapping: {path}")

        return cls.model_validate(apply_env_overrides(data))

    @classmethod
    def from_yaml_with_defaults(cls, path: Path | None = None) -> "RelayConfig":
        """Load configuration from YAML or use defaults if file doesn't exist.

        Environment overrides apply in both cases.

        Args:
            path: Optional path to YAML configuration file

        Returns:
            Loaded configuration or defaults
        """
        if path is not None and path.exists():
            return cls.from_yaml(path)

        return cls.model_validate(apply_env_overrides({}))


def apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Apply RELAY_* environment variables on top of raw config data.

    Supported variables: RELAY_HOST, RELAY_PORT, RELAY_HEALTH_PORT,
    RELAY_LOG_LEVEL.

    Args:
        data: Raw configuration mapping (modified in place)

    Returns:
        The same mapping, for chaining
    """
    if host := os.getenv("RELAY_HOST"):
        websocket = data.setdefault("transport", {}).setdefault("websocket", {})
        websocket["host"] = host

    if port := os.getenv("RELAY_PORT"):
        websocket = data.setdefault("transport", {}).setdefault("websocket", {})
        websocket["port"] = port

    if health_port := os.getenv("RELAY_HEALTH_PORT"):
        data.setdefault("health", {})["port"] = health_port

    if log_level := os.getenv("RELAY_LOG_LEVEL"):
        data["log_level"] = log_level

    return data
