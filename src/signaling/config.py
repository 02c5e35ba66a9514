"""Configuration schema for the signal relay server.

Defines Pydantic models for loading and validating relay configuration
from YAML files and environment variables.
"""

from pathlib import Path

from pydantic import BaseModel, Field, field_validator


class WebSocketConfig(BaseModel):
    """Signaling WebSocket endpoint configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host address")  # noqa: S104
    port: int = Field(default=8080, ge=1024, le=65535, description="Bind port")
    max_connections: int = Field(
        default=500, ge=1, description="Maximum concurrent signaling connections"
    )
    max_message_bytes: int = Field(
        default=2**20, ge=1024, description="Maximum size of one signaling frame"
    )


class HttpConfig(BaseModel):
    """HTTP API (meeting tokens, health) configuration."""

    enabled: bool = Field(default=True, description="Serve the HTTP API")
    host: str = Field(default="0.0.0.0", description="Bind host address")  # noqa: S104
    port: int = Field(default=8081, ge=1024, le=65535, description="Bind port")


class MeetingStoreConfig(BaseModel):
    """Meeting token record store configuration."""

    meetings_file: Path | None = Field(
        default=Path("meetings.json"),
        description="JSON file holding token → lastAccess records (None keeps them in memory)",
    )


class SignalingConfig(BaseModel):
    """Root relay server configuration."""

    websocket: WebSocketConfig = Field(default_factory=WebSocketConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    meetings: MeetingStoreConfig = Field(default_factory=MeetingStoreConfig)

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
        """Validate and normalize the logging level name."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}, got '{v}'")
        return v.upper()

    @classmethod
    def from_yaml(cls, path: Path) -> "SignalingConfig":
        """Load configuration from YAML file with environment variable overrides.

        Args:
            path: Path to YAML configuration file

        Returns:
            Loaded configuration

        Raises:
            FileNotFoundError: If configuration file doesn't exist
            ValueError: If YAML is invalid or validation fails
        """
        import os

        import yaml  # type: ignore[import-untyped]

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        # Apply environment variable overrides
        if signaling_port := os.getenv("SIGNALING_PORT"):
            data.setdefault("websocket", {})["port"] = int(signaling_port)

        if http_port := os.getenv("HTTP_PORT"):
            data.setdefault("http", {})["port"] = int(http_port)

        if meetings_file := os.getenv("MEETINGS_FILE"):
            data.setdefault("meetings", {})["meetings_file"] = meetings_file

        if log_level := os.getenv("LOG_LEVEL"):
            data["log_level"] = log_level

        return cls.model_validate(data)

    @classmethod
    def from_yaml_with_defaults(cls, path: Path | None = None) -> "SignalingConfig":
        """Load configuration from YAML or use defaults if file doesn't exist.

        Args:
            path: Optional path to YAML configuration file

        Returns:
            Loaded configuration or defaults
        """
        if path is not None and path.exists():
            return cls.from_yaml(path)

        # Return defaults
        return cls()
