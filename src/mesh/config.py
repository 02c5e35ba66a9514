"""Configuration schema for the mesh client.

Defines Pydantic models for loading and validating client configuration
from YAML files and environment variables.
"""

from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from src.common.types import MediaKind


class IceServerConfig(BaseModel):
    """One STUN/TURN server handed to the transport-session library."""

    urls: list[str] = Field(..., min_length=1, description="STUN/TURN URLs")
    username: str | None = Field(default=None, description="TURN username")
    credential: str | None = Field(default=None, description="TURN credential")

    @field_validator("urls", mode="before")
    @classmethod
    def coerce_single_url(cls, v: str | list[str]) -> list[str]:
        """Accept a single URL string as well as a list."""
        if isinstance(v, str):
            return [v]
        return v

    @field_validator("urls")
    @classmethod
    def validate_scheme(cls, v: list[str]) -> list[str]:
        """Validate that every URL is a STUN or TURN URL."""
        valid_schemes = ("stun:", "stuns:", "turn:", "turns:")
        for url in v:
            if not url.startswith(valid_schemes):
                raise ValueError(f"ICE server URL must start with one of {valid_schemes}, got '{url}'")
        return v


class PeerConnectionConfig(BaseModel):
    """Configuration passed to every transport session."""

    ice_servers: list[IceServerConfig] = Field(
        default_factory=lambda: [IceServerConfig(urls=["stun:stun.l.google.com:19302"])],
        description="ICE servers used for every peer session",
    )


class CaptureSourceConfig(BaseModel):
    """One capture source, opened with aiortc's MediaPlayer.

    Example usage:
        ```yaml
        capture:
          microphone:
            file: "default"
            format: "pulse"
          camera:
            file: "/dev/video0"
            format: "v4l2"
            options:
              video_size: "480x360"
        ```
    """

    file: str = Field(..., min_length=1, description="Device name, file path or URL")
    format: str | None = Field(default=None, description="FFmpeg input format (v4l2, pulse, x11grab...)")
    options: dict[str, str] = Field(default_factory=dict, description="FFmpeg input options")


class CaptureConfig(BaseModel):
    """Capture sources per media kind (None means the kind is unavailable)."""

    microphone: CaptureSourceConfig | None = None
    camera: CaptureSourceConfig | None = None
    screen: CaptureSourceConfig | None = None

    def source_for(self, kind: MediaKind) -> CaptureSourceConfig | None:
        """Return the configured source for a media kind."""
        if kind is MediaKind.MICROPHONE:
            return self.microphone
        if kind is MediaKind.CAMERA:
            return self.camera
        return self.screen


class MediaDefaults(BaseModel):
    """Initial local media composition (microphone on, camera and screen off)."""

    microphone: bool = True
    camera: bool = False
    screen_share: bool = False


class ClientConfig(BaseModel):
    """Root mesh client configuration."""

    server_url: str = Field(
        default="ws://localhost:8080",
        description="Signal relay WebSocket URL",
    )
    http_url: str = Field(
        default="http://localhost:8081",
        description="Meeting API base URL",
    )
    display_name: str = Field(default="Metabro", min_length=1, description="Name shown to peers")
    settling_delay_ms: int = Field(
        default=120,
        ge=0,
        le=1000,
        description=(
            "Wait between tearing sessions down and re-initiating them after a local media "
            "change; should exceed the one-way signaling latency (best-effort)"
        ),
    )
    peer_connection: PeerConnectionConfig = Field(default_factory=PeerConnectionConfig)
    capture: CaptureConfig = Field(default_factory=CaptureConfig)
    media: MediaDefaults = Field(default_factory=MediaDefaults)

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )

    @field_validator("server_url")
    @classmethod
    def validate_server_url(cls, v: str) -> str:
        """Validate that the relay URL is a WebSocket URL."""
        if not v.startswith(("ws://", "wss://")):
            raise ValueError(f"server_url must start with ws:// or wss://, got '{v}'")
        return v

    @field_validator("http_url")
    @classmethod
    def validate_http_url(cls, v: str) -> str:
        """Validate that the meeting API URL is an HTTP URL."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"http_url must start with http:// or https://, got '{v}'")
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize the logging level name."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}, got '{v}'")
        return v.upper()

    @property
    def settling_delay_s(self) -> float:
        """Settling delay in seconds."""
        return self.settling_delay_ms / 1000.0

    @classmethod
    def from_yaml(cls, path: Path) -> "ClientConfig":
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
        if server_url := os.getenv("SIGNALING_URL"):
            data["server_url"] = server_url

        if http_url := os.getenv("MEET_HTTP_URL"):
            data["http_url"] = http_url

        if display_name := os.getenv("MESH_DISPLAY_NAME"):
            data["display_name"] = display_name

        return cls.model_validate(data)

    @classmethod
    def from_yaml_with_defaults(cls, path: Path | None = None) -> "ClientConfig":
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
