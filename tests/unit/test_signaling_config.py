"""Unit tests for relay and client configuration.

Tests defaults, validation, YAML loading and environment overrides.
"""

from pathlib import Path

import pytest

from src.common.types import MediaKind
from src.mesh.config import ClientConfig, IceServerConfig
from src.signaling.config import HttpConfig, SignalingConfig, WebSocketConfig


def test_websocket_config_defaults() -> None:
    """Test WebSocket configuration defaults."""
    config = WebSocketConfig()
    assert config.host == "0.0.0.0"  # noqa: S104
    assert config.port == 8080
    assert config.max_connections == 500
    assert config.max_message_bytes == 2**20


def test_websocket_config_validation() -> None:
    """Test WebSocket port validation."""
    assert WebSocketConfig(port=9000).port == 9000

    with pytest.raises(ValueError):
        WebSocketConfig(port=80)

    with pytest.raises(ValueError):
        WebSocketConfig(port=70000)


def test_signaling_config_defaults() -> None:
    """Test root relay configuration defaults."""
    config = SignalingConfig()
    assert isinstance(config.http, HttpConfig)
    assert config.http.port == 8081
    assert config.meetings.meetings_file == Path("meetings.json")
    assert config.log_level == "INFO"
    assert config.graceful_shutdown_timeout_s == 10


def test_signaling_log_level_normalized() -> None:
    """Test log level is upper-cased and validated."""
    assert SignalingConfig(log_level="debug").log_level == "DEBUG"

    with pytest.raises(ValueError, match="log_level must be one of"):
        SignalingConfig(log_level="chatty")


def test_signaling_from_yaml(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Test loading relay configuration from YAML."""
    for name in ("SIGNALING_PORT", "HTTP_PORT", "MEETINGS_FILE", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)

    path = tmp_path / "signaling.yaml"
    path.write_text(
        "websocket:\n  port: 9100\nhttp:\n  enabled: false\nmeetings:\n  meetings_file: null\n",
        encoding="utf-8",
    )

    config = SignalingConfig.from_yaml(path)
    assert config.websocket.port == 9100
    assert config.http.enabled is False
    assert config.meetings.meetings_file is None


def test_signaling_env_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Test environment variables override YAML values."""
    path = tmp_path / "signaling.yaml"
    path.write_text("websocket:\n  port: 9100\n", encoding="utf-8")

    monkeypatch.setenv("SIGNALING_PORT", "9200")
    monkeypatch.setenv("HTTP_PORT", "9201")
    monkeypatch.setenv("MEETINGS_FILE", str(tmp_path / "m.json"))
    monkeypatch.setenv("LOG_LEVEL", "warning")

    config = SignalingConfig.from_yaml(path)
    assert config.websocket.port == 9200
    assert config.http.port == 9201
    assert config.meetings.meetings_file == tmp_path / "m.json"
    assert config.log_level == "WARNING"


def test_signaling_from_yaml_missing_file(tmp_path: Path) -> None:
    """Test a missing file raises, while the defaults loader falls back."""
    missing = tmp_path / "missing.yaml"
    with pytest.raises(FileNotFoundError):
        SignalingConfig.from_yaml(missing)

    assert SignalingConfig.from_yaml_with_defaults(missing) == SignalingConfig()
    assert SignalingConfig.from_yaml_with_defaults(None) == SignalingConfig()


def test_client_config_defaults() -> None:
    """Test client configuration defaults."""
    config = ClientConfig()
    assert config.server_url == "ws://localhost:8080"
    assert config.http_url == "http://localhost:8081"
    assert config.display_name == "Metabro"
    assert config.settling_delay_ms == 120
    assert config.settling_delay_s == pytest.approx(0.12)
    assert config.media.microphone is True
    assert config.media.camera is False
    assert config.media.screen_share is False
    assert config.peer_connection.ice_servers[0].urls == ["stun:stun.l.google.com:19302"]


def test_client_config_url_validation() -> None:
    """Test relay and API URL validation."""
    with pytest.raises(ValueError, match="server_url must start with"):
        ClientConfig(server_url="http://localhost:8080")

    with pytest.raises(ValueError, match="http_url must start with"):
        ClientConfig(http_url="ws://localhost:8081")

    assert ClientConfig(http_url="http://example.com/").http_url == "http://example.com"


def test_client_settling_delay_bounds() -> None:
    """Test settling delay bounds."""
    assert ClientConfig(settling_delay_ms=0).settling_delay_ms == 0
    assert ClientConfig(settling_delay_ms=1000).settling_delay_ms == 1000

    with pytest.raises(ValueError):
        ClientConfig(settling_delay_ms=1001)

    with pytest.raises(ValueError):
        ClientConfig(settling_delay_ms=-1)


def test_ice_server_accepts_single_url() -> None:
    """Test a single ICE URL string is coerced to a list."""
    server = IceServerConfig(urls="turn:turn.example.com:3478", username="u", credential="p")
    assert server.urls == ["turn:turn.example.com:3478"]

    with pytest.raises(ValueError, match="ICE server URL must start with"):
        IceServerConfig(urls="http://stun.example.com")


def test_client_from_yaml(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Test loading client configuration with capture sources and env overrides."""
    monkeypatch.delenv("SIGNALING_URL", raising=False)
    monkeypatch.delenv("MEET_HTTP_URL", raising=False)
    monkeypatch.setenv("MESH_DISPLAY_NAME", "Grace")

    path = tmp_path / "client.yaml"
    path.write_text(
        "settling_delay_ms: 80\n"
        "capture:\n"
        "  camera:\n"
        "    file: /dev/video0\n"
        "    format: v4l2\n"
        "    options:\n"
        "      video_size: 640x480\n"
        "media:\n"
        "  camera: true\n",
        encoding="utf-8",
    )

    config = ClientConfig.from_yaml(path)
    assert config.display_name == "Grace"
    assert config.settling_delay_ms == 80
    assert config.media.camera is True

    camera = config.capture.source_for(MediaKind.CAMERA)
    assert camera is not None
    assert camera.format == "v4l2"
    assert camera.options == {"video_size": "640x480"}
    assert config.capture.source_for(MediaKind.MICROPHONE) is None


def test_shipped_config_files_load(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test the sample configuration files validate."""
    for name in (
        "SIGNALING_PORT",
        "HTTP_PORT",
        "MEETINGS_FILE",
        "LOG_LEVEL",
        "SIGNALING_URL",
        "MEET_HTTP_URL",
        "MESH_DISPLAY_NAME",
    ):
        monkeypatch.delenv(name, raising=False)

    configs = Path(__file__).parent.parent.parent / "configs"
    relay = SignalingConfig.from_yaml(configs / "signaling.yaml")
    client = ClientConfig.from_yaml(configs / "client.yaml")

    assert relay.websocket.port == 8080
    assert client.capture.source_for(MediaKind.SCREEN) is not None
