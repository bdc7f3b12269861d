"""
Configuration for the mission relay server and viewer.

Values come from ``MISSION_RELAY_*`` environment variables with defaults
that match a checkout where the relay runs next to its ``status/`` directory
and launch scripts.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

# ============================================================================
# MISSIONS
# ============================================================================

MISSIONS: Tuple[str, ...] = ("website", "email", "documents")

MISSION_LABELS: Dict[str, str] = {
    "website": "Build",
    "email": "Email",
    "documents": "Docs",
}

STATUS_EXTENSION = ".json"

# ============================================================================
# DEFAULTS
# ============================================================================

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3456
DEFAULT_SERVER_URL = f"http://localhost:{DEFAULT_PORT}"
DEFAULT_PREVIEW_URL = "http://localhost:3000"

RECONNECT_INTERVAL = 2.0  # seconds between reconnect attempts
PREVIEW_POLL_INTERVAL = 2.0  # seconds between preview probes
SETTLE_DELAY = 1.5  # pause before switching to the complete stage
STALL_TIMEOUT = 300  # 5 minutes without a status update = stalled
STALL_CHECK_INTERVAL = 30

DEFAULT_STOP_PATTERN = "[c]laude.*dangerously-skip-permissions"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class RelaySettings:
    """Settings for the relay server process."""

    base_dir: str
    status_dir: str
    public_dir: str
    config_file: str
    launch_script: str
    undo_script: str
    sample_docs_script: str
    pid_file: str
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    missions: Tuple[str, ...] = MISSIONS
    status_extension: str = STATUS_EXTENSION
    debounce_ms: int = 0
    use_polling: bool = False
    replay_on_connect: bool = True
    stop_pattern: str = DEFAULT_STOP_PATTERN

    @classmethod
    def for_base_dir(cls, base_dir: str, **overrides) -> "RelaySettings":
        """Build settings with every path laid out under ``base_dir``."""
        base = os.path.abspath(os.path.expanduser(base_dir))
        values = dict(
            base_dir=base,
            status_dir=os.path.join(base, "status"),
            public_dir=os.path.join(base, "public"),
            config_file=os.path.join(base, "config.json"),
            launch_script=os.path.join(base, "launch.sh"),
            undo_script=os.path.join(base, "output", "documents-report", "undo.sh"),
            sample_docs_script=os.path.join(base, "create-test-folder.sh"),
            pid_file=os.path.join(base, ".server.pid"),
        )
        values.update(overrides)
        return cls(**values)

    @classmethod
    def from_env(cls, base_dir: Optional[str] = None) -> "RelaySettings":
        """Read settings from ``MISSION_RELAY_*`` environment variables."""
        base = base_dir or os.getenv("MISSION_RELAY_BASE_DIR", os.getcwd())
        settings = cls.for_base_dir(base)

        path_vars = {
            "status_dir": "MISSION_RELAY_STATUS_DIR",
            "public_dir": "MISSION_RELAY_PUBLIC_DIR",
            "config_file": "MISSION_RELAY_CONFIG_FILE",
            "launch_script": "MISSION_RELAY_LAUNCH_SCRIPT",
            "undo_script": "MISSION_RELAY_UNDO_SCRIPT",
            "sample_docs_script": "MISSION_RELAY_SAMPLE_DOCS_SCRIPT",
            "pid_file": "MISSION_RELAY_PID_FILE",
        }
        for attr, var in path_vars.items():
            value = os.getenv(var)
            if value:
                setattr(settings, attr, os.path.abspath(os.path.expanduser(value)))

        settings.host = os.getenv("MISSION_RELAY_HOST", settings.host)
        settings.port = int(os.getenv("MISSION_RELAY_PORT", str(settings.port)))
        settings.debounce_ms = int(os.getenv("MISSION_RELAY_DEBOUNCE_MS", str(settings.debounce_ms)))
        settings.use_polling = _env_bool("MISSION_RELAY_WATCH_POLLING", settings.use_polling)
        settings.replay_on_connect = _env_bool("MISSION_RELAY_REPLAY_ON_CONNECT", settings.replay_on_connect)
        settings.stop_pattern = os.getenv("MISSION_RELAY_STOP_PATTERN", settings.stop_pattern)
        return settings


@dataclass
class ViewerSettings:
    """Settings for a viewer connected to the relay."""

    server_url: str = DEFAULT_SERVER_URL
    preview_url: str = DEFAULT_PREVIEW_URL
    reconnect_interval: float = RECONNECT_INTERVAL
    preview_interval: float = PREVIEW_POLL_INTERVAL
    settle_delay: float = SETTLE_DELAY
    stall_timeout: float = STALL_TIMEOUT
    stall_check_interval: float = STALL_CHECK_INTERVAL
    missions: Tuple[str, ...] = field(default=MISSIONS)

    @property
    def websocket_url(self) -> str:
        """``/ws`` on the relay, with the scheme switched to ws/wss."""
        url = self.server_url.rstrip("/")
        if url.startswith("https://"):
            url = "wss://" + url[len("https://"):]
        elif url.startswith("http://"):
            url = "ws://" + url[len("http://"):]
        return url + "/ws"

    @classmethod
    def from_env(cls) -> "ViewerSettings":
        return cls(
            server_url=os.getenv("MISSION_RELAY_SERVER_URL", DEFAULT_SERVER_URL),
            preview_url=os.getenv("MISSION_RELAY_PREVIEW_URL", DEFAULT_PREVIEW_URL),
            stall_timeout=float(os.getenv("MISSION_RELAY_STALL_TIMEOUT", str(STALL_TIMEOUT))),
        )
