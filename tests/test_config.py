"""
Tests for settings and the command line parser.
"""

import io
import os

import pytest

from mission_relay.__main__ import EventPrinter, build_parser
from mission_relay.config import DEFAULT_PORT, MISSIONS, RelaySettings, ViewerSettings


def test_relay_settings_lay_out_paths_under_base_dir(tmp_path):
    settings = RelaySettings.for_base_dir(str(tmp_path))
    base = os.path.abspath(str(tmp_path))
    assert settings.status_dir == os.path.join(base, "status")
    assert settings.config_file == os.path.join(base, "config.json")
    assert settings.undo_script == os.path.join(base, "output", "documents-report", "undo.sh")
    assert settings.port == DEFAULT_PORT
    assert settings.missions == MISSIONS
    assert settings.replay_on_connect is True


def test_relay_settings_from_env(tmp_path, monkeypatch):
    monkeypatch.setenv("MISSION_RELAY_BASE_DIR", str(tmp_path))
    monkeypatch.setenv("MISSION_RELAY_STATUS_DIR", str(tmp_path / "elsewhere"))
    monkeypatch.setenv("MISSION_RELAY_PORT", "4000")
    monkeypatch.setenv("MISSION_RELAY_WATCH_POLLING", "yes")
    monkeypatch.setenv("MISSION_RELAY_REPLAY_ON_CONNECT", "0")

    settings = RelaySettings.from_env()

    assert settings.base_dir == os.path.abspath(str(tmp_path))
    assert settings.status_dir == os.path.abspath(str(tmp_path / "elsewhere"))
    assert settings.port == 4000
    assert settings.use_polling is True
    assert settings.replay_on_connect is False


def test_explicit_base_dir_wins_over_env(tmp_path, monkeypatch):
    monkeypatch.setenv("MISSION_RELAY_BASE_DIR", "/somewhere/else")
    settings = RelaySettings.from_env(str(tmp_path))
    assert settings.base_dir == os.path.abspath(str(tmp_path))


@pytest.mark.parametrize("server_url,expected", [
    ("http://localhost:3456", "ws://localhost:3456/ws"),
    ("http://localhost:3456/", "ws://localhost:3456/ws"),
    ("https://relay.example.com", "wss://relay.example.com/ws"),
])
def test_viewer_websocket_url(server_url, expected):
    assert ViewerSettings(server_url=server_url).websocket_url == expected


def test_viewer_settings_from_env(monkeypatch):
    monkeypatch.setenv("MISSION_RELAY_SERVER_URL", "http://relay.test:9000")
    monkeypatch.setenv("MISSION_RELAY_STALL_TIMEOUT", "0")
    settings = ViewerSettings.from_env()
    assert settings.websocket_url == "ws://relay.test:9000/ws"
    assert settings.stall_timeout == 0


def test_cli_parses_serve_and_watch():
    parser = build_parser()

    serve = parser.parse_args(["serve", "--base-dir", "/srv/relay", "--port", "4000", "--polling"])
    assert (serve.command, serve.base_dir, serve.port, serve.polling) == ("serve", "/srv/relay", 4000, True)

    watch = parser.parse_args(["-v", "watch", "--launch", "--linkedin-url", "https://linkedin.com/in/x"])
    assert watch.verbose and watch.launch
    assert watch.linkedin_url == "https://linkedin.com/in/x"

    assert parser.parse_args(["serve", "--verbose"]).verbose is True
    assert parser.parse_args(["serve"]).verbose is False


def test_cli_requires_a_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_event_printer_shows_timeline_only_entries():
    out = io.StringIO()
    printer = EventPrinter(out)

    printer("log", "email", "Scanning inbox")
    printer("timeline", "email", "Scanning inbox")
    printer("log", "website", "Live preview available at http://localhost:3000")
    printer("timeline", "website", "Website preview is live")
    printer("timeline", "website", "All agents stopped by user")
    printer("badge", "email", "Complete")

    assert out.getvalue().splitlines() == [
        "[Email] Scanning inbox",
        "[Build] Live preview available at http://localhost:3000",
        "[Build] * Website preview is live",
        "[Build] * All agents stopped by user",
        "[Email] -- Complete --",
    ]
