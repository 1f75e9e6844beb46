from __future__ import annotations

import importlib

import pytest

from users_client import settings as settings_mod


def test_invalid_env_does_not_crash(monkeypatch):
    monkeypatch.setenv("USERS_API_TIMEOUT_S", "not-a-number")
    monkeypatch.setenv("LOAD_RETRY_MAX", "nope")
    monkeypatch.setenv("UNDO_WINDOW_S", "bad")
    monkeypatch.setenv("WS_RECONNECT_BACKOFF_S", "invalid")
    monkeypatch.setenv("DEFAULT_PAGE_SIZE", "eight")
    monkeypatch.setenv("USERS_PUSH_PORT", "relay")

    mod = importlib.reload(settings_mod)

    assert mod.USERS_API_TIMEOUT_S == 10.0
    assert mod.LOAD_RETRY_MAX == 3
    assert mod.UNDO_WINDOW_S == 4.0
    assert mod.WS_RECONNECT_BACKOFF_S == 1.0
    assert mod.DEFAULT_PAGE_SIZE == 8
    assert mod.USERS_PUSH_PORT == 5001


def test_ws_url_targets_push_relay_port():
    assert settings_mod.ws_url_for("http://localhost:5000/") == "ws://localhost:5001/ws"
    assert settings_mod.ws_url_for("https://admin.example.com/", push_port=8443) == "wss://admin.example.com:8443/ws"
    assert settings_mod.ws_url_for("http://[::1]:5000", push_port=7000) == "ws://[::1]:7000/ws"

    s = settings_mod.ClientSettings(api_base="http://h:1", ws_url="", push_port=5001)
    assert s.resolved_ws_url() == "ws://h:5001/ws"
    s.push_port = 6001
    assert s.resolved_ws_url() == "ws://h:6001/ws"
    s.ws_url = "ws://h:5001/ws"
    assert s.resolved_ws_url() == "ws://h:5001/ws"
    s.live_updates = False
    assert s.resolved_ws_url() is None


def test_load_settings_from_yaml(tmp_path):
    cfg = tmp_path / "admin.yaml"
    cfg.write_text(
        "api_base: http://api.internal:8080\n"
        "api_timeout_s: 2\n"
        "page_size: '20'\n"
        "live_updates: 'no'\n"
        "undo_window_s: 6.5\n",
        encoding="utf-8",
    )
    s = settings_mod.load_settings(cfg)
    assert s.api_base == "http://api.internal:8080"
    assert s.api_timeout_s == 2.0
    assert s.page_size == 20
    assert s.live_updates is False
    assert s.undo_window_s == 6.5


def test_load_settings_without_path_uses_defaults():
    assert settings_mod.load_settings(None) == settings_mod.ClientSettings()


def test_load_settings_rejects_unknown_keys(tmp_path):
    cfg = tmp_path / "admin.yaml"
    cfg.write_text("api_base: http://x\ncolour: blue\n", encoding="utf-8")
    with pytest.raises(ValueError, match="colour"):
        settings_mod.load_settings(cfg)


def test_load_settings_rejects_non_mapping(tmp_path):
    cfg = tmp_path / "admin.yaml"
    cfg.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ValueError):
        settings_mod.load_settings(cfg)


def test_empty_yaml_is_defaults(tmp_path):
    cfg = tmp_path / "admin.yaml"
    cfg.write_text("", encoding="utf-8")
    assert settings_mod.load_settings(cfg) == settings_mod.ClientSettings()
