from __future__ import annotations

import json
from pathlib import Path

import pytest

from comfy_studio.config import (
    DEFAULT_ENGINE_URL,
    PreferencesStore,
    StudioConfig,
    backend_ws_url,
    engine_view_url,
)
from comfy_studio.prompt.structured import DEFAULT_SYSTEM_PROMPT

_ENV_KEYS = (
    "COMFY_STUDIO_API_BASE_URL",
    "COMFY_STUDIO_BACKEND_URL",
    "COMFY_STUDIO_WS_URL",
    "COMFY_STUDIO_RECONNECT_INTERVAL",
    "COMFY_STUDIO_MAX_RECONNECT_ATTEMPTS",
    "COMFY_STUDIO_POLL_INTERVAL",
    "COMFY_STUDIO_TIMEOUT",
    "COMFY_STUDIO_REQUEST_TIMEOUT",
    "COMFY_STUDIO_PREFS",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_defaults() -> None:
    config = StudioConfig.from_env()
    assert config.api_base == "http://127.0.0.1:3000/api"
    assert config.ws_url == "ws://127.0.0.1:3000/ws"
    assert config.reconnect_interval_s == 3.0
    assert config.max_reconnect_attempts == 10
    assert config.poll_interval_s == 1.0
    assert config.generation_timeout_s == 300.0


def test_backend_url_drives_api_and_ws(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("COMFY_STUDIO_BACKEND_URL", "https://studio.example.com/")
    monkeypatch.setenv("COMFY_STUDIO_TIMEOUT", "12.5")
    monkeypatch.setenv("COMFY_STUDIO_MAX_RECONNECT_ATTEMPTS", "not-a-number")
    config = StudioConfig.from_env()
    assert config.api_base == "https://studio.example.com/api"
    assert config.ws_url == "wss://studio.example.com/ws"
    assert config.generation_timeout_s == 12.5
    assert config.max_reconnect_attempts == 10


def test_explicit_urls_win(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("COMFY_STUDIO_BACKEND_URL", "http://ignored:1")
    monkeypatch.setenv("COMFY_STUDIO_API_BASE_URL", "http://api:9/api/")
    monkeypatch.setenv("COMFY_STUDIO_WS_URL", "ws://events:9/ws")
    monkeypatch.setenv("COMFY_STUDIO_PREFS", str(tmp_path / "prefs.json"))
    config = StudioConfig.from_env()
    assert config.api_base == "http://api:9/api"
    assert config.ws_url == "ws://events:9/ws"
    assert config.preferences_path == tmp_path / "prefs.json"


def test_backend_ws_url_adds_scheme() -> None:
    assert backend_ws_url("localhost:3000") == "ws://localhost:3000/ws"


def test_engine_view_url_encodes_parts() -> None:
    url = engine_view_url("127.0.0.1:8188/", "my image.png", "a/b", "output")
    assert url == "http://127.0.0.1:8188/view?filename=my%20image.png&subfolder=a%2Fb&type=output"


def test_preferences_defaults(tmp_path: Path) -> None:
    prefs = PreferencesStore(tmp_path / "prefs.json")
    assert prefs.engine_url == DEFAULT_ENGINE_URL
    assert prefs.prompt_mode == "normal"
    assert prefs.system_prompt == DEFAULT_SYSTEM_PROMPT
    assert prefs.caption == ""


def test_preferences_persist_and_normalize(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "prefs.json"
    prefs = PreferencesStore(path)
    prefs.engine_url = "gpu-box:8188///"
    prefs.prompt_mode = "structured"
    prefs.caption = "sunset"
    assert json.loads(path.read_text(encoding="utf-8"))["engine_url"] == "gpu-box:8188"

    reloaded = PreferencesStore(path)
    assert reloaded.engine_url == "http://gpu-box:8188"
    assert reloaded.prompt_mode == "structured"
    assert reloaded.caption == "sunset"


def test_preferences_reject_unknown_mode(tmp_path: Path) -> None:
    prefs = PreferencesStore(tmp_path / "prefs.json")
    with pytest.raises(ValueError):
        prefs.prompt_mode = "freestyle"


def test_corrupt_preferences_fall_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "prefs.json"
    path.write_text("{not json", encoding="utf-8")
    assert PreferencesStore(path).prompt_mode == "normal"
