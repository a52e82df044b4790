"""Runtime configuration and persisted client preferences."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import quote, urlparse

from .prompt.structured import DEFAULT_SYSTEM_PROMPT
from .utils import (
    ensure_http_scheme,
    getenv_float,
    getenv_int,
    read_json,
    trim_trailing_slash,
    write_json,
)

DEFAULT_BACKEND_URL = "http://127.0.0.1:3000"
DEFAULT_ENGINE_URL = "http://127.0.0.1:8188"
DEFAULT_RECONNECT_INTERVAL_S = 3.0
DEFAULT_MAX_RECONNECT_ATTEMPTS = 10
DEFAULT_POLL_INTERVAL_S = 1.0
DEFAULT_GENERATION_TIMEOUT_S = 300.0
DEFAULT_REQUEST_TIMEOUT_S = 30.0
PROMPT_MODES = ("normal", "structured")


@dataclass
class StudioConfig:
    api_base: str = f"{DEFAULT_BACKEND_URL}/api"
    ws_url: str = "ws://127.0.0.1:3000/ws"
    reconnect_interval_s: float = DEFAULT_RECONNECT_INTERVAL_S
    max_reconnect_attempts: int = DEFAULT_MAX_RECONNECT_ATTEMPTS
    poll_interval_s: float = DEFAULT_POLL_INTERVAL_S
    generation_timeout_s: float = DEFAULT_GENERATION_TIMEOUT_S
    request_timeout_s: float = DEFAULT_REQUEST_TIMEOUT_S
    preferences_path: Path = field(default_factory=lambda: default_preferences_path())

    @classmethod
    def from_env(cls) -> "StudioConfig":
        return cls(
            api_base=resolve_api_base(),
            ws_url=resolve_ws_url(),
            reconnect_interval_s=getenv_float("COMFY_STUDIO_RECONNECT_INTERVAL", DEFAULT_RECONNECT_INTERVAL_S),
            max_reconnect_attempts=getenv_int("COMFY_STUDIO_MAX_RECONNECT_ATTEMPTS", DEFAULT_MAX_RECONNECT_ATTEMPTS),
            poll_interval_s=getenv_float("COMFY_STUDIO_POLL_INTERVAL", DEFAULT_POLL_INTERVAL_S),
            generation_timeout_s=getenv_float("COMFY_STUDIO_TIMEOUT", DEFAULT_GENERATION_TIMEOUT_S),
            request_timeout_s=getenv_float("COMFY_STUDIO_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT_S),
            preferences_path=default_preferences_path(),
        )


def resolve_api_base() -> str:
    api_base = (os.getenv("COMFY_STUDIO_API_BASE_URL") or "").strip()
    if api_base:
        return trim_trailing_slash(api_base)
    backend = (os.getenv("COMFY_STUDIO_BACKEND_URL") or "").strip()
    if backend:
        return f"{trim_trailing_slash(backend)}/api"
    return f"{DEFAULT_BACKEND_URL}/api"


def resolve_ws_url() -> str:
    ws_url = (os.getenv("COMFY_STUDIO_WS_URL") or "").strip()
    if ws_url:
        return ws_url
    backend = (os.getenv("COMFY_STUDIO_BACKEND_URL") or "").strip() or DEFAULT_BACKEND_URL
    return backend_ws_url(backend)


def backend_ws_url(backend_url: str) -> str:
    parsed = urlparse(ensure_http_scheme(backend_url))
    scheme = "wss" if parsed.scheme == "https" else "ws"
    return f"{scheme}://{parsed.netloc}/ws"


def default_preferences_path() -> Path:
    raw = (os.getenv("COMFY_STUDIO_PREFS") or "").strip()
    if raw:
        return Path(raw).expanduser()
    return Path.home() / ".comfy_studio" / "preferences.json"


def normalize_engine_url(url: str) -> str:
    return trim_trailing_slash(ensure_http_scheme(url))


def engine_view_url(engine_url: str, filename: str, subfolder: str = "", image_type: str = "output") -> str:
    base = normalize_engine_url(engine_url) or DEFAULT_ENGINE_URL
    return (
        f"{base}/view?filename={quote(filename, safe='')}"
        f"&subfolder={quote(subfolder, safe='')}&type={quote(image_type, safe='')}"
    )


class PreferencesStore:
    """Last-used client settings, persisted as a small JSON document."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._data: dict[str, Any] = {}
        self.reload()

    def reload(self) -> None:
        data = read_json(self.path, {})
        self._data = data if isinstance(data, dict) else {}

    @property
    def engine_url(self) -> str:
        raw = str(self._data.get("engine_url") or "").strip() or DEFAULT_ENGINE_URL
        return ensure_http_scheme(raw)

    @engine_url.setter
    def engine_url(self, value: str) -> None:
        self._set("engine_url", trim_trailing_slash(str(value or "").strip()))

    @property
    def prompt_mode(self) -> str:
        mode = str(self._data.get("prompt_mode") or "").strip()
        return mode if mode in PROMPT_MODES else "normal"

    @prompt_mode.setter
    def prompt_mode(self, value: str) -> None:
        if value not in PROMPT_MODES:
            raise ValueError(f"Unknown prompt mode: {value!r}")
        self._set("prompt_mode", value)

    @property
    def system_prompt(self) -> str:
        value = self._data.get("system_prompt")
        return value if isinstance(value, str) and value else DEFAULT_SYSTEM_PROMPT

    @system_prompt.setter
    def system_prompt(self, value: str) -> None:
        self._set("system_prompt", str(value or ""))

    @property
    def caption(self) -> str:
        value = self._data.get("caption")
        return value if isinstance(value, str) else ""

    @caption.setter
    def caption(self, value: str) -> None:
        self._set("caption", str(value or ""))

    def as_dict(self) -> dict[str, str]:
        return {
            "engine_url": self.engine_url,
            "prompt_mode": self.prompt_mode,
            "system_prompt": self.system_prompt,
            "caption": self.caption,
        }

    def _set(self, key: str, value: str) -> None:
        self._data[key] = value
        write_json(self.path, self._data)
