"""Blocking HTTP client for the generation backend."""

from __future__ import annotations

import json
from typing import Any, Mapping
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

from ..utils import trim_trailing_slash
from .models import GenerateRequest, HealthResponse, HistoryResponse, QueueResponse, QueueStatus

_JSON_HEADERS = {"Content-Type": "application/json", "accept": "application/json"}


class ApiError(RuntimeError):
    """Non-2xx response (``status`` > 0) or an unreachable backend (``status`` == 0)."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status
        self.message = message


class EngineClient:
    def __init__(self, api_base: str, *, timeout_s: float = 30.0) -> None:
        self.api_base = trim_trailing_slash(api_base)
        self.timeout_s = float(timeout_s)

    @property
    def root_base(self) -> str:
        base = self.api_base
        if base.endswith("/api"):
            base = base[: -len("/api")]
        return base

    def health(self) -> HealthResponse:
        payload = _request_json("GET", f"{self.root_base}/health", None, self.timeout_s)
        return HealthResponse.from_payload(payload)

    def status(self) -> dict[str, Any]:
        return self._request("GET", "/status")

    def generate(self, request: GenerateRequest) -> QueueResponse:
        payload = self._request("POST", "/generate", request.to_payload())
        try:
            return QueueResponse.from_payload(payload)
        except ValueError as exc:
            raise ApiError(502, str(exc)) from exc

    def queue(self) -> QueueStatus:
        return QueueStatus.from_payload(self._request("GET", "/queue"))

    def history(self, prompt_id: str) -> HistoryResponse:
        payload = self._request("GET", f"/history/{quote(prompt_id, safe='')}")
        return HistoryResponse.from_payload(payload)

    def interrupt(self) -> dict[str, Any]:
        return self._request("POST", "/interrupt")

    def clear(self) -> dict[str, Any]:
        return self._request("POST", "/clear")

    def test_engine(self, url: str) -> bool:
        payload = self._request("POST", "/test-comfyui", {"url": url})
        return bool(payload.get("success"))

    def image_url(self, filename: str, subfolder: str = "", image_type: str = "output") -> str:
        return (
            f"{self.api_base}/images/{quote(filename, safe='')}"
            f"?subfolder={quote(subfolder, safe='')}&type={quote(image_type, safe='')}"
        )

    def download_image(self, filename: str, subfolder: str = "", image_type: str = "output") -> bytes:
        req = Request(self.image_url(filename, subfolder, image_type), method="GET")
        try:
            with urlopen(req, timeout=self.timeout_s) as response:
                return response.read()
        except HTTPError as exc:
            raise ApiError(exc.code, f"Image download failed: {filename}") from exc
        except URLError as exc:
            raise ApiError(0, f"Image download failed: {exc.reason}") from exc

    def _request(self, method: str, endpoint: str, body: Mapping[str, Any] | None = None) -> dict[str, Any]:
        return _request_json(method, f"{self.api_base}{endpoint}", body, self.timeout_s)


def _request_json(
    method: str, url: str, body: Mapping[str, Any] | None, timeout_s: float
) -> dict[str, Any]:
    data = json.dumps(body).encode("utf-8") if body is not None else None
    req = Request(url, data=data, headers=dict(_JSON_HEADERS), method=method)
    try:
        with urlopen(req, timeout=timeout_s) as response:
            raw = response.read().decode("utf-8")
    except HTTPError as exc:
        raw_error = exc.read().decode("utf-8", errors="replace") if exc.fp else ""
        raise ApiError(exc.code, _error_message(raw_error)) from exc
    except URLError as exc:
        raise ApiError(0, f"Backend unreachable: {exc.reason}") from exc
    if not raw.strip():
        return {}
    try:
        payload = json.loads(raw)
    except ValueError as exc:
        raise ApiError(502, f"Invalid JSON from {url}") from exc
    return payload if isinstance(payload, dict) else {"data": payload}


def _error_message(raw: str) -> str:
    try:
        payload = json.loads(raw)
    except ValueError:
        return "Request failed"
    if isinstance(payload, dict):
        message = payload.get("error")
        if isinstance(message, str) and message:
            return message
    return "Request failed"
