from __future__ import annotations

import io
import json
from typing import Any
from urllib.error import HTTPError, URLError

import pytest

from comfy_studio.api import client as client_module
from comfy_studio.api.client import ApiError, EngineClient
from comfy_studio.api.models import GenerateRequest, ImageResult


class FakeResponse:
    def __init__(self, body: bytes) -> None:
        self._body = body

    def read(self) -> bytes:
        return self._body

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        return None


class FakeUrlopen:
    def __init__(self, responses: list[object]) -> None:
        self.responses = list(responses)
        self.requests: list[Any] = []

    def __call__(self, req: Any, timeout: float | None = None) -> FakeResponse:
        self.requests.append(req)
        outcome = self.responses.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, bytes):
            return FakeResponse(outcome)
        return FakeResponse(json.dumps(outcome).encode("utf-8"))


def _install(monkeypatch: pytest.MonkeyPatch, responses: list[object]) -> FakeUrlopen:
    fake = FakeUrlopen(responses)
    monkeypatch.setattr(client_module, "urlopen", fake)
    return fake


def test_generate_posts_full_payload(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _install(monkeypatch, [{"prompt_id": "job-1", "number": 3}])
    client = EngineClient("http://backend:3000/api/")
    response = client.generate(GenerateRequest(prompt="a cat", seed=42))
    assert response.prompt_id == "job-1"
    assert response.number == 3
    req = fake.requests[0]
    assert req.full_url == "http://backend:3000/api/generate"
    assert req.get_method() == "POST"
    body = json.loads(req.data.decode("utf-8"))
    assert body == {
        "prompt": "a cat",
        "negative_prompt": "low quality, blurry, distorted, deformed, ugly, bad anatomy",
        "width": 1024,
        "height": 1536,
        "steps": 28,
        "cfg": 4.5,
        "seed": 42,
        "sampler_name": "res_multistep",
        "scheduler": "linear_quadratic",
    }


def test_generate_without_prompt_id_is_an_api_error(monkeypatch: pytest.MonkeyPatch) -> None:
    _install(monkeypatch, [{"number": 1}])
    with pytest.raises(ApiError) as excinfo:
        EngineClient("http://backend/api").generate(GenerateRequest(prompt="x"))
    assert excinfo.value.status == 502


def test_history_parses_images_and_quotes_id(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _install(
        monkeypatch,
        [
            {
                "prompt_id": "job/1",
                "status": "success",
                "completed": True,
                "images": [{"filename": "out.png", "subfolder": "", "type": "output"}],
            }
        ],
    )
    history = EngineClient("http://backend/api").history("job/1")
    assert fake.requests[0].full_url == "http://backend/api/history/job%2F1"
    assert history.completed
    assert not history.failed
    assert history.images == (ImageResult("out.png"),)


def test_health_uses_backend_root(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _install(monkeypatch, [{"status": "ok", "comfyui": True}])
    health = EngineClient("http://backend:3000/api").health()
    assert fake.requests[0].full_url == "http://backend:3000/health"
    assert health.status == "ok"
    assert health.engine is True


def test_http_error_carries_backend_message(monkeypatch: pytest.MonkeyPatch) -> None:
    error = HTTPError(
        "http://backend/api/generate",
        400,
        "Bad Request",
        hdrs=None,  # type: ignore[arg-type]
        fp=io.BytesIO(b'{"error": "Prompt is required", "status": 400}'),
    )
    _install(monkeypatch, [error])
    with pytest.raises(ApiError) as excinfo:
        EngineClient("http://backend/api").interrupt()
    assert excinfo.value.status == 400
    assert excinfo.value.message == "Prompt is required"


def test_http_error_without_json_body(monkeypatch: pytest.MonkeyPatch) -> None:
    error = HTTPError("http://backend/api/clear", 500, "oops", hdrs=None, fp=io.BytesIO(b"<html>"))  # type: ignore[arg-type]
    _install(monkeypatch, [error])
    with pytest.raises(ApiError, match="Request failed"):
        EngineClient("http://backend/api").clear()


def test_unreachable_backend_has_status_zero(monkeypatch: pytest.MonkeyPatch) -> None:
    _install(monkeypatch, [URLError("connection refused")])
    with pytest.raises(ApiError) as excinfo:
        EngineClient("http://backend/api").status()
    assert excinfo.value.status == 0


def test_test_engine_and_queue(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _install(
        monkeypatch,
        [{"success": True}, {"running": 1, "pending": 2, "running_prompts": [["a"]], "pending_prompts": []}],
    )
    client = EngineClient("http://backend/api")
    assert client.test_engine("http://127.0.0.1:8188") is True
    assert json.loads(fake.requests[0].data.decode("utf-8")) == {"url": "http://127.0.0.1:8188"}
    queue = client.queue()
    assert (queue.running, queue.pending) == (1, 2)


def test_download_image(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _install(monkeypatch, [b"\x89PNG"])
    data = EngineClient("http://backend/api").download_image("a b.png", "sub", "temp")
    assert data == b"\x89PNG"
    assert fake.requests[0].full_url == "http://backend/api/images/a%20b.png?subfolder=sub&type=temp"
