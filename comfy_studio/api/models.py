"""Request and response records for the backend HTTP surface."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from ..prompt.structured import DEFAULT_NEGATIVE_PROMPT


@dataclass
class GenerateRequest:
    prompt: str
    negative_prompt: str = DEFAULT_NEGATIVE_PROMPT
    width: int = 1024
    height: int = 1536
    steps: int = 28
    cfg: float = 4.5
    seed: int = -1
    sampler_name: str = "res_multistep"
    scheduler: str = "linear_quadratic"

    def to_payload(self) -> dict[str, Any]:
        return {
            "prompt": self.prompt,
            "negative_prompt": self.negative_prompt,
            "width": int(self.width),
            "height": int(self.height),
            "steps": int(self.steps),
            "cfg": float(self.cfg),
            "seed": int(self.seed),
            "sampler_name": self.sampler_name,
            "scheduler": self.scheduler,
        }


@dataclass(frozen=True)
class ImageResult:
    filename: str
    subfolder: str = ""
    type: str = "output"

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ImageResult":
        filename = payload.get("filename")
        if not isinstance(filename, str) or not filename:
            raise ValueError(f"Image entry missing filename: {dict(payload)}")
        return cls(
            filename=filename,
            subfolder=str(payload.get("subfolder") or ""),
            type=str(payload.get("type") or "output"),
        )


def parse_images(raw: Any) -> tuple[ImageResult, ...]:
    if not isinstance(raw, list):
        return ()
    return tuple(ImageResult.from_payload(item) for item in raw if isinstance(item, Mapping))


@dataclass
class QueueResponse:
    prompt_id: str
    number: int = 0

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "QueueResponse":
        prompt_id = payload.get("prompt_id")
        if not isinstance(prompt_id, str) or not prompt_id:
            raise ValueError(f"Submit response missing prompt_id: {dict(payload)}")
        return cls(prompt_id=prompt_id, number=int(payload.get("number") or 0))


@dataclass
class HistoryResponse:
    prompt_id: str
    status: str = "unknown"
    completed: bool = False
    images: tuple[ImageResult, ...] = ()

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "HistoryResponse":
        return cls(
            prompt_id=str(payload.get("prompt_id") or ""),
            status=str(payload.get("status") or "unknown"),
            completed=bool(payload.get("completed")),
            images=parse_images(payload.get("images")),
        )

    @property
    def failed(self) -> bool:
        return self.status.strip().lower() == "error"


@dataclass
class QueueStatus:
    running: int = 0
    pending: int = 0
    running_prompts: list[Any] = field(default_factory=list)
    pending_prompts: list[Any] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "QueueStatus":
        return cls(
            running=int(payload.get("running") or 0),
            pending=int(payload.get("pending") or 0),
            running_prompts=list(payload.get("running_prompts") or []),
            pending_prompts=list(payload.get("pending_prompts") or []),
        )


@dataclass
class HealthResponse:
    status: str
    engine: bool

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "HealthResponse":
        return cls(status=str(payload.get("status") or "unknown"), engine=bool(payload.get("comfyui")))
