"""Backend HTTP client."""

from __future__ import annotations

from .client import ApiError, EngineClient
from .models import GenerateRequest, HealthResponse, HistoryResponse, ImageResult, QueueResponse, QueueStatus

__all__ = [
    "ApiError",
    "EngineClient",
    "GenerateRequest",
    "HealthResponse",
    "HistoryResponse",
    "ImageResult",
    "QueueResponse",
    "QueueStatus",
]
