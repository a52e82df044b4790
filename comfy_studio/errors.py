"""Error taxonomy for generation sessions."""

from __future__ import annotations


class StudioError(Exception):
    """Base class for every error raised by comfy-studio."""


class ValidationError(StudioError):
    """The request was rejected locally; nothing was sent to the engine."""


class SubmissionError(StudioError):
    """The submit call was rejected or the backend was unreachable."""


class TransportError(StudioError):
    """The event channel errored or closed."""


class EngineError(StudioError):
    """The engine reported a failure for the job."""

    def __init__(self, message: str, job_id: str | None = None) -> None:
        super().__init__(message)
        self.job_id = job_id


class GenerationTimeoutError(EngineError):
    """No terminal outcome arrived before the session deadline."""


class UserCancellation(StudioError):
    """The session was cancelled by the caller."""

    def __init__(self, job_id: str | None = None) -> None:
        super().__init__("Generation cancelled")
        self.job_id = job_id
