"""Generation session tracking."""

from __future__ import annotations

from .connection import ConnectionManager, ConnectionStatus
from .orchestrator import GenerationOrchestrator, SessionHandle
from .state import Session, SessionState, reduce

__all__ = [
    "ConnectionManager",
    "ConnectionStatus",
    "GenerationOrchestrator",
    "Session",
    "SessionHandle",
    "SessionState",
    "reduce",
]
