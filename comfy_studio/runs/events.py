"""Append-only session lifecycle log."""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..utils import now_utc_iso, sanitize_payload


@dataclass
class EventWriter:
    """Emit lifecycle records as JSON lines.

    With ``path=None`` records are only kept in memory (the last ``keep``).
    Image payloads are replaced by ``"<omitted>"`` before anything is written.
    """

    path: Path | None = None
    client: str = "comfy-studio"
    keep: int = 500
    records: list[dict[str, Any]] = field(default_factory=list, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, init=False)

    def emit(self, event_type: str, **payload: Any) -> dict[str, Any]:
        event: dict[str, Any] = {
            "type": event_type,
            "client": self.client,
            "ts": now_utc_iso(),
        }
        event.update(sanitize_payload(payload))
        with self._lock:
            self.records.append(event)
            if len(self.records) > self.keep:
                del self.records[: len(self.records) - self.keep]
            if self.path is not None:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as handle:
                    handle.write(f"{json.dumps(event)}\n")
        return event

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        with self._lock:
            return [record for record in self.records if record.get("type") == event_type]
