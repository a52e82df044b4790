from __future__ import annotations

import json
from pathlib import Path

from comfy_studio.runs.events import EventWriter


def test_event_writer(tmp_path: Path) -> None:
    path = tmp_path / "logs" / "events.jsonl"
    writer = EventWriter(path, "client-123")
    writer.emit("session_state", job_id="job-1", state="running")
    lines = path.read_text(encoding="utf-8").strip().splitlines()
    assert len(lines) == 1
    payload = json.loads(lines[0])
    assert payload["type"] == "session_state"
    assert payload["client"] == "client-123"
    assert "ts" in payload
    assert payload["job_id"] == "job-1"


def test_event_writer_omits_image_payloads() -> None:
    writer = EventWriter()
    event = writer.emit("preview", job_id="job-1", image_data="iVBORw0KGgo=", preview=None)
    assert event["image_data"] == "<omitted>"
    assert event["preview"] is None
    assert writer.of_type("preview") == [event]


def test_event_writer_keeps_recent_records() -> None:
    writer = EventWriter(keep=3)
    for index in range(5):
        writer.emit("tick", index=index)
    assert [record["index"] for record in writer.records] == [2, 3, 4]
