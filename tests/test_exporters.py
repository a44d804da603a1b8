"""Tests for thread history exporters."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml

from conftest import add_messages, make_snapshot
from homebase_context.context.models import ExtractedEntity
from homebase_context.exporters import EXPORTERS, JsonExporter, ThreadHistory, YamlExporter


@pytest.fixture
def history(message_store, snapshot_store) -> ThreadHistory:
    """A thread with one snapshot and three active messages."""
    messages = add_messages(message_store, "main", 5)
    snapshot_store.create(
        make_snapshot(
            messages[:2],
            summary="Café opening plans.",
            key_points=["Opens Monday"],
            entities=[ExtractedEntity("person", "Zoë")],
        )
    )
    return ThreadHistory(
        thread_id="main",
        snapshots=snapshot_store.list("main"),
        active_messages=message_store.list_active("main"),
    )


class TestJsonExporter:
    def test_export(self, history: ThreadHistory, tmp_path: Path):
        output = tmp_path / "main.json"
        count = JsonExporter().export(history, output)

        assert count == 4
        data = json.loads(output.read_text(encoding="utf-8"))
        assert data["thread_id"] == "main"
        assert data["count"] == 4
        assert len(data["snapshots"]) == 1
        assert [m["content"] for m in data["active_messages"]] == [
            "message 2",
            "message 3",
            "message 4",
        ]

    def test_keeps_unicode(self, history: ThreadHistory, tmp_path: Path):
        output = tmp_path / "main.json"
        JsonExporter().export(history, output)
        text = output.read_text(encoding="utf-8")
        assert "Café" in text
        assert "Zoë" in text

    def test_drops_storage_internals(self, history: ThreadHistory, tmp_path: Path):
        output = tmp_path / "main.json"
        JsonExporter().export(history, output)
        data = json.loads(output.read_text(encoding="utf-8"))
        assert "last_message_seq" not in data["snapshots"][0]
        assert "seq" not in data["active_messages"][0]

    def test_empty_thread(self, tmp_path: Path):
        output = tmp_path / "empty.json"
        assert JsonExporter().export(ThreadHistory(thread_id="empty"), output) == 0
        data = json.loads(output.read_text(encoding="utf-8"))
        assert data["snapshots"] == []
        assert data["active_messages"] == []


class TestYamlExporter:
    def test_export(self, history: ThreadHistory, tmp_path: Path):
        output = tmp_path / "main.yaml"
        count = YamlExporter().export(history, output)

        assert count == 4
        data = yaml.safe_load(output.read_text(encoding="utf-8"))
        snapshot = data["snapshots"][0]
        assert snapshot["summary"] == "Café opening plans."
        assert snapshot["key_points"] == ["Opens Monday"]
        assert snapshot["entities"] == [{"type": "person", "value": "Zoë", "mentions": 1}]

    def test_extension(self):
        assert YamlExporter().extension == "yaml"


class TestRegistry:
    def test_formats(self):
        assert set(EXPORTERS) == {"json", "yaml"}
        assert EXPORTERS["json"]().extension == "json"
