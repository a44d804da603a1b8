"""Tests for prompt assembly."""

from datetime import timedelta

from conftest import add_messages, make_snapshot
from homebase_context.context.assembler import ContextAssembler, assemble, render_snapshot
from homebase_context.context.models import ExtractedEntity


class TestRenderSnapshot:
    def test_includes_range_and_summary(self, message_store):
        messages = add_messages(message_store, "main", 4)
        text = render_snapshot(make_snapshot(messages[:2], summary="Planned the launch."))
        assert "2026-03-01 - 2026-03-01" in text
        assert "2 messages" in text
        assert "Planned the launch." in text

    def test_key_points_and_entities(self, message_store):
        messages = add_messages(message_store, "main", 4)
        snapshot = make_snapshot(
            messages[:2],
            key_points=["Ship Friday"],
            entities=[ExtractedEntity("person", "Alice")],
        )
        text = render_snapshot(snapshot)
        assert "- Ship Friday" in text
        assert "Alice (person)" in text


class TestAssemble:
    def test_empty_thread(self, message_store, snapshot_store):
        assert ContextAssembler(message_store, snapshot_store).assemble_prompt("main") == []

    def test_no_snapshots_returns_active_only(self, message_store, snapshot_store):
        add_messages(message_store, "main", 3)
        prompt = ContextAssembler(message_store, snapshot_store).assemble_prompt("main")
        assert prompt == [
            {"role": "user", "content": "message 0"},
            {"role": "assistant", "content": "message 1"},
            {"role": "user", "content": "message 2"},
        ]

    def test_snapshots_precede_active(self, message_store, snapshot_store):
        messages = add_messages(message_store, "main", 8)
        snapshot_store.create(make_snapshot(messages[:3], summary="First block."))
        snapshot_store.create(make_snapshot(messages[3:6], summary="Second block."))

        prompt = ContextAssembler(message_store, snapshot_store).assemble_prompt("main")

        assert [p["role"] for p in prompt] == ["system", "system", "user", "assistant"]
        assert "First block." in prompt[0]["content"]
        assert "Second block." in prompt[1]["content"]
        assert [p["content"] for p in prompt[2:]] == ["message 6", "message 7"]

    def test_archived_content_never_included(self, message_store, snapshot_store):
        messages = add_messages(message_store, "main", 6)
        snapshot_store.create(make_snapshot(messages[:3]))

        prompt = ContextAssembler(message_store, snapshot_store).assemble_prompt("main")

        contents = " ".join(p["content"] for p in prompt)
        for archived in messages[:3]:
            assert archived.content not in contents

    def test_snapshots_sorted_by_creation(self, message_store):
        messages = add_messages(message_store, "main", 6)
        early = make_snapshot(messages[:2], summary="Early.")
        late = make_snapshot(
            messages[2:4],
            summary="Late.",
            created_at=early.created_at + timedelta(hours=1),
        )
        prompt = assemble([late, early], messages[4:])
        assert "Early." in prompt[0]["content"]
        assert "Late." in prompt[1]["content"]

    def test_build_context_messages_appends_user_turn(self, message_store, snapshot_store):
        add_messages(message_store, "main", 2)
        assembler = ContextAssembler(message_store, snapshot_store)

        prompt = assembler.build_context_messages("main", "What next?")

        assert prompt[-1] == {"role": "user", "content": "What next?"}
        assert len(prompt) == 3
        # Not recorded by assembly
        assert len(message_store.list_active("main")) == 2
