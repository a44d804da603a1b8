"""Tests for window selection, summary fitting and the Summarizer."""

import threading
from unittest.mock import Mock

import pytest

from conftest import StubGenerator, add_messages, make_snapshot
from homebase_context.config import ContextConfig
from homebase_context.context.locks import ThreadLocks
from homebase_context.context.models import ExtractedEntity, SummaryDraft
from homebase_context.context.policy import SummarizationPolicy
from homebase_context.context.summarizer import (
    FALLBACK_SUMMARY,
    FallbackSummaryGenerator,
    GatewaySummaryGenerator,
    HeuristicSummaryGenerator,
    Summarizer,
    fit_summary,
    format_conversation,
    parse_summary_response,
    select_window,
)
from homebase_context.context.token_counter import TokenEstimator
from homebase_context.errors import SummarizationFailedError


@pytest.fixture
def config(temp_db_path) -> ContextConfig:
    return ContextConfig(max_context_tokens=1000, lock_timeout=0, db_path=temp_db_path)


@pytest.fixture
def summarizer(message_store, snapshot_store, stub_generator, config) -> Summarizer:
    return Summarizer(message_store, snapshot_store, stub_generator, config)


class TestSelectWindow:
    def test_takes_oldest_half_of_tokens(self, message_store):
        messages = add_messages(message_store, "main", 10)
        window = select_window(messages, keep_recent=2, window_ratio=0.5)
        assert window == messages[:5]

    def test_never_takes_recent_messages(self, message_store):
        messages = add_messages(message_store, "main", 4)
        window = select_window(messages, keep_recent=2, window_ratio=1.0)
        assert window == messages[:2]

    def test_minimum_two_messages(self, message_store):
        messages = add_messages(message_store, "main", 6)
        big = message_store.append("main", "user", "big", estimated_tokens=5000)
        window = select_window([big, *messages], keep_recent=2, window_ratio=0.5)
        assert len(window) == 2

    def test_fixed_window_size(self, message_store):
        messages = add_messages(message_store, "main", 10)
        window = select_window(messages, keep_recent=2, window_ratio=0.5, window_messages=3)
        assert window == messages[:3]

    def test_empty_when_all_recent(self, message_store):
        messages = add_messages(message_store, "main", 2)
        assert select_window(messages, keep_recent=2, window_ratio=0.5) == []


class TestFitSummary:
    def test_fits_unchanged(self):
        draft = SummaryDraft(summary="Short.", key_points=["a", "b"])
        summary, points, tokens = fit_summary(draft, 100, TokenEstimator())
        assert summary == "Short."
        assert points == ["a", "b"]
        assert tokens < 100

    def test_drops_key_points_first(self):
        draft = SummaryDraft(summary="x" * 20, key_points=["y" * 40, "z" * 40])
        summary, points, tokens = fit_summary(draft, 20, TokenEstimator())
        assert summary == "x" * 20
        assert points == ["y" * 40]
        assert tokens < 20

    def test_truncates_summary(self):
        draft = SummaryDraft(summary="word " * 100)
        summary, points, tokens = fit_summary(draft, 20, TokenEstimator())
        assert summary.endswith("...")
        assert points == []
        assert tokens < 20

    def test_none_when_nothing_fits(self):
        draft = SummaryDraft(summary="a long summary text")
        assert fit_summary(draft, 1, TokenEstimator()) is None


class TestParseSummaryResponse:
    def test_plain_json(self):
        draft = parse_summary_response(
            '{"summary": "Planned launch.", "keyPoints": ["Friday"], '
            '"entities": [{"type": "person", "value": "Alice", "mentions": 2}]}'
        )
        assert draft.summary == "Planned launch."
        assert draft.key_points == ["Friday"]
        assert draft.entities == [ExtractedEntity("person", "Alice", 2)]

    def test_fenced_json(self):
        draft = parse_summary_response('```json\n{"summary": "Ok", "key_points": ["a"]}\n```')
        assert draft.summary == "Ok"
        assert draft.key_points == ["a"]

    def test_missing_summary_uses_placeholder(self):
        assert parse_summary_response('{"keyPoints": []}').summary == FALLBACK_SUMMARY

    def test_limits_key_points(self):
        points = ", ".join(f'"p{i}"' for i in range(9))
        draft = parse_summary_response(f'{{"summary": "s", "keyPoints": [{points}]}}')
        assert len(draft.key_points) == 5

    def test_merges_duplicate_entities(self):
        draft = parse_summary_response(
            '{"summary": "s", "entities": ['
            '{"type": "person", "value": "Alice"}, {"type": "person", "value": "alice"}, '
            '"homebase"]}'
        )
        assert draft.entities == [
            ExtractedEntity("person", "Alice", 2),
            ExtractedEntity("project", "homebase", 1),
        ]

    def test_no_json_raises(self):
        with pytest.raises(ValueError):
            parse_summary_response("I could not summarize that.")


class TestGenerators:
    def test_gateway_generator_sends_conversation(self, message_store):
        messages = add_messages(message_store, "main", 2)
        client = Mock()
        client.chat.return_value = Mock(message={"content": '{"summary": "Done"}'})

        draft = GatewaySummaryGenerator(client, max_tokens=256).generate(messages)

        assert draft.summary == "Done"
        kwargs = client.chat.call_args.kwargs
        assert kwargs["temperature"] == 0.3
        assert kwargs["max_tokens"] == 256
        assert "[user]: message 0" in kwargs["messages"][1]["content"]
        assert kwargs["messages"][0]["role"] == "system"

    def test_format_conversation(self, message_store):
        messages = add_messages(message_store, "main", 2)
        assert format_conversation(messages) == "[user]: message 0\n\n[assistant]: message 1"

    def test_heuristic_generator(self, message_store):
        message_store.append("main", "user", "Review docs/plan.md with @alice by 2026-03-05")
        message_store.append("main", "assistant", "See https://example.com/roadmap for details")
        draft = HeuristicSummaryGenerator().generate(message_store.list_active("main"))

        assert "2 messages" in draft.summary
        assert draft.key_points == ["Review docs/plan.md with @alice by 2026-03-05"]
        found = {(e.type, e.value) for e in draft.entities}
        assert ("file", "docs/plan.md") in found
        assert ("person", "alice") in found
        assert ("date", "2026-03-05") in found
        assert ("url", "https://example.com/roadmap") in found

    def test_fallback_generator(self, message_store):
        messages = add_messages(message_store, "main", 2)
        primary = StubGenerator(error=RuntimeError("gateway down"))
        generator = FallbackSummaryGenerator(primary, HeuristicSummaryGenerator())
        draft = generator.generate(messages)
        assert "2 messages" in draft.summary


class TestSummarizer:
    def test_creates_snapshot_and_archives(self, summarizer, message_store, stub_generator):
        messages = add_messages(message_store, "main", 10)

        snapshot = summarizer.summarize("main")

        assert snapshot is not None
        assert snapshot.message_count == 5
        assert snapshot.token_count == 400
        assert snapshot.compressed_tokens < snapshot.token_count
        assert snapshot.first_message_id == messages[0].id
        assert snapshot.last_message_id == messages[4].id
        assert snapshot.first_message_at <= snapshot.last_message_at
        assert stub_generator.calls == [messages[:5]]
        assert len(message_store.list_active("main")) == 5
        assert summarizer.stats.total_compactions == 1

    def test_insufficient_messages(self, summarizer, message_store, snapshot_store):
        add_messages(message_store, "main", 3)
        outcome = summarizer.run("main")
        assert outcome.snapshot is None
        assert outcome.reason == "insufficient_messages"
        assert len(snapshot_store.list("main")) == 0

    def test_empty_thread(self, summarizer):
        assert summarizer.summarize("main") is None

    def test_generator_failure_writes_nothing(
        self, message_store, snapshot_store, config
    ):
        add_messages(message_store, "main", 10)
        failing = StubGenerator(error=TimeoutError("gateway timed out"))
        summarizer = Summarizer(message_store, snapshot_store, failing, config)

        with pytest.raises(SummarizationFailedError) as exc_info:
            summarizer.summarize("main")

        assert exc_info.value.thread_id == "main"
        assert len(snapshot_store.list("main")) == 0
        assert len(message_store.list_active("main")) == 10
        assert summarizer.stats.failures == 1

    def test_failed_attempt_can_be_retried(self, message_store, snapshot_store, config):
        add_messages(message_store, "main", 10)
        generator = StubGenerator(error=RuntimeError("flaky"))
        summarizer = Summarizer(message_store, snapshot_store, generator, config)
        with pytest.raises(SummarizationFailedError):
            summarizer.summarize("main")

        generator.error = None
        assert summarizer.summarize("main") is not None

    def test_uncompressible_summary_is_skipped(self, message_store, snapshot_store, config):
        # Zero-token window: no summary can be strictly smaller
        add_messages(message_store, "main", 10, tokens=0)
        verbose = StubGenerator(SummaryDraft(summary="Any summary."))
        summarizer = Summarizer(message_store, snapshot_store, verbose, config)

        outcome = summarizer.run("main")

        assert outcome.reason == "not_compressible"
        assert len(snapshot_store.list("main")) == 0

    def test_entities_are_merged(self, message_store, snapshot_store, config):
        add_messages(message_store, "main", 10)
        generator = StubGenerator(
            SummaryDraft(
                summary="s",
                entities=[ExtractedEntity("person", "Bob"), ExtractedEntity("person", "BOB")],
            )
        )
        snapshot = Summarizer(message_store, snapshot_store, generator, config).summarize("main")
        assert snapshot.entities == [ExtractedEntity("person", "Bob", 2)]

    def test_busy_thread_is_skipped(self, message_store, snapshot_store, stub_generator, config):
        add_messages(message_store, "main", 10)
        locks = ThreadLocks()
        summarizer = Summarizer(
            message_store, snapshot_store, stub_generator, config, locks=locks
        )

        with locks.hold("main"):
            outcome = summarizer.run("main")

        assert outcome.reason == "in_progress"
        assert stub_generator.calls == []

    def test_other_threads_not_blocked(self, message_store, snapshot_store, stub_generator, config):
        add_messages(message_store, "side", 10)
        locks = ThreadLocks()
        summarizer = Summarizer(
            message_store, snapshot_store, stub_generator, config, locks=locks
        )

        with locks.hold("main"):
            assert summarizer.summarize("side") is not None

    def test_lost_race_is_discarded(self, message_store, snapshot_store, config):
        messages = add_messages(message_store, "main", 10)

        class RacingGenerator(StubGenerator):
            def generate(self, window):
                # Another process archives the same range mid-generation
                snapshot_store.create(make_snapshot(messages[:3], id="winner"))
                return super().generate(window)

        summarizer = Summarizer(message_store, snapshot_store, RacingGenerator(), config)
        outcome = summarizer.run("main")

        assert outcome.reason == "in_progress"
        assert [s.id for s in snapshot_store.list("main")] == ["winner"]

    def test_reset_during_generation_is_discarded(self, message_store, snapshot_store, config):
        add_messages(message_store, "main", 10)

        class ResettingGenerator(StubGenerator):
            def generate(self, window):
                message_store.reset_thread("main")
                return super().generate(window)

        summarizer = Summarizer(message_store, snapshot_store, ResettingGenerator(), config)
        outcome = summarizer.run("main")

        assert outcome.reason == "thread_changed"
        assert snapshot_store.list("main") == []
        assert summarizer.stats.skipped == {"thread_changed": 1}

    def test_gate_sees_current_state(self, summarizer, message_store):
        add_messages(message_store, "main", 10)
        seen = []

        def gate(state):
            seen.append(state)
            return True

        assert summarizer.run("main", gate=gate).summarized
        assert seen[0].total_tokens == 800
        assert seen[0].context_utilization == pytest.approx(80.0)

    def test_gate_rechecked_after_waiting_for_lock(
        self, message_store, snapshot_store, stub_generator, config
    ):
        messages = add_messages(message_store, "main", 10)
        locks = ThreadLocks()
        summarizer = Summarizer(
            message_store,
            snapshot_store,
            stub_generator,
            config.with_overrides(lock_timeout=10.0),
            locks=locks,
        )
        policy = SummarizationPolicy(threshold_percent=70.0)
        results = []

        with locks.hold("main"):
            worker = threading.Thread(
                target=lambda: results.append(
                    summarizer.run("main", gate=policy.needs_summarization)
                )
            )
            worker.start()
            # Compaction by the lock holder brings the thread to 40%
            snapshot_store.create(make_snapshot(messages[:5]))
        worker.join(timeout=15)

        assert results[0].reason == "not_needed"
        assert stub_generator.calls == []
        assert len(snapshot_store.list("main")) == 1

    def test_concurrent_calls_produce_one_snapshot(
        self, message_store, snapshot_store, config
    ):
        add_messages(message_store, "main", 10)
        started = threading.Event()
        release = threading.Event()

        class SlowGenerator(StubGenerator):
            def generate(self, window):
                started.set()
                release.wait(timeout=5)
                return super().generate(window)

        summarizer = Summarizer(message_store, snapshot_store, SlowGenerator(), config)
        results = []
        worker = threading.Thread(target=lambda: results.append(summarizer.run("main")))
        worker.start()
        assert started.wait(timeout=5)

        second = summarizer.run("main")
        release.set()
        worker.join(timeout=5)

        assert second.reason == "in_progress"
        assert results[0].summarized
        assert len(snapshot_store.list("main")) == 1


class TestCompactionStats:
    def test_records(self):
        from homebase_context.context.metrics import CompactionStats

        stats = CompactionStats()
        stats.record_compaction(400, 100, 5)
        stats.record_compaction(200, 100, 2)
        stats.record_skip("not_needed")
        stats.record_failure()

        assert stats.total_tokens_saved == 400
        assert stats.total_messages_archived == 7
        assert stats.avg_compression == pytest.approx((0.75 + 0.5) / 2)
        assert stats.skipped == {"not_needed": 1}
        assert "Compactions: 2" in stats.summary()
        assert "Failed: 1" in stats.summary()


class TestThreadLocks:
    def test_hold_and_release(self):
        locks = ThreadLocks()
        with locks.hold("main") as acquired:
            assert acquired
            assert locks.is_locked("main")
        assert not locks.is_locked("main")

    def test_busy_key_not_acquired(self):
        locks = ThreadLocks()
        with locks.hold("main"):
            with locks.hold("main", timeout=0) as acquired:
                assert not acquired
            with locks.hold("other", timeout=0) as acquired:
                assert acquired
