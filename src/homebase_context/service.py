"""Infinite-context service: the entry point used by the chat routes.

Long-running chat threads never hit the model's context limit: older
messages are compacted into snapshots once the active tail crosses the
configured budget threshold, and every prompt is assembled from those
snapshots plus the uncompacted tail.

Typical turn::

    service = ContextService(load_config())
    turn = service.process_message("main", user_text)
    reply = gateway.chat(turn.context_messages)
    service.record_assistant_response("main", reply)
"""

from __future__ import annotations

import logging
import re

from homebase_context.agent_client import GatewayClient
from homebase_context.config import ContextConfig
from homebase_context.context.assembler import ContextAssembler
from homebase_context.context.locks import ThreadLocks
from homebase_context.context.metrics import CompactionStats
from homebase_context.context.models import (
    ROLES,
    ContextState,
    ContextStatus,
    Message,
    Snapshot,
    SummarizationOutcome,
    TurnContext,
)
from homebase_context.context.policy import SummarizationPolicy
from homebase_context.context.state import ContextStateCalculator, StateCache
from homebase_context.context.summarizer import (
    FallbackSummaryGenerator,
    GatewaySummaryGenerator,
    HeuristicSummaryGenerator,
    SKIP_NOT_NEEDED,
    Summarizer,
    SummaryGenerator,
)
from homebase_context.context.token_counter import TokenEstimator
from homebase_context.errors import SummarizationFailedError, ValidationError
from homebase_context.storage import (
    Database,
    MessageStore,
    SnapshotCounts,
    SnapshotStore,
    StoreUnavailableError,
)

LOGGER = logging.getLogger(__name__)

_THREAD_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.:@-]{0,127}$")


def validate_thread_id(thread_id: object) -> str:
    """Return the thread id if well-formed, else raise ValidationError."""
    if not isinstance(thread_id, str) or not thread_id:
        raise ValidationError("threadId is required")
    if not _THREAD_ID.match(thread_id):
        raise ValidationError(f"Invalid threadId: {thread_id!r}")
    return thread_id


def build_generator(config: ContextConfig) -> SummaryGenerator:
    """Gateway-backed generator, wrapped with the heuristic when enabled."""
    client = GatewayClient(
        base_url=config.gateway_url,
        password=config.gateway_password,
        agent_id=config.gateway_agent_id,
        timeout=config.gateway_timeout,
    )
    generator: SummaryGenerator = GatewaySummaryGenerator(
        client, max_tokens=config.summary_max_tokens
    )
    if config.fallback_to_heuristic:
        generator = FallbackSummaryGenerator(generator, HeuristicSummaryGenerator())
    return generator


def describe_length(active: int, summarized: int) -> str:
    total = active + summarized
    return f"~{total} messages total ({active} active, {summarized} summarized)"


class ContextService:
    """Facade over stores, policy, summarizer and assembler."""

    def __init__(
        self,
        config: ContextConfig | None = None,
        *,
        db: Database | None = None,
        generator: SummaryGenerator | None = None,
        estimator: TokenEstimator | None = None,
    ) -> None:
        """
        Initialize service.

        Args:
            config: Settings; defaults to ContextConfig().
            db: Shared Database; defaults to one at config.db_path.
            generator: Summary generator; defaults to the gateway.
            estimator: Token estimator shared by all components.
        """
        self.config = (config or ContextConfig()).validate()
        self.db = db or Database(self.config.db_path)
        self.estimator = estimator or TokenEstimator()
        self.messages = MessageStore(self.db, self.estimator)
        self.snapshots = SnapshotStore(self.db)
        self.stats = CompactionStats()
        self.locks = ThreadLocks()
        self.cache = StateCache(ttl=self.config.state_cache_ttl)
        self.calculator = ContextStateCalculator(
            self.messages, self.snapshots, self.config.max_context_tokens
        )
        self.policy = SummarizationPolicy(
            threshold_percent=self.config.summarize_threshold_percent,
            max_active_messages=self.config.max_active_messages,
        )
        self.summarizer = Summarizer(
            self.messages,
            self.snapshots,
            generator or build_generator(self.config),
            self.config,
            estimator=self.estimator,
            locks=self.locks,
            stats=self.stats,
        )
        self.assembler = ContextAssembler(self.messages, self.snapshots)

    def close(self) -> None:
        self.db.close()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_context_state(self, thread_id: str) -> ContextState:
        """
        Current token accounting for a thread.

        Raises:
            ValidationError: Malformed thread id.
            StoreUnavailableError: Store unreachable and nothing cached.
        """
        validate_thread_id(thread_id)
        cached = self.cache.get(thread_id)
        if cached is not None:
            return cached

        generation = self.cache.generation(thread_id)
        try:
            state = self.calculator.compute_state(thread_id)
        except StoreUnavailableError as e:
            last_good = self.cache.last_known_good(thread_id)
            if last_good is None:
                raise
            LOGGER.warning("Store unavailable, serving stale state for %s: %s", thread_id, e)
            return last_good

        self.cache.put(state, generation)
        return state

    def get_context_status(self, thread_id: str) -> ContextStatus:
        """State plus snapshot history overview."""
        state = self.get_context_state(thread_id)
        try:
            counts = self.snapshots.counts_for_thread(thread_id)
        except StoreUnavailableError:
            if not state.stale:
                raise
            counts = SnapshotCounts(
                snapshot_count=state.snapshot_count,
                oldest_snapshot_date=None,
                latest_snapshot_date=None,
                summarized_message_count=0,
                last_snapshot_at=state.last_snapshot_at,
            )

        return ContextStatus(
            state=state,
            snapshot_count=counts.snapshot_count,
            oldest_snapshot_date=counts.oldest_snapshot_date,
            latest_snapshot_date=counts.latest_snapshot_date,
            estimated_conversation_length=describe_length(
                state.active_message_count, counts.summarized_message_count
            ),
        )

    def needs_summarization(self, thread_id: str) -> bool:
        return self.policy.needs_summarization(self.get_context_state(thread_id))

    def assemble_prompt(self, thread_id: str) -> list[dict]:
        validate_thread_id(thread_id)
        return self.assembler.assemble_prompt(thread_id)

    def list_snapshots(self, thread_id: str) -> list[Snapshot]:
        validate_thread_id(thread_id)
        return self.snapshots.list(thread_id)

    def list_threads(self) -> list[ContextState]:
        """State of every thread that has messages, by thread id."""
        return [self.get_context_state(t) for t in self.messages.thread_ids()]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def auto_summarize(self, thread_id: str) -> Snapshot | None:
        """Compact the thread if the policy says so. None when nothing was done."""
        return self.summarize(thread_id).snapshot

    def summarize(self, thread_id: str, force: bool = False) -> SummarizationOutcome:
        """
        Run the summarizer, gated by the policy unless ``force`` is set.

        The policy is checked once up front and again under the thread lock,
        so callers queued behind a running compaction see its result.

        Raises:
            SummarizationFailedError: Generation failed; thread unchanged, safe
                to retry.
        """
        validate_thread_id(thread_id)
        if not force and not self.needs_summarization(thread_id):
            self.stats.record_skip(SKIP_NOT_NEEDED)
            return SummarizationOutcome(reason=SKIP_NOT_NEEDED)

        gate = None if force else self.policy.needs_summarization
        outcome = self.summarizer.run(thread_id, gate=gate)
        if outcome.snapshot is not None:
            self.cache.invalidate(thread_id)
        return outcome

    def record_message(self, thread_id: str, role: str, content: str) -> Message:
        """Append a turn to the thread (created implicitly on first message)."""
        validate_thread_id(thread_id)
        if role not in ROLES:
            raise ValidationError(f"Invalid role: {role!r}")
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("content must be a non-empty string")

        message = self.messages.append(thread_id, role, content)
        self.cache.invalidate(thread_id)
        return message

    def record_assistant_response(self, thread_id: str, content: str) -> Message:
        return self.record_message(thread_id, "assistant", content)

    def process_message(self, thread_id: str, content: str) -> TurnContext:
        """
        Prepare one inbound user turn.

        Compacts first when the policy asks for it, assembles the prompt with
        the new message appended, then records the message. A failed
        compaction is logged and the turn proceeds over budget.
        """
        validate_thread_id(thread_id)
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("content must be a non-empty string")

        triggered = False
        state = self.get_context_state(thread_id)
        if self.policy.needs_summarization(state):
            LOGGER.info(
                "Compacting thread %s before turn (%s)",
                thread_id,
                self.policy.trigger(state),
            )
            try:
                outcome = self.summarize(thread_id, force=True)
                triggered = outcome.summarized
            except SummarizationFailedError as e:
                LOGGER.warning("Continuing without compaction: %s", e)

        context_messages = self.assembler.build_context_messages(thread_id, content)
        self.record_message(thread_id, "user", content)
        return TurnContext(
            context_messages=context_messages,
            state=self.get_context_state(thread_id),
            summarization_triggered=triggered,
        )

    def reset_thread(self, thread_id: str) -> int:
        """Delete all messages and snapshots of a thread."""
        validate_thread_id(thread_id)
        deleted = self.messages.reset_thread(thread_id)
        self.cache.invalidate(thread_id)
        return deleted
