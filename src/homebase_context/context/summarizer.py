"""Conversation window summarization for context compaction."""

from __future__ import annotations

import json
import logging
import re
import uuid
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable

from homebase_context.clock import utcnow
from homebase_context.context.locks import ThreadLocks
from homebase_context.context.metrics import CompactionStats
from homebase_context.context.models import (
    ContextState,
    ExtractedEntity,
    Message,
    Snapshot,
    SummarizationOutcome,
    SummaryDraft,
    merge_entities,
)
from homebase_context.context.prompts import SUMMARY_PROMPT, SUMMARY_SYSTEM_PROMPT
from homebase_context.context.state import state_from_messages
from homebase_context.context.token_counter import TokenEstimator
from homebase_context.errors import SummarizationFailedError
from homebase_context.storage.exceptions import MessageNotFoundError, OverlapError

if TYPE_CHECKING:
    from homebase_context.agent_client import GatewayClient
    from homebase_context.config import ContextConfig
    from homebase_context.storage import MessageStore, SnapshotStore

LOGGER = logging.getLogger(__name__)

# Skip reasons
SKIP_INSUFFICIENT = "insufficient_messages"
SKIP_EMPTY_WINDOW = "empty_window"
SKIP_IN_PROGRESS = "in_progress"
SKIP_NOT_COMPRESSIBLE = "not_compressible"
SKIP_NOT_NEEDED = "not_needed"
SKIP_THREAD_CHANGED = "thread_changed"

MAX_KEY_POINTS = 5
MAX_ENTITIES = 10
FALLBACK_SUMMARY = "Conversation summary unavailable."

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")
_URL = re.compile(r"https?://[^\s)>\]]+")
_DATE = re.compile(r"\b\d{4}-\d{2}-\d{2}\b")
_FILE = re.compile(
    r"(?<![\w/])[\w./-]+\.(?:py|ts|tsx|js|md|json|ya?ml|txt|pdf|csv|sql)\b"
)
_MENTION = re.compile(r"(?<!\w)@([A-Za-z][\w.-]{1,38})")


class SummaryGenerator(ABC):
    """Produces summary text, key points and entities for a message window."""

    @abstractmethod
    def generate(self, messages: list[Message]) -> SummaryDraft:
        """Summarize messages (oldest first). Raise on failure."""
        ...


def format_conversation(messages: list[Message]) -> str:
    """Render messages as ``[role]: content`` blocks."""
    return "\n\n".join(f"[{m.role}]: {m.content}" for m in messages)


def parse_summary_response(content: str) -> SummaryDraft:
    """
    Parse the gateway's JSON answer, tolerating markdown fences around it.

    Raises:
        ValueError: No JSON object found, or it does not decode to an object.
    """
    match = _JSON_OBJECT.search(content or "")
    if not match:
        raise ValueError("No JSON found in response")

    parsed = json.loads(match.group(0))
    if not isinstance(parsed, dict):
        raise ValueError("Summary response is not a JSON object")

    summary = str(parsed.get("summary") or "").strip() or FALLBACK_SUMMARY

    raw_points = parsed.get("keyPoints", parsed.get("key_points")) or []
    key_points = [
        str(p).strip() for p in raw_points if isinstance(p, (str, int, float)) and str(p).strip()
    ][:MAX_KEY_POINTS]

    entities = []
    for raw in parsed.get("entities") or []:
        if isinstance(raw, dict) and raw.get("value"):
            try:
                entities.append(ExtractedEntity.from_dict(raw))
            except (TypeError, ValueError):
                LOGGER.debug("Dropping malformed entity %r", raw)
        elif isinstance(raw, str) and raw.strip():
            entities.append(ExtractedEntity(type="project", value=raw))

    return SummaryDraft(
        summary=summary,
        key_points=key_points,
        entities=merge_entities(entities)[:MAX_ENTITIES],
    )


class GatewaySummaryGenerator(SummaryGenerator):
    """Asks the agent gateway for a JSON summary."""

    def __init__(
        self,
        client: GatewayClient,
        max_tokens: int = 768,
        temperature: float = 0.3,
    ) -> None:
        self.client = client
        self.max_tokens = max_tokens
        self.temperature = temperature

    def generate(self, messages: list[Message]) -> SummaryDraft:
        prompt = SUMMARY_PROMPT.format(
            max_key_points=MAX_KEY_POINTS,
            conversation=format_conversation(messages),
        )
        response = self.client.chat(
            messages=[
                {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        return parse_summary_response(response.message.get("content") or "")


class HeuristicSummaryGenerator(SummaryGenerator):
    """Deterministic summary without a model call."""

    def __init__(self, max_point_chars: int = 100, max_points: int = 3) -> None:
        self.max_point_chars = max_point_chars
        self.max_points = max_points

    def generate(self, messages: list[Message]) -> SummaryDraft:
        if not messages:
            return SummaryDraft(summary=FALLBACK_SUMMARY)

        first = messages[0].created_at.strftime("%Y-%m-%d")
        last = messages[-1].created_at.strftime("%Y-%m-%d")
        span = first if first == last else f"{first} to {last}"
        summary = f"Conversation with {len(messages)} messages ({span})."

        key_points = []
        for msg in messages:
            if msg.role != "user":
                continue
            line = msg.content.strip().splitlines()[0] if msg.content.strip() else ""
            if not line:
                continue
            if len(line) > self.max_point_chars:
                line = line[: self.max_point_chars].rstrip() + "..."
            key_points.append(line)
            if len(key_points) >= self.max_points:
                break

        return SummaryDraft(
            summary=summary,
            key_points=key_points,
            entities=self._extract_entities(messages),
        )

    @staticmethod
    def _extract_entities(messages: list[Message]) -> list[ExtractedEntity]:
        found: list[ExtractedEntity] = []
        for msg in messages:
            text = msg.content
            found.extend(ExtractedEntity("url", m) for m in _URL.findall(text))
            found.extend(ExtractedEntity("date", m) for m in _DATE.findall(text))
            found.extend(ExtractedEntity("file", m) for m in _FILE.findall(text))
            found.extend(ExtractedEntity("person", m) for m in _MENTION.findall(text))
        return merge_entities(found)[:MAX_ENTITIES]


class FallbackSummaryGenerator(SummaryGenerator):
    """Try the primary generator, fall back to another one on any error."""

    def __init__(self, primary: SummaryGenerator, fallback: SummaryGenerator) -> None:
        self.primary = primary
        self.fallback = fallback

    def generate(self, messages: list[Message]) -> SummaryDraft:
        try:
            return self.primary.generate(messages)
        except Exception as e:
            LOGGER.warning("Primary summarizer failed, using fallback: %s", e)
            return self.fallback.generate(messages)


def select_window(
    active: list[Message],
    keep_recent: int,
    window_ratio: float,
    window_messages: int | None = None,
) -> list[Message]:
    """
    Pick the oldest contiguous run of active messages to compact.

    The newest ``keep_recent`` messages are never selected. Without a fixed
    ``window_messages``, messages are taken until they cover ``window_ratio``
    of all active tokens, with a floor of two messages when available.
    """
    eligible = active[: max(0, len(active) - keep_recent)]
    if not eligible:
        return []

    if window_messages is not None:
        return eligible[:window_messages]

    target = sum(m.estimated_tokens for m in active) * window_ratio
    window: list[Message] = []
    covered = 0
    for msg in eligible:
        window.append(msg)
        covered += msg.estimated_tokens
        if covered >= target and len(window) >= 2:
            break
    return window


def compressed_text(summary: str, key_points: list[str]) -> str:
    """The text whose estimate is a snapshot's compressed size."""
    return " ".join([summary, *key_points]) if key_points else summary


def fit_summary(
    draft: SummaryDraft,
    token_count: int,
    estimator: TokenEstimator,
) -> tuple[str, list[str], int] | None:
    """
    Shrink a draft until it estimates strictly below ``token_count``.

    Drops trailing key points first, then truncates the summary text.

    Returns:
        (summary, key_points, compressed_tokens), or None if nothing fits.
    """
    summary = draft.summary.strip()
    key_points = list(draft.key_points)

    compressed = estimator.estimate(compressed_text(summary, key_points))
    while compressed >= token_count and key_points:
        key_points.pop()
        compressed = estimator.estimate(compressed_text(summary, key_points))

    if compressed < token_count:
        return summary, key_points, compressed

    max_chars = estimator.max_chars_for(token_count - 1)
    if max_chars <= 3:
        return None
    summary = summary[: max_chars - 3].rstrip() + "..."
    compressed = estimator.estimate(summary)
    if compressed >= token_count or not summary.strip(". "):
        return None
    return summary, [], compressed


class Summarizer:
    """Compacts the oldest active messages of a thread into a Snapshot.

    At most one summarization runs per thread key at a time. The generator
    runs before anything is written; the snapshot insert and the archive
    marker move happen in one transaction, so a failure at any step leaves
    the thread exactly as it was.
    """

    def __init__(
        self,
        messages: MessageStore,
        snapshots: SnapshotStore,
        generator: SummaryGenerator,
        config: ContextConfig,
        estimator: TokenEstimator | None = None,
        locks: ThreadLocks | None = None,
        stats: CompactionStats | None = None,
    ) -> None:
        """
        Initialize summarizer.

        Args:
            messages: MessageStore with the thread's active messages.
            snapshots: SnapshotStore that persists results.
            generator: Produces summary text; the only model dependency.
            config: Window and locking settings.
            estimator: Token estimator for compressed size.
            locks: Per-thread lock registry, shared with other summarizers
                over the same database.
            stats: Compaction statistics sink.
        """
        self.messages = messages
        self.snapshots = snapshots
        self.generator = generator
        self.config = config
        self.estimator = estimator or TokenEstimator()
        self.locks = locks or ThreadLocks()
        self.stats = stats or CompactionStats()

    def summarize(self, thread_id: str) -> Snapshot | None:
        """Compact the oldest window. Returns None when there is nothing to do."""
        return self.run(thread_id).snapshot

    def run(
        self,
        thread_id: str,
        gate: Callable[[ContextState], bool] | None = None,
    ) -> SummarizationOutcome:
        """
        Compact the oldest window, reporting why when nothing was done.

        Args:
            thread_id: Thread key.
            gate: Optional predicate evaluated under the thread lock on freshly
                read state; the run is skipped as not needed when it is false.

        Raises:
            SummarizationFailedError: Generator failed; nothing was written.
        """
        with self.locks.hold(thread_id, timeout=self.config.lock_timeout) as acquired:
            if not acquired:
                LOGGER.info("Summarization already running for thread %s", thread_id)
                return self._skip(SKIP_IN_PROGRESS)
            return self._run_locked(thread_id, gate)

    def _run_locked(
        self,
        thread_id: str,
        gate: Callable[[ContextState], bool] | None,
    ) -> SummarizationOutcome:
        active = self.messages.list_active(thread_id)
        if gate is not None:
            state = state_from_messages(thread_id, active, self.config.max_context_tokens)
            if not gate(state):
                LOGGER.debug(
                    "Thread %s no longer needs summarization (%.1f%%)",
                    thread_id,
                    state.context_utilization,
                )
                return self._skip(SKIP_NOT_NEEDED)

        if len(active) < self.config.min_messages_to_summarize:
            LOGGER.debug(
                "Not enough messages to summarize thread %s (%d < %d)",
                thread_id,
                len(active),
                self.config.min_messages_to_summarize,
            )
            return self._skip(SKIP_INSUFFICIENT)

        window = select_window(
            active,
            keep_recent=self.config.keep_recent_messages,
            window_ratio=self.config.window_ratio,
            window_messages=self.config.window_messages,
        )
        if not window:
            return self._skip(SKIP_EMPTY_WINDOW)

        token_count = sum(m.estimated_tokens for m in window)
        LOGGER.info(
            "Summarizing %d of %d active messages for thread %s (%d tokens)",
            len(window),
            len(active),
            thread_id,
            token_count,
        )

        try:
            draft = self.generator.generate(window)
        except SummarizationFailedError:
            self.stats.record_failure()
            raise
        except Exception as e:
            self.stats.record_failure()
            LOGGER.error("Summary generation failed for thread %s: %s", thread_id, e)
            raise SummarizationFailedError(thread_id, str(e)) from e

        fitted = fit_summary(draft, token_count, self.estimator)
        if fitted is None:
            LOGGER.warning(
                "Summary for thread %s does not fit under %d tokens", thread_id, token_count
            )
            return self._skip(SKIP_NOT_COMPRESSIBLE)
        summary, key_points, compressed = fitted

        snapshot = Snapshot(
            id=str(uuid.uuid4()),
            thread_id=thread_id,
            summary=summary,
            key_points=key_points,
            entities=merge_entities(draft.entities),
            message_count=len(window),
            token_count=token_count,
            compressed_tokens=compressed,
            first_message_id=window[0].id,
            last_message_id=window[-1].id,
            first_message_at=window[0].created_at,
            last_message_at=window[-1].created_at,
            last_message_seq=window[-1].seq or 0,
            created_at=utcnow(),
        )

        try:
            self.snapshots.create(snapshot)
        except OverlapError as e:
            # Another process archived this range first
            LOGGER.warning("Discarding summary for thread %s: %s", thread_id, e)
            return self._skip(SKIP_IN_PROGRESS)
        except MessageNotFoundError as e:
            LOGGER.warning("Discarding summary for thread %s: %s", thread_id, e)
            return self._skip(SKIP_THREAD_CHANGED)

        self.stats.record_compaction(token_count, compressed, len(window))
        LOGGER.info(
            "Created snapshot %s: %d tokens -> %d tokens (%d%% compression)",
            snapshot.id,
            token_count,
            compressed,
            round(snapshot.compression_ratio * 100),
        )
        LOGGER.debug("%s", self.stats.summary())
        return SummarizationOutcome(snapshot=snapshot)

    def _skip(self, reason: str) -> SummarizationOutcome:
        self.stats.record_skip(reason)
        return SummarizationOutcome(reason=reason)
