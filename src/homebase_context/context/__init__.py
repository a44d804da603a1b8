"""Context layer: token accounting, compaction policy and snapshots."""

from homebase_context.context.models import (
    ContextState,
    ContextStatus,
    ExtractedEntity,
    Message,
    Snapshot,
    SummarizationOutcome,
    SummaryDraft,
    TurnContext,
)
from homebase_context.context.token_counter import MESSAGE_OVERHEAD, TokenEstimator

__all__ = [
    "MESSAGE_OVERHEAD",
    "ContextState",
    "ContextStatus",
    "ExtractedEntity",
    "Message",
    "Snapshot",
    "SummarizationOutcome",
    "SummaryDraft",
    "TokenEstimator",
    "TurnContext",
]
