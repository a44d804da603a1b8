"""Decides when a thread needs compaction."""

from __future__ import annotations

from typing import Literal

from homebase_context.context.models import ContextState

Level = Literal["healthy", "moderate", "high"]

# Display bands for utilization
MODERATE_PERCENT = 50.0
HIGH_PERCENT = 70.0


class SummarizationPolicy:
    """Threshold policy over a ContextState. Pure: never touches storage."""

    def __init__(
        self,
        threshold_percent: float = 70.0,
        max_active_messages: int = 200,
    ) -> None:
        """
        Initialize policy.

        Args:
            threshold_percent: Utilization (percent of budget) that triggers
                compaction.
            max_active_messages: Hard cap on active messages, independent of
                token estimates, that also triggers compaction.
        """
        self.threshold_percent = threshold_percent
        self.max_active_messages = max_active_messages

    def needs_summarization(self, state: ContextState) -> bool:
        """True when utilization crossed the threshold or the message cap."""
        return (
            state.context_utilization >= self.threshold_percent
            or state.active_message_count >= self.max_active_messages
        )

    def trigger(self, state: ContextState) -> str | None:
        """Name of the condition that fired, for logging. None if neither."""
        if state.context_utilization >= self.threshold_percent:
            return "utilization"
        if state.active_message_count >= self.max_active_messages:
            return "message_cap"
        return None

    @staticmethod
    def level(state: ContextState) -> Level:
        """Coarse status band shown next to the utilization figure."""
        if state.context_utilization < MODERATE_PERCENT:
            return "healthy"
        if state.context_utilization < HIGH_PERCENT:
            return "moderate"
        return "high"
