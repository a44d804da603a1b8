"""Service-level exceptions."""

from __future__ import annotations


class ContextError(Exception):
    """Base exception for context management operations."""


class ValidationError(ContextError):
    """Caller input (thread id, role, payload) is missing or malformed."""


class SummarizationFailedError(ContextError):
    """Summary generation failed or timed out. Nothing was written."""

    def __init__(self, thread_id: str, reason: str) -> None:
        self.thread_id = thread_id
        self.reason = reason
        super().__init__(f"Summarization failed for thread '{thread_id}': {reason}")


class ConfigError(ContextError):
    """Configuration value is missing or invalid."""
