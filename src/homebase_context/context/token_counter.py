"""Deterministic token estimation for budget tracking."""

from __future__ import annotations

import math

# Overhead per message for role markers
MESSAGE_OVERHEAD = 10

DEFAULT_CHARS_PER_TOKEN = 4.0


class TokenEstimator:
    """Character-based token estimate.

    Not a tokenizer: it only has to be consistent, and longer text never
    estimates fewer tokens than its own prefix.
    """

    def __init__(self, chars_per_token: float = DEFAULT_CHARS_PER_TOKEN) -> None:
        if chars_per_token <= 0:
            raise ValueError("chars_per_token must be positive")
        self._chars_per_token = chars_per_token

    @property
    def chars_per_token(self) -> float:
        return self._chars_per_token

    def estimate(self, text: str) -> int:
        """Estimate tokens for raw text. Empty text is 0."""
        if not text:
            return 0
        return math.ceil(len(text) / self._chars_per_token)

    def estimate_message(self, role: str, content: str) -> int:
        """Estimate tokens for one chat message, role overhead included."""
        return self.estimate(content) + MESSAGE_OVERHEAD

    def count_messages(self, messages: list[dict]) -> int:
        """Sum message estimates over a list of {role, content} dicts."""
        return sum(
            self.estimate_message(msg.get("role", ""), msg.get("content") or "")
            for msg in messages
        )

    def max_chars_for(self, tokens: int) -> int:
        """Longest text length that estimates to at most ``tokens``."""
        if tokens <= 0:
            return 0
        return int(math.floor(tokens * self._chars_per_token))
