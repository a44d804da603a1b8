"""Tests for TokenEstimator."""

import pytest

from homebase_context.context.token_counter import MESSAGE_OVERHEAD, TokenEstimator


class TestTokenEstimator:
    def test_empty_text_is_zero(self):
        assert TokenEstimator().estimate("") == 0

    def test_rounds_up(self):
        estimator = TokenEstimator()
        assert estimator.estimate("abc") == 1
        assert estimator.estimate("abcd") == 1
        assert estimator.estimate("abcde") == 2

    def test_deterministic(self):
        estimator = TokenEstimator()
        text = "The quick brown fox jumps over the lazy dog."
        assert estimator.estimate(text) == estimator.estimate(text)

    def test_monotonic_in_length(self):
        estimator = TokenEstimator()
        text = "homebase " * 50
        previous = 0
        for end in range(len(text) + 1):
            current = estimator.estimate(text[:end])
            assert current >= previous
            previous = current

    def test_message_includes_overhead(self):
        estimator = TokenEstimator()
        assert estimator.estimate_message("user", "x" * 280) == 70 + MESSAGE_OVERHEAD

    def test_empty_message_is_overhead_only(self):
        assert TokenEstimator().estimate_message("assistant", "") == MESSAGE_OVERHEAD

    def test_count_messages(self):
        estimator = TokenEstimator()
        messages = [
            {"role": "user", "content": "x" * 40},
            {"role": "assistant", "content": "y" * 8},
        ]
        assert estimator.count_messages(messages) == (10 + 10) + (2 + 10)

    def test_custom_ratio(self):
        assert TokenEstimator(chars_per_token=2).estimate("abcd") == 2

    def test_rejects_non_positive_ratio(self):
        with pytest.raises(ValueError):
            TokenEstimator(chars_per_token=0)

    def test_max_chars_for(self):
        estimator = TokenEstimator()
        assert estimator.max_chars_for(10) == 40
        assert estimator.estimate("x" * estimator.max_chars_for(10)) == 10
        assert estimator.max_chars_for(0) == 0
