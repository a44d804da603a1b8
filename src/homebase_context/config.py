"""Runtime configuration for context management."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path

from dotenv import load_dotenv

from homebase_context.errors import ConfigError


@dataclass(frozen=True)
class ContextConfig:
    """Budget, policy and gateway settings.

    Defaults are conservative for a 100k-token model window.
    """

    # Budget and policy
    max_context_tokens: int = 100_000
    summarize_threshold_percent: float = 70.0
    max_active_messages: int = 200
    # Summarizer window
    min_messages_to_summarize: int = 4
    keep_recent_messages: int = 2
    window_ratio: float = 0.5
    window_messages: int | None = None  # Fixed window size; overrides ratio
    # Caching and locking
    state_cache_ttl: float = 5.0
    lock_timeout: float = 30.0
    # Gateway
    gateway_url: str = "http://127.0.0.1:18789"
    gateway_password: str | None = None
    gateway_timeout: int = 60
    gateway_agent_id: str = "main"
    summary_max_tokens: int = 768
    fallback_to_heuristic: bool = False
    # Storage
    db_path: Path = Path("data/homebase.db")

    def validate(self) -> ContextConfig:
        """Raise ConfigError on inconsistent values. Returns self."""
        if self.max_context_tokens <= 0:
            raise ConfigError("max_context_tokens must be positive")
        if not 0 < self.summarize_threshold_percent <= 100:
            raise ConfigError("summarize_threshold_percent must be in (0, 100]")
        if self.max_active_messages < 1:
            raise ConfigError("max_active_messages must be at least 1")
        if self.min_messages_to_summarize < 2:
            raise ConfigError("min_messages_to_summarize must be at least 2")
        if self.keep_recent_messages < 0:
            raise ConfigError("keep_recent_messages cannot be negative")
        if self.keep_recent_messages >= self.min_messages_to_summarize:
            raise ConfigError(
                "keep_recent_messages must be smaller than min_messages_to_summarize"
            )
        if not 0 < self.window_ratio <= 1:
            raise ConfigError("window_ratio must be in (0, 1]")
        if self.window_messages is not None and self.window_messages < 1:
            raise ConfigError("window_messages must be at least 1")
        if self.state_cache_ttl < 0 or self.lock_timeout < 0:
            raise ConfigError("state_cache_ttl and lock_timeout cannot be negative")
        return self

    def with_overrides(self, **changes) -> ContextConfig:
        """Copy with some fields replaced, validated."""
        return replace(self, **changes).validate()


def _env_str(name: str, default: str | None) -> str | None:
    value = os.getenv(name)
    return value.strip() if value and value.strip() else default


def _env_int(name: str, default: int | None) -> int | None:
    value = _env_str(name, None)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from exc


def _env_float(name: str, default: float) -> float:
    value = _env_str(name, None)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {value!r}") from exc


def _env_bool(name: str, default: bool) -> bool:
    value = _env_str(name, None)
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes", "on")


def load_config(env_file: Path | str | None = None) -> ContextConfig:
    """Build a ContextConfig from the environment (and an optional .env file)."""
    load_dotenv(env_file)
    defaults = ContextConfig()

    config = ContextConfig(
        max_context_tokens=_env_int("HOMEBASE_MAX_CONTEXT_TOKENS", defaults.max_context_tokens),
        summarize_threshold_percent=_env_float(
            "HOMEBASE_SUMMARIZE_THRESHOLD", defaults.summarize_threshold_percent
        ),
        max_active_messages=_env_int(
            "HOMEBASE_MAX_ACTIVE_MESSAGES", defaults.max_active_messages
        ),
        min_messages_to_summarize=_env_int(
            "HOMEBASE_MIN_MESSAGES_TO_SUMMARIZE", defaults.min_messages_to_summarize
        ),
        keep_recent_messages=_env_int(
            "HOMEBASE_KEEP_RECENT_MESSAGES", defaults.keep_recent_messages
        ),
        window_ratio=_env_float("HOMEBASE_WINDOW_RATIO", defaults.window_ratio),
        window_messages=_env_int("HOMEBASE_WINDOW_MESSAGES", None),
        state_cache_ttl=_env_float("HOMEBASE_STATE_CACHE_TTL", defaults.state_cache_ttl),
        lock_timeout=_env_float("HOMEBASE_LOCK_TIMEOUT", defaults.lock_timeout),
        gateway_url=_env_str("OPENCLAW_GATEWAY_HTTP_URL", defaults.gateway_url),
        gateway_password=_env_str("OPENCLAW_GATEWAY_PASSWORD", None),
        gateway_timeout=_env_int("OPENCLAW_GATEWAY_TIMEOUT", defaults.gateway_timeout),
        gateway_agent_id=_env_str("OPENCLAW_AGENT_ID", defaults.gateway_agent_id),
        summary_max_tokens=_env_int(
            "HOMEBASE_SUMMARY_MAX_TOKENS", defaults.summary_max_tokens
        ),
        fallback_to_heuristic=_env_bool(
            "HOMEBASE_SUMMARY_FALLBACK", defaults.fallback_to_heuristic
        ),
        db_path=Path(_env_str("HOMEBASE_DB_PATH", str(defaults.db_path))),
    )
    return config.validate()
