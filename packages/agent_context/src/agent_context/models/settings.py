"""Pydantic models for application settings."""

from __future__ import annotations

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from agent_context.models.config import SummarizationConfig, TriggerConfig

ENV_PREFIX = "AGENT_CONTEXT_"


class Settings(BaseModel, frozen=True):
    """Runtime configuration loaded from environment variables."""

    config_dir: str = "config"
    default_model: str | None = None
    max_context_tokens: int = 128_000
    reserve_ratio: float = 0.0
    thinking_enabled: bool = False
    max_overflow_recovery_attempts: int = 3
    fallback_models: list[str] = Field(default_factory=list)
    summarization: SummarizationConfig = Field(default_factory=SummarizationConfig)


def _env(name: str, default: str | None = None) -> str | None:
    return os.getenv(f"{ENV_PREFIX}{name}", default)


def _parse_list(value: str) -> list[str]:
    """Parse comma-separated string into list."""
    return [item.strip() for item in value.split(",") if item.strip()]


def _parse_bool(value: str | None, *, default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.lower() in {"1", "true", "yes", "on"}


def _load_trigger() -> TriggerConfig | None:
    kind = _env("SUMMARY_TRIGGER")
    if not kind:
        return None
    raw_value = _env("SUMMARY_TRIGGER_VALUE")
    if raw_value is None:
        msg = (
            f"{ENV_PREFIX}SUMMARY_TRIGGER_VALUE is required when "
            f"{ENV_PREFIX}SUMMARY_TRIGGER is set."
        )
        raise ValueError(msg)
    return TriggerConfig(kind=kind, value=float(raw_value))


def load_settings() -> Settings:
    """Load settings from environment variables with defaults."""
    load_dotenv()

    max_context_tokens = int(_env("MAX_CONTEXT_TOKENS", "128000") or "128000")
    if max_context_tokens <= 0:
        msg = f"{ENV_PREFIX}MAX_CONTEXT_TOKENS must be positive, got {max_context_tokens}."
        raise ValueError(msg)

    reserve_ratio = float(_env("RESERVE_RATIO", "0") or "0")
    if not 0 <= reserve_ratio < 1:
        msg = f"{ENV_PREFIX}RESERVE_RATIO must be in [0, 1), got {reserve_ratio}."
        raise ValueError(msg)

    max_attempts = int(_env("MAX_OVERFLOW_RECOVERY_ATTEMPTS", "3") or "3")
    if max_attempts < 0:
        msg = f"{ENV_PREFIX}MAX_OVERFLOW_RECOVERY_ATTEMPTS cannot be negative."
        raise ValueError(msg)

    summarization = SummarizationConfig(
        enabled=_parse_bool(_env("SUMMARY_ENABLED"), default=True),
        provider=_env("SUMMARY_PROVIDER") or None,
        model=_env("SUMMARY_MODEL") or None,
        prompt=_env("SUMMARY_PROMPT") or None,
        parts=int(_env("SUMMARY_PARTS", "1") or "1"),
        min_messages_for_split=int(_env("SUMMARY_MIN_MESSAGES_FOR_SPLIT", "4") or "4"),
        stream=_parse_bool(_env("SUMMARY_STREAM"), default=True),
        trigger=_load_trigger(),
    )

    return Settings(
        config_dir=_env("CONFIG_DIR", "config") or "config",
        default_model=_env("DEFAULT_MODEL") or None,
        max_context_tokens=max_context_tokens,
        reserve_ratio=reserve_ratio,
        thinking_enabled=_parse_bool(_env("THINKING_ENABLED"), default=False),
        max_overflow_recovery_attempts=max_attempts,
        fallback_models=_parse_list(_env("FALLBACK_MODELS", "") or ""),
        summarization=summarization,
    )
