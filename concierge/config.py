"""
Centralized configuration with environment variable overrides.

All restaurant-specific values, thresholds, and model settings are
configurable here. Confidence thresholds and attempt limits are product
tuning, not correctness constants, so every one of them can be overridden.
"""

import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from concierge.logging_context import SessionIdFilter

load_dotenv()

logger = logging.getLogger(__name__)


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _safe_float(env_var: str, default: str) -> float:
    """Parse a float from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid float for {env_var}: {raw!r}"
        ) from None


@dataclass(frozen=True)
class RestaurantConfig:
    """Tenant-level settings loaded from environment or defaults."""

    name: str = os.getenv("RESTAURANT_NAME", "Demo Bistro")
    timezone: str = os.getenv("RESTAURANT_TIMEZONE", "Europe/Belgrade")
    default_language: str = os.getenv("DEFAULT_LANGUAGE", "en")
    max_party_size: int = _safe_int("MAX_PARTY_SIZE", "20")
    opening_hour: int = _safe_int("OPENING_HOUR", "10")
    closing_hour: int = _safe_int("CLOSING_HOUR", "23")
    tables_per_slot: int = _safe_int("TABLES_PER_SLOT", "6")


@dataclass(frozen=True)
class ModelConfig:
    """Text-generation provider settings."""

    provider_order: str = os.getenv("LLM_PROVIDER_ORDER", "anthropic,openai")
    openai_model: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    anthropic_model: str = os.getenv("ANTHROPIC_MODEL", "claude-3-5-haiku-latest")
    decision_temperature: float = _safe_float("LLM_DECISION_TEMPERATURE", "0.0")
    reply_temperature: float = _safe_float("LLM_REPLY_TEMPERATURE", "0.7")
    request_timeout_sec: float = _safe_float("LLM_REQUEST_TIMEOUT", "20.0")
    json_retries: int = _safe_int("LLM_JSON_RETRIES", "2")
    openai_api_key: str = os.getenv("OPENAI_API_KEY", "")
    anthropic_api_key: str = os.getenv("ANTHROPIC_API_KEY", "")

    @property
    def providers(self) -> tuple[str, ...]:
        return tuple(p.strip() for p in self.provider_order.split(",") if p.strip())


@dataclass(frozen=True)
class GuardrailConfig:
    """Thresholds for the gate, language lock, router, and rate limiting."""

    max_confirmation_attempts: int = _safe_int("MAX_CONFIRMATION_ATTEMPTS", "2")
    max_name_choice_attempts: int = _safe_int("MAX_NAME_CHOICE_ATTEMPTS", "3")
    name_choice_confidence: float = _safe_float("NAME_CHOICE_CONFIDENCE", "0.8")
    fast_language_confidence: float = _safe_float("FAST_LANGUAGE_CONFIDENCE", "0.85")
    language_change_confidence: float = _safe_float("LANGUAGE_CHANGE_CONFIDENCE", "0.8")
    soft_lock_confidence: float = _safe_float("SOFT_LOCK_CONFIDENCE", "0.9")
    hard_lock_confidence: float = _safe_float("HARD_LOCK_CONFIDENCE", "0.95")
    soft_lock_turns: int = _safe_int("SOFT_LOCK_TURNS", "3")
    hard_lock_turns: int = _safe_int("HARD_LOCK_TURNS", "6")
    lock_persona_turns: int = _safe_int("LOCK_PERSONA_TURNS", "3")
    rate_limit_per_minute: int = _safe_int("RATE_LIMIT_PER_MINUTE", "20")
    action_timeout_sec: float = _safe_float("ACTION_TIMEOUT", "10.0")
    max_message_length: int = _safe_int("MAX_MESSAGE_LENGTH", "1000")
    stuck_repeat_threshold: int = _safe_int("STUCK_REPEAT_THRESHOLD", "3")


@dataclass(frozen=True)
class SessionConfig:
    """Session lifetime and persistence settings."""

    ttl_seconds: int = _safe_int("SESSION_TTL_SECONDS", str(4 * 60 * 60))
    write_delay_sec: float = _safe_float("SESSION_WRITE_DELAY", "0.25")
    write_batch_size: int = _safe_int("SESSION_WRITE_BATCH", "20")
    max_write_retries: int = _safe_int("SESSION_WRITE_RETRIES", "3")
    touched_reservation_ttl_sec: int = _safe_int("TOUCHED_RESERVATION_TTL", "600")
    transcript_window: int = _safe_int("TRANSCRIPT_WINDOW", "8")
    redis_url: str = os.getenv("REDIS_URL", "")


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    restaurant: RestaurantConfig = field(default_factory=RestaurantConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    guardrails: GuardrailConfig = field(default_factory=GuardrailConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    agent_name: str = os.getenv("AGENT_NAME", "booking-concierge")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    for temp_name, temp_value in [
        ("LLM_DECISION_TEMPERATURE", config.model.decision_temperature),
        ("LLM_REPLY_TEMPERATURE", config.model.reply_temperature),
    ]:
        if not 0.0 <= temp_value <= 2.0:
            raise ValueError(f"{temp_name} must be between 0.0 and 2.0, got {temp_value}")
    if not config.model.providers:
        raise ValueError("LLM_PROVIDER_ORDER must name at least one provider")
    if config.model.request_timeout_sec <= 0:
        raise ValueError(
            f"LLM_REQUEST_TIMEOUT must be > 0, got {config.model.request_timeout_sec}"
        )
    if config.model.json_retries < 0:
        raise ValueError(f"LLM_JSON_RETRIES must be >= 0, got {config.model.json_retries}")

    g = config.guardrails
    for rate_name, rate_value in [
        ("NAME_CHOICE_CONFIDENCE", g.name_choice_confidence),
        ("FAST_LANGUAGE_CONFIDENCE", g.fast_language_confidence),
        ("LANGUAGE_CHANGE_CONFIDENCE", g.language_change_confidence),
        ("SOFT_LOCK_CONFIDENCE", g.soft_lock_confidence),
        ("HARD_LOCK_CONFIDENCE", g.hard_lock_confidence),
    ]:
        if not 0.0 <= rate_value <= 1.0:
            raise ValueError(f"{rate_name} must be between 0.0 and 1.0, got {rate_value}")

    for count_name, count_value in [
        ("MAX_CONFIRMATION_ATTEMPTS", g.max_confirmation_attempts),
        ("MAX_NAME_CHOICE_ATTEMPTS", g.max_name_choice_attempts),
        ("SOFT_LOCK_TURNS", g.soft_lock_turns),
        ("LOCK_PERSONA_TURNS", g.lock_persona_turns),
        ("RATE_LIMIT_PER_MINUTE", g.rate_limit_per_minute),
        ("MAX_MESSAGE_LENGTH", g.max_message_length),
        ("STUCK_REPEAT_THRESHOLD", g.stuck_repeat_threshold),
        ("MAX_PARTY_SIZE", config.restaurant.max_party_size),
        ("SESSION_WRITE_BATCH", config.session.write_batch_size),
        ("TRANSCRIPT_WINDOW", config.session.transcript_window),
    ]:
        if count_value < 1:
            raise ValueError(f"{count_name} must be >= 1, got {count_value}")

    if g.hard_lock_turns < g.soft_lock_turns:
        raise ValueError(
            f"HARD_LOCK_TURNS ({g.hard_lock_turns}) must be >= "
            f"SOFT_LOCK_TURNS ({g.soft_lock_turns})"
        )
    if g.action_timeout_sec <= 0:
        raise ValueError(f"ACTION_TIMEOUT must be > 0, got {g.action_timeout_sec}")
    if config.session.ttl_seconds < 60:
        raise ValueError(
            f"SESSION_TTL_SECONDS must be >= 60, got {config.session.ttl_seconds}"
        )
    if config.session.write_delay_sec < 0:
        raise ValueError(
            f"SESSION_WRITE_DELAY must be >= 0, got {config.session.write_delay_sec}"
        )
    if not 0 <= config.restaurant.opening_hour < config.restaurant.closing_hour <= 24:
        raise ValueError(
            "OPENING_HOUR must be before CLOSING_HOUR within 0-24, got "
            f"{config.restaurant.opening_hour}-{config.restaurant.closing_hour}"
        )


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s [%(session_id)s/%(persona)s #%(turn)s]: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, SessionIdFilter) for f in handler.filters):
            handler.addFilter(SessionIdFilter())
    logger.info("Configuration loaded for '%s'", config.restaurant.name)
    return config


# Singleton instance
settings = load_config()
