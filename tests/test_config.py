"""Tests for configuration loading and validation."""

from dataclasses import replace

import pytest

from concierge.config import (
    AppConfig,
    GuardrailConfig,
    ModelConfig,
    RestaurantConfig,
    SessionConfig,
    _safe_float,
    _safe_int,
    _validate_config,
)


class TestConfigValidation:
    def test_default_config_passes_validation(self):
        _validate_config(AppConfig())  # should not raise

    def test_invalid_temperature_too_high(self):
        config = replace(AppConfig(), model=replace(ModelConfig(), reply_temperature=3.0))
        with pytest.raises(ValueError, match="LLM_REPLY_TEMPERATURE"):
            _validate_config(config)

    def test_invalid_temperature_negative(self):
        config = replace(AppConfig(), model=replace(ModelConfig(), decision_temperature=-0.5))
        with pytest.raises(ValueError, match="LLM_DECISION_TEMPERATURE"):
            _validate_config(config)

    def test_empty_provider_order(self):
        config = replace(AppConfig(), model=replace(ModelConfig(), provider_order=" , "))
        with pytest.raises(ValueError, match="LLM_PROVIDER_ORDER"):
            _validate_config(config)

    def test_confidence_above_one(self):
        config = replace(
            AppConfig(), guardrails=replace(GuardrailConfig(), hard_lock_confidence=1.5)
        )
        with pytest.raises(ValueError, match="HARD_LOCK_CONFIDENCE"):
            _validate_config(config)

    def test_zero_confirmation_attempts(self):
        config = replace(
            AppConfig(), guardrails=replace(GuardrailConfig(), max_confirmation_attempts=0)
        )
        with pytest.raises(ValueError, match="MAX_CONFIRMATION_ATTEMPTS"):
            _validate_config(config)

    def test_hard_lock_before_soft_lock(self):
        config = replace(
            AppConfig(),
            guardrails=replace(GuardrailConfig(), soft_lock_turns=5, hard_lock_turns=2),
        )
        with pytest.raises(ValueError, match="HARD_LOCK_TURNS"):
            _validate_config(config)

    def test_short_session_ttl(self):
        config = replace(AppConfig(), session=replace(SessionConfig(), ttl_seconds=10))
        with pytest.raises(ValueError, match="SESSION_TTL_SECONDS"):
            _validate_config(config)

    def test_opening_after_closing(self):
        config = replace(
            AppConfig(), restaurant=replace(RestaurantConfig(), opening_hour=22, closing_hour=9)
        )
        with pytest.raises(ValueError, match="OPENING_HOUR"):
            _validate_config(config)


class TestEnvParsing:
    def test_safe_int_reads_env(self, monkeypatch):
        monkeypatch.setenv("TEST_CONCIERGE_INT", "42")
        assert _safe_int("TEST_CONCIERGE_INT", "1") == 42

    def test_safe_int_default(self, monkeypatch):
        monkeypatch.delenv("TEST_CONCIERGE_INT", raising=False)
        assert _safe_int("TEST_CONCIERGE_INT", "7") == 7

    def test_safe_int_rejects_garbage(self, monkeypatch):
        monkeypatch.setenv("TEST_CONCIERGE_INT", "lots")
        with pytest.raises(ValueError, match="TEST_CONCIERGE_INT"):
            _safe_int("TEST_CONCIERGE_INT", "1")

    def test_safe_float_rejects_garbage(self, monkeypatch):
        monkeypatch.setenv("TEST_CONCIERGE_FLOAT", "warm")
        with pytest.raises(ValueError, match="TEST_CONCIERGE_FLOAT"):
            _safe_float("TEST_CONCIERGE_FLOAT", "0.5")


class TestProviderOrder:
    def test_providers_are_split_and_trimmed(self):
        model = replace(ModelConfig(), provider_order="anthropic, openai ,")
        assert model.providers == ("anthropic", "openai")
