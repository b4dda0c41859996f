"""Tests for the cost model and pricing configuration."""

import math

import pytest

from daygent.config import (
    DEFAULT_PRICING,
    ProxySettings,
    get_pricing,
    reset_pricing,
    set_pricing,
)
from daygent.pricing import (
    DEFAULT_PRICING_MODEL,
    calculate_cost,
    get_model_pricing,
    is_known_model,
)


class TestCalculateCost:
    """Test cost calculation."""

    def test_known_model(self):
        """gpt-3.5-turbo is $0.50 in / $1.50 out per million tokens."""
        assert calculate_cost("gpt-3.5-turbo", 1000, 500) == pytest.approx(0.00125)

    def test_anthropic_model(self):
        assert calculate_cost("claude-3-5-haiku-20241022", 1_000_000, 0) == pytest.approx(1.0)
        assert calculate_cost("claude-3-5-haiku-20241022", 0, 1_000_000) == pytest.approx(5.0)

    def test_zero_tokens(self):
        assert calculate_cost("gpt-4o", 0, 0) == 0

    def test_unknown_model_falls_back(self):
        """Unknown models are billed at the default tier and never fail."""
        cost = calculate_cost("totally-unknown-model-xyz", 1000, 1000)

        assert cost > 0
        assert math.isfinite(cost)
        assert cost == pytest.approx(calculate_cost(DEFAULT_PRICING_MODEL, 1000, 1000))

    def test_monotonic_in_tokens(self):
        """Cost never decreases as token counts grow."""
        for model in ["gpt-4o", "claude-3-opus-20240229", "unknown-model"]:
            previous = -1.0
            for tokens in [0, 1, 10, 100, 1000, 10_000, 1_000_000]:
                cost = calculate_cost(model, tokens, 250)
                assert cost >= previous
                previous = cost

    def test_negative_tokens_rejected(self):
        with pytest.raises(ValueError):
            calculate_cost("gpt-4o", -1, 0)
        with pytest.raises(ValueError):
            calculate_cost("gpt-4o", 0, -1)

    def test_every_table_entry_has_both_rates(self):
        for model, rates in DEFAULT_PRICING.items():
            pricing = get_model_pricing(model)
            assert pricing.input_per_million == rates["input"]
            assert pricing.output_per_million == rates["output"]
            assert is_known_model(model)

    def test_default_model_is_listed(self):
        assert is_known_model(DEFAULT_PRICING_MODEL)
        assert not is_known_model("totally-unknown-model-xyz")


class TestPricingConfig:
    """Test runtime and environment pricing overrides."""

    def test_set_pricing(self):
        set_pricing({"my-model": {"input": 1.0, "output": 2.0}, "gpt-4o-mini": {"input": 0.1, "output": 0.2}})

        assert calculate_cost("my-model", 1_000_000, 1_000_000) == pytest.approx(3.0)
        assert calculate_cost("gpt-4o", 1_000_000, 0) == pytest.approx(0.1)

    def test_reset_pricing(self):
        set_pricing({"my-model": {"input": 1.0, "output": 2.0}})
        reset_pricing()
        assert get_pricing() == DEFAULT_PRICING

    def test_set_pricing_validates(self):
        with pytest.raises(ValueError):
            set_pricing({})
        with pytest.raises(ValueError):
            set_pricing({"my-model": {"input": 1.0}})

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("DAYGENT_PRICING_JSON", '{"gpt-4o": {"input": 1, "output": 2}}')

        assert calculate_cost("gpt-4o", 1_000_000, 0) == pytest.approx(1.0)
        # default tier missing from the override: built-in default rates apply
        assert calculate_cost("gpt-3.5-turbo", 1_000_000, 0) == pytest.approx(0.15)

    def test_invalid_env_override_ignored(self, monkeypatch):
        monkeypatch.setenv("DAYGENT_PRICING_JSON", "not json")
        assert get_pricing() == DEFAULT_PRICING

    @pytest.mark.parametrize(
        "override",
        [
            '{"gpt-4o": 5}',
            '{"gpt-4o": {"input": 1}}',
            '{"gpt-4o": {"input": "cheap", "output": 2}}',
            '{"gpt-4o": {"input": -1, "output": 2}}',
        ],
    )
    def test_malformed_env_override_ignored(self, monkeypatch, override):
        monkeypatch.setenv("DAYGENT_PRICING_JSON", override)

        assert get_pricing() == DEFAULT_PRICING
        assert calculate_cost("gpt-4o", 1_000_000, 0) == pytest.approx(2.5)

    def test_set_pricing_rejects_non_numeric_rates(self):
        with pytest.raises(ValueError, match="non-negative number"):
            set_pricing({"my-model": {"input": "1.0", "output": 2.0}})


class TestProxySettings:
    """Test environment-driven settings."""

    def test_defaults(self, monkeypatch):
        for var in [
            "DAYGENT_RATE_LIMIT_MINUTE",
            "DAYGENT_RATE_LIMIT_HOUR",
            "DAYGENT_RATE_LIMIT_DAY",
            "DAYGENT_PROVIDER_TIMEOUT",
            "OPENAI_API_KEY",
            "ANTHROPIC_API_KEY",
            "DAYGENT_DB_PATH",
            "DAYGENT_CACHE_ENABLED",
        ]:
            monkeypatch.delenv(var, raising=False)

        settings = ProxySettings.from_env()

        assert settings.rate_limit_per_minute == 20
        assert settings.rate_limit_per_hour == 100
        assert settings.rate_limit_per_day == 1000
        assert settings.provider_timeout_seconds == 10.0
        assert settings.db_path == "daygent.db"
        assert settings.cache_enabled is False
        assert settings.platform_key("openai") is None

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("DAYGENT_RATE_LIMIT_MINUTE", "5")
        monkeypatch.setenv("DAYGENT_PROVIDER_TIMEOUT", "2.5")
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        monkeypatch.setenv("DAYGENT_CACHE_ENABLED", "true")

        settings = ProxySettings.from_env()

        assert settings.rate_limit_per_minute == 5
        assert settings.provider_timeout_seconds == 2.5
        assert settings.platform_key("openai") == "sk-env"
        assert settings.cache_enabled is True

    def test_bad_numbers_fall_back(self, monkeypatch):
        monkeypatch.setenv("DAYGENT_RATE_LIMIT_HOUR", "lots")
        assert ProxySettings.from_env().rate_limit_per_hour == 100
