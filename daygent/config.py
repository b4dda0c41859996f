"""Global configuration for the Daygent LLM proxy."""

from __future__ import annotations

import copy
import json
import logging
import os
from dataclasses import dataclass
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)


# USD per 1M tokens
DEFAULT_PRICING: Dict[str, Dict[str, float]] = {
    # OpenAI
    "gpt-4o": {"input": 2.50, "output": 10.00},
    "gpt-4o-mini": {"input": 0.15, "output": 0.60},
    "gpt-4.1": {"input": 2.00, "output": 8.00},
    "gpt-4.1-mini": {"input": 0.40, "output": 1.60},
    "gpt-4.1-nano": {"input": 0.10, "output": 0.40},
    "gpt-4-turbo": {"input": 10.00, "output": 30.00},
    "gpt-4-turbo-preview": {"input": 10.00, "output": 30.00},
    "gpt-4": {"input": 30.00, "output": 60.00},
    "gpt-3.5-turbo": {"input": 0.50, "output": 1.50},
    "o3-mini": {"input": 1.10, "output": 4.40},
    # Anthropic
    "claude-opus-4-20250514": {"input": 15.00, "output": 75.00},
    "claude-sonnet-4-20250514": {"input": 3.00, "output": 15.00},
    "claude-3-7-sonnet-20250219": {"input": 3.00, "output": 15.00},
    "claude-3-5-sonnet-20241022": {"input": 3.00, "output": 15.00},
    "claude-3-5-haiku-20241022": {"input": 1.00, "output": 5.00},
    "claude-3-opus-20240229": {"input": 15.00, "output": 75.00},
    "claude-3-sonnet-20240229": {"input": 3.00, "output": 15.00},
    "claude-3-haiku-20240307": {"input": 0.25, "output": 1.25},
}

_pricing: Dict[str, Dict[str, float]] = copy.deepcopy(DEFAULT_PRICING)


def _parse_json_env(var_name: str) -> Dict[str, Any] | None:
    value = os.getenv(var_name)
    if not value:
        return None
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed


def _pricing_error(pricing: Any) -> Optional[str]:
    """Describe what is wrong with a pricing table, or None if it is usable."""
    if not isinstance(pricing, dict) or not pricing:
        return "pricing must be a non-empty dict"
    for model, rates in pricing.items():
        if not isinstance(rates, dict) or "input" not in rates or "output" not in rates:
            return f"pricing for {model} must include 'input' and 'output'"
        for side in ("input", "output"):
            rate = rates[side]
            if isinstance(rate, bool) or not isinstance(rate, (int, float)) or rate < 0:
                return f"pricing for {model} must have a non-negative number for '{side}'"
    return None


def get_pricing() -> Dict[str, Dict[str, float]]:
    """Return pricing configuration, with optional env override."""
    parsed = _parse_json_env("DAYGENT_PRICING_JSON")
    if parsed:
        error = _pricing_error(parsed)
        if error is None:
            return parsed
        logger.warning(f"Ignoring DAYGENT_PRICING_JSON: {error}")
    return _pricing


def set_pricing(pricing: Dict[str, Dict[str, float]]) -> None:
    """Set pricing at runtime."""
    error = _pricing_error(pricing)
    if error is not None:
        raise ValueError(error)
    global _pricing
    _pricing = copy.deepcopy(pricing)


def reset_pricing() -> None:
    """Restore the built-in pricing table."""
    global _pricing
    _pricing = copy.deepcopy(DEFAULT_PRICING)


def _int_env(var_name: str, default: int) -> int:
    value = os.getenv(var_name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _float_env(var_name: str, default: float) -> float:
    value = os.getenv(var_name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


@dataclass
class ProxySettings:
    """Runtime settings for the proxy, normally loaded from the environment."""
    rate_limit_per_minute: int = 20
    rate_limit_per_hour: int = 100
    rate_limit_per_day: int = 1000
    provider_timeout_seconds: float = 10.0
    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    encryption_secret: Optional[str] = None
    db_path: str = "daygent.db"
    service_api_key: Optional[str] = None
    cache_enabled: bool = False

    @classmethod
    def from_env(cls) -> "ProxySettings":
        return cls(
            rate_limit_per_minute=_int_env("DAYGENT_RATE_LIMIT_MINUTE", 20),
            rate_limit_per_hour=_int_env("DAYGENT_RATE_LIMIT_HOUR", 100),
            rate_limit_per_day=_int_env("DAYGENT_RATE_LIMIT_DAY", 1000),
            provider_timeout_seconds=_float_env("DAYGENT_PROVIDER_TIMEOUT", 10.0),
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY") or None,
            encryption_secret=os.getenv("API_KEY_ENCRYPTION_SECRET") or None,
            db_path=os.getenv("DAYGENT_DB_PATH", "daygent.db"),
            service_api_key=os.getenv("DAYGENT_API_KEY") or None,
            cache_enabled=os.getenv("DAYGENT_CACHE_ENABLED", "").lower() in ("1", "true", "yes"),
        )

    def platform_key(self, provider: str) -> Optional[str]:
        """Platform-wide key for a provider, if configured."""
        if provider == "openai":
            return self.openai_api_key
        if provider == "anthropic":
            return self.anthropic_api_key
        return None


def get_settings() -> ProxySettings:
    """Load settings from the current environment."""
    return ProxySettings.from_env()
