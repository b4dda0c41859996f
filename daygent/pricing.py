"""
Cost model for LLM calls.

Prices are USD per million tokens, per model. Unknown models are billed at
the default tier so a call is never blocked for lack of pricing data.
"""

from dataclasses import dataclass
from typing import Dict
import logging

from daygent.config import get_pricing

logger = logging.getLogger(__name__)

DEFAULT_PRICING_MODEL = "gpt-4o-mini"
DEFAULT_INPUT_PRICE = 0.15
DEFAULT_OUTPUT_PRICE = 0.60


@dataclass(frozen=True)
class ModelPricing:
    """Per-million-token pricing for a model."""
    input_per_million: float
    output_per_million: float


def _default_pricing(table: Dict[str, Dict[str, float]]) -> ModelPricing:
    rates = table.get(DEFAULT_PRICING_MODEL)
    if rates is None:
        return ModelPricing(DEFAULT_INPUT_PRICE, DEFAULT_OUTPUT_PRICE)
    return ModelPricing(float(rates["input"]), float(rates["output"]))


def is_known_model(model: str) -> bool:
    """Whether the pricing table lists this model."""
    return model in get_pricing()


def get_model_pricing(model: str) -> ModelPricing:
    """
    Look up pricing for a model.

    Falls back to the default tier for models missing from the table.
    """
    table = get_pricing()
    rates = table.get(model)
    if rates is None:
        logger.debug(f"No pricing for model '{model}', using {DEFAULT_PRICING_MODEL} rates")
        return _default_pricing(table)
    return ModelPricing(float(rates["input"]), float(rates["output"]))


def calculate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    """
    Calculate the cost of a call.

    Args:
        model: Model identifier
        input_tokens: Prompt tokens
        output_tokens: Completion tokens

    Returns:
        Cost in USD

    Raises:
        ValueError: If a token count is negative
    """
    if input_tokens < 0 or output_tokens < 0:
        raise ValueError(
            f"token counts must be non-negative, got {input_tokens}/{output_tokens}"
        )

    pricing = get_model_pricing(model)
    return (
        input_tokens * pricing.input_per_million
        + output_tokens * pricing.output_per_million
    ) / 1_000_000
