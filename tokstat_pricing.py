"""
Output-token pricing for cost estimates.

Prices are USD per million output tokens and are approximate; verify at
https://openai.com/pricing and https://www.anthropic.com/pricing.
Anthropic models have no public tokenizer, so a tiktoken encoding is used as
a proxy.
"""

import math
from dataclasses import dataclass, replace
from typing import Optional

from tokstat_errors import ConfigError

DEFAULT_MODEL = "gpt-4o"
DEFAULT_TOKENIZER = "o200k_base"


@dataclass(frozen=True)
class ModelPricing:
    model_id: str
    provider: str
    output_per_1m: float
    tokenizer: str

    @property
    def price_per_token(self) -> float:
        return self.output_per_1m / 1_000_000


MODELS = {
    "gpt-4o":            ModelPricing("gpt-4o",            "openai",    10.00, "o200k_base"),
    "gpt-4o-mini":       ModelPricing("gpt-4o-mini",       "openai",     0.60, "o200k_base"),
    "gpt-4.1":           ModelPricing("gpt-4.1",           "openai",     8.00, "o200k_base"),
    "gpt-4.1-mini":      ModelPricing("gpt-4.1-mini",      "openai",     1.60, "o200k_base"),
    "gpt-5-mini":        ModelPricing("gpt-5-mini",        "openai",     2.00, "o200k_base"),
    "claude-sonnet-4-5": ModelPricing("claude-sonnet-4-5", "anthropic", 15.00, "o200k_base"),
    "claude-haiku-4-5":  ModelPricing("claude-haiku-4-5",  "anthropic",  5.00, "o200k_base"),
}


def get_pricing(model_id: str) -> ModelPricing:
    pricing = MODELS.get(model_id)
    if pricing is None:
        raise ConfigError(
            f'Unknown model: "{model_id}". Available: {", ".join(MODELS)}'
        )
    return pricing


def custom_pricing(
    model_id: str,
    cost_per_1k: float,
    tokenizer: str = DEFAULT_TOKENIZER,
) -> ModelPricing:
    """Pricing record for a user-supplied price per 1K output tokens."""
    try:
        per_1k = float(cost_per_1k)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid cost per 1K tokens: {cost_per_1k!r}") from None
    if not math.isfinite(per_1k) or per_1k < 0:
        raise ConfigError(f"Invalid cost per 1K tokens: {cost_per_1k!r}")
    return ModelPricing(
        model_id=model_id,
        provider="custom",
        output_per_1m=per_1k * 1000,
        tokenizer=tokenizer,
    )


def validate_pricing(pricing: ModelPricing) -> ModelPricing:
    """Reject a pricing record the cost stage could not use."""
    price = pricing.output_per_1m
    if isinstance(price, bool) or not isinstance(price, (int, float)):
        raise ConfigError(f"Invalid output price for {pricing.model_id}: {price!r}")
    if not math.isfinite(price) or price < 0:
        raise ConfigError(f"Invalid output price for {pricing.model_id}: {price!r}")
    return pricing


def resolve_pricing(
    model_id: str = DEFAULT_MODEL,
    cost_per_1k: Optional[float] = None,
    tokenizer: Optional[str] = None,
) -> ModelPricing:
    """
    Pricing for a run. A custom price overrides the table (and then defaults
    to o200k_base); an explicit tokenizer overrides the model's encoding.
    """
    if cost_per_1k is not None:
        return custom_pricing(model_id, cost_per_1k, tokenizer or DEFAULT_TOKENIZER)
    pricing = get_pricing(model_id)
    if tokenizer and tokenizer != pricing.tokenizer:
        pricing = replace(pricing, tokenizer=tokenizer)
    return pricing
