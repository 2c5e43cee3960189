"""
Token cost accounting.

Prices are USD per token, taken from the provider's published per-million
rates. Estimates only; the provider's invoice is authoritative.
"""

from dataclasses import dataclass


class UnknownModelError(ValueError):
    """Raised when a model has no entry in the price table."""


@dataclass(frozen=True, slots=True)
class ModelPricing:
    input: float
    output: float


_PER_MILLION = 1_000_000

MODEL_PRICING: dict[str, ModelPricing] = {
    "gpt-4.1-mini": ModelPricing(input=0.15 / _PER_MILLION, output=0.60 / _PER_MILLION),
    "gpt-4.1": ModelPricing(input=2.00 / _PER_MILLION, output=8.00 / _PER_MILLION),
    "gpt-4.1-nano": ModelPricing(input=0.10 / _PER_MILLION, output=0.40 / _PER_MILLION),
    "gpt-4o-mini": ModelPricing(input=0.15 / _PER_MILLION, output=0.60 / _PER_MILLION),
}


def resolve_pricing(model: str) -> ModelPricing:
    """
    Look up a model, accepting dated snapshot names.

    The API reports snapshots such as "gpt-4.1-mini-2025-04-14"; those are
    billed like their base model.
    """
    if model in MODEL_PRICING:
        return MODEL_PRICING[model]

    # Longest prefix first so "gpt-4.1-mini-..." does not match "gpt-4.1"
    for name in sorted(MODEL_PRICING, key=len, reverse=True):
        if model.startswith(f"{name}-"):
            return MODEL_PRICING[name]

    raise UnknownModelError(f"No pricing configured for model '{model}'")


def calculate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    pricing = resolve_pricing(model)
    return input_tokens * pricing.input + output_tokens * pricing.output
