"""
Pricing calculations and rate management.

Handles cost estimates, in whole cents, for the generation models behind
each provider adapter.
"""

from dataclasses import dataclass
from typing import Dict
from decimal import Decimal, ROUND_UP


@dataclass(frozen=True)
class ModelPricing:
    """Rates for a specific model, in cents."""
    per_request_cents: Decimal = Decimal("0")  # Flat cost per generated asset
    per_1k_chars_cents: Decimal = Decimal("0")  # Cost per 1K input characters


@dataclass(frozen=True)
class PricingTable:
    """Fixed pricing table for supported models."""
    prices: Dict[str, ModelPricing]

    def get_pricing(self, model: str) -> ModelPricing:
        """Get pricing for a specific model.

        Args:
            model: Model identifier

        Returns:
            ModelPricing for the model

        Raises:
            ValueError: If model is not supported
        """
        if model not in self.prices:
            raise ValueError(f"Unsupported model: {model}")
        return self.prices[model]


# Fixed pricing table - no dynamic fetching, no defaults
PRICING_TABLE = PricingTable({
    "dall-e-3": ModelPricing(per_request_cents=Decimal("8")),
    "dall-e-2": ModelPricing(per_request_cents=Decimal("2")),
    "tts-1": ModelPricing(per_1k_chars_cents=Decimal("1.5")),
    "tts-1-hd": ModelPricing(per_1k_chars_cents=Decimal("3")),
    "eleven_monolingual_v1": ModelPricing(per_1k_chars_cents=Decimal("30")),
    "eleven_multilingual_v2": ModelPricing(per_1k_chars_cents=Decimal("30")),
    "stable-diffusion-xl-1024-v1-0": ModelPricing(per_request_cents=Decimal("2")),
    "d-id-clips": ModelPricing(per_request_cents=Decimal("500")),
})


def calculate_cost(model: str, requests: int = 1, characters: int = 0) -> int:
    """Calculate total cost in cents with conservative rounding.

    Args:
        model: Model identifier
        requests: Number of generated assets
        characters: Number of input characters billed by length

    Returns:
        Total cost rounded UP to whole cents

    Raises:
        ValueError: If model is not supported or counts are negative
    """
    if requests < 0 or characters < 0:
        raise ValueError("requests and characters cannot be negative")

    pricing = PRICING_TABLE.get_pricing(model)

    flat_cost = Decimal(requests) * pricing.per_request_cents

    # Length cost: (characters / 1000) * cost_per_1k
    length_cost = (Decimal(characters) / Decimal("1000")) * pricing.per_1k_chars_cents

    total_cost = flat_cost + length_cost
    return int(total_cost.quantize(Decimal("1"), rounding=ROUND_UP))
