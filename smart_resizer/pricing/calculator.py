"""Dynamic per-model / per-resolution pricing.

Pure functions over an immutable pricing table. The same inputs always give
the same quote, so a quote taken at admission can be re-derived at settlement.
"""

from enum import Enum
from typing import Dict

from pydantic import BaseModel, ConfigDict, Field

from smart_resizer.exceptions import PricingError


class ModelTier(str, Enum):
    FLASH = "flash"
    PRO = "pro"


# Model identifiers as submitted by clients, mapped onto pricing tiers
MODEL_TIERS: Dict[str, ModelTier] = {
    "gemini-2.5-flash-image": ModelTier.FLASH,
    "gemini-3-pro-image-preview": ModelTier.PRO,
    "flash": ModelTier.FLASH,
    "pro": ModelTier.PRO,
}


class UnitRate(BaseModel):
    """Cost and revenue for one unit (image, format, ...), in EUR."""
    model_config = ConfigDict(frozen=True)

    cost_per_unit: float = Field(..., ge=0)
    revenue_per_unit: float = Field(..., ge=0)


class TieredPricingTable(BaseModel):
    """Flash has a single rate; pro is priced per resolution tier."""
    model_config = ConfigDict(frozen=True)

    flash: UnitRate
    pro: Dict[str, UnitRate]


class PricingQuote(BaseModel):
    model_config = ConfigDict(frozen=True)

    cost_per_unit: float
    revenue_per_unit: float
    total_cost: float
    total_revenue: float
    profit: float
    unit_count: int


DEFAULT_TIERED_PRICING = TieredPricingTable(
    flash=UnitRate(cost_per_unit=0.039, revenue_per_unit=0.10),
    pro={
        "1K": UnitRate(cost_per_unit=0.03633, revenue_per_unit=0.10),
        "2K": UnitRate(cost_per_unit=0.03633, revenue_per_unit=0.10),
        "4K": UnitRate(cost_per_unit=0.06, revenue_per_unit=0.15),
    },
)


def resolve_tier(model: str) -> ModelTier:
    """Map a model name (or a bare tier name) to its pricing tier."""
    tier = MODEL_TIERS.get(model)
    if tier is None:
        raise PricingError(
            f"Invalid model '{model}'. Must be one of: {', '.join(MODEL_TIERS)}"
        )
    return tier


def quote_units(rate: UnitRate, unit_count: int) -> PricingQuote:
    """Price unit_count units at a flat rate."""
    if unit_count < 0:
        raise PricingError(f"unit_count must be >= 0, got {unit_count}")
    total_cost = rate.cost_per_unit * unit_count
    total_revenue = rate.revenue_per_unit * unit_count
    return PricingQuote(
        cost_per_unit=rate.cost_per_unit,
        revenue_per_unit=rate.revenue_per_unit,
        total_cost=total_cost,
        total_revenue=total_revenue,
        profit=total_revenue - total_cost,
        unit_count=unit_count,
    )


def calculate_pricing(
    model_tier: ModelTier,
    resolution_tier: str,
    unit_count: int,
    table: TieredPricingTable = DEFAULT_TIERED_PRICING,
) -> PricingQuote:
    """Quote a batch of unit_count images.

    The flash rate ignores resolution_tier. The pro rate is looked up by
    resolution_tier; an unknown resolution is a caller error, never
    silently replaced by another tier.
    """
    try:
        tier = ModelTier(model_tier)
    except ValueError:
        raise PricingError(f"Unknown model tier '{model_tier}'")

    if tier == ModelTier.FLASH:
        rate = table.flash
    else:
        rate = table.pro.get(resolution_tier)
        if rate is None:
            raise PricingError(
                f"Invalid resolution '{resolution_tier}' for pro model. "
                f"Must be one of: {', '.join(table.pro)}"
            )
    return quote_units(rate, unit_count)
