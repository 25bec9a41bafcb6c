"""Workflow kinds and their pricing configuration.

Each workflow kind is its own config model tagged by ``workflow_type``. A
config blob is parsed through the discriminated union, and quoting is
dispatched to the variant instead of branching on the type string.
"""

import json
from typing import Annotated, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from smart_resizer.pricing.calculator import (
    DEFAULT_TIERED_PRICING,
    PricingQuote,
    TieredPricingTable,
    UnitRate,
    calculate_pricing,
    quote_units,
    resolve_tier,
)


class QuoteRequest(BaseModel):
    """What is being priced. Only nano_banana reads model and resolution."""
    unit_count: int = Field(..., ge=0)
    model: Optional[str] = None
    resolution: Optional[str] = None


class NanoBananaConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    workflow_type: Literal["nano_banana"] = "nano_banana"
    pricing: TieredPricingTable = DEFAULT_TIERED_PRICING
    default_model: str = "gemini-2.5-flash-image"
    default_resolution: str = "1K"

    def quote(self, request: QuoteRequest) -> PricingQuote:
        tier = resolve_tier(request.model or self.default_model)
        return calculate_pricing(
            tier,
            request.resolution or self.default_resolution,
            request.unit_count,
            self.pricing,
        )


class SmartResizerConfig(BaseModel):
    """Priced per generated format."""
    model_config = ConfigDict(frozen=True)

    workflow_type: Literal["smart_resizer"] = "smart_resizer"
    per_format: UnitRate = UnitRate(cost_per_unit=0.001, revenue_per_unit=0.01)

    def quote(self, request: QuoteRequest) -> PricingQuote:
        return quote_units(self.per_format, request.unit_count)


class RoomRedesignerConfig(BaseModel):
    """Priced per input room image."""
    model_config = ConfigDict(frozen=True)

    workflow_type: Literal["room_redesigner"] = "room_redesigner"
    per_image: UnitRate = UnitRate(cost_per_unit=0.01, revenue_per_unit=0.05)

    def quote(self, request: QuoteRequest) -> PricingQuote:
        return quote_units(self.per_image, request.unit_count)


WorkflowConfig = Annotated[
    Union[NanoBananaConfig, SmartResizerConfig, RoomRedesignerConfig],
    Field(discriminator="workflow_type"),
]

_workflow_adapter = TypeAdapter(WorkflowConfig)


def parse_workflow_config(data: Dict) -> Union[NanoBananaConfig, SmartResizerConfig, RoomRedesignerConfig]:
    """Parse a config blob into its workflow variant (pydantic ValidationError on bad input)."""
    return _workflow_adapter.validate_python(data)


class PricingCatalog(BaseModel):
    """Pricing configuration for every workflow kind, loaded once at startup."""
    model_config = ConfigDict(frozen=True)

    nano_banana: NanoBananaConfig = NanoBananaConfig()
    smart_resizer: SmartResizerConfig = SmartResizerConfig()
    room_redesigner: RoomRedesignerConfig = RoomRedesignerConfig()

    def for_workflow(self, workflow_type: str):
        config = getattr(self, workflow_type, None)
        if not isinstance(config, (NanoBananaConfig, SmartResizerConfig, RoomRedesignerConfig)):
            raise KeyError(f"Unknown workflow type '{workflow_type}'")
        return config


def load_pricing_catalog(path: Optional[str] = None) -> PricingCatalog:
    """Load pricing tables from a JSON file, or return the built-in defaults."""
    if not path:
        return PricingCatalog()
    with open(path, "r", encoding="utf-8") as fh:
        raw = json.load(fh)
    return PricingCatalog(
        **{
            name: parse_workflow_config({"workflow_type": name, **cfg})
            for name, cfg in raw.items()
        }
    )
