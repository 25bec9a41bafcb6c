"""Pricing quotes for any workflow kind."""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from smart_resizer.api.dependencies import get_container
from smart_resizer.exceptions import ValidationError
from smart_resizer.pricing.workflows import QuoteRequest
from smart_resizer.services.container import ServiceContainer

router = APIRouter()


class PricingQuoteRequest(BaseModel):
    workflow_type: str
    unit_count: int = Field(..., ge=0)
    model: Optional[str] = None
    resolution: Optional[str] = None


@router.post("/pricing/quote")
async def quote(
    request: PricingQuoteRequest,
    container: ServiceContainer = Depends(get_container),
):
    try:
        config = container.pricing.for_workflow(request.workflow_type)
    except KeyError:
        raise ValidationError(f"Unknown workflow type '{request.workflow_type}'")

    result = config.quote(QuoteRequest(
        unit_count=request.unit_count,
        model=request.model,
        resolution=request.resolution,
    ))
    return {
        "success": True,
        "data": {"workflowType": config.workflow_type, **result.model_dump()},
    }
