"""Format catalog listing."""

from typing import Optional

from fastapi import APIRouter, Depends

from smart_resizer.api.dependencies import get_container
from smart_resizer.formats.catalog import Platform
from smart_resizer.services.container import ServiceContainer

router = APIRouter(prefix="/smart-resizer")


@router.get("/formats")
async def list_formats(
    platform: Optional[Platform] = None,
    container: ServiceContainer = Depends(get_container),
):
    """All formats in catalog order, or only those of one platform."""
    catalog = container.catalog
    formats = [spec.to_dict() for spec in catalog.list_formats(platform)]
    return {
        "success": True,
        "data": {
            "formats": formats,
            "packs": {name: list(keys) for name, keys in catalog.packs.items()},
            "totalCount": len(formats),
        },
    }
