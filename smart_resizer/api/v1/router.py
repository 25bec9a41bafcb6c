"""Aggregate all v1 API routers."""

from fastapi import APIRouter
from smart_resizer.api.v1.health import router as health_router
from smart_resizer.api.v1.formats import router as formats_router
from smart_resizer.api.v1.jobs import router as jobs_router
from smart_resizer.api.v1.pricing import router as pricing_router

v1_router = APIRouter(prefix="/api/v1")
v1_router.include_router(health_router, tags=["health"])
v1_router.include_router(formats_router, tags=["formats"])
v1_router.include_router(jobs_router, tags=["jobs"])
v1_router.include_router(pricing_router, tags=["pricing"])
