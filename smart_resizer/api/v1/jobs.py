"""Smart Resizer job API: submit a batch, poll it, read its stats, retry failures."""

import asyncio
import json
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile

from smart_resizer.api.dependencies import get_container
from smart_resizer.auth.supabase_auth import Owner, get_current_owner
from smart_resizer.exceptions import ValidationError
from smart_resizer.jobs.models import Quality
from smart_resizer.services.container import ServiceContainer
from smart_resizer.services.progress import compute_progress, compute_stats
from smart_resizer.services.retry import load_owned_job

router = APIRouter(prefix="/smart-resizer")


def _parse_formats(raw: Optional[str]) -> List[str]:
    """Decode the JSON-encoded list of format keys sent as a form field."""
    if raw is None or raw.strip() == "":
        return []
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        raise ValidationError("formats must be a JSON-encoded list of format keys")
    if not isinstance(value, list) or not all(isinstance(k, str) for k in value):
        raise ValidationError("formats must be a JSON-encoded list of format keys")
    return value


def _parse_quality(raw: Optional[str]) -> Quality:
    if not raw:
        return Quality.BALANCED
    try:
        return Quality(raw)
    except ValueError:
        allowed = ", ".join(q.value for q in Quality)
        raise ValidationError(f"Invalid quality '{raw}'. Must be one of: {allowed}")


@router.post("/jobs", status_code=201)
async def create_job(
    master_image: Optional[UploadFile] = File(None, alias="masterImage"),
    formats: Optional[str] = Form(None),
    quality: Optional[str] = Form(None),
    owner: Owner = Depends(get_current_owner),
    container: ServiceContainer = Depends(get_container),
):
    """Create a resize job. Returns as soon as the job is queued."""
    requested = _parse_formats(formats)
    level = _parse_quality(quality)
    image = await master_image.read() if master_image is not None else None
    filename = master_image.filename if master_image is not None else None

    job = await container.admission.admit(owner, image, filename, requested, level)
    return {
        "success": True,
        "data": {
            "jobId": job.id,
            "status": job.status.value,
            "formatsRequested": job.formats_requested,
            "masterImageUrl": job.master_image_url,
            "quality": job.quality.value,
            "pricing": job.pricing_details.model_dump() if job.pricing_details else None,
            "createdAt": job.created_at.isoformat(),
        },
    }


@router.get("/jobs")
async def list_jobs(
    owner: Owner = Depends(get_current_owner),
    container: ServiceContainer = Depends(get_container),
):
    jobs = await asyncio.to_thread(container.repository.list_jobs, owner.client_id)
    return {"success": True, "data": {"jobs": [j.to_public() for j in jobs]}}


@router.get("/jobs/{job_id}")
async def get_job(
    job_id: str,
    owner: Owner = Depends(get_current_owner),
    container: ServiceContainer = Depends(get_container),
):
    """Job record, progress counts and every per-format Result."""
    job = await asyncio.to_thread(load_owned_job, container.repository, owner, job_id)
    results = await asyncio.to_thread(container.repository.list_results, job.id)
    progress = compute_progress(job, results)
    return {
        "success": True,
        "data": {
            "job": job.to_public(),
            "progress": progress.model_dump(),
            "results": [r.to_public() for r in results],
        },
    }


@router.get("/jobs/{job_id}/stats")
async def get_job_stats(
    job_id: str,
    owner: Owner = Depends(get_current_owner),
    container: ServiceContainer = Depends(get_container),
):
    job = await asyncio.to_thread(load_owned_job, container.repository, owner, job_id)
    results = await asyncio.to_thread(container.repository.list_results, job.id)
    stats = compute_stats(job, results, container.pricing.smart_resizer)
    return {"success": True, "data": {"jobId": job.id, **stats.model_dump()}}


@router.post("/jobs/{job_id}/retry")
async def retry_job(
    job_id: str,
    owner: Owner = Depends(get_current_owner),
    container: ServiceContainer = Depends(get_container),
):
    """Re-queue only the formats whose Result is failed."""
    data = await container.retry.retry(owner, job_id)
    return {"success": True, "data": data}
