"""Progress and batch statistics derived from a job's Results.

Nothing here is cached or stored: every call reflects the Results exactly
as they were read.
"""

import math
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel

from smart_resizer.jobs.models import FormatResult, ResizeJob, ResultStatus
from smart_resizer.pricing.calculator import PricingQuote
from smart_resizer.pricing.workflows import QuoteRequest, SmartResizerConfig


class JobProgress(BaseModel):
    total: int
    completed: int
    failed: int
    pending: int
    percent: int


class JobStats(BaseModel):
    progress: JobProgress
    avg_processing_time_ms: float
    completion_percentage: float
    quoted: Optional[PricingQuote] = None
    settled: PricingQuote


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _latest_per_format(job: ResizeJob, results: Iterable[FormatResult]) -> Dict[str, FormatResult]:
    """One Result per requested format; rows for formats outside the request are ignored."""
    requested = set(job.formats_requested)
    return {r.format_key: r for r in results if r.format_key in requested}


def compute_progress(job: ResizeJob, results: Iterable[FormatResult]) -> JobProgress:
    """Counts by outcome and whole-number completion percentage.

    pending covers both formats with a pending Result and formats with no
    Result yet, so completed + failed + pending always equals total.
    """
    by_format = _latest_per_format(job, results)
    total = len(set(job.formats_requested))
    completed = sum(1 for r in by_format.values() if r.status == ResultStatus.COMPLETED)
    failed = sum(1 for r in by_format.values() if r.status == ResultStatus.FAILED)
    percent = round_half_up(100 * completed / total) if total > 0 else 0
    return JobProgress(
        total=total,
        completed=completed,
        failed=failed,
        pending=total - completed - failed,
        percent=percent,
    )


def compute_stats(
    job: ResizeJob,
    results: List[FormatResult],
    pricing: SmartResizerConfig,
) -> JobStats:
    """Batch statistics plus a settlement quote over the formats actually delivered."""
    progress = compute_progress(job, results)
    by_format = _latest_per_format(job, results)

    timings = [
        r.processing_time_ms for r in by_format.values()
        if r.is_terminal and r.processing_time_ms is not None
    ]
    avg_ms = round(sum(timings) / len(timings), 2) if timings else 0.0

    terminal = progress.completed + progress.failed
    completion = round(100 * terminal / progress.total, 2) if progress.total > 0 else 0.0

    return JobStats(
        progress=progress,
        avg_processing_time_ms=avg_ms,
        completion_percentage=completion,
        quoted=job.pricing_details,
        settled=pricing.quote(QuoteRequest(unit_count=progress.completed)),
    )
