"""
Unit tests for progress counts and batch statistics.
"""

import itertools

import pytest

from smart_resizer.jobs.models import FormatResult, ResizeJob, ResultStatus
from smart_resizer.pricing.workflows import SmartResizerConfig
from smart_resizer.services.progress import compute_progress, compute_stats, round_half_up

KEYS = ["a", "b", "c", "d"]


def _job(keys=KEYS):
    return ResizeJob(
        owner_ref="client-1",
        master_image_url="u",
        master_storage_path="p",
        master_content_type="image/png",
        formats_requested=keys,
    )


def _result(job, key, status, ms=None):
    return FormatResult(job_id=job.id, format_key=key, status=status, processing_time_ms=ms)


@pytest.mark.unit
class TestComputeProgress:

    def test_no_results_yet(self):
        job = _job()
        progress = compute_progress(job, [])
        assert (progress.total, progress.completed, progress.failed, progress.pending) == (4, 0, 0, 4)
        assert progress.percent == 0

    def test_half_done(self):
        job = _job(["a", "b"])
        progress = compute_progress(job, [_result(job, "a", ResultStatus.COMPLETED)])
        assert progress.percent == 50
        assert progress.pending == 1

    def test_pending_results_count_as_pending(self):
        job = _job()
        results = [
            _result(job, "a", ResultStatus.COMPLETED),
            _result(job, "b", ResultStatus.PENDING),
            _result(job, "c", ResultStatus.FAILED),
        ]
        progress = compute_progress(job, results)
        assert (progress.completed, progress.failed, progress.pending) == (1, 1, 2)

    def test_results_outside_request_ignored(self):
        job = _job(["a"])
        results = [_result(job, "a", ResultStatus.COMPLETED), _result(job, "zzz", ResultStatus.FAILED)]
        progress = compute_progress(job, results)
        assert (progress.total, progress.failed, progress.percent) == (1, 0, 100)

    def test_empty_request_is_zero_percent(self):
        progress = compute_progress(_job([]), [])
        assert progress.total == 0
        assert progress.percent == 0

    def test_counts_always_sum_to_total(self):
        job = _job()
        statuses = [None, ResultStatus.PENDING, ResultStatus.COMPLETED, ResultStatus.FAILED]
        for combo in itertools.product(statuses, repeat=len(KEYS)):
            results = [_result(job, k, s) for k, s in zip(KEYS, combo) if s is not None]
            progress = compute_progress(job, results)
            assert progress.completed + progress.failed + progress.pending == progress.total
            assert progress.percent == round_half_up(100 * progress.completed / progress.total)
            if progress.percent == 100:
                assert progress.pending == 0

    @pytest.mark.parametrize("value,expected", [(12.5, 13), (37.5, 38), (66.66, 67), (0.4, 0)])
    def test_round_half_up(self, value, expected):
        assert round_half_up(value) == expected


@pytest.mark.unit
class TestComputeStats:

    def test_stats_with_mixed_outcome(self):
        job = _job()
        results = [
            _result(job, "a", ResultStatus.COMPLETED, 100),
            _result(job, "b", ResultStatus.COMPLETED, 300),
            _result(job, "c", ResultStatus.FAILED, 50),
            _result(job, "d", ResultStatus.PENDING),
        ]
        stats = compute_stats(job, results, SmartResizerConfig())

        assert stats.progress.completed == 2
        assert stats.avg_processing_time_ms == pytest.approx(150.0)
        assert stats.completion_percentage == 75.0
        assert stats.settled.unit_count == 2
        assert stats.settled.total_revenue == pytest.approx(0.02)
        assert stats.quoted is None

    def test_stats_without_results(self):
        stats = compute_stats(_job(), [], SmartResizerConfig())
        assert stats.avg_processing_time_ms == 0.0
        assert stats.completion_percentage == 0.0
        assert stats.settled.total_cost == 0
