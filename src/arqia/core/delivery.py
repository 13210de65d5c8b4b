"""Result delivery: turn a terminal job into the caller-facing outcome.

================  ==========================================
Terminal state    Outcome
================  ==========================================
``succeeded``     :class:`RedesignResult` with the image URL
``failed``        :class:`GenerationFailedError`
``canceled``      :class:`GenerationCanceledError`
``timed_out``     :class:`GenerationTimedOutError`
================  ==========================================

Timeouts and cancellations are distinct kinds from failures, so callers can
offer "try again" instead of treating them as a problem with the photo.
"""

from __future__ import annotations

from dataclasses import dataclass

from arqia.core.errors import (
    GenerationCanceledError,
    GenerationFailedError,
    GenerationTimedOutError,
)
from arqia.core.jobs import DEFAULT_FAILURE_DETAIL, Job, JobState


@dataclass(frozen=True)
class RedesignResult:
    """A successful redesign."""

    image_url: str
    job_id: str | None = None


def deliver(job: Job) -> RedesignResult:
    """Map a terminal *job* to a result, or raise its typed error.

    Raises:
        GenerationFailedError: The backend reported a failure.
        GenerationCanceledError: The job was canceled.
        GenerationTimedOutError: The job exceeded its time budget.
        ValueError: If *job* has not reached a terminal state.
    """
    if job.state is JobState.SUCCEEDED:
        if not job.result_url:
            raise GenerationFailedError("Backend returned no output")
        return RedesignResult(image_url=job.result_url, job_id=job.job_id)
    if job.state is JobState.CANCELED:
        raise GenerationCanceledError(job.error_detail or "Generation was canceled")
    if job.state is JobState.TIMED_OUT:
        raise GenerationTimedOutError(job.error_detail or "Generation timed out")
    if job.state is JobState.FAILED:
        raise GenerationFailedError(job.error_detail or DEFAULT_FAILURE_DETAIL)
    raise ValueError(f"Job {job.job_id} has not reached a terminal state ({job.state.value})")
