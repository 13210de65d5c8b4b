"""Job records, lifecycle states, and the in-memory job store.

A :class:`Job` represents one in-flight or completed remote generation.  Its
lifecycle is a small state machine::

    submitted ──► processing ──► succeeded
        │             ├────────► failed
        │             ├────────► canceled
        │             └────────► timed_out
        ├──────────────────────► canceled
        └──────────────────────► timed_out

``submitted`` and ``processing`` are the only non-terminal states; nothing
leaves a terminal state.  :meth:`Job.transition` enforces this.

:class:`JobStore` is the registry of jobs that are still being tracked.  It
is an explicit object injected into the tracker (never a module global) and
is safe to share between threads.  Jobs are removed the moment they reach a
terminal state.

:class:`Prediction` is the backend-neutral view of one status answer from an
inference backend, and :func:`extract_output_url` holds the output policy.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from arqia.core.errors import InvalidTransitionError

logger = logging.getLogger(__name__)


class JobState(str, Enum):
    """Lifecycle state of a generation job."""

    SUBMITTED = "submitted"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self not in (JobState.SUBMITTED, JobState.PROCESSING)


_ALLOWED_TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.SUBMITTED: frozenset({JobState.PROCESSING, JobState.CANCELED, JobState.TIMED_OUT}),
    JobState.PROCESSING: frozenset(
        {JobState.SUCCEEDED, JobState.FAILED, JobState.CANCELED, JobState.TIMED_OUT}
    ),
}

# Backend status strings → lifecycle states.  Replicate reports "starting"
# before a worker picks the job up; that is still "submitted" for us.
_BACKEND_STATUS_MAP: dict[str, JobState] = {
    "starting": JobState.SUBMITTED,
    "submitted": JobState.SUBMITTED,
    "queued": JobState.SUBMITTED,
    "processing": JobState.PROCESSING,
    "succeeded": JobState.SUCCEEDED,
    "completed": JobState.SUCCEEDED,
    "failed": JobState.FAILED,
    "canceled": JobState.CANCELED,
    "cancelled": JobState.CANCELED,
    "timed_out": JobState.TIMED_OUT,
}

DEFAULT_FAILURE_DETAIL = "Generation failed"


def map_backend_status(status: str | None) -> JobState:
    """Translate a backend status string into a :class:`JobState`.

    Unrecognised statuses are treated as still processing; the client-side
    time budget guarantees such a job still terminates.
    """
    state = _BACKEND_STATUS_MAP.get((status or "").strip().lower())
    if state is None:
        logger.warning(f"Unrecognised backend status {status!r}; treating as processing")
        return JobState.PROCESSING
    return state


def extract_output_url(output: Any) -> str | None:
    """Pick the canonical image URL from a backend ``output`` field.

    Output policy: when the backend returns a list of outputs, the **first**
    element is the result.  Only one output is requested per job, so any
    further elements are ignored.  A bare string is returned as is; anything
    else (``None``, empty list, non-string entries) yields ``None``.
    """
    if isinstance(output, (list, tuple)):
        output = output[0] if output else None
    if isinstance(output, str) and output:
        return output
    return None


@dataclass(frozen=True)
class Prediction:
    """One status answer from an inference backend.

    Attributes:
        id: Backend job identifier.
        status: Raw backend status string.
        output: Raw ``output`` field (string, list of strings, or ``None``).
        error: Backend error message, if any.
    """

    id: str
    status: str
    output: Any = None
    error: str | None = None

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> Prediction:
        error = data.get("error")
        return cls(
            id=str(data.get("id", "")),
            status=str(data.get("status", "")),
            output=data.get("output"),
            error=str(error) if error else None,
        )

    @property
    def state(self) -> JobState:
        return map_backend_status(self.status)

    @property
    def output_url(self) -> str | None:
        return extract_output_url(self.output)


@dataclass(frozen=True)
class JobHandle:
    """What a successful submission returns: the backend's job id."""

    job_id: str
    status: str = "submitted"


@dataclass(frozen=True)
class JobSnapshot:
    """Immutable, caller-facing view of a job at one moment."""

    job_id: str
    state: JobState
    progress: float | None = None
    result_url: str | None = None
    error_detail: str | None = None


@dataclass
class Job:
    """One remote generation, owned by a single tracker.

    Attributes:
        job_id: Opaque id issued by the backend.
        style_id: Style the job was submitted with, for logging.
        state: Current lifecycle state.
        created_at: ``time.monotonic()`` at creation; used for the budget.
        created_at_wall: UTC creation time, for display.
        result_url: Output image URL; set only in ``succeeded``.
        error_detail: Failure description; set only in ``failed``,
            ``canceled`` and ``timed_out``.
        attempts: Status polls performed so far.
        progress: Last progress estimate reported, in percent.
    """

    job_id: str
    style_id: str | None = None
    state: JobState = JobState.SUBMITTED
    created_at: float = field(default_factory=time.monotonic)
    created_at_wall: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    result_url: str | None = None
    error_detail: str | None = None
    attempts: int = 0
    progress: float = 0.0

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def elapsed(self, now: float | None = None) -> float:
        """Seconds since the job was created, on the monotonic clock."""
        return (time.monotonic() if now is None else now) - self.created_at

    def transition(
        self,
        new_state: JobState,
        *,
        result_url: str | None = None,
        error_detail: str | None = None,
    ) -> None:
        """Move to *new_state*, recording the result or error detail.

        Raises:
            InvalidTransitionError: If the lifecycle does not allow the move.
        """
        allowed = _ALLOWED_TRANSITIONS.get(self.state, frozenset())
        if new_state not in allowed:
            raise InvalidTransitionError(
                f"Job {self.job_id}: cannot move from {self.state.value} to {new_state.value}"
            )
        logger.debug(f"Job {self.job_id}: {self.state.value} -> {new_state.value}")
        self.state = new_state
        if new_state is JobState.SUCCEEDED:
            self.result_url = result_url
            self.progress = 100.0
        elif new_state.is_terminal:
            self.error_detail = error_detail

    def snapshot(self) -> JobSnapshot:
        return JobSnapshot(
            job_id=self.job_id,
            state=self.state,
            progress=self.progress,
            result_url=self.result_url,
            error_detail=self.error_detail,
        )


class JobStore:
    """Thread-safe registry of jobs that are still being tracked.

    One store is normally shared by every tracker in a process (for example
    the relay serving several users); each job is keyed by its unique id, so
    jobs never interfere with one another.
    """

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()

    def add(self, job: Job) -> None:
        """Register *job*.

        Raises:
            ValueError: If a job with the same id is already tracked.
        """
        with self._lock:
            if job.job_id in self._jobs:
                raise ValueError(f"Job {job.job_id} is already tracked")
            self._jobs[job.job_id] = job

    def get(self, job_id: str) -> Job | None:
        with self._lock:
            return self._jobs.get(job_id)

    def remove(self, job_id: str) -> Job | None:
        """Drop *job_id* from the store, returning the job if it was present."""
        with self._lock:
            return self._jobs.pop(job_id, None)

    def job_ids(self) -> list[str]:
        with self._lock:
            return list(self._jobs)

    def __contains__(self, job_id: object) -> bool:
        with self._lock:
            return job_id in self._jobs

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)
