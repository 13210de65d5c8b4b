"""Job tracking: drive a submitted job to exactly one terminal state.

:class:`JobTracker` owns every :class:`~arqia.core.jobs.Job` it starts.  It
supports two driving disciplines with identical terminal semantics:

Polling Mode
------------
:meth:`JobTracker.events` is an async generator.  It queries the backend,
sleeps ``poll_interval`` seconds, and repeats, for at most ``max_attempts``
queries.  After each non-terminal observation it yields a
:class:`ProgressEvent`; it finishes with exactly one :class:`TerminalEvent`.
:meth:`JobTracker.track` consumes the same stream and forwards progress to a
plain callback.

Progress is an estimate derived from the attempt index
(:func:`estimate_progress`), capped at 95% while the job is running, never
decreasing, and set to 100% only when success is observed.  It is an
approximation of typical SDXL timings, not a value reported by the backend.

Blocking Mode
-------------
:meth:`JobTracker.run_blocking` makes one backend call that waits for the
final result, bounded by an explicit deadline.  No progress is observable.

Timeouts
--------
A job still running when the attempt budget, the matching wall-clock budget
(``max_attempts x poll_interval`` on the monotonic clock), or the
blocking deadline runs out ends in ``timed_out``.  A best-effort cancel is
then sent so the backend stops spending compute on a result nobody will
collect.

Cancellation
------------
:meth:`JobTracker.cancel` flips the job to ``canceled`` locally before it
contacts the backend, and wakes the polling loop at once.  No progress event
fires after that, and the backend's acknowledgment (or failure) does not
change the outcome.  A status query still in flight when the cancel lands is
abandoned, so a slow or failing backend cannot turn a canceled job into an
error.  Canceling an unknown or finished job is a no-op.

Finished Jobs
-------------
Jobs leave the live :class:`~arqia.core.jobs.JobStore` the moment they end,
but the tracker remembers the final snapshot of the most recent
``finished_capacity`` jobs.  :meth:`JobTracker.status` answers from that
record before asking the backend, so a locally canceled or timed-out job
keeps reporting its own outcome whatever the backend says later.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import OrderedDict
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from dataclasses import dataclass

from arqia.core.backends import GenerationBackend
from arqia.core.config import ArqiaConfig
from arqia.core.errors import RedesignError
from arqia.core.images import SourceImage
from arqia.core.jobs import (
    DEFAULT_FAILURE_DETAIL,
    Job,
    JobHandle,
    JobSnapshot,
    JobState,
    JobStore,
    Prediction,
)
from arqia.core.prompt_builder import PromptPayload

logger = logging.getLogger(__name__)

CANCELED_DETAIL = "Generation was canceled"
TIMED_OUT_DETAIL = "Generation timed out"
NO_OUTPUT_DETAIL = "Backend returned no output"

# Attempt index at which the estimate would reach 100%, and the cap applied
# while the job is still running.
PROGRESS_HORIZON_ATTEMPTS = 30
PROGRESS_CAP = 95.0


def estimate_progress(attempt: int) -> float:
    """Estimated completion percentage after poll number *attempt* (0-based)."""
    return min(attempt / PROGRESS_HORIZON_ATTEMPTS * 100.0, PROGRESS_CAP)


@dataclass(frozen=True)
class ProgressEvent:
    """A non-terminal observation, or the final 100% on success."""

    job_id: str
    state: JobState
    progress: float
    attempt: int


@dataclass(frozen=True)
class TerminalEvent:
    """The single closing event of a tracked job."""

    job: Job

    @property
    def state(self) -> JobState:
        return self.job.state


TrackerEvent = ProgressEvent | TerminalEvent
ProgressCallback = Callable[[ProgressEvent], None]


class JobTracker:
    """Drives jobs on one backend from submission to a terminal state.

    Args:
        backend: Backend to query.
        store: Registry of tracked jobs; a private store is created when
            omitted.  Share one store between trackers to track many jobs.
        poll_interval: Seconds to wait between status queries.
        max_attempts: Status queries before a job is declared timed out.
        blocking_timeout: Deadline in seconds for :meth:`run_blocking`.
        finished_capacity: Final snapshots of finished jobs kept for
            :meth:`status`; the oldest are dropped first.
    """

    def __init__(
        self,
        backend: GenerationBackend,
        store: JobStore | None = None,
        *,
        poll_interval: float = 2.0,
        max_attempts: int = 60,
        blocking_timeout: float = 120.0,
        finished_capacity: int = 1024,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.backend = backend
        self.store = store if store is not None else JobStore()
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.blocking_timeout = blocking_timeout
        self._wakeups: dict[str, asyncio.Event] = {}
        self.finished_capacity = finished_capacity
        self._finished: OrderedDict[str, JobSnapshot] = OrderedDict()

    @classmethod
    def from_config(
        cls,
        backend: GenerationBackend,
        config: ArqiaConfig,
        store: JobStore | None = None,
    ) -> JobTracker:
        return cls(
            backend,
            store,
            poll_interval=config.poll_interval,
            max_attempts=config.max_poll_attempts,
            blocking_timeout=config.blocking_timeout,
        )

    # ------------------------------------------------------------------
    # Lifecycle bookkeeping.
    # ------------------------------------------------------------------

    def start(self, handle: JobHandle, style_id: str | None = None) -> Job:
        """Begin tracking the job behind *handle* in the ``submitted`` state."""
        job = Job(job_id=handle.job_id, style_id=style_id)
        self.store.add(job)
        self._wakeups[job.job_id] = asyncio.Event()
        logger.info(f"Tracking job {job.job_id}")
        return job

    def _untrack(self, job_id: str) -> None:
        self.store.remove(job_id)
        wakeup = self._wakeups.pop(job_id, None)
        if wakeup is not None:
            wakeup.set()

    def _remember(self, job: Job) -> None:
        """Keep the final snapshot of *job*, evicting the oldest beyond capacity."""
        if self.finished_capacity <= 0:
            return
        self._finished[job.job_id] = job.snapshot()
        self._finished.move_to_end(job.job_id)
        while len(self._finished) > self.finished_capacity:
            self._finished.popitem(last=False)

    def _finish(
        self,
        job: Job,
        state: JobState,
        *,
        result_url: str | None = None,
        error_detail: str | None = None,
    ) -> None:
        """Move *job* into terminal *state* and stop tracking it."""
        if job.is_terminal:
            return
        if state in (JobState.SUCCEEDED, JobState.FAILED) and job.state is JobState.SUBMITTED:
            job.transition(JobState.PROCESSING)
        job.transition(state, result_url=result_url, error_detail=error_detail)
        self._remember(job)
        self._untrack(job.job_id)

        if state is JobState.SUCCEEDED:
            logger.info(f"Job {job.job_id} succeeded after {job.attempts} poll(s)")
        else:
            logger.info(f"Job {job.job_id} ended {state.value}: {error_detail}")

    def _apply(self, job: Job, prediction: Prediction) -> None:
        """Apply one backend observation to *job*."""
        if job.is_terminal:
            return

        observed = prediction.state
        if observed is JobState.SUBMITTED:
            return
        if observed is JobState.PROCESSING:
            if job.state is JobState.SUBMITTED:
                job.transition(JobState.PROCESSING)
            return

        if observed is JobState.SUCCEEDED:
            url = prediction.output_url
            if url is None:
                self._finish(job, JobState.FAILED, error_detail=NO_OUTPUT_DETAIL)
            else:
                self._finish(job, JobState.SUCCEEDED, result_url=url)
        elif observed is JobState.FAILED:
            self._finish(job, JobState.FAILED, error_detail=prediction.error or DEFAULT_FAILURE_DETAIL)
        elif observed is JobState.CANCELED:
            self._finish(job, JobState.CANCELED, error_detail=prediction.error or CANCELED_DETAIL)
        else:
            self._finish(job, JobState.TIMED_OUT, error_detail=prediction.error or TIMED_OUT_DETAIL)

    async def _cancel_remote(self, job_id: str) -> None:
        """Best-effort backend cancel; failures are logged, never raised."""
        try:
            await self.backend.cancel(job_id)
        except RedesignError as e:
            logger.warning(f"Backend did not acknowledge cancel of job {job_id}: {e.detail}")

    def _budget_spent(self, job: Job) -> bool:
        """Whether *job* has used up the wall-clock share of its budget."""
        if self.poll_interval <= 0:
            return False
        return job.elapsed() >= self.max_attempts * self.poll_interval

    async def _pause(self, wakeup: asyncio.Event | None) -> None:
        if wakeup is None or self.poll_interval <= 0:
            await asyncio.sleep(0)
            return
        try:
            await asyncio.wait_for(wakeup.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            pass

    async def _query(self, job: Job, wakeup: asyncio.Event | None) -> Prediction | None:
        """Query the backend for *job*, giving up as soon as the job ends locally.

        Returns:
            The backend's answer, or ``None`` if the job reached a terminal
            state (for example a cancel) while the query was in flight.
        """
        if wakeup is None:
            return await self.backend.get(job.job_id)

        query = asyncio.create_task(self.backend.get(job.job_id))
        woken = asyncio.create_task(wakeup.wait())
        try:
            await asyncio.wait({query, woken}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            woken.cancel()
            if not query.done():
                query.cancel()

        if job.is_terminal:
            if query.done() and not query.cancelled() and query.exception() is not None:
                logger.debug(f"Dropped failed status query for finished job {job.job_id}")
            return None
        return query.result()

    # ------------------------------------------------------------------
    # Polling mode.
    # ------------------------------------------------------------------

    async def events(self, handle: JobHandle) -> AsyncIterator[TrackerEvent]:
        """Poll the job behind *handle*, yielding progress then one terminal event.

        The job is started automatically if :meth:`start` was not called.

        Raises:
            TransportError: If a status query fails while the job is still
                running.  The job is dropped from the store and no terminal
                event is produced.  A failure that arrives after the job has
                ended locally is ignored.
        """
        job = self.store.get(handle.job_id)
        if job is None:
            job = self.start(handle)
        wakeup = self._wakeups.get(job.job_id)

        try:
            for attempt in range(self.max_attempts):
                if job.is_terminal:
                    break

                prediction = await self._query(job, wakeup)
                if prediction is None:
                    break
                job.attempts = attempt + 1
                self._apply(job, prediction)
                if job.is_terminal:
                    break

                job.progress = max(job.progress, estimate_progress(attempt))
                yield ProgressEvent(job.job_id, job.state, job.progress, job.attempts)

                # The consumer may have canceled while handling the event.
                if job.is_terminal:
                    break
                if self._budget_spent(job):
                    break
                await self._pause(wakeup)

            if not job.is_terminal:
                logger.warning(f"Job {job.job_id} still running after {job.attempts} poll(s)")
                self._finish(job, JobState.TIMED_OUT, error_detail=TIMED_OUT_DETAIL)
                await self._cancel_remote(job.job_id)
        except RedesignError:
            if not job.is_terminal:
                self._untrack(job.job_id)
                raise
            logger.info(f"Ignoring backend error for job {job.job_id}, already {job.state.value}")
        except BaseException:
            if not job.is_terminal:
                self._untrack(job.job_id)
            raise

        if job.state is JobState.SUCCEEDED:
            yield ProgressEvent(job.job_id, job.state, 100.0, job.attempts)
        yield TerminalEvent(job)

    async def track(self, handle: JobHandle, on_progress: ProgressCallback | None = None) -> Job:
        """Poll the job behind *handle* until it reaches a terminal state.

        Args:
            handle: Handle returned by the submitter.
            on_progress: Optional callback invoked with each
                :class:`ProgressEvent`, in attempt order.

        Returns:
            The job in its terminal state.
        """
        async with aclosing(self.events(handle)) as stream:
            async for event in stream:
                if isinstance(event, TerminalEvent):
                    return event.job
                if on_progress is not None:
                    on_progress(event)
        raise RuntimeError(f"Job {handle.job_id} ended without a terminal event")

    # ------------------------------------------------------------------
    # Blocking mode.
    # ------------------------------------------------------------------

    async def run_blocking(
        self,
        image: SourceImage,
        payload: PromptPayload,
        timeout: float | None = None,
    ) -> Job:
        """Submit and wait for the final result in a single backend call.

        Args:
            image: Source room photo (already validated).
            payload: Composed prompt and parameters.
            timeout: Deadline in seconds; defaults to ``blocking_timeout``.

        Returns:
            The job in its terminal state.  It is never added to the store,
            since nothing can observe it before it finishes.

        If the local deadline expires before the backend answers, the job
        ends ``timed_out`` under a ``local_`` id.  No backend job id is known
        at that point, so no remote cancel can be sent: a prediction the
        backend had already created keeps running (and billing) until the
        backend's own limit stops it.  Backends that honour a server-side
        wait (Replicate's ``Prefer: wait``) normally answer first with a
        non-terminal status and an id, which is then canceled.

        Raises:
            SubmissionFailedError: If the backend rejects the request.
            TransportError: If the backend cannot be reached.
        """
        deadline = self.blocking_timeout if timeout is None else timeout
        try:
            prediction = await asyncio.wait_for(
                self.backend.run(image, payload, deadline), timeout=deadline
            )
        except asyncio.TimeoutError:
            job = Job(job_id=f"local_{uuid.uuid4().hex[:12]}", style_id=payload.style_id)
            logger.warning(f"Blocking generation exceeded {deadline:.0f}s deadline")
            self._finish(job, JobState.TIMED_OUT, error_detail=TIMED_OUT_DETAIL)
            return job

        job = Job(
            job_id=prediction.id or f"local_{uuid.uuid4().hex[:12]}",
            style_id=payload.style_id,
            attempts=1,
        )
        self._apply(job, prediction)
        if not job.is_terminal:
            self._finish(job, JobState.TIMED_OUT, error_detail=TIMED_OUT_DETAIL)
            if prediction.id:
                await self._cancel_remote(prediction.id)
        return job

    # ------------------------------------------------------------------
    # Cancellation and inspection.
    # ------------------------------------------------------------------

    async def cancel(self, job_id: str) -> Job | None:
        """Cancel a tracked job.

        Returns:
            The canceled job, or ``None`` when *job_id* is unknown or already
            terminal (in which case nothing happens).
        """
        job = self.store.get(job_id)
        if job is None or job.is_terminal:
            logger.info(f"Cancel of job {job_id} ignored: not running")
            return None

        self._finish(job, JobState.CANCELED, error_detail=CANCELED_DETAIL)
        await self._cancel_remote(job_id)
        return job

    async def status(self, job_id: str) -> JobSnapshot:
        """Describe *job_id* for callers that poll from outside.

        Tracked jobs are answered from memory, and so are recently finished
        ones: a job that ended locally (canceled, timed out) keeps that
        outcome whatever the backend reports afterwards.  Other ids (evicted,
        or started by another process) are looked up on the backend and
        mapped without touching the store.

        Raises:
            TransportError: If the backend lookup fails.
        """
        job = self.store.get(job_id)
        if job is not None:
            return job.snapshot()
        finished = self._finished.get(job_id)
        if finished is not None:
            return finished

        prediction = await self.backend.get(job_id)
        state = prediction.state
        result_url = error_detail = None
        if state is JobState.SUCCEEDED:
            result_url = prediction.output_url
            if result_url is None:
                state, error_detail = JobState.FAILED, NO_OUTPUT_DETAIL
        elif state is JobState.FAILED:
            error_detail = prediction.error or DEFAULT_FAILURE_DETAIL
        elif state is JobState.CANCELED:
            error_detail = prediction.error or CANCELED_DETAIL
        elif state is JobState.TIMED_OUT:
            error_detail = prediction.error or TIMED_OUT_DETAIL
        return JobSnapshot(
            job_id=job_id,
            state=state,
            progress=100.0 if state is JobState.SUCCEEDED else None,
            result_url=result_url,
            error_detail=error_detail,
        )
