"""Tests for arqia.core.jobs — lifecycle, status mapping, output policy, store."""

from __future__ import annotations

import threading

import pytest

from arqia.core.errors import InvalidTransitionError
from arqia.core.jobs import (
    Job,
    JobState,
    JobStore,
    Prediction,
    extract_output_url,
    map_backend_status,
)


class TestJobTransitions:
    """Job.transition enforces the lifecycle."""

    def test_happy_path(self):
        job = Job(job_id="job_1")
        job.transition(JobState.PROCESSING)
        job.transition(JobState.SUCCEEDED, result_url="https://cdn.test/out.jpg")
        assert job.state is JobState.SUCCEEDED
        assert job.result_url == "https://cdn.test/out.jpg"
        assert job.progress == 100.0
        assert job.error_detail is None

    def test_failure_records_detail(self):
        job = Job(job_id="job_1", state=JobState.PROCESSING)
        job.transition(JobState.FAILED, error_detail="NSFW content detected")
        assert job.error_detail == "NSFW content detected"
        assert job.result_url is None

    @pytest.mark.parametrize("state", [JobState.CANCELED, JobState.TIMED_OUT])
    def test_submitted_can_end_early(self, state):
        job = Job(job_id="job_1")
        job.transition(state, error_detail="stopped")
        assert job.is_terminal

    def test_submitted_cannot_succeed_directly(self):
        job = Job(job_id="job_1")
        with pytest.raises(InvalidTransitionError):
            job.transition(JobState.SUCCEEDED, result_url="https://cdn.test/out.jpg")

    @pytest.mark.parametrize(
        "terminal",
        [JobState.SUCCEEDED, JobState.FAILED, JobState.CANCELED, JobState.TIMED_OUT],
    )
    def test_terminal_states_are_final(self, terminal):
        job = Job(job_id="job_1", state=terminal)
        for target in JobState:
            with pytest.raises(InvalidTransitionError):
                job.transition(target)

    def test_snapshot(self):
        job = Job(job_id="job_1", state=JobState.PROCESSING, progress=40.0)
        snapshot = job.snapshot()
        assert snapshot.job_id == "job_1"
        assert snapshot.state is JobState.PROCESSING
        assert snapshot.progress == 40.0

    def test_elapsed_uses_monotonic_origin(self):
        job = Job(job_id="job_1", created_at=100.0)
        assert job.elapsed(now=112.5) == 12.5


class TestStatusMapping:
    """Backend status strings map onto lifecycle states."""

    @pytest.mark.parametrize(
        "status, state",
        [
            ("starting", JobState.SUBMITTED),
            ("processing", JobState.PROCESSING),
            ("succeeded", JobState.SUCCEEDED),
            ("failed", JobState.FAILED),
            ("canceled", JobState.CANCELED),
            ("cancelled", JobState.CANCELED),
            ("Succeeded", JobState.SUCCEEDED),
        ],
    )
    def test_known_statuses(self, status, state):
        assert map_backend_status(status) is state

    def test_unknown_status_is_processing(self):
        assert map_backend_status("warming_up") is JobState.PROCESSING
        assert map_backend_status(None) is JobState.PROCESSING


class TestOutputPolicy:
    """The first output element is the result."""

    def test_first_of_many(self):
        assert extract_output_url(["urlA", "urlB"]) == "urlA"

    def test_bare_string(self):
        assert extract_output_url("https://cdn.test/out.jpg") == "https://cdn.test/out.jpg"

    @pytest.mark.parametrize("output", [None, [], "", [None], 42])
    def test_missing_output(self, output):
        assert extract_output_url(output) is None

    def test_prediction_from_json(self):
        prediction = Prediction.from_json(
            {"id": "abc", "status": "succeeded", "output": ["urlA", "urlB"], "error": None}
        )
        assert prediction.id == "abc"
        assert prediction.state is JobState.SUCCEEDED
        assert prediction.output_url == "urlA"
        assert prediction.error is None


class TestJobStore:
    """JobStore registry operations."""

    def test_add_get_remove(self):
        store = JobStore()
        job = Job(job_id="job_1")
        store.add(job)
        assert store.get("job_1") is job
        assert "job_1" in store
        assert store.remove("job_1") is job
        assert store.get("job_1") is None
        assert len(store) == 0

    def test_duplicate_rejected(self):
        store = JobStore()
        store.add(Job(job_id="job_1"))
        with pytest.raises(ValueError, match="already tracked"):
            store.add(Job(job_id="job_1"))

    def test_remove_missing_is_noop(self):
        assert JobStore().remove("nope") is None

    def test_concurrent_adds_keep_every_job(self):
        store = JobStore()

        def add_range(start: int) -> None:
            for i in range(start, start + 100):
                store.add(Job(job_id=f"job_{i}"))

        threads = [threading.Thread(target=add_range, args=(n * 100,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert len(store) == 400
        assert sorted(store.job_ids()) == sorted(f"job_{i}" for i in range(400))
