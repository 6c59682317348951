"""Tests for the job registry and its retention policy."""

import pytest

from kmloverlay.exceptions import InvalidStateTransitionError, JobNotFoundError
from kmloverlay.models.job import Job, JobState
from kmloverlay.services.job_store import JobStore


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock) -> JobStore:
    return JobStore(retention_seconds=30, cancelled_retention_seconds=5, clock=clock)


def _finished(store: JobStore, job_id: str, state: JobState) -> Job:
    job = Job(id=job_id)
    store.add(job)
    job.transition_to(JobState.RUNNING)
    job.transition_to(state)
    store.mark_finished(job)
    return job


class TestJobStateMachine:
    """Tests for Job.transition_to."""

    def test_happy_path(self):
        job = Job(id="a")
        job.transition_to(JobState.RUNNING)
        assert job.started_at is not None
        job.transition_to(JobState.DONE)
        assert job.finished_at is not None
        assert job.state.is_terminal

    def test_cancel_while_pending(self):
        job = Job(id="a")
        job.transition_to(JobState.CANCELLED)
        assert job.state == JobState.CANCELLED
        assert job.started_at is None

    def test_terminal_is_final(self):
        job = Job(id="a")
        job.transition_to(JobState.RUNNING)
        job.transition_to(JobState.FAILED)
        with pytest.raises(InvalidStateTransitionError):
            job.transition_to(JobState.DONE)

    def test_pending_cannot_finish_directly(self):
        with pytest.raises(InvalidStateTransitionError):
            Job(id="a").transition_to(JobState.DONE)

    def test_to_dict(self):
        data = Job(id="a").to_dict()
        assert data["id"] == "a"
        assert data["state"] == "pending"
        assert data["started_at"] is None


class TestJobStore:
    """Tests for JobStore expiry driven by the injected clock."""

    def test_running_jobs_never_expire(self, store, clock):
        job = Job(id="a")
        store.add(job)
        clock.advance(3600)
        assert store.get("a") is job

    def test_finished_job_expires_after_retention(self, store, clock):
        _finished(store, "a", JobState.DONE)
        clock.advance(29)
        assert store.get("a") is not None
        clock.advance(1)
        assert store.get("a") is None

    def test_cancelled_job_expires_sooner(self, store, clock):
        _finished(store, "a", JobState.CANCELLED)
        clock.advance(4)
        assert store.get("a") is not None
        clock.advance(1)
        assert store.get("a") is None

    def test_require_unknown(self, store):
        with pytest.raises(JobNotFoundError):
            store.require("missing")

    def test_list_jobs(self, store, clock):
        store.add(Job(id="a"))
        _finished(store, "b", JobState.FAILED)
        assert {j.id for j in store.list_jobs()} == {"a", "b"}
        clock.advance(31)
        assert [j.id for j in store.list_jobs()] == ["a"]
        assert len(store) == 1
