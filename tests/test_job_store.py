"""Tests for the file job store: compare-and-set transitions and progress clamping."""

from datetime import timedelta

import pytest

from ticketforge.jobs import Job, JobStatus, new_job_id
from ticketforge.jobs.models import ACTIVE_STATUSES, utcnow

from conftest import DATABASE_REQUEST


def _job(**kwargs) -> Job:
    return Job(id=new_job_id(), scope="SindicatoX", request_text=DATABASE_REQUEST, **kwargs)


class TestJobStatus:

    def test_forward_transitions_allowed(self):
        assert JobStatus.PENDING.can_become(JobStatus.PROCESSING)
        assert JobStatus.PENDING.can_become(JobStatus.ERROR)
        assert JobStatus.PROCESSING.can_become(JobStatus.DONE)
        assert JobStatus.PROCESSING.can_become(JobStatus.PROCESSING)

    def test_backward_and_terminal_transitions_refused(self):
        assert not JobStatus.PROCESSING.can_become(JobStatus.PENDING)
        assert not JobStatus.DONE.can_become(JobStatus.ERROR)
        assert not JobStatus.ERROR.can_become(JobStatus.DONE)

    def test_job_ids_are_prefixed_and_unique(self):
        a, b = new_job_id(), new_job_id()
        assert a.startswith("job_") and len(a) == 20
        assert a != b


class TestFileJobStore:

    def test_create_and_get_roundtrip(self, job_store):
        job = job_store.create(_job())
        loaded = job_store.get(job.id)
        assert loaded == job

    def test_get_unknown_or_malformed_id(self, job_store):
        assert job_store.get("job_doesnotexist") is None
        assert job_store.get("../etc/passwd") is None

    def test_update_applies_when_status_matches(self, job_store):
        job = job_store.create(_job())
        updated = job_store.update(
            job.id,
            from_statuses={JobStatus.PENDING},
            status=JobStatus.PROCESSING,
            progress_percent=10,
        )
        assert updated.status is JobStatus.PROCESSING
        assert updated.progress_percent == 10
        assert updated.updated_at >= job.updated_at
        assert job_store.get(job.id).status is JobStatus.PROCESSING

    def test_update_refused_when_status_does_not_match(self, job_store):
        job = job_store.create(_job())
        result = job_store.update(
            job.id, from_statuses={JobStatus.PROCESSING}, status=JobStatus.DONE, result="x"
        )
        assert result is None
        assert job_store.get(job.id).status is JobStatus.PENDING

    def test_done_job_is_never_overwritten_by_timeout(self, job_store):
        job = job_store.create(_job(status=JobStatus.PROCESSING))
        job_store.update(
            job.id, from_statuses={JobStatus.PROCESSING}, status=JobStatus.DONE, result="ticket"
        )
        assert job_store.update(
            job.id, from_statuses=ACTIVE_STATUSES, status=JobStatus.ERROR, message="timeout"
        ) is None
        final = job_store.get(job.id)
        assert final.status is JobStatus.DONE
        assert final.result == "ticket"

    def test_illegal_transition_is_a_programming_error(self, job_store):
        job = job_store.create(_job())
        with pytest.raises(ValueError):
            job_store.update(job.id, from_statuses={JobStatus.DONE}, status=JobStatus.ERROR)

    def test_immutable_fields_rejected(self, job_store):
        job = job_store.create(_job())
        with pytest.raises(ValueError):
            job_store.update(job.id, from_statuses={JobStatus.PENDING}, scope="other")

    def test_progress_never_decreases(self, job_store):
        job = job_store.create(_job(status=JobStatus.PROCESSING))
        job_store.update(job.id, from_statuses={JobStatus.PROCESSING}, progress_percent=60)
        updated = job_store.update(job.id, from_statuses={JobStatus.PROCESSING}, progress_percent=20)
        assert updated.progress_percent == 60

    def test_list_active_filters_terminal_and_recent(self, job_store):
        old = job_store.create(_job(updated_at=utcnow() - timedelta(hours=1)))
        fresh = job_store.create(_job(status=JobStatus.PROCESSING))
        job_store.create(_job(status=JobStatus.DONE, result="x"))

        assert {j.id for j in job_store.list_active()} == {old.id, fresh.id}
        cutoff = utcnow() - timedelta(minutes=10)
        assert [j.id for j in job_store.list_active(updated_before=cutoff)] == [old.id]

    def test_unreadable_files_are_skipped(self, job_store, tmp_path):
        job_store.create(_job())
        (tmp_path / "jobs" / "job_broken.json").write_text("{not json", encoding="utf-8")
        assert len(job_store.list_active()) == 1

    def test_jobs_survive_a_new_store_instance(self, job_store, tmp_path):
        from ticketforge.jobs import FileJobStore

        job = job_store.create(_job())
        assert FileJobStore(tmp_path / "jobs").get(job.id) == job
