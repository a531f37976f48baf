"""
Tests for fiscal_ingestion.services.worker -- ImportWorker.

Runs against a file-backed SQLite database so the worker's per-chunk
sessions and the test's own sessions see each other's commits.
"""

import time
from uuid import uuid4

import pytest

from fiscal_ingestion.domain.types import ImportJobStatus
from fiscal_ingestion.models.import_job import ImportJobModel
from fiscal_ingestion.services.import_service import ImportService
from fiscal_ingestion.services.view_refresh import NullViewRefresher
from fiscal_ingestion.services.worker import ImportWorker, default_worker_id

COMPANY_ID = uuid4()


@pytest.fixture
def service_factory(ingestion_settings, clock):
    def _factory(session) -> ImportService:
        return ImportService(
            session=session,
            settings=ingestion_settings,
            clock=clock,
            view_refresher=NullViewRefresher(),
        )

    return _factory


@pytest.fixture
def worker(file_session_factory, service_factory):
    w = ImportWorker(
        session_factory=file_session_factory,
        service_factory=service_factory,
        poll_interval_seconds=0.01,
        worker_id="worker-test",
    )
    yield w
    w.stop(timeout=5.0)


def _start(session_factory, service_factory, path):
    session = session_factory()
    try:
        job_id = service_factory(session).start_import(COMPANY_ID, path).job_id
        session.commit()
        return job_id
    finally:
        session.close()


def _status(session_factory, service_factory, job_id):
    session = session_factory()
    try:
        return service_factory(session).get_status(job_id)
    finally:
        session.close()


class TestTick:
    def test_tick_drives_job_to_completion(self, worker, file_session_factory, service_factory, efd):
        job_id = _start(file_session_factory, service_factory, efd.write(efd.sample_ledger()))

        assert worker.tick() == job_id

        job = _status(file_session_factory, service_factory, job_id)
        assert job.status == ImportJobStatus.COMPLETED
        assert job.progress == 100
        assert job.lease_owner is None
        assert job.chunk_number > 1

    def test_tick_without_jobs_returns_none(self, worker):
        assert worker.tick() is None

    def test_tick_skips_job_leased_to_another_worker(
        self, worker, file_session_factory, service_factory, efd,
    ):
        job_id = _start(file_session_factory, service_factory, efd.write(efd.sample_ledger()))
        session = file_session_factory()
        service_factory(session).claim_next("other-worker")
        session.commit()
        session.close()

        assert worker.tick() is None
        assert _status(file_session_factory, service_factory, job_id).status == ImportJobStatus.PENDING

    def test_stopped_worker_releases_claimed_job(
        self, worker, file_session_factory, service_factory, efd,
    ):
        job_id = _start(file_session_factory, service_factory, efd.write(efd.sample_ledger()))
        worker.stop()

        assert worker.tick() == job_id

        job = _status(file_session_factory, service_factory, job_id)
        assert job.status == ImportJobStatus.PENDING
        assert job.lease_owner is None

    def test_lost_lease_ends_tick(self, file_session_factory, ingestion_settings, clock, efd, captured_logs):
        steps = []

        def hand_over(job_id):
            session = file_session_factory()
            session.get(ImportJobModel, job_id).lease_owner = "other-worker"
            session.commit()
            session.close()

        class HandOverAfterFirstChunk(ImportService):
            def run_step(self, job_id, worker_id=None):
                steps.append(job_id)
                if len(steps) == 2:
                    hand_over(job_id)
                if len(steps) > 10:
                    worker.stop(timeout=0)
                return super().run_step(job_id, worker_id)

        def factory(session):
            return HandOverAfterFirstChunk(
                session=session,
                settings=ingestion_settings,
                clock=clock,
                view_refresher=NullViewRefresher(),
            )

        worker = ImportWorker(file_session_factory, factory, worker_id="worker-test")
        job_id = _start(file_session_factory, factory, efd.write(efd.sample_ledger(documents=6)))

        assert worker.tick() == job_id

        assert len(steps) == 2
        job = _status(file_session_factory, factory, job_id)
        assert job.status == ImportJobStatus.PROCESSING
        assert job.lease_owner == "other-worker"
        assert any(r["message"] == "worker_lease_lost" for r in captured_logs())

    def test_failed_job_is_left_failed(self, worker, file_session_factory, service_factory, tmp_path):
        job_id = _start(file_session_factory, service_factory, tmp_path / "missing.txt")

        worker.tick()

        job = _status(file_session_factory, service_factory, job_id)
        assert job.status == ImportJobStatus.FAILED
        assert job.error_code == "SOURCE_FILE_UNREADABLE"
        assert worker.tick() is None


class TestBackgroundThread:
    def test_start_and_stop(self, worker):
        worker.start()
        assert worker.is_running
        worker.stop(timeout=5.0)
        assert not worker.is_running

    def test_background_worker_completes_job(self, worker, file_session_factory, service_factory, efd):
        job_id = _start(file_session_factory, service_factory, efd.write(efd.sample_ledger()))

        worker.start()
        deadline = time.monotonic() + 10
        status = None
        while time.monotonic() < deadline:
            status = _status(file_session_factory, service_factory, job_id).status
            if status == ImportJobStatus.COMPLETED:
                break
            time.sleep(0.02)
        worker.stop(timeout=5.0)

        assert status == ImportJobStatus.COMPLETED


def test_default_worker_id_is_unique():
    assert default_worker_id() != default_worker_id()
