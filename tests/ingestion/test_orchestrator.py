"""
Tests for fiscal_ingestion.orchestrator -- ImportOrchestrator DI container.
"""

from uuid import uuid4

from fiscal_ingestion.domain.types import ImportJobStatus
from fiscal_ingestion.orchestrator import ImportOrchestrator
from fiscal_ingestion.services.import_service import ImportService
from fiscal_ingestion.services.view_refresh import NullViewRefresher, SqlViewRefresher
from fiscal_ingestion.services.worker import ImportWorker


class TestFromSession:
    def test_wires_explicit_dependencies(self, db_session, ingestion_settings, clock, listener, efd):
        orchestrator = ImportOrchestrator.from_session(
            db_session,
            settings=ingestion_settings,
            clock=clock,
            view_refresher=NullViewRefresher(),
            listeners=[listener],
        )

        assert orchestrator.settings is ingestion_settings
        assert orchestrator.clock is clock
        assert orchestrator.session is db_session
        assert list(orchestrator.consolidators) == [
            "participants",
            "merchandise_movements",
            "freight_movements",
            "utility_movements",
            "service_movements",
        ]

        service = orchestrator.create_service()
        assert isinstance(service, ImportService)
        job_id = service.start_import(uuid4(), efd.write(efd.sample_ledger())).job_id
        job = service.run_to_completion(job_id)

        assert job.status == ImportJobStatus.COMPLETED
        assert job.created_at == clock.now()
        assert listener.statuses()[-1] == ImportJobStatus.COMPLETED

    def test_defaults_load_settings_and_sql_refresher(self, db_session, captured_logs):
        orchestrator = ImportOrchestrator.from_session(db_session)

        assert orchestrator.settings.settings_id == "efd-import-default"
        assert isinstance(orchestrator.view_refresher, SqlViewRefresher)
        messages = [r["message"] for r in captured_logs()]
        assert "FISCAL_CONFIG_TRACE" in messages
        assert "import_orchestrator_created" in messages

    def test_sql_refresher_is_noop_on_sqlite(self, db_session, ingestion_settings, efd):
        orchestrator = ImportOrchestrator.from_session(db_session, settings=ingestion_settings)
        service = orchestrator.create_service()
        job_id = service.start_import(uuid4(), efd.write(efd.sample_ledger())).job_id

        job = service.run_to_completion(job_id)

        assert job.status == ImportJobStatus.COMPLETED
        assert job.refresh_pending is False


class TestCreateWorker:
    def test_worker_uses_settings_poll_interval(self, db_session, ingestion_settings, file_session_factory):
        orchestrator = ImportOrchestrator.from_session(
            db_session, settings=ingestion_settings, view_refresher=NullViewRefresher(),
        )

        worker = orchestrator.create_worker(file_session_factory, worker_id="w-1")

        assert isinstance(worker, ImportWorker)
        assert worker.worker_id == "w-1"
        assert worker.poll_interval_seconds == ingestion_settings.worker.poll_interval_seconds

    def test_worker_services_use_their_own_session(self, db_session, ingestion_settings, file_session_factory, efd):
        orchestrator = ImportOrchestrator.from_session(
            db_session, settings=ingestion_settings, view_refresher=NullViewRefresher(),
        )
        session = file_session_factory()
        job_id = orchestrator.create_service(session).start_import(
            uuid4(), efd.write(efd.sample_ledger()),
        ).job_id
        session.commit()
        session.close()

        worker = orchestrator.create_worker(file_session_factory, poll_interval_seconds=0.01)

        assert worker.tick() == job_id
