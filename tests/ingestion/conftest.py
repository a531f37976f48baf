"""
Fixtures for the ingestion tests: settings with small chunks, a fake view
refresher, an ImportService wired to in-memory SQLite, and a job factory.
"""

import threading
from uuid import uuid4

import pytest

from fiscal_config.schema import (
    ChunkSettings,
    IngestionSettings,
    RefreshSettings,
    WorkerSettings,
)
from fiscal_ingestion.domain.types import ImportJob, ImportJobStatus, ImportScope
from fiscal_ingestion.models.import_job import ImportJobModel
from fiscal_ingestion.services.import_service import ImportService
from fiscal_ingestion.services.progress import RecordingListener

TEST_COMPANY_ID = uuid4()
TEST_ACTOR_ID = uuid4()


class FakeViewRefresher:
    """Records refresh calls; can block past the timeout or raise."""

    def __init__(self, block_seconds: float = 0.0, error: Exception | None = None):
        self.calls: list[tuple[str, ...]] = []
        self._block_seconds = block_seconds
        self._error = error
        self._released = threading.Event()

    def refresh(self, views: tuple[str, ...]) -> None:
        self.calls.append(views)
        if self._block_seconds:
            self._released.wait(self._block_seconds)
        if self._error is not None:
            raise self._error

    def release(self) -> None:
        self._released.set()


def make_settings(chunk_size: int = 256, timeout_seconds: float = 1.0) -> IngestionSettings:
    return IngestionSettings(
        settings_id="test",
        version=1,
        chunk=ChunkSettings(chunk_size_bytes=chunk_size, max_chunk_size_bytes=1 << 16),
        refresh=RefreshSettings(timeout_seconds=timeout_seconds, views=("mv_test_a", "mv_test_b")),
        worker=WorkerSettings(poll_interval_seconds=0.01, stale_after_seconds=120),
    )


@pytest.fixture
def ingestion_settings() -> IngestionSettings:
    return make_settings()


@pytest.fixture
def refresher() -> FakeViewRefresher:
    return FakeViewRefresher()


@pytest.fixture
def slow_refresher():
    """Refresher that blocks far past any test timeout until released."""
    slow = FakeViewRefresher(block_seconds=10.0)
    yield slow
    slow.release()


@pytest.fixture
def failing_refresher() -> FakeViewRefresher:
    return FakeViewRefresher(error=RuntimeError("could not obtain lock on mv_test_a"))


@pytest.fixture
def listener() -> RecordingListener:
    return RecordingListener()


@pytest.fixture
def build_service(db_session, clock, ingestion_settings, refresher, listener):
    """ImportService factory; keyword arguments override the defaults."""

    def _build(**overrides) -> ImportService:
        options = {
            "settings": ingestion_settings,
            "clock": clock,
            "view_refresher": refresher,
            "listeners": [listener],
        }
        options.update(overrides)
        return ImportService(session=db_session, **options)

    return _build


@pytest.fixture
def service(build_service) -> ImportService:
    return build_service()


@pytest.fixture
def make_job(db_session, clock):
    """Insert an ImportJobModel directly (bypassing the guard)."""

    def _make(
        file_path: str = "/tmp/none.txt",
        status: ImportJobStatus = ImportJobStatus.PENDING,
        fiscal_period: str | None = "2024-03",
        filer_tax_id: str | None = "12345678000199",
        **overrides,
    ) -> ImportJobModel:
        dto = ImportJob(
            job_id=uuid4(),
            company_id=TEST_COMPANY_ID,
            status=status,
            file_path=str(file_path),
            file_name="efd.txt",
            file_size=overrides.pop("file_size", 0),
            scope=overrides.pop("scope", ImportScope.ALL),
            owner_id=TEST_ACTOR_ID,
            fiscal_period=fiscal_period,
            filer_tax_id=filer_tax_id,
            **overrides,
        )
        model = ImportJobModel.from_dto(dto)
        model.created_at = clock.now()
        model.updated_at = clock.now()
        db_session.add(model)
        db_session.flush()
        return model

    return _make
