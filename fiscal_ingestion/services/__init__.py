"""Import engine services: orchestration, capture, consolidation, refresh."""

from fiscal_ingestion.services.consolidation_service import ConsolidationService
from fiscal_ingestion.services.duplicate_guard import DuplicateGuard
from fiscal_ingestion.services.import_service import ImportService, StepOutcome
from fiscal_ingestion.services.progress import (
    ProgressListener,
    ProgressPublisher,
    RecordingListener,
)
from fiscal_ingestion.services.raw_capture import RawCaptureStore
from fiscal_ingestion.services.view_refresh import (
    NullViewRefresher,
    RefreshOutcome,
    SqlViewRefresher,
    ViewRefresher,
    run_refresh_with_timeout,
)
from fiscal_ingestion.services.worker import ImportWorker

__all__ = [
    "ConsolidationService",
    "DuplicateGuard",
    "ImportService",
    "ImportWorker",
    "NullViewRefresher",
    "ProgressListener",
    "ProgressPublisher",
    "RawCaptureStore",
    "RecordingListener",
    "RefreshOutcome",
    "SqlViewRefresher",
    "StepOutcome",
    "ViewRefresher",
    "run_refresh_with_timeout",
]
