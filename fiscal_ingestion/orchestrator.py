"""
ImportOrchestrator -- DI container for the fiscal import engine.

Contract:
    Wires settings, clock, consolidator registry, view refresher and
    progress listeners into ImportService, and optionally creates an
    ImportWorker.  Single place where all import dependencies are composed.

Architecture: fiscal_ingestion (top-level).  This is the canonical entry
    point for starting and running imports.
"""

from __future__ import annotations

from typing import Callable, Iterable

from sqlalchemy.orm import Session

from fiscal_config import get_active_settings
from fiscal_config.schema import IngestionSettings
from fiscal_kernel.domain.clock import Clock, SystemClock
from fiscal_kernel.logging_config import get_logger

from fiscal_ingestion.consolidators import default_consolidator_registry
from fiscal_ingestion.consolidators.base import FamilyConsolidator
from fiscal_ingestion.services.import_service import ImportService
from fiscal_ingestion.services.progress import ProgressListener
from fiscal_ingestion.services.view_refresh import SqlViewRefresher, ViewRefresher
from fiscal_ingestion.services.worker import ImportWorker

logger = get_logger("ingestion.orchestrator")


class ImportOrchestrator:
    """DI container for the import engine.

    Contract:
        - ``from_session()`` factory creates a fully wired orchestrator.
        - ``create_service()`` returns an ImportService for API calls.
        - ``create_worker()`` returns an ImportWorker for background use.

    Non-goals:
        - Does NOT start the worker automatically -- caller decides.
        - Does NOT manage session lifecycle -- caller controls commits.
    """

    def __init__(
        self,
        session: Session,
        settings: IngestionSettings,
        consolidators: dict[str, FamilyConsolidator],
        clock: Clock | None = None,
        view_refresher: ViewRefresher | None = None,
        listeners: Iterable[ProgressListener] = (),
    ) -> None:
        self._session = session
        self._settings = settings
        self._consolidators = consolidators
        self._clock = clock or SystemClock()
        self._view_refresher = view_refresher
        self._listeners = list(listeners)

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_session(
        cls,
        session: Session,
        settings: IngestionSettings | None = None,
        clock: Clock | None = None,
        view_refresher: ViewRefresher | None = None,
        listeners: Iterable[ProgressListener] = (),
        consolidators: dict[str, FamilyConsolidator] | None = None,
    ) -> ImportOrchestrator:
        """Create a fully wired ImportOrchestrator from a session.

        Args:
            session: SQLAlchemy session for persistence.
            settings: Optional settings.  If None, loads the active
                settings file.
            clock: Optional clock for deterministic testing.
            view_refresher: Optional refresher.  If None, refreshes
                materialized views on the session's engine.
            listeners: Progress listeners attached to every service.
            consolidators: Optional registry.  If None, uses every
                business table.
        """
        effective_settings = settings or get_active_settings()
        refresher = view_refresher or SqlViewRefresher(session.get_bind())
        registry = consolidators if consolidators is not None else default_consolidator_registry()

        logger.info(
            "import_orchestrator_created",
            extra={
                "settings_id": effective_settings.settings_id,
                "tables": list(registry),
                "refresher": type(refresher).__name__,
            },
        )
        return cls(
            session=session,
            settings=effective_settings,
            consolidators=registry,
            clock=clock,
            view_refresher=refresher,
            listeners=listeners,
        )

    # -------------------------------------------------------------------------
    # Service
    # -------------------------------------------------------------------------

    def create_service(self, session: Session | None = None) -> ImportService:
        """Create an ImportService wired with the orchestrator's dependencies.

        Args:
            session: Optional session override. If None, uses the
                orchestrator's session.
        """
        return ImportService(
            session=session or self._session,
            settings=self._settings,
            clock=self._clock,
            consolidators=self._consolidators,
            view_refresher=self._view_refresher,
            listeners=self._listeners,
        )

    # -------------------------------------------------------------------------
    # Worker
    # -------------------------------------------------------------------------

    def create_worker(
        self,
        session_factory: Callable[[], Session],
        poll_interval_seconds: float | None = None,
        worker_id: str | None = None,
    ) -> ImportWorker:
        """Create an ImportWorker wired with the orchestrator's dependencies.

        Args:
            session_factory: Callable returning a new session per chunk.
            poll_interval_seconds: Polling interval.  Defaults to the
                worker settings.
            worker_id: Lease identity.  Defaults to host name plus a
                random suffix.
        """
        interval = poll_interval_seconds
        if interval is None:
            interval = self._settings.worker.poll_interval_seconds

        return ImportWorker(
            session_factory=session_factory,
            service_factory=self.create_service,
            poll_interval_seconds=interval,
            worker_id=worker_id,
        )

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def session(self) -> Session:
        return self._session

    @property
    def settings(self) -> IngestionSettings:
        return self._settings

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def consolidators(self) -> dict[str, FamilyConsolidator]:
        return dict(self._consolidators)

    @property
    def view_refresher(self) -> ViewRefresher | None:
        return self._view_refresher
