"""
Consolidation service: raw capture -> business tables.

Runs every registered FamilyConsolidator for a job, each inside its own
SAVEPOINT.  Consolidators upsert on natural keys with recomputed totals,
so calling ``consolidate`` again for the same job (e.g. after a crash
between raw capture and completion) never double counts.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import delete
from sqlalchemy.orm import Session

from fiscal_kernel.domain.clock import Clock, SystemClock
from fiscal_kernel.exceptions import ConsolidationError, ImportJobNotFoundError
from fiscal_kernel.logging_config import LogContext, get_logger

from fiscal_ingestion.consolidators.base import FamilyConsolidator
from fiscal_ingestion.domain.types import ConsolidationResult, TableConsolidation
from fiscal_ingestion.models.consolidated import (
    FreightMovementModel,
    MerchandiseMovementModel,
    ParticipantModel,
    ServiceMovementModel,
    UtilityMovementModel,
)
from fiscal_ingestion.models.import_job import ImportJobModel
from fiscal_ingestion.services.raw_capture import RawCaptureStore

logger = get_logger("ingestion.consolidation_service")

CONSOLIDATED_MODELS = (
    MerchandiseMovementModel,
    FreightMovementModel,
    UtilityMovementModel,
    ServiceMovementModel,
    ParticipantModel,
)


class ConsolidationService:
    """Aggregates a job's raw records into normalized tables.  Never commits."""

    def __init__(
        self,
        session: Session,
        consolidators: dict[str, FamilyConsolidator],
        clock: Clock | None = None,
        raw_store: RawCaptureStore | None = None,
    ):
        self._session = session
        self._consolidators = consolidators
        self._clock = clock or SystemClock()
        self._raw_store = raw_store or RawCaptureStore(session, self._clock)

    def consolidate(self, job_id: UUID) -> ConsolidationResult:
        """Consolidate every table for ``job_id``.

        Raises:
            ImportJobNotFoundError: If the job does not exist.
            ConsolidationError: If a consolidator fails; its SAVEPOINT is
                rolled back and tables consolidated before it are kept.
        """
        job = self._session.get(ImportJobModel, job_id)
        if job is None:
            raise ImportJobNotFoundError(str(job_id))

        with LogContext.bind(job_id=str(job_id), producer="ingestion"):
            logger.info(
                "consolidation_started",
                extra={"tables": list(self._consolidators)},
            )
            tables: dict[str, TableConsolidation] = {}
            for table_name, consolidator in self._consolidators.items():
                savepoint = self._session.begin_nested()
                try:
                    report = consolidator.consolidate(
                        job, self._raw_store, self._session, self._clock,
                    )
                    savepoint.commit()
                except Exception as exc:
                    savepoint.rollback()
                    logger.exception(
                        "table_consolidation_failed",
                        extra={"table": table_name},
                    )
                    raise ConsolidationError(str(job_id), table_name, str(exc)) from exc

                tables[table_name] = report
                if report.raw_count and not (report.inserted or report.updated):
                    logger.warning(
                        "under_consolidation_detected",
                        extra={"table": table_name, "raw_count": report.raw_count},
                    )
                logger.info(
                    "table_consolidated",
                    extra={"table": table_name, **report.to_dict()},
                )

            result = ConsolidationResult(job_id=job_id, tables=tables)
            logger.info("consolidation_completed", extra={"tables": result.to_dict()})
            return result

    def purge(self, job_id: UUID) -> int:
        """Delete consolidated rows last written by ``job_id``.  Returns row count."""
        removed = 0
        for model in CONSOLIDATED_MODELS:
            result = self._session.execute(
                delete(model).where(model.import_job_id == job_id)
            )
            removed += result.rowcount or 0
        return removed
