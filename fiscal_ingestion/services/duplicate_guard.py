"""
Duplicate guard: one import per (branch, fiscal period).

A new job conflicts with an existing job for the same branch key and
period when that job is:
    - completed and not purged, or
    - still holding the slot: pending, processing, paused, generating,
      refreshing_views, or failed with a resumable error.

Cancelled, purged and fatally failed jobs never block.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from fiscal_kernel.logging_config import get_logger

from fiscal_ingestion.domain.lifecycle import ACTIVE_STATUSES
from fiscal_ingestion.domain.types import ConflictResult, ImportJobStatus
from fiscal_ingestion.models.import_job import ImportJobModel

logger = get_logger("ingestion.duplicate_guard")

_CANDIDATE_STATUSES = tuple(
    s.value for s in (*ACTIVE_STATUSES, ImportJobStatus.COMPLETED, ImportJobStatus.FAILED)
)


class DuplicateGuard:
    """Read-only check against existing jobs."""

    def __init__(self, session: Session):
        self._session = session

    def check(
        self,
        branch_key: str | None,
        period: str | None,
        filer_tax_id: str | None = None,
        exclude_job_id: UUID | None = None,
    ) -> ConflictResult | None:
        """Return a ConflictResult if the pair is taken, else None.

        Without a branch key or period there is nothing to compare and the
        check passes.
        """
        if not branch_key or not period:
            return None

        stmt = (
            select(ImportJobModel)
            .where(
                ImportJobModel.branch_key == branch_key,
                ImportJobModel.fiscal_period == period,
                ImportJobModel.status.in_(_CANDIDATE_STATUSES),
                ImportJobModel.purged_at.is_(None),
            )
            .order_by(ImportJobModel.created_at.desc())
        )
        if exclude_job_id is not None:
            stmt = stmt.where(ImportJobModel.id != exclude_job_id)

        for existing in self._session.scalars(stmt):
            if existing.status == ImportJobStatus.FAILED.value and not existing.resumable:
                continue
            conflict = ConflictResult(
                period=period,
                filer_tax_id=filer_tax_id or existing.filer_tax_id,
                existing_job_id=existing.id,
                existing_status=ImportJobStatus(existing.status),
            )
            logger.info(
                "duplicate_import_detected",
                extra={
                    "branch_key": branch_key,
                    "period": period,
                    "existing_job_id": str(existing.id),
                    "existing_status": existing.status,
                },
            )
            return conflict
        return None
