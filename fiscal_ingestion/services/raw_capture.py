"""
Raw capture store: append-only recovery log of parsed records.

Each DomainEvent becomes one RawRecordModel row tagged with its job id,
chunk number and position in the chunk.  Rows are never updated.
``discard_from`` exists so a chunk that is re-processed after a crash
(rows written, checkpoint not yet committed) replaces its own earlier
rows instead of duplicating them.
"""

from __future__ import annotations

from typing import Iterable, Iterator
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from fiscal_kernel.domain.clock import Clock, SystemClock
from fiscal_kernel.logging_config import get_logger

from fiscal_ingestion.domain.types import DomainEvent, RecordFamily
from fiscal_ingestion.models.import_job import RawRecordModel

logger = get_logger("ingestion.raw_capture")


class RawCaptureStore:
    """Writes and reads raw records for one session.  Never commits."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def append(
        self,
        job_id: UUID,
        chunk_number: int,
        events: Iterable[DomainEvent],
    ) -> int:
        """Append ``events`` for one chunk.  Returns the number of rows added."""
        now = self._clock.now()
        rows = [
            RawRecordModel(
                job_id=job_id,
                chunk_number=chunk_number,
                sequence=sequence,
                family=event.family.value,
                record_type=event.record_type,
                fields=list(event.fields),
                payload=event.payload(),
                created_at=now,
            )
            for sequence, event in enumerate(events)
        ]
        if rows:
            self._session.add_all(rows)
            self._session.flush()
        logger.debug(
            "raw_records_appended",
            extra={"job_id": str(job_id), "chunk_number": chunk_number, "rows": len(rows)},
        )
        return len(rows)

    def discard_from(self, job_id: UUID, chunk_number: int) -> int:
        """Delete rows of ``job_id`` with chunk_number >= ``chunk_number``."""
        result = self._session.execute(
            delete(RawRecordModel).where(
                RawRecordModel.job_id == job_id,
                RawRecordModel.chunk_number >= chunk_number,
            )
        )
        if result.rowcount:
            logger.info(
                "raw_records_discarded",
                extra={
                    "job_id": str(job_id),
                    "from_chunk": chunk_number,
                    "rows": result.rowcount,
                },
            )
        return result.rowcount or 0

    def iter_payloads(
        self,
        job_id: UUID,
        family: RecordFamily,
        batch_size: int = 1000,
    ) -> Iterator[dict]:
        """Yield payloads of one family in capture order."""
        stmt = (
            select(RawRecordModel.payload)
            .where(
                RawRecordModel.job_id == job_id,
                RawRecordModel.family == family.value,
            )
            .order_by(RawRecordModel.chunk_number, RawRecordModel.sequence)
            .execution_options(yield_per=batch_size)
        )
        for payload in self._session.scalars(stmt):
            yield payload

    def count(self, job_id: UUID, family: RecordFamily | None = None) -> int:
        stmt = select(func.count()).select_from(RawRecordModel).where(
            RawRecordModel.job_id == job_id,
        )
        if family is not None:
            stmt = stmt.where(RawRecordModel.family == family.value)
        return self._session.scalar(stmt) or 0

    def purge(self, job_id: UUID) -> int:
        """Delete every raw record of the job (explicit user purge)."""
        result = self._session.execute(
            delete(RawRecordModel).where(RawRecordModel.job_id == job_id)
        )
        return result.rowcount or 0
