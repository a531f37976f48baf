"""
ORM models for import jobs and their raw capture.

Contract:
    ImportJobModel persists one import attempt: lifecycle status, progress,
    checkpoint and counts.  RawRecordModel is the append-only recovery log,
    one row per DomainEvent, partitioned by job id and chunk number.

Architecture: fiscal_ingestion/models. Imports from fiscal_kernel.db.base only.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from fiscal_kernel.db.base import Base, TrackedBase, UTCDateTime, UUIDString
from fiscal_kernel.exceptions import FATAL_ERROR_CODES

if TYPE_CHECKING:
    from fiscal_ingestion.domain.types import Checkpoint, ImportJob


class ImportJobModel(TrackedBase):
    """One fiscal-file import attempt (created_by_id is the owning user)."""

    __tablename__ = "import_jobs"

    __table_args__ = (
        Index("ix_import_jobs_status", "status"),
        Index("ix_import_jobs_branch_period", "branch_key", "fiscal_period"),
        Index("ix_import_jobs_company", "company_id"),
        Index("ix_import_jobs_updated_at", "updated_at"),
    )

    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    branch_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    # branch_id when given, else the filer tax id from the header
    branch_key: Mapped[str | None] = mapped_column(String(64), nullable=True)
    fiscal_period: Mapped[str | None] = mapped_column(String(7), nullable=True)
    filer_tax_id: Mapped[str | None] = mapped_column(String(20), nullable=True)

    file_path: Mapped[str] = mapped_column(Text, nullable=False)
    file_name: Mapped[str] = mapped_column(String(500), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    total_lines: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    scope: Mapped[str] = mapped_column(String(50), nullable=False)
    record_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)

    status: Mapped[str] = mapped_column(String(50), nullable=False)
    progress: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    bytes_processed: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    chunk_number: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    counts: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    checkpoint_offset: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    checkpoint_state: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    # Worker holding the processing lease; None when no worker owns the job
    lease_owner: Mapped[str | None] = mapped_column(String(100), nullable=True)
    refresh_pending: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(100), nullable=True)

    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    purged_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    @property
    def owner_id(self) -> UUID:
        return self.created_by_id

    @property
    def resumable(self) -> bool:
        return self.status == "failed" and self.error_code not in FATAL_ERROR_CODES

    def checkpoint(self) -> Checkpoint:
        from fiscal_ingestion.domain.types import Checkpoint

        return Checkpoint.from_dict(self.checkpoint_offset, self.checkpoint_state)

    def set_checkpoint(self, checkpoint: Checkpoint) -> None:
        self.checkpoint_offset = checkpoint.offset
        self.checkpoint_state = checkpoint.to_dict()

    def to_dto(self) -> ImportJob:
        from fiscal_ingestion.domain.types import ImportJob, ImportJobStatus, ImportScope

        return ImportJob(
            job_id=self.id,
            company_id=self.company_id,
            status=ImportJobStatus(self.status),
            file_path=self.file_path,
            file_name=self.file_name,
            file_size=self.file_size,
            scope=ImportScope(self.scope),
            branch_id=self.branch_id,
            owner_id=self.created_by_id,
            record_limit=self.record_limit,
            fiscal_period=self.fiscal_period,
            filer_tax_id=self.filer_tax_id,
            progress=self.progress,
            bytes_processed=self.bytes_processed,
            chunk_number=self.chunk_number,
            total_lines=self.total_lines,
            counts=dict(self.counts or {}),
            checkpoint=self.checkpoint(),
            lease_owner=self.lease_owner,
            refresh_pending=self.refresh_pending,
            error_message=self.error_message,
            error_code=self.error_code,
            resumable=self.resumable,
            created_at=self.created_at,
            updated_at=self.updated_at,
            started_at=self.started_at,
            completed_at=self.completed_at,
            purged_at=self.purged_at,
        )

    @classmethod
    def from_dto(cls, dto: ImportJob) -> ImportJobModel:
        return cls(
            id=dto.job_id,
            company_id=dto.company_id,
            branch_id=dto.branch_id,
            branch_key=dto.branch_key,
            fiscal_period=dto.fiscal_period,
            filer_tax_id=dto.filer_tax_id,
            file_path=dto.file_path,
            file_name=dto.file_name,
            file_size=dto.file_size,
            total_lines=dto.total_lines,
            scope=dto.scope.value,
            record_limit=dto.record_limit,
            status=dto.status.value,
            progress=dto.progress,
            bytes_processed=dto.bytes_processed,
            chunk_number=dto.chunk_number,
            counts=dict(dto.counts) or None,
            checkpoint_offset=dto.checkpoint.offset,
            checkpoint_state=dto.checkpoint.to_dict(),
            lease_owner=dto.lease_owner,
            refresh_pending=dto.refresh_pending,
            error_message=dto.error_message,
            error_code=dto.error_code,
            started_at=dto.started_at,
            completed_at=dto.completed_at,
            purged_at=dto.purged_at,
            created_by_id=dto.owner_id,
            updated_by_id=None,
        )


class RawRecordModel(Base):
    """Append-only capture of one assembled record.  Never updated."""

    __tablename__ = "raw_records"

    __table_args__ = (
        UniqueConstraint("job_id", "chunk_number", "sequence", name="uq_raw_records_position"),
        Index("ix_raw_records_job_family", "job_id", "family"),
    )

    job_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("import_jobs.id", ondelete="CASCADE"),
        nullable=False,
    )
    chunk_number: Mapped[int] = mapped_column(Integer, nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    family: Mapped[str] = mapped_column(String(30), nullable=False)
    record_type: Mapped[str] = mapped_column(String(4), nullable=False)
    fields: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
