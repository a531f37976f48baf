"""
ImportService -- job orchestrator for chunked fiscal imports.

Contract:
    Owns the import job lifecycle: start (with duplicate guard), step
    (one chunk per call), pause, resume, cancel, purge and status queries.
    All transitions go through the lifecycle table; an illegal transition
    raises InvalidJobTransitionError.

Architecture: fiscal_ingestion/services.  Composes the chunk cursor, the
    raw capture store, the consolidation service and the view refresher.

Guarantees:
    - Does NOT call ``session.commit()``.  Each ``run_step`` is one unit
      of work; the caller commits it, so checkpoint, counts and raw rows
      of a chunk land together or not at all.
    - The job row is locked (SELECT ... FOR UPDATE) for the whole step.
      pause/cancel take the same lock, so they always land between chunks.
    - Processing failures never escape ``run_step``: they are recorded on
      the job as ``failed`` with an error code and message.
    - ``updated_at`` is set from the injected clock at every chunk
      boundary and transition; staleness is measured against it.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Iterable, Mapping
from uuid import UUID, uuid4

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fiscal_config.schema import IngestionSettings
from fiscal_kernel.domain.clock import Clock, SystemClock
from fiscal_kernel.exceptions import (
    ChunkProcessingError,
    ConsolidationError,
    DuplicateImportError,
    FiscalKernelError,
    HeaderNotFoundError,
    ImportJobNotFoundError,
    InvalidJobTransitionError,
    SourceFileUnreadableError,
    SourceReadError,
)
from fiscal_kernel.logging_config import LogContext, get_logger

from fiscal_ingestion.adapters.chunk_cursor import ChunkCursor, ChunkResult, probe_header
from fiscal_ingestion.consolidators import default_consolidator_registry
from fiscal_ingestion.consolidators.base import FamilyConsolidator
from fiscal_ingestion.domain.lifecycle import (
    ACTIVE_STATUSES,
    CANCELLABLE_STATUSES,
    PROGRESS_COMPLETED,
    PROGRESS_GENERATING,
    PROGRESS_REFRESHING,
    can_transition,
    ingestion_progress,
)
from fiscal_ingestion.domain.types import (
    SCOPE_PREFIXES,
    DomainEvent,
    ImportJob,
    ImportJobStatus,
    ImportScope,
    ParseContext,
    RecordFamily,
    StartImportResult,
)
from fiscal_ingestion.models.import_job import ImportJobModel
from fiscal_ingestion.services.consolidation_service import ConsolidationService
from fiscal_ingestion.services.duplicate_guard import DuplicateGuard
from fiscal_ingestion.services.progress import ProgressListener, ProgressPublisher
from fiscal_ingestion.services.raw_capture import RawCaptureStore
from fiscal_ingestion.services.view_refresh import (
    NullViewRefresher,
    ViewRefresher,
    run_refresh_with_timeout,
)

logger = get_logger("ingestion.import_service")

# created_by_id for jobs started without a user
SYSTEM_ACTOR_ID = UUID(int=0)

# Families subject to the per-job record limit
LIMITED_FAMILIES = frozenset({
    RecordFamily.MERCHANDISE,
    RecordFamily.FREIGHT,
    RecordFamily.UTILITIES,
    RecordFamily.SERVICES,
})

_CLAIMABLE = (ImportJobStatus.PENDING.value, ImportJobStatus.PROCESSING.value)


@dataclass(frozen=True)
class StepOutcome:
    """Result of one ``run_step`` call."""

    job_id: UUID
    status: ImportJobStatus
    chunk_number: int
    records_captured: int
    bytes_processed: int
    progress: int
    leased_elsewhere: bool = False  # Another worker holds the job

    @property
    def done(self) -> bool:
        """True once the caller should stop stepping.

        That is when the job has left ``processing`` or is leased to a
        different worker.
        """
        return self.leased_elsewhere or self.status != ImportJobStatus.PROCESSING


def merge_counts(
    counts: Mapping[str, Any] | None,
    result: ChunkResult,
    captured: Mapping[str, int],
    limited: int = 0,
) -> dict[str, Any]:
    """Return a new counts dict with one chunk's tallies added."""
    merged: dict[str, Any] = {
        key: dict(value) if isinstance(value, dict) else value
        for key, value in (counts or {}).items()
    }
    diagnostics = dict(result.diagnostics)
    if limited:
        diagnostics["limit_reached"] = diagnostics.get("limit_reached", 0) + limited
    for section, tally in (("raw", captured), ("seen", result.seen), ("diagnostics", diagnostics)):
        bucket = merged.setdefault(section, {})
        for name, n in tally.items():
            bucket[name] = bucket.get(name, 0) + n
    merged["lines"] = merged.get("lines", 0) + result.lines_consumed
    return merged


class ImportService:
    """Import job orchestrator.

    Contract:
        - ``start_import()`` probes the header, runs the duplicate guard and
          creates a PENDING job (or returns the conflict).
        - ``claim_next()`` leases the oldest runnable job to a worker.
        - ``run_step()`` processes exactly one chunk, or finishes the job
          (consolidation and view refresh) once the file is exhausted.
        - ``pause()`` / ``resume()`` / ``cancel()`` are idempotent.
        - ``purge()`` removes a finished job's raw and consolidated rows.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT manage background threads -- that is the worker's job.
    """

    def __init__(
        self,
        session: Session,
        settings: IngestionSettings | None = None,
        clock: Clock | None = None,
        consolidators: dict[str, FamilyConsolidator] | None = None,
        view_refresher: ViewRefresher | None = None,
        listeners: Iterable[ProgressListener] = (),
    ):
        self._session = session
        self._settings = settings or IngestionSettings(settings_id="builtin", version=0)
        self._clock = clock or SystemClock()
        self._raw = RawCaptureStore(session, self._clock)
        self._guard = DuplicateGuard(session)
        self._consolidation = ConsolidationService(
            session,
            consolidators if consolidators is not None else default_consolidator_registry(),
            self._clock,
            self._raw,
        )
        self._refresher = view_refresher or NullViewRefresher()
        self._publisher = ProgressPublisher(listeners)

    @property
    def settings(self) -> IngestionSettings:
        return self._settings

    def add_listener(self, listener: ProgressListener) -> None:
        self._publisher.add(listener)

    # -------------------------------------------------------------------------
    # Start
    # -------------------------------------------------------------------------

    def start_import(
        self,
        company_id: UUID,
        file_path: str | Path,
        file_name: str | None = None,
        file_size: int | None = None,
        scope: ImportScope | str = ImportScope.ALL,
        branch_id: UUID | None = None,
        record_limit: int | None = None,
        owner_id: UUID | None = None,
        replace: bool = False,
    ) -> StartImportResult:
        """Create a PENDING import job, or report a duplicate.

        With ``replace=True`` a conflicting *completed* import is purged and
        the new job is created.  Conflicts with in-flight or resumable jobs
        are always returned; those must be cancelled or purged first.

        An unreadable file still gets a job; its first step fails it with
        SOURCE_FILE_UNREADABLE.

        Raises:
            ValueError: If ``record_limit`` is not positive.
        """
        scope = ImportScope(scope)
        if record_limit is not None and record_limit <= 0:
            raise ValueError(f"record_limit must be positive, got {record_limit}")

        path = Path(file_path)
        try:
            probe = probe_header(path)
        except SourceFileUnreadableError as exc:
            logger.warning("header_probe_failed", extra={"file": str(path), "reason": exc.reason})
            probe = None

        if file_size is None:
            try:
                file_size = path.stat().st_size
            except OSError:
                file_size = 0

        period = (probe.period or None) if probe else None
        filer_tax_id = probe.filer_tax_id if probe else None
        branch_key = str(branch_id) if branch_id is not None else filer_tax_id

        conflict = self._guard.check(branch_key, period, filer_tax_id)
        if conflict is not None:
            if not (replace and conflict.existing_status == ImportJobStatus.COMPLETED):
                return StartImportResult(conflict=conflict)
            logger.info(
                "replacing_completed_import",
                extra={"existing_job_id": str(conflict.existing_job_id), "period": period},
            )
            self.purge(conflict.existing_job_id)

        now = self._clock.now()
        dto = ImportJob(
            job_id=uuid4(),
            company_id=company_id,
            status=ImportJobStatus.PENDING,
            file_path=str(path),
            file_name=file_name or path.name,
            file_size=file_size,
            scope=scope,
            branch_id=branch_id,
            owner_id=owner_id or SYSTEM_ACTOR_ID,
            record_limit=record_limit,
            fiscal_period=period,
            filer_tax_id=filer_tax_id,
        )
        model = ImportJobModel.from_dto(dto)
        model.created_at = now
        model.updated_at = now
        self._session.add(model)
        self._session.flush()

        logger.info(
            "import_job_created",
            extra={
                "job_id": str(dto.job_id),
                "company_id": str(company_id),
                "file_name": dto.file_name,
                "file_size": file_size,
                "scope": scope.value,
                "fiscal_period": period,
                "branch_key": branch_key,
            },
        )
        self._publisher.publish(model)
        return StartImportResult(job_id=dto.job_id)

    # -------------------------------------------------------------------------
    # Claim / step
    # -------------------------------------------------------------------------

    def claim_next(self, worker_id: str) -> UUID | None:
        """Lease the oldest unleased pending or processing job to ``worker_id``.

        The lease is a conditional UPDATE on ``lease_owner IS NULL``; when
        two workers race for the same row only one update matches.
        """
        claimable = and_(
            ImportJobModel.status.in_(_CLAIMABLE),
            ImportJobModel.lease_owner.is_(None),
        )
        candidates = self._session.scalars(
            select(ImportJobModel.id)
            .where(claimable)
            .order_by(ImportJobModel.created_at)
            .limit(5)
        ).all()

        for job_id in candidates:
            result = self._session.execute(
                update(ImportJobModel)
                .where(ImportJobModel.id == job_id, claimable)
                .values(lease_owner=worker_id, updated_at=self._clock.now())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                logger.info(
                    "import_job_claimed",
                    extra={"job_id": str(job_id), "worker_id": worker_id},
                )
                return job_id
        return None

    def release(self, job_id: UUID, worker_id: str) -> bool:
        """Drop ``worker_id``'s lease on ``job_id``.  Returns True if it held one."""
        result = self._session.execute(
            update(ImportJobModel)
            .where(ImportJobModel.id == job_id, ImportJobModel.lease_owner == worker_id)
            .values(lease_owner=None, updated_at=self._clock.now())
            .execution_options(synchronize_session=False)
        )
        released = result.rowcount == 1
        if released:
            logger.info("import_job_released", extra={"job_id": str(job_id), "worker_id": worker_id})
        return released

    def run_step(self, job_id: UUID, worker_id: str | None = None) -> StepOutcome:
        """Advance ``job_id`` by one chunk.

        A PENDING job is moved to PROCESSING first.  Jobs in any other
        status are left untouched (a paused or cancelled job simply stops
        being stepped).  When ``worker_id`` is given, a job leased to a
        different worker is left untouched too.

        Raises:
            ImportJobNotFoundError: If job_id does not exist.
        """
        job = self._lock_job(job_id)
        with LogContext.bind(job_id=str(job_id), producer="ingestion"):
            if worker_id is not None and job.lease_owner not in (None, worker_id):
                logger.warning(
                    "import_job_leased_elsewhere",
                    extra={"lease_owner": job.lease_owner, "worker_id": worker_id},
                )
                return self._outcome(job, leased_elsewhere=True)
            if job.status == ImportJobStatus.PENDING.value:
                self._start_processing(job, worker_id)
            elif job.status != ImportJobStatus.PROCESSING.value:
                return self._outcome(job)
            elif worker_id is not None:
                job.lease_owner = worker_id
            return self._process_chunk(job)

    def run_to_completion(self, job_id: UUID, worker_id: str | None = None) -> ImportJob:
        """Step ``job_id`` until it leaves ``processing``.  Returns the snapshot."""
        outcome = self.run_step(job_id, worker_id)
        while not outcome.done:
            outcome = self.run_step(job_id, worker_id)
        return self.get_status(job_id)

    # -------------------------------------------------------------------------
    # Pause / resume / cancel
    # -------------------------------------------------------------------------

    def pause(self, job_id: UUID) -> ImportJob:
        """Pause a processing job at its last checkpoint.  No-op otherwise."""
        job = self._lock_job(job_id)
        with LogContext.bind(job_id=str(job_id)):
            if job.status != ImportJobStatus.PROCESSING.value:
                logger.info("pause_ignored", extra={"status": job.status})
                return job.to_dto()
            self._transition(job, ImportJobStatus.PAUSED)
            job.lease_owner = None
            self._touch(job)
            self._session.flush()
            logger.info(
                "import_job_paused",
                extra={"checkpoint_offset": job.checkpoint_offset, "chunk_number": job.chunk_number},
            )
            self._publisher.publish(job)
            return job.to_dto()

    def resume(self, job_id: UUID) -> ImportJob:
        """Resume a paused or resumable failed job from its checkpoint.

        A processing job that has gone stale (its worker died) has its
        lease released so another worker can pick it up.  Anything else,
        including fatal failures and purged jobs, is a no-op.
        """
        job = self._lock_job(job_id)
        with LogContext.bind(job_id=str(job_id)):
            status = ImportJobStatus(job.status)
            if job.purged_at is None and (
                status == ImportJobStatus.PAUSED
                or (status == ImportJobStatus.FAILED and job.resumable)
            ):
                previous_error = job.error_code
                self._transition(job, ImportJobStatus.PROCESSING)
                job.error_code = None
                job.error_message = None
                job.lease_owner = None
                self._touch(job)
                self._session.flush()
                logger.info(
                    "import_job_resumed",
                    extra={
                        "from_status": status.value,
                        "previous_error_code": previous_error,
                        "checkpoint_offset": job.checkpoint_offset,
                    },
                )
                self._publisher.publish(job)
            elif status == ImportJobStatus.PROCESSING and self._is_stale(job):
                logger.warning(
                    "stale_job_released",
                    extra={"lease_owner": job.lease_owner, "updated_at": str(job.updated_at)},
                )
                job.lease_owner = None
                self._touch(job)
                self._session.flush()
            else:
                logger.info("resume_ignored", extra={"status": job.status, "error_code": job.error_code})
            return job.to_dto()

    def cancel(self, job_id: UUID) -> ImportJob:
        """Cancel a pending, processing or paused job.  No-op otherwise."""
        job = self._lock_job(job_id)
        with LogContext.bind(job_id=str(job_id)):
            if ImportJobStatus(job.status) not in CANCELLABLE_STATUSES:
                logger.info("cancel_ignored", extra={"status": job.status})
                return job.to_dto()
            self._transition(job, ImportJobStatus.CANCELLED)
            job.lease_owner = None
            job.completed_at = self._clock.now()
            self._touch(job)
            self._session.flush()
            logger.info("import_job_cancelled", extra={"chunk_number": job.chunk_number})
            self._publisher.publish(job)
            return job.to_dto()

    # -------------------------------------------------------------------------
    # Purge
    # -------------------------------------------------------------------------

    def purge(self, job_id: UUID) -> dict[str, int]:
        """Delete a job's raw capture and the consolidated rows it last wrote.

        The job row is kept, stamped with ``purged_at``; purged jobs no
        longer block the duplicate guard.

        Raises:
            ImportJobNotFoundError: If job_id does not exist.
            InvalidJobTransitionError: If the job is still active.
        """
        job = self._lock_job(job_id)
        if ImportJobStatus(job.status) in ACTIVE_STATUSES:
            raise InvalidJobTransitionError(str(job_id), job.status, "purged")

        raw_rows = self._raw.purge(job.id)
        consolidated_rows = self._consolidation.purge(job.id)
        job.purged_at = self._clock.now()
        self._touch(job)
        self._session.flush()

        logger.info(
            "import_job_purged",
            extra={
                "job_id": str(job_id),
                "raw_records": raw_rows,
                "consolidated_rows": consolidated_rows,
            },
        )
        return {"raw_records": raw_rows, "consolidated_rows": consolidated_rows}

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_status(self, job_id: UUID) -> ImportJob:
        """Current snapshot of a job.

        Raises:
            ImportJobNotFoundError: If job_id does not exist.
        """
        job = self._session.get(ImportJobModel, job_id, populate_existing=True)
        if job is None:
            raise ImportJobNotFoundError(str(job_id))
        return job.to_dto()

    def list_jobs(
        self,
        company_id: UUID | None = None,
        status: ImportJobStatus | None = None,
    ) -> list[ImportJob]:
        """Jobs, newest first, optionally filtered by company and status."""
        stmt = select(ImportJobModel).order_by(ImportJobModel.created_at.desc())
        if company_id is not None:
            stmt = stmt.where(ImportJobModel.company_id == company_id)
        if status is not None:
            stmt = stmt.where(ImportJobModel.status == ImportJobStatus(status).value)
        return [job.to_dto() for job in self._session.scalars(stmt)]

    def stale_jobs(self, threshold_seconds: int | None = None) -> list[ImportJob]:
        """Processing jobs whose ``updated_at`` has not moved within the threshold."""
        cutoff = self._stale_cutoff(threshold_seconds)
        stmt = (
            select(ImportJobModel)
            .where(
                ImportJobModel.status == ImportJobStatus.PROCESSING.value,
                or_(ImportJobModel.updated_at.is_(None), ImportJobModel.updated_at < cutoff),
            )
            .order_by(ImportJobModel.updated_at)
        )
        stale = [job.to_dto() for job in self._session.scalars(stmt)]
        if stale:
            logger.warning(
                "stale_jobs_detected",
                extra={"job_ids": [str(j.job_id) for j in stale], "cutoff": cutoff.isoformat()},
            )
        return stale

    # -------------------------------------------------------------------------
    # Internal: processing
    # -------------------------------------------------------------------------

    def _start_processing(self, job: ImportJobModel, worker_id: str | None) -> None:
        self._transition(job, ImportJobStatus.PROCESSING)
        job.started_at = job.started_at or self._clock.now()
        if worker_id is not None:
            job.lease_owner = worker_id
        self._touch(job)
        self._session.flush()
        self._publisher.publish(job)

    def _cursor_for(self, job: ImportJobModel) -> ChunkCursor:
        chunk = self._settings.chunk
        return ChunkCursor(
            job.file_path,
            chunk_size=chunk.chunk_size_bytes,
            max_chunk_size=chunk.max_chunk_size_bytes,
            allowed_tags=SCOPE_PREFIXES[ImportScope(job.scope)],
        )

    def _process_chunk(self, job: ImportJobModel) -> StepOutcome:
        chunk_number = job.chunk_number + 1
        checkpoint = job.checkpoint()

        with LogContext.bind(chunk_number=chunk_number):
            cursor = self._cursor_for(job)
            try:
                file_size = cursor.file_size()
                result = cursor.step(checkpoint)
            except SourceFileUnreadableError as exc:
                if job.chunk_number > 0 or checkpoint.offset > 0:
                    return self._fail(
                        job, SourceReadError(exc.file_path, checkpoint.offset, exc.reason),
                    )
                return self._fail(job, exc)
            except (UnicodeError, ValueError, MemoryError) as exc:
                return self._fail(
                    job,
                    ChunkProcessingError(str(job.id), chunk_number, checkpoint.offset, str(exc)),
                )

            events, limited = self._apply_record_limit(job, result.events)

            # Rows left by an earlier attempt at this chunk are replaced
            savepoint = self._session.begin_nested()
            try:
                self._raw.discard_from(job.id, chunk_number)
                self._raw.append(job.id, chunk_number, events)
                savepoint.commit()
            except SQLAlchemyError as exc:
                savepoint.rollback()
                logger.exception("raw_capture_failed")
                return self._fail(
                    job,
                    ChunkProcessingError(str(job.id), chunk_number, checkpoint.offset, str(exc)),
                )

            if file_size != job.file_size:
                logger.warning(
                    "file_size_changed",
                    extra={"recorded": job.file_size, "actual": file_size},
                )
                job.file_size = file_size

            captured = Counter(event.family.value for event in events)
            job.chunk_number = chunk_number
            job.set_checkpoint(result.checkpoint)
            job.bytes_processed = min(result.checkpoint.offset, job.file_size)
            job.progress = max(job.progress, ingestion_progress(job.bytes_processed, job.file_size))
            job.counts = merge_counts(job.counts, result, captured, limited)
            conflict = self._adopt_header(job, result.checkpoint.context)
            self._touch(job)
            self._session.flush()

            logger.info(
                "chunk_processed",
                extra={
                    "start_offset": result.start_offset,
                    "checkpoint_offset": result.checkpoint.offset,
                    "window_bytes": result.window_bytes,
                    "records_captured": len(events),
                    "records_over_limit": limited,
                    "rewound": result.checkpoint.discarded_open_document,
                    "progress": job.progress,
                },
            )

            if conflict is not None:
                return self._fail(job, conflict)
            self._publisher.publish(job)

            if result.eof:
                if not result.checkpoint.context.header_seen:
                    lines = (job.counts or {}).get("lines", 0)
                    return self._fail(job, HeaderNotFoundError(job.file_path, lines))
                job.total_lines = (job.counts or {}).get("lines", 0)
                return self._generate(job)
            return self._outcome(job, len(events))

    def _apply_record_limit(
        self,
        job: ImportJobModel,
        events: tuple[DomainEvent, ...],
    ) -> tuple[list[DomainEvent], int]:
        """Drop movement records past ``record_limit`` per family."""
        if job.record_limit is None:
            return list(events), 0

        totals = Counter((job.counts or {}).get("raw", {}))
        kept: list[DomainEvent] = []
        dropped = 0
        for event in events:
            if event.family in LIMITED_FAMILIES and totals[event.family.value] >= job.record_limit:
                dropped += 1
                continue
            totals[event.family.value] += 1
            kept.append(event)
        return kept, dropped

    def _adopt_header(
        self,
        job: ImportJobModel,
        context: ParseContext,
    ) -> DuplicateImportError | None:
        """Record header facts the probe missed and re-run the duplicate guard."""
        if job.fiscal_period or not context.header_seen or not context.period:
            return None

        job.fiscal_period = context.period
        job.filer_tax_id = context.filer_tax_id
        if job.branch_id is None:
            job.branch_key = context.filer_tax_id
        logger.info(
            "header_adopted",
            extra={"fiscal_period": job.fiscal_period, "filer_tax_id": job.filer_tax_id},
        )

        conflict = self._guard.check(
            job.branch_key, job.fiscal_period, job.filer_tax_id, exclude_job_id=job.id,
        )
        if conflict is None:
            return None
        return DuplicateImportError(
            period=conflict.period,
            filer_tax_id=conflict.filer_tax_id,
            existing_job_id=str(conflict.existing_job_id),
            existing_status=conflict.existing_status.value,
        )

    def _generate(self, job: ImportJobModel) -> StepOutcome:
        """Consolidate, refresh views and complete."""
        self._transition(job, ImportJobStatus.GENERATING)
        job.progress = PROGRESS_GENERATING
        self._touch(job)
        self._session.flush()
        self._publisher.publish(job)

        try:
            result = self._consolidation.consolidate(job.id)
        except ConsolidationError as exc:
            return self._fail(job, exc)

        job.counts = {**(job.counts or {}), "consolidated": result.to_dict()}
        self._transition(job, ImportJobStatus.REFRESHING_VIEWS)
        job.progress = PROGRESS_REFRESHING
        self._touch(job)
        self._session.flush()
        self._publisher.publish(job)

        refresh = self._settings.refresh
        outcome = run_refresh_with_timeout(self._refresher, refresh.views, refresh.timeout_seconds)
        job.refresh_pending = outcome.pending
        job.counts = {**job.counts, "refresh": outcome.to_dict()}

        self._transition(job, ImportJobStatus.COMPLETED)
        job.progress = PROGRESS_COMPLETED
        job.completed_at = self._clock.now()
        job.lease_owner = None
        self._touch(job)
        self._session.flush()

        logger.info(
            "import_job_completed",
            extra={
                "total_lines": job.total_lines,
                "chunks": job.chunk_number,
                "raw": job.counts.get("raw", {}),
                "refresh_pending": job.refresh_pending,
            },
        )
        self._publisher.publish(job)
        return self._outcome(job)

    def _fail(self, job: ImportJobModel, error: FiscalKernelError) -> StepOutcome:
        self._transition(job, ImportJobStatus.FAILED)
        job.error_code = error.code
        job.error_message = str(error)
        job.lease_owner = None
        self._touch(job)
        self._session.flush()

        logger.error(
            "import_job_failed",
            extra={
                "error_code": error.code,
                "error_message": str(error),
                "resumable": job.resumable,
                "checkpoint_offset": job.checkpoint_offset,
            },
        )
        self._publisher.publish(job)
        return self._outcome(job)

    # -------------------------------------------------------------------------
    # Internal: helpers
    # -------------------------------------------------------------------------

    def _lock_job(self, job_id: UUID) -> ImportJobModel:
        job = self._session.execute(
            select(ImportJobModel)
            .where(ImportJobModel.id == job_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if job is None:
            raise ImportJobNotFoundError(str(job_id))
        return job

    def _transition(self, job: ImportJobModel, to_status: ImportJobStatus) -> None:
        from_status = ImportJobStatus(job.status)
        if not can_transition(from_status, to_status):
            raise InvalidJobTransitionError(str(job.id), from_status.value, to_status.value)
        job.status = to_status.value
        logger.info(
            "import_job_transition",
            extra={"from_status": from_status.value, "to_status": to_status.value},
        )

    def _touch(self, job: ImportJobModel) -> None:
        job.updated_at = self._clock.now()

    def _stale_cutoff(self, threshold_seconds: int | None):
        seconds = threshold_seconds
        if seconds is None:
            seconds = self._settings.worker.stale_after_seconds
        return self._clock.now() - timedelta(seconds=seconds)

    def _is_stale(self, job: ImportJobModel) -> bool:
        return job.updated_at is None or job.updated_at < self._stale_cutoff(None)

    def _outcome(
        self,
        job: ImportJobModel,
        records_captured: int = 0,
        leased_elsewhere: bool = False,
    ) -> StepOutcome:
        return StepOutcome(
            job_id=job.id,
            status=ImportJobStatus(job.status),
            chunk_number=job.chunk_number,
            records_captured=records_captured,
            bytes_processed=job.bytes_processed,
            progress=job.progress,
            leased_elsewhere=leased_elsewhere,
        )
