"""
Typed Exception Hierarchy for the Fiscal Import Engine.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

An import job that fails must tell the caller whether the failure can be
resumed, whether it was a duplicate submission, or whether the file itself
is unusable.  Callers branch on the exception TYPE and on its ``code``
attribute, never on message text:

    try:
        service.start_import(...).raise_for_conflict()
    except DuplicateImportError as e:
        offer_replace(e.existing_job_id, e.period)

Every exception carries:
  1. a typed class (catch by type, not message)
  2. a ``code`` class attribute (machine-readable, persisted on the job row)
  3. structured attributes (job id, period, offsets, ...)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    FiscalKernelError (base)
    |
    +-- ImportJobError
    |   +-- ImportJobNotFoundError
    |   +-- InvalidJobTransitionError
    |   +-- DuplicateImportError
    |
    +-- SourceError                 (fatal, job cannot be resumed)
    |   +-- SourceFileUnreadableError
    |   +-- HeaderNotFoundError
    |
    +-- ProcessingError             (transient, job is resumable)
    |   +-- ChunkProcessingError
    |   +-- ConsolidationError
    |
    +-- ViewRefreshError            (soft, job still completes)
        +-- ViewRefreshTimeoutError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category   | Code                     | When Raised
-----------|--------------------------|------------------------------------------
Job        | IMPORT_JOB_NOT_FOUND     | Job id does not exist
           | INVALID_JOB_TRANSITION   | Transition not in the lifecycle table
           | DUPLICATE_IMPORT         | (branch, period) already imported/active
-----------|--------------------------|------------------------------------------
Source     | SOURCE_FILE_UNREADABLE   | File missing or unreadable
           | HEADER_NOT_FOUND         | EOF reached without a 0000 header
-----------|--------------------------|------------------------------------------
Processing | CHUNK_PROCESSING_FAILED  | Storage/parse failure during a chunk
           | CONSOLIDATION_FAILED     | Aggregation into business tables failed
-----------|--------------------------|------------------------------------------
Refresh    | VIEW_REFRESH_FAILED      | Downstream refresh raised
           | VIEW_REFRESH_TIMEOUT     | Downstream refresh exceeded its timeout

Malformed lines and degenerate nesting are NOT exceptions; they are
counted in the job diagnostics.

===============================================================================
"""

from __future__ import annotations


class FiscalKernelError(Exception):
    """
    Base exception for all fiscal import engine errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "FISCAL_KERNEL_ERROR"


# Job lifecycle exceptions


class ImportJobError(FiscalKernelError):
    """Base exception for import job lifecycle errors."""

    code: str = "IMPORT_JOB_ERROR"


class ImportJobNotFoundError(ImportJobError):
    """Import job with given ID was not found."""

    code: str = "IMPORT_JOB_NOT_FOUND"

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Import job not found: {job_id}")


class InvalidJobTransitionError(ImportJobError):
    """Requested status change is not allowed by the lifecycle table."""

    code: str = "INVALID_JOB_TRANSITION"

    def __init__(self, job_id: str, from_status: str, to_status: str):
        self.job_id = job_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Import job {job_id} cannot move from {from_status} to {to_status}"
        )


class DuplicateImportError(ImportJobError):
    """The (branch, period) pair was already imported or is being imported."""

    code: str = "DUPLICATE_IMPORT"

    def __init__(
        self,
        period: str,
        filer_tax_id: str | None,
        existing_job_id: str,
        existing_status: str,
    ):
        self.period = period
        self.filer_tax_id = filer_tax_id
        self.existing_job_id = existing_job_id
        self.existing_status = existing_status
        super().__init__(
            f"Period {period} for {filer_tax_id or 'branch'} already has "
            f"import {existing_job_id} ({existing_status})"
        )


# Source exceptions (fatal)


class SourceError(FiscalKernelError):
    """Base exception for problems with the uploaded file itself."""

    code: str = "SOURCE_ERROR"


class SourceFileUnreadableError(SourceError):
    """The source file does not exist or cannot be read."""

    code: str = "SOURCE_FILE_UNREADABLE"

    def __init__(self, file_path: str, reason: str):
        self.file_path = file_path
        self.reason = reason
        super().__init__(f"Cannot read source file {file_path}: {reason}")


class HeaderNotFoundError(SourceError):
    """End of file reached without a header record, so no fiscal period."""

    code: str = "HEADER_NOT_FOUND"

    def __init__(self, file_path: str, lines_read: int):
        self.file_path = file_path
        self.lines_read = lines_read
        super().__init__(
            f"No 0000 header record found in {file_path} after {lines_read} lines"
        )


# Processing exceptions (transient)


class ProcessingError(FiscalKernelError):
    """Base exception for recoverable failures during a processing step."""

    code: str = "PROCESSING_ERROR"


class ChunkProcessingError(ProcessingError):
    """A chunk could not be parsed or captured."""

    code: str = "CHUNK_PROCESSING_FAILED"

    def __init__(self, job_id: str, chunk_number: int, offset: int, reason: str):
        self.job_id = job_id
        self.chunk_number = chunk_number
        self.offset = offset
        self.reason = reason
        super().__init__(
            f"Chunk {chunk_number} of job {job_id} at offset {offset} failed: {reason}"
        )


class SourceReadError(ProcessingError):
    """The source file became unreadable after chunks were already captured.

    Unlike SourceFileUnreadableError the job keeps its checkpoint and can
    be resumed once the file is back.
    """

    code: str = "SOURCE_READ_FAILED"

    def __init__(self, file_path: str, offset: int, reason: str):
        self.file_path = file_path
        self.offset = offset
        self.reason = reason
        super().__init__(f"Reading {file_path} at offset {offset} failed: {reason}")


class ConsolidationError(ProcessingError):
    """Aggregating raw records into a business table failed."""

    code: str = "CONSOLIDATION_FAILED"

    def __init__(self, job_id: str, table: str, reason: str):
        self.job_id = job_id
        self.table = table
        self.reason = reason
        super().__init__(f"Consolidation of {table} for job {job_id} failed: {reason}")


# View refresh exceptions (soft)


class ViewRefreshError(FiscalKernelError):
    """Downstream materialized view refresh failed."""

    code: str = "VIEW_REFRESH_FAILED"

    def __init__(self, views: tuple[str, ...], reason: str):
        self.views = views
        self.reason = reason
        super().__init__(f"Refresh of {len(views)} view(s) failed: {reason}")


class ViewRefreshTimeoutError(ViewRefreshError):
    """Downstream refresh did not finish within its timeout."""

    code: str = "VIEW_REFRESH_TIMEOUT"

    def __init__(self, views: tuple[str, ...], timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(views, f"timed out after {timeout_seconds}s")


# Failures that leave no checkpoint progress worth resuming from.
FATAL_ERROR_CODES: frozenset[str] = frozenset({
    SourceFileUnreadableError.code,
    HeaderNotFoundError.code,
    DuplicateImportError.code,
})
