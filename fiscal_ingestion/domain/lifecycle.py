"""
Import job lifecycle: explicit transition table.

    pending -> processing <-> paused -> ...
    processing -> generating -> refreshing_views -> completed
    processing -> failed -> processing (explicit resume)
    {pending, processing, paused} -> cancelled

``failed`` is not terminal: resume re-enters ``processing`` from the
last checkpoint.  ``completed`` and ``cancelled`` are terminal.
"""

from __future__ import annotations

from fiscal_ingestion.domain.types import ImportJobStatus

S = ImportJobStatus

ALLOWED_TRANSITIONS: dict[ImportJobStatus, frozenset[ImportJobStatus]] = {
    S.PENDING: frozenset({S.PROCESSING, S.CANCELLED}),
    S.PROCESSING: frozenset({S.PAUSED, S.GENERATING, S.FAILED, S.CANCELLED}),
    S.PAUSED: frozenset({S.PROCESSING, S.CANCELLED}),
    # Consolidation/refresh failures are recorded like ingestion failures
    S.GENERATING: frozenset({S.REFRESHING_VIEWS, S.FAILED}),
    S.REFRESHING_VIEWS: frozenset({S.COMPLETED}),
    S.FAILED: frozenset({S.PROCESSING}),
    S.COMPLETED: frozenset(),
    S.CANCELLED: frozenset(),
}

TERMINAL_STATUSES: frozenset[ImportJobStatus] = frozenset({S.COMPLETED, S.CANCELLED})

# Statuses that hold the (branch, period) slot for the duplicate guard
ACTIVE_STATUSES: frozenset[ImportJobStatus] = frozenset({
    S.PENDING, S.PROCESSING, S.PAUSED, S.GENERATING, S.REFRESHING_VIEWS,
})

CANCELLABLE_STATUSES: frozenset[ImportJobStatus] = frozenset({
    S.PENDING, S.PROCESSING, S.PAUSED,
})

RESUMABLE_STATUSES: frozenset[ImportJobStatus] = frozenset({S.PAUSED, S.FAILED})


def can_transition(from_status: ImportJobStatus, to_status: ImportJobStatus) -> bool:
    """True if the lifecycle table allows ``from_status -> to_status``."""
    return to_status in ALLOWED_TRANSITIONS[from_status]


# Progress milestones after ingestion
PROGRESS_INGESTION_CAP = 90
PROGRESS_GENERATING = 92
PROGRESS_REFRESHING = 95
PROGRESS_COMPLETED = 100


def ingestion_progress(bytes_processed: int, file_size: int) -> int:
    """Percentage while processing, capped below the consolidation milestones."""
    if file_size <= 0:
        return PROGRESS_INGESTION_CAP
    return min(PROGRESS_INGESTION_CAP, bytes_processed * PROGRESS_INGESTION_CAP // file_size)
