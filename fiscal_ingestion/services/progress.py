"""
Progress notifications for import jobs.

Listeners receive a ProgressEvent at every chunk boundary and lifecycle
transition.  Delivery is best effort: a listener that raises is logged
and skipped, it never affects the job.
"""

from __future__ import annotations

from typing import Iterable, Protocol

from fiscal_kernel.logging_config import get_logger

from fiscal_ingestion.domain.types import ImportJobStatus, ProgressEvent
from fiscal_ingestion.models.import_job import ImportJobModel

logger = get_logger("ingestion.progress")


class ProgressListener(Protocol):
    """Receives job progress and terminal outcomes."""

    def on_progress(self, event: ProgressEvent) -> None: ...

    def on_completed(self, event: ProgressEvent) -> None: ...

    def on_failed(self, event: ProgressEvent) -> None: ...


class RecordingListener:
    """Keeps every event in memory.  Used by the CLI and tests."""

    def __init__(self) -> None:
        self.events: list[ProgressEvent] = []

    def on_progress(self, event: ProgressEvent) -> None:
        self.events.append(event)

    def on_completed(self, event: ProgressEvent) -> None:
        self.events.append(event)

    def on_failed(self, event: ProgressEvent) -> None:
        self.events.append(event)

    def statuses(self) -> list[ImportJobStatus]:
        return [e.status for e in self.events]


def progress_event(job: ImportJobModel) -> ProgressEvent:
    """Snapshot ``job`` as a ProgressEvent."""
    return ProgressEvent(
        job_id=job.id,
        status=ImportJobStatus(job.status),
        progress=job.progress,
        bytes_processed=job.bytes_processed,
        chunk_number=job.chunk_number,
        counts=dict(job.counts or {}),
        error_message=job.error_message,
        resumable=job.resumable,
    )


class ProgressPublisher:
    """Fans a job snapshot out to all listeners."""

    def __init__(self, listeners: Iterable[ProgressListener] = ()):
        self._listeners = list(listeners)

    def add(self, listener: ProgressListener) -> None:
        self._listeners.append(listener)

    def publish(self, job: ImportJobModel) -> ProgressEvent:
        event = progress_event(job)
        if event.status == ImportJobStatus.COMPLETED:
            method = "on_completed"
        elif event.status == ImportJobStatus.FAILED:
            method = "on_failed"
        else:
            method = "on_progress"

        for listener in self._listeners:
            try:
                getattr(listener, method)(event)
            except Exception:
                logger.exception(
                    "progress_listener_failed",
                    extra={"listener": type(listener).__name__, "status": event.status.value},
                )
        return event
