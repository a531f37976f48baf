"""
ImportWorker -- in-process polling worker for import jobs.

Contract:
    Polls for runnable jobs on a configurable interval, leases one with
    ``ImportService.claim_next()`` and drives it chunk by chunk.  Every
    chunk is committed on its own, so pause/cancel requests from other
    sessions land between chunks and a crash loses at most one chunk.

Architecture: fiscal_ingestion/services.  Uses ImportService for all job
    state changes; owns only the thread and the per-chunk sessions.

Guarantees:
    - Graceful shutdown: the stop signal is honored between chunks.
    - Different jobs may run on different workers; one job never runs on
      two workers at once (lease).
"""

from __future__ import annotations

import socket
import threading
from typing import Callable
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from fiscal_kernel.logging_config import LogContext, get_logger

from fiscal_ingestion.services.import_service import ImportService

logger = get_logger("ingestion.worker")


def default_worker_id() -> str:
    return f"{socket.gethostname()}-{uuid4().hex[:8]}"


class ImportWorker:
    """Background worker that drives import jobs to completion.

    Contract:
        - ``tick()`` claims one job and runs it until it leaves processing,
          loses its lease to another worker, or the worker is stopped.
        - ``start()`` / ``stop()`` for background thread operation.

    Non-goals:
        - NOT a distributed queue (leases live on the job row).
        - Does NOT retry failed jobs -- resume is an explicit user action.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        service_factory: Callable[[Session], ImportService],
        poll_interval_seconds: float = 5.0,
        worker_id: str | None = None,
    ):
        self._session_factory = session_factory
        self._service_factory = service_factory
        self._poll_interval = poll_interval_seconds
        self._worker_id = worker_id or default_worker_id()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def worker_id(self) -> str:
        return self._worker_id

    @property
    def poll_interval_seconds(self) -> float:
        return self._poll_interval

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> UUID | None:
        """Claim and drive one job (public for testing).

        Returns the id of the job that was worked on, or None when nothing
        was runnable.
        """
        job_id = self._claim()
        if job_id is None:
            return None

        with LogContext.bind(job_id=str(job_id), producer="worker"):
            while not self._stop_event.is_set():
                session = self._session_factory()
                try:
                    outcome = self._service_factory(session).run_step(job_id, self._worker_id)
                    session.commit()
                except Exception:
                    session.rollback()
                    logger.exception("worker_step_failed", extra={"worker_id": self._worker_id})
                    break
                finally:
                    session.close()
                if outcome.leased_elsewhere:
                    logger.warning("worker_lease_lost", extra={"worker_id": self._worker_id})
                if outcome.done:
                    break
            else:
                self._release(job_id)
        return job_id

    def start(self) -> None:
        """Start the worker in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name=f"import-worker-{self._worker_id}",
            daemon=True,
        )
        self._thread.start()
        logger.info(
            "worker_started",
            extra={"worker_id": self._worker_id, "poll_interval": self._poll_interval},
        )

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current chunk to finish.

        Args:
            timeout: Max seconds to wait for the thread to finish.
        """
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("worker_stopped", extra={"worker_id": self._worker_id})

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        """Background polling loop.  Exits when stop_event is set."""
        while not self._stop_event.is_set():
            try:
                worked = self.tick()
            except Exception:
                logger.exception("worker_tick_exception")
                worked = None
            if worked is None:
                self._stop_event.wait(timeout=self._poll_interval)

    def _claim(self) -> UUID | None:
        session = self._session_factory()
        try:
            job_id = self._service_factory(session).claim_next(self._worker_id)
            session.commit()
            return job_id
        except Exception:
            session.rollback()
            logger.exception("worker_claim_failed", extra={"worker_id": self._worker_id})
            return None
        finally:
            session.close()

    def _release(self, job_id: UUID) -> None:
        """Give the lease back when stopping mid-job."""
        session = self._session_factory()
        try:
            self._service_factory(session).release(job_id, self._worker_id)
            session.commit()
        except Exception:
            session.rollback()
            logger.exception("worker_release_failed", extra={"job_id": str(job_id)})
        finally:
            session.close()
