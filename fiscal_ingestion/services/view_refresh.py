"""
Downstream materialized view refresh with a bounded timeout.

The reporting layer reads the business tables through materialized views.
After consolidation the orchestrator asks a ViewRefresher to refresh them;
the call runs on a helper thread and is abandoned after
``timeout_seconds``.  Timeouts and errors are soft failures: the job still
completes, flagged ``refresh_pending``.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy import text
from sqlalchemy.engine import Engine

from fiscal_kernel.exceptions import ViewRefreshError, ViewRefreshTimeoutError
from fiscal_kernel.logging_config import get_logger

logger = get_logger("ingestion.view_refresh")


class ViewRefresher(Protocol):
    """Refreshes downstream reporting views."""

    def refresh(self, views: tuple[str, ...]) -> None:
        """Refresh ``views``.  May block; the caller bounds it."""
        ...


class SqlViewRefresher:
    """REFRESH MATERIALIZED VIEW on PostgreSQL; no-op on other dialects."""

    def __init__(self, engine: Engine):
        self._engine = engine

    def refresh(self, views: tuple[str, ...]) -> None:
        if self._engine.dialect.name != "postgresql":
            logger.debug(
                "view_refresh_unsupported_dialect",
                extra={"dialect": self._engine.dialect.name},
            )
            return
        quote = self._engine.dialect.identifier_preparer.quote
        with self._engine.begin() as conn:
            for view in views:
                conn.execute(text(f"REFRESH MATERIALIZED VIEW {quote(view)}"))


class NullViewRefresher:
    """Refresher for deployments without a reporting layer."""

    def refresh(self, views: tuple[str, ...]) -> None:
        return None


@dataclass(frozen=True)
class RefreshOutcome:
    """Result of a bounded refresh attempt."""

    success: bool
    views: tuple[str, ...]
    error_code: str | None = None
    error_message: str | None = None

    @property
    def pending(self) -> bool:
        return not self.success

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "pending": self.pending,
            "views": list(self.views),
            "error_code": self.error_code,
        }


def run_refresh_with_timeout(
    refresher: ViewRefresher,
    views: tuple[str, ...],
    timeout_seconds: float,
) -> RefreshOutcome:
    """Run ``refresher.refresh(views)`` for at most ``timeout_seconds``.

    Never raises.  A refresh still running at the deadline keeps running
    on its helper thread; the caller does not wait for it.
    """
    if not views:
        return RefreshOutcome(success=True, views=views)

    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="view-refresh")
    future = pool.submit(refresher.refresh, views)
    try:
        future.result(timeout=timeout_seconds)
    except FutureTimeoutError:
        error: ViewRefreshError = ViewRefreshTimeoutError(views, timeout_seconds)
        logger.warning("view_refresh_timed_out", extra={"views": list(views), "timeout_seconds": timeout_seconds})
        return RefreshOutcome(False, views, error.code, str(error))
    except Exception as exc:
        error = ViewRefreshError(views, str(exc))
        logger.warning("view_refresh_failed", extra={"views": list(views)}, exc_info=True)
        return RefreshOutcome(False, views, error.code, str(error))
    finally:
        pool.shutdown(wait=False)

    logger.info("views_refreshed", extra={"views": list(views)})
    return RefreshOutcome(success=True, views=views)
