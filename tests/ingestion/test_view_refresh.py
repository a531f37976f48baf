"""
Tests for the bounded view refresh.
"""

from fiscal_ingestion.services.view_refresh import (
    NullViewRefresher,
    SqlViewRefresher,
    run_refresh_with_timeout,
)


def test_successful_refresh(refresher):
    outcome = run_refresh_with_timeout(refresher, ("mv_a",), 1.0)

    assert outcome.success
    assert not outcome.pending
    assert refresher.calls == [("mv_a",)]


def test_timeout_returns_pending(slow_refresher):
    outcome = run_refresh_with_timeout(slow_refresher, ("mv_a",), 0.05)

    assert outcome.pending
    assert outcome.error_code == "VIEW_REFRESH_TIMEOUT"
    assert "timed out" in outcome.error_message


def test_error_returns_pending(failing_refresher, captured_logs):
    outcome = run_refresh_with_timeout(failing_refresher, ("mv_a",), 1.0)

    assert outcome.pending
    assert outcome.error_code == "VIEW_REFRESH_FAILED"
    assert outcome.to_dict()["pending"] is True
    assert any(r["message"] == "view_refresh_failed" for r in captured_logs())


def test_no_views_is_immediate_success(failing_refresher):
    outcome = run_refresh_with_timeout(failing_refresher, (), 1.0)
    assert outcome.success
    assert failing_refresher.calls == []


def test_sql_refresher_skips_non_postgres(db_engine):
    SqlViewRefresher(db_engine).refresh(("mv_a",))


def test_null_refresher():
    assert NullViewRefresher().refresh(("mv_a",)) is None
