"""
Tests for DuplicateGuard -- one import per (branch, fiscal period).
"""

import pytest

from fiscal_ingestion.domain.types import ImportJobStatus
from fiscal_ingestion.services.duplicate_guard import DuplicateGuard

FILER = "12345678000199"


@pytest.fixture
def guard(db_session):
    return DuplicateGuard(db_session)


class TestBlocking:
    @pytest.mark.parametrize(
        "status",
        [
            ImportJobStatus.PENDING,
            ImportJobStatus.PROCESSING,
            ImportJobStatus.PAUSED,
            ImportJobStatus.GENERATING,
            ImportJobStatus.REFRESHING_VIEWS,
            ImportJobStatus.COMPLETED,
        ],
    )
    def test_existing_job_blocks(self, guard, make_job, status):
        existing = make_job(status=status)

        conflict = guard.check(FILER, "2024-03", FILER)

        assert conflict is not None
        assert conflict.existing_job_id == existing.id
        assert conflict.existing_status == status
        assert conflict.period == "2024-03"

    def test_resumable_failure_blocks(self, guard, make_job):
        existing = make_job(status=ImportJobStatus.FAILED, error_code="CHUNK_PROCESSING_FAILED")
        conflict = guard.check(FILER, "2024-03")
        assert conflict.existing_job_id == existing.id

    def test_filer_taken_from_existing_when_not_given(self, guard, make_job):
        make_job(status=ImportJobStatus.COMPLETED)
        assert guard.check(FILER, "2024-03").filer_tax_id == FILER


class TestNotBlocking:
    def test_cancelled_job_does_not_block(self, guard, make_job):
        make_job(status=ImportJobStatus.CANCELLED)
        assert guard.check(FILER, "2024-03") is None

    @pytest.mark.parametrize("code", ["SOURCE_FILE_UNREADABLE", "HEADER_NOT_FOUND", "DUPLICATE_IMPORT"])
    def test_fatal_failure_does_not_block(self, guard, make_job, code):
        make_job(status=ImportJobStatus.FAILED, error_code=code)
        assert guard.check(FILER, "2024-03") is None

    def test_purged_job_does_not_block(self, guard, make_job, clock):
        make_job(status=ImportJobStatus.COMPLETED, purged_at=clock.now())
        assert guard.check(FILER, "2024-03") is None

    def test_other_period_or_branch_does_not_block(self, guard, make_job):
        make_job(status=ImportJobStatus.COMPLETED)
        assert guard.check(FILER, "2024-04") is None
        assert guard.check("99888777000166", "2024-03") is None

    def test_missing_key_parts_pass(self, guard, make_job):
        make_job(status=ImportJobStatus.COMPLETED)
        assert guard.check(None, "2024-03") is None
        assert guard.check(FILER, None) is None

    def test_excluded_job_is_ignored(self, guard, make_job):
        job = make_job(status=ImportJobStatus.PROCESSING)
        assert guard.check(FILER, "2024-03", exclude_job_id=job.id) is None
