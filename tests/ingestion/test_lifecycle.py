"""
Tests for fiscal_ingestion.domain.lifecycle and the job DTOs.
"""

from uuid import uuid4

import pytest

from fiscal_kernel.exceptions import DuplicateImportError
from fiscal_ingestion.domain.lifecycle import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    can_transition,
    ingestion_progress,
)
from fiscal_ingestion.domain.types import (
    Checkpoint,
    ConflictResult,
    EfdType,
    ImportJobStatus,
    ParseContext,
    StartImportResult,
)

S = ImportJobStatus


class TestTransitions:
    @pytest.mark.parametrize(
        "from_status,to_status",
        [
            (S.PENDING, S.PROCESSING),
            (S.PROCESSING, S.PAUSED),
            (S.PAUSED, S.PROCESSING),
            (S.PROCESSING, S.GENERATING),
            (S.GENERATING, S.REFRESHING_VIEWS),
            (S.REFRESHING_VIEWS, S.COMPLETED),
            (S.PROCESSING, S.FAILED),
            (S.GENERATING, S.FAILED),
            (S.FAILED, S.PROCESSING),
            (S.PENDING, S.CANCELLED),
            (S.PAUSED, S.CANCELLED),
        ],
    )
    def test_allowed(self, from_status, to_status):
        assert can_transition(from_status, to_status)

    @pytest.mark.parametrize(
        "from_status,to_status",
        [
            (S.PENDING, S.COMPLETED),
            (S.PAUSED, S.GENERATING),
            (S.FAILED, S.CANCELLED),
            (S.GENERATING, S.CANCELLED),
            (S.REFRESHING_VIEWS, S.FAILED),
        ],
    )
    def test_rejected(self, from_status, to_status):
        assert not can_transition(from_status, to_status)

    def test_terminal_statuses_have_no_exits(self):
        for status in TERMINAL_STATUSES:
            assert ALLOWED_TRANSITIONS[status] == frozenset()

    def test_every_status_has_an_entry(self):
        assert set(ALLOWED_TRANSITIONS) == set(ImportJobStatus)


class TestIngestionProgress:
    @pytest.mark.parametrize(
        "done,size,expected",
        [(0, 1000, 0), (500, 1000, 45), (1000, 1000, 90), (5000, 1000, 90), (0, 0, 90)],
    )
    def test_capped_below_generation(self, done, size, expected):
        assert ingestion_progress(done, size) == expected


class TestCheckpoint:
    def test_round_trip(self):
        checkpoint = Checkpoint(
            offset=4096,
            context=ParseContext(
                period="2024-03",
                filer_tax_id="12345678000199",
                establishment_tax_id="99888777000166",
                efd_type=EfdType.CONTRIBUICOES,
                header_seen=True,
            ),
            discarded_open_document=True,
        )
        assert Checkpoint.from_dict(4096, checkpoint.to_dict()) == checkpoint

    def test_empty_state(self):
        assert Checkpoint.from_dict(0, None) == Checkpoint()


class TestStartImportResult:
    def test_success(self):
        job_id = uuid4()
        result = StartImportResult(job_id=job_id)
        assert not result.is_conflict
        assert result.raise_for_conflict() == job_id

    def test_conflict_raises(self):
        existing = uuid4()
        result = StartImportResult(conflict=ConflictResult(
            period="2024-03",
            filer_tax_id="1",
            existing_job_id=existing,
            existing_status=S.PROCESSING,
        ))
        with pytest.raises(DuplicateImportError) as exc_info:
            result.raise_for_conflict()
        assert exc_info.value.existing_status == "processing"
