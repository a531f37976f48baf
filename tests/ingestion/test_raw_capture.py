"""
Tests for RawCaptureStore -- the append-only recovery log.
"""

from decimal import Decimal

from fiscal_ingestion.domain.types import Direction, DomainEvent, RecordFamily
from fiscal_ingestion.services.raw_capture import RawCaptureStore


def _event(family=RecordFamily.MERCHANDISE, value="10.00", tag="C100"):
    return DomainEvent(
        family=family,
        record_type=tag,
        period="2024-03",
        fields=(tag, "0"),
        direction=Direction.INBOUND,
        value=Decimal(value),
    )


class TestAppend:
    def test_append_returns_row_count(self, db_session, clock, make_job):
        job = make_job()
        store = RawCaptureStore(db_session, clock)

        added = store.append(job.id, 1, [_event(), _event(value="20.00")])

        assert added == 2
        assert store.count(job.id) == 2

    def test_empty_chunk_adds_nothing(self, db_session, clock, make_job):
        job = make_job()
        store = RawCaptureStore(db_session, clock)
        assert store.append(job.id, 1, []) == 0
        assert store.count(job.id) == 0

    def test_payloads_iterate_in_capture_order(self, db_session, clock, make_job):
        job = make_job()
        store = RawCaptureStore(db_session, clock)
        store.append(job.id, 2, [_event(value="3.00")])
        store.append(job.id, 1, [_event(value="1.00"), _event(value="2.00")])

        values = [p["value"] for p in store.iter_payloads(job.id, RecordFamily.MERCHANDISE)]
        assert values == ["1.00", "2.00", "3.00"]

    def test_count_by_family(self, db_session, clock, make_job):
        job = make_job()
        store = RawCaptureStore(db_session, clock)
        store.append(job.id, 1, [_event(), _event(RecordFamily.SERVICES, tag="A100")])

        assert store.count(job.id, RecordFamily.SERVICES) == 1
        assert store.count(job.id, RecordFamily.FREIGHT) == 0

    def test_jobs_are_isolated(self, db_session, clock, make_job):
        first = make_job()
        second = make_job(fiscal_period="2024-04")
        store = RawCaptureStore(db_session, clock)
        store.append(first.id, 1, [_event()])

        assert store.count(second.id) == 0


class TestDiscard:
    def test_discard_from_removes_chunk_and_later(self, db_session, clock, make_job):
        job = make_job()
        store = RawCaptureStore(db_session, clock)
        store.append(job.id, 1, [_event()])
        store.append(job.id, 2, [_event(), _event()])
        store.append(job.id, 3, [_event()])

        removed = store.discard_from(job.id, 2)

        assert removed == 3
        assert store.count(job.id) == 1

    def test_rewriting_a_chunk_does_not_duplicate(self, db_session, clock, make_job):
        job = make_job()
        store = RawCaptureStore(db_session, clock)
        store.append(job.id, 1, [_event(), _event()])

        store.discard_from(job.id, 1)
        store.append(job.id, 1, [_event(), _event()])

        assert store.count(job.id) == 2

    def test_purge_removes_everything(self, db_session, clock, make_job):
        job = make_job()
        store = RawCaptureStore(db_session, clock)
        store.append(job.id, 1, [_event()])
        store.append(job.id, 2, [_event()])

        assert store.purge(job.id) == 2
        assert store.count(job.id) == 0
