"""
FamilyConsolidator protocol and the shared movement aggregation.

A consolidator turns one record family of a job's raw capture into rows of
one business table.  ConsolidationService runs each consolidator inside
its own SAVEPOINT.

Aggregates are recomputed from the raw rows on every run and written with
set semantics (insert or overwrite on the natural key), never added to
existing values, so running a consolidator twice for the same job leaves
the table unchanged.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from fiscal_kernel.domain.clock import Clock

from fiscal_ingestion.domain.types import ZERO, RecordFamily, TableConsolidation

if TYPE_CHECKING:
    from fiscal_ingestion.models.import_job import ImportJobModel
    from fiscal_ingestion.services.raw_capture import RawCaptureStore


class FamilyConsolidator(Protocol):
    """Protocol for aggregating one raw record family into a business table."""

    @property
    def table_name(self) -> str:
        """Business table this consolidator writes (e.g. 'merchandise_movements')."""
        ...

    @property
    def family(self) -> RecordFamily:
        ...

    def consolidate(
        self,
        job: ImportJobModel,
        raw_store: RawCaptureStore,
        session: Session,
        clock: Clock,
    ) -> TableConsolidation:
        """Upsert the job's aggregates.  Runs inside a SAVEPOINT."""
        ...


def resolve_branch_key(job: ImportJobModel, payload: dict[str, Any]) -> str:
    """Branch a raw record belongs to: explicit job branch, else its establishment."""
    if job.branch_id is not None:
        return str(job.branch_id)
    return payload.get("branch_tax_id") or job.filer_tax_id or ""


def _amount(payload: dict[str, Any], column: str) -> Decimal:
    raw = payload.get(column)
    return Decimal(raw) if raw else ZERO


class MovementConsolidator:
    """Sum raw payloads per natural key and upsert one row per key.

    Subclasses set ``model``, ``family``, ``key_columns`` and
    ``amount_columns`` and implement ``key_for``.
    """

    model: Any
    family: RecordFamily
    key_columns: tuple[str, ...] = ("direction",)
    amount_columns: tuple[str, ...] = ("value", "pis", "cofins", "icms")

    @property
    def table_name(self) -> str:
        return self.model.__tablename__

    def key_for(self, payload: dict[str, Any]) -> tuple[str, ...]:
        raise NotImplementedError

    def attributes_for(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Non-key, non-summed columns; later records win."""
        return {}

    def consolidate(
        self,
        job: ImportJobModel,
        raw_store: RawCaptureStore,
        session: Session,
        clock: Clock,
    ) -> TableConsolidation:
        totals: dict[tuple[str, ...], dict[str, Any]] = {}
        raw_count = 0
        for payload in raw_store.iter_payloads(job.id, self.family):
            raw_count += 1
            key = (
                resolve_branch_key(job, payload),
                payload.get("period") or "",
                *self.key_for(payload),
            )
            agg = totals.get(key)
            if agg is None:
                agg = {column: ZERO for column in self.amount_columns}
                agg["document_count"] = 0
                totals[key] = agg
            for column in self.amount_columns:
                agg[column] += _amount(payload, column)
            agg["document_count"] += 1
            agg.update(self.attributes_for(payload))

        if not totals:
            return TableConsolidation(raw_count=raw_count)

        existing = self._existing_rows(session, totals)
        now = clock.now()
        inserted = 0
        updated = 0
        for key, agg in totals.items():
            row = existing.get(key)
            if row is None:
                row = self.model(
                    **dict(zip(("branch_key", "period", *self.key_columns), key)),
                    created_by_id=job.created_by_id,
                )
                row.created_at = now
                session.add(row)
                inserted += 1
            else:
                row.updated_by_id = job.created_by_id
                updated += 1
            for column, value in agg.items():
                setattr(row, column, value)
            row.import_job_id = job.id
            row.updated_at = now

        session.flush()
        return TableConsolidation(inserted=inserted, updated=updated, raw_count=raw_count)

    def _existing_rows(
        self,
        session: Session,
        totals: dict[tuple[str, ...], dict[str, Any]],
    ) -> dict[tuple[str, ...], Any]:
        model = self.model
        branches = {key[0] for key in totals}
        periods = {key[1] for key in totals}
        rows = session.scalars(
            select(model).where(
                model.branch_key.in_(branches),
                model.period.in_(periods),
            )
        )
        columns = ("branch_key", "period", *self.key_columns)
        return {
            tuple(getattr(row, column) for column in columns): row
            for row in rows
        }
