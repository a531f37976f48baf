"""
Participant consolidator (0150 records).

Upserts one participant per (branch_key, participant_code); the last 0150
for a code wins.  Every branch of the job (the job branch / filer, plus
each 0140 establishment) also gets the two generic participants used for
documents without a participant code.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from fiscal_kernel.domain.clock import Clock

from fiscal_ingestion.consolidators.base import resolve_branch_key
from fiscal_ingestion.domain.parser import (
    GENERIC_INBOUND_PARTICIPANT,
    GENERIC_OUTBOUND_PARTICIPANT,
)
from fiscal_ingestion.domain.types import RecordFamily, TableConsolidation
from fiscal_ingestion.models.consolidated import ParticipantModel

if TYPE_CHECKING:
    from fiscal_ingestion.models.import_job import ImportJobModel
    from fiscal_ingestion.services.raw_capture import RawCaptureStore

GENERIC_PARTICIPANTS: dict[str, str] = {
    GENERIC_OUTBOUND_PARTICIPANT: "CONSUMIDOR FINAL",
    GENERIC_INBOUND_PARTICIPANT: "FORNECEDOR NAO IDENTIFICADO",
}


class ParticipantConsolidator:
    """Supplier/customer master data per branch."""

    family = RecordFamily.PARTICIPANTS

    @property
    def table_name(self) -> str:
        return ParticipantModel.__tablename__

    def consolidate(
        self,
        job: ImportJobModel,
        raw_store: RawCaptureStore,
        session: Session,
        clock: Clock,
    ) -> TableConsolidation:
        wanted: dict[tuple[str, str], dict[str, Any]] = {}
        raw_count = 0
        for payload in raw_store.iter_payloads(job.id, RecordFamily.PARTICIPANTS):
            raw_count += 1
            code = payload.get("participant_code")
            if not code:
                continue
            wanted[(resolve_branch_key(job, payload), code)] = {
                "name": payload.get("description") or code,
                "cnpj": payload.get("cnpj"),
                "cpf": payload.get("cpf"),
                "state_registration": payload.get("state_registration"),
                "city_code": payload.get("city_code"),
            }

        for branch_key in self._branch_keys(job, raw_store):
            for code, name in GENERIC_PARTICIPANTS.items():
                wanted.setdefault((branch_key, code), {"name": name})

        if not wanted:
            return TableConsolidation(raw_count=raw_count)

        existing = {
            (row.branch_key, row.participant_code): row
            for row in session.scalars(
                select(ParticipantModel).where(
                    ParticipantModel.branch_key.in_({key[0] for key in wanted}),
                )
            )
        }
        now = clock.now()
        inserted = 0
        updated = 0
        for (branch_key, code), attributes in wanted.items():
            row = existing.get((branch_key, code))
            if row is None:
                row = ParticipantModel(
                    branch_key=branch_key,
                    participant_code=code,
                    created_by_id=job.created_by_id,
                )
                row.created_at = now
                session.add(row)
                inserted += 1
            else:
                row.updated_by_id = job.created_by_id
                updated += 1
            for column, value in attributes.items():
                setattr(row, column, value)
            row.import_job_id = job.id
            row.updated_at = now

        session.flush()
        return TableConsolidation(inserted=inserted, updated=updated, raw_count=raw_count)

    def _branch_keys(self, job: ImportJobModel, raw_store: RawCaptureStore) -> set[str]:
        if job.branch_id is not None:
            return {str(job.branch_id)}
        keys = {job.filer_tax_id} if job.filer_tax_id else set()
        for payload in raw_store.iter_payloads(job.id, RecordFamily.ESTABLISHMENTS):
            if payload.get("counterparty_tax_id"):
                keys.add(payload["counterparty_tax_id"])
        return keys
