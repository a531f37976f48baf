"""
Hierarchical parse state machine for fiscal ledger records.

Consumes tokenized ``LineRecord`` objects in file order and emits
``DomainEvent`` objects.  Three nesting levels matter:

1. Header (0000): fiscal period (YYYY-MM) and filer tax id.  Block
   openers (A010/C010/D010) switch the current establishment.
2. Documents (C100, D100, D500): open a document context with a
   direction and a declared total.
3. Details (C170, C175, D101/D105, D501/D505) and period credits
   (M100/M500): refine or add into the open context.

Closing records (C190/C990, D190/D590/D990) emit the open document when
its value is strictly positive.  Standalone records (A100, F100, C500,
C600, 0140, 0150) emit immediately.

The header decides the record layout.  EFD-Contribuicoes has no closing
record per freight document: a D100/D500 stays open while its D101/D105
or D501/D505 credits arrive and is emitted when the next D100/D500, D010
or D990 shows up (``close_pending``).  EFD ICMS/IPI carries the taxes on
the D100/D500 line itself, so those emit immediately; C500 and C600 also
use shifted field positions there.

Degenerate nesting is a policy, not an error: a document opened while
another is open replaces it and the old one is dropped; a document still
open at end of input is dropped.  Both are counted.

Counters are journaled between safe points (no document open) so the
chunk cursor can roll back the tail of a chunk it is going to re-read.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Callable

from fiscal_kernel.logging_config import get_logger

from fiscal_ingestion.domain.tokenizer import LineRecord, digits_only
from fiscal_ingestion.domain.types import (
    ZERO,
    Direction,
    DomainEvent,
    EfdType,
    ParseContext,
    RecordFamily,
)

logger = get_logger("ingestion.parser")

GENERIC_OUTBOUND_PARTICIPANT = "9999999999"  # Consumidor final
GENERIC_INBOUND_PARTICIPANT = "8888888888"  # Fornecedor nao identificado

DESCRIPTION_LIMIT = 200
NAME_LIMIT = 100

UTILITY_MODELS: dict[str, str] = {
    "06": "energy",
    "21": "communication",
    "22": "communication",
    "28": "gas",
    "29": "water",
}

# EFD-Contribuicoes: records that finalize an open D100/D500
FREIGHT_FINALIZERS = frozenset({"D010", "D100", "D500", "D990"})

# Diagnostic counter names
SEEN = "seen"
DIAG = "diagnostics"


@dataclass
class _OpenDocument:
    family: RecordFamily
    record_type: str
    fields: tuple[str, ...]
    direction: Direction
    value: Decimal = ZERO
    pis: Decimal = ZERO
    cofins: Decimal = ZERO
    icms: Decimal = ZERO
    ipi: Decimal = ZERO
    classification: str | None = None
    description: str | None = None
    participant_code: str | None = None
    counterparty_tax_id: str | None = None
    line_count: int = 1
    extra: dict[str, Any] = field(default_factory=dict)


def _direction(indicator: str) -> Direction:
    return Direction.INBOUND if indicator == "0" else Direction.OUTBOUND


def _ddmmyyyy(raw: str) -> date | None:
    if len(raw) != 8 or not raw.isdigit():
        return None
    try:
        return date(int(raw[4:8]), int(raw[2:4]), int(raw[0:2]))
    except ValueError:
        return None


def _truncate(raw: str, limit: int) -> str | None:
    return raw[:limit] if raw else None


class FiscalParser:
    """Per-document sub-state machine over a flat record stream.

    Usage::

        parser = FiscalParser(checkpoint.context)
        for record in records:
            events.extend(parser.feed(record))
        events.extend(parser.finish())  # only at end of input
    """

    def __init__(self, context: ParseContext | None = None):
        ctx = context or ParseContext()
        self._period = ctx.period
        self._filer_tax_id = ctx.filer_tax_id
        self._establishment_tax_id = ctx.establishment_tax_id
        self._efd_type = ctx.efd_type
        self._header_seen = ctx.header_seen
        self._doc: _OpenDocument | None = None
        self.counters: Counter[tuple[str, str]] = Counter()
        self._journal: list[tuple[str, str]] = []

        self._handlers: dict[str, Callable[[LineRecord], list[DomainEvent]]] = {
            "0000": self._on_header,
            "0140": self._on_establishment,
            "0150": self._on_participant,
            "A010": self._on_block_opening,
            "C010": self._on_block_opening,
            "D010": self._on_block_opening,
            "C100": self._on_merchandise_document,
            "C170": self._on_item_detail,
            "C175": self._on_item_taxes,
            "D100": self._on_freight_document,
            "D500": self._on_freight_document,
            "D101": self._on_freight_pis,
            "D501": self._on_freight_pis,
            "D105": self._on_freight_cofins,
            "D505": self._on_freight_cofins,
            "M100": self._on_pis_credit,
            "M500": self._on_cofins_credit,
            "C190": self._on_close,
            "C990": self._on_close,
            "D190": self._on_close,
            "D590": self._on_close,
            "D990": self._on_close,
            "A100": self._on_service,
            "F100": self._on_other_service,
            "C500": self._on_utility,
            "C600": self._on_consolidated_sale,
        }

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def document_open(self) -> bool:
        return self._doc is not None

    @property
    def period(self) -> str:
        return self._period

    def context(self) -> ParseContext:
        """Serializable snapshot.  Meaningful only while no document is open."""
        return ParseContext(
            period=self._period,
            filer_tax_id=self._filer_tax_id,
            establishment_tax_id=self._establishment_tax_id,
            efd_type=self._efd_type,
            header_seen=self._header_seen,
        )

    # -------------------------------------------------------------------------
    # Counters
    # -------------------------------------------------------------------------

    def _count(self, namespace: str, name: str) -> None:
        key = (namespace, name)
        self.counters[key] += 1
        self._journal.append(key)

    def note_skip(self, reason: str) -> None:
        """Record a line the tokenizer rejected ("malformed" / "filtered")."""
        self._count(DIAG, f"{reason}_lines")

    def commit_counters(self) -> None:
        """Make every increment so far permanent (called at safe points)."""
        self._journal.clear()

    def rollback_counters(self) -> None:
        """Undo increments made since the last ``commit_counters``."""
        for key in self._journal:
            self.counters[key] -= 1
            if self.counters[key] <= 0:
                del self.counters[key]
        self._journal.clear()

    def tallies(self) -> tuple[dict[str, int], dict[str, int]]:
        """Split counters into (seen, diagnostics)."""
        seen: dict[str, int] = {}
        diagnostics: dict[str, int] = {}
        for (namespace, name), value in self.counters.items():
            target = seen if namespace == SEEN else diagnostics
            target[name] = value
        return seen, diagnostics

    # -------------------------------------------------------------------------
    # Feed
    # -------------------------------------------------------------------------

    def feed(self, record: LineRecord) -> list[DomainEvent]:
        """Consume one record; return the events it completes."""
        handler = self._handlers.get(record.tag)
        if handler is None:
            return []
        events = self.close_pending(record)
        self._count(SEEN, record.tag)
        return events + handler(record)

    def close_pending(self, record: LineRecord) -> list[DomainEvent]:
        """Emit an open EFD-Contribuicoes freight document ``record`` ends.

        The chunk cursor calls this before deciding whether the line starts
        at a safe boundary, so a run of sibling D100s never leaves the
        cursor without a checkpoint.  ``feed`` calls it too; the second
        call is a no-op.
        """
        doc = self._doc
        if (
            doc is None
            or doc.family is not RecordFamily.FREIGHT
            or self._efd_type is EfdType.ICMS_IPI
            or record.tag not in FREIGHT_FINALIZERS
        ):
            return []
        self._doc = None
        return self._emit(doc)

    def finish(self) -> list[DomainEvent]:
        """End of input: an unclosed document is dropped, never flushed."""
        if self._doc is not None:
            self.discard_open_document("unclosed_documents")
        return []

    def discard_open_document(self, reason: str = "discarded_documents") -> None:
        if self._doc is None:
            return
        logger.debug(
            "document_discarded",
            extra={
                "record_type": self._doc.record_type,
                "reason": reason,
                "lines": self._doc.line_count,
                "period": self._period,
            },
        )
        self._count(DIAG, reason)
        self._doc = None

    # -------------------------------------------------------------------------
    # Header / context records
    # -------------------------------------------------------------------------

    def _on_header(self, r: LineRecord) -> list[DomainEvent]:
        start = _ddmmyyyy(r.field(4))
        if start is not None:
            self._efd_type = EfdType.ICMS_IPI
            filer = r.field(7)
        else:
            self._efd_type = EfdType.CONTRIBUICOES
            start = _ddmmyyyy(r.field(6))
            filer = r.field(9)
        self._period = f"{start.year:04d}-{start.month:02d}" if start else ""
        self._filer_tax_id = digits_only(filer) or None
        self._header_seen = True
        logger.debug(
            "header_parsed",
            extra={
                "period": self._period,
                "efd_type": self._efd_type.value,
                "filer_tax_id": self._filer_tax_id,
            },
        )
        return []

    def _on_block_opening(self, r: LineRecord) -> list[DomainEvent]:
        self._establishment_tax_id = digits_only(r.field(2)) or None
        return []

    def _on_establishment(self, r: LineRecord) -> list[DomainEvent]:
        return [self._standalone(
            r,
            RecordFamily.ESTABLISHMENTS,
            direction=None,
            counterparty_tax_id=digits_only(r.field(4)) or None,
            description=_truncate(r.field(3), NAME_LIMIT),
            extra={"establishment_code": r.field(2)},
        )]

    def _on_participant(self, r: LineRecord) -> list[DomainEvent]:
        cnpj = digits_only(r.field(5))
        cpf = digits_only(r.field(6))
        return [self._standalone(
            r,
            RecordFamily.PARTICIPANTS,
            direction=None,
            participant_code=r.field(2),
            description=_truncate(r.field(3), NAME_LIMIT),
            counterparty_tax_id=cnpj or cpf or None,
            extra={
                "cnpj": cnpj or None,
                "cpf": cpf or None,
                "state_registration": r.field(7) or None,
                "city_code": r.field(8) or None,
            },
        )]

    # -------------------------------------------------------------------------
    # Documents
    # -------------------------------------------------------------------------

    def _open(self, doc: _OpenDocument) -> list[DomainEvent]:
        if self._doc is not None:
            self.discard_open_document("discarded_documents")
        self._doc = doc
        return []

    def _on_merchandise_document(self, r: LineRecord) -> list[DomainEvent]:
        direction = _direction(r.field(2))
        participant = r.field(4)
        if not participant or participant == "0":
            participant = (
                GENERIC_INBOUND_PARTICIPANT
                if direction is Direction.INBOUND
                else GENERIC_OUTBOUND_PARTICIPANT
            )
        return self._open(_OpenDocument(
            family=RecordFamily.MERCHANDISE,
            record_type=r.tag,
            fields=r.fields,
            direction=direction,
            value=r.decimal(12),
            icms=r.decimal(22),
            ipi=r.decimal(25),
            pis=r.decimal(26),
            cofins=r.decimal(27),
            participant_code=participant,
            extra={"document_number": r.field(8) or None},
        ))

    def _on_freight_document(self, r: LineRecord) -> list[DomainEvent]:
        if self._efd_type is EfdType.ICMS_IPI:
            return self._on_icms_ipi_freight(r)
        if r.tag == "D100":
            # Carrier CNPJ sits inside the CT-e access key
            key = digits_only(r.field(10))
            carrier = key[6:20] if len(key) >= 20 else None
            value, icms = r.decimal(15), r.decimal(20)
        else:
            carrier = digits_only(r.field(4))
            value, icms = r.decimal(12), r.decimal(19)
        return self._open(_OpenDocument(
            family=RecordFamily.FREIGHT,
            record_type=r.tag,
            fields=r.fields,
            direction=_direction(r.field(2)),
            value=value,
            icms=icms,
            participant_code=r.field(4) or None,
            counterparty_tax_id=carrier or None,
        ))

    def _on_icms_ipi_freight(self, r: LineRecord) -> list[DomainEvent]:
        if r.tag == "D100":
            carrier = r.field(5)
            value, icms, pis, cofins = r.decimal(14), r.decimal(23), r.decimal(24), r.decimal(26)
        else:
            carrier = r.field(4)
            value, icms, pis, cofins = r.decimal(11), r.decimal(14), r.decimal(17), r.decimal(19)
        return self._valued(self._standalone(
            r,
            RecordFamily.FREIGHT,
            direction=_direction(r.field(2)),
            participant_code=r.field(4) or None,
            counterparty_tax_id=digits_only(carrier) or None,
            value=value,
            icms=icms,
            pis=pis,
            cofins=cofins,
        ))

    def _detail_target(self, family: RecordFamily) -> _OpenDocument | None:
        doc = self._doc
        if doc is None or doc.family is not family:
            self._count(DIAG, "orphan_details")
            return None
        doc.line_count += 1
        return doc

    def _on_item_detail(self, r: LineRecord) -> list[DomainEvent]:
        doc = self._detail_target(RecordFamily.MERCHANDISE)
        if doc is None:
            return []
        classification = r.field(8)
        description = r.field(4)
        if classification or description:
            doc.classification = classification or None
            doc.description = _truncate(description, DESCRIPTION_LIMIT)
            item_value = r.decimal(7)
            if item_value > 0:
                doc.value = item_value
        return []

    def _on_item_taxes(self, r: LineRecord) -> list[DomainEvent]:
        doc = self._detail_target(RecordFamily.MERCHANDISE)
        if doc is not None:
            doc.pis += r.decimal(6)
            doc.cofins += r.decimal(7)
        return []

    def _on_freight_pis(self, r: LineRecord) -> list[DomainEvent]:
        doc = self._detail_target(RecordFamily.FREIGHT)
        if doc is not None:
            doc.pis += r.decimal(8 if r.tag == "D101" else 7)
        return []

    def _on_freight_cofins(self, r: LineRecord) -> list[DomainEvent]:
        doc = self._detail_target(RecordFamily.FREIGHT)
        if doc is not None:
            doc.cofins += r.decimal(8 if r.tag == "D105" else 7)
        return []

    def _credit_target(self) -> _OpenDocument | None:
        doc = self._doc
        if doc is None or doc.direction is not Direction.INBOUND:
            self._count(DIAG, "orphan_credits")
            return None
        doc.line_count += 1
        return doc

    def _on_pis_credit(self, r: LineRecord) -> list[DomainEvent]:
        doc = self._credit_target()
        if doc is not None:
            doc.pis += r.decimal(7)
        return []

    def _on_cofins_credit(self, r: LineRecord) -> list[DomainEvent]:
        doc = self._credit_target()
        if doc is not None:
            doc.cofins += r.decimal(7)
        return []

    def _on_close(self, r: LineRecord) -> list[DomainEvent]:
        doc = self._doc
        family = RecordFamily.MERCHANDISE if r.tag.startswith("C") else RecordFamily.FREIGHT
        if doc is None or doc.family is not family:
            return []
        self._doc = None
        return self._emit(doc)

    def _emit(self, doc: _OpenDocument) -> list[DomainEvent]:
        if doc.value <= 0:
            self._count(DIAG, "zero_value_documents")
            return []
        self._note_undated()
        return [DomainEvent(
            family=doc.family,
            record_type=doc.record_type,
            period=self._period,
            fields=doc.fields,
            direction=doc.direction,
            branch_tax_id=self._branch_tax_id(),
            value=doc.value,
            pis=doc.pis,
            cofins=doc.cofins,
            icms=doc.icms,
            ipi=doc.ipi,
            classification=doc.classification,
            description=doc.description,
            participant_code=doc.participant_code,
            counterparty_tax_id=doc.counterparty_tax_id,
            line_count=doc.line_count + 1,
            extra=dict(doc.extra),
        )]

    # -------------------------------------------------------------------------
    # Standalone transactions
    # -------------------------------------------------------------------------

    def _on_service(self, r: LineRecord) -> list[DomainEvent]:
        return self._valued(self._standalone(
            r,
            RecordFamily.SERVICES,
            direction=_direction(r.field(2)),
            participant_code=r.field(4) or None,
            value=r.decimal(12),
            pis=r.decimal(16),
            cofins=r.decimal(18),
            iss=r.decimal(21),
        ))

    def _on_other_service(self, r: LineRecord) -> list[DomainEvent]:
        return self._valued(self._standalone(
            r,
            RecordFamily.SERVICES,
            direction=_direction(r.field(2)),
            description=_truncate(r.field(3), DESCRIPTION_LIMIT),
            value=r.decimal(6),
            pis=r.decimal(8),
            cofins=r.decimal(10),
        ))

    def _on_utility(self, r: LineRecord) -> list[DomainEvent]:
        if self._efd_type is EfdType.ICMS_IPI:
            direction = _direction(r.field(2))
            model, supplier = r.field(5), r.field(4)
            icms, pis, cofins = r.decimal(13), r.decimal(16), r.decimal(18)
        else:
            # Contribuicoes only lists acquisitions (credits)
            direction = Direction.INBOUND
            model, supplier = r.field(3), r.field(2)
            icms, pis, cofins = r.decimal(11), r.decimal(13), r.decimal(14)
        return self._valued(self._standalone(
            r,
            RecordFamily.UTILITIES,
            direction=direction,
            classification=UTILITY_MODELS.get(model, "other"),
            counterparty_tax_id=digits_only(supplier) or None,
            value=r.decimal(10),
            icms=icms,
            pis=pis,
            cofins=cofins,
        ))

    def _on_consolidated_sale(self, r: LineRecord) -> list[DomainEvent]:
        if self._efd_type is EfdType.ICMS_IPI:
            value, icms, pis, cofins = r.decimal(7), r.decimal(12), r.decimal(15), r.decimal(16)
        else:
            value, icms, pis, cofins = r.decimal(10), r.decimal(18), r.decimal(21), r.decimal(22)
        return self._valued(self._standalone(
            r,
            RecordFamily.MERCHANDISE,
            direction=Direction.OUTBOUND,
            participant_code=GENERIC_OUTBOUND_PARTICIPANT,
            value=value,
            icms=icms,
            pis=pis,
            cofins=cofins,
        ))

    def _standalone(
        self,
        r: LineRecord,
        family: RecordFamily,
        direction: Direction | None,
        **values: Any,
    ) -> DomainEvent:
        return DomainEvent(
            family=family,
            record_type=r.tag,
            period=self._period,
            fields=r.fields,
            direction=direction,
            branch_tax_id=self._branch_tax_id(),
            **values,
        )

    def _valued(self, event: DomainEvent) -> list[DomainEvent]:
        if event.value <= 0:
            self._count(DIAG, "zero_value_documents")
            return []
        self._note_undated()
        return [event]

    def _note_undated(self) -> None:
        if not self._period:
            self._count(DIAG, "undated_documents")

    def _branch_tax_id(self) -> str | None:
        return self._establishment_tax_id or self._filer_tax_id
