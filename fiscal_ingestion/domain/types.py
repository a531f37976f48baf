"""
fiscal_ingestion.domain.types -- Pure frozen dataclasses for fiscal imports.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections, shared by the parser, the cursor, the orchestrator
and the ORM ``to_dto()`` methods.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping
from uuid import UUID

ZERO = Decimal("0")


# =============================================================================
# Enums
# =============================================================================


class ImportJobStatus(str, Enum):
    """Import job lifecycle status."""

    PENDING = "pending"  # Created, waiting for a worker
    PROCESSING = "processing"  # Chunked ingestion in progress
    PAUSED = "paused"  # Stopped at a checkpoint by request
    GENERATING = "generating"  # Raw capture complete, consolidating
    REFRESHING_VIEWS = "refreshing_views"  # Downstream refresh signalled
    COMPLETED = "completed"
    FAILED = "failed"  # Resumable unless the error code is fatal
    CANCELLED = "cancelled"  # Permanent user abort


class ImportScope(str, Enum):
    """Record families the user chose to import."""

    ALL = "all"
    SERVICES = "services"  # A block (and F100)
    MERCHANDISE_UTILITIES = "merchandise_utilities"  # C block
    FREIGHT = "freight"  # D block


class RecordFamily(str, Enum):
    """Business family a DomainEvent belongs to."""

    MERCHANDISE = "merchandise"
    FREIGHT = "freight"
    UTILITIES = "utilities"
    SERVICES = "services"
    PARTICIPANTS = "participants"
    ESTABLISHMENTS = "establishments"


class Direction(str, Enum):
    """Operation direction from the IND_OPER indicator."""

    INBOUND = "inbound"  # 0 = entrada
    OUTBOUND = "outbound"  # 1 = saida


class EfdType(str, Enum):
    """Ledger layout, detected from the header record."""

    ICMS_IPI = "icms_ipi"
    CONTRIBUICOES = "contribuicoes"


_HEADER_TAGS = ("0000", "0140", "0150")

SCOPE_PREFIXES: dict[ImportScope, frozenset[str]] = {
    ImportScope.ALL: frozenset({
        *_HEADER_TAGS,
        "A010", "A100",
        "C010", "C100", "C170", "C175", "C190", "C500", "C600", "C990",
        "D010", "D100", "D101", "D105", "D190",
        "D500", "D501", "D505", "D590", "D990",
        "F100", "M100", "M500",
    }),
    ImportScope.SERVICES: frozenset({*_HEADER_TAGS, "A010", "A100", "F100"}),
    ImportScope.MERCHANDISE_UTILITIES: frozenset({
        *_HEADER_TAGS,
        "C010", "C100", "C170", "C175", "C190", "C500", "C600", "C990",
        "M100", "M500",
    }),
    ImportScope.FREIGHT: frozenset({
        *_HEADER_TAGS,
        "D010", "D100", "D101", "D105", "D190",
        "D500", "D501", "D505", "D590", "D990",
    }),
}


# =============================================================================
# Parse context / checkpoint
# =============================================================================


@dataclass(frozen=True)
class ParseContext:
    """Serializable parser state at a point where no document is open."""

    period: str = ""
    filer_tax_id: str | None = None
    establishment_tax_id: str | None = None
    efd_type: EfdType | None = None
    header_seen: bool = False


@dataclass(frozen=True)
class Checkpoint:
    """Last safe boundary of a job, persisted on the job row.

    ``discarded_open_document`` records that the chunk which produced this
    checkpoint ended inside a document; that document was not captured and
    will be re-parsed from its opening line.
    """

    offset: int = 0
    context: ParseContext = field(default_factory=ParseContext)
    discarded_open_document: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "period": self.context.period,
            "filer_tax_id": self.context.filer_tax_id,
            "establishment_tax_id": self.context.establishment_tax_id,
            "efd_type": self.context.efd_type.value if self.context.efd_type else None,
            "header_seen": self.context.header_seen,
            "discarded_open_document": self.discarded_open_document,
        }

    @classmethod
    def from_dict(cls, offset: int, data: Mapping[str, Any] | None) -> Checkpoint:
        data = data or {}
        efd_type = data.get("efd_type")
        return cls(
            offset=offset,
            context=ParseContext(
                period=data.get("period") or "",
                filer_tax_id=data.get("filer_tax_id"),
                establishment_tax_id=data.get("establishment_tax_id"),
                efd_type=EfdType(efd_type) if efd_type else None,
                header_seen=bool(data.get("header_seen", False)),
            ),
            discarded_open_document=bool(data.get("discarded_open_document", False)),
        )


# =============================================================================
# Parser output
# =============================================================================


@dataclass(frozen=True)
class DomainEvent:
    """A fully assembled document or standalone transaction.

    Produced by ``FiscalParser`` and handed straight to the raw capture
    store; never persisted in this form.
    """

    family: RecordFamily
    record_type: str  # Tag of the record that opened/produced it
    period: str  # YYYY-MM, "" when seen before the header
    fields: tuple[str, ...] = ()  # Raw fields of the producing line
    direction: Direction | None = None
    branch_tax_id: str | None = None
    value: Decimal = ZERO
    pis: Decimal = ZERO
    cofins: Decimal = ZERO
    icms: Decimal = ZERO
    ipi: Decimal = ZERO
    iss: Decimal = ZERO
    classification: str | None = None  # NCM or service type
    description: str | None = None
    participant_code: str | None = None
    counterparty_tax_id: str | None = None
    line_count: int = 1  # Lines that made up the event
    extra: Mapping[str, Any] = field(default_factory=dict)

    def payload(self) -> dict[str, Any]:
        """JSON-safe assembled values (decimals as strings)."""
        return {
            "period": self.period,
            "direction": self.direction.value if self.direction else None,
            "branch_tax_id": self.branch_tax_id,
            "value": str(self.value),
            "pis": str(self.pis),
            "cofins": str(self.cofins),
            "icms": str(self.icms),
            "ipi": str(self.ipi),
            "iss": str(self.iss),
            "classification": self.classification,
            "description": self.description,
            "participant_code": self.participant_code,
            "counterparty_tax_id": self.counterparty_tax_id,
            "line_count": self.line_count,
            **dict(self.extra),
        }


# =============================================================================
# Job DTOs
# =============================================================================


@dataclass(frozen=True)
class ImportJob:
    """Immutable snapshot of an import job (what ``get_status`` returns)."""

    job_id: UUID
    company_id: UUID
    status: ImportJobStatus
    file_path: str
    file_name: str
    file_size: int
    scope: ImportScope = ImportScope.ALL
    branch_id: UUID | None = None
    owner_id: UUID | None = None
    record_limit: int | None = None
    fiscal_period: str | None = None
    filer_tax_id: str | None = None
    progress: int = 0
    bytes_processed: int = 0
    chunk_number: int = 0
    total_lines: int | None = None
    counts: Mapping[str, Any] = field(default_factory=dict)
    checkpoint: Checkpoint = field(default_factory=Checkpoint)
    lease_owner: str | None = None
    refresh_pending: bool = False
    error_message: str | None = None
    error_code: str | None = None
    resumable: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    purged_at: datetime | None = None

    @property
    def branch_key(self) -> str | None:
        """Branch identity used by the duplicate guard."""
        if self.branch_id is not None:
            return str(self.branch_id)
        return self.filer_tax_id


@dataclass(frozen=True)
class ConflictResult:
    """Structured duplicate-import conflict returned by the guard."""

    period: str
    filer_tax_id: str | None
    existing_job_id: UUID
    existing_status: ImportJobStatus


@dataclass(frozen=True)
class StartImportResult:
    """Outcome of ``start_import``: a new job id or a conflict."""

    job_id: UUID | None = None
    conflict: ConflictResult | None = None

    @property
    def is_conflict(self) -> bool:
        return self.conflict is not None

    def raise_for_conflict(self) -> UUID:
        """Return the job id, or raise DuplicateImportError on conflict."""
        from fiscal_kernel.exceptions import DuplicateImportError

        if self.conflict is not None:
            raise DuplicateImportError(
                period=self.conflict.period,
                filer_tax_id=self.conflict.filer_tax_id,
                existing_job_id=str(self.conflict.existing_job_id),
                existing_status=self.conflict.existing_status.value,
            )
        assert self.job_id is not None
        return self.job_id


@dataclass(frozen=True)
class ProgressEvent:
    """Push notification of job progress or a terminal outcome."""

    job_id: UUID
    status: ImportJobStatus
    progress: int
    bytes_processed: int
    chunk_number: int
    counts: Mapping[str, Any] = field(default_factory=dict)
    error_message: str | None = None
    resumable: bool = False


@dataclass(frozen=True)
class TableConsolidation:
    """Per-table consolidation report."""

    inserted: int = 0
    updated: int = 0
    raw_count: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"inserted": self.inserted, "updated": self.updated, "raw_count": self.raw_count}


@dataclass(frozen=True)
class ConsolidationResult:
    """Result of ``ConsolidationService.consolidate``."""

    job_id: UUID
    tables: Mapping[str, TableConsolidation] = field(default_factory=dict)

    def to_dict(self) -> dict[str, dict[str, int]]:
        return {name: table.to_dict() for name, table in self.tables.items()}
