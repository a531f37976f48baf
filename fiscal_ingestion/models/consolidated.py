"""
Normalized business tables written by the consolidators.

Contract:
    Every table has a UNIQUE natural key so re-consolidating a job updates
    rows in place instead of inserting duplicates:

    merchandise_movements  (branch_key, period, direction, classification)
    freight_movements      (branch_key, period, direction, carrier_tax_id)
    utility_movements      (branch_key, period, direction, service_type)
    service_movements      (branch_key, period, direction)
    participants           (branch_key, participant_code)

    Missing key parts are stored as "" so the UNIQUE constraint holds on
    every backend (NULLs never collide).

Architecture: fiscal_ingestion/models. Imports from fiscal_kernel.db.base only.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fiscal_kernel.db.base import TrackedBase, UUIDString


class MovementMixin:
    """Columns shared by every aggregated movement table."""

    branch_key: Mapped[str] = mapped_column(String(64), nullable=False)
    period: Mapped[str] = mapped_column(String(7), nullable=False)
    direction: Mapped[str] = mapped_column(String(10), nullable=False)
    value: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    pis: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    cofins: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    icms: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    document_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    import_job_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)


class MerchandiseMovementModel(MovementMixin, TrackedBase):
    """Goods movements (C100 documents, C600 consolidated sales)."""

    __tablename__ = "merchandise_movements"

    __table_args__ = (
        UniqueConstraint(
            "branch_key", "period", "direction", "classification",
            name="uq_merchandise_natural_key",
        ),
        Index("ix_merchandise_job", "import_job_id"),
    )

    classification: Mapped[str] = mapped_column(String(20), nullable=False, default="")
    description: Mapped[str | None] = mapped_column(String(200), nullable=True)
    ipi: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)


class FreightMovementModel(MovementMixin, TrackedBase):
    """Freight documents (D100 CT-e, D500 communication/transport)."""

    __tablename__ = "freight_movements"

    __table_args__ = (
        UniqueConstraint(
            "branch_key", "period", "direction", "carrier_tax_id",
            name="uq_freight_natural_key",
        ),
        Index("ix_freight_job", "import_job_id"),
    )

    carrier_tax_id: Mapped[str] = mapped_column(String(20), nullable=False, default="")


class UtilityMovementModel(MovementMixin, TrackedBase):
    """Energy, water, gas and communication bills (C500)."""

    __tablename__ = "utility_movements"

    __table_args__ = (
        UniqueConstraint(
            "branch_key", "period", "direction", "service_type",
            name="uq_utility_natural_key",
        ),
        Index("ix_utility_job", "import_job_id"),
    )

    service_type: Mapped[str] = mapped_column(String(20), nullable=False)


class ServiceMovementModel(MovementMixin, TrackedBase):
    """Service transactions (A100, F100)."""

    __tablename__ = "service_movements"

    __table_args__ = (
        UniqueConstraint(
            "branch_key", "period", "direction",
            name="uq_service_natural_key",
        ),
        Index("ix_service_job", "import_job_id"),
    )

    iss: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)


class ParticipantModel(TrackedBase):
    """Supplier / customer master (0150) plus generic per-branch entries."""

    __tablename__ = "participants"

    __table_args__ = (
        UniqueConstraint("branch_key", "participant_code", name="uq_participant_code"),
        Index("ix_participants_job", "import_job_id"),
    )

    branch_key: Mapped[str] = mapped_column(String(64), nullable=False)
    participant_code: Mapped[str] = mapped_column(String(60), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    cnpj: Mapped[str | None] = mapped_column(String(14), nullable=True)
    cpf: Mapped[str | None] = mapped_column(String(11), nullable=True)
    state_registration: Mapped[str | None] = mapped_column(String(20), nullable=True)
    city_code: Mapped[str | None] = mapped_column(String(10), nullable=True)
    import_job_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
