"""Movement consolidators: merchandise, freight, utilities, services."""

from __future__ import annotations

from typing import Any

from fiscal_ingestion.consolidators.base import MovementConsolidator
from fiscal_ingestion.domain.types import RecordFamily
from fiscal_ingestion.models.consolidated import (
    FreightMovementModel,
    MerchandiseMovementModel,
    ServiceMovementModel,
    UtilityMovementModel,
)


def _direction(payload: dict[str, Any]) -> str:
    return payload.get("direction") or ""


class MerchandiseConsolidator(MovementConsolidator):
    """Goods per (branch, period, direction, NCM classification)."""

    model = MerchandiseMovementModel
    family = RecordFamily.MERCHANDISE
    key_columns = ("direction", "classification")
    amount_columns = ("value", "pis", "cofins", "icms", "ipi")

    def key_for(self, payload: dict[str, Any]) -> tuple[str, ...]:
        return (_direction(payload), payload.get("classification") or "")

    def attributes_for(self, payload: dict[str, Any]) -> dict[str, Any]:
        description = payload.get("description")
        return {"description": description} if description else {}


class FreightConsolidator(MovementConsolidator):
    """Freight per (branch, period, direction, carrier)."""

    model = FreightMovementModel
    family = RecordFamily.FREIGHT
    key_columns = ("direction", "carrier_tax_id")

    def key_for(self, payload: dict[str, Any]) -> tuple[str, ...]:
        return (_direction(payload), payload.get("counterparty_tax_id") or "")


class UtilityConsolidator(MovementConsolidator):
    """Energy/water/gas/communication per (branch, period, direction, type)."""

    model = UtilityMovementModel
    family = RecordFamily.UTILITIES
    key_columns = ("direction", "service_type")

    def key_for(self, payload: dict[str, Any]) -> tuple[str, ...]:
        return (_direction(payload), payload.get("classification") or "other")


class ServiceConsolidator(MovementConsolidator):
    """Services per (branch, period, direction)."""

    model = ServiceMovementModel
    family = RecordFamily.SERVICES
    key_columns = ("direction",)
    amount_columns = ("value", "pis", "cofins", "icms", "iss")

    def key_for(self, payload: dict[str, Any]) -> tuple[str, ...]:
        return (_direction(payload),)
