"""Consolidators: raw capture -> normalized business tables."""

from fiscal_ingestion.consolidators.base import (
    FamilyConsolidator,
    MovementConsolidator,
    resolve_branch_key,
)
from fiscal_ingestion.consolidators.movements import (
    FreightConsolidator,
    MerchandiseConsolidator,
    ServiceConsolidator,
    UtilityConsolidator,
)
from fiscal_ingestion.consolidators.participants import ParticipantConsolidator


def default_consolidator_registry() -> dict[str, FamilyConsolidator]:
    """Return table_name -> consolidator for every business table, in run order."""
    consolidators: list[FamilyConsolidator] = [
        ParticipantConsolidator(),
        MerchandiseConsolidator(),
        FreightConsolidator(),
        UtilityConsolidator(),
        ServiceConsolidator(),
    ]
    return {c.table_name: c for c in consolidators}


__all__ = [
    "FamilyConsolidator",
    "MovementConsolidator",
    "MerchandiseConsolidator",
    "FreightConsolidator",
    "UtilityConsolidator",
    "ServiceConsolidator",
    "ParticipantConsolidator",
    "default_consolidator_registry",
    "resolve_branch_key",
]
