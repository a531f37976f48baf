"""ORM models for fiscal imports: jobs, raw capture and business tables."""

from fiscal_ingestion.models.consolidated import (
    FreightMovementModel,
    MerchandiseMovementModel,
    ParticipantModel,
    ServiceMovementModel,
    UtilityMovementModel,
)
from fiscal_ingestion.models.import_job import ImportJobModel, RawRecordModel


def import_all_models() -> tuple[type, ...]:
    """Return every model class so Base.metadata holds all tables."""
    return (
        ImportJobModel,
        RawRecordModel,
        MerchandiseMovementModel,
        FreightMovementModel,
        UtilityMovementModel,
        ServiceMovementModel,
        ParticipantModel,
    )


__all__ = [
    "ImportJobModel",
    "RawRecordModel",
    "MerchandiseMovementModel",
    "FreightMovementModel",
    "UtilityMovementModel",
    "ServiceMovementModel",
    "ParticipantModel",
    "import_all_models",
]
