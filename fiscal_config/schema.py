"""
IngestionSettings schema.

The human-authored source for import engine tuning lives in YAML under
``fiscal_config/sets/``.  The loader parses it into these frozen
dataclasses; services receive an ``IngestionSettings`` instance and never
read files or the environment themselves.
"""

from __future__ import annotations

from dataclasses import dataclass, field

DEFAULT_MATERIALIZED_VIEWS: tuple[str, ...] = (
    "mv_mercadorias_aggregated",
    "mv_fretes_aggregated",
    "mv_energia_agua_aggregated",
    "mv_servicos_aggregated",
    "mv_mercadorias_participante",
    "mv_dashboard_stats",
)


@dataclass(frozen=True)
class ChunkSettings:
    """Byte window used by the chunk cursor."""

    chunk_size_bytes: int = 4 * 1024 * 1024
    # Upper bound when a single document is larger than one window
    max_chunk_size_bytes: int = 64 * 1024 * 1024


@dataclass(frozen=True)
class RefreshSettings:
    """Downstream materialized view refresh."""

    timeout_seconds: float = 30.0
    views: tuple[str, ...] = DEFAULT_MATERIALIZED_VIEWS


@dataclass(frozen=True)
class WorkerSettings:
    """Background worker polling and staleness detection."""

    poll_interval_seconds: float = 5.0
    stale_after_seconds: int = 120


@dataclass(frozen=True)
class IngestionSettings:
    """Complete runtime settings for the import engine."""

    settings_id: str
    version: int
    database_url: str | None = None
    chunk: ChunkSettings = field(default_factory=ChunkSettings)
    refresh: RefreshSettings = field(default_factory=RefreshSettings)
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    checksum: str = ""
