"""
fiscal_config -- single public entrypoint for import engine settings.

Responsibility:
    Provides the ONLY way to obtain settings at runtime through
    ``get_active_settings()``.  Services receive the returned
    ``IngestionSettings`` by injection; none of them read YAML files or
    environment variables directly.

Failure modes:
    - ``FileNotFoundError`` -- the requested settings file does not exist.
    - ``KeyError`` / ``ValueError`` -- schema violations in the YAML.

Every successful call emits a ``FISCAL_CONFIG_TRACE`` log entry with the
settings id, version and checksum.
"""

from __future__ import annotations

from pathlib import Path

from fiscal_config.loader import load_yaml_file, parse_settings
from fiscal_config.schema import (
    ChunkSettings,
    IngestionSettings,
    RefreshSettings,
    WorkerSettings,
)
from fiscal_kernel.logging_config import get_logger

_logger = get_logger("config")

_DEFAULT_SETTINGS_FILE = Path(__file__).parent / "sets" / "default.yaml"


def get_active_settings(path: Path | None = None) -> IngestionSettings:
    """Load and return the active ingestion settings.

    Args:
        path: Override path to a settings YAML file.  Defaults to
            fiscal_config/sets/default.yaml.

    Raises:
        FileNotFoundError: If the settings file does not exist.
        KeyError: If a required key is missing.
        ValueError: If a value is out of range.
    """
    settings = parse_settings(load_yaml_file(path or _DEFAULT_SETTINGS_FILE))

    _logger.info(
        "FISCAL_CONFIG_TRACE",
        extra={
            "trace_type": "FISCAL_CONFIG_TRACE",
            "settings_id": settings.settings_id,
            "settings_version": settings.version,
            "checksum": settings.checksum,
            "chunk_size_bytes": settings.chunk.chunk_size_bytes,
            "refresh_timeout_seconds": settings.refresh.timeout_seconds,
        },
    )
    return settings


__all__ = [
    "ChunkSettings",
    "IngestionSettings",
    "RefreshSettings",
    "WorkerSettings",
    "get_active_settings",
]
