"""
Settings Loader (``fiscal_config.loader``).

Responsibility
--------------
Loads a YAML settings file and parses it into typed
``fiscal_config.schema`` dataclass instances.  Runtime code obtains
settings through ``fiscal_config.get_active_settings()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Non-positive sizes or timeouts  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from fiscal_config.schema import (
    DEFAULT_MATERIALIZED_VIEWS,
    ChunkSettings,
    IngestionSettings,
    RefreshSettings,
    WorkerSettings,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _positive(name: str, value: Any) -> Any:
    if value is None or value <= 0:
        raise ValueError(f"{name} must be positive, got {value!r}")
    return value


def parse_chunk(data: dict[str, Any]) -> ChunkSettings:
    """Parse the ``chunk`` section."""
    chunk_size = _positive("chunk.size_bytes", int(data.get("size_bytes", ChunkSettings.chunk_size_bytes)))
    max_size = _positive(
        "chunk.max_size_bytes",
        int(data.get("max_size_bytes", max(chunk_size, ChunkSettings.max_chunk_size_bytes))),
    )
    if max_size < chunk_size:
        raise ValueError(
            f"chunk.max_size_bytes ({max_size}) must be >= chunk.size_bytes ({chunk_size})"
        )
    return ChunkSettings(chunk_size_bytes=chunk_size, max_chunk_size_bytes=max_size)


def parse_refresh(data: dict[str, Any]) -> RefreshSettings:
    """Parse the ``refresh`` section."""
    views = data.get("views")
    return RefreshSettings(
        timeout_seconds=_positive(
            "refresh.timeout_seconds",
            float(data.get("timeout_seconds", RefreshSettings.timeout_seconds)),
        ),
        views=tuple(views) if views is not None else DEFAULT_MATERIALIZED_VIEWS,
    )


def parse_worker(data: dict[str, Any]) -> WorkerSettings:
    """Parse the ``worker`` section."""
    return WorkerSettings(
        poll_interval_seconds=_positive(
            "worker.poll_interval_seconds",
            float(data.get("poll_interval_seconds", WorkerSettings.poll_interval_seconds)),
        ),
        stale_after_seconds=_positive(
            "worker.stale_after_seconds",
            int(data.get("stale_after_seconds", WorkerSettings.stale_after_seconds)),
        ),
    )


def parse_settings(data: dict[str, Any]) -> IngestionSettings:
    """
    Parse a complete ``IngestionSettings`` from a dict.

    ``settings_id`` and ``version`` are required; every section is optional
    and falls back to the schema defaults.
    """
    return IngestionSettings(
        settings_id=data["settings_id"],
        version=int(data["version"]),
        database_url=data.get("database_url"),
        chunk=parse_chunk(data.get("chunk") or {}),
        refresh=parse_refresh(data.get("refresh") or {}),
        worker=parse_worker(data.get("worker") or {}),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
