"""File adapters: chunked, document-aligned reads of ledger files."""

from fiscal_ingestion.adapters.chunk_cursor import (
    ChunkCursor,
    ChunkResult,
    HeaderProbe,
    probe_header,
)

__all__ = ["ChunkCursor", "ChunkResult", "HeaderProbe", "probe_header"]
