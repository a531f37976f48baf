"""
fiscal_ingestion -- Bulk import engine for EFD fiscal ledger files.

Parses pipe-delimited ledger exports chunk by chunk with resumable
checkpoints, captures every assembled record in an append-only raw store,
and consolidates raw records into per-domain business tables
(merchandise, freight, utilities, services, participants).

Architecture:
    fiscal_ingestion/ is a top-level package built on fiscal_kernel.
    Nothing in fiscal_kernel imports from it (except create_tables, which
    loads the models).
"""
