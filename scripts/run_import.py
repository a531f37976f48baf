#!/usr/bin/env python3
"""
Run and manage fiscal ledger imports from the command line.

Uses the active ingestion settings (fiscal_config/sets/default.yaml unless
--settings is given).  Tables are created on demand with --create-tables.

Usage:
    python3 scripts/run_import.py [--db-url URL] <command> [options]

Examples:
    # Read the header only (period, filer, layout); no DB writes
    python3 scripts/run_import.py probe --file EFD_2024_03.txt

    # Create a job and run it to completion in this process
    python3 scripts/run_import.py start --file EFD_2024_03.txt --company-id <uuid> --run

    # Replace a completed import of the same period
    python3 scripts/run_import.py start --file EFD_2024_03.txt --company-id <uuid> --replace --run

    # Lifecycle
    python3 scripts/run_import.py pause <job_id>
    python3 scripts/run_import.py resume <job_id> --run
    python3 scripts/run_import.py status <job_id>

    # Background worker draining pending jobs
    python3 scripts/run_import.py worker
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import time
from pathlib import Path
from uuid import UUID

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

SCOPES = ("all", "services", "merchandise_utilities", "freight")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Fiscal ledger bulk import: start, step, pause, resume, cancel, purge.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--db-url",
        default=os.environ.get("FISCAL_DB_URL"),
        help="Database URL (default: FISCAL_DB_URL env, then the settings file).",
    )
    parser.add_argument(
        "--settings",
        type=Path,
        default=None,
        help="Settings YAML (default: fiscal_config/sets/default.yaml).",
    )
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing tables before running the command.",
    )
    parser.add_argument("--verbose", action="store_true", help="Log at DEBUG level.")

    sub = parser.add_subparsers(dest="command", required=True)

    probe = sub.add_parser("probe", help="Read the file header and exit.")
    probe.add_argument("--file", required=True, type=Path)

    start = sub.add_parser("start", help="Create an import job.")
    start.add_argument("--file", required=True, type=Path)
    start.add_argument("--company-id", required=True, type=UUID)
    start.add_argument("--branch-id", type=UUID, default=None)
    start.add_argument("--owner-id", type=UUID, default=None)
    start.add_argument("--scope", choices=SCOPES, default="all")
    start.add_argument("--record-limit", type=int, default=None)
    start.add_argument(
        "--replace",
        action="store_true",
        help="Purge a completed import of the same branch and period first.",
    )
    start.add_argument("--run", action="store_true", help="Run the job to completion now.")

    for name, help_text in (
        ("status", "Show a job snapshot."),
        ("pause", "Pause a processing job."),
        ("cancel", "Cancel a pending, processing or paused job."),
        ("purge", "Remove a finished job's raw and consolidated rows."),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("job_id", type=UUID)

    resume = sub.add_parser("resume", help="Resume a paused or failed job.")
    resume.add_argument("job_id", type=UUID)
    resume.add_argument("--run", action="store_true", help="Run the job to completion now.")

    stale = sub.add_parser("stale", help="List processing jobs that stopped advancing.")
    stale.add_argument("--threshold", type=int, default=None, help="Seconds (default: settings).")

    worker = sub.add_parser("worker", help="Run a polling worker until interrupted.")
    worker.add_argument("--worker-id", default=None)
    worker.add_argument("--poll-interval", type=float, default=None)

    return parser.parse_args()


def _print_job(job) -> None:
    print(json.dumps(
        {
            "job_id": str(job.job_id),
            "status": job.status.value,
            "progress": job.progress,
            "fiscal_period": job.fiscal_period,
            "filer_tax_id": job.filer_tax_id,
            "bytes_processed": job.bytes_processed,
            "file_size": job.file_size,
            "chunk_number": job.chunk_number,
            "refresh_pending": job.refresh_pending,
            "error_code": job.error_code,
            "error_message": job.error_message,
            "resumable": job.resumable,
            "counts": dict(job.counts),
        },
        indent=2,
        default=str,
    ))


def _run(service, session, job_id: UUID) -> int:
    """Step a job, committing every chunk."""
    outcome = service.run_step(job_id)
    session.commit()
    while not outcome.done:
        print(f"  chunk {outcome.chunk_number}: {outcome.progress}% ({outcome.bytes_processed} bytes)")
        outcome = service.run_step(job_id)
        session.commit()
    job = service.get_status(job_id)
    _print_job(job)
    return 0 if job.status.value == "completed" else 1


def main() -> int:
    args = _parse_args()

    # Lazy imports so we fail fast on args first
    from fiscal_config import get_active_settings
    from fiscal_ingestion.adapters import probe_header
    from fiscal_ingestion.orchestrator import ImportOrchestrator
    from fiscal_kernel.db.engine import (
        create_tables,
        get_session,
        get_session_factory,
        init_engine_from_url,
    )
    from fiscal_kernel.exceptions import FiscalKernelError
    from fiscal_kernel.logging_config import configure_logging

    configure_logging(level=logging.DEBUG if args.verbose else logging.INFO, stream=sys.stderr)

    if args.command == "probe":
        try:
            probe = probe_header(args.file)
        except FiscalKernelError as e:
            print(f"ERROR: {e}", file=sys.stderr)
            return 1
        if probe is None:
            print("No 0000 header found in the first lines.")
            return 1
        print(f"Period: {probe.period}")
        print(f"Filer:  {probe.filer_tax_id}")
        print(f"Layout: {probe.efd_type}")
        return 0

    try:
        settings = get_active_settings(args.settings)
    except Exception as e:
        print(f"ERROR: Failed to load settings: {e}", file=sys.stderr)
        return 1

    db_url = args.db_url or settings.database_url
    if not db_url:
        print("ERROR: No database URL (use --db-url or FISCAL_DB_URL).", file=sys.stderr)
        return 1

    try:
        init_engine_from_url(db_url)
        if args.create_tables:
            create_tables()
    except Exception as e:
        print(f"ERROR: Database init failed: {e}", file=sys.stderr)
        return 1

    session = get_session()
    orchestrator = ImportOrchestrator.from_session(session, settings=settings)
    service = orchestrator.create_service()

    try:
        if args.command == "start":
            source_path = args.file.resolve()
            if not source_path.is_file():
                print(f"ERROR: File not found: {source_path}", file=sys.stderr)
                return 1
            result = service.start_import(
                company_id=args.company_id,
                file_path=source_path,
                scope=args.scope,
                branch_id=args.branch_id,
                record_limit=args.record_limit,
                owner_id=args.owner_id,
                replace=args.replace,
            )
            session.commit()
            if result.is_conflict:
                c = result.conflict
                print(
                    f"CONFLICT: period {c.period} for {c.filer_tax_id} already has "
                    f"import {c.existing_job_id} ({c.existing_status.value}).",
                    file=sys.stderr,
                )
                print("Use --replace to overwrite a completed import.", file=sys.stderr)
                return 2
            print(f"Created job {result.job_id}")
            if args.run:
                return _run(service, session, result.job_id)
            return 0

        if args.command == "status":
            _print_job(service.get_status(args.job_id))
            return 0

        if args.command in ("pause", "cancel"):
            job = getattr(service, args.command)(args.job_id)
            session.commit()
            _print_job(job)
            return 0

        if args.command == "resume":
            job = service.resume(args.job_id)
            session.commit()
            if args.run and job.status.value == "processing":
                return _run(service, session, args.job_id)
            _print_job(job)
            return 0

        if args.command == "purge":
            removed = service.purge(args.job_id)
            session.commit()
            print(f"Purged: {removed}")
            return 0

        if args.command == "stale":
            stale = service.stale_jobs(args.threshold)
            for job in stale:
                print(f"{job.job_id}  {job.fiscal_period}  last update {job.updated_at}")
            if not stale:
                print("No stale jobs.")
            return 0

        if args.command == "worker":
            worker = orchestrator.create_worker(
                get_session_factory(),
                poll_interval_seconds=args.poll_interval,
                worker_id=args.worker_id,
            )
            print(f"Worker {worker.worker_id} running; Ctrl-C to stop.")
            worker.start()
            try:
                while worker.is_running:
                    time.sleep(1.0)
            except KeyboardInterrupt:
                print("Stopping worker...")
            finally:
                worker.stop()
            return 0

    except FiscalKernelError as e:
        session.rollback()
        print(f"ERROR [{e.code}]: {e}", file=sys.stderr)
        return 1
    finally:
        session.close()

    return 1


if __name__ == "__main__":
    sys.exit(main())
