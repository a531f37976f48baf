"""
Chunk cursor: bounded, resumable reads over a fiscal ledger file.

Contract:
    ``ChunkCursor.step(checkpoint)`` reads forward from the checkpoint
    offset up to ``chunk_size`` bytes, extended to the next newline so no
    line is split, tokenizes and parses the lines, and returns the events
    and the NEXT checkpoint.

    The next checkpoint is the offset of the last line boundary at which
    no document was open.  A line that finalizes an open freight document
    (``FiscalParser.close_pending``) starts at such a boundary.  When the
    physical end of the chunk falls inside a document, the checkpoint
    rewinds to the start of that document; events produced by lines past
    that point (including standalone records interleaved in the open
    document) are dropped and reproduced when the next step re-reads
    them.  Counters are rolled back the same way, so a file parsed in N
    chunks yields exactly the events and tallies of a single pass.

    If a whole window holds no safe boundary (one document larger than the
    window), the window doubles up to ``max_chunk_size``.  At that limit the
    open document is dropped as degenerate and the cursor moves past it.

Architecture: fiscal_ingestion/adapters.  File I/O only, no DB imports.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Collection

from fiscal_kernel.exceptions import SourceFileUnreadableError
from fiscal_kernel.logging_config import get_logger

from fiscal_ingestion.domain.parser import FiscalParser
from fiscal_ingestion.domain.tokenizer import SkipResult, tokenize_line
from fiscal_ingestion.domain.types import Checkpoint, DomainEvent, ParseContext

logger = get_logger("ingestion.chunk_cursor")

# EFD exports are ISO-8859-1; every byte decodes, so offsets stay exact.
DEFAULT_ENCODING = "latin-1"


@dataclass(frozen=True)
class ChunkResult:
    """Outcome of one ingestion step."""

    start_offset: int
    end_offset: int  # Physical end of the bytes read
    checkpoint: Checkpoint  # Where the next step starts
    events: tuple[DomainEvent, ...] = ()
    lines_consumed: int = 0  # Lines before the checkpoint
    seen: dict[str, int] = field(default_factory=dict)
    diagnostics: dict[str, int] = field(default_factory=dict)
    window_bytes: int = 0
    eof: bool = False  # Checkpoint reached end of file

    @property
    def bytes_consumed(self) -> int:
        return self.checkpoint.offset - self.start_offset


class ChunkCursor:
    """Reads a ledger file one bounded, document-aligned chunk at a time."""

    def __init__(
        self,
        path: str | Path,
        chunk_size: int,
        max_chunk_size: int | None = None,
        allowed_tags: Collection[str] | None = None,
        encoding: str = DEFAULT_ENCODING,
    ):
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self._path = Path(path)
        self._chunk_size = chunk_size
        self._max_chunk_size = max(max_chunk_size or chunk_size * 16, chunk_size)
        self._allowed_tags = allowed_tags
        self._encoding = encoding

    @property
    def path(self) -> Path:
        return self._path

    def file_size(self) -> int:
        try:
            return self._path.stat().st_size
        except OSError as exc:
            raise SourceFileUnreadableError(str(self._path), exc.strerror or str(exc)) from exc

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    def read_window(self, offset: int, size: int) -> tuple[bytes, bool]:
        """Read ``size`` bytes from ``offset`` extended to the next newline.

        Returns (data, reached_eof).
        """
        try:
            with self._path.open("rb") as f:
                total = os.fstat(f.fileno()).st_size
                f.seek(offset)
                data = f.read(size)
                if data and not data.endswith(b"\n"):
                    data += f.readline()
        except OSError as exc:
            raise SourceFileUnreadableError(str(self._path), exc.strerror or str(exc)) from exc
        return data, offset + len(data) >= total

    # -------------------------------------------------------------------------
    # Step
    # -------------------------------------------------------------------------

    def step(self, checkpoint: Checkpoint) -> ChunkResult:
        """Parse the next chunk after ``checkpoint``.

        Raises:
            SourceFileUnreadableError: If the file cannot be opened or read.
        """
        window = self._chunk_size
        while True:
            data, eof = self.read_window(checkpoint.offset, window)
            result = self._parse(checkpoint, data, eof, window, force=False)
            if result is not None:
                return result
            if window >= self._max_chunk_size:
                logger.warning(
                    "oversized_document_dropped",
                    extra={
                        "file": str(self._path),
                        "offset": checkpoint.offset,
                        "window_bytes": window,
                    },
                )
                forced = self._parse(checkpoint, data, eof, window, force=True)
                assert forced is not None
                return forced
            window = min(window * 2, self._max_chunk_size)
            logger.debug(
                "chunk_window_grown",
                extra={"offset": checkpoint.offset, "window_bytes": window},
            )

    def _parse(
        self,
        checkpoint: Checkpoint,
        data: bytes,
        eof: bool,
        window: int,
        force: bool,
    ) -> ChunkResult | None:
        """Parse ``data``; None means no safe boundary beyond the start."""
        parser = FiscalParser(checkpoint.context)
        events: list[DomainEvent] = []

        start = checkpoint.offset
        pos = start
        line_no = 0
        safe_offset = start
        safe_context: ParseContext = checkpoint.context
        safe_events = 0
        safe_lines = 0

        for raw in data.splitlines(keepends=True):
            record = tokenize_line(raw.decode(self._encoding, errors="replace"), self._allowed_tags)
            if not isinstance(record, SkipResult):
                events.extend(parser.close_pending(record))

            if not parser.document_open:
                safe_offset, safe_context = pos, parser.context()
                safe_events, safe_lines = len(events), line_no
                parser.commit_counters()

            if isinstance(record, SkipResult):
                parser.note_skip(record.reason)
            else:
                events.extend(parser.feed(record))
            pos += len(raw)
            line_no += 1

        if eof:
            events.extend(parser.finish())
        elif force:
            parser.discard_open_document("oversized_documents")
        rewound = parser.document_open

        if not rewound:
            safe_offset, safe_context = pos, parser.context()
            safe_events, safe_lines = len(events), line_no
            parser.commit_counters()
        else:
            parser.rollback_counters()
            if safe_offset == start and data and not eof:
                return None

        seen, diagnostics = parser.tallies()
        return ChunkResult(
            start_offset=start,
            end_offset=pos,
            checkpoint=Checkpoint(
                offset=safe_offset,
                context=safe_context,
                discarded_open_document=rewound,
            ),
            events=tuple(events[:safe_events]),
            lines_consumed=safe_lines,
            seen=seen,
            diagnostics=diagnostics,
            window_bytes=window,
            eof=eof and not rewound,
        )


# -----------------------------------------------------------------------------
# Header probe
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class HeaderProbe:
    """Header facts read before a job is created (duplicate guard input)."""

    period: str
    filer_tax_id: str | None
    efd_type: str | None


def probe_header(
    path: str | Path,
    max_lines: int = 50,
    encoding: str = DEFAULT_ENCODING,
) -> HeaderProbe | None:
    """Read the first lines of ``path`` looking for the 0000 header.

    Returns None when no header appears within ``max_lines`` lines.

    Raises:
        SourceFileUnreadableError: If the file cannot be opened.
    """
    parser = FiscalParser()
    try:
        with Path(path).open("r", encoding=encoding, newline="") as f:
            for line_no, line in enumerate(f):
                if line_no >= max_lines:
                    break
                record = tokenize_line(line, {"0000"})
                if isinstance(record, SkipResult):
                    continue
                parser.feed(record)
                context = parser.context()
                if context.header_seen:
                    return HeaderProbe(
                        period=context.period,
                        filer_tax_id=context.filer_tax_id,
                        efd_type=context.efd_type.value if context.efd_type else None,
                    )
    except OSError as exc:
        raise SourceFileUnreadableError(str(path), exc.strerror or str(exc)) from exc
    return None
