"""
Record tokenizer for pipe-delimited fiscal ledger lines.

A line looks like ``|C100|0|1|PART01|55|...|``.  Splitting on ``|`` gives
an empty field 0, the record tag at index 1 and the data fields from
index 2 on; field indexes used by the parser follow that numbering.

Pure and total: ``tokenize_line`` never raises.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Collection

from fiscal_ingestion.domain.types import ZERO

DELIMITER = "|"


@dataclass(frozen=True)
class LineRecord:
    """One tokenized line: record tag plus the full field list."""

    tag: str
    fields: tuple[str, ...]

    def field(self, index: int) -> str:
        """Field at ``index`` stripped of whitespace, or "" when absent."""
        if index < len(self.fields):
            return self.fields[index].strip()
        return ""

    def decimal(self, index: int) -> Decimal:
        return parse_decimal(self.field(index))


@dataclass(frozen=True)
class SkipResult:
    """A line that produced no record."""

    reason: str  # "malformed" or "filtered"


MALFORMED = SkipResult("malformed")
FILTERED = SkipResult("filtered")


def tokenize_line(
    line: str,
    allowed_tags: Collection[str] | None = None,
) -> LineRecord | SkipResult:
    """Split one line into a LineRecord.

    Blank lines, lines with fewer than two fields and lines with an empty
    tag are malformed.  When ``allowed_tags`` is given, records whose tag
    is outside it are filtered out (scope selection).
    """
    text = line.rstrip("\r\n")
    if not text.strip():
        return MALFORMED
    fields = text.split(DELIMITER)
    if len(fields) < 2:
        return MALFORMED
    tag = fields[1].strip().upper()
    if not tag:
        return MALFORMED
    if allowed_tags is not None and tag not in allowed_tags:
        return FILTERED
    return LineRecord(tag=tag, fields=tuple(fields))


def parse_decimal(raw: str) -> Decimal:
    """Parse a ledger amount such as ``1.234,56``; anything invalid is zero."""
    if not raw:
        return ZERO
    text = raw.strip()
    if "," in text:
        text = text.replace(".", "").replace(",", ".")
    try:
        value = Decimal(text)
    except InvalidOperation:
        return ZERO
    if not value.is_finite():
        return ZERO
    return value


def digits_only(raw: str) -> str:
    return "".join(ch for ch in raw if ch.isdigit())
