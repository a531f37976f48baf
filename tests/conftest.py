"""
Pytest fixtures for the fiscal import engine test suite.

Provides:
- Structured logging configuration and capture
- SQLite sessions with every table created (in-memory, or file-backed
  when several sessions must share one database)
- A deterministic clock
- A builder for small EFD ledger files

PostgreSQL-only behaviour (REFRESH MATERIALIZED VIEW, row locks) is
exercised through fakes; no test needs a running server.
"""

import json
import logging
from datetime import datetime, timezone
from io import StringIO
from pathlib import Path
from typing import Any
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from fiscal_kernel.db.base import Base
from fiscal_kernel.domain.clock import DeterministicClock
from fiscal_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from fiscal_ingestion.models import import_all_models

# Test identities for all test operations
TEST_COMPANY_ID = uuid4()
TEST_ACTOR_ID = uuid4()

FILER_CNPJ = "12345678000199"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture fiscal_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, service):
            service.run_step(job_id)
            logs = captured_logs()
            assert any(r["message"] == "chunk_processed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("fiscal_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def db_engine():
    """In-memory SQLite engine shared by every session of one test."""
    import_all_models()
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    """In-memory SQLite session for fast unit tests."""
    SessionLocal = sessionmaker(bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def file_session_factory(tmp_path):
    """Session factory over a file-backed SQLite database.

    Each session gets its own connection, so commits made by one session
    are what another session sees (worker tests).
    """
    import_all_models()
    engine = create_engine(f"sqlite:///{tmp_path / 'imports.sqlite'}")
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def clock():
    return DeterministicClock(
        fixed_time=datetime(2026, 2, 1, 12, 0, 0, tzinfo=timezone.utc),
    )


# =============================================================================
# EFD file builder
# =============================================================================


def efd_line(tag: str, values: dict[int, Any] | None = None, width: int = 0) -> str:
    """Build ``|TAG|...|`` with ``values`` placed at their field index."""
    values = values or {}
    size = max([width, *values.keys(), 1]) + 1
    fields = [""] * size
    fields[1] = tag
    for index, value in values.items():
        fields[index] = "" if value is None else str(value)
    return "|".join(fields) + "|"


class EfdBuilder:
    """Writes small EFD ledger files into a temporary directory.

    Records use the EFD-Contribuicoes layout unless the method name says
    ``icms_ipi``.

    Field positions follow the parser's numbering: index 1 is the tag.
    """

    def __init__(self, directory: Path):
        self._directory = directory
        self._files = 0

    # -- records --------------------------------------------------------------

    def header(self, period: str = "2024-03", cnpj: str = FILER_CNPJ) -> str:
        """EFD-Contribuicoes opening record (period start at field 6)."""
        year, month = period.split("-")
        return efd_line("0000", {
            2: "006", 3: "0", 4: "", 5: "",
            6: f"01{month}{year}", 7: f"28{month}{year}",
            8: "EMPRESA TESTE LTDA", 9: cnpj,
        }, width=14)

    def icms_ipi_header(self, period: str = "2024-03", cnpj: str = FILER_CNPJ) -> str:
        """EFD ICMS/IPI opening record (period start at field 4)."""
        year, month = period.split("-")
        return efd_line("0000", {
            2: "017", 3: "0",
            4: f"01{month}{year}", 5: f"28{month}{year}",
            6: "EMPRESA TESTE LTDA", 7: cnpj, 9: "SP",
        }, width=15)

    def establishment(self, cnpj: str, name: str = "FILIAL", code: str = "01") -> str:
        return efd_line("0140", {2: code, 3: name, 4: cnpj})

    def participant(self, code: str, name: str, cnpj: str = "", cpf: str = "") -> str:
        return efd_line("0150", {
            2: code, 3: name, 4: "01058", 5: cnpj, 6: cpf, 7: "ISENTO", 8: "3550308",
        })

    def block_opening(self, tag: str, cnpj: str) -> str:
        return efd_line(tag, {2: cnpj, 3: "1"})

    def c100(
        self,
        direction: str = "0",
        participant: str = "PART01",
        value: str = "1000,00",
        icms: str = "",
        ipi: str = "",
        pis: str = "",
        cofins: str = "",
        number: str = "1001",
    ) -> str:
        return efd_line("C100", {
            2: direction, 3: "1", 4: participant, 5: "55", 6: "00", 8: number,
            12: value, 22: icms, 25: ipi, 26: pis, 27: cofins,
        }, width=29)

    def c170(self, description: str = "PRODUTO", value: str = "", ncm: str = "") -> str:
        return efd_line("C170", {2: "1", 3: "ITEM01", 4: description, 7: value, 8: ncm}, width=37)

    def c175(self, pis: str = "", cofins: str = "") -> str:
        return efd_line("C175", {2: "5102", 3: "1000,00", 6: pis, 7: cofins}, width=17)

    def c190(self) -> str:
        return efd_line("C190", {2: "000", 3: "5102"}, width=12)

    def d100(
        self,
        direction: str = "0",
        participant: str = "TRANSP",
        cte_key: str = "",
        value: str = "500,00",
        icms: str = "",
    ) -> str:
        return efd_line("D100", {
            2: direction, 3: "1", 4: participant, 5: "57", 10: cte_key, 15: value, 20: icms,
        }, width=24)

    def d101(self, pis: str) -> str:
        return efd_line("D101", {2: "0", 8: pis}, width=9)

    def d105(self, cofins: str) -> str:
        return efd_line("D105", {2: "0", 8: cofins}, width=9)

    def d190(self) -> str:
        return efd_line("D190", {2: "000"}, width=9)

    def a100(
        self,
        direction: str = "1",
        value: str = "300,00",
        pis: str = "",
        cofins: str = "",
        iss: str = "",
    ) -> str:
        return efd_line("A100", {
            2: direction, 3: "0", 4: "CLI01", 12: value, 16: pis, 18: cofins, 21: iss,
        }, width=22)

    def c500(self, cnpj: str = "11222333000144", model: str = "06", value: str = "250,00") -> str:
        return efd_line("C500", {2: cnpj, 3: model, 10: value, 11: "", 13: "1,65", 14: "7,60"}, width=15)

    def icms_ipi_c500(
        self,
        direction: str = "0",
        cnpj: str = "11222333000144",
        model: str = "06",
        value: str = "250,00",
        icms: str = "45,00",
        pis: str = "4,13",
        cofins: str = "19,00",
    ) -> str:
        return efd_line("C500", {
            2: direction, 3: "1", 4: cnpj, 5: model, 10: value, 13: icms, 16: pis, 18: cofins,
        }, width=19)

    def icms_ipi_c600(self, value: str = "900,00", icms: str = "162,00") -> str:
        return efd_line("C600", {2: "06", 7: value, 12: icms, 15: "14,85", 16: "68,40"}, width=22)

    def icms_ipi_d100(self, direction: str = "0", carrier: str = "11.222.333/0001-44", value: str = "500,00") -> str:
        return efd_line("D100", {
            2: direction, 3: "1", 4: "TRANSP", 5: carrier, 14: value, 23: "60,00", 24: "8,25", 26: "38,00",
        }, width=27)

    def icms_ipi_d500(self, direction: str = "0", carrier: str = "44555666000177", value: str = "120,00") -> str:
        return efd_line("D500", {
            2: direction, 3: "1", 4: carrier, 11: value, 14: "21,60", 17: "1,98", 19: "9,12",
        }, width=20)

    def d500(self, direction: str = "0", participant: str = "44555666000177", value: str = "120,00") -> str:
        return efd_line("D500", {2: direction, 3: "1", 4: participant, 12: value, 19: "21,60"}, width=20)

    def d501(self, pis: str) -> str:
        return efd_line("D501", {2: "0", 7: pis}, width=8)

    def d505(self, cofins: str) -> str:
        return efd_line("D505", {2: "0", 7: cofins}, width=8)

    def d990(self) -> str:
        return efd_line("D990", {2: "10"})

    def f100(self, direction: str = "0", description: str = "ALUGUEL", value: str = "800,00") -> str:
        return efd_line("F100", {2: direction, 3: description, 6: value, 8: "13,20", 10: "60,80"}, width=12)

    def closing(self) -> str:
        return efd_line("9999", {2: "0"})

    # -- documents --------------------------------------------------------------

    def spec_document(self) -> list[str]:
        """Inbound C100 valued 1000.00 with PIS 10.00 and COFINS 46.00."""
        return [
            self.c100(direction="0", value="1000,00"),
            self.c170(description="PARAFUSO", value="1000,00", ncm="1234.56.78"),
            self.c175(pis="10,00", cofins="46,00"),
            self.c190(),
        ]

    def sample_ledger(self, period: str = "2024-03", cnpj: str = FILER_CNPJ, documents: int = 3) -> list[str]:
        """A ledger touching every family."""
        lines = [
            self.header(period, cnpj),
            self.participant("PART01", "FORNECEDOR UM", cnpj="98765432000110"),
            self.participant("CLI01", "CLIENTE UM", cpf="12345678909"),
            self.block_opening("A010", cnpj),
            self.a100(value="300,00", pis="4,95", cofins="22,80", iss="15,00"),
            self.block_opening("C010", cnpj),
        ]
        for n in range(documents):
            lines += [
                self.c100(direction="0", value=f"{100 * (n + 1)},00", number=str(2000 + n)),
                self.c170(description=f"ITEM {n}", value=f"{100 * (n + 1)},00", ncm="8471.30.12"),
                self.c175(pis="1,65", cofins="7,60"),
                self.c190(),
            ]
        lines += [
            self.c100(direction="1", participant="CLI01", value="2.500,00", icms="450,00"),
            self.c170(description="VENDA", value="2.500,00", ncm="9403.10.00"),
            self.c190(),
            self.c500(),
            self.block_opening("D010", cnpj),
            self.d100(cte_key="35240311222333000144570010000012341000012345", value="500,00", icms="60,00"),
            self.d101(pis="8,25"),
            self.d105(cofins="38,00"),
            self.d190(),
            self.f100(),
            self.closing(),
        ]
        return lines

    # -- output -----------------------------------------------------------------

    def write(self, lines: list[str], name: str | None = None, newline: str = "\r\n") -> Path:
        self._files += 1
        path = self._directory / (name or f"efd_{self._files}.txt")
        path.write_bytes((newline.join(lines) + newline).encode("latin-1"))
        return path


@pytest.fixture
def efd(tmp_path) -> EfdBuilder:
    return EfdBuilder(tmp_path)
