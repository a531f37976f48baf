"""
Fiscal Kernel - shared infrastructure for the fiscal import engine.

Provides:
- Declarative ORM base with UUID keys and audit timestamps
- Engine and session factory
- Structured JSON logging
- Typed exception hierarchy
- Injectable clock
"""

__version__ = "0.1.0"
