"""
Pure domain layer.

Only the clock abstraction lives here; it has no dependency on the ORM,
the database or any I/O except ``SystemClock``.
"""

from fiscal_kernel.domain.clock import Clock, DeterministicClock, SystemClock

__all__ = ["Clock", "DeterministicClock", "SystemClock"]
