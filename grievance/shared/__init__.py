"""
Shared Kernel Module
====================

Generic infrastructure used by both bounded contexts (sla, issues):
structured logging, HTTP middleware and the injected clock.

DO NOT add lifecycle or SLA business rules to the shared kernel.
"""

from grievance.shared.clock import Clock, SystemClock, FixedClock

__all__ = ["Clock", "SystemClock", "FixedClock"]
