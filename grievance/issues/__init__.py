"""
Issues Module
=============

Bounded context for the grievance issue lifecycle.

Responsibilities:
- Issue status state machine, reopen window and escalation
- Comments, internal staff messages and the audit trail
- Timeline reconstruction for display and export
- HTTP API for staff and employees
"""

__version__ = "1.0.0"
