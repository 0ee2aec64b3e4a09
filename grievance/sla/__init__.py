"""
SLA Module
==========

Bounded context for service-level tracking of grievance issues.

Responsibilities:
- Working-time arithmetic (business hours, working days, holidays)
- Deadline and SLA state per priority tier
- Policy YAML loading with hot reload
- Escalation notifications and the periodic sweep scheduler
"""

__version__ = "1.0.0"
