"""
Grievance Portal - Issue Lifecycle & SLA Engine
===============================================

Bounded contexts:
- sla: working-time clock, SLA evaluation, escalation policy and notifications
- issues: issue state machine, timeline reconstruction, storage and HTTP API
"""

__version__ = "1.0.0"
