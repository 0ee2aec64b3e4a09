"""
Issues Infrastructure Layer
============================

- SQLAlchemy models for issues, comments, internal comments, audit trail
  and the employee directory
- Repository implementations with compare-and-swap writes
"""

from grievance.issues.infrastructure.repositories import (
    SQLAlchemyIssueRepository,
    SQLAlchemyActorDirectory,
)

__all__ = [
    "SQLAlchemyIssueRepository",
    "SQLAlchemyActorDirectory",
]
