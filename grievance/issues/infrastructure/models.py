"""
Issues Infrastructure Models
=============================

SQLAlchemy ORM models for the issues module.

These are the database representations of the domain entities; the
repositories translate between the two.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from grievance.config import IssueStatus, Priority
from grievance.infrastructure.database import Base


class IssueModel(Base):
    """
    Database model for the Issue entity.

    Maps to the 'issues' table. ``version`` is the compare-and-swap token.
    """
    __tablename__ = "issues"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Classification
    type_id: Mapped[str] = mapped_column(String(100), nullable=False)
    sub_type_id: Mapped[str] = mapped_column(String(100), nullable=False)
    mapped_type_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    mapped_sub_type_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    mapped_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    mapped_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    employee_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # Lifecycle
    status: Mapped[str] = mapped_column(String(50), nullable=False, default=IssueStatus.OPEN.value, index=True)
    priority: Mapped[str] = mapped_column(String(50), nullable=False, default=Priority.MEDIUM.value)
    escalation_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    assigned_to: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_status_change_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    reopenable_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_escalated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # ISO-8601 strings, oldest first
    previously_closed_at: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)


class CommentModel(Base):
    """Public comments. Maps to the 'issue_comments' table."""
    __tablename__ = "issue_comments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    issue_id: Mapped[int] = mapped_column(ForeignKey("issues.id"), nullable=False, index=True)
    employee_id: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class InternalCommentModel(Base):
    """
    Staff-only comments.

    Kept in their own table so no query on 'issue_comments' can return them.
    """
    __tablename__ = "issue_internal_comments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    issue_id: Mapped[int] = mapped_column(ForeignKey("issues.id"), nullable=False, index=True)
    employee_id: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class AuditEntryModel(Base):
    """Append-only audit trail. Maps to the 'issue_audit_trail' table."""
    __tablename__ = "issue_audit_trail"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    issue_id: Mapped[int] = mapped_column(ForeignKey("issues.id"), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    employee_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # None = system
    previous_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    new_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class EmployeeModel(Base):
    """Actor directory. Maps to the 'employees' table."""
    __tablename__ = "employees"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, unique=True)
    role: Mapped[str] = mapped_column(String(50), nullable=False, default="employee")
