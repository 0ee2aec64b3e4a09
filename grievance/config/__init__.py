"""
Configuration Module
====================

Application settings and fixed business constants for the grievance portal.

Settings come from the environment (pydantic-settings). Statuses, priorities,
SLA tiers and audit actions are business policy and live here as constants,
not as user configuration.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="grievance-portal", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/grievances",
        description="Async SQLAlchemy connection URL"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Lifecycle Policy ==========
    policy_config_path: Path = Field(
        default=Path("portal_policy.yaml"),
        description="Path to the working-hours / escalation policy YAML file"
    )
    sla_evaluation_interval: int = Field(
        default=300,
        description="Seconds between escalation sweeps (0 disables the sweep)",
        ge=0
    )
    reopen_window_days: int = Field(
        default=30,
        description="Wall-clock days a resolved/closed issue stays reopenable",
        ge=1
    )
    escalation_priority_threshold: int = Field(
        default=1,
        description="Escalation level at which priority is forced to critical",
        ge=1
    )
    version_conflict_retries: int = Field(
        default=3,
        description="Attempts for a read-modify-write before surfacing a conflict",
        ge=1
    )
    privileged_roles: List[str] = Field(
        default=["admin", "super_admin"],
        description="Viewer roles allowed to read every private conversation"
    )

    # ========== Slack Integration ==========
    slack_webhook_url: Optional[str] = Field(
        default=None,
        description="Slack webhook URL for escalation notifications"
    )
    slack_channel: str = Field(
        default="#grievance-escalations",
        description="Default Slack channel for escalation notifications"
    )
    slack_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for Slack API calls",
        ge=0.1,
        le=30
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class IssueStatus(str, Enum):
    """Authoritative issue statuses."""
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class Priority(str, Enum):
    """Issue priorities. ``urgent`` is accepted as an alias of critical."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SLAState(str, Enum):
    """SLA states reported by the evaluator."""
    ON_TIME = "on_time"
    WARNING = "warning"
    BREACHED = "breached"
    MET = "met"


class AuditAction(str, Enum):
    """Actions recorded in the issue audit trail."""
    CREATED = "created"
    STATUS_CHANGED = "status_changed"
    ASSIGNED = "assigned"
    REOPENED = "reopened"
    ESCALATED = "escalated"
    PRIORITY_CHANGED = "priority_changed"
    INTERNAL_COMMENT_ADDED = "internal_comment_added"
    ISSUE_MAPPED = "issue_mapped"
    ISSUE_UNMAPPED = "issue_unmapped"


class TimelineEventType(str, Enum):
    """Closed set of timeline event kinds."""
    CREATION = "creation"
    ASSIGNMENT = "assignment"
    STATUS = "status"
    COMMENT = "comment"
    PRIVATE_COMMENT = "private-comment"


TERMINAL_STATUSES = frozenset({IssueStatus.RESOLVED, IssueStatus.CLOSED})
ACTIVE_STATUSES = frozenset({IssueStatus.OPEN, IssueStatus.IN_PROGRESS})

# Transient labels seen in older flows: (canonical status, implies escalation)
STATUS_ALIASES: Dict[str, Tuple[IssueStatus, bool]] = {
    "pending": (IssueStatus.OPEN, False),
    "escalated": (IssueStatus.IN_PROGRESS, True),
}

PRIORITY_ALIASES: Dict[str, Priority] = {
    "urgent": Priority.CRITICAL,
}

# Working hours allowed per priority tier. Fixed policy, not user configurable.
SLA_TIER_HOURS: Dict[Priority, float] = {
    Priority.CRITICAL: 4,
    Priority.HIGH: 24,
    Priority.MEDIUM: 72,
    Priority.LOW: 168,
}
DEFAULT_SLA_PRIORITY = Priority.MEDIUM

# Final share of the tier window reported as "warning"
SLA_WARNING_FRACTION = 0.2

UNKNOWN_ACTOR_NAME = "Unknown User"
SYSTEM_ACTOR_NAME = "System"


def normalize_status(raw: str) -> Tuple[IssueStatus, bool]:
    """
    Map a raw status label to (canonical status, escalation flag).

    Raises:
        ValueError: if the label is not a known status or alias
    """
    value = (raw or "").strip().lower()
    if value in STATUS_ALIASES:
        return STATUS_ALIASES[value]
    return IssueStatus(value), False


def normalize_priority(raw: str) -> Priority:
    """
    Map a raw priority label to a Priority, resolving aliases.

    Raises:
        ValueError: if the label is not a known priority or alias
    """
    value = (raw or "").strip().lower()
    if value in PRIORITY_ALIASES:
        return PRIORITY_ALIASES[value]
    return Priority(value)


# ========== Lists for validation ==========

VALID_STATUSES = [status.value for status in IssueStatus] + list(STATUS_ALIASES)
VALID_PRIORITIES = [priority.value for priority in Priority] + list(PRIORITY_ALIASES)
VALID_SLA_STATES = [state.value for state in SLAState]
