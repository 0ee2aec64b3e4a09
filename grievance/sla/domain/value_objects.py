"""
SLA Value Objects
==================

Immutable value objects for the SLA domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, List, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from grievance.config import Priority, SLAState


WEEKDAY_NAMES = {
    "mon": 0, "monday": 0,
    "tue": 1, "tuesday": 1,
    "wed": 2, "wednesday": 2,
    "thu": 3, "thursday": 3,
    "fri": 4, "friday": 4,
    "sat": 5, "saturday": 5,
    "sun": 6, "sunday": 6,
}


class WorkingHoursConfig(BaseModel):
    """
    Business hours used for every SLA computation.

    ``working_days`` accepts weekday numbers (Monday = 0) or names
    ("mon", "friday", ...). ``end`` may be 24 for shifts running to midnight.
    """
    start: int = Field(default=9, ge=0, le=23, description="First working hour")
    end: int = Field(default=18, ge=1, le=24, description="Hour the working day ends")
    working_days: List[int] = Field(
        default_factory=lambda: [0, 1, 2, 3, 4],
        min_length=1,
        description="Working weekdays, Monday = 0"
    )
    timezone: str = Field(default="UTC", description="IANA zone the hours are expressed in")
    holidays: List[date] = Field(default_factory=list, description="Non-working dates")

    @field_validator("working_days", mode="before")
    @classmethod
    def parse_working_days(cls, v: Any) -> List[int]:
        """Accept weekday names as well as numbers."""
        days = []
        for item in v or []:
            if isinstance(item, str) and not item.strip().isdigit():
                key = item.strip().lower()
                if key not in WEEKDAY_NAMES:
                    raise ValueError(f"unknown weekday '{item}'")
                days.append(WEEKDAY_NAMES[key])
            else:
                day = int(item)
                if not 0 <= day <= 6:
                    raise ValueError(f"weekday must be between 0 and 6, got {day}")
                days.append(day)
        return sorted(set(days))

    @model_validator(mode="after")
    def validate_window(self) -> "WorkingHoursConfig":
        """The working day must have positive length."""
        if self.start >= self.end:
            raise ValueError("working_hours.start must be before working_hours.end")
        return self


class EscalationPolicyConfig(BaseModel):
    """Escalation knobs that operations may tune without a release."""
    priority_threshold: Optional[int] = Field(
        default=None,
        ge=1,
        description="Escalation level forcing critical priority (overrides settings)"
    )
    notify: List[str] = Field(
        default_factory=list,
        description="Slack channels notified on escalation"
    )


class PortalPolicyConfig(BaseModel):
    """
    Policy configuration loaded from YAML.

    SLA tier hours are deliberately absent: they are fixed business policy.
    """
    working_hours: WorkingHoursConfig = Field(default_factory=WorkingHoursConfig)
    escalation: EscalationPolicyConfig = Field(default_factory=EscalationPolicyConfig)


@dataclass(frozen=True)
class SLAEvaluation:
    """
    Result of evaluating one issue against its SLA tier at one instant.

    ``remaining_hours`` is signed working time: positive while time remains,
    negative by the overdue amount once breached.
    """
    issue_id: Optional[Union[int, str]]
    state: SLAState
    priority: Priority
    tier_hours: float
    deadline: datetime
    remaining_hours: float
    elapsed_hours: float
    evaluated_at: datetime
    resolved_within_sla: Optional[bool] = None

    @property
    def is_breached(self) -> bool:
        return self.state == SLAState.BREACHED

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "issue_id": self.issue_id,
            "status": self.state.value,
            "priority": self.priority.value,
            "tier_hours": self.tier_hours,
            "deadline": self.deadline.isoformat(),
            "remaining_hours": self.remaining_hours,
            "elapsed_hours": self.elapsed_hours,
            "evaluated_at": self.evaluated_at.isoformat(),
            "resolved_within_sla": self.resolved_within_sla,
        }


@dataclass(frozen=True)
class EscalationMessage:
    """Escalation notification payload."""
    issue_id: Optional[int]
    priority: str
    escalation_level: int
    sla_state: str
    deadline: str
    remaining_hours: float
    assigned_to: Optional[int]
    automatic: bool
    timestamp: str

    @classmethod
    def from_evaluation(cls, issue: Any, evaluation: SLAEvaluation, automatic: bool) -> "EscalationMessage":
        """Build from an escalated issue and its SLA evaluation."""
        return cls(
            issue_id=issue.id,
            priority=issue.priority.value,
            escalation_level=issue.escalation_level,
            sla_state=evaluation.state.value,
            deadline=evaluation.deadline.isoformat(),
            remaining_hours=evaluation.remaining_hours,
            assigned_to=issue.assigned_to,
            automatic=automatic,
            timestamp=evaluation.evaluated_at.isoformat(),
        )
