"""
SLA Value Objects
==================

Immutable value objects for the SLA policy table.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from datetime import datetime, timedelta
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from src.config import Priority, TicketStatus, TERMINAL_STATUSES, VALID_PRIORITIES

SLA_DEADLINE_TRIGGER = "SLA deadline exceeded"


class SLARule(BaseModel):
    """
    Timeouts that apply to one priority.

    `total_resolution_hours` is the absolute budget from creation that
    fixes the ticket's SLA deadline; it defaults to the resolution timeout.
    """
    model_config = ConfigDict(frozen=True)

    priority: Priority
    assignment_timeout_minutes: int = Field(..., gt=0)
    acceptance_timeout_minutes: int = Field(..., gt=0)
    resolution_timeout_hours: float = Field(..., gt=0)
    total_resolution_hours: Optional[float] = Field(default=None, gt=0)

    @property
    def assignment_timeout(self) -> timedelta:
        return timedelta(minutes=self.assignment_timeout_minutes)

    @property
    def acceptance_timeout(self) -> timedelta:
        return timedelta(minutes=self.acceptance_timeout_minutes)

    @property
    def resolution_timeout(self) -> timedelta:
        return timedelta(hours=self.resolution_timeout_hours)

    @property
    def total_resolution_budget(self) -> timedelta:
        hours = self.total_resolution_hours or self.resolution_timeout_hours
        return timedelta(hours=hours)


DEFAULT_SLA_RULES: Dict[Priority, SLARule] = {
    Priority.HIGH: SLARule(
        priority=Priority.HIGH,
        assignment_timeout_minutes=15,
        acceptance_timeout_minutes=30,
        resolution_timeout_hours=4,
    ),
    Priority.MEDIUM: SLARule(
        priority=Priority.MEDIUM,
        assignment_timeout_minutes=30,
        acceptance_timeout_minutes=60,
        resolution_timeout_hours=12,
    ),
    Priority.LOW: SLARule(
        priority=Priority.LOW,
        assignment_timeout_minutes=120,
        acceptance_timeout_minutes=240,
        resolution_timeout_hours=48,
    ),
}


class SLAPolicy(BaseModel):
    """
    SLA policy table loaded from YAML.

    Missing priorities are filled from DEFAULT_SLA_RULES so lookups are
    total. Unknown priorities resolve to the MEDIUM rule.
    """
    rules: Dict[Priority, SLARule] = Field(default_factory=dict)
    notify_channels: List[str] = Field(
        default_factory=lambda: ["#store-escalations"],
        description="Channels passed to the escalation notifier"
    )

    @field_validator("rules", mode="before")
    @classmethod
    def coerce_rules(cls, v):
        if not v:
            return {}
        coerced = {}
        for key, rule in dict(v).items():
            priority = Priority(str(getattr(key, "value", key)).upper())
            if isinstance(rule, dict):
                rule = {**rule, "priority": priority}
            coerced[priority] = rule
        return coerced

    @model_validator(mode="after")
    def fill_defaults(self) -> "SLAPolicy":
        for priority in VALID_PRIORITIES:
            if priority not in self.rules:
                self.rules[priority] = DEFAULT_SLA_RULES[priority]
        return self

    def get_rule(self, priority) -> SLARule:
        try:
            return self.rules[Priority(getattr(priority, "value", priority))]
        except (KeyError, ValueError):
            return self.rules[Priority.MEDIUM]


class SLACalculator:
    """
    Pure functions for SLA calculations.

    Stateless utility class - all deadline and breach logic in one place.
    """

    @staticmethod
    def calculate_deadline(
        created_at: datetime,
        priority: Priority,
        policy: SLAPolicy
    ) -> datetime:
        """
        Absolute SLA deadline for a ticket.

        Computed once at creation; re-routing never recomputes it.
        """
        return created_at + policy.get_rule(priority).total_resolution_budget

    @staticmethod
    def detect_breaches(
        status: TicketStatus,
        created_at: datetime,
        sla_deadline: Optional[datetime],
        rule: SLARule,
        now: datetime,
        assigned_at: Optional[datetime] = None,
        accepted_at: Optional[datetime] = None
    ) -> List[str]:
        """
        Evaluate every timeout that applies to a ticket snapshot.

        Triggers are independent and may co-occur.

        Returns:
            Trigger descriptions, in evaluation order
        """
        status = TicketStatus(status)
        triggers: List[str] = []

        if status in TERMINAL_STATUSES:
            return triggers

        if status == TicketStatus.OPEN and now > created_at + rule.assignment_timeout:
            triggers.append(
                f"Assignment timeout: {rule.assignment_timeout_minutes} minutes exceeded"
            )

        if (status == TicketStatus.ASSIGNED and assigned_at is not None
                and now > assigned_at + rule.acceptance_timeout):
            triggers.append(
                f"Acceptance timeout: {rule.acceptance_timeout_minutes} minutes exceeded"
            )

        if (status == TicketStatus.IN_PROGRESS and accepted_at is not None
                and now > accepted_at + rule.resolution_timeout):
            triggers.append(
                f"Resolution timeout: {rule.resolution_timeout_hours:g} hours exceeded"
            )

        if sla_deadline is not None and now > sla_deadline:
            triggers.append(SLA_DEADLINE_TRIGGER)

        return triggers
