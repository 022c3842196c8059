"""
SLA Application DTOs
=====================

Response models for the escalation API.
"""

from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, Field

from src.sla.domain import EscalationRunSummary, SLAPolicy


class EscalationRunResponse(BaseModel):
    """Counters for one escalation monitor pass."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    tickets_evaluated: int = 0
    escalations_created: int = 0
    tickets_escalated: int = 0
    notifications_sent: int = 0
    errors: int = 0
    skipped: bool = False

    @classmethod
    def from_summary(cls, summary: EscalationRunSummary) -> "EscalationRunResponse":
        return cls(
            started_at=summary.started_at,
            finished_at=summary.finished_at,
            tickets_evaluated=summary.tickets_evaluated,
            escalations_created=summary.escalations_created,
            tickets_escalated=summary.tickets_escalated,
            notifications_sent=summary.notifications_sent,
            errors=summary.errors,
            skipped=summary.skipped,
        )


class SLARuleResponse(BaseModel):
    assignment_timeout_minutes: int
    acceptance_timeout_minutes: int
    resolution_timeout_hours: float
    total_resolution_hours: float


class SLAPolicyResponse(BaseModel):
    """The SLA table currently in force."""
    rules: Dict[str, SLARuleResponse] = Field(default_factory=dict)

    @classmethod
    def from_policy(cls, policy: SLAPolicy) -> "SLAPolicyResponse":
        return cls(rules={
            priority.value: SLARuleResponse(
                assignment_timeout_minutes=rule.assignment_timeout_minutes,
                acceptance_timeout_minutes=rule.acceptance_timeout_minutes,
                resolution_timeout_hours=rule.resolution_timeout_hours,
                total_resolution_hours=rule.total_resolution_budget.total_seconds() / 3600,
            )
            for priority, rule in policy.rules.items()
        })
