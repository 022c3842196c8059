"""
SLA Domain Entities
====================

Pure Python domain entities for SLA enforcement.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from src.config import EscalationStatus, OPEN_ESCALATION_STATUSES


@dataclass
class Escalation:
    """
    A recorded breach notification.

    Addressed to the moderator of the store that reported the ticket.
    """

    id: Optional[str]
    ticket_id: str
    trigger_event: str
    escalated_to_user_id: Optional[str]
    status: EscalationStatus = EscalationStatus.TRIGGERED
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    priority: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_ESCALATION_STATUSES


@dataclass
class EscalationRunSummary:
    """Outcome of one escalation monitor pass."""

    started_at: datetime
    tickets_evaluated: int = 0
    escalations_created: int = 0
    tickets_escalated: int = 0
    notifications_sent: int = 0
    errors: int = 0
    skipped: bool = False
    finished_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "tickets_evaluated": self.tickets_evaluated,
            "escalations_created": self.escalations_created,
            "tickets_escalated": self.tickets_escalated,
            "notifications_sent": self.notifications_sent,
            "errors": self.errors,
            "skipped": self.skipped,
        }
