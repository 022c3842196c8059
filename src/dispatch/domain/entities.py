"""
Dispatch Domain Entities
========================

Pure Python domain entities for ticket dispatch.

Following Domain-Driven Design principles, these entities contain
business rules about the ticket lifecycle and are free of
infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Optional

from src.config import (
    AssignmentStatus,
    Priority,
    ProviderStatus,
    TicketStatus,
    LOAD_HOLDING_STATUSES,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class GeoPoint:
    """
    A latitude/longitude pair.

    Built leniently from stored JSON-ish data: anything that is not a pair
    of finite numbers yields None instead of raising.
    """
    latitude: float
    longitude: float

    @classmethod
    def parse(cls, value: Any) -> Optional["GeoPoint"]:
        if value is None:
            return None
        if isinstance(value, GeoPoint):
            return value
        try:
            if isinstance(value, dict):
                lat, lon = value.get("latitude"), value.get("longitude")
            else:
                lat, lon = value
            if isinstance(lat, bool) or isinstance(lon, bool):
                return None
            point = cls(float(lat), float(lon))
        except (TypeError, ValueError):
            return None
        if point.latitude != point.latitude or point.longitude != point.longitude:
            return None  # NaN
        return point


@dataclass
class Store:
    """A physical location that reports tickets."""
    id: str
    name: str
    location: Optional[GeoPoint] = None
    moderator_user_id: Optional[str] = None


@dataclass
class Provider:
    """
    An external service organization.

    `current_load` is only ever changed through atomic repository deltas;
    the entity is a read snapshot.
    """
    id: str
    company_name: str
    skills: List[str]
    capacity_per_day: int
    current_load: int = 0
    status: ProviderStatus = ProviderStatus.PENDING
    location: Optional[GeoPoint] = None

    @property
    def has_capacity(self) -> bool:
        return self.current_load < self.capacity_per_day

    @property
    def is_approved(self) -> bool:
        return ProviderStatus(self.status) == ProviderStatus.APPROVED

    @property
    def utilization(self) -> float:
        return self.current_load / max(self.capacity_per_day, 1)


@dataclass
class Ticket:
    """
    A reported store issue.

    `sla_deadline` is fixed at creation from the priority's SLA rule.
    """
    id: Optional[str]
    store_id: str
    reporter_user_id: str
    description: str
    location_in_store: str
    category: str
    subcategory: str
    priority: Priority
    sla_deadline: datetime
    status: TicketStatus = TicketStatus.OPEN
    asset_tag: Optional[str] = None
    classification_confidence: Optional[float] = None
    assigned_provider_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: Optional[datetime] = None
    assigned_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    completion_reported_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.description or not self.description.strip():
            raise ValueError("description must not be empty")
        if self.sla_deadline < self.created_at:
            raise ValueError("sla_deadline cannot be before created_at")
        self.priority = Priority(self.priority)
        self.status = TicketStatus(self.status)

    @property
    def holds_provider_load(self) -> bool:
        return self.status in LOAD_HOLDING_STATUSES and self.assigned_provider_id is not None


@dataclass
class Assignment:
    """One routing attempt linking a ticket to a provider."""
    id: Optional[str]
    ticket_id: str
    provider_id: str
    sequence: int
    status: AssignmentStatus = AssignmentStatus.PROPOSED
    routing_score: Optional[float] = None
    created_at: datetime = field(default_factory=utcnow)
    accepted_at: Optional[datetime] = None
    accepted_tech_id: Optional[str] = None
    accepted_phone: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return AssignmentStatus(self.status) in (AssignmentStatus.PROPOSED, AssignmentStatus.ACCEPTED)


@dataclass
class Remark:
    """An entry in a ticket's audit trail."""
    id: Optional[str]
    ticket_id: str
    text: str
    author_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
