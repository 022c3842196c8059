"""
Dispatch Application DTOs
=========================

Result objects returned by the orchestrator and the Pydantic models the
HTTP layer validates requests with and serializes responses into.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from src.dispatch.domain import Assignment, Remark, Ticket
from src.sla.domain import Escalation
from src.triage.domain import ClassificationResult

PriorityStr = Literal["HIGH", "MEDIUM", "LOW"]


# ========== Service Results ==========

@dataclass
class SubmitTicketResult:
    """Outcome of submitting a new ticket."""
    ticket: Ticket
    classification: ClassificationResult
    assigned: bool
    provider_id: Optional[str] = None
    routing_score: Optional[float] = None
    reasoning: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class RejectionResult:
    """Outcome of a provider rejecting its proposal."""
    ticket_id: str
    rerouted: bool
    escalated: bool
    new_provider_id: Optional[str] = None
    escalation: Optional[Escalation] = None


@dataclass
class TicketDetails:
    """A ticket together with its history."""
    ticket: Ticket
    assignments: List[Assignment] = field(default_factory=list)
    remarks: List[Remark] = field(default_factory=list)
    escalations: List[Escalation] = field(default_factory=list)


# ========== Request DTOs ==========

class LocationDTO(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class SubmitTicketRequest(BaseModel):
    """Request model for reporting an issue."""
    description: str = Field(..., min_length=1, max_length=5000, description="Issue description")
    location_in_store: str = Field(..., min_length=1, max_length=255, description="Where in the store")
    store_id: str = Field(..., min_length=1)
    reporter_user_id: str = Field(..., min_length=1)
    asset_tag: Optional[str] = Field(None, max_length=100, description="Scanned asset QR tag")


class AcceptAssignmentRequest(BaseModel):
    provider_id: str = Field(..., min_length=1)
    tech_id: str = Field(..., min_length=1, description="Employee id of the technician")
    phone: str = Field(..., min_length=3, max_length=32, description="Technician contact number")


class RejectAssignmentRequest(BaseModel):
    provider_id: str = Field(..., min_length=1)
    reason: str = Field(..., min_length=1, max_length=500)


class CompleteAssignmentRequest(BaseModel):
    provider_id: str = Field(..., min_length=1)


# ========== Response DTOs ==========

class TicketResponse(BaseModel):
    """Response model for a ticket."""
    id: str
    store_id: str
    reporter_user_id: str
    description: str
    location_in_store: str
    category: str
    subcategory: str
    priority: PriorityStr
    status: str
    sla_deadline: datetime
    asset_tag: Optional[str] = None
    assigned_provider_id: Optional[str] = None
    created_at: datetime
    assigned_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    completion_reported_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, ticket: Ticket) -> "TicketResponse":
        return cls(
            id=ticket.id,
            store_id=ticket.store_id,
            reporter_user_id=ticket.reporter_user_id,
            description=ticket.description,
            location_in_store=ticket.location_in_store,
            category=ticket.category,
            subcategory=ticket.subcategory,
            priority=ticket.priority.value,
            status=ticket.status.value,
            sla_deadline=ticket.sla_deadline,
            asset_tag=ticket.asset_tag,
            assigned_provider_id=ticket.assigned_provider_id,
            created_at=ticket.created_at,
            assigned_at=ticket.assigned_at,
            accepted_at=ticket.accepted_at,
            completion_reported_at=ticket.completion_reported_at,
            completed_at=ticket.completed_at,
        )


class SubmitTicketResponse(BaseModel):
    """Response model for ticket submission."""
    ticket: TicketResponse
    classification_source: Literal["llm", "keyword"]
    classification_confidence: float
    assigned: bool
    provider_id: Optional[str] = None
    routing_score: Optional[float] = None
    reasoning: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def from_result(cls, result: SubmitTicketResult) -> "SubmitTicketResponse":
        return cls(
            ticket=TicketResponse.from_entity(result.ticket),
            classification_source=result.classification.source,
            classification_confidence=result.classification.confidence,
            assigned=result.assigned,
            provider_id=result.provider_id,
            routing_score=result.routing_score,
            reasoning=result.reasoning,
            reason=result.reason,
        )


class RejectionResponse(BaseModel):
    ticket_id: str
    rerouted: bool
    escalated: bool
    new_provider_id: Optional[str] = None


class AssignmentResponse(BaseModel):
    id: str
    provider_id: str
    sequence: int
    status: str
    routing_score: Optional[float] = None
    created_at: datetime
    accepted_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None


class RemarkResponse(BaseModel):
    text: str
    author_id: Optional[str] = None
    created_at: datetime


class EscalationResponse(BaseModel):
    id: str
    trigger_event: str
    escalated_to_user_id: Optional[str] = None
    status: str
    created_at: datetime


class TicketDetailsResponse(BaseModel):
    """Response model for the ticket detail view."""
    ticket: TicketResponse
    assignments: List[AssignmentResponse]
    remarks: List[RemarkResponse]
    escalations: List[EscalationResponse]

    @classmethod
    def from_details(cls, details: TicketDetails) -> "TicketDetailsResponse":
        return cls(
            ticket=TicketResponse.from_entity(details.ticket),
            assignments=[
                AssignmentResponse(
                    id=a.id,
                    provider_id=a.provider_id,
                    sequence=a.sequence,
                    status=getattr(a.status, "value", a.status),
                    routing_score=a.routing_score,
                    created_at=a.created_at,
                    accepted_at=a.accepted_at,
                    rejected_at=a.rejected_at,
                    rejection_reason=a.rejection_reason,
                )
                for a in details.assignments
            ],
            remarks=[
                RemarkResponse(text=r.text, author_id=r.author_id, created_at=r.created_at)
                for r in details.remarks
            ],
            escalations=[
                EscalationResponse(
                    id=e.id,
                    trigger_event=e.trigger_event,
                    escalated_to_user_id=e.escalated_to_user_id,
                    status=getattr(e.status, "value", e.status),
                    created_at=e.created_at,
                )
                for e in details.escalations
            ],
        )
