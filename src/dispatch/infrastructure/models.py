"""
Dispatch Infrastructure Models
==============================

SQLAlchemy ORM models for the dispatch module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.config import (
    AssignmentStatus,
    EscalationStatus,
    Priority,
    ProviderStatus,
    TicketStatus,
)
from src.infrastructure.database import Base


def _now() -> datetime:
    return datetime.now(timezone.utc)


class StoreModel(Base):
    """Maps to the 'stores' table."""
    __tablename__ = "stores"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # {"latitude": float, "longitude": float}
    location: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    moderator_user_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)


class ProviderModel(Base):
    """
    Maps to the 'providers' table.

    `current_load` is only changed by single-statement deltas.
    """
    __tablename__ = "providers"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    company_name: Mapped[str] = mapped_column(String(255), nullable=False)
    skills: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    capacity_per_day: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    current_load: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[ProviderStatus] = mapped_column(
        String(50), nullable=False, default=ProviderStatus.PENDING, index=True
    )
    location: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        CheckConstraint("current_load >= 0", name="ck_providers_load_non_negative"),
        CheckConstraint("capacity_per_day >= 0", name="ck_providers_capacity_non_negative"),
    )


class TicketModel(Base):
    """Maps to the 'tickets' table."""
    __tablename__ = "tickets"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    store_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("stores.id"), nullable=False, index=True)
    reporter_user_id: Mapped[str] = mapped_column(String(255), nullable=False)

    # Report
    description: Mapped[str] = mapped_column(Text, nullable=False)
    location_in_store: Mapped[str] = mapped_column(String(255), nullable=False)
    asset_tag: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Classification
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    subcategory: Mapped[str] = mapped_column(String(100), nullable=False)
    priority: Mapped[Priority] = mapped_column(String(50), nullable=False, default=Priority.MEDIUM)
    classification_confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Lifecycle
    status: Mapped[TicketStatus] = mapped_column(
        String(50), nullable=False, default=TicketStatus.OPEN, index=True
    )
    assigned_provider_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid, ForeignKey("providers.id"), nullable=True, index=True
    )
    sla_deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completion_reported_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class TicketAssignmentModel(Base):
    """
    Maps to the 'ticket_assignments' table.

    (ticket_id, sequence) is unique so two concurrent routes of the same
    ticket cannot both record an attempt.
    """
    __tablename__ = "ticket_assignments"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    ticket_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("tickets.id"), nullable=False, index=True)
    provider_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("providers.id"), nullable=False, index=True)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[AssignmentStatus] = mapped_column(
        String(50), nullable=False, default=AssignmentStatus.PROPOSED
    )
    routing_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)

    # Acceptance
    accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    accepted_tech_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    accepted_phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    # Rejection
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("ticket_id", "sequence", name="uq_ticket_assignments_ticket_sequence"),
    )


class EscalationModel(Base):
    """Maps to the 'escalations' table."""
    __tablename__ = "escalations"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    ticket_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("tickets.id"), nullable=False, index=True)
    trigger_event: Mapped[str] = mapped_column(String(255), nullable=False)
    escalated_to_user_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[EscalationStatus] = mapped_column(
        String(50), nullable=False, default=EscalationStatus.TRIGGERED
    )
    priority: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    acknowledged_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class TicketRemarkModel(Base):
    """Maps to the 'ticket_remarks' table."""
    __tablename__ = "ticket_remarks"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    ticket_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("tickets.id"), nullable=False, index=True)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    author_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
