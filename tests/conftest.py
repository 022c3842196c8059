"""
Shared fixtures: an in-memory dispatch database and unit of work.

The unit of work snapshots the whole database on entry and restores it
on rollback, so tests observe the same all-or-nothing behaviour as the
SQLAlchemy implementation.
"""

import copy
from datetime import timedelta
from typing import Dict, List, Optional, Sequence
from uuid import uuid4

import pytest

from src.config import (
    AssignmentStatus,
    ProviderStatus,
    TicketStatus,
    ACTIVE_STATUSES,
    LOAD_HOLDING_STATUSES,
    TERMINAL_STATUSES,
)
from src.dispatch.application.interfaces import (
    IAssignmentRepository,
    IDispatchUnitOfWork,
    IEscalationNotifier,
    IEscalationRepository,
    IProviderRepository,
    IRemarkRepository,
    IStoreRepository,
    ITicketRepository,
)
from src.dispatch.domain import (
    Assignment,
    CompletionStats,
    GeoPoint,
    Provider,
    ProviderLoadDrift,
    Remark,
    Store,
    Ticket,
    utcnow,
)
from src.sla.domain import Escalation

STORE_LOCATION = GeoPoint(40.7128, -74.0060)


class InMemoryDatabase:
    def __init__(self):
        self.stores: Dict[str, Store] = {}
        self.providers: Dict[str, Provider] = {}
        self.tickets: Dict[str, Ticket] = {}
        self.assignments: List[Assignment] = []
        self.escalations: List[Escalation] = []
        self.remarks: List[Remark] = []
        self.commits = 0
        self.rollbacks = 0

    def snapshot(self) -> dict:
        return copy.deepcopy({
            "stores": self.stores,
            "providers": self.providers,
            "tickets": self.tickets,
            "assignments": self.assignments,
            "escalations": self.escalations,
            "remarks": self.remarks,
        })

    def restore(self, state: dict) -> None:
        for key, value in state.items():
            setattr(self, key, value)

    def remark_texts(self, ticket_id: str) -> List[str]:
        return [r.text for r in self.remarks if r.ticket_id == ticket_id]


class InMemoryTicketRepository(ITicketRepository):
    def __init__(self, db: InMemoryDatabase):
        self._db = db

    async def create(self, ticket: Ticket) -> Ticket:
        stored = copy.deepcopy(ticket)
        stored.id = stored.id or str(uuid4())
        self._db.tickets[stored.id] = stored
        return copy.deepcopy(stored)

    async def get_by_id(self, ticket_id: str) -> Optional[Ticket]:
        ticket = self._db.tickets.get(ticket_id)
        return copy.deepcopy(ticket) if ticket else None

    async def update_status(self, ticket_id, new_status, expected_statuses=None, **fields) -> bool:
        ticket = self._db.tickets.get(ticket_id)
        if ticket is None:
            return False
        if expected_statuses and ticket.status not in expected_statuses:
            return False
        ticket.status = TicketStatus(new_status)
        ticket.updated_at = utcnow()
        for key, value in fields.items():
            setattr(ticket, key, value)
        return True

    async def list_active(self, limit=None) -> List[Ticket]:
        active = sorted(
            (t for t in self._db.tickets.values() if t.status in ACTIVE_STATUSES),
            key=lambda t: t.created_at,
        )
        return copy.deepcopy(active[:limit] if limit else active)


class InMemoryAssignmentRepository(IAssignmentRepository):
    def __init__(self, db: InMemoryDatabase):
        self._db = db

    def _for_ticket(self, ticket_id: str) -> List[Assignment]:
        return sorted(
            (a for a in self._db.assignments if a.ticket_id == ticket_id),
            key=lambda a: a.sequence,
        )

    async def create(self, ticket_id, provider_id, routing_score=None) -> Assignment:
        sequence = max((a.sequence for a in self._for_ticket(ticket_id)), default=0) + 1
        assignment = Assignment(
            id=str(uuid4()),
            ticket_id=ticket_id,
            provider_id=provider_id,
            sequence=sequence,
            routing_score=routing_score,
        )
        self._db.assignments.append(assignment)
        return copy.deepcopy(assignment)

    async def update_status(self, ticket_id, provider_id, from_status, to_status, **fields):
        matching = [
            a for a in self._for_ticket(ticket_id)
            if a.status == from_status and (provider_id is None or a.provider_id == provider_id)
        ]
        if not matching:
            return None
        assignment = matching[-1]
        assignment.status = AssignmentStatus(to_status)
        for key, value in fields.items():
            setattr(assignment, key, value)
        return copy.deepcopy(assignment)

    async def get_active(self, ticket_id) -> Optional[Assignment]:
        active = [a for a in self._for_ticket(ticket_id) if a.is_active]
        return copy.deepcopy(active[-1]) if active else None

    async def list_for_ticket(self, ticket_id) -> List[Assignment]:
        return copy.deepcopy(self._for_ticket(ticket_id))


class InMemoryProviderRepository(IProviderRepository):
    def __init__(self, db: InMemoryDatabase):
        self._db = db

    async def get_by_id(self, provider_id) -> Optional[Provider]:
        provider = self._db.providers.get(provider_id)
        return copy.deepcopy(provider) if provider else None

    async def list_approved_with_capacity(self) -> List[Provider]:
        return copy.deepcopy(sorted(
            (p for p in self._db.providers.values() if p.is_approved and p.has_capacity),
            key=lambda p: p.id,
        ))

    async def increment_load(self, provider_id) -> bool:
        provider = self._db.providers.get(provider_id)
        if provider is None or not provider.is_approved or not provider.has_capacity:
            return False
        provider.current_load += 1
        return True

    async def decrement_load(self, provider_id) -> bool:
        provider = self._db.providers.get(provider_id)
        if provider is None or provider.current_load <= 0:
            return False
        provider.current_load -= 1
        return True

    async def completion_stats(self, provider_ids: Sequence[str]) -> Dict[str, CompletionStats]:
        stats = {}
        for provider_id in provider_ids:
            assigned = [t for t in self._db.tickets.values() if t.assigned_provider_id == provider_id]
            if assigned:
                stats[provider_id] = CompletionStats(
                    completed=sum(1 for t in assigned if t.status in TERMINAL_STATUSES),
                    total=len(assigned),
                )
        return stats

    async def audit_loads(self) -> List[ProviderLoadDrift]:
        drifts = []
        for provider in sorted(self._db.providers.values(), key=lambda p: p.id):
            actual = sum(
                1 for t in self._db.tickets.values()
                if t.assigned_provider_id == provider.id and t.status in LOAD_HOLDING_STATUSES
            )
            if actual != provider.current_load:
                drifts.append(ProviderLoadDrift(provider.id, provider.current_load, actual))
        return drifts

    async def set_load(self, provider_id, load) -> None:
        self._db.providers[provider_id].current_load = max(0, load)


class InMemoryEscalationRepository(IEscalationRepository):
    def __init__(self, db: InMemoryDatabase):
        self._db = db

    async def create(self, escalation: Escalation) -> Escalation:
        stored = copy.deepcopy(escalation)
        stored.id = stored.id or str(uuid4())
        self._db.escalations.append(stored)
        return copy.deepcopy(stored)

    async def has_open(self, ticket_id, trigger_event) -> bool:
        return any(
            e.ticket_id == ticket_id and e.trigger_event == trigger_event
            and e.is_open
            for e in self._db.escalations
        )

    async def list_for_ticket(self, ticket_id) -> List[Escalation]:
        return copy.deepcopy([e for e in self._db.escalations if e.ticket_id == ticket_id])


class InMemoryStoreRepository(IStoreRepository):
    def __init__(self, db: InMemoryDatabase):
        self._db = db

    async def get_by_id(self, store_id) -> Optional[Store]:
        store = self._db.stores.get(store_id)
        return copy.deepcopy(store) if store else None


class InMemoryRemarkRepository(IRemarkRepository):
    def __init__(self, db: InMemoryDatabase):
        self._db = db

    async def add(self, remark: Remark) -> Remark:
        stored = copy.deepcopy(remark)
        stored.id = stored.id or str(uuid4())
        self._db.remarks.append(stored)
        return copy.deepcopy(stored)

    async def list_for_ticket(self, ticket_id) -> List[Remark]:
        return copy.deepcopy([r for r in self._db.remarks if r.ticket_id == ticket_id])


class InMemoryUnitOfWork(IDispatchUnitOfWork):
    def __init__(self, db: InMemoryDatabase):
        self._db = db
        self._snapshot = None
        self.tickets = InMemoryTicketRepository(db)
        self.assignments = InMemoryAssignmentRepository(db)
        self.providers = InMemoryProviderRepository(db)
        self.escalations = InMemoryEscalationRepository(db)
        self.stores = InMemoryStoreRepository(db)
        self.remarks = InMemoryRemarkRepository(db)

    async def __aenter__(self):
        self._snapshot = self._db.snapshot()
        return self

    async def commit(self) -> None:
        self._snapshot = None
        self._db.commits += 1

    async def rollback(self) -> None:
        if self._snapshot is not None:
            self._db.restore(self._snapshot)
            self._snapshot = None
        self._db.rollbacks += 1


class RecordingNotifier(IEscalationNotifier):
    def __init__(self, fail: bool = False):
        self.sent = []
        self._fail = fail

    async def notify(self, escalation, ticket) -> bool:
        if self._fail:
            raise RuntimeError("webhook down")
        self.sent.append((escalation, ticket))
        return True


def make_provider(
    provider_id: str,
    skills=("General Maintenance",),
    capacity: int = 5,
    load: int = 0,
    location: Optional[GeoPoint] = STORE_LOCATION,
    status: ProviderStatus = ProviderStatus.APPROVED,
    company_name: Optional[str] = None,
) -> Provider:
    return Provider(
        id=provider_id,
        company_name=company_name or f"{provider_id} Services",
        skills=list(skills),
        capacity_per_day=capacity,
        current_load=load,
        status=status,
        location=location,
    )


def make_ticket(
    ticket_id: str,
    status: TicketStatus = TicketStatus.OPEN,
    priority="MEDIUM",
    created_at=None,
    deadline_hours: float = 12,
    category: str = "General",
    subcategory: str = "Maintenance",
    **fields
) -> Ticket:
    created_at = created_at or utcnow()
    return Ticket(
        id=ticket_id,
        store_id="store-1",
        reporter_user_id="reporter-1",
        description="Something is broken",
        location_in_store="Aisle 1",
        category=category,
        subcategory=subcategory,
        priority=priority,
        sla_deadline=created_at + timedelta(hours=deadline_hours),
        status=status,
        created_at=created_at,
        **fields
    )


@pytest.fixture
def db():
    database = InMemoryDatabase()
    database.stores["store-1"] = Store(
        id="store-1",
        name="Downtown",
        location=STORE_LOCATION,
        moderator_user_id="moderator-1",
    )
    return database


@pytest.fixture
def uow_factory(db):
    return lambda: InMemoryUnitOfWork(db)


@pytest.fixture
def notifier():
    return RecordingNotifier()
