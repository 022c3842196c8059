"""
Dispatch Infrastructure Repositories
====================================

Concrete implementations of the dispatch repository interfaces using
async SQLAlchemy, plus the unit of work that binds them to one session.

Load changes are single UPDATE statements guarded in their WHERE clause
and checked by rowcount, so two transactions can never both take the
last slot of a provider.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import (
    AssignmentStatus,
    EscalationStatus,
    ProviderStatus,
    TicketStatus,
    ACTIVE_STATUSES,
    LOAD_HOLDING_STATUSES,
    OPEN_ESCALATION_STATUSES,
    TERMINAL_STATUSES,
)
from src.core import ConcurrencyConflictException, RepositoryException
from src.dispatch.application.interfaces import (
    IAssignmentRepository,
    IDispatchUnitOfWork,
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
from src.dispatch.infrastructure.models import (
    EscalationModel,
    ProviderModel,
    StoreModel,
    TicketAssignmentModel,
    TicketModel,
    TicketRemarkModel,
)
from src.infrastructure.database import get_session_maker
from src.shared.infrastructure.logging import get_logger
from src.sla.domain import Escalation

logger = get_logger(__name__)

_UUID_FIELDS = {"assigned_provider_id"}


def _uuid(value) -> Optional[UUID]:
    if value is None or isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _str(value) -> Optional[str]:
    return str(value) if value is not None else None


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """Drivers without timezone support hand back naive UTC datetimes."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _values(statuses) -> List[str]:
    return [getattr(s, "value", s) for s in statuses]


# ========== Mapping ==========

def _to_store(model: StoreModel) -> Store:
    return Store(
        id=str(model.id),
        name=model.name,
        location=GeoPoint.parse(model.location),
        moderator_user_id=model.moderator_user_id,
    )


def _to_provider(model: ProviderModel) -> Provider:
    return Provider(
        id=str(model.id),
        company_name=model.company_name,
        skills=list(model.skills or []),
        capacity_per_day=model.capacity_per_day,
        current_load=model.current_load,
        status=ProviderStatus(model.status),
        location=GeoPoint.parse(model.location),
    )


def _to_ticket(model: TicketModel) -> Ticket:
    return Ticket(
        id=str(model.id),
        store_id=str(model.store_id),
        reporter_user_id=model.reporter_user_id,
        description=model.description,
        location_in_store=model.location_in_store,
        category=model.category,
        subcategory=model.subcategory,
        priority=model.priority,
        sla_deadline=_aware(model.sla_deadline),
        status=model.status,
        asset_tag=model.asset_tag,
        classification_confidence=model.classification_confidence,
        assigned_provider_id=_str(model.assigned_provider_id),
        created_at=_aware(model.created_at),
        updated_at=_aware(model.updated_at),
        assigned_at=_aware(model.assigned_at),
        accepted_at=_aware(model.accepted_at),
        completion_reported_at=_aware(model.completion_reported_at),
        completed_at=_aware(model.completed_at),
    )


def _to_assignment(model: TicketAssignmentModel) -> Assignment:
    return Assignment(
        id=str(model.id),
        ticket_id=str(model.ticket_id),
        provider_id=str(model.provider_id),
        sequence=model.sequence,
        status=AssignmentStatus(model.status),
        routing_score=model.routing_score,
        created_at=_aware(model.created_at),
        accepted_at=_aware(model.accepted_at),
        accepted_tech_id=model.accepted_tech_id,
        accepted_phone=model.accepted_phone,
        rejected_at=_aware(model.rejected_at),
        rejection_reason=model.rejection_reason,
    )


def _to_escalation(model: EscalationModel) -> Escalation:
    return Escalation(
        id=str(model.id),
        ticket_id=str(model.ticket_id),
        trigger_event=model.trigger_event,
        escalated_to_user_id=model.escalated_to_user_id,
        status=EscalationStatus(model.status),
        created_at=_aware(model.created_at),
        priority=model.priority,
        acknowledged_at=_aware(model.acknowledged_at),
        resolved_at=_aware(model.resolved_at),
    )


def _to_remark(model: TicketRemarkModel) -> Remark:
    return Remark(
        id=str(model.id),
        ticket_id=str(model.ticket_id),
        text=model.text,
        author_id=model.author_id,
        created_at=_aware(model.created_at),
    )


# ========== Repositories ==========

class SQLAlchemyStoreRepository(IStoreRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, store_id: str) -> Optional[Store]:
        store_uuid = _uuid(store_id)
        if store_uuid is None:
            return None
        model = await self._session.get(StoreModel, store_uuid)
        return _to_store(model) if model else None


class SQLAlchemyTicketRepository(ITicketRepository):
    """
    SQLAlchemy implementation of the ticket repository.

    Status changes are compare-and-set on the status column.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, ticket: Ticket) -> Ticket:
        model = TicketModel(
            store_id=_uuid(ticket.store_id),
            reporter_user_id=ticket.reporter_user_id,
            description=ticket.description,
            location_in_store=ticket.location_in_store,
            asset_tag=ticket.asset_tag,
            category=ticket.category,
            subcategory=ticket.subcategory,
            priority=ticket.priority.value,
            classification_confidence=ticket.classification_confidence,
            status=ticket.status.value,
            sla_deadline=ticket.sla_deadline,
            created_at=ticket.created_at,
            updated_at=ticket.created_at,
        )
        self._session.add(model)
        try:
            await self._session.flush()
        except IntegrityError as e:
            raise RepositoryException(f"Failed to create ticket: {e.orig}")
        return _to_ticket(model)

    async def get_by_id(self, ticket_id: str) -> Optional[Ticket]:
        ticket_uuid = _uuid(ticket_id)
        if ticket_uuid is None:
            return None
        stmt = (
            select(TicketModel)
            .where(TicketModel.id == ticket_uuid)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return _to_ticket(model) if model else None

    async def update_status(
        self,
        ticket_id: str,
        new_status: TicketStatus,
        expected_statuses: Optional[Sequence[TicketStatus]] = None,
        **fields
    ) -> bool:
        ticket_uuid = _uuid(ticket_id)
        if ticket_uuid is None:
            return False

        values = {"status": TicketStatus(new_status).value, "updated_at": utcnow()}
        for key, value in fields.items():
            values[key] = _uuid(value) if key in _UUID_FIELDS else value

        stmt = update(TicketModel).where(TicketModel.id == ticket_uuid)
        if expected_statuses:
            stmt = stmt.where(TicketModel.status.in_(_values(expected_statuses)))
        stmt = stmt.values(**values).execution_options(synchronize_session=False)

        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def list_active(self, limit: Optional[int] = None) -> List[Ticket]:
        stmt = (
            select(TicketModel)
            .where(TicketModel.status.in_(_values(ACTIVE_STATUSES)))
            .order_by(TicketModel.created_at.asc())
        )
        if limit:
            stmt = stmt.limit(limit)
        result = await self._session.execute(stmt)
        return [_to_ticket(m) for m in result.scalars().all()]


class SQLAlchemyAssignmentRepository(IAssignmentRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(
        self,
        ticket_id: str,
        provider_id: str,
        routing_score: Optional[float] = None
    ) -> Assignment:
        ticket_uuid = _uuid(ticket_id)
        stmt = select(func.max(TicketAssignmentModel.sequence)).where(
            TicketAssignmentModel.ticket_id == ticket_uuid
        )
        current = (await self._session.execute(stmt)).scalar_one_or_none() or 0

        model = TicketAssignmentModel(
            ticket_id=ticket_uuid,
            provider_id=_uuid(provider_id),
            sequence=current + 1,
            status=AssignmentStatus.PROPOSED.value,
            routing_score=routing_score,
            created_at=utcnow(),
        )
        self._session.add(model)
        try:
            await self._session.flush()
        except IntegrityError:
            raise ConcurrencyConflictException(
                "assignment", ticket_id, f"sequence {current + 1} already taken"
            )
        return _to_assignment(model)

    async def update_status(
        self,
        ticket_id: str,
        provider_id: Optional[str],
        from_status: AssignmentStatus,
        to_status: AssignmentStatus,
        **fields
    ) -> Optional[Assignment]:
        ticket_uuid = _uuid(ticket_id)
        if ticket_uuid is None:
            return None

        stmt = select(TicketAssignmentModel.id).where(
            TicketAssignmentModel.ticket_id == ticket_uuid,
            TicketAssignmentModel.status == AssignmentStatus(from_status).value,
        )
        if provider_id is not None:
            stmt = stmt.where(TicketAssignmentModel.provider_id == _uuid(provider_id))
        stmt = stmt.order_by(TicketAssignmentModel.sequence.desc()).limit(1)

        assignment_id = (await self._session.execute(stmt)).scalar_one_or_none()
        if assignment_id is None:
            return None

        result = await self._session.execute(
            update(TicketAssignmentModel)
            .where(
                TicketAssignmentModel.id == assignment_id,
                TicketAssignmentModel.status == AssignmentStatus(from_status).value,
            )
            .values(status=AssignmentStatus(to_status).value, **fields)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None

        refreshed = await self._session.execute(
            select(TicketAssignmentModel)
            .where(TicketAssignmentModel.id == assignment_id)
            .execution_options(populate_existing=True)
        )
        return _to_assignment(refreshed.scalar_one())

    async def get_active(self, ticket_id: str) -> Optional[Assignment]:
        ticket_uuid = _uuid(ticket_id)
        if ticket_uuid is None:
            return None
        stmt = (
            select(TicketAssignmentModel)
            .where(
                TicketAssignmentModel.ticket_id == ticket_uuid,
                TicketAssignmentModel.status.in_(
                    _values([AssignmentStatus.PROPOSED, AssignmentStatus.ACCEPTED])
                ),
            )
            .order_by(TicketAssignmentModel.sequence.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        model = (await self._session.execute(stmt)).scalar_one_or_none()
        return _to_assignment(model) if model else None

    async def list_for_ticket(self, ticket_id: str) -> List[Assignment]:
        ticket_uuid = _uuid(ticket_id)
        if ticket_uuid is None:
            return []
        stmt = (
            select(TicketAssignmentModel)
            .where(TicketAssignmentModel.ticket_id == ticket_uuid)
            .order_by(TicketAssignmentModel.sequence.asc())
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return [_to_assignment(m) for m in result.scalars().all()]


class SQLAlchemyProviderRepository(IProviderRepository):
    """
    SQLAlchemy implementation of the provider repository.

    Never read-modify-write `current_load`; only the guarded deltas below
    touch it outside reconciliation.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, provider_id: str) -> Optional[Provider]:
        provider_uuid = _uuid(provider_id)
        if provider_uuid is None:
            return None
        stmt = (
            select(ProviderModel)
            .where(ProviderModel.id == provider_uuid)
            .execution_options(populate_existing=True)
        )
        model = (await self._session.execute(stmt)).scalar_one_or_none()
        return _to_provider(model) if model else None

    async def list_approved_with_capacity(self) -> List[Provider]:
        stmt = (
            select(ProviderModel)
            .where(
                ProviderModel.status == ProviderStatus.APPROVED.value,
                ProviderModel.current_load < ProviderModel.capacity_per_day,
            )
            .order_by(ProviderModel.id.asc())
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return [_to_provider(m) for m in result.scalars().all()]

    async def increment_load(self, provider_id: str) -> bool:
        provider_uuid = _uuid(provider_id)
        if provider_uuid is None:
            return False
        result = await self._session.execute(
            update(ProviderModel)
            .where(
                ProviderModel.id == provider_uuid,
                ProviderModel.status == ProviderStatus.APPROVED.value,
                ProviderModel.current_load < ProviderModel.capacity_per_day,
            )
            .values(current_load=ProviderModel.current_load + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def decrement_load(self, provider_id: str) -> bool:
        provider_uuid = _uuid(provider_id)
        if provider_uuid is None:
            return False
        result = await self._session.execute(
            update(ProviderModel)
            .where(ProviderModel.id == provider_uuid, ProviderModel.current_load > 0)
            .values(current_load=ProviderModel.current_load - 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def completion_stats(self, provider_ids: Sequence[str]) -> Dict[str, CompletionStats]:
        uuids = [u for u in (_uuid(p) for p in provider_ids) if u is not None]
        if not uuids:
            return {}

        completed = func.sum(case(
            (TicketModel.status.in_(_values(TERMINAL_STATUSES)), 1),
            else_=0,
        ))
        stmt = (
            select(TicketModel.assigned_provider_id, completed, func.count(TicketModel.id))
            .where(TicketModel.assigned_provider_id.in_(uuids))
            .group_by(TicketModel.assigned_provider_id)
        )
        result = await self._session.execute(stmt)
        return {
            str(provider_id): CompletionStats(completed=int(done or 0), total=int(total or 0))
            for provider_id, done, total in result.all()
        }

    async def audit_loads(self) -> List[ProviderLoadDrift]:
        holding = (
            select(
                TicketModel.assigned_provider_id.label("provider_id"),
                func.count(TicketModel.id).label("open_tickets"),
            )
            .where(TicketModel.status.in_(_values(LOAD_HOLDING_STATUSES)))
            .group_by(TicketModel.assigned_provider_id)
            .subquery()
        )
        stmt = (
            select(ProviderModel.id, ProviderModel.current_load, func.coalesce(holding.c.open_tickets, 0))
            .outerjoin(holding, holding.c.provider_id == ProviderModel.id)
            .order_by(ProviderModel.id.asc())
        )
        result = await self._session.execute(stmt)
        return [
            ProviderLoadDrift(provider_id=str(pid), recorded_load=recorded, actual_load=int(actual))
            for pid, recorded, actual in result.all()
            if recorded != int(actual)
        ]

    async def set_load(self, provider_id: str, load: int) -> None:
        await self._session.execute(
            update(ProviderModel)
            .where(ProviderModel.id == _uuid(provider_id))
            .values(current_load=max(0, load))
            .execution_options(synchronize_session=False)
        )


class SQLAlchemyEscalationRepository(IEscalationRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, escalation: Escalation) -> Escalation:
        model = EscalationModel(
            ticket_id=_uuid(escalation.ticket_id),
            trigger_event=escalation.trigger_event,
            escalated_to_user_id=escalation.escalated_to_user_id,
            status=EscalationStatus(escalation.status).value,
            priority=escalation.priority,
            created_at=escalation.created_at,
        )
        self._session.add(model)
        await self._session.flush()
        return _to_escalation(model)

    async def has_open(self, ticket_id: str, trigger_event: str) -> bool:
        stmt = select(EscalationModel.id).where(
            EscalationModel.ticket_id == _uuid(ticket_id),
            EscalationModel.trigger_event == trigger_event,
            EscalationModel.status.in_(_values(OPEN_ESCALATION_STATUSES)),
        ).limit(1)
        return (await self._session.execute(stmt)).scalar_one_or_none() is not None

    async def list_for_ticket(self, ticket_id: str) -> List[Escalation]:
        ticket_uuid = _uuid(ticket_id)
        if ticket_uuid is None:
            return []
        stmt = (
            select(EscalationModel)
            .where(EscalationModel.ticket_id == ticket_uuid)
            .order_by(EscalationModel.created_at.asc())
        )
        result = await self._session.execute(stmt)
        return [_to_escalation(m) for m in result.scalars().all()]


class SQLAlchemyRemarkRepository(IRemarkRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def add(self, remark: Remark) -> Remark:
        model = TicketRemarkModel(
            ticket_id=_uuid(remark.ticket_id),
            text=remark.text,
            author_id=remark.author_id,
            created_at=remark.created_at,
        )
        self._session.add(model)
        await self._session.flush()
        return _to_remark(model)

    async def list_for_ticket(self, ticket_id: str) -> List[Remark]:
        ticket_uuid = _uuid(ticket_id)
        if ticket_uuid is None:
            return []
        stmt = (
            select(TicketRemarkModel)
            .where(TicketRemarkModel.ticket_id == ticket_uuid)
            .order_by(TicketRemarkModel.created_at.asc())
        )
        result = await self._session.execute(stmt)
        return [_to_remark(m) for m in result.scalars().all()]


# ========== Unit of Work ==========

class SQLAlchemyDispatchUnitOfWork(IDispatchUnitOfWork):
    """
    One AsyncSession shared by every dispatch repository.

    Usage:
        async with SQLAlchemyDispatchUnitOfWork() as uow:
            ticket = await uow.tickets.get_by_id(ticket_id)
    """

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        self._session_factory = session_factory or get_session_maker()
        self._session: Optional[AsyncSession] = None

    async def __aenter__(self) -> "SQLAlchemyDispatchUnitOfWork":
        self._session = self._session_factory()
        self.tickets = SQLAlchemyTicketRepository(self._session)
        self.assignments = SQLAlchemyAssignmentRepository(self._session)
        self.providers = SQLAlchemyProviderRepository(self._session)
        self.escalations = SQLAlchemyEscalationRepository(self._session)
        self.stores = SQLAlchemyStoreRepository(self._session)
        self.remarks = SQLAlchemyRemarkRepository(self._session)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            await self._session.close()
            self._session = None

    async def commit(self) -> None:
        try:
            await self._session.commit()
        except IntegrityError as e:
            await self._session.rollback()
            raise ConcurrencyConflictException("transaction", "commit", str(e.orig))
        except SQLAlchemyError as e:
            await self._session.rollback()
            logger.error("Dispatch transaction failed to commit", extra={"error": str(e)})
            raise RepositoryException(f"Commit failed: {e}")

    async def rollback(self) -> None:
        await self._session.rollback()
