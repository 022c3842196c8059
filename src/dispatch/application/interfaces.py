"""
Dispatch Repository Interfaces
==============================

Persistence contracts the dispatch core relies on (Dependency Inversion).

All repositories of one unit of work share a single transaction: leaving
the `async with` block cleanly commits, an exception rolls everything back.
Load changes are atomic deltas and status changes are conditional, so
concurrent writers never overwrite each other blindly.
"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Sequence

from src.config import AssignmentStatus, TicketStatus
from src.dispatch.domain import (
    Assignment,
    CompletionStats,
    Provider,
    ProviderLoadDrift,
    Remark,
    Store,
    Ticket,
)
from src.sla.domain import Escalation


class ITicketRepository(ABC):
    """Interface for ticket data access."""

    @abstractmethod
    async def create(self, ticket: Ticket) -> Ticket:
        """Persist a new ticket and return it with its id."""

    @abstractmethod
    async def get_by_id(self, ticket_id: str) -> Optional[Ticket]:
        """Get ticket by id."""

    @abstractmethod
    async def update_status(
        self,
        ticket_id: str,
        new_status: TicketStatus,
        expected_statuses: Optional[Sequence[TicketStatus]] = None,
        **fields
    ) -> bool:
        """
        Set the status (and extra columns) if the current status is expected.

        Returns:
            False when the ticket is missing or its status moved on
        """

    @abstractmethod
    async def list_active(self, limit: Optional[int] = None) -> List[Ticket]:
        """List tickets in a non-terminal, non-escalated state, oldest first."""


class IAssignmentRepository(ABC):
    """Interface for assignment data access."""

    @abstractmethod
    async def create(
        self,
        ticket_id: str,
        provider_id: str,
        routing_score: Optional[float] = None
    ) -> Assignment:
        """
        Create a PROPOSED assignment with sequence = previous max + 1.

        Raises:
            ConcurrencyConflictException: If another writer took the sequence
        """

    @abstractmethod
    async def update_status(
        self,
        ticket_id: str,
        provider_id: Optional[str],
        from_status: AssignmentStatus,
        to_status: AssignmentStatus,
        **fields
    ) -> Optional[Assignment]:
        """
        Move the latest assignment in `from_status` to `to_status`.

        `provider_id=None` matches any provider.

        Returns:
            The updated assignment, or None if nothing matched
        """

    @abstractmethod
    async def get_active(self, ticket_id: str) -> Optional[Assignment]:
        """Get the PROPOSED or ACCEPTED assignment of a ticket, if any."""

    @abstractmethod
    async def list_for_ticket(self, ticket_id: str) -> List[Assignment]:
        """All assignments of a ticket ordered by sequence."""


class IProviderRepository(ABC):
    """Interface for provider data access."""

    @abstractmethod
    async def get_by_id(self, provider_id: str) -> Optional[Provider]:
        """Get provider by id."""

    @abstractmethod
    async def list_approved_with_capacity(self) -> List[Provider]:
        """APPROVED providers with current_load < capacity, ordered by id."""

    @abstractmethod
    async def increment_load(self, provider_id: str) -> bool:
        """
        Atomically add one unit of load if capacity remains.

        Returns:
            False if the provider is missing, not approved or full
        """

    @abstractmethod
    async def decrement_load(self, provider_id: str) -> bool:
        """
        Atomically release one unit of load (never below zero).

        Returns:
            False if the provider is missing or already at zero
        """

    @abstractmethod
    async def completion_stats(self, provider_ids: Sequence[str]) -> Dict[str, CompletionStats]:
        """Completed vs total tickets ever assigned, per provider."""

    @abstractmethod
    async def audit_loads(self) -> List[ProviderLoadDrift]:
        """Providers whose recorded load differs from their ASSIGNED/IN_PROGRESS tickets."""

    @abstractmethod
    async def set_load(self, provider_id: str, load: int) -> None:
        """Overwrite a provider's load. Reconciliation only."""


class IEscalationRepository(ABC):
    """Interface for escalation data access."""

    @abstractmethod
    async def create(self, escalation: Escalation) -> Escalation:
        """Persist an escalation and return it with its id."""

    @abstractmethod
    async def has_open(self, ticket_id: str, trigger_event: str) -> bool:
        """Whether a TRIGGERED/ACKNOWLEDGED escalation exists for this trigger."""

    @abstractmethod
    async def list_for_ticket(self, ticket_id: str) -> List[Escalation]:
        """All escalations of a ticket, oldest first."""


class IStoreRepository(ABC):
    """Interface for store lookups."""

    @abstractmethod
    async def get_by_id(self, store_id: str) -> Optional[Store]:
        """Get store by id."""


class IRemarkRepository(ABC):
    """Interface for the ticket audit trail."""

    @abstractmethod
    async def add(self, remark: Remark) -> Remark:
        """Append a remark."""

    @abstractmethod
    async def list_for_ticket(self, ticket_id: str) -> List[Remark]:
        """Remarks of a ticket, oldest first."""


class IDispatchUnitOfWork(ABC):
    """
    One transaction spanning all dispatch repositories.

    Usage:
        async with uow_factory() as uow:
            await uow.tickets.update_status(...)
            await uow.providers.decrement_load(...)
    """

    tickets: ITicketRepository
    assignments: IAssignmentRepository
    providers: IProviderRepository
    escalations: IEscalationRepository
    stores: IStoreRepository
    remarks: IRemarkRepository

    async def __aenter__(self) -> "IDispatchUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            await self.commit()
        else:
            await self.rollback()

    @abstractmethod
    async def commit(self) -> None:
        """Commit the transaction."""

    @abstractmethod
    async def rollback(self) -> None:
        """Discard every change made in this unit of work."""


UnitOfWorkFactory = Callable[[], IDispatchUnitOfWork]


class IEscalationNotifier(ABC):
    """Outbound hook invoked after an escalation is committed."""

    @abstractmethod
    async def notify(self, escalation: Escalation, ticket: Ticket) -> bool:
        """
        Deliver a notification.

        Returns:
            True if delivered; failures are reported by return value
        """


class NullEscalationNotifier(IEscalationNotifier):
    """Notifier used when no outbound channel is configured."""

    async def notify(self, escalation: Escalation, ticket: Ticket) -> bool:
        return False
