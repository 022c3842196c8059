"""
SLA Application Services
=========================

The escalation monitor: a periodic scan that records SLA breaches,
escalates tickets past their deadline and notifies the store moderator.

Following SOLID principles:
- Single Responsibility: breach rules live in SLACalculator; this service
  only sequences reads, writes and notifications
- Dependency Inversion: persistence and notification go through the
  dispatch unit of work and notifier interfaces
"""

import asyncio
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from src.config import AssignmentStatus, TicketStatus
from src.dispatch.application.interfaces import (
    IDispatchUnitOfWork,
    IEscalationNotifier,
    NullEscalationNotifier,
    UnitOfWorkFactory,
)
from src.dispatch.domain import Remark, Ticket, utcnow
from src.shared.infrastructure.logging import get_logger
from src.sla.domain import (
    Escalation,
    EscalationRunSummary,
    SLACalculator,
    SLAPolicy,
    SLA_DEADLINE_TRIGGER,
)

logger = get_logger(__name__)

ESCALATABLE_STATUSES = [
    TicketStatus.OPEN,
    TicketStatus.ASSIGNED,
    TicketStatus.IN_PROGRESS,
    TicketStatus.REJECTED_BY_TECH,
]


class EscalationMonitorService:
    """
    Evaluates every active ticket against its SLA rule.

    This service:
    1. Lists active tickets
    2. Re-reads each one in its own transaction and detects breaches
    3. Moves tickets past their SLA deadline to ESCALATED, releasing the
       provider slot they held
    4. Records one escalation per new trigger
    5. Notifies after the transaction commits

    Runs are single-flight: a call that overlaps a running pass returns
    immediately with `skipped=True`.
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        policy_provider: Optional[Callable[[], SLAPolicy]] = None,
        notifier: Optional[IEscalationNotifier] = None,
        batch_limit: Optional[int] = None
    ):
        self._uow_factory = uow_factory
        self._policy_provider = policy_provider or SLAPolicy
        self._notifier = notifier or NullEscalationNotifier()
        self._batch_limit = batch_limit
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def run_once(self, now: Optional[datetime] = None) -> EscalationRunSummary:
        """
        Perform one monitoring pass.

        Args:
            now: Evaluation instant (defaults to the current UTC time)

        Returns:
            Counters for the pass
        """
        now = now or utcnow()
        summary = EscalationRunSummary(started_at=now)

        if self._lock.locked():
            logger.info("Escalation monitor already running, skipping pass")
            summary.skipped = True
            summary.finished_at = utcnow()
            return summary

        async with self._lock:
            policy = self._policy_provider()

            async with self._uow_factory() as uow:
                tickets = await uow.tickets.list_active(limit=self._batch_limit)

            for ticket in tickets:
                summary.tickets_evaluated += 1
                try:
                    created, escalated, current = await self._evaluate_ticket(ticket.id, policy, now)
                except Exception as e:
                    summary.errors += 1
                    logger.error(
                        "Escalation check failed for ticket",
                        extra={"ticket_id": ticket.id, "error": str(e), "error_type": type(e).__name__},
                        exc_info=True
                    )
                    continue

                summary.escalations_created += len(created)
                if escalated:
                    summary.tickets_escalated += 1

                for escalation in created:
                    if await self._notify(escalation, current):
                        summary.notifications_sent += 1

        summary.finished_at = utcnow()
        logger.info("Escalation monitor pass complete", extra=summary.to_dict())
        return summary

    async def _evaluate_ticket(
        self,
        ticket_id: str,
        policy: SLAPolicy,
        now: datetime
    ) -> Tuple[List[Escalation], bool, Optional[Ticket]]:
        created: List[Escalation] = []
        escalated = False

        async with self._uow_factory() as uow:
            ticket = await uow.tickets.get_by_id(ticket_id)
            if ticket is None or ticket.status not in ESCALATABLE_STATUSES:
                return created, escalated, ticket

            triggers = SLACalculator.detect_breaches(
                status=ticket.status,
                created_at=ticket.created_at,
                sla_deadline=ticket.sla_deadline,
                rule=policy.get_rule(ticket.priority),
                now=now,
                assigned_at=ticket.assigned_at,
                accepted_at=ticket.accepted_at,
            )
            if not triggers:
                return created, escalated, ticket

            if SLA_DEADLINE_TRIGGER in triggers:
                escalated = await self._escalate(uow, ticket)
                if not escalated:
                    triggers = [t for t in triggers if t != SLA_DEADLINE_TRIGGER]

            store = await uow.stores.get_by_id(ticket.store_id)
            moderator_id = store.moderator_user_id if store else None

            for trigger in triggers:
                if await uow.escalations.has_open(ticket.id, trigger):
                    continue
                created.append(await uow.escalations.create(Escalation(
                    id=None,
                    ticket_id=ticket.id,
                    trigger_event=trigger,
                    escalated_to_user_id=moderator_id,
                    priority=ticket.priority.value,
                    created_at=now,
                )))

            if created or escalated:
                ticket = await uow.tickets.get_by_id(ticket.id) or ticket

        if created:
            logger.warning(
                "SLA breach recorded",
                extra={
                    "ticket_id": ticket.id,
                    "triggers": [e.trigger_event for e in created],
                    "escalated": escalated,
                    "priority": ticket.priority.value,
                }
            )
        return created, escalated, ticket

    async def _escalate(self, uow: IDispatchUnitOfWork, ticket: Ticket) -> bool:
        """Move a ticket past its deadline to ESCALATED inside `uow`."""
        moved = await uow.tickets.update_status(
            ticket.id,
            TicketStatus.ESCALATED,
            expected_statuses=[ticket.status],
        )
        if not moved:
            logger.info(
                "Ticket changed state before escalation, leaving it",
                extra={"ticket_id": ticket.id, "status": ticket.status.value}
            )
            return False

        if ticket.holds_provider_load:
            active = await uow.assignments.get_active(ticket.id)
            if active is not None:
                await uow.assignments.update_status(
                    ticket.id, active.provider_id, active.status, AssignmentStatus.EXPIRED
                )
            if not await uow.providers.decrement_load(ticket.assigned_provider_id):
                logger.warning(
                    "Provider load already at zero on escalation",
                    extra={"provider_id": ticket.assigned_provider_id, "ticket_id": ticket.id}
                )

        await uow.remarks.add(Remark(
            id=None,
            ticket_id=ticket.id,
            text="SLA deadline exceeded. Ticket has been escalated to management.",
        ))
        return True

    async def _notify(self, escalation: Escalation, ticket: Optional[Ticket]) -> bool:
        if ticket is None:
            return False
        try:
            return await self._notifier.notify(escalation, ticket)
        except Exception as e:
            logger.error(
                "Escalation notification failed",
                extra={"escalation_id": escalation.id, "ticket_id": ticket.id, "error": str(e)},
                exc_info=True
            )
            return False
