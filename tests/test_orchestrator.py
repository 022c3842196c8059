import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from src.config import AssignmentStatus, Priority, TicketStatus
from src.core import (
    ConcurrencyConflictException,
    InvalidStateTransitionException,
    ResourceNotFoundException,
    ValidationException,
)
from src.dispatch.application import (
    DispatchOrchestrator,
    ProviderLoadAuditService,
    RoutingEngine,
    NO_PROVIDERS_AFTER_REJECTION,
    NO_PROVIDERS_REASON,
)
from src.triage.application import ClassificationService

from tests.conftest import InMemoryUnitOfWork, RecordingNotifier, make_provider, make_ticket

FREEZER_REPORT = "Freezer in aisle 7 is not holding temperature"
COLD_STORAGE_SKILLS = ["Refrigeration", "HVAC"]


@pytest.fixture
def orchestrator(uow_factory, notifier):
    return DispatchOrchestrator(
        classification_service=ClassificationService(),
        uow_factory=uow_factory,
        notifier=notifier,
        max_attempts=3,
    )


def _submit(orchestrator, description=FREEZER_REPORT, store_id="store-1"):
    return asyncio.run(orchestrator.submit_ticket(description, "Aisle 7", store_id, "reporter-1"))


class TestSubmitTicket:
    def test_routes_to_best_provider(self, db, orchestrator):
        db.providers["p-a"] = make_provider("p-a", COLD_STORAGE_SKILLS)

        result = _submit(orchestrator)

        assert result.assigned is True
        assert result.provider_id == "p-a"
        assert result.classification.subcategory == "Cold Storage"
        assert result.ticket.status == TicketStatus.ASSIGNED
        assert result.ticket.priority == Priority.HIGH
        assert result.ticket.sla_deadline - result.ticket.created_at == timedelta(hours=4)
        assert db.providers["p-a"].current_load == 1

    def test_pos_terminal_error_goes_to_it_provider(self, db, orchestrator):
        db.providers["p-it"] = make_provider("p-it", ["POS Systems", "IT Support"], load=2)
        db.providers["p-cold"] = make_provider("p-cold", COLD_STORAGE_SKILLS)

        result = _submit(orchestrator, description="POS Terminal 3 error E-101, cannot process transactions")

        assert (result.classification.category, result.classification.subcategory) == ("IT", "POS Systems")
        assert result.ticket.priority == Priority.HIGH
        assert result.ticket.sla_deadline - result.ticket.created_at == timedelta(hours=4)
        assert result.provider_id == "p-it"
        [assignment] = db.assignments
        assert (assignment.provider_id, assignment.status) == ("p-it", AssignmentStatus.PROPOSED)
        assert db.providers["p-it"].current_load == 3
        assert db.providers["p-cold"].current_load == 0

    def test_without_providers_ticket_stays_open(self, db, orchestrator):
        result = _submit(orchestrator)

        assert result.assigned is False
        assert result.reason == NO_PROVIDERS_REASON
        assert db.tickets[result.ticket.id].status == TicketStatus.OPEN

    def test_unknown_store(self, db, orchestrator):
        with pytest.raises(ResourceNotFoundException):
            _submit(orchestrator, store_id="store-404")
        assert db.tickets == {}

    def test_empty_description(self, db, orchestrator):
        with pytest.raises(ValidationException):
            _submit(orchestrator, description="  ")
        assert db.tickets == {}

    def test_provider_lost_to_concurrent_update_is_excluded_on_retry(self, db, uow_factory):
        db.providers["p-a"] = make_provider("p-a", COLD_STORAGE_SKILLS, capacity=1)
        db.providers["p-b"] = make_provider("p-b", ["HVAC"])

        class RacingEngine(RoutingEngine):
            raced = False

            async def route_ticket(self, uow, ticket_id, *args, **kwargs):
                if not self.raced:
                    self.raced = True
                    raise ConcurrencyConflictException("provider", "p-a", "capacity exhausted")
                return await super().route_ticket(uow, ticket_id, *args, **kwargs)

        orchestrator = DispatchOrchestrator(
            ClassificationService(), uow_factory, engine=RacingEngine(), max_attempts=3
        )
        result = _submit(orchestrator)

        assert result.provider_id == "p-b"
        assert db.providers["p-a"].current_load == 0
        assert db.providers["p-b"].current_load == 1

    def test_gives_up_after_repeated_conflicts(self, db, uow_factory):
        db.providers["p-a"] = make_provider("p-a")
        engine = AsyncMock(spec=RoutingEngine)
        engine.route_ticket.side_effect = ConcurrencyConflictException("ticket", "t", "moved")

        orchestrator = DispatchOrchestrator(
            ClassificationService(), uow_factory, engine=engine, max_attempts=2
        )
        result = _submit(orchestrator)

        assert result.assigned is False
        assert engine.route_ticket.await_count == 2
        assert db.tickets[result.ticket.id].status == TicketStatus.OPEN


class TestAcceptAssignment:
    def test_accept_moves_to_in_progress(self, db, orchestrator):
        db.providers["p-a"] = make_provider("p-a", COLD_STORAGE_SKILLS)
        ticket_id = _submit(orchestrator).ticket.id

        ticket = asyncio.run(orchestrator.accept_assignment(ticket_id, "p-a", "tech-9", "555-0101"))

        assert ticket.status == TicketStatus.IN_PROGRESS
        assert ticket.accepted_at is not None
        [assignment] = db.assignments
        assert assignment.status == AssignmentStatus.ACCEPTED
        assert (assignment.accepted_tech_id, assignment.accepted_phone) == ("tech-9", "555-0101")
        assert "Ticket accepted by p-a Services. Technician tech-9 dispatched." in db.remark_texts(ticket_id)
        assert db.providers["p-a"].current_load == 1

    def test_other_provider_cannot_accept(self, db, orchestrator):
        db.providers["p-a"] = make_provider("p-a")
        db.providers["p-b"] = make_provider("p-b")
        ticket_id = _submit(orchestrator).ticket.id

        with pytest.raises(InvalidStateTransitionException):
            asyncio.run(orchestrator.accept_assignment(ticket_id, "p-b", "tech-1", "555-0102"))

    def test_unknown_ticket(self, orchestrator):
        with pytest.raises(ResourceNotFoundException):
            asyncio.run(orchestrator.accept_assignment("nope", "p-a", "tech-1", "555-0103"))

    def test_failure_rolls_back_every_write(self, db):
        db.providers["p-a"] = make_provider("p-a", load=1)
        db.tickets["t-1"] = make_ticket("t-1", status=TicketStatus.ASSIGNED, assigned_provider_id="p-a")
        asyncio.run(InMemoryUnitOfWork(db).assignments.create("t-1", "p-a"))

        def failing_factory():
            uow = InMemoryUnitOfWork(db)
            uow.remarks.add = AsyncMock(side_effect=RuntimeError("disk full"))
            return uow

        orchestrator = DispatchOrchestrator(ClassificationService(), failing_factory)
        with pytest.raises(RuntimeError):
            asyncio.run(orchestrator.accept_assignment("t-1", "p-a", "tech-1", "555-0104"))

        assert db.tickets["t-1"].status == TicketStatus.ASSIGNED
        assert db.assignments[0].status == AssignmentStatus.PROPOSED
        assert db.remarks == []


class TestRejectAssignment:
    def test_reject_reroutes_to_next_provider(self, db, orchestrator):
        db.providers["p-a"] = make_provider("p-a", COLD_STORAGE_SKILLS)
        db.providers["p-b"] = make_provider("p-b", ["HVAC"])
        ticket_id = _submit(orchestrator).ticket.id

        result = asyncio.run(orchestrator.reject_assignment(ticket_id, "p-a", "No technician free"))

        assert result.rerouted is True
        assert result.new_provider_id == "p-b"
        assert db.tickets[ticket_id].status == TicketStatus.ASSIGNED
        assert db.tickets[ticket_id].assigned_provider_id == "p-b"
        assert db.providers["p-a"].current_load == 0
        assert db.providers["p-b"].current_load == 1
        statuses = [(a.provider_id, a.sequence, a.status) for a in db.assignments]
        assert statuses == [
            ("p-a", 1, AssignmentStatus.REJECTED),
            ("p-b", 2, AssignmentStatus.PROPOSED),
        ]
        remarks = db.remark_texts(ticket_id)
        assert "Ticket rejected by p-a Services. Reason: No technician free" in remarks
        assert "Ticket has been re-routed to another service provider." in remarks

    def test_rejection_by_only_provider_escalates(self, db, orchestrator, notifier):
        db.providers["p-a"] = make_provider("p-a", COLD_STORAGE_SKILLS)
        ticket_id = _submit(orchestrator).ticket.id

        result = asyncio.run(orchestrator.reject_assignment(ticket_id, "p-a", "Out of parts"))

        assert result.rerouted is False
        assert result.escalated is True
        assert db.tickets[ticket_id].status == TicketStatus.ESCALATED
        assert db.tickets[ticket_id].assigned_provider_id is None
        assert db.providers["p-a"].current_load == 0
        [escalation] = db.escalations
        assert escalation.trigger_event == NO_PROVIDERS_AFTER_REJECTION
        assert escalation.escalated_to_user_id == "moderator-1"
        assert len(notifier.sent) == 1

    def test_earlier_rejecter_can_be_routed_again(self, db, orchestrator):
        db.providers["p-a"] = make_provider("p-a", COLD_STORAGE_SKILLS)
        db.providers["p-b"] = make_provider("p-b", ["HVAC"])
        ticket_id = _submit(orchestrator).ticket.id

        asyncio.run(orchestrator.reject_assignment(ticket_id, "p-a", "Busy"))
        result = asyncio.run(orchestrator.reject_assignment(ticket_id, "p-b", "Busy too"))

        assert result.rerouted is True
        assert result.escalated is False
        assert result.new_provider_id == "p-a"
        assert db.tickets[ticket_id].status == TicketStatus.ASSIGNED
        assert db.tickets[ticket_id].assigned_provider_id == "p-a"
        assert db.providers["p-a"].current_load == 1
        assert db.providers["p-b"].current_load == 0
        assert [(a.provider_id, a.sequence) for a in db.assignments] == [("p-a", 1), ("p-b", 2), ("p-a", 3)]
        assert db.escalations == []

    def test_reroute_keeps_sla_deadline(self, db, orchestrator):
        db.providers["p-a"] = make_provider("p-a", COLD_STORAGE_SKILLS)
        db.providers["p-b"] = make_provider("p-b", ["HVAC"])
        submitted = _submit(orchestrator).ticket

        asyncio.run(orchestrator.reject_assignment(submitted.id, "p-a", "Busy"))

        ticket = db.tickets[submitted.id]
        assert ticket.assigned_provider_id == "p-b"
        assert ticket.sla_deadline == submitted.sla_deadline
        assert ticket.created_at == submitted.created_at

    def test_ticket_escalated_by_monitor_meanwhile_is_reported(self, db, notifier):
        db.providers["p-a"] = make_provider("p-a", load=1)
        db.providers["p-b"] = make_provider("p-b")
        db.tickets["t-1"] = make_ticket("t-1", status=TicketStatus.ASSIGNED, assigned_provider_id="p-a")
        asyncio.run(InMemoryUnitOfWork(db).assignments.create("t-1", "p-a"))
        opened = []

        def factory():
            # a monitor pass commits between the rejection and the re-route
            if len(opened) == 1:
                db.tickets["t-1"].status = TicketStatus.ESCALATED
            opened.append(True)
            return InMemoryUnitOfWork(db)

        orchestrator = DispatchOrchestrator(ClassificationService(), factory, notifier=notifier)
        result = asyncio.run(orchestrator.reject_assignment("t-1", "p-a", "Busy"))

        assert result.rerouted is False
        assert result.escalated is True
        assert result.escalation is None
        assert db.tickets["t-1"].status == TicketStatus.ESCALATED
        assert db.providers["p-b"].current_load == 0
        assert db.escalations == []
        assert notifier.sent == []

    def test_notifier_failure_does_not_undo_escalation(self, db, uow_factory):
        db.providers["p-a"] = make_provider("p-a")
        orchestrator = DispatchOrchestrator(
            ClassificationService(), uow_factory, notifier=RecordingNotifier(fail=True)
        )
        ticket_id = _submit(orchestrator).ticket.id

        result = asyncio.run(orchestrator.reject_assignment(ticket_id, "p-a", "No"))

        assert result.escalated is True
        assert db.tickets[ticket_id].status == TicketStatus.ESCALATED

    def test_cannot_reject_accepted_ticket(self, db, orchestrator):
        db.providers["p-a"] = make_provider("p-a")
        ticket_id = _submit(orchestrator).ticket.id
        asyncio.run(orchestrator.accept_assignment(ticket_id, "p-a", "tech-1", "555-0105"))

        with pytest.raises(InvalidStateTransitionException):
            asyncio.run(orchestrator.reject_assignment(ticket_id, "p-a", "Changed our mind"))
        assert db.providers["p-a"].current_load == 1


class TestCompletion:
    def test_complete_then_approve(self, db, orchestrator):
        db.providers["p-a"] = make_provider("p-a")
        ticket_id = _submit(orchestrator).ticket.id
        asyncio.run(orchestrator.accept_assignment(ticket_id, "p-a", "tech-1", "555-0106"))

        completed = asyncio.run(orchestrator.complete_assignment(ticket_id, "p-a"))
        assert completed.status == TicketStatus.COMPLETED
        assert completed.completion_reported_at is not None
        assert completed.completed_at is None
        assert db.providers["p-a"].current_load == 0

        closed = asyncio.run(orchestrator.approve_completion(ticket_id, approver_id="moderator-1"))
        assert closed.status == TicketStatus.CLOSED
        assert closed.completed_at is not None
        assert "Completion approved by store." in db.remark_texts(ticket_id)

    def test_cannot_complete_before_acceptance(self, db, orchestrator):
        db.providers["p-a"] = make_provider("p-a")
        ticket_id = _submit(orchestrator).ticket.id

        with pytest.raises(InvalidStateTransitionException):
            asyncio.run(orchestrator.complete_assignment(ticket_id, "p-a"))

    def test_cannot_approve_open_ticket(self, db, orchestrator):
        ticket_id = _submit(orchestrator).ticket.id

        with pytest.raises(InvalidStateTransitionException):
            asyncio.run(orchestrator.approve_completion(ticket_id))


class TestTicketDetails:
    def test_details_include_history(self, db, orchestrator):
        db.providers["p-a"] = make_provider("p-a")
        ticket_id = _submit(orchestrator).ticket.id
        asyncio.run(orchestrator.reject_assignment(ticket_id, "p-a", "No"))

        details = asyncio.run(orchestrator.get_ticket_details(ticket_id))

        assert details.ticket.status == TicketStatus.ESCALATED
        assert [a.status for a in details.assignments] == [AssignmentStatus.REJECTED]
        assert len(details.escalations) == 1
        assert len(details.remarks) == 2


class TestProviderLoadAudit:
    def test_reports_and_repairs_drift(self, db, uow_factory):
        db.providers["p-a"] = make_provider("p-a", load=3)
        db.providers["p-b"] = make_provider("p-b", load=0)
        db.tickets["t-1"] = make_ticket("t-1", status=TicketStatus.IN_PROGRESS, assigned_provider_id="p-a")

        drifts = asyncio.run(ProviderLoadAuditService(uow_factory, repair=True).run_once())

        assert [(d.provider_id, d.recorded_load, d.actual_load) for d in drifts] == [("p-a", 3, 1)]
        assert db.providers["p-a"].current_load == 1

    def test_report_only_by_default(self, db, uow_factory):
        db.providers["p-a"] = make_provider("p-a", load=2)

        drifts = asyncio.run(ProviderLoadAuditService(uow_factory, repair=False).run_once())

        assert drifts[0].delta == 2
        assert db.providers["p-a"].current_load == 2
