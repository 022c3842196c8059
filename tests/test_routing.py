import asyncio

import pytest

from src.config import AssignmentStatus, Priority, ProviderStatus, TicketStatus
from src.core import ConcurrencyConflictException, NoCandidatesException
from src.dispatch.application import AvailabilityResolver, RoutingEngine
from src.dispatch.domain import GeoPoint, RoutingWeights, haversine_km

from tests.conftest import STORE_LOCATION, InMemoryUnitOfWork, make_provider, make_ticket

COLD_STORAGE_SKILLS = ["Refrigeration", "HVAC"]


def _resolve(db, required_skills=COLD_STORAGE_SKILLS, exclude=()):
    async def scenario():
        async with InMemoryUnitOfWork(db) as uow:
            return await AvailabilityResolver().available_providers(
                uow, required_skills, STORE_LOCATION, exclude_provider_ids=exclude
            )
    return asyncio.run(scenario())


class TestHaversine:
    def test_same_point_is_zero(self):
        assert haversine_km(STORE_LOCATION, STORE_LOCATION) == 0

    def test_new_york_to_philadelphia(self):
        assert haversine_km(STORE_LOCATION, GeoPoint(39.9526, -75.1652)) == pytest.approx(129.6, abs=1)

    def test_missing_coordinates_rank_last(self):
        assert haversine_km(STORE_LOCATION, None) == 999999.0
        assert GeoPoint.parse({"latitude": "north", "longitude": 3}) is None


class TestAvailabilityResolver:
    def test_only_approved_providers_with_capacity(self, db):
        db.providers["p-ok"] = make_provider("p-ok", COLD_STORAGE_SKILLS)
        db.providers["p-full"] = make_provider("p-full", COLD_STORAGE_SKILLS, capacity=2, load=2)
        db.providers["p-pending"] = make_provider("p-pending", status=ProviderStatus.PENDING)
        db.providers["p-suspended"] = make_provider("p-suspended", status=ProviderStatus.SUSPENDED)

        assert [c.provider_id for c in _resolve(db)] == ["p-ok"]

    def test_skills_do_not_exclude(self, db):
        db.providers["p-plumber"] = make_provider("p-plumber", ["Plumbing"])

        [candidate] = _resolve(db)
        assert candidate.skill_match_score == 0.0

    def test_overall_score_components(self, db):
        db.providers["p-a"] = make_provider("p-a", ["Commercial Refrigeration"], capacity=4, load=1)

        [candidate] = _resolve(db)
        assert candidate.skill_match_score == 0.5
        assert candidate.availability_score == 0.75
        assert candidate.distance_km == 0
        assert candidate.overall_score == pytest.approx(0.4 * 0.75 + 0.3 + 0.3 * 0.5)

    def test_no_required_skills_scores_neutral(self, db):
        db.providers["p-a"] = make_provider("p-a", ["Plumbing"])

        [candidate] = _resolve(db, required_skills=[])
        assert candidate.skill_match_score == 0.5

    def test_unknown_location_ranks_after_nearby(self, db):
        db.providers["p-nowhere"] = make_provider("p-nowhere", COLD_STORAGE_SKILLS, location=None)
        db.providers["p-near"] = make_provider("p-near", COLD_STORAGE_SKILLS)

        candidates = _resolve(db)
        assert [c.provider_id for c in candidates] == ["p-near", "p-nowhere"]
        assert candidates[1].distance_km == 999999.0

    def test_ties_break_by_provider_id(self, db):
        for provider_id in ("p-c", "p-a", "p-b"):
            db.providers[provider_id] = make_provider(provider_id, COLD_STORAGE_SKILLS)

        assert [c.provider_id for c in _resolve(db)] == ["p-a", "p-b", "p-c"]

    def test_excluded_providers_are_skipped(self, db):
        db.providers["p-a"] = make_provider("p-a", COLD_STORAGE_SKILLS)
        db.providers["p-b"] = make_provider("p-b", COLD_STORAGE_SKILLS)

        assert [c.provider_id for c in _resolve(db, exclude={"p-a"})] == ["p-b"]


class TestRoutingWeights:
    def test_default_weights(self):
        weights = RoutingWeights.for_priority(Priority.MEDIUM)
        assert (weights.skill_match, weights.availability, weights.proximity, weights.performance) == (
            0.4, 0.2, 0.3, 0.1
        )

    def test_high_priority_shifts_towards_speed(self):
        weights = RoutingWeights.for_priority(Priority.HIGH)
        assert (weights.skill_match, weights.availability, weights.proximity, weights.performance) == (
            0.3, 0.3, 0.4, 0.0
        )


class TestRoutingEngine:
    def _route(self, db, ticket, required_skills=COLD_STORAGE_SKILLS):
        async def scenario():
            async with InMemoryUnitOfWork(db) as uow:
                candidates = await AvailabilityResolver().available_providers(
                    uow, required_skills, STORE_LOCATION
                )
                return await RoutingEngine().route_ticket(
                    uow, ticket.id, ticket.category, ticket.subcategory,
                    ticket.priority, STORE_LOCATION, candidates,
                )
        return asyncio.run(scenario())

    def test_route_persists_assignment_and_load(self, db):
        ticket = make_ticket("t-1", category="Facilities", subcategory="Cold Storage")
        db.tickets["t-1"] = ticket
        db.providers["p-a"] = make_provider("p-a", ["Refrigeration", "HVAC", "Electrical"])

        decision = self._route(db, ticket)

        assert decision.provider_id == "p-a"
        # skill 1.0, availability 1.0, proximity 1.0, no history 0.5
        assert decision.score == pytest.approx(0.95)
        assert decision.reasoning.startswith("Provider p-a Services scored 95.0%:")
        assert db.providers["p-a"].current_load == 1
        assert db.tickets["t-1"].status == TicketStatus.ASSIGNED
        assert db.tickets["t-1"].assigned_provider_id == "p-a"
        assert db.tickets["t-1"].assigned_at is not None
        [assignment] = db.assignments
        assert (assignment.status, assignment.sequence) == (AssignmentStatus.PROPOSED, 1)
        assert assignment.routing_score == pytest.approx(0.95)

    def test_completion_history_breaks_otherwise_equal_candidates(self, db):
        ticket = make_ticket("t-1")
        db.tickets["t-1"] = ticket
        db.tickets["old-1"] = make_ticket("old-1", status=TicketStatus.ESCALATED, assigned_provider_id="p-a")
        db.tickets["old-2"] = make_ticket("old-2", status=TicketStatus.CLOSED, assigned_provider_id="p-b")
        db.providers["p-a"] = make_provider("p-a")
        db.providers["p-b"] = make_provider("p-b")

        assert self._route(db, ticket, ["General Maintenance"]).provider_id == "p-b"

    def test_equal_scores_keep_first_candidate(self, db):
        ticket = make_ticket("t-1")
        db.tickets["t-1"] = ticket
        db.providers["p-b"] = make_provider("p-b")
        db.providers["p-a"] = make_provider("p-a")

        assert self._route(db, ticket, ["General Maintenance"]).provider_id == "p-a"

    def test_no_candidates(self, db):
        ticket = make_ticket("t-1")
        db.tickets["t-1"] = ticket

        with pytest.raises(NoCandidatesException):
            self._route(db, ticket)
        assert db.tickets["t-1"].status == TicketStatus.OPEN

    def test_provider_filled_concurrently_rolls_back(self, db):
        ticket = make_ticket("t-1")
        db.tickets["t-1"] = ticket
        db.providers["p-a"] = make_provider("p-a", capacity=1)

        async def scenario():
            async with InMemoryUnitOfWork(db) as uow:
                candidates = await AvailabilityResolver().available_providers(
                    uow, ["General Maintenance"], STORE_LOCATION
                )
                # another transaction takes the last slot
                db.providers["p-a"].current_load = 1
                await RoutingEngine().route_ticket(
                    uow, ticket.id, ticket.category, ticket.subcategory,
                    ticket.priority, STORE_LOCATION, candidates,
                )

        with pytest.raises(ConcurrencyConflictException) as exc_info:
            asyncio.run(scenario())

        assert exc_info.value.resource_type == "provider"
        assert db.assignments == []
        assert db.tickets["t-1"].status == TicketStatus.OPEN
        assert db.rollbacks == 1

    def test_ticket_no_longer_routable(self, db):
        ticket = make_ticket("t-1", status=TicketStatus.ESCALATED)
        db.tickets["t-1"] = ticket
        db.providers["p-a"] = make_provider("p-a")

        with pytest.raises(ConcurrencyConflictException) as exc_info:
            self._route(db, ticket, ["General Maintenance"])
        assert exc_info.value.resource_type == "ticket"
        assert db.providers["p-a"].current_load == 0
