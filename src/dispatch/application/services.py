"""
Dispatch Application Services
=============================

Application services coordinating classification, provider selection,
routing and the ticket lifecycle.

Following SOLID principles:
- Single Responsibility: resolver filters, engine scores and persists,
  orchestrator sequences transactions
- Dependency Inversion: everything talks to IDispatchUnitOfWork, never to
  a concrete database session
"""

from typing import Callable, Iterable, List, Optional, Sequence, Set, Tuple

from src.config import (
    AssignmentStatus,
    Priority,
    TicketStatus,
    settings,
)
from src.core import (
    ConcurrencyConflictException,
    InvalidStateTransitionException,
    NoCandidatesException,
    ResourceNotFoundException,
)
from src.dispatch.application.dto import (
    RejectionResult,
    SubmitTicketResult,
    TicketDetails,
)
from src.dispatch.application.interfaces import (
    IDispatchUnitOfWork,
    IEscalationNotifier,
    NullEscalationNotifier,
    UnitOfWorkFactory,
)
from src.dispatch.domain import (
    CompletionStats,
    GeoPoint,
    ProviderCandidate,
    ProviderLoadDrift,
    Remark,
    RoutingDecision,
    RoutingSkillTable,
    RoutingWeights,
    ScoreBreakdown,
    Ticket,
    haversine_km,
    rank_candidates,
    skill_match_score,
    utcnow,
)
from src.shared.infrastructure.logging import get_logger, log_latency
from src.sla.domain import Escalation, SLACalculator, SLAPolicy
from src.triage.application import ClassificationService
from src.triage.domain import RequiredSkills

logger = get_logger(__name__)

PROXIMITY_RANGE_KM = 50.0
OVERALL_DISTANCE_CAP_KM = 100.0

ROUTABLE_STATUSES = [TicketStatus.OPEN, TicketStatus.REJECTED_BY_TECH]

NO_PROVIDERS_REASON = "No service providers available in the system"
NO_PROVIDERS_AFTER_REJECTION = "No available service providers after rejection"


# ========== Availability ==========

class AvailabilityResolver:
    """
    Lists providers able to take a new ticket right now.

    Only APPROVED providers with spare capacity are returned. Skills never
    exclude a provider; they only influence the overall score.
    """

    async def available_providers(
        self,
        uow: IDispatchUnitOfWork,
        required_skills: Sequence[str],
        location,
        exclude_provider_ids: Iterable[str] = ()
    ) -> List[ProviderCandidate]:
        """
        Resolve and rank candidate providers.

        Args:
            uow: Open unit of work to read providers through
            required_skills: Capability tags for the ticket's category
            location: Store coordinates (GeoPoint, dict or pair)
            exclude_provider_ids: Providers already ruled out for this ticket

        Returns:
            Candidates sorted by overall score, highest first
        """
        origin = GeoPoint.parse(location)
        excluded = set(exclude_provider_ids)

        candidates = []
        for provider in await uow.providers.list_approved_with_capacity():
            if provider.id in excluded:
                continue
            if not provider.is_approved or not provider.has_capacity:
                continue

            skill_score = skill_match_score(provider.skills, required_skills)
            distance = haversine_km(origin, provider.location)
            availability = max(0.0, 1.0 - provider.utilization)
            overall = (
                0.4 * availability
                + 0.3 * (1.0 - min(distance, OVERALL_DISTANCE_CAP_KM) / OVERALL_DISTANCE_CAP_KM)
                + 0.3 * skill_score
            )

            candidates.append(ProviderCandidate(
                provider=provider,
                skill_match_score=skill_score,
                distance_km=distance,
                availability_score=availability,
                overall_score=overall,
            ))

        ranked = rank_candidates(candidates)
        logger.debug(
            "Resolved available providers",
            extra={
                "candidates": len(ranked),
                "excluded": len(excluded),
                "required_skills": list(required_skills),
            }
        )
        return ranked


# ========== Routing ==========

class RoutingEngine:
    """Scores candidates and records the winning assignment."""

    def score_candidate(
        self,
        candidate: ProviderCandidate,
        category: str,
        subcategory: str,
        weights: RoutingWeights,
        stats: Optional[CompletionStats] = None
    ) -> ScoreBreakdown:
        provider = candidate.provider
        return ScoreBreakdown(
            skill_match=RoutingSkillTable.score(provider.skills, category, subcategory),
            availability=max(0.0, 1.0 - provider.utilization),
            proximity=max(0.0, 1.0 - candidate.distance_km / PROXIMITY_RANGE_KM),
            performance=(stats or CompletionStats()).completion_rate,
            weights=weights,
        )

    @staticmethod
    def explain(candidate: ProviderCandidate, breakdown: ScoreBreakdown, priority: Priority) -> str:
        provider = candidate.provider
        w = breakdown.weights
        return "\n".join([
            f"Provider {provider.company_name} scored {breakdown.total * 100:.1f}%:",
            f"- Skill Match: {breakdown.skill_match * 100:.1f}% (weight: {w.skill_match:g})",
            f"- Availability: {breakdown.availability * 100:.1f}% "
            f"({provider.current_load}/{provider.capacity_per_day} capacity)",
            f"- Proximity: {breakdown.proximity * 100:.1f}% ({candidate.distance_km:.1f}km away)",
            f"- Performance: {breakdown.performance * 100:.1f}% (historical average)",
            f"Priority: {Priority(priority).value}",
        ])

    async def route_ticket(
        self,
        uow: IDispatchUnitOfWork,
        ticket_id: str,
        category: str,
        subcategory: str,
        priority: Priority,
        location,
        candidates: Sequence[ProviderCandidate]
    ) -> RoutingDecision:
        """
        Pick the best candidate and persist the proposal.

        The assignment row, the ticket transition and the load increment
        are written through `uow`, so they commit or roll back together.

        Raises:
            NoCandidatesException: If `candidates` is empty
            ConcurrencyConflictException: If the ticket moved on or the
                provider filled up since it was read
        """
        if not candidates:
            raise NoCandidatesException(ticket_id)

        weights = RoutingWeights.for_priority(priority)
        stats = await uow.providers.completion_stats([c.provider_id for c in candidates])

        best: Optional[Tuple[ProviderCandidate, ScoreBreakdown]] = None
        for candidate in candidates:
            breakdown = self.score_candidate(
                candidate, category, subcategory, weights, stats.get(candidate.provider_id)
            )
            # strict comparison keeps the earlier candidate on ties
            if best is None or breakdown.total > best[1].total:
                best = (candidate, breakdown)

        candidate, breakdown = best
        provider_id = candidate.provider_id
        score = breakdown.total

        assignment = await uow.assignments.create(ticket_id, provider_id, routing_score=score)

        moved = await uow.tickets.update_status(
            ticket_id,
            TicketStatus.ASSIGNED,
            expected_statuses=ROUTABLE_STATUSES,
            assigned_provider_id=provider_id,
            assigned_at=utcnow(),
        )
        if not moved:
            raise ConcurrencyConflictException("ticket", ticket_id, "ticket is no longer awaiting assignment")

        if not await uow.providers.increment_load(provider_id):
            raise ConcurrencyConflictException("provider", provider_id, "capacity exhausted")

        logger.info(
            "Ticket routed",
            extra={
                "ticket_id": ticket_id,
                "provider_id": provider_id,
                "score": round(score, 4),
                "sequence": assignment.sequence,
                "priority": Priority(priority).value,
            }
        )

        return RoutingDecision(
            ticket_id=ticket_id,
            provider_id=provider_id,
            score=score,
            reasoning=self.explain(candidate, breakdown, priority),
            breakdown=breakdown,
            assignment=assignment,
        )


# ========== Orchestration ==========

class DispatchOrchestrator:
    """
    Ticket lifecycle: submit, accept, reject, complete, approve.

    Each atomic group of writes runs in its own unit of work. Outbound
    notifications are sent only after the transaction that created the
    escalation has committed.
    """

    def __init__(
        self,
        classification_service: ClassificationService,
        uow_factory: UnitOfWorkFactory,
        resolver: Optional[AvailabilityResolver] = None,
        engine: Optional[RoutingEngine] = None,
        policy_provider: Optional[Callable[[], SLAPolicy]] = None,
        notifier: Optional[IEscalationNotifier] = None,
        max_attempts: Optional[int] = None
    ):
        self._classifier = classification_service
        self._uow_factory = uow_factory
        self._resolver = resolver or AvailabilityResolver()
        self._engine = engine or RoutingEngine()
        self._policy_provider = policy_provider or SLAPolicy
        self._notifier = notifier or NullEscalationNotifier()
        self._max_attempts = max_attempts or settings.routing_max_attempts

    async def submit_ticket(
        self,
        description: str,
        location: str,
        store_id: str,
        reporter_id: str,
        asset_tag: Optional[str] = None
    ) -> SubmitTicketResult:
        """
        Classify, persist and route a newly reported issue.

        The ticket is committed as OPEN before routing starts, so it
        survives a routing failure and the escalation monitor will pick
        it up.

        Raises:
            ValidationException: If the description is empty
            ResourceNotFoundException: If the store does not exist
        """
        classification = await self._classifier.classify(description)
        created_at = utcnow()
        sla_deadline = SLACalculator.calculate_deadline(
            created_at, classification.priority, self._policy_provider()
        )

        async with self._uow_factory() as uow:
            store = await uow.stores.get_by_id(store_id)
            if store is None:
                raise ResourceNotFoundException("Store", store_id)

            ticket = await uow.tickets.create(Ticket(
                id=None,
                store_id=store_id,
                reporter_user_id=reporter_id,
                description=description,
                location_in_store=location,
                category=classification.category,
                subcategory=classification.subcategory,
                priority=classification.priority,
                sla_deadline=sla_deadline,
                asset_tag=asset_tag,
                classification_confidence=classification.confidence,
                created_at=created_at,
            ))

        logger.info(
            "Ticket created",
            extra={
                "ticket_id": ticket.id,
                "store_id": store_id,
                "category": classification.category,
                "subcategory": classification.subcategory,
                "priority": classification.priority.value,
                "classification_source": classification.source,
            }
        )

        decision, reason = await self._route_with_retry(ticket.id)

        async with self._uow_factory() as uow:
            ticket = await uow.tickets.get_by_id(ticket.id) or ticket

        if decision is None:
            return SubmitTicketResult(
                ticket=ticket,
                classification=classification,
                assigned=False,
                reason=reason,
            )

        return SubmitTicketResult(
            ticket=ticket,
            classification=classification,
            assigned=True,
            provider_id=decision.provider_id,
            routing_score=decision.score,
            reasoning=decision.reasoning,
        )

    async def accept_assignment(
        self,
        ticket_id: str,
        provider_id: str,
        tech_id: str,
        phone: str
    ) -> Ticket:
        """
        Provider accepts its proposal and names the dispatched technician.

        Raises:
            ResourceNotFoundException: If the ticket does not exist
            InvalidStateTransitionException: If the ticket is not ASSIGNED
                to this provider
        """
        async with self._uow_factory() as uow:
            ticket = await self._require_ticket(uow, ticket_id)
            self._require_assigned_to(ticket, provider_id, TicketStatus.ASSIGNED, "accept")

            now = utcnow()
            assignment = await uow.assignments.update_status(
                ticket_id,
                provider_id,
                AssignmentStatus.PROPOSED,
                AssignmentStatus.ACCEPTED,
                accepted_at=now,
                accepted_tech_id=tech_id,
                accepted_phone=phone,
            )
            if assignment is None:
                raise InvalidStateTransitionException(ticket_id, ticket.status, "accept")

            moved = await uow.tickets.update_status(
                ticket_id,
                TicketStatus.IN_PROGRESS,
                expected_statuses=[TicketStatus.ASSIGNED],
                accepted_at=now,
            )
            if not moved:
                raise ConcurrencyConflictException("ticket", ticket_id, "status changed during acceptance")

            provider = await uow.providers.get_by_id(provider_id)
            await self._remark(
                uow, ticket_id,
                f"Ticket accepted by {self._company(provider)}. Technician {tech_id} dispatched.",
                author_id=tech_id,
            )
            ticket = await uow.tickets.get_by_id(ticket_id)

        logger.info(
            "Assignment accepted",
            extra={"ticket_id": ticket_id, "provider_id": provider_id, "tech_id": tech_id}
        )
        return ticket

    async def reject_assignment(
        self,
        ticket_id: str,
        provider_id: str,
        reason: str
    ) -> RejectionResult:
        """
        Provider declines its proposal; the ticket is re-routed or escalated.

        The rejection itself commits first. Re-routing then excludes the
        rejecting provider. If nobody is left the ticket is escalated to the
        store moderator.

        Raises:
            ResourceNotFoundException: If the ticket does not exist
            InvalidStateTransitionException: If the ticket is not ASSIGNED
                to this provider
        """
        async with self._uow_factory() as uow:
            ticket = await self._require_ticket(uow, ticket_id)
            self._require_assigned_to(ticket, provider_id, TicketStatus.ASSIGNED, "reject")

            assignment = await uow.assignments.update_status(
                ticket_id,
                provider_id,
                AssignmentStatus.PROPOSED,
                AssignmentStatus.REJECTED,
                rejected_at=utcnow(),
                rejection_reason=reason,
            )
            if assignment is None:
                raise InvalidStateTransitionException(ticket_id, ticket.status, "reject")

            moved = await uow.tickets.update_status(
                ticket_id,
                TicketStatus.REJECTED_BY_TECH,
                expected_statuses=[TicketStatus.ASSIGNED],
                assigned_provider_id=None,
            )
            if not moved:
                raise ConcurrencyConflictException("ticket", ticket_id, "status changed during rejection")

            await self._release_load(uow, provider_id, ticket_id)

            provider = await uow.providers.get_by_id(provider_id)
            await self._remark(
                uow, ticket_id,
                f"Ticket rejected by {self._company(provider)}. Reason: {reason}",
            )

        logger.info(
            "Assignment rejected",
            extra={"ticket_id": ticket_id, "provider_id": provider_id, "reason": reason}
        )

        decision, _ = await self._route_with_retry(
            ticket_id,
            exclude_provider_ids={provider_id},
            remark_text="Ticket has been re-routed to another service provider.",
        )
        if decision is not None:
            return RejectionResult(
                ticket_id=ticket_id,
                rerouted=True,
                escalated=False,
                new_provider_id=decision.provider_id,
            )

        escalation, current = await self._escalate_after_rejection(ticket_id)
        if escalation is not None:
            await self._notify(escalation, current)

        # the monitor may have escalated the ticket first
        escalated = escalation is not None or (
            current is not None and current.status == TicketStatus.ESCALATED
        )
        return RejectionResult(
            ticket_id=ticket_id,
            rerouted=False,
            escalated=escalated,
            escalation=escalation,
        )

    async def complete_assignment(self, ticket_id: str, provider_id: str) -> Ticket:
        """
        Provider reports the work finished.

        Frees the provider's slot. The ticket waits in COMPLETED for the
        store to approve; `completed_at` is set on approval.

        Raises:
            ResourceNotFoundException: If the ticket does not exist
            InvalidStateTransitionException: If the ticket is not IN_PROGRESS
                with this provider
        """
        async with self._uow_factory() as uow:
            ticket = await self._require_ticket(uow, ticket_id)
            self._require_assigned_to(ticket, provider_id, TicketStatus.IN_PROGRESS, "complete")

            moved = await uow.tickets.update_status(
                ticket_id,
                TicketStatus.COMPLETED,
                expected_statuses=[TicketStatus.IN_PROGRESS],
                completion_reported_at=utcnow(),
            )
            if not moved:
                raise ConcurrencyConflictException("ticket", ticket_id, "status changed during completion")

            await self._release_load(uow, provider_id, ticket_id)

            provider = await uow.providers.get_by_id(provider_id)
            await self._remark(uow, ticket_id, f"Work reported complete by {self._company(provider)}.")
            ticket = await uow.tickets.get_by_id(ticket_id)

        logger.info("Assignment completed", extra={"ticket_id": ticket_id, "provider_id": provider_id})
        return ticket

    async def approve_completion(self, ticket_id: str, approver_id: Optional[str] = None) -> Ticket:
        """
        Store confirms the reported completion and closes the ticket.

        Raises:
            ResourceNotFoundException: If the ticket does not exist
            InvalidStateTransitionException: If the ticket is not COMPLETED
        """
        async with self._uow_factory() as uow:
            ticket = await self._require_ticket(uow, ticket_id)
            if ticket.status != TicketStatus.COMPLETED:
                raise InvalidStateTransitionException(ticket_id, ticket.status, "approve completion of")

            moved = await uow.tickets.update_status(
                ticket_id,
                TicketStatus.CLOSED,
                expected_statuses=[TicketStatus.COMPLETED],
                completed_at=utcnow(),
            )
            if not moved:
                raise ConcurrencyConflictException("ticket", ticket_id, "status changed during approval")

            await self._remark(uow, ticket_id, "Completion approved by store.", author_id=approver_id)
            ticket = await uow.tickets.get_by_id(ticket_id)

        logger.info("Completion approved", extra={"ticket_id": ticket_id})
        return ticket

    async def get_ticket_details(self, ticket_id: str) -> TicketDetails:
        """
        Raises:
            ResourceNotFoundException: If the ticket does not exist
        """
        async with self._uow_factory() as uow:
            ticket = await self._require_ticket(uow, ticket_id)
            return TicketDetails(
                ticket=ticket,
                assignments=await uow.assignments.list_for_ticket(ticket_id),
                remarks=await uow.remarks.list_for_ticket(ticket_id),
                escalations=await uow.escalations.list_for_ticket(ticket_id),
            )

    # ---------- internals ----------

    async def _route_with_retry(
        self,
        ticket_id: str,
        exclude_provider_ids: Iterable[str] = (),
        remark_text: Optional[str] = None
    ) -> Tuple[Optional[RoutingDecision], Optional[str]]:
        """
        Resolve and route in one transaction, retrying lost races.

        A provider that filled up concurrently is excluded from the next
        attempt.

        Returns:
            (decision, None) on success, (None, reason) otherwise
        """
        excluded: Set[str] = set(exclude_provider_ids)

        for attempt in range(1, self._max_attempts + 1):
            try:
                async with self._uow_factory() as uow:
                    ticket = await uow.tickets.get_by_id(ticket_id)
                    if ticket is None or ticket.status not in ROUTABLE_STATUSES:
                        return None, "Ticket is no longer awaiting assignment"

                    store = await uow.stores.get_by_id(ticket.store_id)
                    location = store.location if store else None
                    required_skills = RequiredSkills.for_category(ticket.category, ticket.subcategory)

                    candidates = await self._resolver.available_providers(
                        uow, required_skills, location, exclude_provider_ids=excluded
                    )
                    if not candidates:
                        logger.warning(
                            "No available providers for ticket",
                            extra={"ticket_id": ticket_id, "excluded": len(excluded)}
                        )
                        return None, NO_PROVIDERS_REASON

                    with log_latency(logger, "route_ticket", ticket_id=ticket_id, attempt=attempt):
                        decision = await self._engine.route_ticket(
                            uow,
                            ticket_id,
                            ticket.category,
                            ticket.subcategory,
                            ticket.priority,
                            location,
                            candidates,
                        )

                    if remark_text:
                        await self._remark(uow, ticket_id, remark_text)
                return decision, None

            except ConcurrencyConflictException as e:
                logger.warning(
                    "Routing attempt lost a concurrent update",
                    extra={
                        "ticket_id": ticket_id,
                        "attempt": attempt,
                        "resource_type": e.resource_type,
                        "resource_id": e.resource_id,
                        "reason": e.reason,
                    }
                )
                if e.resource_type == "provider":
                    excluded.add(e.resource_id)

        return None, "Routing abandoned after repeated concurrent updates"

    async def _escalate_after_rejection(
        self,
        ticket_id: str
    ) -> Tuple[Optional[Escalation], Optional[Ticket]]:
        async with self._uow_factory() as uow:
            ticket = await uow.tickets.get_by_id(ticket_id)
            if ticket is None:
                return None, None

            moved = await uow.tickets.update_status(
                ticket_id,
                TicketStatus.ESCALATED,
                expected_statuses=[TicketStatus.REJECTED_BY_TECH],
            )
            if not moved:
                logger.info(
                    "Ticket left REJECTED_BY_TECH before escalation",
                    extra={"ticket_id": ticket_id, "status": ticket.status.value}
                )
                return None, ticket

            store = await uow.stores.get_by_id(ticket.store_id)
            escalation = await uow.escalations.create(Escalation(
                id=None,
                ticket_id=ticket_id,
                trigger_event=NO_PROVIDERS_AFTER_REJECTION,
                escalated_to_user_id=store.moderator_user_id if store else None,
                priority=ticket.priority.value,
            ))
            await self._remark(
                uow, ticket_id,
                "No available service providers found. Ticket has been escalated to management.",
            )
            ticket = await uow.tickets.get_by_id(ticket_id)

        logger.warning(
            "Ticket escalated after rejection",
            extra={"ticket_id": ticket_id, "escalation_id": escalation.id}
        )
        return escalation, ticket

    async def _notify(self, escalation: Escalation, ticket: Ticket) -> bool:
        try:
            return await self._notifier.notify(escalation, ticket)
        except Exception as e:
            logger.error(
                "Escalation notification failed",
                extra={"escalation_id": escalation.id, "ticket_id": ticket.id, "error": str(e)},
                exc_info=True
            )
            return False

    @staticmethod
    async def _require_ticket(uow: IDispatchUnitOfWork, ticket_id: str) -> Ticket:
        ticket = await uow.tickets.get_by_id(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)
        return ticket

    @staticmethod
    def _require_assigned_to(
        ticket: Ticket,
        provider_id: str,
        status: TicketStatus,
        operation: str
    ) -> None:
        if ticket.status != status or ticket.assigned_provider_id != provider_id:
            raise InvalidStateTransitionException(ticket.id, ticket.status, operation)

    @staticmethod
    async def _release_load(uow: IDispatchUnitOfWork, provider_id: str, ticket_id: str) -> None:
        if not await uow.providers.decrement_load(provider_id):
            logger.warning(
                "Provider load already at zero on release",
                extra={"provider_id": provider_id, "ticket_id": ticket_id}
            )

    @staticmethod
    async def _remark(
        uow: IDispatchUnitOfWork,
        ticket_id: str,
        text: str,
        author_id: Optional[str] = None
    ) -> None:
        await uow.remarks.add(Remark(id=None, ticket_id=ticket_id, text=text, author_id=author_id))

    @staticmethod
    def _company(provider) -> str:
        return provider.company_name if provider else "Service Provider"


# ========== Reconciliation ==========

class ProviderLoadAuditService:
    """
    Compares each provider's recorded load with its open tickets.

    Drift should never happen; finding any means a write bypassed the
    unit of work. Repair is opt-in.
    """

    def __init__(self, uow_factory: UnitOfWorkFactory, repair: Optional[bool] = None):
        self._uow_factory = uow_factory
        self._repair = settings.load_audit_repair if repair is None else repair

    async def run_once(self) -> List[ProviderLoadDrift]:
        async with self._uow_factory() as uow:
            drifts = await uow.providers.audit_loads()
            for drift in drifts:
                logger.warning(
                    "Provider load drift detected",
                    extra={
                        "provider_id": drift.provider_id,
                        "recorded_load": drift.recorded_load,
                        "actual_load": drift.actual_load,
                        "repair": self._repair,
                    }
                )
                if self._repair:
                    await uow.providers.set_load(drift.provider_id, drift.actual_load)

        logger.info("Provider load audit finished", extra={"drifted_providers": len(drifts)})
        return drifts
