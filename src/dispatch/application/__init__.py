"""
Dispatch Application Layer
==========================

Contains:
- Services: AvailabilityResolver, RoutingEngine, DispatchOrchestrator,
  ProviderLoadAuditService
- Repository interfaces and the unit of work contract
- DTOs: service results and API models

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from src.dispatch.application.dto import (
    AcceptAssignmentRequest,
    CompleteAssignmentRequest,
    RejectAssignmentRequest,
    RejectionResponse,
    RejectionResult,
    SubmitTicketRequest,
    SubmitTicketResponse,
    SubmitTicketResult,
    TicketDetails,
    TicketDetailsResponse,
    TicketResponse,
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
    NullEscalationNotifier,
    UnitOfWorkFactory,
)
from src.dispatch.application.services import (
    AvailabilityResolver,
    DispatchOrchestrator,
    ProviderLoadAuditService,
    RoutingEngine,
    NO_PROVIDERS_AFTER_REJECTION,
    NO_PROVIDERS_REASON,
)

__all__ = [
    # DTOs
    "AcceptAssignmentRequest",
    "CompleteAssignmentRequest",
    "RejectAssignmentRequest",
    "RejectionResponse",
    "RejectionResult",
    "SubmitTicketRequest",
    "SubmitTicketResponse",
    "SubmitTicketResult",
    "TicketDetails",
    "TicketDetailsResponse",
    "TicketResponse",
    # Interfaces
    "IAssignmentRepository",
    "IDispatchUnitOfWork",
    "IEscalationNotifier",
    "IEscalationRepository",
    "IProviderRepository",
    "IRemarkRepository",
    "IStoreRepository",
    "ITicketRepository",
    "NullEscalationNotifier",
    "UnitOfWorkFactory",
    # Services
    "AvailabilityResolver",
    "DispatchOrchestrator",
    "ProviderLoadAuditService",
    "RoutingEngine",
    "NO_PROVIDERS_AFTER_REJECTION",
    "NO_PROVIDERS_REASON",
]
