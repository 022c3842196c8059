"""
Dispatch Controllers (API Routes)
=================================

FastAPI routes for the ticket lifecycle.

Controllers are thin - they delegate to the DispatchOrchestrator.
Domain exceptions are turned into HTTP responses by the shared
exception handler.
"""

import time

from fastapi import APIRouter, Depends, HTTPException, Request, status

from src.dispatch.application import (
    AcceptAssignmentRequest,
    CompleteAssignmentRequest,
    DispatchOrchestrator,
    RejectAssignmentRequest,
    RejectionResponse,
    SubmitTicketRequest,
    SubmitTicketResponse,
    TicketDetailsResponse,
    TicketResponse,
)
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/tickets", tags=["Dispatch"])


# ========== Example payloads for Swagger ==========

SUBMIT_TICKET_EXAMPLE = {
    "description": "Walk-in freezer in aisle 7 is not cooling, temperature rising",
    "location_in_store": "Aisle 7, back wall",
    "store_id": "6f1c2a9e-3d4b-4c5a-9e8f-1a2b3c4d5e6f",
    "reporter_user_id": "store-user-17",
    "asset_tag": "FRZ-0042"
}

SUBMIT_RESPONSE_EXAMPLE = {
    "ticket": {
        "id": "0b7e6a52-5f1d-4c8e-a1b2-c3d4e5f60718",
        "category": "Facilities",
        "subcategory": "Cold Storage",
        "priority": "HIGH",
        "status": "ASSIGNED",
        "sla_deadline": "2024-01-15T14:00:00Z"
    },
    "classification_source": "keyword",
    "classification_confidence": 0.9,
    "assigned": True,
    "provider_id": "5a4b3c2d-1e0f-4a9b-8c7d-6e5f4a3b2c1d",
    "routing_score": 0.83,
    "reasoning": "Provider CoolFix Ltd scored 83.0%: ..."
}


# ========== Dependencies ==========

def get_orchestrator(request: Request) -> DispatchOrchestrator:
    """Get the orchestrator wired at startup."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Dispatch service not available"
        )
    return orchestrator


# ========== Route Handlers ==========

@router.post(
    "",
    response_model=SubmitTicketResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Report a store issue",
    description="""
    Classify the issue, fix its SLA deadline and route it to the best
    available service provider.

    When no provider has spare capacity the ticket is still created and
    stays `OPEN`; the escalation monitor will pick it up.
    """,
    responses={
        201: {
            "description": "Ticket created",
            "content": {"application/json": {"example": SUBMIT_RESPONSE_EXAMPLE}}
        },
        404: {"description": "Store not found"},
        422: {"description": "Empty description"}
    }
)
async def submit_ticket(
    request: Request,
    payload: SubmitTicketRequest,
    orchestrator: DispatchOrchestrator = Depends(get_orchestrator)
):
    start_time = time.perf_counter()

    result = await orchestrator.submit_ticket(
        description=payload.description,
        location=payload.location_in_store,
        store_id=payload.store_id,
        reporter_id=payload.reporter_user_id,
        asset_tag=payload.asset_tag,
    )

    logger.info(
        "Ticket submitted",
        extra={
            "correlation_id": getattr(request.state, "correlation_id", "unknown"),
            "ticket_id": result.ticket.id,
            "assigned": result.assigned,
            "processing_time_ms": int((time.perf_counter() - start_time) * 1000)
        }
    )
    return SubmitTicketResponse.from_result(result)


@router.get(
    "/{ticket_id}",
    response_model=TicketDetailsResponse,
    summary="Get a ticket with its history",
    responses={404: {"description": "Ticket not found"}}
)
async def get_ticket(
    ticket_id: str,
    orchestrator: DispatchOrchestrator = Depends(get_orchestrator)
):
    details = await orchestrator.get_ticket_details(ticket_id)
    return TicketDetailsResponse.from_details(details)


@router.post(
    "/{ticket_id}/accept",
    response_model=TicketResponse,
    summary="Accept a proposed assignment",
    responses={
        404: {"description": "Ticket not found"},
        409: {"description": "Ticket is not awaiting acceptance by this provider"}
    }
)
async def accept_assignment(
    ticket_id: str,
    payload: AcceptAssignmentRequest,
    orchestrator: DispatchOrchestrator = Depends(get_orchestrator)
):
    ticket = await orchestrator.accept_assignment(
        ticket_id, payload.provider_id, payload.tech_id, payload.phone
    )
    return TicketResponse.from_entity(ticket)


@router.post(
    "/{ticket_id}/reject",
    response_model=RejectionResponse,
    summary="Reject a proposed assignment",
    description="""
    The ticket is re-routed to the next best provider, excluding every
    provider that already rejected it. With nobody left it is escalated
    to the store moderator.
    """,
    responses={
        404: {"description": "Ticket not found"},
        409: {"description": "Ticket is not awaiting acceptance by this provider"}
    }
)
async def reject_assignment(
    ticket_id: str,
    payload: RejectAssignmentRequest,
    orchestrator: DispatchOrchestrator = Depends(get_orchestrator)
):
    result = await orchestrator.reject_assignment(ticket_id, payload.provider_id, payload.reason)
    return RejectionResponse(
        ticket_id=result.ticket_id,
        rerouted=result.rerouted,
        escalated=result.escalated,
        new_provider_id=result.new_provider_id,
    )


@router.post(
    "/{ticket_id}/complete",
    response_model=TicketResponse,
    summary="Report work complete",
    responses={
        404: {"description": "Ticket not found"},
        409: {"description": "Ticket is not in progress with this provider"}
    }
)
async def complete_assignment(
    ticket_id: str,
    payload: CompleteAssignmentRequest,
    orchestrator: DispatchOrchestrator = Depends(get_orchestrator)
):
    ticket = await orchestrator.complete_assignment(ticket_id, payload.provider_id)
    return TicketResponse.from_entity(ticket)


@router.post(
    "/{ticket_id}/approve-completion",
    response_model=TicketResponse,
    summary="Approve reported completion and close the ticket",
    responses={
        404: {"description": "Ticket not found"},
        409: {"description": "Completion has not been reported"}
    }
)
async def approve_completion(
    ticket_id: str,
    orchestrator: DispatchOrchestrator = Depends(get_orchestrator)
):
    ticket = await orchestrator.approve_completion(ticket_id)
    return TicketResponse.from_entity(ticket)
