"""
SLA Controllers (API Routes)
=============================

FastAPI routes for escalation monitoring.

Controllers are thin - they delegate to application services.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status

from src.sla.application import (
    EscalationMonitorService,
    EscalationRunResponse,
    SLAPolicyResponse,
)
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(tags=["SLA Enforcement"])


# ========== Dependencies ==========

def get_escalation_monitor(request: Request) -> EscalationMonitorService:
    """Get the escalation monitor wired at startup."""
    monitor = getattr(request.app.state, "escalation_monitor", None)
    if monitor is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Escalation monitor not available"
        )
    return monitor


# ========== Route Handlers ==========

@router.post(
    "/escalations/run",
    response_model=EscalationRunResponse,
    summary="Run one escalation monitor pass now",
    description="""
    Evaluates every active ticket against its SLA rule, records new
    escalations and escalates tickets past their SLA deadline.

    If a scheduled pass is already running this call returns at once
    with `skipped: true`.
    """
)
async def run_escalations(
    request: Request,
    monitor: EscalationMonitorService = Depends(get_escalation_monitor)
):
    summary = await monitor.run_once()
    logger.info(
        "Manual escalation pass",
        extra={
            "correlation_id": getattr(request.state, "correlation_id", "unknown"),
            "skipped": summary.skipped,
            "escalations_created": summary.escalations_created
        }
    )
    return EscalationRunResponse.from_summary(summary)


@router.get(
    "/sla/policy",
    response_model=SLAPolicyResponse,
    summary="Get the SLA policy in force"
)
async def get_sla_policy(request: Request):
    config_manager = getattr(request.app.state, "sla_config_manager", None)
    if config_manager is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="SLA policy not loaded"
        )
    return SLAPolicyResponse.from_policy(config_manager.get_policy())
