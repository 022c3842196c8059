"""
Triage Controllers (API Routes)
================================

FastAPI routes for issue classification.

Controllers delegate to application services.
"""

import time

from fastapi import APIRouter, Depends, HTTPException, Request, status

from src.triage.application import (
    ClassificationService,
    ClassifyRequest,
    ClassificationResponse,
)
from src.triage.domain import RequiredSkills
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/triage", tags=["Issue Triage"])


# ========== Example payloads for Swagger ==========

CLASSIFY_RESPONSE_EXAMPLE = {
    "category": "IT",
    "subcategory": "POS Systems",
    "priority": "HIGH",
    "confidence": 0.85,
    "reasoning": "POS system issues directly impact customer transactions",
    "source": "keyword",
    "required_skills": ["POS Systems", "IT Support"],
    "latency_ms": 0,
    "timestamp": "2024-01-15T10:00:00Z"
}


# ========== Dependencies ==========

def get_classification_service(request: Request) -> ClassificationService:
    """Get classification service from app state."""
    service = getattr(request.app.state, "classification_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Classification service not available"
        )
    return service


# ========== Route Handlers ==========

@router.post(
    "/classify",
    response_model=ClassificationResponse,
    summary="Preview the classification of an issue description",
    description="""
    Classify an issue without creating a ticket.

    The LLM is tried first; on timeout, provider error or malformed
    output the deterministic keyword rules answer instead (`source`
    tells which one did).
    """,
    responses={
        200: {
            "description": "Issue classified",
            "content": {"application/json": {"example": CLASSIFY_RESPONSE_EXAMPLE}}
        }
    }
)
async def classify_issue(
    request: Request,
    payload: ClassifyRequest,
    service: ClassificationService = Depends(get_classification_service)
):
    start_time = time.perf_counter()

    result = await service.classify(payload.description)

    logger.info(
        "Issue classified",
        extra={
            "correlation_id": getattr(request.state, "correlation_id", "unknown"),
            "category": result.category,
            "priority": result.priority.value,
            "source": result.source,
            "processing_time_ms": int((time.perf_counter() - start_time) * 1000)
        }
    )

    return ClassificationResponse(
        category=result.category,
        subcategory=result.subcategory,
        priority=result.priority.value,
        confidence=result.confidence,
        reasoning=result.reasoning,
        source=result.source,
        required_skills=RequiredSkills.for_category(result.category, result.subcategory),
        latency_ms=result.latency_ms or 0,
        timestamp=result.timestamp,
    )
