"""
Triage Application Layer
========================

Contains:
- ClassificationService: LLM classification with keyword fallback
- DTOs: LLM payload validation and API models
"""

from src.triage.application.dto import (
    ClassificationPayload,
    ClassifyRequest,
    ClassificationResponse,
)
from src.triage.application.services import ClassificationService, extract_json

__all__ = [
    "ClassificationPayload",
    "ClassifyRequest",
    "ClassificationResponse",
    "ClassificationService",
    "extract_json",
]
