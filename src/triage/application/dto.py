"""
Triage Application DTOs
=======================

Pydantic models for validating LLM output and for the classification API.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

CategoryStr = Literal["Facilities", "IT", "Equipment", "General"]
PriorityStr = Literal["HIGH", "MEDIUM", "LOW"]


class ClassificationPayload(BaseModel):
    """Shape the LLM must answer with; anything else triggers the fallback."""
    category: CategoryStr
    subcategory: str = Field(..., min_length=1)
    priority: PriorityStr
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: str = ""

    @field_validator("priority", mode="before")
    @classmethod
    def normalize_priority(cls, v):
        return v.upper() if isinstance(v, str) else v


class ClassifyRequest(BaseModel):
    """Request model for previewing a classification."""
    description: str = Field(..., min_length=1, max_length=5000, description="Issue description")


class ClassificationResponse(BaseModel):
    """Response model for a classification."""
    category: str
    subcategory: str
    priority: PriorityStr
    confidence: float
    reasoning: str
    source: Literal["llm", "keyword"]
    required_skills: list[str] = Field(default_factory=list)
    latency_ms: int = 0
    timestamp: datetime
