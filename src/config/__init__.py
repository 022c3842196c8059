"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="storefix-dispatch", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/dispatch",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== SLA / Escalation ==========
    sla_config_path: Path = Field(
        default=Path("sla_config.yaml"),
        description="Path to SLA policy YAML file"
    )
    escalation_interval_minutes: int = Field(
        default=5,
        description="Minutes between escalation monitor runs (0 disables the scheduler)",
        ge=0
    )
    load_audit_interval_minutes: int = Field(
        default=60,
        description="Minutes between provider load reconciliation runs (0 disables)",
        ge=0
    )
    load_audit_repair: bool = Field(
        default=False,
        description="Rewrite drifted provider loads during reconciliation"
    )

    # ========== Routing ==========
    routing_max_attempts: int = Field(
        default=3,
        description="Routing attempts before giving up on concurrency conflicts",
        ge=1,
        le=10
    )

    # ========== Escalation Webhook ==========
    escalation_webhook_url: Optional[str] = Field(
        default=None,
        description="Webhook URL notified on escalation creation"
    )
    escalation_webhook_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for escalation webhook calls",
        ge=0.1,
        le=30
    )

    # ========== LLM Settings ==========
    llm_provider: str = Field(
        default="zai",
        description="Classification LLM backend: zai, openai or mock"
    )
    zai_api_key: Optional[str] = Field(default=None, description="Z.AI API key")
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")
    llm_model: str = Field(
        default="glm-4.7",
        description="Model used for issue classification"
    )
    llm_temperature: float = Field(
        default=0.2,
        description="Temperature for classification calls",
        ge=0.0,
        le=1.0
    )
    llm_max_tokens: int = Field(
        default=500,
        description="Max tokens for classification replies",
        ge=1,
        le=8000
    )
    classification_timeout_seconds: float = Field(
        default=10.0,
        description="Upper bound for one classification call before keyword fallback",
        gt=0
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production", "test"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("llm_provider")
    @classmethod
    def validate_llm_provider(cls, v: str) -> str:
        allowed = {"zai", "openai", "mock"}
        v = v.lower()
        if v not in allowed:
            raise ValueError(f"llm_provider must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class Priority(str, Enum):
    """Ticket priority levels."""
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class IssueCategory(str, Enum):
    """Top-level issue categories."""
    FACILITIES = "Facilities"
    IT = "IT"
    EQUIPMENT = "Equipment"
    GENERAL = "General"


class TicketStatus(str, Enum):
    """Ticket lifecycle statuses."""
    OPEN = "OPEN"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    REJECTED_BY_TECH = "REJECTED_BY_TECH"
    ESCALATED = "ESCALATED"
    COMPLETED = "COMPLETED"
    CLOSED = "CLOSED"


class AssignmentStatus(str, Enum):
    """Status of a single routing attempt."""
    PROPOSED = "PROPOSED"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


class EscalationStatus(str, Enum):
    """Escalation record states."""
    TRIGGERED = "TRIGGERED"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    RESOLVED = "RESOLVED"


class ProviderStatus(str, Enum):
    """Service provider approval states."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    SUSPENDED = "SUSPENDED"


# ========== Lists for validation ==========

VALID_PRIORITIES = [Priority.HIGH, Priority.MEDIUM, Priority.LOW]
TERMINAL_STATUSES = [TicketStatus.COMPLETED, TicketStatus.CLOSED]
ACTIVE_STATUSES = [
    TicketStatus.OPEN, TicketStatus.ASSIGNED,
    TicketStatus.IN_PROGRESS, TicketStatus.REJECTED_BY_TECH
]
# Statuses that hold one unit of the assigned provider's load
LOAD_HOLDING_STATUSES = [TicketStatus.ASSIGNED, TicketStatus.IN_PROGRESS]
OPEN_ESCALATION_STATUSES = [EscalationStatus.TRIGGERED, EscalationStatus.ACKNOWLEDGED]
