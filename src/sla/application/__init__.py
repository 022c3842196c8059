"""
SLA Application Layer
======================

Application layer for SLA enforcement.

Contains:
- Services: EscalationMonitorService
- DTOs: escalation run and policy responses

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from src.sla.application.dto import (
    EscalationRunResponse,
    SLAPolicyResponse,
    SLARuleResponse,
)
from src.sla.application.services import (
    EscalationMonitorService,
    ESCALATABLE_STATUSES,
)

__all__ = [
    # DTOs
    "EscalationRunResponse",
    "SLAPolicyResponse",
    "SLARuleResponse",
    # Services
    "EscalationMonitorService",
    "ESCALATABLE_STATUSES",
]
