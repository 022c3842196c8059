"""
SLA Domain Layer
================

Domain layer for SLA enforcement.

Contains:
- Entities: Escalation, EscalationRunSummary
- Value Objects: SLARule, SLAPolicy
- Domain Services: SLACalculator

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from src.sla.domain.entities import Escalation, EscalationRunSummary
from src.sla.domain.value_objects import (
    SLACalculator,
    SLAPolicy,
    SLARule,
    DEFAULT_SLA_RULES,
    SLA_DEADLINE_TRIGGER,
)

__all__ = [
    # Entities
    "Escalation",
    "EscalationRunSummary",
    # Value Objects & Services
    "SLACalculator",
    "SLAPolicy",
    "SLARule",
    "DEFAULT_SLA_RULES",
    "SLA_DEADLINE_TRIGGER",
]
