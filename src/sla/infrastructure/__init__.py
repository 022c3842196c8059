"""
SLA Infrastructure Layer
========================

Policy file hot-reload, escalation webhook and background scheduling.
"""

from src.sla.infrastructure.external import (
    CircuitBreaker,
    CircuitState,
    ConfigFileHandler,
    EscalationScheduler,
    SLAConfigManager,
    WebhookEscalationNotifier,
)

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "ConfigFileHandler",
    "EscalationScheduler",
    "SLAConfigManager",
    "WebhookEscalationNotifier",
]
