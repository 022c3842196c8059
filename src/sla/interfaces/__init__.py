"""
SLA Interfaces Layer
====================

Interface adapters (controllers) for SLA enforcement.

Contains:
- Controllers: FastAPI route handlers

This is the outermost layer - handles HTTP requests/responses and
delegates to application services.
"""

from src.sla.interfaces.controllers import router as sla_router

__all__ = ["sla_router"]
