"""
Triage Interfaces Layer
=======================

FastAPI route handlers for issue classification.
"""

from src.triage.interfaces.controllers import router as triage_router

__all__ = ["triage_router"]
