"""
Dispatch Interfaces Layer
=========================

FastAPI route handlers for the ticket lifecycle.
"""

from src.dispatch.interfaces.controllers import router as dispatch_router

__all__ = ["dispatch_router"]
