"""
Dispatch Infrastructure Layer
=============================

SQLAlchemy models, repositories and the dispatch unit of work.
"""

from src.dispatch.infrastructure.repositories import (
    SQLAlchemyAssignmentRepository,
    SQLAlchemyDispatchUnitOfWork,
    SQLAlchemyEscalationRepository,
    SQLAlchemyProviderRepository,
    SQLAlchemyRemarkRepository,
    SQLAlchemyStoreRepository,
    SQLAlchemyTicketRepository,
)

__all__ = [
    "SQLAlchemyAssignmentRepository",
    "SQLAlchemyDispatchUnitOfWork",
    "SQLAlchemyEscalationRepository",
    "SQLAlchemyProviderRepository",
    "SQLAlchemyRemarkRepository",
    "SQLAlchemyStoreRepository",
    "SQLAlchemyTicketRepository",
]
