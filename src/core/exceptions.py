"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries.
"""

from typing import Optional, Any


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class ValidationException(ApplicationException):
    """Exception for validation errors."""


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


class ExternalServiceException(ApplicationException):
    """Base exception for external service failures."""

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class LLMException(ExternalServiceException):
    """Exception for LLM API failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("LLM Service", message, details)


class ConcurrencyConflictException(RepositoryException):
    """
    Raised when a conditional write loses a race.

    Retryable: the whole unit of work has been rolled back and the caller
    may re-read state and try again.
    """

    def __init__(
        self,
        resource_type: str,
        resource_id: str,
        reason: str,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.reason = reason
        super().__init__(
            f"Concurrent update on {resource_type} '{resource_id}': {reason}",
            details or {"resource_type": resource_type, "resource_id": resource_id}
        )


class InvalidStateTransitionException(DomainException):
    """Raised when a lifecycle operation does not apply to the current state."""

    def __init__(
        self,
        ticket_id: str,
        current_state: Any,
        operation: str,
        details: Optional[dict] = None
    ):
        self.ticket_id = ticket_id
        self.current_state = current_state
        self.operation = operation
        state = getattr(current_state, "value", current_state)
        super().__init__(
            f"Cannot {operation} ticket {ticket_id} in state {state}",
            details or {"ticket_id": ticket_id, "state": state, "operation": operation}
        )


class NoCandidatesException(DomainException):
    """Raised when routing is invoked without any candidate provider."""

    def __init__(self, ticket_id: str):
        self.ticket_id = ticket_id
        super().__init__(
            f"Routing requires at least one candidate provider (ticket {ticket_id})",
            {"ticket_id": ticket_id}
        )
