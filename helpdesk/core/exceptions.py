"""
Core Exceptions
================

Custom exceptions for the helpdesk core.

Domain failures (Unauthorized, InvalidTransition, TransitionExpired,
ConcurrentModification) are typed so the interfaces layer can map them to
user-visible responses. Reaching the top escalation level is not an error;
it is published as a MaxEscalationReached event instead.
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


class Unauthorized(DomainException):
    """Capability or scope check failed. User-visible, never retried."""

    def __init__(
        self,
        actor_id: str,
        capability: str,
        ticket_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.actor_id = actor_id
        self.capability = capability
        self.ticket_id = ticket_id
        message = f"User {actor_id} lacks '{capability}'"
        if ticket_id:
            message += f" on ticket {ticket_id}"
        super().__init__(
            message,
            details or {"actor_id": actor_id, "capability": capability, "ticket_id": ticket_id}
        )


class InvalidTransition(DomainException):
    """Requested action is not reachable from the ticket's current status."""

    def __init__(
        self,
        ticket_id: str,
        current_status: Any,
        action: str,
        reason: Optional[str] = None
    ):
        self.ticket_id = ticket_id
        self.current_status = current_status
        self.action = action
        message = f"Cannot {action} ticket {ticket_id} from status {current_status}"
        if reason:
            message += f": {reason}"
        super().__init__(
            message,
            {"ticket_id": ticket_id, "current_status": str(current_status), "action": action}
        )


class TransitionExpired(DomainException):
    """Reopen window elapsed."""

    def __init__(self, ticket_id: str, expired_at: Any):
        self.ticket_id = ticket_id
        self.expired_at = expired_at
        super().__init__(
            f"Reopen window for ticket {ticket_id} closed at {expired_at}",
            {"ticket_id": ticket_id}
        )


class ConcurrentModification(DomainException):
    """Lost the compare-and-swap race. Re-fetch and retry once."""

    def __init__(self, ticket_id: str, expected_version: int, actual_version: Optional[int] = None):
        self.ticket_id = ticket_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Ticket {ticket_id} was modified concurrently (expected version {expected_version})",
            {
                "ticket_id": ticket_id,
                "expected_version": expected_version,
                "actual_version": actual_version,
            }
        )


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


class EmbeddingException(ExternalServiceException):
    """Exception for embedding API failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Embedding Service", message, details)


class DetectorUnavailable(ExternalServiceException):
    """Duplicate detection could not run. Intake proceeds without it."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Duplicate Detector", message, details)


class EventDeliveryException(ExternalServiceException):
    """Exception for event sink delivery failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Event Sink", message, details)
