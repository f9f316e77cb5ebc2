"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries.
"""

from typing import Optional


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


class InvalidTicketRecordException(RepositoryException):
    """A stored ticket row cannot be mapped to a valid Ticket."""

    def __init__(self, ticket_id: str, reason: str):
        self.ticket_id = ticket_id
        super().__init__(
            f"Ticket {ticket_id} has an invalid stored record: {reason}",
            {"ticket_id": ticket_id, "reason": reason}
        )


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


class MisconfiguredThresholdsException(ConfigurationException):
    """SLA policy would corrupt every status computation; fatal at startup."""


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


class NotificationDeliveryException(ExternalServiceException):
    """Exception for notification dispatch failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Notification Dispatcher", message, details)


class InvalidPriorityException(DomainException):
    """Raised when a ticket priority is missing from the SLA target table."""

    def __init__(
        self,
        priority: Optional[str],
        known: Optional[list] = None,
        details: Optional[dict] = None
    ):
        self.priority = priority
        super().__init__(
            f"Unknown ticket priority '{priority}'",
            details or {"priority": priority, "known_priorities": known or []}
        )
