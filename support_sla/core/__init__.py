"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from support_sla.core.exceptions import (
    ApplicationException,
    DomainException,
    RepositoryException,
    InvalidTicketRecordException,
    ValidationException,
    ResourceNotFoundException,
    ConfigurationException,
    MisconfiguredThresholdsException,
    ExternalServiceException,
    NotificationDeliveryException,
    InvalidPriorityException,
)

__all__ = [
    "ApplicationException",
    "DomainException",
    "RepositoryException",
    "InvalidTicketRecordException",
    "ValidationException",
    "ResourceNotFoundException",
    "ConfigurationException",
    "MisconfiguredThresholdsException",
    "ExternalServiceException",
    "NotificationDeliveryException",
    "InvalidPriorityException",
]
