"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from bgcheck_compliance.core.exceptions import (
    ApplicationException,
    DomainException,
    RepositoryException,
    ValidationException,
    ResourceNotFoundException,
    ConfigurationException,
    ExternalServiceException,
    InvalidTransition,
    UnknownEntity,
    UnknownEvent,
    UnknownRule,
    AlreadyAcknowledged,
    AlreadyResolved,
    AlreadySuperseded,
    MisconfiguredSLA,
    NotificationDispatchFailed,
)

__all__ = [
    "ApplicationException",
    "DomainException",
    "RepositoryException",
    "ValidationException",
    "ResourceNotFoundException",
    "ConfigurationException",
    "ExternalServiceException",
    "InvalidTransition",
    "UnknownEntity",
    "UnknownEvent",
    "UnknownRule",
    "AlreadyAcknowledged",
    "AlreadyResolved",
    "AlreadySuperseded",
    "MisconfiguredSLA",
    "NotificationDispatchFailed",
]
