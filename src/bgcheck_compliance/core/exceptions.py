"""
Core Exceptions
================

Custom exceptions for the compliance tracker following clean architecture
principles.

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


# ========== Status ledger ==========

class InvalidTransition(DomainException):
    """A no-op transition, or a transition out of a terminal status by a non-admin."""

    def __init__(
        self,
        entity_id: str,
        current_status: Optional[str],
        new_status: str,
        reason: str
    ):
        self.entity_id = entity_id
        self.current_status = current_status
        self.new_status = new_status
        super().__init__(
            f"Cannot move {entity_id} from {current_status} to {new_status}: {reason}",
            {
                "entity_id": entity_id,
                "current_status": current_status,
                "new_status": new_status,
            }
        )


class UnknownEntity(ResourceNotFoundException):
    """No ledger record exists for the entity."""

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__("Tracked entity", entity_id)


# ========== Escalation events ==========

class UnknownEvent(ResourceNotFoundException):
    """No escalation event exists with the given id."""

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__("Escalation event", event_id)


class UnknownRule(ResourceNotFoundException):
    """No escalation rule exists with the given id."""

    def __init__(self, rule_id: str):
        self.rule_id = rule_id
        super().__init__("Escalation rule", rule_id)


class AlreadyAcknowledged(DomainException):
    """Escalation event was acknowledged before."""

    def __init__(self, event_id: str, acknowledged_by: Optional[str] = None):
        self.event_id = event_id
        super().__init__(
            f"Escalation event {event_id} is already acknowledged",
            {"event_id": event_id, "acknowledged_by": acknowledged_by}
        )


class AlreadyResolved(DomainException):
    """Escalation event was resolved before."""

    def __init__(self, event_id: str, resolved_by: Optional[str] = None):
        self.event_id = event_id
        super().__init__(
            f"Escalation event {event_id} is already resolved",
            {"event_id": event_id, "resolved_by": resolved_by}
        )


class AlreadySuperseded(DomainException):
    """Escalation event was re-opened before."""

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(
            f"Escalation event {event_id} is already re-opened",
            {"event_id": event_id}
        )


# ========== Configuration ==========

class MisconfiguredSLA(ConfigurationException):
    """SLA configuration or escalation rule failed validation at authoring time."""

    def __init__(self, message: str, errors: Optional[list] = None):
        super().__init__(message, {"errors": errors or []})


# ========== Notification ==========

class NotificationDispatchFailed(ExternalServiceException):
    """Notification request could not be queued or delivered."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Notification", message, details)
