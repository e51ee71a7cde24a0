"""
Compliance Domain Layer
=======================

Domain layer for background-check compliance tracking.

Contains:
- Entities: StatusChangeRecord, TrackedEntity, SLAStatus, EscalationEvent, SLAAlert
- Value Objects: SLAConfiguration, EscalationRule, ComplianceConfig
- Domain Services: BusinessCalendar, SLACalculator

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from bgcheck_compliance.compliance.domain.entities import (
    Actor,
    Clock,
    EscalationEvent,
    NotificationRequest,
    SLAAlert,
    SLAStatus,
    StatusChangeRecord,
    TrackedEntity,
    ensure_utc,
    utc_now,
)
from bgcheck_compliance.compliance.domain.value_objects import (
    BusinessCalendar,
    ComplianceConfig,
    EscalationRule,
    SLACalculator,
    SLAConfiguration,
    default_escalation_rules,
    default_sla_configurations,
    parse_compliance_config,
)

__all__ = [
    # Entities
    "Actor",
    "Clock",
    "EscalationEvent",
    "NotificationRequest",
    "SLAAlert",
    "SLAStatus",
    "StatusChangeRecord",
    "TrackedEntity",
    "ensure_utc",
    "utc_now",
    # Value Objects & Services
    "BusinessCalendar",
    "ComplianceConfig",
    "EscalationRule",
    "SLACalculator",
    "SLAConfiguration",
    "default_escalation_rules",
    "default_sla_configurations",
    "parse_compliance_config",
]
