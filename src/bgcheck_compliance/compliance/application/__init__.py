"""
Compliance Application Layer
============================

Contains:
- Services: StatusLedger, SLAClock, escalation evaluation and dispatch,
  the compliance sweep and the read-only query
- Store interfaces the infrastructure layer implements
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and store interfaces,
but not on concrete infrastructure implementations.
"""

from bgcheck_compliance.compliance.application.engine import ComplianceEngine
from bgcheck_compliance.compliance.application.escalation import (
    EscalationDispatcher,
    EscalationEvaluator,
)
from bgcheck_compliance.compliance.application.query import ComplianceQuery
from bgcheck_compliance.compliance.application.services import (
    EntityLockRegistry,
    IConfigStore,
    IEscalationEventStore,
    INotificationPublisher,
    ISLAAlertStore,
    IStatusLedgerStore,
    SLAClock,
    StatusHistoryFilter,
    StatusLedger,
)
from bgcheck_compliance.compliance.application.sweep import (
    ComplianceSweep,
    EntityOutcome,
    SweepReport,
    SweepState,
)

__all__ = [
    # Services
    "ComplianceEngine",
    "ComplianceQuery",
    "ComplianceSweep",
    "EscalationDispatcher",
    "EscalationEvaluator",
    "SLAClock",
    "StatusLedger",
    "EntityLockRegistry",
    "EntityOutcome",
    "StatusHistoryFilter",
    "SweepReport",
    "SweepState",
    # Store Interfaces
    "IConfigStore",
    "IEscalationEventStore",
    "INotificationPublisher",
    "ISLAAlertStore",
    "IStatusLedgerStore",
]
