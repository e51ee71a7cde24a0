"""
Compliance Infrastructure Layer
===============================

Infrastructure implementations for compliance tracking:
- Memory: process-local stores (default backend, tests)
- Models / Repositories: SQLAlchemy persistence
- External: config file watcher, webhook notifications, scheduler
"""

from bgcheck_compliance.compliance.infrastructure.external import (
    CircuitBreaker,
    CircuitState,
    ComplianceScheduler,
    ConfigFileHandler,
    NotificationQueue,
    WebhookNotificationSender,
    YAMLConfigStore,
)
from bgcheck_compliance.compliance.infrastructure.memory import (
    InMemoryConfigStore,
    InMemoryEscalationEventStore,
    InMemorySLAAlertStore,
    InMemoryStatusLedgerStore,
)
from bgcheck_compliance.compliance.infrastructure.models import (
    EscalationEventModel,
    SLAAlertModel,
    StatusChangeModel,
)
from bgcheck_compliance.compliance.infrastructure.repositories import (
    SQLAlchemyEscalationEventStore,
    SQLAlchemySLAAlertStore,
    SQLAlchemyStatusLedgerStore,
)

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "ComplianceScheduler",
    "ConfigFileHandler",
    "NotificationQueue",
    "WebhookNotificationSender",
    "YAMLConfigStore",
    "InMemoryConfigStore",
    "InMemoryEscalationEventStore",
    "InMemorySLAAlertStore",
    "InMemoryStatusLedgerStore",
    "EscalationEventModel",
    "SLAAlertModel",
    "StatusChangeModel",
    "SQLAlchemyEscalationEventStore",
    "SQLAlchemySLAAlertStore",
    "SQLAlchemyStatusLedgerStore",
]
