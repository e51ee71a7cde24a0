from datetime import datetime, timedelta, timezone

import pytest

from bgcheck_compliance.compliance.application import ComplianceEngine, INotificationPublisher
from bgcheck_compliance.compliance.domain import Actor, ComplianceConfig, EscalationRule, SLAConfiguration
from bgcheck_compliance.compliance.infrastructure import (
    InMemoryConfigStore,
    InMemoryEscalationEventStore,
    InMemorySLAAlertStore,
    InMemoryStatusLedgerStore,
)
from bgcheck_compliance.config import CheckStatus, EscalationPriority

# Monday
T0 = datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now

    def set(self, value: datetime) -> datetime:
        self.now = value
        return self.now


class RecordingPublisher(INotificationPublisher):
    def __init__(self, accept: bool = True):
        self.requests = []
        self.accept = accept

    def publish(self, request) -> bool:
        self.requests.append(request)
        return self.accept


class ExplodingPublisher(INotificationPublisher):
    def publish(self, request) -> bool:
        raise RuntimeError("transport down")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def recruiter():
    return Actor(id="recruiter-7", name="Dana Recruiter")


@pytest.fixture
def admin():
    return Actor(id="admin-1", name="Ada Admin", is_admin=True)


@pytest.fixture
def compliance_config():
    return ComplianceConfig(
        sla_configurations=[
            SLAConfiguration(
                status=CheckStatus.PENDING_CONSENT,
                target_days=3,
                warning_threshold_percent=70,
                critical_threshold_percent=90,
            ),
            SLAConfiguration(
                status=CheckStatus.IN_PROGRESS,
                target_days=10,
                warning_threshold_percent=75,
                critical_threshold_percent=90,
                business_days_only=True,
                notify_at_warning=False,
                notify_at_critical=False,
                notify_at_breached=False,
            ),
        ],
        escalation_rules=[
            EscalationRule(
                id="rule-in-progress-7d",
                name="In Progress - 7 Days",
                status=CheckStatus.IN_PROGRESS,
                days_threshold=7,
                escalate_to=["manager-1"],
                priority=EscalationPriority.HIGH,
            ),
        ],
    )


@pytest.fixture
def config_store(compliance_config):
    return InMemoryConfigStore(compliance_config)


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def event_store():
    return InMemoryEscalationEventStore()


@pytest.fixture
def engine(clock, config_store, publisher, event_store):
    return ComplianceEngine(
        InMemoryStatusLedgerStore(),
        event_store,
        InMemorySLAAlertStore(),
        config_store,
        publisher,
        clock=clock,
    )
