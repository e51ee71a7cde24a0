"""
Compliance Domain Entities
===========================

Pure Python domain entities for background-check compliance tracking.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from bgcheck_compliance.config import (
    AUTOMATED_ACTOR_ID,
    AUTOMATED_ACTOR_NAME,
    TERMINAL_STATUSES,
    CheckStatus,
    EscalationPriority,
    EscalationState,
    NotificationKind,
    SLAState,
)
from bgcheck_compliance.core import AlreadyAcknowledged, AlreadyResolved, AlreadySuperseded

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class Actor:
    """Whoever reports a status change or works an escalation."""
    id: str
    name: str
    is_admin: bool = False
    automated: bool = False

    @classmethod
    def system(cls) -> "Actor":
        return cls(id=AUTOMATED_ACTOR_ID, name=AUTOMATED_ACTOR_NAME, automated=True)


@dataclass(frozen=True)
class StatusChangeRecord:
    """
    Immutable fact that an entity moved from one status to another.

    ``previous_status`` is None for the record that first registers an entity.
    """

    id: str
    entity_id: str
    previous_status: Optional[CheckStatus]
    new_status: CheckStatus
    changed_by: str
    changed_by_name: str
    timestamp: datetime
    automated: bool = False
    reason: Optional[str] = None
    notes: Optional[str] = None
    candidate_id: Optional[str] = None
    candidate_name: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_id": self.entity_id,
            "previous_status": self.previous_status.value if self.previous_status else None,
            "new_status": self.new_status.value,
            "changed_by": self.changed_by,
            "changed_by_name": self.changed_by_name,
            "timestamp": self.timestamp.isoformat(),
            "automated": self.automated,
            "reason": self.reason,
            "notes": self.notes,
            "candidate_id": self.candidate_id,
            "candidate_name": self.candidate_name,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class TrackedEntity:
    """
    A background check as seen by the compliance engine.

    Derived from the latest StatusChangeRecord - the record that began the
    current occupancy - and never stored on its own.
    """

    entity_id: str
    status: CheckStatus
    since: datetime
    entered_by: str
    entered_by_name: str
    entered_automated: bool = False
    candidate_name: Optional[str] = None

    @classmethod
    def from_record(cls, record: StatusChangeRecord) -> "TrackedEntity":
        return cls(
            entity_id=record.entity_id,
            status=record.new_status,
            since=record.timestamp,
            entered_by=record.changed_by,
            entered_by_name=record.changed_by_name,
            entered_automated=record.automated,
            candidate_name=record.candidate_name,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def initiator(self) -> Optional[str]:
        """Person who began the occupancy; None when the system did."""
        if self.entered_automated or self.entered_by == AUTOMATED_ACTOR_ID:
            return None
        return self.entered_by


@dataclass(frozen=True)
class SLAStatus:
    """
    SLA clock reading for one occupancy.

    Computed fresh on every query; never persisted.
    """

    entity_id: str
    status: CheckStatus
    classification: SLAState
    start_date: datetime
    target_date: Optional[datetime]
    days_elapsed: int
    days_remaining: int
    percent_complete: float
    target_days: Optional[int] = None
    business_days_only: bool = False
    evaluated_at: Optional[datetime] = None

    @classmethod
    def not_monitored(cls, entity_id: str, status: CheckStatus, since: datetime) -> "SLAStatus":
        """Sentinel for statuses without an enabled SLA configuration."""
        return cls(
            entity_id=entity_id,
            status=status,
            classification=SLAState.NOT_MONITORED,
            start_date=since,
            target_date=None,
            days_elapsed=0,
            days_remaining=0,
            percent_complete=0.0,
        )

    @property
    def monitored(self) -> bool:
        return self.classification != SLAState.NOT_MONITORED

    @property
    def breached(self) -> bool:
        return self.classification == SLAState.BREACHED

    def to_dict(self) -> dict:
        return {
            "entity_id": self.entity_id,
            "status": self.status.value,
            "classification": self.classification.value,
            "monitored": self.monitored,
            "start_date": self.start_date.isoformat(),
            "target_date": _iso(self.target_date),
            "days_elapsed": self.days_elapsed,
            "days_remaining": self.days_remaining,
            "percent_complete": round(self.percent_complete, 2),
            "target_days": self.target_days,
            "business_days_only": self.business_days_only,
            "breached": self.breached,
        }


@dataclass
class EscalationEvent:
    """
    Escalation raised for one (entity, rule, occupancy).

    Lifecycle: dispatched -> [acknowledged] -> resolved. A resolved event
    never changes state again; ``superseded`` only marks that an explicit
    re-open allows the same occupancy to escalate once more.
    """

    id: str
    rule_id: str
    rule_name: str
    entity_id: str
    status: CheckStatus
    occupancy_started_at: datetime
    days_pending: int
    escalated_to: List[str]
    escalated_at: datetime
    priority: EscalationPriority = EscalationPriority.MEDIUM
    candidate_name: Optional[str] = None

    acknowledged: bool = False
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[datetime] = None

    resolved: bool = False
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    notes: Optional[str] = None

    superseded: bool = False
    superseded_by: Optional[str] = None
    superseded_at: Optional[datetime] = None

    @property
    def state(self) -> EscalationState:
        if self.resolved:
            return EscalationState.RESOLVED
        if self.acknowledged:
            return EscalationState.ACKNOWLEDGED
        return EscalationState.OPEN

    def acknowledge(self, by: str, at: datetime) -> None:
        if self.resolved:
            raise AlreadyResolved(self.id, self.resolved_by)
        if self.acknowledged:
            raise AlreadyAcknowledged(self.id, self.acknowledged_by)
        self.acknowledged = True
        self.acknowledged_by = by
        self.acknowledged_at = at

    def resolve(self, by: str, at: datetime, notes: Optional[str] = None) -> None:
        if self.resolved:
            raise AlreadyResolved(self.id, self.resolved_by)
        self.resolved = True
        self.resolved_by = by
        self.resolved_at = at
        if notes:
            self.notes = notes

    def supersede(self, by: str, at: datetime) -> None:
        if self.superseded:
            raise AlreadySuperseded(self.id)
        self.superseded = True
        self.superseded_by = by
        self.superseded_at = at

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "entity_id": self.entity_id,
            "candidate_name": self.candidate_name,
            "status": self.status.value,
            "occupancy_started_at": self.occupancy_started_at.isoformat(),
            "days_pending": self.days_pending,
            "escalated_to": list(self.escalated_to),
            "escalated_at": self.escalated_at.isoformat(),
            "priority": self.priority.value,
            "state": self.state.value,
            "acknowledged": self.acknowledged,
            "acknowledged_by": self.acknowledged_by,
            "acknowledged_at": _iso(self.acknowledged_at),
            "resolved": self.resolved,
            "resolved_by": self.resolved_by,
            "resolved_at": _iso(self.resolved_at),
            "notes": self.notes,
            "superseded": self.superseded,
            "superseded_by": self.superseded_by,
            "superseded_at": _iso(self.superseded_at),
        }


@dataclass
class SLAAlert:
    """
    Record that an SLA threshold notification was requested.

    At most one alert exists per (entity, occupancy, level).
    """

    id: str
    entity_id: str
    status: CheckStatus
    occupancy_started_at: datetime
    level: SLAState
    percent_complete: float
    days_remaining: int
    triggered_at: datetime
    recipients: List[str] = field(default_factory=list)
    notification_requested: bool = False


@dataclass(frozen=True)
class NotificationRequest:
    """Dispatch request handed to the external notification collaborator."""

    kind: NotificationKind
    entity_id: str
    recipients: List[str]
    title: str
    message: str
    days_pending: Optional[int] = None
    rule_id: Optional[str] = None
    rule_name: Optional[str] = None
    priority: Optional[EscalationPriority] = None
    event_id: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)

    def to_payload(self) -> dict:
        return {
            "kind": self.kind.value,
            "entity_id": self.entity_id,
            "recipients": list(self.recipients),
            "title": self.title,
            "message": self.message,
            "days_pending": self.days_pending,
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "priority": self.priority.value if self.priority else None,
            "event_id": self.event_id,
            "created_at": self.created_at.isoformat(),
        }
