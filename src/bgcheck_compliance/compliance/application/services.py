"""
Compliance Application Services
================================

Application services orchestrate business logic and coordinate between
domain entities and stores.

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (stores), not concrete implementations
"""

import asyncio
import csv
import io
import weakref
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Tuple
from uuid import uuid4

from bgcheck_compliance.compliance.domain import (
    Actor,
    Clock,
    ComplianceConfig,
    EscalationEvent,
    EscalationRule,
    SLAAlert,
    SLACalculator,
    SLAConfiguration,
    SLAStatus,
    StatusChangeRecord,
    TrackedEntity,
    NotificationRequest,
    ensure_utc,
    utc_now,
)
from bgcheck_compliance.config import TERMINAL_STATUSES, CheckStatus, EscalationState
from bgcheck_compliance.core import InvalidTransition, UnknownEntity
from bgcheck_compliance.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

TIMESTAMP_STEP = timedelta(microseconds=1)


@dataclass
class StatusHistoryFilter:
    """Filters for querying the status ledger across entities."""
    entity_id: Optional[str] = None
    candidate_id: Optional[str] = None
    status: Optional[CheckStatus] = None  # matches previous or new status
    changed_by: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    automated: Optional[bool] = None

    def matches(self, record: StatusChangeRecord) -> bool:
        if self.entity_id and record.entity_id != self.entity_id:
            return False
        if self.candidate_id and record.candidate_id != self.candidate_id:
            return False
        if self.status and self.status not in (record.new_status, record.previous_status):
            return False
        if self.changed_by and record.changed_by != self.changed_by:
            return False
        if self.date_from and record.timestamp < ensure_utc(self.date_from):
            return False
        if self.date_to and record.timestamp > ensure_utc(self.date_to):
            return False
        if self.automated is not None and record.automated != self.automated:
            return False
        return True


# ========== Store Interfaces (Dependency Inversion) ==========

class IStatusLedgerStore(ABC):
    """Append-only storage for status change records."""

    @abstractmethod
    async def append(self, record: StatusChangeRecord) -> StatusChangeRecord:
        """Append a record. Records are never updated or deleted."""

    @abstractmethod
    async def latest(self, entity_id: str) -> Optional[StatusChangeRecord]:
        """Most recent record for an entity."""

    @abstractmethod
    async def history(self, entity_id: str) -> List[StatusChangeRecord]:
        """All records for an entity in append order."""

    @abstractmethod
    async def latest_per_entity(self) -> List[StatusChangeRecord]:
        """Most recent record of every entity."""

    @abstractmethod
    async def query(self, filters: StatusHistoryFilter) -> List[StatusChangeRecord]:
        """Records matching ``filters``, newest first."""


class IEscalationEventStore(ABC):
    """Storage for escalation events with atomic insert-if-absent."""

    @abstractmethod
    async def add_if_absent(self, event: EscalationEvent) -> bool:
        """
        Insert ``event`` unless a non-superseded event already covers its
        (entity, rule, occupancy). Returns True when inserted.
        """

    @abstractmethod
    async def find_active(
        self,
        entity_id: str,
        rule_id: str,
        occupancy_started_at: datetime
    ) -> Optional[EscalationEvent]:
        """Non-superseded event for the (entity, rule, occupancy) tuple."""

    @abstractmethod
    async def get(self, event_id: str) -> Optional[EscalationEvent]:
        """Get event by id."""

    @abstractmethod
    async def save(self, event: EscalationEvent) -> EscalationEvent:
        """Persist lifecycle changes of an existing event."""

    @abstractmethod
    async def list(
        self,
        entity_id: Optional[str] = None,
        rule_id: Optional[str] = None,
        state: Optional[EscalationState] = None
    ) -> List[EscalationEvent]:
        """List events, newest first."""


class ISLAAlertStore(ABC):
    """Storage for SLA threshold alerts."""

    @abstractmethod
    async def add_if_absent(self, alert: SLAAlert) -> bool:
        """Insert unless an alert exists for (entity, occupancy, level)."""

    @abstractmethod
    async def list_for_entity(self, entity_id: str) -> List[SLAAlert]:
        """Alerts raised for an entity, oldest first."""


class IConfigStore(ABC):
    """Access to the externally authored SLA configurations and escalation rules."""

    @abstractmethod
    def get_config(self) -> ComplianceConfig:
        """Current configuration snapshot."""

    @abstractmethod
    def save_sla_configuration(self, config: SLAConfiguration) -> SLAConfiguration:
        """Create or replace the configuration for ``config.status``."""

    @abstractmethod
    def save_escalation_rule(self, rule: EscalationRule) -> EscalationRule:
        """Create or replace a rule by id."""

    @abstractmethod
    def delete_escalation_rule(self, rule_id: str) -> None:
        """Delete a rule; raises UnknownRule if missing."""


class INotificationPublisher(ABC):
    """Non-blocking hand-off of notification requests."""

    @abstractmethod
    def publish(self, request: NotificationRequest) -> bool:
        """Queue a request. Returns False when it was dropped."""


# ========== Concurrency ==========

class EntityLockRegistry:
    """
    One asyncio.Lock per entity id.

    Serializes transitions and sweep evaluations of the same entity while
    different entities proceed concurrently. Entries are weak: a lock nobody
    holds or waits on is dropped.
    """

    def __init__(self):
        self._locks = weakref.WeakValueDictionary()

    def lock_for(self, entity_id: str) -> asyncio.Lock:
        lock = self._locks.get(entity_id)
        if lock is None:
            lock = self._locks.setdefault(entity_id, asyncio.Lock())
        return lock

    def __len__(self) -> int:
        return len(self._locks)


# ========== Application Services ==========

class StatusLedger:
    """
    Append-only status transition history.

    The only writer of StatusChangeRecords, and therefore the only source of
    the "entered current status at" timestamp used by the SLA clock.
    """

    def __init__(
        self,
        store: IStatusLedgerStore,
        locks: Optional[EntityLockRegistry] = None,
        clock: Clock = utc_now
    ):
        self._store = store
        self._locks = locks or EntityLockRegistry()
        self._clock = clock

    async def record_transition(
        self,
        entity_id: str,
        new_status: CheckStatus,
        actor: Actor,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
        metadata: Optional[dict] = None,
        candidate_id: Optional[str] = None,
        candidate_name: Optional[str] = None
    ) -> StatusChangeRecord:
        """
        Record that ``entity_id`` moved to ``new_status``.

        Raises:
            InvalidTransition: for no-op transitions, or when a non-admin
                actor tries to leave a terminal status
        """
        async with self._locks.lock_for(entity_id):
            latest = await self._store.latest(entity_id)
            current = latest.new_status if latest else None

            if current == new_status:
                raise InvalidTransition(
                    entity_id, current.value, new_status.value, "entity is already in this status"
                )
            if current in TERMINAL_STATUSES and not actor.is_admin:
                raise InvalidTransition(
                    entity_id, current.value, new_status.value,
                    "terminal status can only be left by an administrator"
                )

            timestamp = ensure_utc(self._clock())
            if latest and timestamp <= latest.timestamp:
                timestamp = latest.timestamp + TIMESTAMP_STEP

            record = StatusChangeRecord(
                id=f"sh-{uuid4().hex}",
                entity_id=entity_id,
                previous_status=current,
                new_status=new_status,
                changed_by=actor.id,
                changed_by_name=actor.name,
                timestamp=timestamp,
                automated=actor.automated,
                reason=reason,
                notes=notes,
                candidate_id=candidate_id or (latest.candidate_id if latest else None),
                candidate_name=candidate_name or (latest.candidate_name if latest else None),
                metadata=dict(metadata or {}),
            )
            await self._store.append(record)

        logger.info(
            "Status transition recorded",
            extra={
                "entity_id": entity_id,
                "previous_status": current.value if current else None,
                "new_status": new_status.value,
                "changed_by": actor.id,
                "automated": actor.automated
            }
        )
        return record

    async def current_status(self, entity_id: str) -> Tuple[CheckStatus, datetime]:
        """
        Current status and the instant it was entered.

        Raises:
            UnknownEntity: if the entity has no ledger record
        """
        entity = await self.tracked_entity(entity_id)
        return entity.status, entity.since

    async def tracked_entity(self, entity_id: str) -> TrackedEntity:
        latest = await self._store.latest(entity_id)
        if latest is None:
            raise UnknownEntity(entity_id)
        return TrackedEntity.from_record(latest)

    async def tracked_entities(self, include_terminal: bool = False) -> List[TrackedEntity]:
        entities = [TrackedEntity.from_record(r) for r in await self._store.latest_per_entity()]
        if not include_terminal:
            entities = [e for e in entities if not e.is_terminal]
        return sorted(entities, key=lambda e: e.entity_id)

    async def history(self, entity_id: str) -> List[StatusChangeRecord]:
        """
        Full history in append order.

        Raises:
            UnknownEntity: if the entity has no ledger record
        """
        records = await self._store.history(entity_id)
        if not records:
            raise UnknownEntity(entity_id)
        return records

    async def filter_history(self, filters: StatusHistoryFilter) -> List[StatusChangeRecord]:
        return await self._store.query(filters)

    async def export_csv(self, filters: Optional[StatusHistoryFilter] = None) -> str:
        """Render matching records as CSV, newest first."""
        records = await self._store.query(filters or StatusHistoryFilter())

        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow([
            "Timestamp", "Candidate", "Check ID", "Previous Status", "New Status",
            "Changed By", "Reason", "Automated", "Notes"
        ])
        for record in records:
            writer.writerow([
                record.timestamp.isoformat(),
                record.candidate_name or "",
                record.entity_id,
                record.previous_status.value if record.previous_status else "",
                record.new_status.value,
                record.changed_by_name,
                record.reason or "",
                "Yes" if record.automated else "No",
                record.notes or "",
            ])
        return buffer.getvalue()

    async def stats(self, now: Optional[datetime] = None) -> dict:
        records = await self._store.query(StatusHistoryFilter())
        now = now or self._clock()
        cutoff = now - timedelta(days=30)

        return {
            "total_changes": len(records),
            "changes_last_30_days": sum(1 for r in records if r.timestamp >= cutoff),
            "automated_changes": sum(1 for r in records if r.automated),
            "manual_changes": sum(1 for r in records if not r.automated),
            "by_status": dict(Counter(r.new_status.value for r in records)),
        }


class SLAClock:
    """
    Service for SLA clock readings.

    Looks up the configuration for the entity's status and delegates the
    arithmetic to SLACalculator. Never caches a reading.
    """

    def __init__(self, config_store: IConfigStore, clock: Clock = utc_now):
        self._config_store = config_store
        self._clock = clock

    def evaluate(
        self,
        entity_id: str,
        current_status: CheckStatus,
        since: datetime,
        config: Optional[SLAConfiguration],
        now: Optional[datetime] = None
    ) -> SLAStatus:
        snapshot = self._config_store.get_config()
        return SLACalculator.evaluate(
            entity_id,
            current_status,
            since,
            config,
            now or self._clock(),
            snapshot.calendar()
        )

    def evaluate_entity(
        self,
        entity: TrackedEntity,
        now: Optional[datetime] = None,
        config: Optional[ComplianceConfig] = None
    ) -> SLAStatus:
        config = config or self._config_store.get_config()
        return SLACalculator.evaluate(
            entity.entity_id,
            entity.status,
            entity.since,
            config.get_sla_for_status(entity.status),
            now or self._clock(),
            config.calendar()
        )
