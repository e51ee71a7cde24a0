"""
In-Memory Stores
================

Process-local implementations of the store interfaces. Default backend for
development and the backend used by most tests.

Every method runs without awaiting anything, so each call is atomic with
respect to other coroutines on the same event loop.
"""

import copy
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from bgcheck_compliance.compliance.application.services import (
    IConfigStore,
    IEscalationEventStore,
    ISLAAlertStore,
    IStatusLedgerStore,
    StatusHistoryFilter,
)
from bgcheck_compliance.compliance.domain import (
    ComplianceConfig,
    EscalationEvent,
    EscalationRule,
    SLAAlert,
    SLAConfiguration,
    StatusChangeRecord,
    parse_compliance_config,
)
from bgcheck_compliance.config import EscalationState
from bgcheck_compliance.core import RepositoryException, UnknownEvent, UnknownRule


class InMemoryStatusLedgerStore(IStatusLedgerStore):
    """Append-only lists of records keyed by entity id."""

    def __init__(self):
        self._records: Dict[str, List[StatusChangeRecord]] = defaultdict(list)

    async def append(self, record: StatusChangeRecord) -> StatusChangeRecord:
        records = self._records[record.entity_id]
        if records and record.timestamp <= records[-1].timestamp:
            raise RepositoryException(
                f"Out-of-order timestamp for entity {record.entity_id}",
                {"entity_id": record.entity_id}
            )
        records.append(record)
        return record

    async def latest(self, entity_id: str) -> Optional[StatusChangeRecord]:
        records = self._records.get(entity_id)
        return records[-1] if records else None

    async def history(self, entity_id: str) -> List[StatusChangeRecord]:
        return list(self._records.get(entity_id, ()))

    async def latest_per_entity(self) -> List[StatusChangeRecord]:
        return [records[-1] for records in self._records.values() if records]

    async def query(self, filters: StatusHistoryFilter) -> List[StatusChangeRecord]:
        matched = [
            record
            for records in self._records.values()
            for record in records
            if filters.matches(record)
        ]
        return sorted(matched, key=lambda r: r.timestamp, reverse=True)


class InMemoryEscalationEventStore(IEscalationEventStore):
    """Events keyed by id; callers always receive copies."""

    def __init__(self):
        self._events: Dict[str, EscalationEvent] = {}
        self._active: Dict[Tuple[str, str, datetime], str] = {}

    @staticmethod
    def _key(entity_id: str, rule_id: str, occupancy_started_at: datetime) -> Tuple[str, str, datetime]:
        return entity_id, rule_id, occupancy_started_at

    async def add_if_absent(self, event: EscalationEvent) -> bool:
        key = self._key(event.entity_id, event.rule_id, event.occupancy_started_at)
        if key in self._active:
            return False
        self._events[event.id] = copy.deepcopy(event)
        if not event.superseded:
            self._active[key] = event.id
        return True

    async def find_active(
        self,
        entity_id: str,
        rule_id: str,
        occupancy_started_at: datetime
    ) -> Optional[EscalationEvent]:
        event_id = self._active.get(self._key(entity_id, rule_id, occupancy_started_at))
        return copy.deepcopy(self._events[event_id]) if event_id else None

    async def get(self, event_id: str) -> Optional[EscalationEvent]:
        event = self._events.get(event_id)
        return copy.deepcopy(event) if event else None

    async def save(self, event: EscalationEvent) -> EscalationEvent:
        if event.id not in self._events:
            raise UnknownEvent(event.id)
        self._events[event.id] = copy.deepcopy(event)

        key = self._key(event.entity_id, event.rule_id, event.occupancy_started_at)
        if event.superseded and self._active.get(key) == event.id:
            del self._active[key]
        return event

    async def list(
        self,
        entity_id: Optional[str] = None,
        rule_id: Optional[str] = None,
        state: Optional[EscalationState] = None
    ) -> List[EscalationEvent]:
        events = [
            copy.deepcopy(e)
            for e in self._events.values()
            if (entity_id is None or e.entity_id == entity_id)
            and (rule_id is None or e.rule_id == rule_id)
            and (state is None or e.state == state)
        ]
        return sorted(events, key=lambda e: e.escalated_at, reverse=True)


class InMemorySLAAlertStore(ISLAAlertStore):
    """SLA alerts deduplicated on (entity, occupancy, level)."""

    def __init__(self):
        self._alerts: Dict[tuple, SLAAlert] = {}

    async def add_if_absent(self, alert: SLAAlert) -> bool:
        key = (alert.entity_id, alert.occupancy_started_at, alert.level)
        if key in self._alerts:
            return False
        self._alerts[key] = alert
        return True

    async def list_for_entity(self, entity_id: str) -> List[SLAAlert]:
        alerts = [a for a in self._alerts.values() if a.entity_id == entity_id]
        return sorted(alerts, key=lambda a: a.triggered_at)


class InMemoryConfigStore(IConfigStore):
    """
    Holds one ComplianceConfig snapshot.

    Edits build and validate a complete new snapshot before swapping it in,
    so readers never observe a half-applied change.
    """

    def __init__(self, config: Optional[ComplianceConfig] = None):
        self._config = config or ComplianceConfig()

    def get_config(self) -> ComplianceConfig:
        return self._config

    def replace(self, config: ComplianceConfig) -> None:
        self._config = config

    def _swap(self, **changes) -> ComplianceConfig:
        data = self._config.model_dump()
        data.update(changes)
        updated = parse_compliance_config(data)
        self.replace(updated)
        return updated

    def save_sla_configuration(self, config: SLAConfiguration) -> SLAConfiguration:
        others = [c.model_dump() for c in self._config.sla_configurations if c.status != config.status]
        self._swap(sla_configurations=others + [config.model_dump()])
        return config

    def save_escalation_rule(self, rule: EscalationRule) -> EscalationRule:
        rules = [r.model_dump() for r in self._config.escalation_rules]
        for index, existing in enumerate(self._config.escalation_rules):
            if existing.id == rule.id:
                rules[index] = rule.model_dump()
                break
        else:
            rules.append(rule.model_dump())
        self._swap(escalation_rules=rules)
        return rule

    def delete_escalation_rule(self, rule_id: str) -> None:
        if self._config.get_rule(rule_id) is None:
            raise UnknownRule(rule_id)
        self._swap(escalation_rules=[
            r.model_dump() for r in self._config.escalation_rules if r.id != rule_id
        ])
