"""
Compliance Query
================

Read-only aggregation for dashboards and reporting. SLA readings are
recomputed on every call; nothing here mutates engine state.
"""

from datetime import datetime, timedelta
from typing import Dict, List, Optional

from bgcheck_compliance.compliance.application.services import (
    IEscalationEventStore,
    SLAClock,
    StatusLedger,
)
from bgcheck_compliance.compliance.application.sweep import SweepState
from bgcheck_compliance.compliance.domain import Clock, EscalationEvent, SLAStatus, utc_now
from bgcheck_compliance.config import EscalationState, SLAState
from bgcheck_compliance.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

_BUCKETS = (
    SLAState.ON_TRACK,
    SLAState.WARNING,
    SLAState.CRITICAL,
    SLAState.BREACHED,
    SLAState.NOT_MONITORED,
)


class ComplianceQuery:
    """Dashboard feed, escalation listings and statistics."""

    def __init__(
        self,
        ledger: StatusLedger,
        sla_clock: SLAClock,
        event_store: IEscalationEventStore,
        sweep_state: Optional[SweepState] = None,
        clock: Clock = utc_now
    ):
        self._ledger = ledger
        self._sla_clock = sla_clock
        self._event_store = event_store
        self._sweep_state = sweep_state or SweepState()
        self._clock = clock

    async def _current_readings(self, now: datetime):
        """Live readings for non-terminal entities, with fallbacks for failures."""
        readings: List[SLAStatus] = []
        stale_entities: List[str] = []

        for entity in await self._ledger.tracked_entities():
            try:
                readings.append(self._sla_clock.evaluate_entity(entity, now))
            except Exception as e:
                logger.warning(
                    "Live SLA reading failed, serving last snapshot",
                    extra={"entity_id": entity.entity_id, "error": str(e)}
                )
                stale_entities.append(entity.entity_id)
                snapshot = self._sweep_state.snapshot(entity.entity_id)
                if snapshot is not None:
                    readings.append(snapshot)

        return readings, stale_entities

    async def dashboard(self) -> dict:
        now = self._clock()
        readings, stale_entities = await self._current_readings(now)

        buckets: Dict[str, List[dict]] = {state.value: [] for state in _BUCKETS}
        for reading in readings:
            buckets[reading.classification.value].append(reading.to_dict())
        for entries in buckets.values():
            entries.sort(key=lambda r: r["percent_complete"], reverse=True)

        open_events = await self.open_escalations()
        last_report = self._sweep_state.last_report

        return {
            "generated_at": now.isoformat(),
            "counts": {state: len(entries) for state, entries in buckets.items()},
            "entities": buckets,
            "open_escalations": len(open_events),
            "last_sweep": last_report.to_dict() if last_report else None,
            "stale": bool(stale_entities) or (last_report is not None and not last_report.succeeded),
            "stale_entities": stale_entities,
        }

    async def open_escalations(
        self,
        entity_id: Optional[str] = None,
        rule_id: Optional[str] = None
    ) -> List[EscalationEvent]:
        """Unresolved events, acknowledged or not. Re-opened events are left to their replacement."""
        events = await self._event_store.list(entity_id=entity_id, rule_id=rule_id)
        return [e for e in events if not e.resolved and not e.superseded]

    async def escalations(
        self,
        state: Optional[EscalationState] = None,
        entity_id: Optional[str] = None,
        rule_id: Optional[str] = None
    ) -> List[EscalationEvent]:
        return await self._event_store.list(entity_id=entity_id, rule_id=rule_id, state=state)

    async def entity_sla(self, entity_id: str) -> dict:
        """
        SLA snapshot plus full ledger history for one entity.

        Raises:
            UnknownEntity: if the entity has no ledger record
        """
        history = await self._ledger.history(entity_id)
        entity = await self._ledger.tracked_entity(entity_id)
        reading = self._sla_clock.evaluate_entity(entity, self._clock())
        events = await self._event_store.list(entity_id=entity_id)

        return {
            "entity_id": entity_id,
            "sla": reading.to_dict(),
            "history": [r.to_dict() for r in history],
            "escalations": [e.to_dict() for e in events],
        }

    async def stats(self) -> dict:
        now = self._clock()
        readings, _ = await self._current_readings(now)
        monitored = [r for r in readings if r.monitored]

        sla_stats = {state.value: 0 for state in _BUCKETS}
        for reading in readings:
            sla_stats[reading.classification.value] += 1
        sla_stats["total"] = len(readings)
        sla_stats["average_percent_complete"] = (
            round(sum(r.percent_complete for r in monitored) / len(monitored), 2) if monitored else 0.0
        )

        return {
            "sla": sla_stats,
            "escalations": await self._escalation_stats(now),
            "status_history": await self._ledger.stats(now),
        }

    async def _escalation_stats(self, now: datetime) -> dict:
        events = await self._event_store.list()
        cutoff = now - timedelta(days=30)

        resolution_hours = [
            (e.resolved_at - e.escalated_at).total_seconds() / 3600
            for e in events
            if e.resolved and e.resolved_at
        ]
        return {
            "total": len(events),
            "last_30_days": sum(1 for e in events if e.escalated_at >= cutoff),
            "active": sum(1 for e in events if not e.resolved),
            "acknowledged_not_resolved": sum(1 for e in events if e.acknowledged and not e.resolved),
            "resolved": len(resolution_hours),
            "average_resolution_hours": (
                round(sum(resolution_hours) / len(resolution_hours), 2) if resolution_hours else 0.0
            ),
        }
