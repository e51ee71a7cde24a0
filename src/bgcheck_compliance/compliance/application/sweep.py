"""
Compliance Sweep
================

Batch re-evaluation of every non-terminal entity: SLA threshold alerts and
due escalations. Runs on a fixed interval (see ComplianceScheduler) and
on demand for a single entity right after a status change.

One entity's failure is logged and counted; it never aborts the batch.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional
from uuid import uuid4

from bgcheck_compliance.compliance.application.escalation import (
    EscalationDispatcher,
    EscalationEvaluator,
)
from bgcheck_compliance.compliance.application.services import (
    EntityLockRegistry,
    IConfigStore,
    INotificationPublisher,
    ISLAAlertStore,
    SLAClock,
    StatusLedger,
)
from bgcheck_compliance.compliance.domain import (
    Clock,
    ComplianceConfig,
    NotificationRequest,
    SLAAlert,
    SLAStatus,
    TrackedEntity,
    utc_now,
)
from bgcheck_compliance.config import NotificationKind, SLAState
from bgcheck_compliance.core import NotificationDispatchFailed, UnknownEntity
from bgcheck_compliance.shared.infrastructure.logging import get_logger, log_latency

logger = get_logger(__name__)

_ALERT_KINDS = {
    SLAState.WARNING: NotificationKind.SLA_WARNING,
    SLAState.CRITICAL: NotificationKind.SLA_CRITICAL,
    SLAState.BREACHED: NotificationKind.SLA_BREACHED,
}


@dataclass
class EntityOutcome:
    """What one per-entity evaluation produced."""
    entity_id: str
    sla_status: SLAStatus
    escalations_created: int = 0
    sla_alerts_created: int = 0


@dataclass
class SweepReport:
    """Summary of a single sweep pass."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    entities_evaluated: int = 0
    escalations_created: int = 0
    sla_alerts_created: int = 0
    failures: Dict[str, str] = field(default_factory=dict)
    interrupted: bool = False

    @property
    def succeeded(self) -> bool:
        return not self.failures and not self.interrupted

    def add(self, outcome: EntityOutcome) -> None:
        self.entities_evaluated += 1
        self.escalations_created += outcome.escalations_created
        self.sla_alerts_created += outcome.sla_alerts_created

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "entities_evaluated": self.entities_evaluated,
            "escalations_created": self.escalations_created,
            "sla_alerts_created": self.sla_alerts_created,
            "failures": dict(self.failures),
            "interrupted": self.interrupted,
            "succeeded": self.succeeded,
        }


class SweepState:
    """
    Last sweep report plus last-known-good SLA readings.

    ComplianceQuery falls back to these readings when a live recomputation
    fails.
    """

    def __init__(self):
        self.last_report: Optional[SweepReport] = None
        self._snapshots: Dict[str, SLAStatus] = {}

    def remember(self, status: SLAStatus) -> None:
        self._snapshots[status.entity_id] = status

    def forget(self, entity_id: str) -> None:
        self._snapshots.pop(entity_id, None)

    def snapshot(self, entity_id: str) -> Optional[SLAStatus]:
        return self._snapshots.get(entity_id)

    def snapshots(self) -> List[SLAStatus]:
        return list(self._snapshots.values())


class ComplianceSweep:
    """Evaluates SLA alerts and escalations for tracked entities."""

    def __init__(
        self,
        ledger: StatusLedger,
        sla_clock: SLAClock,
        evaluator: EscalationEvaluator,
        dispatcher: EscalationDispatcher,
        alert_store: ISLAAlertStore,
        config_store: IConfigStore,
        publisher: Optional[INotificationPublisher] = None,
        locks: Optional[EntityLockRegistry] = None,
        state: Optional[SweepState] = None,
        clock: Clock = utc_now
    ):
        self._ledger = ledger
        self._sla_clock = sla_clock
        self._evaluator = evaluator
        self._dispatcher = dispatcher
        self._alert_store = alert_store
        self._config_store = config_store
        self._publisher = publisher
        self._locks = locks or EntityLockRegistry()
        self.state = state or SweepState()
        self._clock = clock

    async def run_once(self, stop_event: Optional[asyncio.Event] = None) -> SweepReport:
        """
        Evaluate every non-terminal entity once.

        ``stop_event`` is checked between entities: an entity whose
        evaluation has started always finishes.
        """
        report = SweepReport(started_at=self._clock())

        with log_latency(logger, "compliance_sweep"):
            entity_ids = [e.entity_id for e in await self._ledger.tracked_entities()]

            for position, entity_id in enumerate(entity_ids):
                if stop_event is not None and stop_event.is_set():
                    report.interrupted = True
                    logger.info(
                        "Compliance sweep stopped early",
                        extra={"skipped": len(entity_ids) - position}
                    )
                    break
                try:
                    outcome = await self.evaluate_entity(entity_id)
                except Exception as e:
                    report.failures[entity_id] = str(e)
                    logger.error(
                        "Compliance evaluation failed for entity",
                        extra={"entity_id": entity_id, "error": str(e), "error_type": type(e).__name__}
                    )
                    continue
                if outcome is not None:
                    report.add(outcome)

        report.finished_at = self._clock()
        self.state.last_report = report

        logger.info("Compliance sweep finished", extra=report.to_dict())
        return report

    async def evaluate_entity(self, entity_id: str) -> Optional[EntityOutcome]:
        """
        Evaluate one entity under its lock.

        Re-reads the ledger once the lock is held so a concurrent transition
        is never evaluated against a stale occupancy. Returns None for
        terminal entities.
        """
        async with self._locks.lock_for(entity_id):
            try:
                entity = await self._ledger.tracked_entity(entity_id)
            except UnknownEntity:
                self.state.forget(entity_id)
                raise
            if entity.is_terminal:
                self.state.forget(entity_id)
                return None

            now = self._clock()
            config = self._config_store.get_config()
            sla_status = self._sla_clock.evaluate_entity(entity, now, config)
            outcome = EntityOutcome(entity_id=entity_id, sla_status=sla_status)

            if await self._raise_sla_alert(entity, sla_status, config, now):
                outcome.sla_alerts_created += 1

            rules = [r for r in config.escalation_rules if r.enabled]
            for _, rule in await self._evaluator.find_due_escalations([entity], rules, now):
                if await self._dispatcher.dispatch(entity, rule, now) is not None:
                    outcome.escalations_created += 1

            self.state.remember(sla_status)
            return outcome

    async def _raise_sla_alert(
        self,
        entity: TrackedEntity,
        sla_status: SLAStatus,
        config: ComplianceConfig,
        now: datetime
    ) -> bool:
        """Request one notification per level per occupancy, for the current level only."""
        sla_config = config.get_sla_for_status(entity.status)
        if sla_config is None or not sla_status.monitored:
            return False
        if not sla_config.should_notify(sla_status.classification):
            return False

        recipients = [entity.initiator] if entity.initiator else []
        alert = SLAAlert(
            id=f"alert-{uuid4().hex}",
            entity_id=entity.entity_id,
            status=entity.status,
            occupancy_started_at=entity.since,
            level=sla_status.classification,
            percent_complete=sla_status.percent_complete,
            days_remaining=sla_status.days_remaining,
            triggered_at=now,
            recipients=recipients,
            notification_requested=bool(recipients and self._publisher),
        )
        if not await self._alert_store.add_if_absent(alert):
            return False

        logger.info(
            "SLA threshold crossed",
            extra={
                "entity_id": entity.entity_id,
                "status": entity.status.value,
                "level": alert.level.value,
                "percent_complete": round(alert.percent_complete, 1)
            }
        )
        if alert.notification_requested:
            self._publish(self._alert_request(entity, sla_status, sla_config.target_days, recipients))
        return True

    @staticmethod
    def _alert_request(
        entity: TrackedEntity,
        sla_status: SLAStatus,
        target_days: int,
        recipients: List[str]
    ) -> NotificationRequest:
        subject = entity.candidate_name or entity.entity_id
        level = sla_status.classification
        if level == SLAState.BREACHED:
            title = f"SLA Breached: {subject}"
            message = (
                f"Background check for {subject} has exceeded the {target_days} day SLA "
                f"for {entity.status.value} status."
            )
        elif level == SLAState.CRITICAL:
            title = f"SLA Critical: {subject}"
            message = (
                f"Background check for {subject} is approaching SLA breach "
                f"({round(sla_status.percent_complete)}% complete). "
                f"{sla_status.days_remaining} days remaining."
            )
        else:
            title = f"SLA Warning: {subject}"
            message = (
                f"Background check for {subject} is {round(sla_status.percent_complete)}% "
                f"through its SLA target. {sla_status.days_remaining} days remaining."
            )

        return NotificationRequest(
            kind=_ALERT_KINDS[level],
            entity_id=entity.entity_id,
            recipients=recipients,
            title=title,
            message=message,
            days_pending=sla_status.days_elapsed,
        )

    def _publish(self, request: NotificationRequest) -> None:
        try:
            self._publisher.publish(request)
        except Exception as e:
            error = NotificationDispatchFailed(str(e), {"entity_id": request.entity_id})
            logger.error(error.message, extra={"entity_id": request.entity_id, "kind": request.kind.value})
