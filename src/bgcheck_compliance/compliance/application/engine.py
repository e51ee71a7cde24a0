"""
Compliance Engine
=================

Wires the ledger, SLA clock, escalation services, sweep and query around
one set of stores, one lock registry and one clock.
"""

from typing import Optional

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
    StatusLedger,
)
from bgcheck_compliance.compliance.application.sweep import ComplianceSweep, SweepState
from bgcheck_compliance.compliance.domain import Actor, Clock, StatusChangeRecord, utc_now
from bgcheck_compliance.config import CheckStatus
from bgcheck_compliance.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class ComplianceEngine:
    """Single entry point used by the HTTP layer and the scheduler."""

    def __init__(
        self,
        ledger_store: IStatusLedgerStore,
        event_store: IEscalationEventStore,
        alert_store: ISLAAlertStore,
        config_store: IConfigStore,
        publisher: Optional[INotificationPublisher] = None,
        clock: Clock = utc_now
    ):
        self.config_store = config_store
        self.locks = EntityLockRegistry()
        self.state = SweepState()

        self.ledger = StatusLedger(ledger_store, self.locks, clock)
        self.sla_clock = SLAClock(config_store, clock)
        self.evaluator = EscalationEvaluator(event_store, clock=clock)
        self.dispatcher = EscalationDispatcher(event_store, publisher, self.locks, clock=clock)
        self.sweep = ComplianceSweep(
            ledger=self.ledger,
            sla_clock=self.sla_clock,
            evaluator=self.evaluator,
            dispatcher=self.dispatcher,
            alert_store=alert_store,
            config_store=config_store,
            publisher=publisher,
            locks=self.locks,
            state=self.state,
            clock=clock,
        )
        self.query = ComplianceQuery(self.ledger, self.sla_clock, event_store, self.state, clock)

    async def record_status_change(
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
        Push path: append the transition, then evaluate the entity at once.

        A failed evaluation is logged; the recorded transition stands and the
        next sweep retries the evaluation.
        """
        record = await self.ledger.record_transition(
            entity_id,
            new_status,
            actor,
            reason=reason,
            notes=notes,
            metadata=metadata,
            candidate_id=candidate_id,
            candidate_name=candidate_name,
        )
        try:
            await self.sweep.evaluate_entity(entity_id)
        except Exception as e:
            logger.error(
                "Post-transition evaluation failed",
                extra={"entity_id": entity_id, "error": str(e), "error_type": type(e).__name__}
            )
        return record
