"""
Escalation Services
===================

Rule-based escalation for entities that sit in a status too long.

- EscalationEvaluator decides which (entity, rule) pairs are due.
- EscalationDispatcher materializes events and owns their lifecycle.

Escalation always counts calendar days, independent of the business-day
setting of the SLA for the same status.
"""

from typing import List, Optional, Sequence, Tuple
from uuid import uuid4

from bgcheck_compliance.compliance.application.services import (
    EntityLockRegistry,
    IEscalationEventStore,
    INotificationPublisher,
)
from bgcheck_compliance.compliance.domain import (
    BusinessCalendar,
    Clock,
    EscalationEvent,
    EscalationRule,
    NotificationRequest,
    TrackedEntity,
    utc_now,
)
from bgcheck_compliance.config import EscalationState, NotificationKind
from bgcheck_compliance.core import NotificationDispatchFailed, UnknownEvent
from bgcheck_compliance.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class EscalationEvaluator:
    """Finds escalation rules that have become due for the current occupancy."""

    def __init__(
        self,
        event_store: IEscalationEventStore,
        calendar: Optional[BusinessCalendar] = None,
        clock: Clock = utc_now
    ):
        self._event_store = event_store
        self._calendar = calendar or BusinessCalendar()
        self._clock = clock

    def days_pending(self, entity: TrackedEntity, now) -> int:
        return self._calendar.days_between(entity.since, now, business_days_only=False)

    async def find_due_escalations(
        self,
        entities: Sequence[TrackedEntity],
        rules: Sequence[EscalationRule],
        now=None
    ) -> List[Tuple[TrackedEntity, EscalationRule]]:
        """
        Pairs whose threshold is met and whose occupancy is not yet covered
        by a non-superseded event.
        """
        now = now or self._clock()
        due = []

        for rule in rules:
            if not rule.enabled:
                continue
            for entity in entities:
                if entity.status != rule.status:
                    continue
                if self.days_pending(entity, now) < rule.days_threshold:
                    continue
                existing = await self._event_store.find_active(
                    entity.entity_id, rule.id, entity.since
                )
                if existing is not None:
                    continue
                due.append((entity, rule))

        return due


class EscalationDispatcher:
    """
    Creates escalation events and drives acknowledge / resolve / re-open.

    Event persistence is authoritative; the notification request that goes
    with a new event is best-effort.
    """

    def __init__(
        self,
        event_store: IEscalationEventStore,
        publisher: Optional[INotificationPublisher] = None,
        locks: Optional[EntityLockRegistry] = None,
        calendar: Optional[BusinessCalendar] = None,
        clock: Clock = utc_now
    ):
        self._event_store = event_store
        self._publisher = publisher
        self._locks = locks or EntityLockRegistry()
        self._calendar = calendar or BusinessCalendar()
        self._clock = clock

    @staticmethod
    def resolve_recipients(entity: TrackedEntity, rule: EscalationRule) -> List[str]:
        recipients = list(dict.fromkeys(rule.escalate_to))
        initiator = entity.initiator
        if rule.notify_original_initiator and initiator and initiator not in recipients:
            recipients.append(initiator)
        return recipients

    async def dispatch(
        self,
        entity: TrackedEntity,
        rule: EscalationRule,
        now=None
    ) -> Optional[EscalationEvent]:
        """
        Create the event for (entity, rule, occupancy).

        Returns:
            The new event, or None when the occupancy is already covered
        """
        now = now or self._clock()
        days_pending = self._calendar.days_between(entity.since, now, business_days_only=False)

        event = EscalationEvent(
            id=f"esc-{uuid4().hex}",
            rule_id=rule.id,
            rule_name=rule.name,
            entity_id=entity.entity_id,
            status=entity.status,
            occupancy_started_at=entity.since,
            days_pending=days_pending,
            escalated_to=self.resolve_recipients(entity, rule),
            escalated_at=now,
            priority=rule.priority,
            candidate_name=entity.candidate_name,
        )

        if not await self._event_store.add_if_absent(event):
            logger.debug(
                "Escalation already covers this occupancy",
                extra={"entity_id": entity.entity_id, "rule_id": rule.id}
            )
            return None

        logger.info(
            "Escalation dispatched",
            extra={
                "event_id": event.id,
                "entity_id": entity.entity_id,
                "rule_id": rule.id,
                "days_pending": days_pending,
                "recipients": len(event.escalated_to)
            }
        )
        self._request_notification(event, rule)
        return event

    def _request_notification(self, event: EscalationEvent, rule: EscalationRule) -> None:
        if self._publisher is None or not event.escalated_to:
            return

        subject = event.candidate_name or event.entity_id
        request = NotificationRequest(
            kind=NotificationKind.ESCALATION,
            entity_id=event.entity_id,
            recipients=list(event.escalated_to),
            title=f"Background Check Escalation: {rule.name}",
            message=(
                f"{subject}'s background check has been {event.status.value} for "
                f"{event.days_pending} days. Immediate attention required."
            ),
            days_pending=event.days_pending,
            rule_id=rule.id,
            rule_name=rule.name,
            priority=rule.priority,
            event_id=event.id,
        )
        try:
            self._publisher.publish(request)
        except Exception as e:
            error = NotificationDispatchFailed(str(e), {"event_id": event.id})
            logger.error(error.message, extra={"event_id": event.id, "entity_id": event.entity_id})

    async def _load(self, event_id: str) -> EscalationEvent:
        event = await self._event_store.get(event_id)
        if event is None:
            raise UnknownEvent(event_id)
        return event

    async def acknowledge(self, event_id: str, by: str) -> EscalationEvent:
        """
        Raises:
            UnknownEvent, AlreadyAcknowledged, AlreadyResolved
        """
        event = await self._load(event_id)
        async with self._locks.lock_for(event.entity_id):
            event = await self._load(event_id)
            event.acknowledge(by, self._clock())
            await self._event_store.save(event)

        logger.info("Escalation acknowledged", extra={"event_id": event_id, "by": by})
        return event

    async def resolve(self, event_id: str, by: str, notes: Optional[str] = None) -> EscalationEvent:
        """
        Resolve directly or after acknowledgment.

        Raises:
            UnknownEvent, AlreadyResolved
        """
        event = await self._load(event_id)
        async with self._locks.lock_for(event.entity_id):
            event = await self._load(event_id)
            event.resolve(by, self._clock(), notes)
            await self._event_store.save(event)

        logger.info("Escalation resolved", extra={"event_id": event_id, "by": by})
        return event

    async def reopen(self, event_id: str, by: str) -> EscalationEvent:
        """
        Explicit re-open: the occupancy may escalate again on the next
        evaluation. The event keeps its own lifecycle state.

        Raises:
            UnknownEvent, AlreadySuperseded
        """
        event = await self._load(event_id)
        async with self._locks.lock_for(event.entity_id):
            event = await self._load(event_id)
            event.supersede(by, self._clock())
            await self._event_store.save(event)

        logger.info("Escalation re-opened", extra={"event_id": event_id, "by": by})
        return event

    async def list_events(
        self,
        state: Optional[EscalationState] = None,
        entity_id: Optional[str] = None,
        rule_id: Optional[str] = None
    ) -> List[EscalationEvent]:
        return await self._event_store.list(entity_id=entity_id, rule_id=rule_id, state=state)
