"""
Compliance Infrastructure Repositories
======================================

Concrete implementations of the store interfaces using SQLAlchemy.

Each call opens its own short-lived session from the session maker, so the
stores can be shared by request handlers and the background sweep.
Unique constraints back every insert-if-absent.
"""

from typing import List, Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bgcheck_compliance.compliance.application.services import (
    IEscalationEventStore,
    ISLAAlertStore,
    IStatusLedgerStore,
    StatusHistoryFilter,
)
from bgcheck_compliance.compliance.domain import (
    EscalationEvent,
    SLAAlert,
    StatusChangeRecord,
    ensure_utc,
)
from bgcheck_compliance.compliance.infrastructure.models import (
    EscalationEventModel,
    SLAAlertModel,
    StatusChangeModel,
)
from bgcheck_compliance.config import CheckStatus, EscalationPriority, EscalationState, SLAState
from bgcheck_compliance.core import RepositoryException, UnknownEvent


def _utc(value):
    return ensure_utc(value) if value is not None else None


class SQLAlchemyStatusLedgerStore(IStatusLedgerStore):
    """
    SQLAlchemy implementation of the status ledger.

    Rows are only ever inserted.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    @staticmethod
    def _to_domain(model: StatusChangeModel) -> StatusChangeRecord:
        return StatusChangeRecord(
            id=model.id,
            entity_id=model.entity_id,
            previous_status=CheckStatus(model.previous_status) if model.previous_status else None,
            new_status=CheckStatus(model.new_status),
            changed_by=model.changed_by,
            changed_by_name=model.changed_by_name,
            timestamp=ensure_utc(model.timestamp),
            automated=model.automated,
            reason=model.reason,
            notes=model.notes,
            candidate_id=model.candidate_id,
            candidate_name=model.candidate_name,
            metadata=dict(model.extra or {}),
        )

    async def append(self, record: StatusChangeRecord) -> StatusChangeRecord:
        model = StatusChangeModel(
            id=record.id,
            entity_id=record.entity_id,
            previous_status=record.previous_status.value if record.previous_status else None,
            new_status=record.new_status.value,
            changed_by=record.changed_by,
            changed_by_name=record.changed_by_name,
            timestamp=ensure_utc(record.timestamp),
            automated=record.automated,
            reason=record.reason,
            notes=record.notes,
            candidate_id=record.candidate_id,
            candidate_name=record.candidate_name,
            extra=dict(record.metadata),
        )
        async with self._session_maker() as session:
            session.add(model)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise RepositoryException(
                    f"Could not append status change for entity {record.entity_id}",
                    {"entity_id": record.entity_id, "error": str(e.orig)}
                ) from e
        return record

    async def latest(self, entity_id: str) -> Optional[StatusChangeRecord]:
        stmt = (
            select(StatusChangeModel)
            .where(StatusChangeModel.entity_id == entity_id)
            .order_by(StatusChangeModel.timestamp.desc())
            .limit(1)
        )
        async with self._session_maker() as session:
            model = (await session.execute(stmt)).scalar_one_or_none()
        return self._to_domain(model) if model else None

    async def history(self, entity_id: str) -> List[StatusChangeRecord]:
        stmt = (
            select(StatusChangeModel)
            .where(StatusChangeModel.entity_id == entity_id)
            .order_by(StatusChangeModel.timestamp.asc())
        )
        async with self._session_maker() as session:
            models = (await session.execute(stmt)).scalars().all()
        return [self._to_domain(m) for m in models]

    async def latest_per_entity(self) -> List[StatusChangeRecord]:
        latest = (
            select(
                StatusChangeModel.entity_id.label("entity_id"),
                func.max(StatusChangeModel.timestamp).label("latest_timestamp"),
            )
            .group_by(StatusChangeModel.entity_id)
            .subquery()
        )
        stmt = select(StatusChangeModel).join(
            latest,
            and_(
                StatusChangeModel.entity_id == latest.c.entity_id,
                StatusChangeModel.timestamp == latest.c.latest_timestamp,
            ),
        )
        async with self._session_maker() as session:
            models = (await session.execute(stmt)).scalars().all()
        return [self._to_domain(m) for m in models]

    async def query(self, filters: StatusHistoryFilter) -> List[StatusChangeRecord]:
        conditions = []
        if filters.entity_id:
            conditions.append(StatusChangeModel.entity_id == filters.entity_id)
        if filters.candidate_id:
            conditions.append(StatusChangeModel.candidate_id == filters.candidate_id)
        if filters.status:
            conditions.append(or_(
                StatusChangeModel.new_status == filters.status.value,
                StatusChangeModel.previous_status == filters.status.value,
            ))
        if filters.changed_by:
            conditions.append(StatusChangeModel.changed_by == filters.changed_by)
        if filters.date_from:
            conditions.append(StatusChangeModel.timestamp >= ensure_utc(filters.date_from))
        if filters.date_to:
            conditions.append(StatusChangeModel.timestamp <= ensure_utc(filters.date_to))
        if filters.automated is not None:
            conditions.append(StatusChangeModel.automated == filters.automated)

        stmt = select(StatusChangeModel)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        stmt = stmt.order_by(StatusChangeModel.timestamp.desc())

        async with self._session_maker() as session:
            models = (await session.execute(stmt)).scalars().all()
        return [self._to_domain(m) for m in models]


class SQLAlchemyEscalationEventStore(IEscalationEventStore):
    """
    SQLAlchemy implementation of the escalation event store.

    Insert-if-absent relies on the partial unique index over non-superseded
    events.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    @staticmethod
    def _to_domain(model: EscalationEventModel) -> EscalationEvent:
        return EscalationEvent(
            id=model.id,
            rule_id=model.rule_id,
            rule_name=model.rule_name,
            entity_id=model.entity_id,
            status=CheckStatus(model.status),
            occupancy_started_at=ensure_utc(model.occupancy_started_at),
            days_pending=model.days_pending,
            escalated_to=list(model.escalated_to or []),
            escalated_at=ensure_utc(model.escalated_at),
            priority=EscalationPriority(model.priority),
            candidate_name=model.candidate_name,
            acknowledged=model.acknowledged,
            acknowledged_by=model.acknowledged_by,
            acknowledged_at=_utc(model.acknowledged_at),
            resolved=model.resolved,
            resolved_by=model.resolved_by,
            resolved_at=_utc(model.resolved_at),
            notes=model.notes,
            superseded=model.superseded,
            superseded_by=model.superseded_by,
            superseded_at=_utc(model.superseded_at),
        )

    @staticmethod
    def _apply_lifecycle(model: EscalationEventModel, event: EscalationEvent) -> None:
        model.acknowledged = event.acknowledged
        model.acknowledged_by = event.acknowledged_by
        model.acknowledged_at = _utc(event.acknowledged_at)
        model.resolved = event.resolved
        model.resolved_by = event.resolved_by
        model.resolved_at = _utc(event.resolved_at)
        model.notes = event.notes
        model.superseded = event.superseded
        model.superseded_by = event.superseded_by
        model.superseded_at = _utc(event.superseded_at)

    async def add_if_absent(self, event: EscalationEvent) -> bool:
        model = EscalationEventModel(
            id=event.id,
            rule_id=event.rule_id,
            rule_name=event.rule_name,
            entity_id=event.entity_id,
            status=event.status.value,
            occupancy_started_at=ensure_utc(event.occupancy_started_at),
            days_pending=event.days_pending,
            escalated_to=list(event.escalated_to),
            escalated_at=ensure_utc(event.escalated_at),
            priority=event.priority.value,
            candidate_name=event.candidate_name,
        )
        self._apply_lifecycle(model, event)

        async with self._session_maker() as session:
            session.add(model)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return False
        return True

    async def find_active(self, entity_id, rule_id, occupancy_started_at) -> Optional[EscalationEvent]:
        stmt = select(EscalationEventModel).where(
            EscalationEventModel.entity_id == entity_id,
            EscalationEventModel.rule_id == rule_id,
            EscalationEventModel.occupancy_started_at == ensure_utc(occupancy_started_at),
            EscalationEventModel.superseded.is_(False),
        )
        async with self._session_maker() as session:
            model = (await session.execute(stmt)).scalar_one_or_none()
        return self._to_domain(model) if model else None

    async def get(self, event_id: str) -> Optional[EscalationEvent]:
        async with self._session_maker() as session:
            model = await session.get(EscalationEventModel, event_id)
        return self._to_domain(model) if model else None

    async def save(self, event: EscalationEvent) -> EscalationEvent:
        async with self._session_maker() as session:
            model = await session.get(EscalationEventModel, event.id)
            if model is None:
                raise UnknownEvent(event.id)
            self._apply_lifecycle(model, event)
            await session.commit()
        return event

    async def list(
        self,
        entity_id: Optional[str] = None,
        rule_id: Optional[str] = None,
        state: Optional[EscalationState] = None
    ) -> List[EscalationEvent]:
        stmt = select(EscalationEventModel)
        if entity_id:
            stmt = stmt.where(EscalationEventModel.entity_id == entity_id)
        if rule_id:
            stmt = stmt.where(EscalationEventModel.rule_id == rule_id)
        if state == EscalationState.RESOLVED:
            stmt = stmt.where(EscalationEventModel.resolved.is_(True))
        elif state == EscalationState.ACKNOWLEDGED:
            stmt = stmt.where(
                EscalationEventModel.acknowledged.is_(True),
                EscalationEventModel.resolved.is_(False),
            )
        elif state == EscalationState.OPEN:
            stmt = stmt.where(
                EscalationEventModel.acknowledged.is_(False),
                EscalationEventModel.resolved.is_(False),
            )
        stmt = stmt.order_by(EscalationEventModel.escalated_at.desc())

        async with self._session_maker() as session:
            models = (await session.execute(stmt)).scalars().all()
        return [self._to_domain(m) for m in models]


class SQLAlchemySLAAlertStore(ISLAAlertStore):
    """SQLAlchemy implementation of the SLA alert store."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def add_if_absent(self, alert: SLAAlert) -> bool:
        model = SLAAlertModel(
            id=alert.id,
            entity_id=alert.entity_id,
            status=alert.status.value,
            occupancy_started_at=ensure_utc(alert.occupancy_started_at),
            level=alert.level.value,
            percent_complete=alert.percent_complete,
            days_remaining=alert.days_remaining,
            triggered_at=ensure_utc(alert.triggered_at),
            recipients=list(alert.recipients),
            notification_requested=alert.notification_requested,
        )
        async with self._session_maker() as session:
            session.add(model)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return False
        return True

    async def list_for_entity(self, entity_id: str) -> List[SLAAlert]:
        stmt = (
            select(SLAAlertModel)
            .where(SLAAlertModel.entity_id == entity_id)
            .order_by(SLAAlertModel.triggered_at.asc())
        )
        async with self._session_maker() as session:
            models = (await session.execute(stmt)).scalars().all()
        return [
            SLAAlert(
                id=m.id,
                entity_id=m.entity_id,
                status=CheckStatus(m.status),
                occupancy_started_at=ensure_utc(m.occupancy_started_at),
                level=SLAState(m.level),
                percent_complete=m.percent_complete,
                days_remaining=m.days_remaining,
                triggered_at=ensure_utc(m.triggered_at),
                recipients=list(m.recipients or []),
                notification_requested=m.notification_requested,
            )
            for m in models
        ]
