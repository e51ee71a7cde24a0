"""
Compliance Controllers (API Routes)
===================================

FastAPI routes for compliance tracking endpoints.

Controllers are thin - they delegate to the ComplianceEngine kept on
``app.state``. Domain errors propagate to the shared exception handlers.
"""

from datetime import datetime
from typing import Callable, Optional, TypeVar

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response
from pydantic import ValidationError

from bgcheck_compliance.compliance.application import ComplianceEngine, StatusHistoryFilter
from bgcheck_compliance.compliance.application.dto import (
    DashboardResponse,
    EntitySLAResponse,
    EscalationActionRequest,
    EscalationEventResponse,
    EscalationListResponse,
    EscalationResponse,
    EscalationRuleListResponse,
    EscalationRuleResponse,
    EscalationRuleUpdate,
    MessageResponse,
    SLAConfigurationListResponse,
    SLAConfigurationResponse,
    SLAConfigurationUpdate,
    SLAStatusResponse,
    StatsResponse,
    StatusChangeResponse,
    StatusHistoryResponse,
    SweepResponse,
    TransitionRequest,
    TransitionResponse,
)
from bgcheck_compliance.config import CheckStatus, EscalationState
from bgcheck_compliance.core import MisconfiguredSLA, ResourceNotFoundException, UnknownRule
from bgcheck_compliance.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/compliance", tags=["Compliance"])

T = TypeVar("T")


# ========== Example payloads for Swagger ==========

TRANSITION_EXAMPLE = {
    "new_status": "pending-consent",
    "actor_id": "recruiter-7",
    "actor_name": "Dana Recruiter",
    "reason": "Consent form sent",
    "candidate_id": "cand-1001",
    "candidate_name": "Alex Candidate"
}


# ========== Dependencies ==========

def get_engine(request: Request) -> ComplianceEngine:
    """ComplianceEngine created during application startup."""
    return request.app.state.engine


def _validated(build: Callable[[], T]) -> T:
    """Run a domain constructor, reporting validation errors as MisconfiguredSLA."""
    try:
        return build()
    except ValidationError as e:
        raise MisconfiguredSLA(
            "Compliance configuration rejected",
            [{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()]
        ) from e


# ========== Status transitions ==========

@router.post(
    "/entities/{entity_id}/transitions",
    response_model=TransitionResponse,
    summary="Record a status change",
    description="""
    Push path for the workflow: append a status change to the ledger and
    evaluate SLA alerts and escalations for the entity right away.

    Moving into the current status is rejected (409). Leaving `completed` or
    `cancelled` requires `is_admin`.
    """,
    responses={
        200: {"description": "Transition recorded"},
        409: {"description": "Invalid transition"}
    },
    openapi_extra={"requestBody": {"content": {"application/json": {"example": TRANSITION_EXAMPLE}}}}
)
async def record_transition(
    entity_id: str,
    body: TransitionRequest,
    request: Request,
    engine: ComplianceEngine = Depends(get_engine)
):
    record = await engine.record_status_change(
        entity_id,
        body.new_status,
        body.to_actor(),
        reason=body.reason,
        notes=body.notes,
        metadata=body.metadata,
        candidate_id=body.candidate_id,
        candidate_name=body.candidate_name,
    )
    entity = await engine.ledger.tracked_entity(entity_id)
    reading = engine.sla_clock.evaluate_entity(entity)

    logger.info(
        "Transition accepted",
        extra={
            "correlation_id": getattr(request.state, "correlation_id", None),
            "entity_id": entity_id,
            "new_status": body.new_status.value,
            "sla": reading.classification.value
        }
    )
    return TransitionResponse(
        record=StatusChangeResponse.from_domain(record),
        sla=SLAStatusResponse.from_domain(reading),
    )


@router.get(
    "/entities/{entity_id}/sla",
    response_model=EntitySLAResponse,
    summary="Get entity SLA status",
    description="Live SLA reading for one entity, with its full status history and escalations.",
    responses={404: {"description": "Entity not found"}}
)
async def get_entity_sla(entity_id: str, engine: ComplianceEngine = Depends(get_engine)):
    data = await engine.query.entity_sla(entity_id)
    return EntitySLAResponse(**data)


# ========== Dashboard & statistics ==========

@router.get(
    "/dashboard",
    response_model=DashboardResponse,
    summary="Get compliance dashboard",
    description="""
    Live SLA overview of every non-terminal background check.

    **Classifications:** `on-track`, `warning`, `critical`, `breached`,
    `not-monitored`.

    `stale` is true when a live reading failed and the last sweep's snapshot
    was served instead, or when the last sweep did not complete cleanly.
    """
)
async def get_dashboard(engine: ComplianceEngine = Depends(get_engine)):
    data = await engine.query.dashboard()
    return DashboardResponse(**data)


@router.get(
    "/stats",
    response_model=StatsResponse,
    summary="Get compliance statistics",
    description="SLA, escalation and status-history statistics."
)
async def get_stats(engine: ComplianceEngine = Depends(get_engine)):
    data = await engine.query.stats()
    return StatsResponse(**data)


@router.post(
    "/sweep",
    response_model=SweepResponse,
    summary="Run a compliance sweep",
    description="Evaluate every non-terminal entity now instead of waiting for the scheduler."
)
async def run_sweep(engine: ComplianceEngine = Depends(get_engine)):
    report = await engine.sweep.run_once()
    return SweepResponse(success=report.succeeded, report=report.to_dict())


# ========== Escalations ==========

@router.get(
    "/escalations",
    response_model=EscalationListResponse,
    summary="List escalation events",
    description="""
    **Query Parameters:**
    - `status`: `open` (not acknowledged), `acknowledged` (not resolved) or `resolved`
    - `entity_id`: Only events for this background check
    - `rule_id`: Only events raised by this rule
    """
)
async def list_escalations(
    escalation_state: Optional[EscalationState] = Query(None, alias="status", description="Lifecycle filter"),
    entity_id: Optional[str] = Query(None, description="Filter by entity"),
    rule_id: Optional[str] = Query(None, description="Filter by rule"),
    engine: ComplianceEngine = Depends(get_engine)
):
    events = await engine.query.escalations(state=escalation_state, entity_id=entity_id, rule_id=rule_id)
    return EscalationListResponse(
        escalations=[EscalationEventResponse.from_domain(e) for e in events],
        total_count=len(events),
    )


@router.post(
    "/escalations/{event_id}/acknowledge",
    response_model=EscalationResponse,
    summary="Acknowledge an escalation",
    responses={404: {"description": "Event not found"}, 409: {"description": "Already acknowledged or resolved"}}
)
async def acknowledge_escalation(
    event_id: str,
    body: EscalationActionRequest,
    engine: ComplianceEngine = Depends(get_engine)
):
    event = await engine.dispatcher.acknowledge(event_id, body.by)
    return EscalationResponse(escalation=EscalationEventResponse.from_domain(event))


@router.post(
    "/escalations/{event_id}/resolve",
    response_model=EscalationResponse,
    summary="Resolve an escalation",
    description="Acknowledgment first is optional.",
    responses={404: {"description": "Event not found"}, 409: {"description": "Already resolved"}}
)
async def resolve_escalation(
    event_id: str,
    body: EscalationActionRequest,
    engine: ComplianceEngine = Depends(get_engine)
):
    event = await engine.dispatcher.resolve(event_id, body.by, body.notes)
    return EscalationResponse(escalation=EscalationEventResponse.from_domain(event))


@router.post(
    "/escalations/{event_id}/reopen",
    response_model=EscalationResponse,
    summary="Re-open an escalation",
    description="Allow the same occupancy to escalate again on the next evaluation.",
    responses={404: {"description": "Event not found"}, 409: {"description": "Already re-opened"}}
)
async def reopen_escalation(
    event_id: str,
    body: EscalationActionRequest,
    engine: ComplianceEngine = Depends(get_engine)
):
    event = await engine.dispatcher.reopen(event_id, body.by)
    return EscalationResponse(escalation=EscalationEventResponse.from_domain(event))


# ========== Status history ==========

def _history_filter(
    entity_id: Optional[str] = Query(None),
    candidate_id: Optional[str] = Query(None),
    status: Optional[CheckStatus] = Query(None, description="Matches previous or new status"),
    changed_by: Optional[str] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    automated: Optional[bool] = Query(None)
) -> StatusHistoryFilter:
    return StatusHistoryFilter(
        entity_id=entity_id,
        candidate_id=candidate_id,
        status=status,
        changed_by=changed_by,
        date_from=date_from,
        date_to=date_to,
        automated=automated,
    )


@router.get(
    "/status-history",
    response_model=StatusHistoryResponse,
    summary="Query status history",
    description="Status changes across all entities, newest first."
)
async def get_status_history(
    filters: StatusHistoryFilter = Depends(_history_filter),
    engine: ComplianceEngine = Depends(get_engine)
):
    records = await engine.ledger.filter_history(filters)
    return StatusHistoryResponse(
        records=[StatusChangeResponse.from_domain(r) for r in records],
        total_count=len(records),
    )


@router.get(
    "/status-history/export",
    summary="Export status history as CSV",
    response_class=Response,
    responses={200: {"content": {"text/csv": {}}}}
)
async def export_status_history(
    filters: StatusHistoryFilter = Depends(_history_filter),
    engine: ComplianceEngine = Depends(get_engine)
):
    content = await engine.ledger.export_csv(filters)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="status-history.csv"'}
    )


# ========== Configuration ==========

@router.get(
    "/config/sla",
    response_model=SLAConfigurationListResponse,
    summary="List SLA configurations"
)
async def list_sla_configurations(engine: ComplianceEngine = Depends(get_engine)):
    config = engine.config_store.get_config()
    return SLAConfigurationListResponse(sla_configurations=list(config.sla_configurations))


@router.get(
    "/config/sla/{status}",
    response_model=SLAConfigurationResponse,
    summary="Get the SLA configuration for a status",
    responses={404: {"description": "Status not configured"}}
)
async def get_sla_configuration(status: CheckStatus, engine: ComplianceEngine = Depends(get_engine)):
    sla_config = engine.config_store.get_config().get_sla_for_status(status)
    if sla_config is None:
        raise ResourceNotFoundException("SLA configuration", status.value)
    return SLAConfigurationResponse(sla_configuration=sla_config)


@router.put(
    "/config/sla/{status}",
    response_model=SLAConfigurationResponse,
    summary="Create or replace the SLA configuration for a status",
    description="Applies to evaluations made after the change; past readings are not recomputed.",
    responses={400: {"description": "Invalid configuration"}}
)
async def put_sla_configuration(
    status: CheckStatus,
    body: SLAConfigurationUpdate,
    engine: ComplianceEngine = Depends(get_engine)
):
    existing = engine.config_store.get_config().get_sla_for_status(status)
    sla_config = _validated(lambda: body.to_domain(status, existing.id if existing else None))
    saved = engine.config_store.save_sla_configuration(sla_config)

    logger.info("SLA configuration saved", extra={"status": status.value, "target_days": saved.target_days})
    return SLAConfigurationResponse(sla_configuration=saved)


@router.get(
    "/config/escalation-rules",
    response_model=EscalationRuleListResponse,
    summary="List escalation rules"
)
async def list_escalation_rules(engine: ComplianceEngine = Depends(get_engine)):
    config = engine.config_store.get_config()
    return EscalationRuleListResponse(escalation_rules=list(config.escalation_rules))


@router.get(
    "/config/escalation-rules/{rule_id}",
    response_model=EscalationRuleResponse,
    summary="Get an escalation rule",
    responses={404: {"description": "Rule not found"}}
)
async def get_escalation_rule(rule_id: str, engine: ComplianceEngine = Depends(get_engine)):
    rule = engine.config_store.get_config().get_rule(rule_id)
    if rule is None:
        raise UnknownRule(rule_id)
    return EscalationRuleResponse(escalation_rule=rule)


@router.put(
    "/config/escalation-rules/{rule_id}",
    response_model=EscalationRuleResponse,
    summary="Create or replace an escalation rule",
    responses={400: {"description": "Invalid rule"}}
)
async def put_escalation_rule(
    rule_id: str,
    body: EscalationRuleUpdate,
    engine: ComplianceEngine = Depends(get_engine)
):
    rule = _validated(lambda: body.to_domain(rule_id))
    saved = engine.config_store.save_escalation_rule(rule)

    logger.info("Escalation rule saved", extra={"rule_id": rule_id, "status": saved.status.value})
    return EscalationRuleResponse(escalation_rule=saved)


@router.delete(
    "/config/escalation-rules/{rule_id}",
    response_model=MessageResponse,
    summary="Delete an escalation rule",
    description="Existing escalation events raised by the rule are kept.",
    responses={404: {"description": "Rule not found"}}
)
async def delete_escalation_rule(rule_id: str, engine: ComplianceEngine = Depends(get_engine)):
    engine.config_store.delete_escalation_rule(rule_id)
    logger.info("Escalation rule deleted", extra={"rule_id": rule_id})
    return MessageResponse(message=f"Escalation rule {rule_id} deleted")


# Export router for inclusion in main app
compliance_router = router
