"""
Compliance Application DTOs
===========================

Data Transfer Objects for the compliance API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses. Every response carries ``success``.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from bgcheck_compliance.compliance.domain import (
    Actor,
    EscalationEvent,
    EscalationRule,
    SLAConfiguration,
    SLAStatus,
    StatusChangeRecord,
)
from bgcheck_compliance.config import CheckStatus, EscalationPriority

# ========== Type Aliases for Literals ==========
SLAStateStr = Literal["on-track", "warning", "critical", "breached", "not-monitored"]
EscalationStateStr = Literal["open", "acknowledged", "resolved"]


# ========== Request DTOs ==========

class TransitionRequest(BaseModel):
    """Status change reported by the workflow."""
    new_status: CheckStatus = Field(..., description="Status the check moves into")
    actor_id: str = Field(..., min_length=1, description="Who made the change")
    actor_name: str = Field(..., min_length=1, description="Display name of the actor")
    is_admin: bool = Field(default=False, description="Administrators may leave terminal statuses")
    automated: bool = Field(default=False, description="Change made by an automated process")
    reason: Optional[str] = None
    notes: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    candidate_id: Optional[str] = None
    candidate_name: Optional[str] = None

    def to_actor(self) -> Actor:
        return Actor(
            id=self.actor_id,
            name=self.actor_name,
            is_admin=self.is_admin,
            automated=self.automated,
        )


class EscalationActionRequest(BaseModel):
    """Acknowledge, resolve or re-open an escalation."""
    by: str = Field(..., min_length=1, description="User performing the action")
    notes: Optional[str] = Field(None, description="Resolution notes (resolve only)")


class SLAConfigurationUpdate(BaseModel):
    """SLA configuration body; the status comes from the path."""
    target_days: int = Field(..., gt=0)
    warning_threshold_percent: float = Field(..., gt=0)
    critical_threshold_percent: float = Field(..., gt=0)
    business_days_only: bool = False
    enabled: bool = True
    notify_at_warning: bool = True
    notify_at_critical: bool = True
    notify_at_breached: bool = True

    def to_domain(self, status: CheckStatus, config_id: Optional[str] = None) -> SLAConfiguration:
        data = self.model_dump()
        if config_id:
            data["id"] = config_id
        return SLAConfiguration(status=status, **data)


class EscalationRuleUpdate(BaseModel):
    """Escalation rule body; the id comes from the path."""
    name: str = Field(..., min_length=1)
    description: str = ""
    status: CheckStatus
    days_threshold: int = Field(..., ge=1)
    escalate_to: List[str] = Field(default_factory=list)
    escalate_to_names: List[str] = Field(default_factory=list)
    notify_original_initiator: bool = True
    priority: EscalationPriority = EscalationPriority.MEDIUM
    enabled: bool = True
    created_by: str = "system"

    def to_domain(self, rule_id: str) -> EscalationRule:
        return EscalationRule(id=rule_id, **self.model_dump())


# ========== Response DTOs ==========

class SLAStatusResponse(BaseModel):
    """SLA clock reading for one entity."""
    entity_id: str
    status: CheckStatus
    classification: SLAStateStr
    monitored: bool
    start_date: datetime
    target_date: Optional[datetime] = None
    days_elapsed: int
    days_remaining: int
    percent_complete: float
    target_days: Optional[int] = None
    business_days_only: bool = False
    breached: bool = False

    @classmethod
    def from_domain(cls, status: SLAStatus) -> "SLAStatusResponse":
        return cls(
            entity_id=status.entity_id,
            status=status.status,
            classification=status.classification.value,
            monitored=status.monitored,
            start_date=status.start_date,
            target_date=status.target_date,
            days_elapsed=status.days_elapsed,
            days_remaining=status.days_remaining,
            percent_complete=round(status.percent_complete, 2),
            target_days=status.target_days,
            business_days_only=status.business_days_only,
            breached=status.breached,
        )


class StatusChangeResponse(BaseModel):
    """One ledger record."""
    id: str
    entity_id: str
    previous_status: Optional[CheckStatus] = None
    new_status: CheckStatus
    changed_by: str
    changed_by_name: str
    timestamp: datetime
    automated: bool
    reason: Optional[str] = None
    notes: Optional[str] = None
    candidate_id: Optional[str] = None
    candidate_name: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_domain(cls, record: StatusChangeRecord) -> "StatusChangeResponse":
        return cls(**record.to_dict())


class EscalationEventResponse(BaseModel):
    """Escalation event with its lifecycle state."""
    id: str
    rule_id: str
    rule_name: str
    entity_id: str
    candidate_name: Optional[str] = None
    status: CheckStatus
    occupancy_started_at: datetime
    days_pending: int
    escalated_to: List[str]
    escalated_at: datetime
    priority: EscalationPriority
    state: EscalationStateStr
    acknowledged: bool
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    resolved: bool
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    notes: Optional[str] = None
    superseded: bool = False
    superseded_by: Optional[str] = None
    superseded_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, event: EscalationEvent) -> "EscalationEventResponse":
        return cls(**event.to_dict())


class TransitionResponse(BaseModel):
    success: bool = True
    record: StatusChangeResponse
    sla: SLAStatusResponse


class EscalationResponse(BaseModel):
    success: bool = True
    escalation: EscalationEventResponse


class EscalationListResponse(BaseModel):
    success: bool = True
    escalations: List[EscalationEventResponse]
    total_count: int


class EntitySLAResponse(BaseModel):
    success: bool = True
    entity_id: str
    sla: SLAStatusResponse
    history: List[StatusChangeResponse]
    escalations: List[EscalationEventResponse]


class StatusHistoryResponse(BaseModel):
    success: bool = True
    records: List[StatusChangeResponse]
    total_count: int


class DashboardResponse(BaseModel):
    """Live SLA overview of all non-terminal entities."""
    success: bool = True
    generated_at: datetime
    counts: Dict[str, int]
    entities: Dict[str, List[SLAStatusResponse]]
    open_escalations: int
    last_sweep: Optional[Dict[str, Any]] = None
    stale: bool = False
    stale_entities: List[str] = Field(default_factory=list)


class StatsResponse(BaseModel):
    success: bool = True
    sla: Dict[str, Any]
    escalations: Dict[str, Any]
    status_history: Dict[str, Any]


class SweepResponse(BaseModel):
    success: bool = True
    report: Dict[str, Any]


class SLAConfigurationListResponse(BaseModel):
    success: bool = True
    sla_configurations: List[SLAConfiguration]


class SLAConfigurationResponse(BaseModel):
    success: bool = True
    sla_configuration: SLAConfiguration


class EscalationRuleListResponse(BaseModel):
    success: bool = True
    escalation_rules: List[EscalationRule]


class EscalationRuleResponse(BaseModel):
    success: bool = True
    escalation_rule: EscalationRule


class MessageResponse(BaseModel):
    success: bool = True
    message: str
