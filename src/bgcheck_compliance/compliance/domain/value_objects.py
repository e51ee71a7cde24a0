"""
Compliance Value Objects
=========================

Immutable value objects and pure calculators for the compliance domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from bgcheck_compliance.config import CheckStatus, EscalationPriority, SLAState
from bgcheck_compliance.core import MisconfiguredSLA
from bgcheck_compliance.compliance.domain.entities import SLAStatus

ONE_DAY = timedelta(days=1)


class BusinessCalendar:
    """
    Business-day-aware date arithmetic.

    Weekends are never business days. ``holidays`` is the extension point for
    organisation-specific closures; it is empty unless configured.
    """

    def __init__(self, holidays: Iterable[date] = ()):
        self._holidays = frozenset(holidays)

    @property
    def holidays(self) -> frozenset:
        return self._holidays

    def is_business_day(self, day: date) -> bool:
        return day.weekday() < 5 and day not in self._holidays

    def _next_business_day(self, day: date) -> date:
        day += ONE_DAY
        while not self.is_business_day(day):
            day += ONE_DAY
        return day

    def _elapsed(self, start: datetime, end: datetime, business_days_only: bool) -> timedelta:
        if end <= start:
            return timedelta(0)
        if not business_days_only:
            return end - start

        total = timedelta(0)
        cursor = start
        while cursor < end:
            next_midnight = datetime.combine(cursor.date() + ONE_DAY, time.min, tzinfo=cursor.tzinfo)
            segment_end = min(next_midnight, end)
            if self.is_business_day(cursor.date()):
                total += segment_end - cursor
            cursor = segment_end
        return total

    def elapsed_days(self, start: datetime, end: datetime, business_days_only: bool) -> float:
        """Fractional days between two instants (0.0 when ``end`` precedes ``start``)."""
        return self._elapsed(start, end, business_days_only) / ONE_DAY

    def days_between(self, start: datetime, end: datetime, business_days_only: bool) -> int:
        """
        Whole days elapsed between two instants.

        Example:
            Friday 09:00 -> Monday 09:00 is 3 calendar days but 1 business day.
        """
        return self._elapsed(start, end, business_days_only) // ONE_DAY

    def add_days(self, start: datetime, days: int, business_days_only: bool) -> datetime:
        """
        Project ``days`` forward from ``start``.

        In business mode the walk skips non-business days; a start that falls
        on a non-business day is moved to the next business day's midnight
        first, so the projection always spans exactly ``days`` business days.
        """
        if not business_days_only:
            return start + timedelta(days=days)

        result = start
        if not self.is_business_day(result.date()):
            result = datetime.combine(
                self._next_business_day(result.date()), time.min, tzinfo=result.tzinfo
            )

        added = 0
        while added < days:
            result += ONE_DAY
            if self.is_business_day(result.date()):
                added += 1
        return result


class SLAConfiguration(BaseModel):
    """
    SLA target for a single monitored status.

    Thresholds are percentages of ``target_days``.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: f"sla-{uuid4().hex[:12]}")
    status: CheckStatus
    target_days: int = Field(gt=0, description="Maximum dwell time in days")
    warning_threshold_percent: float = Field(gt=0, description="Percent of target that raises a warning")
    critical_threshold_percent: float = Field(gt=0, description="Percent of target that is critical")
    business_days_only: bool = False
    enabled: bool = True
    notify_at_warning: bool = True
    notify_at_critical: bool = True
    notify_at_breached: bool = True

    @model_validator(mode="after")
    def validate_thresholds(self) -> "SLAConfiguration":
        if self.warning_threshold_percent >= self.critical_threshold_percent:
            raise ValueError("warning_threshold_percent must be lower than critical_threshold_percent")
        return self

    def should_notify(self, classification: SLAState) -> bool:
        """Whether crossing into ``classification`` requests a notification."""
        return {
            SLAState.WARNING: self.notify_at_warning,
            SLAState.CRITICAL: self.notify_at_critical,
            SLAState.BREACHED: self.notify_at_breached,
        }.get(classification, False)


class EscalationRule(BaseModel):
    """Who gets told once an entity has sat in ``status`` for ``days_threshold`` days."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: f"rule-{uuid4().hex[:12]}")
    name: str = Field(min_length=1)
    description: str = ""
    status: CheckStatus
    days_threshold: int = Field(ge=1, description="Calendar days in status before escalating")
    escalate_to: List[str] = Field(default_factory=list, description="User ids to notify")
    escalate_to_names: List[str] = Field(default_factory=list)
    notify_original_initiator: bool = True
    priority: EscalationPriority = EscalationPriority.MEDIUM
    enabled: bool = True
    created_by: str = "system"

    @model_validator(mode="after")
    def validate_recipients(self) -> "EscalationRule":
        if not self.escalate_to and not self.notify_original_initiator:
            raise ValueError("rule must escalate to at least one user or notify the initiator")
        return self


def default_sla_configurations() -> List[SLAConfiguration]:
    return [
        SLAConfiguration(
            id="sla-pending-consent",
            status=CheckStatus.PENDING_CONSENT,
            target_days=3,
            warning_threshold_percent=70,
            critical_threshold_percent=90,
        ),
        SLAConfiguration(
            id="sla-in-progress",
            status=CheckStatus.IN_PROGRESS,
            target_days=10,
            warning_threshold_percent=75,
            critical_threshold_percent=90,
            business_days_only=True,
        ),
        SLAConfiguration(
            id="sla-issues-found",
            status=CheckStatus.ISSUES_FOUND,
            target_days=2,
            warning_threshold_percent=50,
            critical_threshold_percent=80,
        ),
    ]


def default_escalation_rules() -> List[EscalationRule]:
    return [
        EscalationRule(
            id="rule-consent-5d",
            name="Consent Not Received - 5 Days",
            description="Escalate when consent has not been received for 5 days",
            status=CheckStatus.PENDING_CONSENT,
            days_threshold=5,
            escalate_to=["manager-1"],
            escalate_to_names=["Hiring Manager"],
            priority=EscalationPriority.HIGH,
        ),
        EscalationRule(
            id="rule-in-progress-14d",
            name="In Progress - 14 Days",
            description="Escalate when check has been in progress for 14 days",
            status=CheckStatus.IN_PROGRESS,
            days_threshold=14,
            escalate_to=["manager-1", "hr-director"],
            escalate_to_names=["Hiring Manager", "HR Director"],
            priority=EscalationPriority.MEDIUM,
        ),
        EscalationRule(
            id="rule-issues-3d",
            name="Issues Found - Not Reviewed - 3 Days",
            description="Escalate when issues have not been reviewed for 3 days",
            status=CheckStatus.ISSUES_FOUND,
            days_threshold=3,
            escalate_to=["hr-director"],
            escalate_to_names=["HR Director"],
            priority=EscalationPriority.CRITICAL,
        ),
    ]


class ComplianceConfig(BaseModel):
    """
    Complete compliance configuration snapshot (YAML file contents).

    Consumed read-only by the engine; a new snapshot replaces the old one
    wholesale, so edits only affect evaluations made after the swap.
    """
    model_config = ConfigDict(frozen=True)

    sla_configurations: List[SLAConfiguration] = Field(default_factory=default_sla_configurations)
    escalation_rules: List[EscalationRule] = Field(default_factory=default_escalation_rules)
    holidays: List[date] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_uniqueness(self) -> "ComplianceConfig":
        statuses = [c.status for c in self.sla_configurations]
        if len(statuses) != len(set(statuses)):
            raise ValueError("only one SLA configuration is allowed per status")
        rule_ids = [r.id for r in self.escalation_rules]
        if len(rule_ids) != len(set(rule_ids)):
            raise ValueError("escalation rule ids must be unique")
        return self

    def get_sla_for_status(self, status: CheckStatus) -> Optional[SLAConfiguration]:
        for config in self.sla_configurations:
            if config.status == status:
                return config
        return None

    def get_rule(self, rule_id: str) -> Optional[EscalationRule]:
        for rule in self.escalation_rules:
            if rule.id == rule_id:
                return rule
        return None

    def calendar(self) -> BusinessCalendar:
        return BusinessCalendar(self.holidays)


def parse_compliance_config(data: Optional[dict]) -> ComplianceConfig:
    """
    Validate raw configuration data at the authoring boundary.

    Raises:
        MisconfiguredSLA: if any SLA configuration or rule is invalid
    """
    try:
        return ComplianceConfig.model_validate(data or {})
    except ValidationError as e:
        raise MisconfiguredSLA(
            "Compliance configuration rejected",
            [{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()]
        ) from e


class SLACalculator:
    """
    Pure functions for SLA clock calculations.

    Stateless utility class - every caller passes ``now`` explicitly so the
    same inputs always produce the same classification.
    """

    @staticmethod
    def classify(
        now: datetime,
        target_date: datetime,
        percent_complete: float,
        config: SLAConfiguration
    ) -> SLAState:
        """Breach wins over the percentage thresholds."""
        if now > target_date:
            return SLAState.BREACHED
        if percent_complete >= config.critical_threshold_percent:
            return SLAState.CRITICAL
        if percent_complete >= config.warning_threshold_percent:
            return SLAState.WARNING
        return SLAState.ON_TRACK

    @staticmethod
    def evaluate(
        entity_id: str,
        current_status: CheckStatus,
        since: datetime,
        config: Optional[SLAConfiguration],
        now: datetime,
        calendar: Optional[BusinessCalendar] = None
    ) -> SLAStatus:
        """
        Compute the SLA status of one occupancy.

        Args:
            entity_id: Tracked entity id
            current_status: Status the entity currently occupies
            since: When the entity entered ``current_status``
            config: SLA configuration for the status (None if unconfigured)
            now: Evaluation instant
            calendar: Business calendar (weekends only when omitted)

        Returns:
            SLAStatus, or the not-monitored sentinel when ``config`` is
            missing, disabled or for another status
        """
        if config is None or not config.enabled or config.status != current_status:
            return SLAStatus.not_monitored(entity_id, current_status, since)

        calendar = calendar or BusinessCalendar()
        target_date = calendar.add_days(since, config.target_days, config.business_days_only)
        days_elapsed = calendar.days_between(since, now, config.business_days_only)
        elapsed = calendar.elapsed_days(since, now, config.business_days_only)
        percent_complete = 100 * elapsed / config.target_days

        return SLAStatus(
            entity_id=entity_id,
            status=current_status,
            classification=SLACalculator.classify(now, target_date, percent_complete, config),
            start_date=since,
            target_date=target_date,
            days_elapsed=days_elapsed,
            days_remaining=max(0, config.target_days - days_elapsed),
            percent_complete=percent_complete,
            target_days=config.target_days,
            business_days_only=config.business_days_only,
            evaluated_at=now,
        )
