"""
Tests for the compliance HTTP API.
"""

from datetime import timedelta

import pytest
import yaml
from fastapi.testclient import TestClient

from bgcheck_compliance.compliance.application import ComplianceEngine
from bgcheck_compliance.compliance.infrastructure import (
    InMemoryEscalationEventStore,
    InMemorySLAAlertStore,
    InMemoryStatusLedgerStore,
)
from bgcheck_compliance.config import Settings
from bgcheck_compliance.main import create_app

from conftest import T0, FakeClock

CONFIG = {
    "sla_configurations": [
        {
            "id": "sla-pending-consent",
            "status": "pending-consent",
            "target_days": 3,
            "warning_threshold_percent": 70,
            "critical_threshold_percent": 90,
        },
    ],
    "escalation_rules": [
        {
            "id": "rule-in-progress-7d",
            "name": "In Progress - 7 Days",
            "status": "in-progress",
            "days_threshold": 7,
            "escalate_to": ["manager-1"],
            "priority": "high",
        },
    ],
}


def _transition(new_status, **extra):
    body = {"new_status": new_status, "actor_id": "recruiter-7", "actor_name": "Dana Recruiter"}
    body.update(extra)
    return body


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "compliance_config.yaml"
    path.write_text(yaml.safe_dump(CONFIG))
    return path


@pytest.fixture
def api(config_path):
    """TestClient whose engine runs on a controllable clock."""
    app_settings = Settings(
        environment="test",
        storage_backend="memory",
        sweep_interval_seconds=0,
        compliance_config_path=config_path,
        notification_webhook_url=None,
    )
    app = create_app(app_settings)
    clock = FakeClock()

    with TestClient(app) as client:
        app.state.engine = ComplianceEngine(
            InMemoryStatusLedgerStore(),
            InMemoryEscalationEventStore(),
            InMemorySLAAlertStore(),
            app.state.config_store,
            app.state.notifications,
            clock=clock,
        )
        yield client, clock


def test_health(api):
    client, _ = api

    response = client.get("/health")

    assert response.status_code == 200
    checks = response.json()["checks"]
    assert checks["compliance_config"] == "loaded (1 SLAs, 1 rules)"
    assert checks["scheduler"] == "stopped"
    assert checks["last_sweep"] == "never"


def test_record_transition(api):
    client, _ = api

    response = client.post(
        "/compliance/entities/check-1/transitions",
        json=_transition("pending-consent", candidate_name="Alex Candidate"),
        headers={"X-Correlation-ID": "corr-123"},
    )

    assert response.status_code == 200
    assert response.headers["X-Correlation-ID"] == "corr-123"
    data = response.json()
    assert data["success"] is True
    assert data["record"]["previous_status"] is None
    assert data["record"]["new_status"] == "pending-consent"
    assert data["sla"]["classification"] == "on-track"
    assert data["sla"]["target_days"] == 3


def test_rejected_transitions(api):
    client, _ = api
    client.post("/compliance/entities/check-1/transitions", json=_transition("completed"))

    same = client.post("/compliance/entities/check-1/transitions", json=_transition("completed"))
    leave_terminal = client.post("/compliance/entities/check-1/transitions", json=_transition("in-progress"))
    as_admin = client.post(
        "/compliance/entities/check-1/transitions", json=_transition("in-progress", is_admin=True)
    )

    assert same.status_code == 409
    assert same.json()["success"] is False
    assert same.json()["error"] == "InvalidTransition"
    assert leave_terminal.status_code == 409
    assert as_admin.status_code == 200


def test_malformed_request(api):
    client, _ = api

    response = client.post("/compliance/entities/check-1/transitions", json={"new_status": "lost"})

    assert response.status_code == 422
    assert response.json()["success"] is False
    assert response.json()["details"]["errors"]


def test_unknown_entity_and_event(api):
    client, _ = api

    assert client.get("/compliance/entities/missing/sla").status_code == 404
    response = client.post("/compliance/escalations/esc-missing/acknowledge", json={"by": "manager-1"})
    assert response.status_code == 404
    assert response.json()["error"] == "UnknownEvent"


def test_escalation_lifecycle(api):
    client, clock = api
    client.post("/compliance/entities/check-1/transitions", json=_transition("in-progress"))

    clock.set(T0 + timedelta(days=7))
    sweep = client.post("/compliance/sweep").json()
    assert sweep["success"] is True
    assert sweep["report"]["escalations_created"] == 1

    opened = client.get("/compliance/escalations", params={"status": "open"}).json()
    assert opened["total_count"] == 1
    event = opened["escalations"][0]
    assert event["escalated_to"] == ["manager-1", "recruiter-7"]
    assert event["priority"] == "high"

    acknowledged = client.post(f"/compliance/escalations/{event['id']}/acknowledge", json={"by": "manager-1"})
    assert acknowledged.json()["escalation"]["state"] == "acknowledged"
    again = client.post(f"/compliance/escalations/{event['id']}/acknowledge", json={"by": "manager-1"})
    assert again.status_code == 409
    assert again.json()["error"] == "AlreadyAcknowledged"

    resolved = client.post(
        f"/compliance/escalations/{event['id']}/resolve", json={"by": "manager-1", "notes": "Vendor chased"}
    )
    assert resolved.json()["escalation"]["notes"] == "Vendor chased"
    assert client.get("/compliance/escalations", params={"status": "resolved"}).json()["total_count"] == 1

    reopened = client.post(f"/compliance/escalations/{event['id']}/reopen", json={"by": "admin-1"})
    assert reopened.json()["escalation"]["superseded"] is True
    assert client.post("/compliance/sweep").json()["report"]["escalations_created"] == 1

    detail = client.get("/compliance/entities/check-1/sla").json()
    assert len(detail["escalations"]) == 2
    assert detail["history"][0]["new_status"] == "in-progress"


def test_dashboard_and_stats(api):
    client, clock = api
    client.post("/compliance/entities/check-1/transitions", json=_transition("pending-consent"))
    client.post("/compliance/entities/check-2/transitions", json=_transition("in-progress"))
    clock.set(T0 + timedelta(days=2.5))

    dashboard = client.get("/compliance/dashboard").json()
    stats = client.get("/compliance/stats").json()

    assert dashboard["counts"]["warning"] == 1
    assert dashboard["counts"]["not-monitored"] == 1
    assert dashboard["entities"]["warning"][0]["entity_id"] == "check-1"
    assert dashboard["stale"] is False
    assert stats["sla"]["total"] == 2
    assert stats["status_history"]["total_changes"] == 2


def test_status_history_and_export(api):
    client, clock = api
    client.post("/compliance/entities/check-1/transitions", json=_transition("pending-consent"))
    clock.advance(days=1)
    client.post(
        "/compliance/entities/check-1/transitions",
        json=_transition("in-progress", actor_id="system", actor_name="System", automated=True),
    )

    history = client.get("/compliance/status-history", params={"automated": "true"}).json()
    export = client.get("/compliance/status-history/export", params={"entity_id": "check-1"})

    assert history["total_count"] == 1
    assert history["records"][0]["changed_by"] == "system"
    assert export.status_code == 200
    assert export.headers["content-type"].startswith("text/csv")
    assert "status-history.csv" in export.headers["content-disposition"]
    assert export.text.startswith("Timestamp,Candidate,Check ID")
    assert len(export.text.strip().splitlines()) == 3


def test_sla_configuration_endpoints(api, config_path):
    client, _ = api

    saved = client.put(
        "/compliance/config/sla/in-progress",
        json={
            "target_days": 10,
            "warning_threshold_percent": 75,
            "critical_threshold_percent": 90,
            "business_days_only": True,
        },
    )
    invalid = client.put(
        "/compliance/config/sla/in-progress",
        json={"target_days": 10, "warning_threshold_percent": 95, "critical_threshold_percent": 90},
    )

    assert saved.status_code == 200
    assert client.get("/compliance/config/sla/in-progress").json()["sla_configuration"]["target_days"] == 10
    assert invalid.status_code == 400
    assert invalid.json()["error"] == "MisconfiguredSLA"
    assert client.get("/compliance/config/sla/completed").status_code == 404
    assert len(client.get("/compliance/config/sla").json()["sla_configurations"]) == 2

    written = yaml.safe_load(config_path.read_text())
    assert {c["status"] for c in written["sla_configurations"]} == {"pending-consent", "in-progress"}


def test_escalation_rule_endpoints(api):
    client, _ = api
    rule = {
        "name": "Issues Found - 3 Days",
        "status": "issues-found",
        "days_threshold": 3,
        "escalate_to": ["hr-director"],
        "priority": "critical",
    }

    assert client.put("/compliance/config/escalation-rules/rule-issues-3d", json=rule).status_code == 200
    assert client.get("/compliance/config/escalation-rules/rule-issues-3d").json()["escalation_rule"]["priority"] == "critical"
    assert len(client.get("/compliance/config/escalation-rules").json()["escalation_rules"]) == 2

    nobody = dict(rule, escalate_to=[], notify_original_initiator=False)
    assert client.put("/compliance/config/escalation-rules/rule-issues-3d", json=nobody).status_code == 400

    assert client.delete("/compliance/config/escalation-rules/rule-issues-3d").status_code == 200
    assert client.get("/compliance/config/escalation-rules/rule-issues-3d").status_code == 404
    assert client.delete("/compliance/config/escalation-rules/rule-issues-3d").status_code == 404
