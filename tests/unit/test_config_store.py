"""
Tests for compliance configuration validation and the YAML-backed store.
"""

import threading

import pytest
import yaml

from bgcheck_compliance.compliance.domain import (
    EscalationRule,
    SLAConfiguration,
    parse_compliance_config,
)
from bgcheck_compliance.compliance.infrastructure import YAMLConfigStore
from bgcheck_compliance.config import CheckStatus, EscalationPriority
from bgcheck_compliance.core import MisconfiguredSLA, UnknownRule

CONFIG_YAML = """
sla_configurations:
  - id: sla-pending-consent
    status: pending-consent
    target_days: 3
    warning_threshold_percent: 70
    critical_threshold_percent: 90
escalation_rules:
  - id: rule-consent-5d
    name: Consent Not Received - 5 Days
    status: pending-consent
    days_threshold: 5
    escalate_to: [manager-1]
    priority: high
holidays:
  - 2024-12-25
"""

INVALID_YAML = """
sla_configurations:
  - status: pending-consent
    target_days: 3
    warning_threshold_percent: 95
    critical_threshold_percent: 90
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "compliance_config.yaml"
    path.write_text(CONFIG_YAML)
    return path


def test_load_reads_file(config_file):
    store = YAMLConfigStore(config_file)

    config = store.load()

    assert [c.status for c in config.sla_configurations] == [CheckStatus.PENDING_CONSENT]
    assert config.get_rule("rule-consent-5d").priority == EscalationPriority.HIGH
    assert config.get_sla_for_status(CheckStatus.IN_PROGRESS) is None
    assert len(config.holidays) == 1
    assert store.get_config() is config


def test_missing_file_falls_back_to_defaults(tmp_path):
    store = YAMLConfigStore(tmp_path / "absent.yaml")

    config = store.load()

    assert {c.status for c in config.sla_configurations} == {
        CheckStatus.PENDING_CONSENT, CheckStatus.IN_PROGRESS, CheckStatus.ISSUES_FOUND
    }
    assert len(config.escalation_rules) == 3


def test_invalid_file_is_rejected_on_load(tmp_path):
    path = tmp_path / "compliance_config.yaml"
    path.write_text(INVALID_YAML)

    with pytest.raises(MisconfiguredSLA) as exc_info:
        YAMLConfigStore(path).load()

    assert exc_info.value.details["errors"]


def test_invalid_reload_keeps_previous_configuration(config_file):
    store = YAMLConfigStore(config_file)
    previous = store.load()

    config_file.write_text(INVALID_YAML)
    assert store.reload() is False
    assert store.get_config() is previous

    config_file.write_text("sla_configurations: [not: [valid")
    assert store.reload() is False
    assert store.get_config() is previous

    config_file.write_text(CONFIG_YAML.replace("target_days: 3", "target_days: 4"))
    assert store.reload() is True
    assert store.get_config().get_sla_for_status(CheckStatus.PENDING_CONSENT).target_days == 4


def test_edits_are_written_back(config_file):
    store = YAMLConfigStore(config_file)
    store.load()

    store.save_sla_configuration(SLAConfiguration(
        status=CheckStatus.PENDING_CONSENT,
        target_days=5,
        warning_threshold_percent=60,
        critical_threshold_percent=80,
    ))
    store.save_escalation_rule(EscalationRule(
        id="rule-issues-3d",
        name="Issues Found - Not Reviewed - 3 Days",
        status=CheckStatus.ISSUES_FOUND,
        days_threshold=3,
        escalate_to=["hr-director"],
    ))
    store.delete_escalation_rule("rule-consent-5d")

    written = yaml.safe_load(config_file.read_text())
    assert [c["target_days"] for c in written["sla_configurations"]] == [5]
    assert [r["id"] for r in written["escalation_rules"]] == ["rule-issues-3d"]
    assert written["escalation_rules"][0]["status"] == "issues-found"

    reloaded = YAMLConfigStore(config_file)
    assert reloaded.load().get_rule("rule-issues-3d") is not None


def test_save_rule_replaces_by_id(config_file):
    store = YAMLConfigStore(config_file)
    rule = store.load().get_rule("rule-consent-5d")

    store.save_escalation_rule(rule.model_copy(update={"days_threshold": 6}))

    assert [r.days_threshold for r in store.get_config().escalation_rules] == [6]


def test_reload_waits_for_in_flight_edit(config_file, monkeypatch):
    store = YAMLConfigStore(config_file)
    store.load()
    write_file = store._persist
    reloader = threading.Thread(target=store.reload)
    blocked = []

    def write_while_reloading():
        reloader.start()
        reloader.join(timeout=0.2)
        blocked.append(reloader.is_alive())
        write_file()

    monkeypatch.setattr(store, "_persist", write_while_reloading)
    store.save_escalation_rule(EscalationRule(
        id="rule-issues-3d",
        name="Issues Found - Not Reviewed - 3 Days",
        status=CheckStatus.ISSUES_FOUND,
        days_threshold=3,
        escalate_to=["hr-director"],
    ))
    reloader.join(timeout=5)

    assert blocked == [True]
    assert store.get_config().get_rule("rule-issues-3d") is not None
    assert store.get_config().get_rule("rule-consent-5d") is not None


def test_delete_unknown_rule(config_file):
    store = YAMLConfigStore(config_file)
    store.load()

    with pytest.raises(UnknownRule):
        store.delete_escalation_rule("rule-missing")


@pytest.mark.parametrize(
    "data",
    [
        {"sla_configurations": [
            {"status": "in-progress", "target_days": 10, "warning_threshold_percent": 90,
             "critical_threshold_percent": 90},
        ]},
        {"sla_configurations": [
            {"status": "in-progress", "target_days": 0, "warning_threshold_percent": 50,
             "critical_threshold_percent": 90},
        ]},
        {"sla_configurations": [
            {"status": "in-progress", "target_days": 10, "warning_threshold_percent": 50,
             "critical_threshold_percent": 90},
            {"status": "in-progress", "target_days": 5, "warning_threshold_percent": 50,
             "critical_threshold_percent": 90},
        ]},
        {"escalation_rules": [
            {"name": "Nobody", "status": "in-progress", "days_threshold": 3,
             "escalate_to": [], "notify_original_initiator": False},
        ]},
        {"escalation_rules": [
            {"id": "dup", "name": "A", "status": "in-progress", "days_threshold": 3, "escalate_to": ["a"]},
            {"id": "dup", "name": "B", "status": "issues-found", "days_threshold": 3, "escalate_to": ["b"]},
        ]},
    ],
    ids=["warning-not-below-critical", "zero-target", "duplicate-status", "no-recipients", "duplicate-rule-id"],
)
def test_invalid_configuration_is_rejected(data):
    with pytest.raises(MisconfiguredSLA):
        parse_compliance_config(data)
