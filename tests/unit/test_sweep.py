"""
Tests for the compliance sweep and dashboard queries.
"""

import asyncio
from datetime import timedelta

import pytest

from bgcheck_compliance.compliance.domain import Actor
from bgcheck_compliance.config import CheckStatus, NotificationKind, SLAState

from conftest import T0


def _fail_for(engine, monkeypatch, entity_id):
    original = engine.sla_clock.evaluate_entity

    def flaky(entity, now=None, config=None):
        if entity.entity_id == entity_id:
            raise RuntimeError("calendar backend unavailable")
        return original(entity, now, config)

    monkeypatch.setattr(engine.sla_clock, "evaluate_entity", flaky)


@pytest.mark.asyncio
async def test_sla_alert_once_per_level(engine, clock, recruiter, publisher):
    await engine.record_status_change(
        "check-1", CheckStatus.PENDING_CONSENT, recruiter, candidate_name="Alex Candidate"
    )

    clock.set(T0 + timedelta(days=2.5))
    assert (await engine.sweep.run_once()).sla_alerts_created == 1
    assert (await engine.sweep.run_once()).sla_alerts_created == 0

    clock.set(T0 + timedelta(days=2.8))
    assert (await engine.sweep.run_once()).sla_alerts_created == 1

    clock.set(T0 + timedelta(days=4))
    assert (await engine.sweep.run_once()).sla_alerts_created == 1
    assert (await engine.sweep.run_once()).sla_alerts_created == 0

    assert [r.kind for r in publisher.requests] == [
        NotificationKind.SLA_WARNING,
        NotificationKind.SLA_CRITICAL,
        NotificationKind.SLA_BREACHED,
    ]
    assert publisher.requests[0].recipients == ["recruiter-7"]
    assert publisher.requests[0].title == "SLA Warning: Alex Candidate"
    assert publisher.requests[2].title == "SLA Breached: Alex Candidate"


@pytest.mark.asyncio
async def test_skipped_level_is_not_backfilled(engine, clock, recruiter, publisher):
    await engine.record_status_change("check-1", CheckStatus.PENDING_CONSENT, recruiter)

    clock.set(T0 + timedelta(days=5))
    await engine.sweep.run_once()

    assert [r.kind for r in publisher.requests] == [NotificationKind.SLA_BREACHED]


@pytest.mark.asyncio
async def test_system_initiated_alert_has_no_recipients(engine, clock, publisher):
    await engine.record_status_change("check-1", CheckStatus.PENDING_CONSENT, Actor.system())

    clock.set(T0 + timedelta(days=2.5))
    report = await engine.sweep.run_once()

    assert report.sla_alerts_created == 1
    assert publisher.requests == []


@pytest.mark.asyncio
async def test_one_failing_entity_does_not_abort_the_sweep(engine, clock, recruiter, monkeypatch):
    await engine.record_status_change("check-1", CheckStatus.IN_PROGRESS, recruiter)
    await engine.record_status_change("check-2", CheckStatus.IN_PROGRESS, recruiter)
    clock.advance(days=1)
    assert (await engine.sweep.run_once()).succeeded

    _fail_for(engine, monkeypatch, "check-2")
    report = await engine.sweep.run_once()

    assert report.entities_evaluated == 1
    assert list(report.failures) == ["check-2"]
    assert not report.succeeded

    dashboard = await engine.query.dashboard()
    assert dashboard["stale"] is True
    assert dashboard["stale_entities"] == ["check-2"]
    # last-known-good reading stands in for the failed one
    assert dashboard["counts"][SLAState.ON_TRACK.value] == 2


@pytest.mark.asyncio
async def test_failed_post_transition_evaluation_keeps_the_record(engine, recruiter, monkeypatch):
    _fail_for(engine, monkeypatch, "check-1")

    record = await engine.record_status_change("check-1", CheckStatus.IN_PROGRESS, recruiter)

    assert record.new_status == CheckStatus.IN_PROGRESS
    assert len(await engine.ledger.history("check-1")) == 1


@pytest.mark.asyncio
async def test_stop_event_set_before_start(engine, recruiter):
    await engine.record_status_change("check-1", CheckStatus.IN_PROGRESS, recruiter)
    stop = asyncio.Event()
    stop.set()

    report = await engine.sweep.run_once(stop)

    assert report.interrupted
    assert report.entities_evaluated == 0
    assert not report.succeeded


@pytest.mark.asyncio
async def test_stop_event_lets_in_flight_entity_finish(engine, recruiter, monkeypatch):
    for entity_id in ("check-1", "check-2", "check-3"):
        await engine.record_status_change(entity_id, CheckStatus.IN_PROGRESS, recruiter)

    stop = asyncio.Event()
    original = engine.sweep.evaluate_entity

    async def evaluate_then_stop(entity_id):
        outcome = await original(entity_id)
        stop.set()
        return outcome

    monkeypatch.setattr(engine.sweep, "evaluate_entity", evaluate_then_stop)
    report = await engine.sweep.run_once(stop)

    assert report.interrupted
    assert report.entities_evaluated == 1
    assert engine.state.last_report is report


@pytest.mark.asyncio
async def test_terminal_entities_leave_the_dashboard(engine, clock, recruiter):
    await engine.record_status_change("check-1", CheckStatus.IN_PROGRESS, recruiter)
    clock.advance(hours=1)
    await engine.record_status_change("check-1", CheckStatus.COMPLETED, recruiter)

    report = await engine.sweep.run_once()
    dashboard = await engine.query.dashboard()

    assert report.entities_evaluated == 0
    assert engine.state.snapshot("check-1") is None
    assert sum(dashboard["counts"].values()) == 0


@pytest.mark.asyncio
async def test_dashboard_buckets_sorted_by_progress(engine, clock, recruiter):
    await engine.record_status_change("check-1", CheckStatus.PENDING_CONSENT, recruiter)
    await engine.record_status_change("check-3", CheckStatus.IN_PROGRESS, recruiter)
    clock.set(T0 + timedelta(days=1))
    await engine.record_status_change("check-2", CheckStatus.PENDING_CONSENT, recruiter)
    await engine.record_status_change("check-4", CheckStatus.ISSUES_FOUND, recruiter)
    clock.set(T0 + timedelta(days=2.8))

    dashboard = await engine.query.dashboard()

    assert [e["entity_id"] for e in dashboard["entities"]["critical"]] == ["check-1"]
    assert [e["entity_id"] for e in dashboard["entities"]["on-track"]] == ["check-2", "check-3"]
    assert [e["entity_id"] for e in dashboard["entities"]["not-monitored"]] == ["check-4"]
    assert dashboard["open_escalations"] == 0
    assert dashboard["last_sweep"] is None
    assert dashboard["stale"] is False


@pytest.mark.asyncio
async def test_stats_and_entity_sla(engine, clock, recruiter):
    await engine.record_status_change("check-1", CheckStatus.IN_PROGRESS, recruiter)
    clock.set(T0 + timedelta(days=7))
    await engine.sweep.run_once()
    [event] = await engine.query.escalations()
    clock.advance(hours=6)
    await engine.dispatcher.resolve(event.id, by="manager-1")

    stats = await engine.query.stats()
    detail = await engine.query.entity_sla("check-1")

    assert stats["escalations"]["total"] == 1
    assert stats["escalations"]["resolved"] == 1
    assert stats["escalations"]["active"] == 0
    assert stats["escalations"]["average_resolution_hours"] == 6.0
    assert stats["sla"]["total"] == 1
    assert stats["status_history"]["total_changes"] == 1

    assert detail["sla"]["status"] == "in-progress"
    assert len(detail["history"]) == 1
    assert detail["escalations"][0]["state"] == "resolved"


@pytest.mark.asyncio
async def test_concurrent_sweeps_escalate_once(engine, clock, recruiter, publisher):
    await engine.record_status_change("check-1", CheckStatus.IN_PROGRESS, recruiter)
    clock.set(T0 + timedelta(days=8))

    reports = await asyncio.gather(*(engine.sweep.run_once() for _ in range(5)))

    assert sorted(r.escalations_created for r in reports) == [0, 0, 0, 0, 1]
    escalations = [r for r in publisher.requests if r.kind == NotificationKind.ESCALATION]
    assert len(escalations) == 1
