"""
Tests for the append-only status ledger.
"""

import asyncio
from datetime import timedelta

import pytest

from bgcheck_compliance.compliance.application import StatusHistoryFilter, StatusLedger
from bgcheck_compliance.compliance.domain import Actor
from bgcheck_compliance.compliance.infrastructure import InMemoryStatusLedgerStore
from bgcheck_compliance.config import CheckStatus
from bgcheck_compliance.core import InvalidTransition, UnknownEntity


@pytest.fixture
def ledger(clock):
    return StatusLedger(InMemoryStatusLedgerStore(), clock=clock)


@pytest.mark.asyncio
async def test_first_record_has_no_previous_status(ledger, recruiter, clock):
    record = await ledger.record_transition(
        "check-1", CheckStatus.PENDING_CONSENT, recruiter, candidate_name="Alex Candidate"
    )

    assert record.previous_status is None
    assert record.new_status == CheckStatus.PENDING_CONSENT
    assert record.timestamp == clock.now
    assert await ledger.current_status("check-1") == (CheckStatus.PENDING_CONSENT, clock.now)


@pytest.mark.asyncio
async def test_history_is_append_ordered_with_previous_status(ledger, recruiter, clock):
    await ledger.record_transition("check-1", CheckStatus.PENDING_CONSENT, recruiter)
    clock.advance(days=1)
    await ledger.record_transition("check-1", CheckStatus.IN_PROGRESS, recruiter)
    clock.advance(days=2)
    await ledger.record_transition("check-1", CheckStatus.COMPLETED, recruiter)

    history = await ledger.history("check-1")

    assert [r.new_status for r in history] == [
        CheckStatus.PENDING_CONSENT, CheckStatus.IN_PROGRESS, CheckStatus.COMPLETED
    ]
    assert [r.previous_status for r in history] == [
        None, CheckStatus.PENDING_CONSENT, CheckStatus.IN_PROGRESS
    ]
    assert history[1].candidate_name == history[0].candidate_name


@pytest.mark.asyncio
async def test_same_status_transition_is_rejected(ledger, recruiter):
    await ledger.record_transition("check-1", CheckStatus.IN_PROGRESS, recruiter)

    with pytest.raises(InvalidTransition):
        await ledger.record_transition("check-1", CheckStatus.IN_PROGRESS, recruiter)

    assert len(await ledger.history("check-1")) == 1


@pytest.mark.asyncio
async def test_only_admin_leaves_terminal_status(ledger, recruiter, admin, clock):
    await ledger.record_transition("check-1", CheckStatus.COMPLETED, recruiter)
    clock.advance(hours=1)

    with pytest.raises(InvalidTransition):
        await ledger.record_transition("check-1", CheckStatus.IN_PROGRESS, recruiter)

    record = await ledger.record_transition("check-1", CheckStatus.IN_PROGRESS, admin)
    assert record.previous_status == CheckStatus.COMPLETED


@pytest.mark.asyncio
async def test_colliding_timestamps_stay_strictly_increasing(ledger, recruiter):
    await ledger.record_transition("check-1", CheckStatus.PENDING_CONSENT, recruiter)
    await ledger.record_transition("check-1", CheckStatus.IN_PROGRESS, recruiter)
    await ledger.record_transition("check-1", CheckStatus.ISSUES_FOUND, recruiter)

    stamps = [r.timestamp for r in await ledger.history("check-1")]
    assert stamps == sorted(stamps)
    assert len(set(stamps)) == 3
    assert stamps[1] - stamps[0] == timedelta(microseconds=1)


@pytest.mark.asyncio
async def test_concurrent_transitions_are_never_lost(ledger, recruiter):
    statuses = [CheckStatus.PENDING_CONSENT, CheckStatus.IN_PROGRESS] * 5

    async def push(status):
        try:
            await ledger.record_transition("check-1", status, recruiter)
        except InvalidTransition:
            return False
        return True

    results = await asyncio.gather(*(push(s) for s in statuses))

    history = await ledger.history("check-1")
    assert len(history) == sum(results)
    for before, after in zip(history, history[1:]):
        assert after.previous_status == before.new_status
        assert after.timestamp > before.timestamp


@pytest.mark.asyncio
async def test_unknown_entity(ledger):
    with pytest.raises(UnknownEntity):
        await ledger.current_status("missing")
    with pytest.raises(UnknownEntity):
        await ledger.history("missing")


@pytest.mark.asyncio
async def test_tracked_entities_skip_terminal(ledger, recruiter):
    await ledger.record_transition("check-2", CheckStatus.IN_PROGRESS, recruiter)
    await ledger.record_transition("check-1", CheckStatus.CANCELLED, recruiter)

    active = await ledger.tracked_entities()
    everything = await ledger.tracked_entities(include_terminal=True)

    assert [e.entity_id for e in active] == ["check-2"]
    assert [e.entity_id for e in everything] == ["check-1", "check-2"]


@pytest.mark.asyncio
async def test_filter_export_and_stats(ledger, recruiter, clock):
    system = Actor.system()
    await ledger.record_transition("check-1", CheckStatus.PENDING_CONSENT, recruiter, candidate_id="cand-1")
    clock.advance(days=1)
    await ledger.record_transition("check-1", CheckStatus.IN_PROGRESS, system, reason="Consent received")
    clock.advance(days=1)
    await ledger.record_transition("check-2", CheckStatus.IN_PROGRESS, recruiter, candidate_id="cand-2")

    automated = await ledger.filter_history(StatusHistoryFilter(automated=True))
    touching_consent = await ledger.filter_history(StatusHistoryFilter(status=CheckStatus.PENDING_CONSENT))
    by_candidate = await ledger.filter_history(StatusHistoryFilter(candidate_id="cand-2"))

    assert [r.changed_by for r in automated] == ["system"]
    # matches previous status too
    assert len(touching_consent) == 2
    assert [r.entity_id for r in by_candidate] == ["check-2"]

    csv_text = await ledger.export_csv()
    lines = csv_text.strip().split("\n")
    assert lines[0].startswith("Timestamp,Candidate,Check ID")
    assert len(lines) == 4
    assert "Consent received" in csv_text

    stats = await ledger.stats(clock.now)
    assert stats["total_changes"] == 3
    assert stats["automated_changes"] == 1
    assert stats["manual_changes"] == 2
    assert stats["by_status"] == {"pending-consent": 1, "in-progress": 2}


@pytest.mark.asyncio
async def test_idle_entity_locks_are_released(engine, recruiter):
    lock = engine.locks.lock_for("check-1")
    assert engine.locks.lock_for("check-1") is lock
    assert len(engine.locks) == 1
    del lock

    await engine.record_status_change("check-1", CheckStatus.PENDING_CONSENT, recruiter)
    await engine.record_status_change("check-2", CheckStatus.IN_PROGRESS, recruiter)
    await engine.record_status_change("check-2", CheckStatus.COMPLETED, recruiter)

    assert len(engine.locks) == 0
