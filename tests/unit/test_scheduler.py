"""
Tests for the periodic compliance sweep scheduler.
"""

import pytest

from bgcheck_compliance.compliance.application import SweepReport
from bgcheck_compliance.compliance.infrastructure import ComplianceScheduler
from bgcheck_compliance.config import CheckStatus


@pytest.mark.asyncio
async def test_start_run_and_stop(engine, recruiter):
    await engine.record_status_change("check-1", CheckStatus.IN_PROGRESS, recruiter)
    scheduler = ComplianceScheduler(engine.sweep, interval_seconds=3600)

    await scheduler.start()
    assert scheduler.is_running

    report = await scheduler.run_sweep()
    assert isinstance(report, SweepReport)
    assert report.entities_evaluated == 1

    await scheduler.stop(timeout_seconds=1.0)
    assert not scheduler.is_running
    assert await scheduler.run_sweep() is None


@pytest.mark.asyncio
async def test_failed_sweep_is_logged_not_raised(engine, monkeypatch):
    async def broken(stop_event=None):
        raise RuntimeError("ledger unavailable")

    monkeypatch.setattr(engine.sweep, "run_once", broken)
    scheduler = ComplianceScheduler(engine.sweep, interval_seconds=3600)

    assert await scheduler.run_sweep() is None


@pytest.mark.asyncio
async def test_stop_without_start_is_a_no_op(engine):
    scheduler = ComplianceScheduler(engine.sweep)

    await scheduler.stop()

    assert not scheduler.is_running
