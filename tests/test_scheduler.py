"""Tests for the monitor scheduler."""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from staywatch.db.models import Fingerprint
from staywatch.jobs.queues import DEAL_QUEUE, MONITOR_QUEUE
from staywatch.jobs.scheduler import MonitorScheduler, SchedulerState, find_due_fingerprints, is_due
from tests.factories import make_fingerprint

NOW = datetime(2024, 3, 1, 9, 15)


async def _seed(session, profile):
    """Fingerprints: never run, recently run, overdue and disabled."""
    fingerprints = [
        make_fingerprint(profile, "haven", last_scheduled_at=None),
        make_fingerprint(profile, "butlins", last_scheduled_at=NOW - timedelta(hours=2)),
        make_fingerprint(profile, "parkdean", last_scheduled_at=NOW - timedelta(hours=49)),
        make_fingerprint(profile, "awayresorts", enabled=False),
    ]
    session.add_all(fingerprints)
    await session.commit()
    return fingerprints


def test_is_due():
    fingerprint = Fingerprint(enabled=True, check_frequency_hours=48, last_scheduled_at=None)
    assert is_due(fingerprint, NOW)

    fingerprint.last_scheduled_at = NOW - timedelta(hours=47)
    assert not is_due(fingerprint, NOW)

    fingerprint.last_scheduled_at = NOW - timedelta(hours=48, minutes=1)
    assert is_due(fingerprint, NOW)

    fingerprint.enabled = False
    assert not is_due(fingerprint, NOW)


@pytest.mark.asyncio
async def test_find_due_fingerprints(db_session, profile):
    await _seed(db_session, profile)

    due = await find_due_fingerprints(db_session, NOW)

    assert sorted(fp.provider_code for fp in due) == ["haven", "parkdean"]


@pytest.mark.asyncio
async def test_find_due_uses_each_fingerprint_frequency(db_session, profile):
    db_session.add_all(
        [
            make_fingerprint(profile, "butlins", check_frequency_hours=1, last_scheduled_at=NOW - timedelta(hours=2)),
            make_fingerprint(profile, "haven", check_frequency_hours=48, last_scheduled_at=NOW - timedelta(hours=2)),
            make_fingerprint(profile, "parkdean", check_frequency_hours=0, last_scheduled_at=NOW - timedelta(hours=49)),
            make_fingerprint(profile, "hoseasons", check_frequency_hours=0, last_scheduled_at=NOW - timedelta(hours=3)),
        ]
    )
    await db_session.commit()

    due = await find_due_fingerprints(db_session, NOW)

    # zero falls back to the configured default of 48 hours
    assert sorted(fp.provider_code for fp in due) == ["butlins", "parkdean"]


@pytest.mark.asyncio
async def test_run_check_enqueues_due_and_deal_scan(db_session, profile, queues, backend, session_factory):
    seeded = await _seed(db_session, profile)

    enqueued = await MonitorScheduler(queues, session_factory).run_check(now=NOW)

    assert enqueued == 2
    monitor_ids = {job.payload["fingerprint_id"] for job in backend.pending(MONITOR_QUEUE)}
    assert monitor_ids == {seeded[0].id, seeded[2].id}
    assert len(backend.pending(DEAL_QUEUE)) == 1

    async with session_factory() as session:
        result = await session.execute(select(Fingerprint).where(Fingerprint.id == seeded[0].id))
        assert result.scalar_one().last_scheduled_at == NOW


@pytest.mark.asyncio
async def test_rerun_within_hour_enqueues_nothing(db_session, profile, queues, backend, session_factory):
    await _seed(db_session, profile)
    scheduler = MonitorScheduler(queues, session_factory)

    await scheduler.run_check(now=NOW)
    second = await scheduler.run_check(now=NOW + timedelta(minutes=20))

    assert second == 0
    assert len(backend.pending(MONITOR_QUEUE)) == 2
    assert len(backend.pending(DEAL_QUEUE)) == 1


@pytest.mark.asyncio
async def test_skips_when_already_running(queues, session_factory):
    scheduler = MonitorScheduler(queues, session_factory)
    scheduler.state = SchedulerState.RUNNING

    assert await scheduler.run_check(now=NOW) == 0


@pytest.mark.asyncio
async def test_failed_cycle_is_contained(db_session, profile, session_factory):
    await _seed(db_session, profile)
    queues = AsyncMock()
    queues.enqueue_monitor.side_effect = ConnectionError("redis unavailable")
    scheduler = MonitorScheduler(queues, session_factory)

    assert await scheduler.run_check(now=NOW) == 0
    assert scheduler.state == SchedulerState.IDLE

    queues.enqueue_monitor.side_effect = None
    queues.enqueue_monitor.return_value = True
    assert await scheduler.run_check(now=NOW) == 2
