"""
Tests for the sweep scheduler.
"""

import asyncio

import pytest

from padel_league.services.scheduler import LeagueScheduler, build_default_scheduler


class CountingJob:
    def __init__(self, fail=False):
        self.calls = 0
        self.sinks = []
        self.fail = fail

    async def __call__(self, sink=None):
        self.calls += 1
        self.sinks.append(sink)
        if self.fail:
            raise RuntimeError("sweep exploded")
        return {"calls": self.calls}


def test_register_rejects_duplicates_and_bad_intervals():
    scheduler = LeagueScheduler()
    scheduler.register("auto_confirm", CountingJob(), 60)

    with pytest.raises(ValueError):
        scheduler.register("auto_confirm", CountingJob(), 60)
    with pytest.raises(ValueError):
        scheduler.register("other", CountingJob(), 0)


def test_default_scheduler_registers_every_sweep():
    scheduler = build_default_scheduler()

    assert {job.name for job in scheduler.jobs} == {
        "auto_confirm",
        "queued_retry",
        "cooldown_expiry",
        "inactivity",
        "return_reminders",
        "notification_redelivery",
    }
    assert not scheduler.running


@pytest.mark.asyncio
async def test_run_once_passes_sink_and_returns_summary(sink):
    job = CountingJob()
    scheduler = LeagueScheduler(sink=sink)
    scheduler.register("auto_confirm", job, 60)

    summary = await scheduler.run_once("auto_confirm")

    assert summary == {"calls": 1}
    assert job.sinks == [sink]
    assert scheduler.jobs[0].runs == 1


@pytest.mark.asyncio
async def test_failing_job_is_counted_not_raised():
    scheduler = LeagueScheduler()
    scheduler.register("broken", CountingJob(fail=True), 60)

    assert await scheduler.run_once("broken") is None
    assert scheduler.jobs[0].failures == 1


@pytest.mark.asyncio
async def test_jobs_repeat_until_stopped():
    fast = CountingJob()
    broken = CountingJob(fail=True)
    deferred = CountingJob()
    scheduler = LeagueScheduler()
    scheduler.register("fast", fast, 0.01)
    scheduler.register("broken", broken, 0.01)
    scheduler.register("deferred", deferred, 60, run_on_start=False)

    scheduler.start()
    assert scheduler.running
    await asyncio.sleep(0.1)
    await scheduler.stop()

    assert not scheduler.running
    assert fast.calls >= 2
    # A failing job keeps its timer
    assert broken.calls >= 2
    assert deferred.calls == 0

    settled = fast.calls
    await asyncio.sleep(0.05)
    assert fast.calls == settled
