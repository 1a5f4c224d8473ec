"""
League scheduler: owns the timer-driven sweep jobs.

One asyncio task per registered job. Each task runs its job, then waits for
the job's interval or the stop signal, whichever comes first. A job that
raises is logged and simply runs again on its next tick.

Constructed once in the application lifespan; nothing here is a module-level
singleton.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from padel_league.services import sweep_service
from padel_league.services.websocket_manager import NotificationSink
from padel_league.utils.constants import (
    AUTO_CONFIRM_INTERVAL_SECONDS,
    COOLDOWN_EXPIRY_INTERVAL_SECONDS,
    INACTIVITY_INTERVAL_SECONDS,
    NOTIFICATION_REDELIVERY_INTERVAL_SECONDS,
    QUEUED_RETRY_INTERVAL_SECONDS,
    RETURN_REMINDER_INTERVAL_SECONDS,
)

logger = logging.getLogger(__name__)

SweepJob = Callable[..., Awaitable[Any]]


@dataclass
class ScheduledJob:
    name: str
    func: SweepJob
    interval_seconds: float
    run_on_start: bool = True
    runs: int = 0
    failures: int = 0
    task: Optional[asyncio.Task] = field(default=None, repr=False)


class LeagueScheduler:
    """Runs registered sweep jobs on independent timers."""

    def __init__(self, sink: Optional[NotificationSink] = None):
        self._sink = sink
        self._jobs: Dict[str, ScheduledJob] = {}
        self._stop_event = asyncio.Event()

    @property
    def jobs(self) -> List[ScheduledJob]:
        return list(self._jobs.values())

    @property
    def running(self) -> bool:
        return any(job.task is not None and not job.task.done() for job in self._jobs.values())

    def register(
        self, name: str, func: SweepJob, interval_seconds: float, run_on_start: bool = True
    ) -> ScheduledJob:
        """Add a job. Registering while running takes effect on the next start()."""
        if name in self._jobs:
            raise ValueError(f"Job {name!r} is already registered")
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        job = ScheduledJob(name=name, func=func, interval_seconds=interval_seconds, run_on_start=run_on_start)
        self._jobs[name] = job
        return job

    def start(self) -> None:
        """Start a worker task for every registered job that is not already running."""
        self._stop_event.clear()
        for job in self._jobs.values():
            if job.task is None or job.task.done():
                job.task = asyncio.create_task(self._poll_loop(job), name=f"sweep:{job.name}")
        logger.info(f"League scheduler started with jobs: {', '.join(self._jobs) or 'none'}")

    async def stop(self) -> None:
        """Signal every worker to stop and wait for them to finish."""
        self._stop_event.set()
        tasks = [job.task for job in self._jobs.values() if job.task is not None and not job.task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("League scheduler stopped")

    async def run_once(self, name: str) -> Any:
        """Run one job immediately, outside its timer."""
        job = self._jobs[name]
        return await self._run_job(job)

    async def _run_job(self, job: ScheduledJob) -> Any:
        job.runs += 1
        try:
            return await job.func(sink=self._sink)
        except Exception as e:
            job.failures += 1
            logger.error(f"Error in sweep job {job.name}: {e}", exc_info=True)
            return None

    async def _poll_loop(self, job: ScheduledJob) -> None:
        """Run the job, then wait for its interval or the stop signal. Repeats until stopped."""
        first = True
        while not self._stop_event.is_set():
            if not first or job.run_on_start:
                await self._run_job(job)
            first = False

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=job.interval_seconds)
                break
            except asyncio.TimeoutError:
                pass


def build_default_scheduler(sink: Optional[NotificationSink] = None) -> LeagueScheduler:
    """Scheduler with every league sweep registered at its production interval."""
    scheduler = LeagueScheduler(sink=sink)
    scheduler.register("auto_confirm", sweep_service.auto_confirm_matches, AUTO_CONFIRM_INTERVAL_SECONDS)
    scheduler.register("queued_retry", sweep_service.retry_queued_teams, QUEUED_RETRY_INTERVAL_SECONDS)
    scheduler.register("cooldown_expiry", sweep_service.expire_cooldowns, COOLDOWN_EXPIRY_INTERVAL_SECONDS)
    scheduler.register("inactivity", sweep_service.detect_inactive_teams, INACTIVITY_INTERVAL_SECONDS)
    scheduler.register("return_reminders", sweep_service.send_return_reminders, RETURN_REMINDER_INTERVAL_SECONDS)
    scheduler.register(
        "notification_redelivery",
        sweep_service.redeliver_notifications,
        NOTIFICATION_REDELIVERY_INTERVAL_SECONDS,
    )
    return scheduler
