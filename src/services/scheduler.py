"""In-process job scheduler.

Two kinds of job:

* daily jobs run at a fixed UTC hour, checked by one coarse tick task;
* interval jobs run once on registration and then every ``interval_seconds``
  on their own task.

Jobs are registered from code at startup and are not persisted. A failing job
is logged and never stops the scheduler or other jobs.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

JobFn = Callable[[], Awaitable[object]]

DAY = timedelta(hours=24)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def next_run_time_for_hour(hour_utc: int, now: datetime) -> datetime:
    """Today at ``hour_utc``:00 UTC, or tomorrow if that moment has passed."""
    candidate = now.astimezone(timezone.utc).replace(hour=hour_utc, minute=0, second=0, microsecond=0)
    if candidate <= now:
        candidate += DAY
    return candidate


@dataclass
class ScheduledJob:
    name: str
    fn: JobFn
    hour_utc: int
    next_run_time: datetime


@dataclass
class IntervalJob:
    name: str
    fn: JobFn
    interval_seconds: float
    task: asyncio.Task | None = field(default=None, repr=False)


class Scheduler:
    def __init__(
        self,
        tick_seconds: float = 60.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._tick_seconds = tick_seconds
        self._clock = clock
        self._jobs: list[ScheduledJob] = []
        self._interval_jobs: list[IntervalJob] = []
        self._tick_task: asyncio.Task | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def jobs(self) -> list[ScheduledJob]:
        return list(self._jobs)

    def schedule_daily(self, name: str, fn: JobFn, hour_utc: int) -> ScheduledJob:
        if not 0 <= hour_utc <= 23:
            raise ValueError(f"hour_utc must be between 0 and 23, got {hour_utc}")
        job = ScheduledJob(
            name=name,
            fn=fn,
            hour_utc=hour_utc,
            next_run_time=next_run_time_for_hour(hour_utc, self._clock()),
        )
        self._jobs.append(job)
        logger.info("Registered scheduled job %s (daily at %02d:00 UTC)", name, hour_utc)
        return job

    def schedule_interval(self, name: str, fn: JobFn, interval_seconds: float) -> IntervalJob:
        """Run ``fn`` now and then every ``interval_seconds``. Needs a running event loop."""
        job = IntervalJob(name=name, fn=fn, interval_seconds=interval_seconds)
        job.task = asyncio.create_task(self._run_interval(job), name=f"scheduler:{name}")
        self._interval_jobs.append(job)
        logger.info("Registered interval job %s (every %.0fs)", name, interval_seconds)
        return job

    def start(self) -> None:
        if self._running:
            logger.warning("Scheduler is already running")
            return
        self._running = True
        self._tick_task = asyncio.create_task(self._tick_loop(), name="scheduler:tick")
        logger.info("Scheduler started")

    async def stop(self) -> None:
        if not self._running and not self._interval_jobs:
            logger.info("Scheduler is not running")
            return

        tasks: list[asyncio.Task] = []
        if self._tick_task is not None:
            self._tick_task.cancel()
            tasks.append(self._tick_task)
            self._tick_task = None

        for job in self._interval_jobs:
            if job.task is not None:
                job.task.cancel()
                tasks.append(job.task)
            logger.info("Stopped interval job %s", job.name)
        self._interval_jobs.clear()
        self._running = False

        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Scheduler stopped")

    async def run_due_jobs(self) -> int:
        """Run every daily job whose time has come; returns how many ran."""
        ran = 0
        for job in self._jobs:
            if self._clock() >= job.next_run_time:
                await self._execute(job.name, job.fn)
                # Advance from the previous slot so a late tick does not drift the schedule.
                job.next_run_time = job.next_run_time + DAY
                logger.info("Scheduled next run of %s at %s", job.name, job.next_run_time.isoformat())
                ran += 1
        return ran

    def status(self) -> dict:
        return {
            "running": self._running,
            "jobs": [
                {"name": job.name, "next_run_time": job.next_run_time}
                for job in self._jobs
            ],
            "interval_jobs": [{"name": job.name} for job in self._interval_jobs],
        }

    async def _tick_loop(self) -> None:
        while True:
            await self.run_due_jobs()
            await asyncio.sleep(self._tick_seconds)

    async def _run_interval(self, job: IntervalJob) -> None:
        while True:
            await self._execute(job.name, job.fn)
            await asyncio.sleep(job.interval_seconds)

    async def _execute(self, name: str, fn: JobFn) -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()
        logger.info("Executing job %s", name)
        try:
            await fn()
        except Exception:
            logger.exception("Scheduler job %s failed", name)
            return
        logger.info("Job %s completed in %.0fms", name, (loop.time() - started) * 1000)
