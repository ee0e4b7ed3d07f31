"""
Repository Scheduler

Owns one daily timer per automation-enabled repository plus an hourly
reconciliation sweep. Jobs live only in memory; after a restart the sweep
(and start()) rebuild them from the persisted repository configs.

A firing never runs the pipeline inside the timer task itself: the run is
spawned as its own task, so unscheduling a repository stops future firings
without interrupting an in-flight apply.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Set

from autopilot.config import get_settings
from autopilot.models.repository import RepositoryConfig
from autopilot.services.pipeline import AutomationPipeline, PipelineResult
from autopilot.services.store import RepositoryConfigStore
from autopilot.utils.schedule import RecurrenceRule

logger = logging.getLogger(__name__)

# Upper bound on a single sleep so wall-clock jumps are noticed
MAX_SLEEP_SECONDS = 3600.0


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ScheduledJob:
    """Runtime binding of a repository to its active timer."""

    repository_id: str
    rule: RecurrenceRule
    task: Optional[asyncio.Task] = None
    next_fire_at: Optional[datetime] = None

    @property
    def is_alive(self) -> bool:
        return self.task is not None and not self.task.done()


class RepositoryScheduler:
    """Per-repository daily scheduling with a self-healing reconciliation sweep."""

    def __init__(
        self,
        config_store: RepositoryConfigStore,
        pipeline: AutomationPipeline,
        reconciliation_interval: Optional[float] = None,
        clock: Callable[[], datetime] = _utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config_store = config_store
        self.pipeline = pipeline
        if reconciliation_interval is None:
            reconciliation_interval = get_settings().reconciliation_interval_seconds
        self.reconciliation_interval = reconciliation_interval
        self._clock = clock
        self._sleep = sleep

        self._jobs: Dict[str, ScheduledJob] = {}
        self._registry_lock = asyncio.Lock()
        self._runs: Set[asyncio.Task] = set()
        self._reconciliation_task: Optional[asyncio.Task] = None

    @property
    def is_started(self) -> bool:
        return self._reconciliation_task is not None

    async def start(self) -> None:
        """Schedule every enabled repository and start the reconciliation sweep."""
        if self.is_started:
            return
        logger.info("Initializing scheduler with per-repository scheduling")

        await self.schedule_all_repositories()
        self._reconciliation_task = asyncio.create_task(
            self._reconciliation_loop(), name="scheduler:reconciliation"
        )
        logger.info("Scheduler initialized successfully")

    async def stop(self) -> None:
        """Stop all timers, then wait for in-flight runs to finish and log."""
        if self._reconciliation_task:
            self._reconciliation_task.cancel()
            self._reconciliation_task = None

        async with self._registry_lock:
            for job in self._jobs.values():
                if job.task:
                    job.task.cancel()
            self._jobs.clear()

        if self._runs:
            logger.info(f"Waiting for {len(self._runs)} in-flight runs to finish")
            await asyncio.gather(*list(self._runs), return_exceptions=True)
        logger.info("Scheduler stopped")

    async def schedule_all_repositories(self) -> None:
        try:
            repositories = await self.config_store.find_enabled()
        except Exception as e:
            logger.error(f"Error loading repositories to schedule: {e}", exc_info=True)
            return

        logger.info(f"Found {len(repositories)} repositories with automation enabled")
        for config in repositories:
            try:
                await self.schedule_repository(config)
            except Exception as e:
                logger.error(f"Error scheduling repository {config.full_name}: {e}")

    def _drop_job(self, repository_id: str) -> bool:
        job = self._jobs.pop(repository_id, None)
        if not job:
            return False
        if job.task:
            job.task.cancel()
        return True

    async def schedule_repository(
        self, config: RepositoryConfig
    ) -> Optional[ScheduledJob]:
        """
        Replace any job for this repository with one matching its config.
        A disabled config only tears the old job down.
        """
        async with self._registry_lock:
            if not config.automation_enabled:
                if self._drop_job(config.id):
                    logger.info(f"Unscheduled repository: {config.id}")
                logger.info(f"Automation disabled for {config.full_name}, skipping schedule")
                return None

            rule = config.recurrence_rule()
            self._drop_job(config.id)

            job = ScheduledJob(repository_id=config.id, rule=rule)
            job.task = asyncio.create_task(
                self._timer_loop(job), name=f"scheduler:{config.id}"
            )
            self._jobs[config.id] = job

        logger.info(
            f"Scheduled {config.full_name} with cron: {rule.expression} "
            f"({config.scheduled_time} {config.timezone})"
        )
        return job

    async def unschedule_repository(self, repository_id: str) -> None:
        async with self._registry_lock:
            if self._drop_job(repository_id):
                logger.info(f"Unscheduled repository: {repository_id}")

    async def update_repository_schedule(self, repository_id: str) -> Optional[ScheduledJob]:
        """Re-read the config and fully replace the job (never edited in place)."""
        config = await self.config_store.find_by_id(repository_id)
        if not config:
            await self.unschedule_repository(repository_id)
            return None
        job = await self.schedule_repository(config)
        logger.info(f"Updated schedule for repository: {config.full_name}")
        return job

    async def _timer_loop(self, job: ScheduledJob) -> None:
        last_fire: Optional[datetime] = None
        while True:
            now = self._clock()
            reference = max(now, last_fire) if last_fire else now
            fire_at = job.rule.next_fire(reference)
            job.next_fire_at = fire_at

            while True:
                remaining = (fire_at - self._clock()).total_seconds()
                if remaining <= 0:
                    break
                await self._sleep(min(remaining, MAX_SLEEP_SECONDS))

            # A job dropped from the registry must never fire
            if self._jobs.get(job.repository_id) is not job:
                return

            logger.info(f"Triggered scheduled automation for repository {job.repository_id}")
            last_fire = fire_at
            self._spawn_run(job.repository_id)

    def _spawn_run(self, repository_id: str) -> asyncio.Task:
        task = asyncio.create_task(
            self._run_guarded(repository_id), name=f"run:{repository_id}"
        )
        self._runs.add(task)
        task.add_done_callback(self._runs.discard)
        return task

    async def _run_guarded(self, repository_id: str) -> Optional[PipelineResult]:
        try:
            result = await self.pipeline.run_unattended(repository_id)
            logger.info(
                f"Scheduled run for repository {repository_id} finished: {result.action}"
            )
            return result
        except Exception as e:
            logger.error(
                f"Unhandled error in scheduled run for repository {repository_id}: {e}",
                exc_info=True,
            )
            return None

    async def _reconciliation_loop(self) -> None:
        while True:
            await self._sleep(self.reconciliation_interval)
            logger.info("Running scheduler reconciliation sweep")
            try:
                await self.run_reconciliation_sweep()
            except Exception as e:
                logger.error(f"Error in reconciliation sweep: {e}", exc_info=True)

    async def run_reconciliation_sweep(self) -> int:
        """
        Re-schedule every enabled repository that has no live job.

        Returns:
            Number of repositories that were re-scheduled
        """
        rescheduled = 0
        for config in await self.config_store.find_enabled():
            job = self._jobs.get(config.id)
            if job and job.is_alive:
                continue
            logger.warning(
                f"Repository {config.full_name} is enabled but not scheduled, rescheduling..."
            )
            try:
                await self.schedule_repository(config)
                rescheduled += 1
            except Exception as e:
                logger.error(f"Error rescheduling {config.full_name}: {e}")
        return rescheduled

    async def process_repository_manually(self, repository_id: str) -> PipelineResult:
        """Run the pipeline once now, outside any timer. The schedule is untouched."""
        logger.info(f"Manual trigger for repository {repository_id}")
        return await self.pipeline.run_unattended(repository_id)

    async def run_all(self) -> List[PipelineResult]:
        """Run the pipeline once for every enabled repository, one at a time."""
        repositories = await self.config_store.find_enabled()
        logger.info(f"Manually running automation for {len(repositories)} repositories")

        results = []
        for config in repositories:
            try:
                results.append(await self.pipeline.run_unattended(config.id))
            except Exception as e:
                logger.error(f"Error processing repository {config.full_name}: {e}")
        return results

    def has_job(self, repository_id: str) -> bool:
        return repository_id in self._jobs

    def get_job(self, repository_id: str) -> Optional[ScheduledJob]:
        return self._jobs.get(repository_id)

    def jobs_info(self) -> List[dict]:
        return [
            {
                "repository_id": job.repository_id,
                "schedule": job.rule.expression,
                "timezone": job.rule.timezone,
                "next_fire_at": job.next_fire_at,
                "active": job.is_alive,
            }
            for job in self._jobs.values()
        ]
