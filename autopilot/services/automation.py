"""
Automation Service

The operations offered to external callers (HTTP routes): connect and delete
repositories, enable/disable automation, change the daily schedule, trigger a
run, and submit / approve / reject / refine proposals.
"""

import logging
from typing import Any, Dict, List, Optional

from autopilot.config import get_settings
from autopilot.models.proposal import ChangeProposal
from autopilot.models.repository import RepositoryConfig
from autopilot.models.run_log import AutomationRunLog
from autopilot.services.applier import ApplyResult
from autopilot.services.pipeline import AutomationPipeline, PipelineResult
from autopilot.services.scheduler import RepositoryScheduler
from autopilot.services.store import ProposalStore, RepositoryConfigStore, RunLogStore

logger = logging.getLogger(__name__)


class AutomationService:
    def __init__(
        self,
        config_store: RepositoryConfigStore,
        proposal_store: ProposalStore,
        run_log_store: RunLogStore,
        pipeline: AutomationPipeline,
        scheduler: RepositoryScheduler,
    ):
        self.config_store = config_store
        self.proposal_store = proposal_store
        self.run_log_store = run_log_store
        self.pipeline = pipeline
        self.scheduler = scheduler

    # Repositories

    async def connect_repository(
        self,
        owner: str,
        name: str,
        user_id: Optional[str] = None,
        description: str = "",
        default_branch: Optional[str] = None,
    ) -> RepositoryConfig:
        settings = get_settings()
        config = RepositoryConfig(
            owner=owner,
            name=name,
            user_id=user_id,
            description=description,
            default_branch=default_branch or settings.github_default_branch,
            scheduled_time=settings.default_scheduled_time,
            timezone=settings.default_timezone,
        )
        return await self.config_store.create(config)

    async def delete_repository(self, repository_id: str) -> None:
        await self.scheduler.unschedule_repository(repository_id)
        config = await self.config_store.delete(repository_id)
        logger.info(f"Repository deleted: {config.full_name}")

    # Automation

    async def enable_automation(self, repository_id: str) -> RepositoryConfig:
        config = await self.config_store.set_automation(repository_id, True)
        await self.scheduler.schedule_repository(config)
        logger.info(f"Automation enabled for {config.full_name}")
        return config

    async def disable_automation(self, repository_id: str) -> RepositoryConfig:
        config = await self.config_store.set_automation(repository_id, False)
        await self.scheduler.unschedule_repository(repository_id)
        logger.info(f"Automation disabled for {config.full_name}")
        return config

    async def update_schedule(
        self, repository_id: str, scheduled_time: str, tz: str
    ) -> Dict[str, Any]:
        """
        Change the daily time and timezone, then rebuild the job.

        Returns:
            The updated config, its recurrence expression and next fire instant
        """
        config = await self.config_store.set_schedule(repository_id, scheduled_time, tz)
        await self.scheduler.update_repository_schedule(repository_id)
        rule = config.recurrence_rule()
        return {
            "config": config,
            "automation_schedule": rule.expression,
            "next_run_at": rule.next_fire(),
        }

    async def get_schedule_status(self, repository_id: str) -> Dict[str, Any]:
        config = await self.config_store.get(repository_id)
        rule = config.recurrence_rule()
        job = self.scheduler.get_job(repository_id)
        return {
            "repository_id": config.id,
            "automation_enabled": config.automation_enabled,
            "scheduled_time": config.scheduled_time,
            "timezone": config.timezone,
            "automation_schedule": rule.expression,
            "last_run_at": config.last_run_at,
            "next_run_at": rule.next_fire() if config.automation_enabled else None,
            "is_scheduled": bool(job and job.is_alive),
            "is_running": self.pipeline.is_running(repository_id),
        }

    async def trigger(self, repository_id: str) -> PipelineResult:
        await self.config_store.get(repository_id)
        return await self.scheduler.process_repository_manually(repository_id)

    async def list_runs(self, repository_id: str, limit: int = 50) -> List[AutomationRunLog]:
        await self.config_store.get(repository_id)
        return await self.run_log_store.find_by_repository(repository_id, limit)

    # Proposals

    async def submit_instruction(
        self, repository_id: str, instruction: str, user_id: Optional[str] = None
    ) -> ChangeProposal:
        return await self.pipeline.propose(repository_id, instruction, user_id)

    async def approve_proposal(self, proposal_id: str) -> ApplyResult:
        return await self.pipeline.approve(proposal_id)

    async def reject_proposal(self, proposal_id: str) -> ChangeProposal:
        return await self.proposal_store.reject(proposal_id)

    async def refine_proposal(self, proposal_id: str, feedback: str) -> ChangeProposal:
        return await self.pipeline.refine(proposal_id, feedback)

    async def list_pending(self, repository_id: str) -> List[ChangeProposal]:
        return await self.proposal_store.find_pending(repository_id)

    async def get_proposal(self, proposal_id: str) -> ChangeProposal:
        return await self.proposal_store.get(proposal_id)

