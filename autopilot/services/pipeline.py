"""
Automation Pipeline

Full pipeline orchestration for one repository:
Config -> Context (gateway) -> Oracle plan -> Diffs -> Proposal (pending) -> Apply -> Run log

Unattended (scheduled) runs auto-approve their own proposal and pass through
the meaningfulness gate; ad hoc instructions stop at a pending proposal that a
human approves or rejects later. Only one run per repository is in flight at
any time.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Set

from autopilot.ai_core.planning import ModificationPlanner
from autopilot.exceptions import (
    AlreadyFinalizedError,
    ChangeNotMeaningfulError,
    ConflictError,
    RepositoryEmptyError,
    RunInProgressError,
    ValidationError,
)
from autopilot.integrations.github import ContentGateway, get_gateway
from autopilot.models.proposal import ChangeProposal, EditAction, FileEdit, ProposalStatus
from autopilot.models.repository import RepositoryConfig
from autopilot.models.run_log import AutomationRunLog, RunStatus
from autopilot.services.applier import ApplyResult, ChangeApplier
from autopilot.services.store import ProposalStore, RepositoryConfigStore, RunLogStore
from autopilot.utils.diff import generate_diff

logger = logging.getLogger(__name__)

BOOTSTRAP_COMMIT_MESSAGE = "Initialize repository with README"

GatewayFactory = Callable[[RepositoryConfig], ContentGateway]


def build_initial_readme(config: RepositoryConfig) -> str:
    return (
        f"# {config.name}\n\n"
        f"{config.description or 'A new repository'}\n\n"
        "## About\n\n"
        "This repository was initialized by automated repository maintenance.\n\n"
        "## Getting Started\n\n"
        "Start adding your code and documentation here!\n\n"
        "---\n"
        "*This README was auto-generated*\n"
    )


@dataclass
class PipelineResult:
    """Result of one pipeline execution."""

    success: bool
    action: str  # committed, bootstrapped, skipped, not_meaningful, failed
    proposal: Optional[ChangeProposal] = None
    apply_result: Optional[ApplyResult] = None
    error: Optional[str] = None


class AutomationPipeline:
    """
    Orchestrates planner and applier for a repository.

    Pipeline steps (unattended):
    1. Load config and build repository context (bootstrap empty repositories)
    2. Plan with the scheduled instruction, gated for meaningfulness
    3. Persist the proposal as pending
    4. Apply it and record the run
    """

    def __init__(
        self,
        config_store: RepositoryConfigStore,
        proposal_store: ProposalStore,
        run_log_store: RunLogStore,
        planner: ModificationPlanner,
        applier: ChangeApplier,
        gateway_factory: GatewayFactory = get_gateway,
    ):
        self.config_store = config_store
        self.proposal_store = proposal_store
        self.run_log_store = run_log_store
        self.planner = planner
        self.applier = applier
        self.gateway_factory = gateway_factory
        self._active: Set[str] = set()

    def is_running(self, repository_id: str) -> bool:
        return repository_id in self._active

    def _acquire(self, repository_id: str) -> bool:
        # No await between check and add, so this is atomic on the event loop
        if repository_id in self._active:
            return False
        self._active.add(repository_id)
        return True

    def _release(self, repository_id: str) -> None:
        self._active.discard(repository_id)

    async def run_unattended(self, repository_id: str) -> PipelineResult:
        """
        Run the full pipeline once for a repository. Never raises: every
        failure becomes a logged, recorded PipelineResult.
        """
        if not self._acquire(repository_id):
            logger.warning(
                f"Pipeline already running for repository {repository_id}, skipping"
            )
            return PipelineResult(success=False, action="skipped", error="Run in progress")

        try:
            return await self._run_unattended(repository_id)
        finally:
            self._release(repository_id)

    async def _run_unattended(self, repository_id: str) -> PipelineResult:
        config = await self.config_store.find_by_id(repository_id)
        if not config:
            logger.error(f"Repository not found: {repository_id}")
            return PipelineResult(success=False, action="failed", error="Repository not found")

        logger.info(f"Processing repository: {config.full_name}")

        try:
            gateway = self.gateway_factory(config)

            try:
                context = await self.planner.build_context(config, gateway)
            except RepositoryEmptyError:
                logger.info(f"Repository {config.full_name} is empty, creating initial README")
                return await self._bootstrap(config, gateway)

            if not context.tree:
                return await self._bootstrap(config, gateway)

            candidates = await self.planner.select_candidate_files(context, gateway)
            edit_set = await self.planner.plan(
                self.planner.settings.scheduled_instruction,
                context,
                candidates,
                gateway,
                unattended=True,
            )

            proposal = await self.proposal_store.create(
                ChangeProposal(
                    repository_id=config.id,
                    user_id=None,
                    instruction=self.planner.settings.scheduled_instruction,
                    plan=edit_set.plan,
                    explanation=edit_set.explanation,
                    risk=edit_set.risk,
                    edits=edit_set.edits,
                    commit_message=edit_set.commit_message,
                )
            )

            apply_result = await self.applier.apply(proposal, gateway)
            await self.config_store.mark_run(config.id)

            if apply_result.success:
                logger.info(
                    f"Successfully automated commit for {config.full_name}: "
                    f"{apply_result.last_commit_id}"
                )
            return PipelineResult(
                success=apply_result.success,
                action="committed" if apply_result.success else "failed",
                proposal=apply_result.proposal,
                apply_result=apply_result,
                error=apply_result.proposal.error_message,
            )

        except ChangeNotMeaningfulError as e:
            logger.warning(f"{config.full_name}: {e}, skipping commit")
            await self._record_failure(config, f"Skipped: {e}")
            await self.config_store.mark_run(config.id)
            return PipelineResult(success=False, action="not_meaningful", error=str(e))

        except Exception as e:
            logger.error(f"Error processing repository {config.full_name}: {e}", exc_info=True)
            await self._record_failure(config, str(e))
            return PipelineResult(success=False, action="failed", error=str(e))

    async def _bootstrap(
        self, config: RepositoryConfig, gateway: ContentGateway
    ) -> PipelineResult:
        """Seed an empty repository with a minimal README."""
        result = await gateway.write_file(
            "README.md", build_initial_readme(config), BOOTSTRAP_COMMIT_MESSAGE
        )
        await self.run_log_store.append(
            AutomationRunLog(
                repository_id=config.id,
                commit_id=result.commit_id,
                commit_message=BOOTSTRAP_COMMIT_MESSAGE,
                files_changed=["README.md"],
                analysis="Created initial README for empty repository",
                status=RunStatus.SUCCESS,
            )
        )
        await self.config_store.mark_run(config.id)
        logger.info(f"Created initial README for {config.full_name}")
        return PipelineResult(success=True, action="bootstrapped")

    async def _record_failure(self, config: RepositoryConfig, error: str) -> None:
        try:
            await self.run_log_store.append(
                AutomationRunLog(
                    repository_id=config.id,
                    commit_message="Failed automation attempt",
                    status=RunStatus.FAILED,
                    error_message=error,
                )
            )
        except Exception as e:
            logger.error(f"Could not record failed run for {config.full_name}: {e}")

    async def propose(
        self, repository_id: str, instruction: str, user_id: Optional[str] = None
    ) -> ChangeProposal:
        """
        Plan an ad hoc instruction and persist it as a pending proposal.

        An empty repository gets a pending proposal that creates the initial
        README instead; the oracle is not consulted.

        Raises:
            ValidationError: If the instruction is empty
            NotFoundError: If the repository does not exist
            OracleContractViolation / TransportError: If planning fails
        """
        if not instruction or not instruction.strip():
            raise ValidationError("Instruction is required")

        config = await self.config_store.get(repository_id)
        gateway = self.gateway_factory(config)

        try:
            context = await self.planner.build_context(config, gateway)
        except RepositoryEmptyError:
            return await self._propose_bootstrap(config, instruction, user_id)
        if not context.tree:
            return await self._propose_bootstrap(config, instruction, user_id)

        candidates = await self.planner.select_candidate_files(context, gateway)
        edit_set = await self.planner.plan(instruction, context, candidates, gateway)

        return await self.proposal_store.create(
            ChangeProposal(
                repository_id=config.id,
                user_id=user_id,
                instruction=instruction,
                plan=edit_set.plan,
                explanation=edit_set.explanation,
                risk=edit_set.risk,
                edits=edit_set.edits,
                commit_message=edit_set.commit_message,
            )
        )

    async def _propose_bootstrap(
        self, config: RepositoryConfig, instruction: str, user_id: Optional[str]
    ) -> ChangeProposal:
        logger.info(f"Repository {config.full_name} is empty, proposing initial README")
        readme = build_initial_readme(config)
        return await self.proposal_store.create(
            ChangeProposal(
                repository_id=config.id,
                user_id=user_id,
                instruction=instruction,
                plan="Initialize the empty repository with a README",
                explanation="The repository has no commits yet",
                edits=[
                    FileEdit(
                        path="README.md",
                        action=EditAction.CREATE,
                        reason="Repository is empty",
                        content_after=readme,
                        diff=generate_diff("README.md", "", readme),
                    )
                ],
                commit_message=BOOTSTRAP_COMMIT_MESSAGE,
            )
        )

    async def refine(self, proposal_id: str, feedback: str) -> ChangeProposal:
        """
        Replace a pending proposal with a re-planned one that addresses feedback.

        Raises:
            AlreadyFinalizedError: If the proposal is committed or rejected
            ConflictError: If the proposal is being applied
            RepositoryEmptyError: If the repository has no commits to plan against
        """
        proposal = await self.proposal_store.get(proposal_id)
        if proposal.is_finalized:
            raise AlreadyFinalizedError(
                f"Proposal {proposal_id} is already {proposal.status.value}"
            )
        if proposal.status == ProposalStatus.APPROVED:
            raise ConflictError(f"Proposal {proposal_id} is being applied")

        config = await self.config_store.get(proposal.repository_id)
        gateway = self.gateway_factory(config)

        context = await self.planner.build_context(config, gateway)
        candidates = await self.planner.select_candidate_files(context, gateway)
        edit_set = await self.planner.refine(
            proposal, feedback, context, candidates, gateway
        )

        refined = await self.proposal_store.create(
            ChangeProposal(
                repository_id=config.id,
                user_id=proposal.user_id,
                instruction=proposal.instruction,
                plan=edit_set.plan,
                explanation=edit_set.explanation,
                risk=edit_set.risk,
                edits=edit_set.edits,
                commit_message=edit_set.commit_message,
            )
        )
        await self.proposal_store.reject(proposal_id)
        logger.info(f"Proposal {proposal_id} refined into {refined.id}")
        return refined

    async def approve(self, proposal_id: str) -> ApplyResult:
        """
        Apply a pending proposal on behalf of a reviewer.

        Raises:
            NotFoundError: If the proposal or its repository does not exist
            AlreadyFinalizedError: If the proposal is committed or rejected
            RunInProgressError: If a run for the same repository is in flight
            ConflictError: If the proposal changed concurrently
        """
        proposal = await self.proposal_store.get(proposal_id)
        if proposal.is_finalized:
            raise AlreadyFinalizedError(
                f"Proposal {proposal_id} is already {proposal.status.value}"
            )

        if not self._acquire(proposal.repository_id):
            raise RunInProgressError(
                f"A run for repository {proposal.repository_id} is in progress"
            )
        try:
            config = await self.config_store.get(proposal.repository_id)
            gateway = self.gateway_factory(config)
            return await self.applier.apply(proposal, gateway)
        finally:
            self._release(proposal.repository_id)
