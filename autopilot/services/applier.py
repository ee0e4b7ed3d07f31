"""
Change Applier

Applies an approved proposal file by file through the content gateway. Not
atomic across files: one failing edit is logged and the remaining edits are
still attempted. The proposal ends committed if at least one edit landed,
otherwise it goes back to pending with the errors attached.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List

from autopilot.exceptions import AlreadyFinalizedError, ConflictError
from autopilot.integrations.github import ContentGateway
from autopilot.models.proposal import ChangeProposal, EditAction, FileEdit
from autopilot.models.run_log import AutomationRunLog, RunStatus
from autopilot.services.store import ProposalStore, RunLogStore

logger = logging.getLogger(__name__)


@dataclass
class ApplyResult:
    """Outcome of applying one proposal."""

    proposal: ChangeProposal
    committed_files: List[str] = field(default_factory=list)
    failed_files: Dict[str, str] = field(default_factory=dict)
    last_commit_id: str = ""

    @property
    def success(self) -> bool:
        return bool(self.committed_files)


class ChangeApplier:
    def __init__(self, proposal_store: ProposalStore, run_log_store: RunLogStore):
        self.proposal_store = proposal_store
        self.run_log_store = run_log_store

    async def _apply_edit(
        self, edit: FileEdit, message: str, gateway: ContentGateway
    ) -> str:
        """Write one edit and return the resulting commit id."""
        if edit.action == EditAction.CREATE:
            result = await gateway.write_file(edit.path, edit.content_after, message)
            return result.commit_id

        # Fresh token read right before the write; never reuse a planning-time sha
        current = await gateway.read_file(edit.path)

        if edit.action == EditAction.DELETE:
            result = await gateway.delete_file(edit.path, message, current.sha)
        else:
            result = await gateway.write_file(
                edit.path, edit.content_after, message, sha=current.sha
            )
        return result.commit_id

    async def apply(
        self, proposal: ChangeProposal, gateway: ContentGateway
    ) -> ApplyResult:
        """
        Apply every edit of a proposal in order.

        Args:
            proposal: The proposal as last read by the caller
            gateway: Gateway for the proposal's repository

        Returns:
            ApplyResult with committed files, per-file failures and last commit id

        Raises:
            AlreadyFinalizedError: If the proposal is committed or rejected
            ConflictError: If the proposal was modified since the caller read it
        """
        if proposal.is_finalized:
            raise AlreadyFinalizedError(
                f"Proposal {proposal.id} is already {proposal.status.value}"
            )

        # Claim first so a concurrent approver of the same id gets a conflict
        claimed = await self.proposal_store.claim(proposal.id, proposal.version)
        logger.info(
            f"Applying proposal {proposal.id}: {len(claimed.edits)} edits "
            f"to repository {claimed.repository_id}"
        )

        result = ApplyResult(proposal=claimed)
        edits: List[FileEdit] = []

        for edit in claimed.edits:
            try:
                commit_id = await self._apply_edit(edit, claimed.commit_message, gateway)
                result.committed_files.append(edit.path)
                result.last_commit_id = commit_id
                edits.append(edit.model_copy(update={"error_message": None}))
                logger.info(f"Applied {edit.action.value} {edit.path} -> {commit_id}")
            except Exception as e:
                result.failed_files[edit.path] = str(e)
                edits.append(edit.model_copy(update={"error_message": str(e)}))
                logger.error(f"Error applying change to {edit.path}: {e}")

        aggregate_error = self._aggregate_error(result.failed_files)

        # Edits already landed: log them whether or not the final transition holds
        try:
            if result.success:
                result.proposal = await self.proposal_store.finalize(
                    claimed.id,
                    claimed.version,
                    commit_id=result.last_commit_id,
                    edits=edits,
                    error_message=aggregate_error,
                )
                if result.failed_files:
                    logger.warning(
                        f"Proposal {claimed.id} committed partially: "
                        f"{len(result.committed_files)}/{len(edits)} files"
                    )
            else:
                result.proposal = await self.proposal_store.release(
                    claimed.id,
                    claimed.version,
                    error_message=aggregate_error or "No edits were applied",
                    edits=edits,
                )
                logger.error(f"Proposal {claimed.id} failed: every edit was rejected")
        except ConflictError as e:
            logger.error(f"Could not record outcome on proposal {claimed.id}: {e}")
            aggregate_error = "; ".join(filter(None, [aggregate_error, str(e)]))
            raise
        finally:
            await self.run_log_store.append(
                AutomationRunLog(
                    repository_id=claimed.repository_id,
                    proposal_id=claimed.id,
                    commit_id=result.last_commit_id,
                    commit_message=claimed.commit_message,
                    files_changed=result.committed_files,
                    analysis=claimed.explanation or claimed.plan,
                    status=RunStatus.SUCCESS if result.success else RunStatus.FAILED,
                    error_message=aggregate_error,
                )
            )
        return result

    @staticmethod
    def _aggregate_error(failed_files: Dict[str, str]):
        if not failed_files:
            return None
        return "; ".join(f"{path}: {error}" for path, error in failed_files.items())
