"""
Proposal API Routes

Submit an instruction, review the resulting proposal, approve or reject it.
"""

import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from autopilot.api.dependencies import get_service, to_http_error
from autopilot.models.proposal import ChangeProposal
from autopilot.services.automation import AutomationService
from autopilot.utils.diff import format_diff_for_display, get_diff_stats

logger = logging.getLogger(__name__)

router = APIRouter()


class InstructionRequest(BaseModel):
    """Ad hoc instruction for a repository."""

    instruction: str = Field(..., description="What to change, in natural language")
    user_id: Optional[str] = Field(None, description="Requesting user")


class FeedbackRequest(BaseModel):
    feedback: str = Field(..., description="Reviewer feedback for re-planning")


class ApproveResponse(BaseModel):
    success: bool
    status: str
    commit_id: Optional[str] = None
    committed_files: List[str] = Field(default_factory=list)
    failed_files: Dict[str, str] = Field(default_factory=dict)
    commit_message: str


@router.post("/proposals/{repository_id}", response_model=ChangeProposal)
async def submit_instruction(
    repository_id: str,
    request: InstructionRequest,
    service: AutomationService = Depends(get_service),
):
    """Plan an instruction; the result is a pending proposal awaiting review."""
    try:
        logger.info(f"Instruction for {repository_id}: {request.instruction[:100]}")
        return await service.submit_instruction(
            repository_id, request.instruction, request.user_id
        )
    except Exception as e:
        raise to_http_error(e, "creating proposal")


@router.get("/proposals/{repository_id}/pending", response_model=List[ChangeProposal])
async def list_pending(
    repository_id: str, service: AutomationService = Depends(get_service)
):
    try:
        return await service.list_pending(repository_id)
    except Exception as e:
        raise to_http_error(e, "listing pending proposals")


@router.get("/proposals/detail/{proposal_id}", response_model=ChangeProposal)
async def get_proposal(
    proposal_id: str, service: AutomationService = Depends(get_service)
):
    try:
        return await service.get_proposal(proposal_id)
    except Exception as e:
        raise to_http_error(e, "fetching proposal")


@router.post("/proposals/{proposal_id}/approve", response_model=ApproveResponse)
async def approve_proposal(
    proposal_id: str, service: AutomationService = Depends(get_service)
):
    try:
        result = await service.approve_proposal(proposal_id)
    except Exception as e:
        raise to_http_error(e, "approving proposal")

    return ApproveResponse(
        success=result.success,
        status=result.proposal.status.value,
        commit_id=result.proposal.commit_id,
        committed_files=result.committed_files,
        failed_files=result.failed_files,
        commit_message=result.proposal.commit_message,
    )


@router.post("/proposals/{proposal_id}/reject", response_model=ChangeProposal)
async def reject_proposal(
    proposal_id: str, service: AutomationService = Depends(get_service)
):
    try:
        return await service.reject_proposal(proposal_id)
    except Exception as e:
        raise to_http_error(e, "rejecting proposal")


@router.post("/proposals/{proposal_id}/refine", response_model=ChangeProposal)
async def refine_proposal(
    proposal_id: str,
    request: FeedbackRequest,
    service: AutomationService = Depends(get_service),
):
    try:
        return await service.refine_proposal(proposal_id, request.feedback)
    except Exception as e:
        raise to_http_error(e, "refining proposal")


@router.get("/proposals/detail/{proposal_id}/diff")
async def get_proposal_diff(
    proposal_id: str, service: AutomationService = Depends(get_service)
):
    """Per-file diff stats and side-by-side line lists for review screens."""
    try:
        proposal = await service.get_proposal(proposal_id)
    except Exception as e:
        raise to_http_error(e, "fetching proposal diff")

    return [
        {
            "path": edit.path,
            "action": edit.action.value,
            "stats": get_diff_stats(edit.diff),
            **format_diff_for_display(edit.diff),
        }
        for edit in proposal.edits
    ]
