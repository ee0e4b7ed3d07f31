"""
Automation API Routes

Repository connection, enable/disable, daily schedule and manual triggers.
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from autopilot.api.dependencies import get_service, to_http_error
from autopilot.models.repository import RepositoryConfig
from autopilot.models.run_log import AutomationRunLog
from autopilot.services.automation import AutomationService
from autopilot.services.pipeline import PipelineResult
from autopilot.utils.schedule import COMMON_TIMEZONES

logger = logging.getLogger(__name__)

router = APIRouter()


# Request/Response Models

class ConnectRepositoryRequest(BaseModel):
    """Request to connect a repository for automation."""

    owner: str = Field(..., description="Repository owner login")
    name: str = Field(..., description="Repository name")
    user_id: Optional[str] = Field(None, description="Owning user")
    description: str = Field("", description="Repository description")
    default_branch: Optional[str] = Field(None, description="Branch to commit to")


class ScheduleRequest(BaseModel):
    """Daily schedule update."""

    scheduled_time: str = Field(..., description="Daily time, HH:MM 24-hour")
    timezone: str = Field("UTC", description="IANA timezone name")


class ScheduleResponse(BaseModel):
    repository: RepositoryConfig
    automation_schedule: str
    next_run_at: datetime


class ScheduleStatusResponse(BaseModel):
    repository_id: str
    automation_enabled: bool
    scheduled_time: str
    timezone: str
    automation_schedule: str
    last_run_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None
    is_scheduled: bool
    is_running: bool


class TriggerResponse(BaseModel):
    success: bool
    action: str = Field(..., description="committed, bootstrapped, skipped, not_meaningful or failed")
    proposal_id: Optional[str] = None
    commit_id: Optional[str] = None
    error: Optional[str] = None


def to_trigger_response(result: PipelineResult) -> TriggerResponse:
    return TriggerResponse(
        success=result.success,
        action=result.action,
        proposal_id=result.proposal.id if result.proposal else None,
        commit_id=result.proposal.commit_id if result.proposal else None,
        error=result.error,
    )


# API Endpoints

@router.post("/repositories", response_model=RepositoryConfig)
async def connect_repository(
    request: ConnectRepositoryRequest,
    service: AutomationService = Depends(get_service),
):
    try:
        return await service.connect_repository(
            owner=request.owner,
            name=request.name,
            user_id=request.user_id,
            description=request.description,
            default_branch=request.default_branch,
        )
    except Exception as e:
        raise to_http_error(e, "connecting repository")


@router.delete("/repositories/{repository_id}")
async def delete_repository(
    repository_id: str, service: AutomationService = Depends(get_service)
):
    try:
        await service.delete_repository(repository_id)
        return {"success": True}
    except Exception as e:
        raise to_http_error(e, "deleting repository")


@router.get("/automation/timezones")
async def list_timezones():
    return COMMON_TIMEZONES


@router.get("/automation/jobs")
async def list_jobs(service: AutomationService = Depends(get_service)):
    return service.scheduler.jobs_info()


@router.post("/automation/run-all", response_model=List[TriggerResponse])
async def run_all(service: AutomationService = Depends(get_service)):
    """Run every enabled repository once, one after another."""
    try:
        results = await service.scheduler.run_all()
    except Exception as e:
        raise to_http_error(e, "running all repositories")

    return [to_trigger_response(result) for result in results]


@router.post("/automation/{repository_id}/enable", response_model=RepositoryConfig)
async def enable_automation(
    repository_id: str, service: AutomationService = Depends(get_service)
):
    try:
        return await service.enable_automation(repository_id)
    except Exception as e:
        raise to_http_error(e, "enabling automation")


@router.post("/automation/{repository_id}/disable", response_model=RepositoryConfig)
async def disable_automation(
    repository_id: str, service: AutomationService = Depends(get_service)
):
    try:
        return await service.disable_automation(repository_id)
    except Exception as e:
        raise to_http_error(e, "disabling automation")


@router.put("/automation/{repository_id}/schedule", response_model=ScheduleResponse)
async def update_schedule(
    repository_id: str,
    request: ScheduleRequest,
    service: AutomationService = Depends(get_service),
):
    """Set the daily time and timezone; returns the new recurrence and next run."""
    try:
        updated = await service.update_schedule(
            repository_id, request.scheduled_time, request.timezone
        )
        return ScheduleResponse(
            repository=updated["config"],
            automation_schedule=updated["automation_schedule"],
            next_run_at=updated["next_run_at"],
        )
    except Exception as e:
        raise to_http_error(e, "updating schedule")


@router.get("/automation/{repository_id}/status", response_model=ScheduleStatusResponse)
async def get_status(
    repository_id: str, service: AutomationService = Depends(get_service)
):
    try:
        return ScheduleStatusResponse(**await service.get_schedule_status(repository_id))
    except Exception as e:
        raise to_http_error(e, "fetching automation status")


@router.post("/automation/{repository_id}/trigger", response_model=TriggerResponse)
async def trigger_automation(
    repository_id: str, service: AutomationService = Depends(get_service)
):
    """Run the pipeline once now. Overlapping runs are skipped, not queued."""
    try:
        result = await service.trigger(repository_id)
    except Exception as e:
        raise to_http_error(e, "triggering automation")

    if result.action == "skipped":
        raise HTTPException(status_code=409, detail=result.error)

    return to_trigger_response(result)


@router.get("/automation/{repository_id}/runs", response_model=List[AutomationRunLog])
async def list_runs(
    repository_id: str,
    limit: int = 50,
    service: AutomationService = Depends(get_service),
):
    try:
        return await service.list_runs(repository_id, limit)
    except Exception as e:
        raise to_http_error(e, "listing automation runs")
