"""
Tests for AutomationService: the operations exposed over HTTP.
"""

from datetime import datetime, timezone

import pytest

from autopilot.ai_core.planning import ModificationPlanner
from autopilot.exceptions import InvalidTimeFormatError, InvalidTimezoneError, NotFoundError
from autopilot.models.proposal import ProposalStatus
from autopilot.services.applier import ChangeApplier
from autopilot.services.automation import AutomationService
from autopilot.services.pipeline import AutomationPipeline
from autopilot.services.scheduler import RepositoryScheduler
from tests.fakes import FakeClock, ScriptedOracle, make_settings, plan_response


@pytest.fixture
def oracle():
    return ScriptedOracle(plan_response(("GUIDE.md", "create", "# Guide\n")))


@pytest.fixture
def service(config_store, proposal_store, run_log_store, gateway, oracle):
    pipeline = AutomationPipeline(
        config_store,
        proposal_store,
        run_log_store,
        ModificationPlanner(oracle, make_settings()),
        ChangeApplier(proposal_store, run_log_store),
        gateway_factory=lambda config: gateway,
    )
    clock = FakeClock(datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc))
    scheduler = RepositoryScheduler(
        config_store, pipeline, reconciliation_interval=3600, clock=clock, sleep=clock.sleep
    )
    return AutomationService(config_store, proposal_store, run_log_store, pipeline, scheduler)


@pytest.mark.asyncio
async def test_connect_uses_default_schedule(service):
    config = await service.connect_repository("acme", "widgets", user_id="u1")

    assert config.full_name == "acme/widgets"
    assert config.automation_enabled is False
    assert config.scheduled_time == "00:00"
    assert config.automation_schedule == "0 0 * * *"
    assert not service.scheduler.has_job(config.id)


@pytest.mark.asyncio
async def test_enable_and_disable_manage_the_job(service):
    config = await service.connect_repository("acme", "widgets")

    enabled = await service.enable_automation(config.id)
    assert enabled.automation_enabled
    assert service.scheduler.has_job(config.id)

    disabled = await service.disable_automation(config.id)
    assert not disabled.automation_enabled
    assert not service.scheduler.has_job(config.id)


@pytest.mark.asyncio
async def test_update_schedule_returns_expression_and_next_run(service):
    config = await service.connect_repository("acme", "widgets")
    await service.enable_automation(config.id)

    result = await service.update_schedule(config.id, "09:30", "America/New_York")

    assert result["automation_schedule"] == "30 9 * * *"
    assert result["config"].timezone == "America/New_York"
    assert result["next_run_at"] > datetime.now(timezone.utc)
    assert service.scheduler.get_job(config.id).rule.timezone == "America/New_York"

    await service.scheduler.stop()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "time_str, tz, error",
    [("25:00", "UTC", InvalidTimeFormatError), ("09:30", "Nowhere/Special", InvalidTimezoneError)],
)
async def test_invalid_schedule_changes_nothing(service, time_str, tz, error):
    config = await service.connect_repository("acme", "widgets")
    await service.enable_automation(config.id)
    job = service.scheduler.get_job(config.id)

    with pytest.raises(error):
        await service.update_schedule(config.id, time_str, tz)

    stored = await service.config_store.get(config.id)
    assert (stored.scheduled_time, stored.timezone) == ("00:00", "UTC")
    assert service.scheduler.get_job(config.id) is job

    await service.scheduler.stop()


@pytest.mark.asyncio
async def test_schedule_status(service):
    config = await service.connect_repository("acme", "widgets")
    await service.enable_automation(config.id)

    status = await service.get_schedule_status(config.id)

    assert status["automation_enabled"]
    assert status["automation_schedule"] == "0 0 * * *"
    assert status["is_scheduled"]
    assert not status["is_running"]
    assert status["next_run_at"] is not None

    await service.scheduler.stop()


@pytest.mark.asyncio
async def test_delete_repository_removes_job(service):
    config = await service.connect_repository("acme", "widgets")
    await service.enable_automation(config.id)

    await service.delete_repository(config.id)

    assert not service.scheduler.has_job(config.id)
    with pytest.raises(NotFoundError):
        await service.get_schedule_status(config.id)


@pytest.mark.asyncio
async def test_instruction_review_flow(service, gateway):
    config = await service.connect_repository("acme", "widgets")

    proposal = await service.submit_instruction(config.id, "Add a guide", "u1")
    assert await service.list_pending(config.id) == [proposal]

    result = await service.approve_proposal(proposal.id)
    assert result.proposal.status == ProposalStatus.COMMITTED
    assert "GUIDE.md" in gateway.files

    # Rejecting a committed proposal is a no-op
    after = await service.reject_proposal(proposal.id)
    assert after.status == ProposalStatus.COMMITTED
    assert await service.list_pending(config.id) == []

    runs = await service.list_runs(config.id)
    assert len(runs) == 1


@pytest.mark.asyncio
async def test_trigger_runs_pipeline_now(service, gateway, oracle):
    config = await service.connect_repository("acme", "widgets")
    oracle.responses = [plan_response(("GUIDE.md", "create", "# Guide\n\n" + "Step.\n" * 10))]

    result = await service.trigger(config.id)

    assert result.action == "committed"
    assert (await service.config_store.get(config.id)).last_run_at is not None

    with pytest.raises(NotFoundError):
        await service.trigger("missing")
