"""
Tests for AutomationPipeline: unattended runs, ad hoc proposals, reentrancy.
"""

import asyncio

import pytest

from autopilot.ai_core.planning import ModificationPlanner
from autopilot.exceptions import (
    AlreadyFinalizedError,
    ConflictError,
    NotFoundError,
    RunInProgressError,
    TransportError,
    ValidationError,
)
from autopilot.models.proposal import ProposalStatus
from autopilot.models.run_log import RunStatus
from autopilot.services.applier import ChangeApplier
from autopilot.services.pipeline import BOOTSTRAP_COMMIT_MESSAGE, AutomationPipeline
from tests.fakes import FakeGateway, ScriptedOracle, make_settings, plan_response

GUIDE = "# Guide\n\n" + "".join(f"Step {i}.\n" for i in range(10))


def build_pipeline(config_store, proposal_store, run_log_store, gateway, oracle):
    planner = ModificationPlanner(oracle, make_settings())
    applier = ChangeApplier(proposal_store, run_log_store)
    return AutomationPipeline(
        config_store,
        proposal_store,
        run_log_store,
        planner,
        applier,
        gateway_factory=lambda config: gateway,
    )


class BlockingOracle(ScriptedOracle):
    """Waits for a release signal before answering."""

    def __init__(self, *responses):
        super().__init__(*responses)
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def generate(self, prompt, context):
        self.entered.set()
        await self.release.wait()
        return await super().generate(prompt, context)


@pytest.fixture
def stores(config_store, proposal_store, run_log_store):
    return config_store, proposal_store, run_log_store


class TestUnattendedRun:
    @pytest.mark.asyncio
    async def test_empty_repository_is_bootstrapped(self, stores, repository):
        config_store, proposal_store, run_log_store = stores
        await config_store.create(repository)
        gateway = FakeGateway(empty=True)
        oracle = ScriptedOracle(plan_response(("GUIDE.md", "create", GUIDE)))
        pipeline = build_pipeline(*stores, gateway, oracle)

        result = await pipeline.run_unattended(repository.id)

        assert result.success
        assert result.action == "bootstrapped"
        assert gateway.files["README.md"].startswith("# widgets\n\nWidget toolkit")
        assert gateway.commits[0][1] == BOOTSTRAP_COMMIT_MESSAGE
        assert oracle.calls == []

        logs = await run_log_store.find_by_repository(repository.id)
        assert logs[0].status == RunStatus.SUCCESS
        assert logs[0].files_changed == ["README.md"]
        assert (await config_store.get(repository.id)).last_run_at is not None

    @pytest.mark.asyncio
    async def test_meaningful_change_is_committed(self, stores, repository, gateway):
        config_store, proposal_store, run_log_store = stores
        await config_store.create(repository)
        oracle = ScriptedOracle(plan_response(("GUIDE.md", "create", GUIDE)))
        pipeline = build_pipeline(*stores, gateway, oracle)

        result = await pipeline.run_unattended(repository.id)

        assert result.success
        assert result.action == "committed"
        assert gateway.files["GUIDE.md"] == GUIDE
        assert result.proposal.status == ProposalStatus.COMMITTED
        assert result.proposal.user_id is None
        assert result.proposal.instruction == make_settings().scheduled_instruction

        logs = await run_log_store.find_by_repository(repository.id)
        assert len(logs) == 1
        assert logs[0].status == RunStatus.SUCCESS
        assert logs[0].commit_id == gateway.commits[-1][0]
        assert not pipeline.is_running(repository.id)

    @pytest.mark.asyncio
    async def test_trivial_change_is_not_committed(self, stores, repository, gateway):
        config_store, proposal_store, run_log_store = stores
        await config_store.create(repository)
        small = gateway.files["README.md"].replace("toolkit.", "toolkit!")
        oracle = ScriptedOracle(plan_response(("README.md", "update", small)))
        pipeline = build_pipeline(*stores, gateway, oracle)

        result = await pipeline.run_unattended(repository.id)

        assert not result.success
        assert result.action == "not_meaningful"
        assert gateway.commits == []
        assert await proposal_store.find_by_repository(repository.id) == []

        logs = await run_log_store.find_by_repository(repository.id)
        assert logs[0].status == RunStatus.FAILED
        assert logs[0].error_message.startswith("Skipped:")
        assert (await config_store.get(repository.id)).last_run_at is not None

    @pytest.mark.asyncio
    async def test_transport_failure_is_recorded(self, stores, repository, gateway):
        config_store, proposal_store, run_log_store = stores
        await config_store.create(repository)
        gateway.tree_error = TransportError("list tree: GitHub API error 503")
        pipeline = build_pipeline(*stores, gateway, ScriptedOracle({}))

        result = await pipeline.run_unattended(repository.id)

        assert result.action == "failed"
        assert "503" in result.error
        logs = await run_log_store.find_by_repository(repository.id)
        assert logs[0].status == RunStatus.FAILED
        assert not pipeline.is_running(repository.id)

    @pytest.mark.asyncio
    async def test_oracle_garbage_fails_only_this_run(self, stores, repository, gateway):
        config_store, proposal_store, run_log_store = stores
        await config_store.create(repository)
        oracle = ScriptedOracle("I think you should refactor everything", plan_response(("GUIDE.md", "create", GUIDE)))
        pipeline = build_pipeline(*stores, gateway, oracle)

        first = await pipeline.run_unattended(repository.id)
        second = await pipeline.run_unattended(repository.id)

        assert first.action == "failed"
        assert second.action == "committed"

    @pytest.mark.asyncio
    async def test_missing_repository(self, stores, gateway):
        pipeline = build_pipeline(*stores, gateway, ScriptedOracle({}))

        result = await pipeline.run_unattended("does-not-exist")

        assert result.action == "failed"
        assert gateway.commits == []

    @pytest.mark.asyncio
    async def test_overlapping_run_is_skipped(self, stores, repository, gateway):
        config_store, proposal_store, run_log_store = stores
        await config_store.create(repository)
        oracle = BlockingOracle(plan_response(("GUIDE.md", "create", GUIDE)))
        pipeline = build_pipeline(*stores, gateway, oracle)

        first = asyncio.create_task(pipeline.run_unattended(repository.id))
        await oracle.entered.wait()

        second = await pipeline.run_unattended(repository.id)
        oracle.release.set()
        first_result = await first

        assert second.action == "skipped"
        assert first_result.action == "committed"
        assert len(oracle.calls) == 1
        assert len(gateway.commits) == 1
        assert len(await run_log_store.find_by_repository(repository.id)) == 1


class TestAdHocProposals:
    @pytest.mark.asyncio
    async def test_propose_then_approve(self, stores, repository, gateway):
        config_store, proposal_store, run_log_store = stores
        await config_store.create(repository)
        oracle = ScriptedOracle(plan_response(("GUIDE.md", "create", "# Guide\n")))
        pipeline = build_pipeline(*stores, gateway, oracle)

        proposal = await pipeline.propose(repository.id, "Add a guide", user_id="u1")

        assert proposal.status == ProposalStatus.PENDING
        assert proposal.user_id == "u1"
        assert gateway.commits == []
        assert await proposal_store.find_pending(repository.id) == [proposal]

        result = await pipeline.approve(proposal.id)

        assert result.success
        assert result.proposal.status == ProposalStatus.COMMITTED
        assert gateway.files["GUIDE.md"] == "# Guide\n"

        with pytest.raises(AlreadyFinalizedError):
            await pipeline.approve(proposal.id)
        assert len(gateway.commits) == 1

    @pytest.mark.asyncio
    async def test_propose_validates_instruction_first(self, stores, repository, gateway):
        oracle = ScriptedOracle({})
        pipeline = build_pipeline(*stores, gateway, oracle)

        with pytest.raises(ValidationError):
            await pipeline.propose(repository.id, "")
        with pytest.raises(NotFoundError):
            await pipeline.propose("missing", "Add a guide")
        assert oracle.calls == []

    @pytest.mark.asyncio
    async def test_rejected_proposal_cannot_be_approved(self, stores, repository, gateway):
        config_store, proposal_store, run_log_store = stores
        await config_store.create(repository)
        oracle = ScriptedOracle(plan_response(("GUIDE.md", "create", "# Guide\n")))
        pipeline = build_pipeline(*stores, gateway, oracle)
        proposal = await pipeline.propose(repository.id, "Add a guide")

        await proposal_store.reject(proposal.id)

        with pytest.raises(AlreadyFinalizedError):
            await pipeline.approve(proposal.id)
        assert gateway.commits == []

    @pytest.mark.asyncio
    async def test_refine_replaces_proposal(self, stores, repository, gateway):
        config_store, proposal_store, run_log_store = stores
        await config_store.create(repository)
        oracle = ScriptedOracle(
            plan_response(("API.md", "create", "# API\n")),
            plan_response(("GUIDE.md", "create", "# Guide\n")),
        )
        pipeline = build_pipeline(*stores, gateway, oracle)
        original = await pipeline.propose(repository.id, "Document the API")

        refined = await pipeline.refine(original.id, "Call it a guide")

        assert refined.id != original.id
        assert refined.instruction == "Document the API"
        assert refined.edits[0].path == "GUIDE.md"
        assert (await proposal_store.get(original.id)).status == ProposalStatus.REJECTED
        assert await proposal_store.find_pending(repository.id) == [refined]

    @pytest.mark.asyncio
    async def test_approve_during_scheduled_run_is_refused(self, stores, repository, gateway):
        config_store, proposal_store, run_log_store = stores
        await config_store.create(repository)
        oracle = BlockingOracle(plan_response(("GUIDE.md", "create", GUIDE)))
        pipeline = build_pipeline(*stores, gateway, oracle)
        oracle.release.set()
        proposal = await pipeline.propose(repository.id, "Add a guide")

        oracle.release.clear()
        oracle.entered.clear()
        run = asyncio.create_task(pipeline.run_unattended(repository.id))
        await oracle.entered.wait()

        with pytest.raises(RunInProgressError):
            await pipeline.approve(proposal.id)

        oracle.release.set()
        await run
        assert (await proposal_store.get(proposal.id)).status == ProposalStatus.PENDING

    @pytest.mark.asyncio
    async def test_propose_on_empty_repository_offers_readme(self, stores, repository):
        config_store, proposal_store, run_log_store = stores
        await config_store.create(repository)
        gateway = FakeGateway(empty=True)
        oracle = ScriptedOracle(plan_response(("GUIDE.md", "create", GUIDE)))
        pipeline = build_pipeline(*stores, gateway, oracle)

        proposal = await pipeline.propose(repository.id, "Add a guide")

        assert proposal.status == ProposalStatus.PENDING
        assert proposal.commit_message == BOOTSTRAP_COMMIT_MESSAGE
        assert [e.path for e in proposal.edits] == ["README.md"]
        assert proposal.edits[0].diff.startswith("--- a/README.md\n+++ b/README.md\n")
        assert oracle.calls == []
        assert gateway.commits == []

        result = await pipeline.approve(proposal.id)

        assert result.success
        assert gateway.files["README.md"].startswith("# widgets\n")

    @pytest.mark.asyncio
    async def test_refine_of_proposal_being_applied_conflicts(self, stores, repository, gateway):
        config_store, proposal_store, run_log_store = stores
        await config_store.create(repository)
        oracle = ScriptedOracle(plan_response(("GUIDE.md", "create", "# Guide\n")))
        pipeline = build_pipeline(*stores, gateway, oracle)
        proposal = await pipeline.propose(repository.id, "Add a guide")
        await proposal_store.claim(proposal.id, proposal.version)

        with pytest.raises(ConflictError):
            await pipeline.refine(proposal.id, "Shorter please")
        assert len(oracle.calls) == 1
        assert await proposal_store.find_pending(repository.id) == []
