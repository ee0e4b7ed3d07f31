"""
Tests for ChangeApplier: per-file application, partial failure, fresh tokens.
"""

import pytest

from autopilot.exceptions import AlreadyFinalizedError, ConflictError, TransportError
from autopilot.models.proposal import ChangeProposal, EditAction, FileEdit, ProposalStatus
from autopilot.models.run_log import RunStatus
from autopilot.services.applier import ChangeApplier
from tests.fakes import FakeGateway


def edit(path, action, after="", before=""):
    return FileEdit(path=path, action=action, content_before=before, content_after=after)


@pytest.fixture
def applier(proposal_store, run_log_store):
    return ChangeApplier(proposal_store, run_log_store)


@pytest.mark.asyncio
async def test_partial_failure_commits_the_rest(applier, proposal_store, run_log_store):
    gateway = FakeGateway(files={"a.py": "a = 1\n", "b.py": "b = 1\n"})
    gateway.fail_paths["b.py"] = TransportError("update b.py: GitHub API error 502")
    proposal = await proposal_store.create(
        ChangeProposal(
            repository_id="repo-1",
            instruction="Bump values",
            commit_message="Bump values",
            edits=[
                edit("a.py", EditAction.UPDATE, "a = 2\n", "a = 1\n"),
                edit("b.py", EditAction.UPDATE, "b = 2\n", "b = 1\n"),
                edit("c.py", EditAction.CREATE, "c = 3\n"),
            ],
        )
    )

    result = await applier.apply(proposal, gateway)

    assert result.success
    assert result.committed_files == ["a.py", "c.py"]
    assert list(result.failed_files) == ["b.py"]
    assert result.last_commit_id == gateway.commits[-1][0]

    stored = await proposal_store.get(proposal.id)
    assert stored.status == ProposalStatus.COMMITTED
    assert stored.commit_id == result.last_commit_id
    assert "b.py" in stored.error_message
    assert stored.edits[0].error_message is None
    assert "502" in stored.edits[1].error_message
    assert stored.edits[2].error_message is None

    assert gateway.files["a.py"] == "a = 2\n"
    assert gateway.files["b.py"] == "b = 1\n"
    assert gateway.files["c.py"] == "c = 3\n"

    logs = await run_log_store.find_by_repository("repo-1")
    assert len(logs) == 1
    assert logs[0].status == RunStatus.SUCCESS
    assert logs[0].files_changed == ["a.py", "c.py"]
    assert logs[0].proposal_id == proposal.id


@pytest.mark.asyncio
async def test_every_edit_failing_leaves_proposal_pending(applier, proposal_store, run_log_store):
    gateway = FakeGateway(files={"a.py": "a = 1\n"})
    gateway.fail_paths["a.py"] = TransportError("connection reset")
    proposal = await proposal_store.create(
        ChangeProposal(
            repository_id="repo-1",
            instruction="Change a",
            commit_message="Change a",
            edits=[edit("a.py", EditAction.UPDATE, "a = 2\n", "a = 1\n")],
        )
    )

    result = await applier.apply(proposal, gateway)

    assert not result.success
    assert gateway.commits == []
    stored = await proposal_store.get(proposal.id)
    assert stored.status == ProposalStatus.PENDING
    assert stored.commit_id is None
    assert "connection reset" in stored.error_message

    logs = await run_log_store.find_by_repository("repo-1")
    assert logs[0].status == RunStatus.FAILED
    assert logs[0].files_changed == []


@pytest.mark.asyncio
async def test_created_file_reads_back(applier, proposal_store):
    gateway = FakeGateway()
    content = "# Contributing\n\nOpen a pull request.\n"
    proposal = await proposal_store.create(
        ChangeProposal(
            repository_id="repo-1",
            instruction="Add contributing guide",
            commit_message="Add CONTRIBUTING.md",
            edits=[edit("CONTRIBUTING.md", EditAction.CREATE, content)],
        )
    )

    await applier.apply(proposal, gateway)

    assert (await gateway.read_file("CONTRIBUTING.md")).content == content
    assert gateway.commits[0][1] == "Add CONTRIBUTING.md"


@pytest.mark.asyncio
async def test_update_and_delete_read_a_fresh_token(applier, proposal_store):
    gateway = FakeGateway(files={"a.py": "a = 1\n", "old.py": "pass\n"})
    proposal = await proposal_store.create(
        ChangeProposal(
            repository_id="repo-1",
            instruction="Tidy",
            commit_message="Tidy",
            edits=[
                edit("a.py", EditAction.UPDATE, "a = 2\n", "a = 1\n"),
                edit("old.py", EditAction.DELETE, "", "pass\n"),
            ],
        )
    )
    # Someone else commits after planning; the sha seen at planning time is stale
    gateway.files["a.py"] = "a = 10\n"

    result = await applier.apply(proposal, gateway)

    assert result.committed_files == ["a.py", "old.py"]
    assert gateway.reads == ["a.py", "old.py"]
    assert gateway.files == {"a.py": "a = 2\n"}


@pytest.mark.asyncio
async def test_finalized_proposal_is_not_applied(applier, proposal_store):
    gateway = FakeGateway()
    proposal = await proposal_store.create(
        ChangeProposal(
            repository_id="repo-1",
            instruction="Add file",
            commit_message="Add file",
            edits=[edit("x.txt", EditAction.CREATE, "x\n")],
        )
    )
    rejected = await proposal_store.reject(proposal.id)

    with pytest.raises(AlreadyFinalizedError):
        await applier.apply(rejected, gateway)
    assert gateway.commits == []


@pytest.mark.asyncio
async def test_second_apply_of_same_proposal_conflicts(applier, proposal_store):
    gateway = FakeGateway()
    proposal = await proposal_store.create(
        ChangeProposal(
            repository_id="repo-1",
            instruction="Add file",
            commit_message="Add file",
            edits=[edit("x.txt", EditAction.CREATE, "x\n")],
        )
    )

    await applier.apply(proposal, gateway)

    with pytest.raises(ConflictError):
        await applier.apply(proposal, gateway)
    assert len(gateway.commits) == 1


class RejectingGateway(FakeGateway):
    """Tries to reject the proposal being applied right after the first write."""

    def __init__(self, proposal_store, **kwargs):
        super().__init__(**kwargs)
        self.proposal_store = proposal_store
        self.proposal_id = None
        self.reject_errors = []

    async def write_file(self, path, content, message, sha=None):
        result = await super().write_file(path, content, message, sha)
        if len(self.commits) == 1:
            try:
                await self.proposal_store.reject(self.proposal_id)
            except ConflictError as e:
                self.reject_errors.append(e)
        return result


@pytest.mark.asyncio
async def test_reject_during_apply_is_refused(applier, proposal_store, run_log_store):
    gateway = RejectingGateway(proposal_store)
    proposal = await proposal_store.create(
        ChangeProposal(
            repository_id="repo-1",
            instruction="Add files",
            commit_message="Add files",
            edits=[
                edit("a.py", EditAction.CREATE, "a = 1\n"),
                edit("b.py", EditAction.CREATE, "b = 1\n"),
            ],
        )
    )
    gateway.proposal_id = proposal.id

    result = await applier.apply(proposal, gateway)

    assert len(gateway.reject_errors) == 1
    assert result.committed_files == ["a.py", "b.py"]
    stored = await proposal_store.get(proposal.id)
    assert stored.status == ProposalStatus.COMMITTED
    assert stored.commit_id == result.last_commit_id

    logs = await run_log_store.find_by_repository("repo-1")
    assert len(logs) == 1
    assert logs[0].status == RunStatus.SUCCESS


class ReclaimingGateway(FakeGateway):
    """Bumps the proposal version mid-apply, so the final transition conflicts."""

    def __init__(self, proposal_store, **kwargs):
        super().__init__(**kwargs)
        self.proposal_store = proposal_store
        self.proposal_id = None

    async def write_file(self, path, content, message, sha=None):
        result = await super().write_file(path, content, message, sha)
        current = await self.proposal_store.get(self.proposal_id)
        await self.proposal_store.claim(current.id, current.version)
        return result


@pytest.mark.asyncio
async def test_conflicting_finalize_still_records_the_run(applier, proposal_store, run_log_store):
    gateway = ReclaimingGateway(proposal_store)
    proposal = await proposal_store.create(
        ChangeProposal(
            repository_id="repo-1",
            instruction="Add file",
            commit_message="Add file",
            edits=[edit("a.py", EditAction.CREATE, "a = 1\n")],
        )
    )
    gateway.proposal_id = proposal.id

    with pytest.raises(ConflictError):
        await applier.apply(proposal, gateway)

    assert gateway.files["a.py"] == "a = 1\n"
    logs = await run_log_store.find_by_repository("repo-1")
    assert len(logs) == 1
    assert logs[0].files_changed == ["a.py"]
    assert logs[0].commit_id == gateway.commits[0][0]
    assert "modified concurrently" in logs[0].error_message
