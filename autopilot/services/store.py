"""
Persistence stores for repository configs, change proposals and run logs.

Each store is an in-memory table guarded by an asyncio.Lock. When a data
directory is configured, the table is snapshotted to a JSON file after every
mutation and reloaded on construction, so configs, proposals and run logs
survive a restart. Scheduled jobs are never stored here.
"""

import asyncio
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel, TypeAdapter

from autopilot.exceptions import (
    AlreadyFinalizedError,
    ConflictError,
    NotFoundError,
)
from autopilot.models.proposal import ChangeProposal, FileEdit, ProposalStatus
from autopilot.models.repository import RepositoryConfig
from autopilot.models.run_log import AutomationRunLog
from autopilot.utils.schedule import build_recurrence_rule

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class JsonTable(Generic[T]):
    """Keyed table of pydantic models with an optional JSON snapshot file."""

    def __init__(self, model: Type[T], path: Optional[Path] = None):
        self._adapter = TypeAdapter(List[model])
        self._path = path
        self._rows: Dict[str, T] = {}
        self.lock = asyncio.Lock()
        self._load()

    def _load(self) -> None:
        if not self._path or not self._path.exists():
            return
        rows = self._adapter.validate_json(self._path.read_bytes())
        self._rows = {row.id: row for row in rows}
        logger.info(f"Loaded {len(self._rows)} records from {self._path}")

    def _write(self, rows: Dict[str, T]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_bytes(self._adapter.dump_json(list(rows.values())))
        os.replace(tmp_path, self._path)

    async def _commit(self, rows: Dict[str, T]) -> None:
        # Disk first: a failed write leaves memory untouched
        if self._path:
            await asyncio.to_thread(self._write, rows)
        self._rows = rows

    def get(self, key: str) -> Optional[T]:
        return self._rows.get(key)

    async def put(self, row: T) -> None:
        await self._commit({**self._rows, row.id: row})

    async def remove(self, key: str) -> Optional[T]:
        if key not in self._rows:
            return None
        rows = dict(self._rows)
        row = rows.pop(key)
        await self._commit(rows)
        return row

    def values(self) -> List[T]:
        return list(self._rows.values())


def _table_path(data_dir: Optional[str], filename: str) -> Optional[Path]:
    return Path(data_dir) / filename if data_dir else None


class RepositoryConfigStore:
    """Handles all repository automation config operations."""

    def __init__(self, data_dir: Optional[str] = None):
        self._table = JsonTable(
            RepositoryConfig, _table_path(data_dir, "repositories.json")
        )

    async def create(self, config: RepositoryConfig) -> RepositoryConfig:
        # Reject a bad time/timezone before anything is stored
        build_recurrence_rule(config.scheduled_time, config.timezone)
        async with self._table.lock:
            await self._table.put(config)
        logger.info(f"Repository config created: {config.id} ({config.full_name})")
        return config

    async def find_by_id(self, repository_id: str) -> Optional[RepositoryConfig]:
        return self._table.get(repository_id)

    async def get(self, repository_id: str) -> RepositoryConfig:
        config = self._table.get(repository_id)
        if not config:
            raise NotFoundError(f"Repository not found: {repository_id}")
        return config

    async def find_all(self) -> List[RepositoryConfig]:
        return self._table.values()

    async def find_enabled(self) -> List[RepositoryConfig]:
        return [c for c in self._table.values() if c.automation_enabled]

    async def set_automation(
        self, repository_id: str, enabled: bool
    ) -> RepositoryConfig:
        async with self._table.lock:
            config = await self.get(repository_id)
            updated = config.model_copy(
                update={"automation_enabled": enabled, "updated_at": _now()}
            )
            await self._table.put(updated)
        return updated

    async def set_schedule(
        self, repository_id: str, scheduled_time: str, tz: str
    ) -> RepositoryConfig:
        """
        Update the daily time and timezone.

        Raises:
            InvalidTimeFormatError / InvalidTimezoneError: Before any mutation
            NotFoundError: If the repository does not exist
        """
        build_recurrence_rule(scheduled_time, tz)
        async with self._table.lock:
            config = await self.get(repository_id)
            updated = config.model_copy(
                update={
                    "scheduled_time": scheduled_time,
                    "timezone": tz,
                    "updated_at": _now(),
                }
            )
            await self._table.put(updated)
        return updated

    async def mark_run(
        self, repository_id: str, when: Optional[datetime] = None
    ) -> None:
        async with self._table.lock:
            config = self._table.get(repository_id)
            if config:
                await self._table.put(
                    config.model_copy(update={"last_run_at": when or _now()})
                )

    async def delete(self, repository_id: str) -> RepositoryConfig:
        async with self._table.lock:
            config = await self._table.remove(repository_id)
        if not config:
            raise NotFoundError(f"Repository not found: {repository_id}")
        return config


class ProposalStore:
    """
    Handles change proposal persistence and status transitions.

    Mutations after creation are compare-and-swap on the proposal's version:
    a caller holding a stale copy gets ConflictError instead of silently
    overwriting a concurrent change.
    """

    def __init__(self, data_dir: Optional[str] = None):
        self._table = JsonTable(ChangeProposal, _table_path(data_dir, "proposals.json"))

    async def create(self, proposal: ChangeProposal) -> ChangeProposal:
        async with self._table.lock:
            if self._table.get(proposal.id):
                raise ConflictError(f"Proposal already exists: {proposal.id}")
            await self._table.put(proposal)
        logger.info(
            f"Proposal created: {proposal.id} ({len(proposal.edits)} edits, "
            f"risk={proposal.risk.value})"
        )
        return proposal

    async def find_by_id(self, proposal_id: str) -> Optional[ChangeProposal]:
        return self._table.get(proposal_id)

    async def get(self, proposal_id: str) -> ChangeProposal:
        proposal = self._table.get(proposal_id)
        if not proposal:
            raise NotFoundError(f"Proposal not found: {proposal_id}")
        return proposal

    async def find_by_repository(
        self, repository_id: str, status: Optional[ProposalStatus] = None
    ) -> List[ChangeProposal]:
        proposals = [
            p
            for p in self._table.values()
            if p.repository_id == repository_id and (status is None or p.status == status)
        ]
        return sorted(proposals, key=lambda p: p.created_at, reverse=True)

    async def find_by_user(self, user_id: str) -> List[ChangeProposal]:
        proposals = [p for p in self._table.values() if p.user_id == user_id]
        return sorted(proposals, key=lambda p: p.created_at, reverse=True)

    async def find_by_status(self, status: ProposalStatus) -> List[ChangeProposal]:
        proposals = [p for p in self._table.values() if p.status == status]
        return sorted(proposals, key=lambda p: p.created_at, reverse=True)

    async def find_pending(self, repository_id: str) -> List[ChangeProposal]:
        """All pending proposals for a repository, newest first."""
        return await self.find_by_repository(repository_id, ProposalStatus.PENDING)

    def _check_current(self, proposal_id: str, expected_version: int) -> ChangeProposal:
        current = self._table.get(proposal_id)
        if not current:
            raise NotFoundError(f"Proposal not found: {proposal_id}")
        if current.is_finalized:
            raise AlreadyFinalizedError(
                f"Proposal {proposal_id} is already {current.status.value}"
            )
        if current.version != expected_version:
            raise ConflictError(
                f"Proposal {proposal_id} was modified concurrently "
                f"(expected version {expected_version}, found {current.version})"
            )
        return current

    async def _save(self, current: ChangeProposal, **changes) -> ChangeProposal:
        changes.update({"version": current.version + 1, "updated_at": _now()})
        updated = current.model_copy(update=changes)
        await self._table.put(updated)
        return updated

    async def claim(self, proposal_id: str, expected_version: int) -> ChangeProposal:
        """Move a pending/approved proposal to approved for the duration of an apply."""
        async with self._table.lock:
            current = self._check_current(proposal_id, expected_version)
            return await self._save(current, status=ProposalStatus.APPROVED)

    async def release(
        self,
        proposal_id: str,
        expected_version: int,
        error_message: str,
        edits: List[FileEdit],
    ) -> ChangeProposal:
        """Return a proposal whose apply failed entirely to pending, keeping the errors."""
        async with self._table.lock:
            current = self._check_current(proposal_id, expected_version)
            return await self._save(
                current,
                status=ProposalStatus.PENDING,
                error_message=error_message,
                edits=edits,
            )

    async def finalize(
        self,
        proposal_id: str,
        expected_version: int,
        commit_id: str,
        edits: List[FileEdit],
        error_message: Optional[str] = None,
    ) -> ChangeProposal:
        """Mark a proposal committed with the last successful commit id."""
        async with self._table.lock:
            current = self._check_current(proposal_id, expected_version)
            return await self._save(
                current,
                status=ProposalStatus.COMMITTED,
                commit_id=commit_id,
                error_message=error_message,
                edits=edits,
            )

    async def reject(self, proposal_id: str) -> ChangeProposal:
        """
        Reject a proposal. A no-op on an already committed or rejected
        proposal: it is returned unchanged, timestamps included.

        Raises:
            ConflictError: If the proposal is claimed by an apply in flight
        """
        async with self._table.lock:
            current = self._table.get(proposal_id)
            if not current:
                raise NotFoundError(f"Proposal not found: {proposal_id}")
            if current.is_finalized:
                logger.info(
                    f"Proposal {proposal_id} already {current.status.value}, reject ignored"
                )
                return current
            if current.status == ProposalStatus.APPROVED:
                raise ConflictError(
                    f"Proposal {proposal_id} is being applied and cannot be rejected"
                )
            updated = await self._save(current, status=ProposalStatus.REJECTED)
        logger.info(f"Proposal rejected: {proposal_id}")
        return updated


class RunLogStore:
    """Append-only audit log of pipeline executions."""

    def __init__(self, data_dir: Optional[str] = None):
        self._table = JsonTable(AutomationRunLog, _table_path(data_dir, "run_logs.json"))

    async def append(self, entry: AutomationRunLog) -> AutomationRunLog:
        async with self._table.lock:
            if self._table.get(entry.id):
                raise ConflictError(f"Run log already exists: {entry.id}")
            await self._table.put(entry)
        logger.info(
            f"Run log {entry.status.value} for repository {entry.repository_id}: "
            f"{len(entry.files_changed)} files"
        )
        return entry

    async def find_by_repository(
        self, repository_id: str, limit: int = 50
    ) -> List[AutomationRunLog]:
        entries = [e for e in self._table.values() if e.repository_id == repository_id]
        entries.sort(key=lambda e: e.created_at, reverse=True)
        return entries[:limit]
