"""
Change Proposal Models

A proposal is one batch of file edits suggested for a repository in response
to an instruction. Status machine:

    pending -> approved (optional) -> committed
    pending / approved -> rejected

committed and rejected are terminal; a terminal proposal never changes again.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


def _now() -> datetime:
    return datetime.now(timezone.utc)


class EditAction(str, Enum):
    """File-level action."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class RiskLevel(str, Enum):
    """Risk classification of a proposal."""

    LOW = "low"  # Documentation, comments
    MEDIUM = "medium"  # Logic changes
    HIGH = "high"  # Architecture changes


class ProposalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMMITTED = "committed"


TERMINAL_STATUSES = (ProposalStatus.COMMITTED, ProposalStatus.REJECTED)


class FileEdit(BaseModel):
    """One file-level change within a proposal."""

    path: str
    action: EditAction
    reason: str = ""
    content_before: str = ""  # Empty for create
    content_after: str = ""  # Empty for delete
    diff: str = ""  # Always recomputed from (before, after)
    error_message: Optional[str] = None  # Set when applying this edit failed


class ChangeProposal(BaseModel):
    """A reviewable batch of file edits."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    repository_id: str
    user_id: Optional[str] = None  # None for unattended runs
    instruction: str
    plan: str = ""
    explanation: str = ""
    risk: RiskLevel = RiskLevel.LOW
    edits: List[FileEdit] = Field(default_factory=list)
    commit_message: str

    status: ProposalStatus = ProposalStatus.PENDING
    commit_id: Optional[str] = None
    error_message: Optional[str] = None

    # Bumped on every mutation; used for compare-and-swap updates
    version: int = 1

    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    @property
    def is_finalized(self) -> bool:
        return self.status in TERMINAL_STATUSES
