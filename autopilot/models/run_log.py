"""
Automation Run Log

Append-only audit record, one per pipeline execution (scheduled or ad hoc).
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class RunStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class AutomationRunLog(BaseModel):
    """Audit record of one pipeline execution. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    repository_id: str
    proposal_id: Optional[str] = None
    commit_id: str = ""
    commit_message: str = ""
    files_changed: List[str] = Field(default_factory=list)
    analysis: str = ""
    status: RunStatus
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
