"""
Repository Automation Config

Identifies one remote repository and its daily automation schedule. The
recurrence rule is always derived from (scheduled_time, timezone).
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, computed_field

from autopilot.utils.schedule import RecurrenceRule, build_recurrence_rule


def _now() -> datetime:
    return datetime.now(timezone.utc)


class RepositoryConfig(BaseModel):
    """Automation settings for one connected repository."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    user_id: Optional[str] = Field(None, description="Owning user")
    owner: str = Field(..., description="Repository owner login")
    name: str = Field(..., description="Repository name")
    description: str = ""
    default_branch: str = "main"

    automation_enabled: bool = False
    scheduled_time: str = Field("00:00", description="Daily time, HH:MM 24-hour")
    timezone: str = Field("UTC", description="IANA timezone name")
    last_run_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    @computed_field
    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @computed_field
    @property
    def automation_schedule(self) -> str:
        """Cron expression derived from scheduled_time; never stored on its own."""
        return self.recurrence_rule().expression

    def recurrence_rule(self) -> RecurrenceRule:
        return build_recurrence_rule(self.scheduled_time, self.timezone)
