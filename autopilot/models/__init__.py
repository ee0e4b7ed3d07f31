# Shared data models
from autopilot.models.repository import RepositoryConfig
from autopilot.models.proposal import (
    ChangeProposal,
    FileEdit,
    EditAction,
    RiskLevel,
    ProposalStatus,
    TERMINAL_STATUSES,
)
from autopilot.models.run_log import AutomationRunLog, RunStatus

__all__ = [
    "RepositoryConfig",
    "ChangeProposal",
    "FileEdit",
    "EditAction",
    "RiskLevel",
    "ProposalStatus",
    "TERMINAL_STATUSES",
    "AutomationRunLog",
    "RunStatus",
]
