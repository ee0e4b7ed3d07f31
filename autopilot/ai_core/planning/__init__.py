from autopilot.ai_core.planning.planner import (
    ModificationPlanner,
    PlanResponse,
    ProposedEditSet,
    RepositoryContext,
    RepositoryFile,
    is_meaningful,
)

__all__ = [
    "ModificationPlanner",
    "PlanResponse",
    "ProposedEditSet",
    "RepositoryContext",
    "RepositoryFile",
    "is_meaningful",
]
