"""
GitHub Integration Module

Provides the repository content gateway used by the planner and applier.
"""

from autopilot.integrations.github.client import GitHubClient, ContentGateway
from autopilot.integrations.github.models import (
    CommitInfo,
    FileContent,
    TreeEntry,
    WriteResult,
)
from autopilot.models.repository import RepositoryConfig
from autopilot.services.credential_store import get_github_token


def get_gateway(config: RepositoryConfig) -> GitHubClient:
    """Build a gateway for a repository's default branch using its owner's token."""
    return GitHubClient(
        full_name=config.full_name,
        branch=config.default_branch,
        token=get_github_token(config.user_id),
    )


__all__ = [
    "GitHubClient",
    "ContentGateway",
    "CommitInfo",
    "FileContent",
    "TreeEntry",
    "WriteResult",
    "get_gateway",
]
