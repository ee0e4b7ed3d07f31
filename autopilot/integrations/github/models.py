"""
GitHub Data Models
"""

from typing import Optional
from pydantic import BaseModel


class FileContent(BaseModel):
    """A file read from the repository with its optimistic token (blob sha)."""

    path: str
    content: str
    sha: str


class TreeEntry(BaseModel):
    """One entry of the recursive repository tree."""

    path: str
    kind: str  # "blob" or "tree"
    size: Optional[int] = None


class CommitInfo(BaseModel):
    id: str
    message: str


class WriteResult(BaseModel):
    """Outcome of a create/update/delete: the resulting commit id."""

    commit_id: str
