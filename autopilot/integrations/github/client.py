"""
GitHub Content Gateway

Responsibilities:
- Read a file with its optimistic token (blob sha)
- Create / update / delete a file on one branch
- List the recursive tree and recent commit history
- Translate PyGithub failures into NotFound / Conflict / RepositoryEmpty / Transport

PyGithub is synchronous; every call runs in a worker thread so gateway calls
are non-blocking suspension points for the event loop.
"""

import asyncio
import logging
from itertools import islice
from typing import List, Optional, Protocol

from github import Auth, Github
from github.GithubException import GithubException, UnknownObjectException
from github.Repository import Repository

from autopilot.exceptions import (
    ConflictError,
    NotFoundError,
    RepositoryEmptyError,
    TransportError,
    ValidationError,
)
from autopilot.integrations.github.models import (
    CommitInfo,
    FileContent,
    TreeEntry,
    WriteResult,
)

logger = logging.getLogger(__name__)


class ContentGateway(Protocol):
    """The remote store as seen by the planner and applier."""

    async def read_file(self, path: str) -> FileContent: ...

    async def write_file(
        self, path: str, content: str, message: str, sha: Optional[str] = None
    ) -> WriteResult: ...

    async def delete_file(self, path: str, message: str, sha: str) -> WriteResult: ...

    async def list_tree(self) -> List[TreeEntry]: ...

    async def recent_history(self, count: int = 5) -> List[CommitInfo]: ...


def _error_message(e: GithubException) -> str:
    if isinstance(e.data, dict) and e.data.get("message"):
        return str(e.data["message"])
    return str(e)


def _is_empty_repository(e: GithubException) -> bool:
    return e.status == 409 and "empty" in _error_message(e).lower()


def translate_error(e: Exception, action: str) -> Exception:
    """Map a PyGithub (or transport) failure to the engine's error taxonomy."""
    if isinstance(e, UnknownObjectException):
        return NotFoundError(f"{action}: not found")
    if isinstance(e, UnicodeDecodeError):
        return ValidationError(f"{action}: not a UTF-8 text file")
    if isinstance(e, GithubException):
        message = _error_message(e)
        if _is_empty_repository(e):
            return RepositoryEmptyError(f"{action}: {message}")
        if e.status in (409, 422) and "sha" in message.lower():
            return ConflictError(f"{action}: stale file sha ({message})")
        if e.status == 409:
            return ConflictError(f"{action}: {message}")
        if e.status == 404:
            return NotFoundError(f"{action}: {message}")
        return TransportError(f"{action}: GitHub API error {e.status}: {message}")
    return TransportError(f"{action}: {e}")


class GitHubClient:
    """Content gateway over one repository branch."""

    def __init__(
        self,
        full_name: str,
        branch: str,
        token: str = "",
        client: Optional[Github] = None,
    ):
        self.full_name = full_name
        self.branch = branch
        if client is None:
            client = Github(auth=Auth.Token(token)) if token else Github()
        self.client = client
        self._repo: Optional[Repository] = None

    def _get_repo(self) -> Repository:
        if self._repo is None:
            self._repo = self.client.get_repo(self.full_name)
            logger.info(f"GitHub client initialized for {self.full_name}@{self.branch}")
        return self._repo

    async def _call(self, action: str, func, *args, **kwargs):
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except Exception as e:
            error = translate_error(e, action)
            if isinstance(error, (NotFoundError, RepositoryEmptyError)):
                logger.info(f"{self.full_name}: {error}")
            else:
                logger.error(f"{self.full_name}: {error}")
            raise error from e

    async def read_file(self, path: str) -> FileContent:
        """
        Read a file and its current sha.

        Raises:
            NotFoundError: If the path does not exist or is a directory
            ValidationError: If the file is not UTF-8 text
        """

        def _read():
            contents = self._get_repo().get_contents(path, ref=self.branch)
            if isinstance(contents, list):
                raise UnknownObjectException(404, {"message": "Is a directory"}, None)
            return FileContent(
                path=path,
                content=contents.decoded_content.decode("utf-8"),
                sha=contents.sha,
            )

        return await self._call(f"read {path}", _read)

    async def write_file(
        self, path: str, content: str, message: str, sha: Optional[str] = None
    ) -> WriteResult:
        """
        Create a file (no sha) or update it (sha of the version being replaced).

        Raises:
            ConflictError: If sha is stale or the file already exists on create
        """
        if sha:
            result = await self._call(
                f"update {path}",
                lambda: self._get_repo().update_file(
                    path=path,
                    message=message,
                    content=content,
                    sha=sha,
                    branch=self.branch,
                ),
            )
            logger.info(f"Updated file: {path} in branch {self.branch}")
        else:
            result = await self._call(
                f"create {path}",
                lambda: self._get_repo().create_file(
                    path=path,
                    message=message,
                    content=content,
                    branch=self.branch,
                ),
            )
            logger.info(f"Created file: {path} in branch {self.branch}")

        return WriteResult(commit_id=result["commit"].sha)

    async def delete_file(self, path: str, message: str, sha: str) -> WriteResult:
        result = await self._call(
            f"delete {path}",
            lambda: self._get_repo().delete_file(
                path=path, message=message, sha=sha, branch=self.branch
            ),
        )
        logger.info(f"Deleted file: {path} from branch {self.branch}")
        return WriteResult(commit_id=result["commit"].sha)

    async def list_tree(self) -> List[TreeEntry]:
        """
        List every entry of the branch tree, recursively.

        Raises:
            RepositoryEmptyError: If the repository has no commits
        """
        tree = await self._call(
            "list tree",
            lambda: self._get_repo().get_git_tree(self.branch, recursive=True),
        )
        return [
            TreeEntry(path=element.path, kind=element.type, size=element.size)
            for element in tree.tree
        ]

    async def recent_history(self, count: int = 5) -> List[CommitInfo]:
        def _history():
            commits = self._get_repo().get_commits(sha=self.branch)
            return [
                CommitInfo(id=commit.sha, message=commit.commit.message)
                for commit in islice(commits, count)
            ]

        return await self._call("list commits", _history)
