from fastapi import APIRouter
from pydantic import BaseModel
from github import Auth, Github
from github.GithubException import GithubException, BadCredentialsException
from typing import Optional
import logging

from autopilot.services.credential_store import (
    set_github_token,
    remove_github_token,
)

logger = logging.getLogger(__name__)
router = APIRouter()


class GitHubTokenRequest(BaseModel):
    """Personal access token to use for a user's repositories."""

    user_id: str
    token: str  # ghp_… or github_pat_…


class GitHubTokenResponse(BaseModel):
    success: bool
    message: str
    login: Optional[str] = None


@router.post("/credentials/github", response_model=GitHubTokenResponse)
async def store_github_token(request: GitHubTokenRequest):
    """
    Validate a GitHub token and keep it for the user's automation runs.
    """
    try:
        user = Github(auth=Auth.Token(request.token)).get_user()
        login = user.login  # Force API call
    except BadCredentialsException:
        return GitHubTokenResponse(
            success=False,
            message="Invalid GitHub token. Please check your personal access token and try again.",
        )
    except GithubException as gh_err:
        logger.error(f"GitHub API error during token validation: {gh_err}")
        message = gh_err.data.get("message", str(gh_err)) if isinstance(gh_err.data, dict) else str(gh_err)
        return GitHubTokenResponse(success=False, message=f"GitHub API error: {message}")

    set_github_token(request.user_id, request.token)
    logger.info(f"GitHub token stored for user {request.user_id} ({login})")
    return GitHubTokenResponse(success=True, message=f"Token validated for {login}", login=login)


@router.delete("/credentials/github/{user_id}", response_model=GitHubTokenResponse)
async def remove_github_credentials(user_id: str):
    remove_github_token(user_id)
    logger.info(f"GitHub token removed for user {user_id}")
    return GitHubTokenResponse(success=True, message="GitHub token removed")
