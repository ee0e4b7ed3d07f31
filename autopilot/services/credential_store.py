"""
Runtime credential store for per-user GitHub access tokens.

Tokens supplied by a caller override the .env-based github_token from
config.Settings. Stored in-memory only; they do not persist across restarts.
"""

import threading
from typing import Optional

from autopilot.config import get_settings

_lock = threading.Lock()
_tokens: dict[str, str] = {}


def set_github_token(user_id: str, token: str) -> None:
    with _lock:
        _tokens[user_id] = token


def remove_github_token(user_id: str) -> None:
    with _lock:
        _tokens.pop(user_id, None)


def clear_github_tokens() -> None:
    with _lock:
        _tokens.clear()


def get_github_token(user_id: Optional[str] = None) -> str:
    """Token for a user, falling back to the configured default."""
    with _lock:
        token = _tokens.get(user_id) if user_id else None
    return token or get_settings().github_token
