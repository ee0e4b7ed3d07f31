from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App
    app_name: str = "Repo Autopilot"
    debug: bool = False

    # GitHub
    github_token: str = ""
    github_default_branch: str = "main"

    # OpenAI (reasoning oracle via gen_ai_hub proxy)
    openai_model: str = "gpt-5"
    temperature: float = 0.0
    oracle_timeout_seconds: float = 120.0  # Per oracle call

    # Scheduling
    default_scheduled_time: str = "00:00"
    default_timezone: str = "UTC"
    reconciliation_interval_seconds: int = 3600  # Hourly sweep

    # Planning
    oracle_file_byte_budget: int = 3000  # Per candidate file
    max_signal_files: int = 5
    max_candidate_files: int = 10
    max_tree_entries_in_prompt: int = 200
    recent_history_count: int = 5
    scheduled_instruction: str = (
        "Analyze the repository and make one meaningful, self-contained "
        "improvement: fix a bug, improve documentation, add a missing test, "
        "or refactor unclear code. Keep the change focused and safe."
    )

    # Meaningfulness gate for unattended runs
    min_line_delta: int = 3
    min_byte_delta: int = 50

    # Persistence (empty = in-memory only)
    data_dir: str = ""

    model_config = ConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
