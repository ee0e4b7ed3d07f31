"""Prompts package."""

from autopilot.ai_core.prompts.planning import (
    PLANNING_SYSTEM_PROMPT,
    PLANNING_USER_PROMPT_TEMPLATE,
    REFINEMENT_INSTRUCTION_TEMPLATE,
)

__all__ = [
    "PLANNING_SYSTEM_PROMPT",
    "PLANNING_USER_PROMPT_TEMPLATE",
    "REFINEMENT_INSTRUCTION_TEMPLATE",
]
