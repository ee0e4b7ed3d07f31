"""
Utility package exports
"""

from autopilot.utils.diff import (
    format_diff_for_display,
    generate_diff,
    get_diff_stats,
    split_lines,
)
from autopilot.utils.schedule import (
    COMMON_TIMEZONES,
    RecurrenceRule,
    build_recurrence_rule,
    is_valid_timezone,
    next_fire_instant,
    parse_time,
)

__all__ = [
    "format_diff_for_display",
    "generate_diff",
    "get_diff_stats",
    "split_lines",
    "COMMON_TIMEZONES",
    "RecurrenceRule",
    "build_recurrence_rule",
    "is_valid_timezone",
    "next_fire_instant",
    "parse_time",
]
