"""
Gamification Scorer — experience points for completed tasks and levels.

    xp = baseXP + typeScore(type) + priorityScore(priority)

With time-based scoring enabled and a positive estimate:

    ratio = actualHours / estimatedHours
    ratio <= 0.9        early bonus   (min(early, maxBonus) %)
    0.9 < ratio <= 1.1  on-time bonus (onTime %)
    ratio > 1.1         late penalty  (min(late, maxPenalty) %, subtracted)

    xp += round(xp * pct / 100)
    final = max(1, round(xp))

Rounding is half-up to match the scores users have already been awarded.
"""

import math
from datetime import datetime, timezone

MAX_ELAPSED_HOURS = 720
EARLY_RATIO = 0.9
LATE_RATIO = 1.1


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _as_utc(dt):
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def calculate_level(xp) -> int:
    """Level tier for a cumulative experience total (1 for xp <= 0)."""
    if xp is None or xp <= 0:
        return 1
    return math.floor(math.sqrt(xp / 100)) + 1


def calculate_actual_hours(task, completed_at: datetime | None = None) -> float:
    """Logged time if any, else elapsed wall time capped at 30 days."""
    if task.time_logs:
        return sum((log.duration or 0) for log in task.time_logs) / 60

    start = _as_utc(task.created_at)
    end = _as_utc(completed_at or task.completed_date)
    if start is None or end is None:
        return 0.0
    elapsed = (end - start).total_seconds() / 3600
    return max(0.0, min(elapsed, MAX_ELAPSED_HOURS))


def time_adjustment_percent(actual_hours: float, estimated_hours: float, scoring) -> float:
    """Signed bonus/penalty percentage for the given ratio."""
    ratio = actual_hours / estimated_hours
    if ratio <= EARLY_RATIO:
        return min(scoring.early_completion_bonus, scoring.max_bonus_percent)
    if ratio <= LATE_RATIO:
        return scoring.on_time_bonus
    return -min(scoring.late_completion_penalty, scoring.max_penalty_percent)


def calculate_task_xp(task, leaderboard, actual_hours: float | None = None) -> int:
    """Experience awarded for completing *task*.

    Args:
        task: Task (type, priority, estimated_hours, time_logs, dates).
        leaderboard: LeaderboardSettings.
        actual_hours: Override for the measured duration; computed when None.
    """
    xp = leaderboard.base_xp + leaderboard.type_score(task.type) + leaderboard.priority_score(task.priority)

    scoring = leaderboard.time_based
    estimated = task.estimated_hours or 0
    if scoring.enabled and estimated > 0:
        if actual_hours is None:
            actual_hours = calculate_actual_hours(task)
        # No measurable duration: nothing to compare against the estimate
        if actual_hours > 0:
            pct = time_adjustment_percent(actual_hours, estimated, scoring)
            xp += _round_half_up(xp * pct / 100)

    return max(1, _round_half_up(xp))


def apply_experience(participant, delta: int) -> int:
    """Add *delta* to the participant's xp (clamped at zero) and relevel.

    Returns the new experience total.
    """
    participant.xp = max(0, (participant.xp or 0) + delta)
    participant.level = calculate_level(participant.xp)
    return participant.xp
