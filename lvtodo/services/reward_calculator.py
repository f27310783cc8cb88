"""Pure reward and level arithmetic.

Nothing here touches the store; every function is total over non-negative
integer inputs.
"""

import math
from datetime import datetime

from lvtodo.core.config import Constants
from lvtodo.domain.task import Difficulty


_BASE_POINTS: dict[Difficulty, int] = {
    Difficulty.EASY: Constants.EASY_TASK_POINTS,
    Difficulty.HARD: Constants.HARD_TASK_POINTS,
}

_BASE_XP: dict[Difficulty, int] = {
    Difficulty.EASY: Constants.EASY_TASK_XP,
    Difficulty.HARD: Constants.HARD_TASK_XP,
}


def apply_late_penalty(points: int) -> int:
    """Halve a point reward, rounding down."""
    return math.floor(points * Constants.LATE_PENALTY_MULTIPLIER)


def task_points(difficulty: Difficulty | str, *, is_late: bool = False) -> int:
    base = _BASE_POINTS[Difficulty(difficulty)]
    return apply_late_penalty(base) if is_late else base


def task_xp(difficulty: Difficulty | str) -> int:
    """XP reward for a difficulty. Lateness never reduces XP."""
    return _BASE_XP[Difficulty(difficulty)]


def level(xp: int) -> int:
    return min(xp // Constants.XP_PER_LEVEL + 1, Constants.MAX_LEVEL)


def xp_for_next_level(xp: int) -> int:
    """Total XP at which the next level starts (the current threshold at max level)."""
    return min(level(xp), Constants.MAX_LEVEL - 1) * Constants.XP_PER_LEVEL


def level_progress_percent(xp: int) -> float:
    """Progress through the current level in [0, 100]; 100 once the max level is reached."""
    if level(xp) >= Constants.MAX_LEVEL:
        return 100.0
    return (xp % Constants.XP_PER_LEVEL) / Constants.XP_PER_LEVEL * 100


def average_cost(suggested_costs: list[int]) -> int:
    """Arithmetic mean rounded half-up, in exact integer arithmetic."""
    if not suggested_costs:
        msg = "Cannot average an empty list of cost votes"
        raise ValueError(msg)
    total = sum(suggested_costs)
    count = len(suggested_costs)
    return (2 * total + count) // (2 * count)


def time_remaining_fraction(created_at: datetime, deadline: datetime, now: datetime) -> float:
    """Fraction of the task's allotted time still remaining, clamped to [0, 1]."""
    total = (deadline - created_at).total_seconds()
    if total <= 0:
        return 0.0
    elapsed = (now - created_at).total_seconds()
    return max(0.0, min(1.0, 1 - elapsed / total))
