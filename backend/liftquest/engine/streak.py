"""
Streak tracking — pure functions, no DB access.
"""
import math
from dataclasses import dataclass
from datetime import date

from .xp import XP_REWARDS

# (min streak days, multiplier) — highest threshold wins
STREAK_MILESTONES = [
    (365, 3.0),
    (100, 2.5),
    (30,  2.0),
    (7,   1.5),
]


@dataclass(frozen=True)
class StreakUpdate:
    current_streak: int
    longest_streak: int
    bonus_xp: int
    advanced: bool      # False when today was already counted


def streak_multiplier(streak_days: int) -> float:
    for threshold, multiplier in STREAK_MILESTONES:
        if streak_days >= threshold:
            return multiplier
    return 1.0


def streak_bonus(streak_days: int) -> int:
    base = XP_REWARDS["STREAK_BONUS_PER_DAY"] * streak_days
    return int(math.floor(base * streak_multiplier(streak_days)))


def compute_streak(
    last_workout_date: date | None,
    current_streak: int,
    longest_streak: int,
    today: date,
) -> StreakUpdate:
    """
    Decide what a workout on `today` does to the streak.
    Call once per qualifying event; a same-day repeat is a no-op.
    """
    if last_workout_date is not None:
        days = (today - last_workout_date).days
        # d < 0 only happens with a skewed caller clock; never move the date back
        if days <= 0:
            return StreakUpdate(current_streak, longest_streak, 0, False)
        new_streak = current_streak + 1 if days == 1 else 1
    else:
        new_streak = 1

    return StreakUpdate(
        current_streak=new_streak,
        longest_streak=max(longest_streak, new_streak),
        bonus_xp=streak_bonus(new_streak),
        advanced=True,
    )
