"""
XP rewards and the level curve — pure functions, no DB access.

Level formula: level = floor(sqrt(xp / 100)) + 1
  Level 1 →    0 XP
  Level 2 →  100 XP
  Level 3 →  400 XP
  Level 4 →  900 XP
"""
import math

XP_REWARDS: dict[str, int] = {
    "SET_COMPLETE": 5,
    "PR_SET": 100,
    "STREAK_BONUS_PER_DAY": 10,
    "CHALLENGE_COMPLETE": 200,
    "ACHIEVEMENT_UNLOCK": 150,
}

XP_SOURCES = (
    "set_complete",
    "personal_record",
    "streak_bonus",
    "challenge_complete",
    "achievement_unlock",
    "manual",
)


def level_of(xp: int) -> int:
    """level = floor(sqrt(xp / 100)) + 1"""
    return math.isqrt(max(xp, 0) // 100) + 1


def xp_floor(level: int) -> int:
    """Minimum XP needed to reach this level."""
    return (level - 1) ** 2 * 100


def xp_ceiling(level: int) -> int:
    """XP at which the next level starts."""
    return xp_floor(level + 1)


def progress_percent(xp: int) -> float:
    level = level_of(xp)
    floor_xp = xp_floor(level)
    return (max(xp, 0) - floor_xp) / (xp_ceiling(level) - floor_xp) * 100


def xp_progress(xp: int) -> dict:
    """Everything a progress bar needs for the given cumulative XP."""
    level = level_of(xp)
    current_level_xp = xp_floor(level)
    next_level_xp = xp_ceiling(level)
    return {
        "current_level": level,
        "next_level": level + 1,
        "current_level_xp": current_level_xp,
        "next_level_xp": next_level_xp,
        "xp_in_current_level": max(xp, 0) - current_level_xp,
        "xp_needed_for_next": next_level_xp - current_level_xp,
        "progress_percent": progress_percent(xp),
    }


def level_badge(level: int) -> dict:
    badges = [
        (50, "Legend",       "crown"),
        (40, "Master",       "trophy"),
        (30, "Expert",       "star"),
        (20, "Advanced",     "flexed-biceps"),
        (10, "Intermediate", "fire"),
    ]
    for threshold, title, icon in badges:
        if level >= threshold:
            return {"title": title, "icon": icon}
    return {"title": "Beginner", "icon": "seedling"}
