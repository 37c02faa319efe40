"""
XpLedger — owns the per-user progress aggregate and the XP transaction log.
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import date

from .db import ProgressStore
from .engine.xp import XP_SOURCES, level_badge, level_of, xp_progress
from .errors import InvalidAmount

logger = logging.getLogger(__name__)

MAX_TRANSACTIONS_PAGE = 100


@dataclass
class XpResult:
    leveled_up: bool
    old_level: int
    new_level: int
    total_xp: int
    total_xp_earned: int


@dataclass
class XpTransaction:
    amount: int
    reason: str
    source: str
    created_at: str


@dataclass
class ProgressSnapshot:
    user_id: str
    xp: int = 0
    level: int = 1
    current_streak: int = 0
    longest_streak: int = 0
    total_xp_earned: int = 0
    last_workout_date: str | None = None
    badge: dict = field(default_factory=dict)
    progress_percent: float = 0.0
    xp_in_current_level: int = 0
    xp_needed_for_next: int = 100


def _parse_date(value) -> date | None:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


class XpLedger:
    def __init__(self, store: ProgressStore):
        self.store = store

    def award(self, user_id: str, amount: int, reason: str, source: str) -> XpResult:
        """
        Atomically add `amount` XP for the user and append one transaction.

        Raises:
            InvalidAmount: amount is not a positive integer (nothing is written).
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidAmount(f"XP amount must be a positive integer, got {amount!r}")
        if source not in XP_SOURCES:
            raise ValueError(f"unknown XP source: {source!r}")

        row = self.store.increment_xp(user_id, amount, reason, source)
        new_xp = row["xp"]
        old_level = level_of(row["old_xp"])
        new_level = level_of(new_xp)
        leveled_up = new_level > old_level

        logger.info("Awarded %d XP to %s... (%s): %s", amount, user_id[:8], source, reason)
        if leveled_up:
            logger.info("Level up for %s...: %d -> %d", user_id[:8], old_level, new_level)

        return XpResult(
            leveled_up=leveled_up,
            old_level=old_level,
            new_level=new_level,
            total_xp=new_xp,
            total_xp_earned=row.get("total_xp_earned", new_xp),
        )

    # ── Read side ─────────────────────────────────────────────────────────────

    def progress_row(self, user_id: str) -> dict:
        """Stored progress with zero-state defaults; never creates a row."""
        row = self.store.get_progress(user_id) or {}
        return {
            "xp": row.get("xp") or 0,
            "current_streak": row.get("current_streak") or 0,
            "longest_streak": row.get("longest_streak") or 0,
            "total_xp_earned": row.get("total_xp_earned") or 0,
            "last_workout_date": _parse_date(row.get("last_workout_date")),
        }

    def snapshot(self, user_id: str) -> ProgressSnapshot:
        row = self.progress_row(user_id)
        xp = row["xp"]
        details = xp_progress(xp)
        last = row["last_workout_date"]
        return ProgressSnapshot(
            user_id=user_id,
            xp=xp,
            level=details["current_level"],
            current_streak=row["current_streak"],
            longest_streak=row["longest_streak"],
            total_xp_earned=row["total_xp_earned"],
            last_workout_date=last.isoformat() if last else None,
            badge=level_badge(details["current_level"]),
            progress_percent=math.floor(details["progress_percent"] * 10) / 10,
            xp_in_current_level=details["xp_in_current_level"],
            xp_needed_for_next=details["xp_needed_for_next"],
        )

    def recent_transactions(self, user_id: str, limit: int = 10) -> list[XpTransaction]:
        limit = max(1, min(limit, MAX_TRANSACTIONS_PAGE))
        return [
            XpTransaction(
                amount=row["amount"],
                reason=row.get("reason", ""),
                source=row["source"],
                created_at=str(row.get("created_at", "")),
            )
            for row in self.store.list_transactions(user_id, limit)
        ]
