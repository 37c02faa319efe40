"""
ProgressionEngine — turns completed sets, sessions, challenges and achievements
into XP awards, level-ups, streak updates and personal records.

Each store call it makes is atomic on its own. The multi-step flows are not
wrapped in one transaction, so a bonus whose award fails after its trigger
(a PR, a streak day, a challenge completion) was already persisted is logged
and returned in `pending_awards` for a reconciliation job to re-issue.
"""
import logging
from dataclasses import dataclass, field
from datetime import date

from .db import ProgressStore
from .engine.challenges import COMPLETED, IN_PROGRESS, challenge_reason, completes_now, next_status
from .engine.records import is_qualifying_set
from .engine.streak import StreakUpdate, compute_streak
from .engine.xp import XP_REWARDS
from .errors import ConcurrencyConflict, InvalidAmount, NotFound
from .ledger import ProgressSnapshot, XpLedger, XpResult, XpTransaction
from .personal_records import PersonalRecordDetector, PrResult

logger = logging.getLogger(__name__)

STREAK_CAS_ATTEMPTS = 3


@dataclass
class PendingAward:
    source: str
    amount: int
    reason: str
    error: str


@dataclass
class StreakOutcome:
    current_streak: int
    longest_streak: int
    bonus_xp: int = 0
    advanced: bool = False
    xp_result: XpResult | None = None
    pending_awards: list[PendingAward] = field(default_factory=list)


@dataclass
class SetOutcome:
    xp_result: XpResult | None = None
    pr_result: PrResult | None = None
    streak: StreakOutcome | None = None
    leveled_up: bool = False
    level: int | None = None
    total_xp: int | None = None
    pending_awards: list[PendingAward] = field(default_factory=list)

    def merge(self, xp_result: XpResult | None) -> None:
        # later awards reflect more recent state
        if xp_result is None:
            return
        self.leveled_up = self.leveled_up or xp_result.leveled_up
        self.level = xp_result.new_level
        self.total_xp = xp_result.total_xp


@dataclass
class ChallengeOutcome:
    participation_status: str
    xp_result: XpResult | None = None
    pending_awards: list[PendingAward] = field(default_factory=list)


@dataclass
class AchievementOutcome:
    unlocked: bool
    xp_result: XpResult | None = None
    pending_awards: list[PendingAward] = field(default_factory=list)


class ProgressionEngine:
    def __init__(self, store: ProgressStore):
        self.store = store
        self.ledger = XpLedger(store)
        self.records = PersonalRecordDetector(store)

    # ── Sets ─────────────────────────────────────────────────────────────────

    def record_completed_set(
        self,
        user_id: str,
        exercise_id: str,
        weight: float | None,
        reps: int | None,
        is_warmup: bool = False,
        today: date | None = None,
    ) -> SetOutcome:
        """
        Run PR detection, the base award, the PR bonus and the daily streak for
        one logged set. Warmups and sets without weight/reps change nothing.
        """
        if not is_qualifying_set(weight, reps, is_warmup):
            return SetOutcome()
        today = today or date.today()

        pr_result = self.records.check_and_update(user_id, exercise_id, weight, reps)

        try:
            xp_result = self.ledger.award(
                user_id, XP_REWARDS["SET_COMPLETE"], "Completed a set", "set_complete",
            )
        except Exception:
            if pr_result.any:
                logger.error("Set award failed after PR was recorded for %s... on %s (%s); "
                             "PR bonus of %d XP not awarded",
                             user_id[:8], exercise_id, ", ".join(pr_result.improved_kinds()),
                             XP_REWARDS["PR_SET"])
            raise

        outcome = SetOutcome(xp_result=xp_result, pr_result=pr_result)
        outcome.merge(xp_result)

        if pr_result.any:
            reason = f"Personal record on {exercise_id}: {', '.join(pr_result.improved_kinds())}"
            outcome.merge(self._award_or_defer(
                user_id, XP_REWARDS["PR_SET"], reason, "personal_record", outcome.pending_awards,
            ))

        try:
            outcome.streak = self._roll_streak(user_id, today)
        except ConcurrencyConflict as e:
            # XP for this set is already applied; a caller retry would double it
            logger.error("Streak not evaluated for %s... on %s: %s", user_id[:8], today, e)
            return outcome

        outcome.merge(outcome.streak.xp_result)
        outcome.pending_awards.extend(outcome.streak.pending_awards)
        return outcome

    # ── Sessions ─────────────────────────────────────────────────────────────

    def complete_session(self, user_id: str, today: date | None = None) -> StreakOutcome:
        """Daily streak evaluation; a second call on the same day is a no-op."""
        return self._roll_streak(user_id, today or date.today())

    def _roll_streak(self, user_id: str, today: date) -> StreakOutcome:
        update = self._advance_streak(user_id, today)
        outcome = StreakOutcome(
            current_streak=update.current_streak,
            longest_streak=update.longest_streak,
            bonus_xp=update.bonus_xp,
            advanced=update.advanced,
        )
        if update.advanced and update.bonus_xp > 0:
            reason = f"{update.current_streak}-day streak"
            outcome.xp_result = self._award_or_defer(
                user_id, update.bonus_xp, reason, "streak_bonus", outcome.pending_awards,
            )
        return outcome

    def _advance_streak(self, user_id: str, today: date) -> StreakUpdate:
        """
        Compare-and-set the streak against the last_workout_date we read. Only
        the writer that wins the CAS for a day gets an advanced update back, so
        the bonus is granted once per day.
        """
        for attempt in range(1, STREAK_CAS_ATTEMPTS + 1):
            row = self.ledger.progress_row(user_id)
            last = row["last_workout_date"]
            update = compute_streak(last, row["current_streak"], row["longest_streak"], today)
            if not update.advanced:
                return update
            if self.store.compare_and_set_streak(
                user_id, last, update.current_streak, update.longest_streak, today,
            ):
                logger.info("Streak for %s... now %d (+%d XP)",
                            user_id[:8], update.current_streak, update.bonus_xp)
                return update
            logger.info("Streak update for %s... raced (attempt %d), re-reading", user_id[:8], attempt)
        raise ConcurrencyConflict(f"streak for user={user_id} changed {STREAK_CAS_ATTEMPTS} times")

    # ── Challenges / achievements ────────────────────────────────────────────

    def complete_challenge(
        self,
        user_id: str,
        challenge_id: str,
        target: float,
        current_progress: float,
        xp_reward: int,
        title: str | None = None,
    ) -> ChallengeOutcome:
        """
        Record challenge progress and pay `xp_reward` exactly once, on the call
        that moves the participant into `completed`.
        """
        if xp_reward <= 0:
            raise InvalidAmount(f"challenge reward must be positive, got {xp_reward!r}")
        if current_progress < 0:
            raise ValueError(f"challenge progress must be >= 0, got {current_progress!r}")

        participant = self.store.get_participant(user_id, challenge_id)
        if participant is None:
            raise NotFound(f"user={user_id} is not participating in challenge={challenge_id}")

        prior = participant.get("status") or IN_PROGRESS
        if not completes_now(prior, current_progress, target):
            status = next_status(prior, current_progress, target)
            if not self.store.update_participant(user_id, challenge_id, current_progress, status):
                # completed by another call since our read
                return ChallengeOutcome(participation_status=COMPLETED)
            return ChallengeOutcome(participation_status=status)

        if not self.store.mark_participant_completed(user_id, challenge_id, current_progress):
            logger.info("Challenge %s for %s... already completed by a concurrent call",
                        challenge_id, user_id[:8])
            return ChallengeOutcome(participation_status=COMPLETED)

        outcome = ChallengeOutcome(participation_status=COMPLETED)
        outcome.xp_result = self._award_or_defer(
            user_id, xp_reward, challenge_reason(title, challenge_id), "challenge_complete",
            outcome.pending_awards,
        )
        return outcome

    def unlock_achievement(self, user_id: str, achievement_type: str, title: str | None = None) -> AchievementOutcome:
        if not self.store.insert_achievement(user_id, achievement_type):
            return AchievementOutcome(unlocked=False)
        outcome = AchievementOutcome(unlocked=True)
        outcome.xp_result = self._award_or_defer(
            user_id, XP_REWARDS["ACHIEVEMENT_UNLOCK"], f"Unlocked achievement: {title or achievement_type}",
            "achievement_unlock", outcome.pending_awards,
        )
        return outcome

    def award_manual(self, user_id: str, amount: int, reason: str = "XP earned") -> XpResult:
        return self.ledger.award(user_id, amount, reason, "manual")

    # ── Read side ────────────────────────────────────────────────────────────

    def get_progress_snapshot(self, user_id: str) -> ProgressSnapshot:
        return self.ledger.snapshot(user_id)

    def list_recent_transactions(self, user_id: str, limit: int = 10) -> list[XpTransaction]:
        return self.ledger.recent_transactions(user_id, limit)

    def list_personal_records(self, user_id: str, exercise_id: str | None = None) -> list[dict]:
        return self.records.list_records(user_id, exercise_id)

    # ── Helpers ──────────────────────────────────────────────────────────────

    def _award_or_defer(
        self,
        user_id: str,
        amount: int,
        reason: str,
        source: str,
        pending: list[PendingAward],
    ) -> XpResult | None:
        """Award XP whose trigger is already persisted; on failure, log and defer it."""
        try:
            return self.ledger.award(user_id, amount, reason, source)
        except Exception as e:
            logger.error("XP award lost for %s... (%s, %d XP, %r): %s",
                         user_id[:8], source, amount, reason, e)
            pending.append(PendingAward(source=source, amount=amount, reason=reason, error=str(e)))
            return None
