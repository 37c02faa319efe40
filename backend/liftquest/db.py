import os
import logging
from datetime import date, datetime, timezone
from functools import lru_cache
from typing import Protocol

from postgrest.exceptions import APIError
from supabase import create_client, Client

from .errors import ConcurrencyConflict, NotFound

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"
RETRYABLE_CODES = {"40001", "40P01"}  # serialization_failure, deadlock_detected


@lru_cache(maxsize=1)
def get_client() -> Client:
    url = os.environ["SUPABASE_URL"]
    key = os.environ["SUPABASE_SERVICE_KEY"]
    return create_client(url, key)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _first_row(data) -> dict:
    if isinstance(data, list):
        return data[0] if data else {}
    return data or {}


def is_unique_violation(e: APIError) -> bool:
    err_str = str(e).lower()
    return getattr(e, "code", None) == UNIQUE_VIOLATION or "duplicate" in err_str or "unique" in err_str


def execute(query):
    """Run a PostgREST query, translating storage errors into engine errors."""
    try:
        return query.execute()
    except APIError as e:
        code = getattr(e, "code", None)
        if code == FOREIGN_KEY_VIOLATION:
            raise NotFound(getattr(e, "message", None) or str(e)) from e
        if code in RETRYABLE_CODES:
            raise ConcurrencyConflict(getattr(e, "message", None) or str(e)) from e
        raise


class ProgressStore(Protocol):
    """
    Persistence port for the progression engine.

    Every mutating method is a single atomic operation against the backing
    store; callers never fetch-then-overwrite a counter.
    """

    def get_progress(self, user_id: str) -> dict | None: ...

    def increment_xp(self, user_id: str, amount: int, reason: str, source: str) -> dict:
        """
        Add `amount` to xp and total_xp_earned and append one transaction row,
        creating the progress row if missing. Returns old_xp, xp, total_xp_earned.
        """
        ...

    def compare_and_set_streak(
        self,
        user_id: str,
        expected_last_date: date | None,
        current_streak: int,
        longest_streak: int,
        last_workout_date: date,
    ) -> bool:
        """Write the streak fields only if last_workout_date still equals expected_last_date."""
        ...

    def list_transactions(self, user_id: str, limit: int) -> list[dict]: ...

    def get_personal_record(self, user_id: str, exercise_id: str, record_type: str) -> dict | None: ...

    def insert_personal_record(self, user_id: str, exercise_id: str, record_type: str, value: float) -> bool:
        """False if a record for the key already exists."""
        ...

    def raise_personal_record(self, user_id: str, exercise_id: str, record_type: str, value: float) -> bool:
        """Overwrite the record only where the stored value < value; True if a row changed."""
        ...

    def list_personal_records(self, user_id: str, exercise_id: str | None = None) -> list[dict]: ...

    def get_challenge(self, challenge_id: str) -> dict | None: ...

    def get_participant(self, user_id: str, challenge_id: str) -> dict | None: ...

    def update_participant(self, user_id: str, challenge_id: str, progress: float, status: str) -> bool:
        """Record progress unless the participant is already `completed`; False if it was."""

    def mark_participant_completed(self, user_id: str, challenge_id: str, progress: float) -> bool:
        """Transition into `completed`; False if the participant already was."""
        ...

    def insert_achievement(self, user_id: str, achievement_type: str) -> bool:
        """False if the achievement was already unlocked."""
        ...


class SupabaseProgressStore:
    """
    ProgressStore backed by Supabase (Postgres).

    XP awards go through the `award_xp` SQL function (see supabase/migrations),
    which increments the counters and writes the transaction row in one
    transaction. Records, streaks and challenge completion use conditional
    updates whose returned rows tell whether this caller won.
    """

    def __init__(self, client: Client):
        self._client = client

    # ── Progress / XP ────────────────────────────────────────────────────────

    def get_progress(self, user_id: str) -> dict | None:
        res = execute(self._client.table("user_progress").select("*").eq("user_id", user_id))
        return res.data[0] if res.data else None

    def increment_xp(self, user_id: str, amount: int, reason: str, source: str) -> dict:
        res = execute(self._client.rpc(
            "award_xp",
            {
                "p_user_id": user_id,
                "p_amount": amount,
                "p_reason": reason,
                "p_source": source,
            },
        ))
        row = _first_row(res.data)
        if not row:
            raise ConcurrencyConflict(f"award_xp returned no row for user={user_id}")
        return row

    def compare_and_set_streak(
        self,
        user_id: str,
        expected_last_date: date | None,
        current_streak: int,
        longest_streak: int,
        last_workout_date: date,
    ) -> bool:
        execute(
            self._client.table("user_progress")
            .upsert({"user_id": user_id}, on_conflict="user_id", ignore_duplicates=True)
        )
        query = (
            self._client.table("user_progress")
            .update({
                "current_streak": current_streak,
                "longest_streak": longest_streak,
                "last_workout_date": last_workout_date.isoformat(),
                "updated_at": _now_iso(),
            })
            .eq("user_id", user_id)
        )
        if expected_last_date is None:
            query = query.is_("last_workout_date", "null")
        else:
            query = query.eq("last_workout_date", expected_last_date.isoformat())
        return bool(execute(query).data)

    def list_transactions(self, user_id: str, limit: int) -> list[dict]:
        res = execute(
            self._client.table("xp_transactions")
            .select("*")
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .order("id", desc=True)
            .limit(limit)
        )
        return res.data or []

    # ── Personal records ─────────────────────────────────────────────────────

    def get_personal_record(self, user_id: str, exercise_id: str, record_type: str) -> dict | None:
        res = execute(
            self._client.table("personal_records")
            .select("*")
            .eq("user_id", user_id)
            .eq("exercise_id", exercise_id)
            .eq("record_type", record_type)
        )
        return res.data[0] if res.data else None

    def insert_personal_record(self, user_id: str, exercise_id: str, record_type: str, value: float) -> bool:
        try:
            execute(self._client.table("personal_records").insert({
                "user_id": user_id,
                "exercise_id": exercise_id,
                "record_type": record_type,
                "value": value,
                "date": _now_iso(),
            }))
            return True
        except APIError as e:
            # A concurrent request created the row first; the caller falls back
            # to the conditional update.
            if is_unique_violation(e):
                return False
            raise

    def raise_personal_record(self, user_id: str, exercise_id: str, record_type: str, value: float) -> bool:
        res = execute(
            self._client.table("personal_records")
            .update({"value": value, "date": _now_iso()})
            .eq("user_id", user_id)
            .eq("exercise_id", exercise_id)
            .eq("record_type", record_type)
            .lt("value", value)
        )
        return bool(res.data)

    def list_personal_records(self, user_id: str, exercise_id: str | None = None) -> list[dict]:
        query = self._client.table("personal_records").select("*").eq("user_id", user_id)
        if exercise_id:
            query = query.eq("exercise_id", exercise_id)
        return execute(query.order("date", desc=True)).data or []

    # ── Challenges / achievements ────────────────────────────────────────────

    def get_challenge(self, challenge_id: str) -> dict | None:
        res = execute(self._client.table("challenges").select("*").eq("id", challenge_id))
        return res.data[0] if res.data else None

    def get_participant(self, user_id: str, challenge_id: str) -> dict | None:
        res = execute(
            self._client.table("challenge_participants")
            .select("*")
            .eq("challenge_id", challenge_id)
            .eq("user_id", user_id)
        )
        return res.data[0] if res.data else None

    def update_participant(self, user_id: str, challenge_id: str, progress: float, status: str) -> bool:
        res = execute(
            self._client.table("challenge_participants")
            .update({"progress": progress, "status": status})
            .eq("challenge_id", challenge_id)
            .eq("user_id", user_id)
            .neq("status", "completed")
        )
        return bool(res.data)

    def mark_participant_completed(self, user_id: str, challenge_id: str, progress: float) -> bool:
        res = execute(
            self._client.table("challenge_participants")
            .update({"progress": progress, "status": "completed", "completed_at": _now_iso()})
            .eq("challenge_id", challenge_id)
            .eq("user_id", user_id)
            .neq("status", "completed")
        )
        return bool(res.data)

    def insert_achievement(self, user_id: str, achievement_type: str) -> bool:
        try:
            execute(self._client.table("achievements").insert({
                "user_id": user_id,
                "type": achievement_type,
            }))
            return True
        except APIError as e:
            if is_unique_violation(e):
                return False
            raise
