"""
Shared fixtures. FakeProgressStore is an in-memory ProgressStore: each method
holds one lock for its whole body, which mirrors the per-statement atomicity
the Supabase store gets from Postgres.
"""
import threading
import time
from datetime import date, datetime, timezone

import pytest

from liftquest.engine.xp import level_of
from liftquest.errors import ConcurrencyConflict
from liftquest.progression import ProgressionEngine


class FakeProgressStore:
    def __init__(self):
        self._lock = threading.Lock()
        self.progress: dict[str, dict] = {}
        self.transactions: list[dict] = []
        self.records: dict[tuple[str, str, str], dict] = {}
        self.challenges: dict[str, dict] = {}
        self.participants: dict[tuple[str, str], dict] = {}
        self.achievements: set[tuple[str, str]] = set()
        # increment_xp raises ConcurrencyConflict for these sources
        self.fail_sources: set[str] = set()
        self.calls: list[str] = []

    # ── Seeding ───────────────────────────────────────────────────────────────

    @staticmethod
    def _zero_row(user_id: str) -> dict:
        return {
            "user_id": user_id,
            "xp": 0,
            "level": 1,
            "current_streak": 0,
            "longest_streak": 0,
            "total_xp_earned": 0,
            "last_workout_date": None,
        }

    def seed_progress(self, user_id: str, **fields) -> None:
        row = self._zero_row(user_id)
        if isinstance(fields.get("last_workout_date"), date):
            fields["last_workout_date"] = fields["last_workout_date"].isoformat()
        row.update(fields)
        row["level"] = level_of(row["xp"])
        self.progress[user_id] = row

    def seed_challenge(self, challenge_id: str, title: str, target: float, xp_reward: int = 200) -> None:
        self.challenges[challenge_id] = {
            "id": challenge_id, "title": title, "target": target, "xp_reward": xp_reward,
        }

    def seed_participant(self, user_id: str, challenge_id: str, status: str = "in_progress", progress: float = 0) -> None:
        self.participants[(user_id, challenge_id)] = {
            "user_id": user_id, "challenge_id": challenge_id,
            "status": status, "progress": progress, "completed_at": None,
        }

    def transactions_for(self, user_id: str, source: str | None = None) -> list[dict]:
        return [
            t for t in self.transactions
            if t["user_id"] == user_id and (source is None or t["source"] == source)
        ]

    # ── ProgressStore ─────────────────────────────────────────────────────────

    def get_progress(self, user_id: str) -> dict | None:
        with self._lock:
            self.calls.append("get_progress")
            row = self.progress.get(user_id)
            return dict(row) if row else None

    def increment_xp(self, user_id: str, amount: int, reason: str, source: str) -> dict:
        if source in self.fail_sources:
            raise ConcurrencyConflict(f"simulated failure for {source}")
        with self._lock:
            self.calls.append("increment_xp")
            row = self.progress.setdefault(user_id, self._zero_row(user_id))
            old_xp = row["xp"]
            time.sleep(0)  # yield mid-update; only the lock keeps this correct
            row["xp"] = old_xp + amount
            row["level"] = level_of(row["xp"])
            row["total_xp_earned"] += amount
            self.transactions.append({
                "id": len(self.transactions) + 1,
                "user_id": user_id,
                "amount": amount,
                "reason": reason,
                "source": source,
                "created_at": datetime.now(timezone.utc).isoformat(),
            })
            return {
                "old_xp": old_xp,
                "xp": row["xp"],
                "level": row["level"],
                "total_xp_earned": row["total_xp_earned"],
            }

    def compare_and_set_streak(self, user_id, expected_last_date, current_streak, longest_streak, last_workout_date) -> bool:
        with self._lock:
            self.calls.append("compare_and_set_streak")
            row = self.progress.setdefault(user_id, self._zero_row(user_id))
            expected = expected_last_date.isoformat() if expected_last_date else None
            if row["last_workout_date"] != expected:
                return False
            row["current_streak"] = current_streak
            row["longest_streak"] = longest_streak
            row["last_workout_date"] = last_workout_date.isoformat()
            return True

    def list_transactions(self, user_id: str, limit: int) -> list[dict]:
        with self._lock:
            rows = [t for t in self.transactions if t["user_id"] == user_id]
            return [dict(t) for t in sorted(rows, key=lambda t: t["id"], reverse=True)[:limit]]

    def get_personal_record(self, user_id, exercise_id, record_type) -> dict | None:
        with self._lock:
            row = self.records.get((user_id, exercise_id, record_type))
            return dict(row) if row else None

    def insert_personal_record(self, user_id, exercise_id, record_type, value) -> bool:
        with self._lock:
            key = (user_id, exercise_id, record_type)
            if key in self.records:
                return False
            self.records[key] = {
                "user_id": user_id, "exercise_id": exercise_id, "record_type": record_type,
                "value": value, "date": datetime.now(timezone.utc).isoformat(), "history": [value],
            }
            return True

    def raise_personal_record(self, user_id, exercise_id, record_type, value) -> bool:
        with self._lock:
            row = self.records.get((user_id, exercise_id, record_type))
            if row is None or not row["value"] < value:
                return False
            row["value"] = value
            row["date"] = datetime.now(timezone.utc).isoformat()
            row["history"].append(value)
            return True

    def list_personal_records(self, user_id, exercise_id=None) -> list[dict]:
        with self._lock:
            return [
                {k: v for k, v in row.items() if k != "history"}
                for (uid, eid, _), row in self.records.items()
                if uid == user_id and (exercise_id is None or eid == exercise_id)
            ]

    def get_challenge(self, challenge_id):
        return self.challenges.get(challenge_id)

    def get_participant(self, user_id, challenge_id):
        with self._lock:
            row = self.participants.get((user_id, challenge_id))
            return dict(row) if row else None

    def update_participant(self, user_id, challenge_id, progress, status) -> bool:
        with self._lock:
            row = self.participants[(user_id, challenge_id)]
            if row["status"] == "completed":
                return False
            row["progress"] = progress
            row["status"] = status
            return True

    def mark_participant_completed(self, user_id, challenge_id, progress) -> bool:
        with self._lock:
            row = self.participants[(user_id, challenge_id)]
            if row["status"] == "completed":
                return False
            row.update(progress=progress, status="completed", completed_at=datetime.now(timezone.utc).isoformat())
            return True

    def insert_achievement(self, user_id, achievement_type) -> bool:
        with self._lock:
            key = (user_id, achievement_type)
            if key in self.achievements:
                return False
            self.achievements.add(key)
            return True


@pytest.fixture
def store():
    return FakeProgressStore()


@pytest.fixture
def engine(store):
    return ProgressionEngine(store)


@pytest.fixture
def user_id():
    return "3f1c2a9e-5b7d-4e21-9a0c-7d6b5e4f3a21"
