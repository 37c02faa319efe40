"""
PersonalRecordDetector — compare-and-swap of per-exercise bests.
"""
import logging
from dataclasses import dataclass

from .db import ProgressStore
from .engine.records import RECORD_TYPES, candidate_values, set_metrics

logger = logging.getLogger(__name__)


@dataclass
class PrResult:
    one_rep_max: bool = False
    max_volume: bool = False
    max_reps: bool = False

    @property
    def any(self) -> bool:
        return self.one_rep_max or self.max_volume or self.max_reps

    def improved_kinds(self) -> list[str]:
        return [kind for kind in RECORD_TYPES if getattr(self, kind)]


class PersonalRecordDetector:
    """
    Each record kind is checked independently against the persisted value,
    never against a copy read earlier in the request, so a retried call with
    the same set flags nothing.
    """

    def __init__(self, store: ProgressStore):
        self.store = store

    def check_and_update(self, user_id: str, exercise_id: str, weight: float, reps: int) -> PrResult:
        result = PrResult()
        for record_type, value in candidate_values(set_metrics(weight, reps)).items():
            if self._try_record(user_id, exercise_id, record_type, value):
                setattr(result, record_type, True)
                logger.info("New PR for %s... on %s: %s = %.2f",
                            user_id[:8], exercise_id, record_type, value)
        return result

    def _try_record(self, user_id: str, exercise_id: str, record_type: str, value: float) -> bool:
        existing = self.store.get_personal_record(user_id, exercise_id, record_type)
        if existing is None:
            if self.store.insert_personal_record(user_id, exercise_id, record_type, value):
                return True
            # lost the insert race; compare against whatever won
        elif value <= existing["value"]:
            return False
        return self.store.raise_personal_record(user_id, exercise_id, record_type, value)

    def list_records(self, user_id: str, exercise_id: str | None = None) -> list[dict]:
        return self.store.list_personal_records(user_id, exercise_id)
