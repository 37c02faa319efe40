from pydantic import BaseModel, Field, field_validator
from typing import Optional


class CompletedSet(BaseModel):
    exercise_id: str = Field(min_length=1, max_length=100)
    weight: Optional[float] = Field(default=None, ge=0)
    reps: Optional[int] = Field(default=None, ge=0)
    is_warmup: bool = False
    model_config = {"extra": "ignore"}   # set_number, rpe, rest_time, notes belong to the CRUD layer

    @field_validator("exercise_id")
    @classmethod
    def validate_exercise_id(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("exercise_id must not be blank")
        return v


class ChallengeProgress(BaseModel):
    progress: float = Field(ge=0)


class AchievementUnlock(BaseModel):
    title: Optional[str] = Field(default=None, max_length=100)


class ManualAward(BaseModel):
    # sign is checked by the ledger so the error matches every other award path
    amount: int
    reason: str = Field(default="XP earned", min_length=1, max_length=200)
