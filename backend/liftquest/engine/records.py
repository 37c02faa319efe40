"""
Per-set record metrics — pure functions, no DB access.
"""
from dataclasses import dataclass

RECORD_TYPES = ("one_rep_max", "max_volume", "max_reps")

# Epley gets unreliable past this; only used when ranking heavy sets for display
RELIABLE_REP_LIMIT = 12


@dataclass(frozen=True)
class SetMetrics:
    one_rep_max: float
    volume: float
    reps: int


def is_qualifying_set(weight: float | None, reps: int | None, is_warmup: bool) -> bool:
    """Only working sets with a positive weight and rep count earn anything."""
    if is_warmup or weight is None or reps is None:
        return False
    return weight > 0 and reps > 0


def estimate_one_rep_max(weight: float, reps: int) -> float:
    """Epley: weight * (1 + reps / 30); a single is taken at face value."""
    if reps == 1:
        return weight
    return weight * (1 + reps / 30)


def set_metrics(weight: float, reps: int) -> SetMetrics:
    return SetMetrics(
        one_rep_max=estimate_one_rep_max(weight, reps),
        volume=weight * reps,
        reps=reps,
    )


def candidate_values(metrics: SetMetrics) -> dict[str, float]:
    return {
        "one_rep_max": metrics.one_rep_max,
        "max_volume": metrics.volume,
        "max_reps": metrics.reps,
    }


def is_reliable_for_ranking(reps: int) -> bool:
    return 0 < reps <= RELIABLE_REP_LIMIT
