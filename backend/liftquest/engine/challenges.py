"""
Challenge participation rules — pure functions, no DB access.
"""

IN_PROGRESS = "in_progress"
COMPLETED = "completed"
FAILED = "failed"

PARTICIPATION_STATUSES = (IN_PROGRESS, COMPLETED, FAILED)


def next_status(prior_status: str, progress: float, target: float) -> str:
    if progress >= target:
        return COMPLETED
    if prior_status == FAILED:
        return FAILED
    if prior_status == COMPLETED:
        # completion is permanent even if progress is later revised downward
        return COMPLETED
    return IN_PROGRESS


def completes_now(prior_status: str, progress: float, target: float) -> bool:
    """True only on the transition into `completed`; a challenge pays out once."""
    return prior_status != COMPLETED and next_status(prior_status, progress, target) == COMPLETED


def challenge_reason(title: str | None, challenge_id: str) -> str:
    return f"Completed challenge: {title or challenge_id}"
