"""
LiftQuest — FastAPI surface over the progression engine
"""
import logging
import os
from dataclasses import asdict
from functools import lru_cache

from fastapi import FastAPI, Header, HTTPException, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from .db import get_client, SupabaseProgressStore
from .errors import ConcurrencyConflict, InvalidAmount, NotFound
from .models import AchievementUnlock, ChallengeProgress, CompletedSet, ManualAward
from .progression import ProgressionEngine

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)
app = FastAPI(title="LiftQuest API")
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

DEFAULT_ORIGINS = "http://localhost:3000"
ALLOWED_ORIGINS = [
    o.strip() for o in os.environ.get("ALLOWED_ORIGINS", DEFAULT_ORIGINS).split(",") if o.strip()
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["Authorization", "Content-Type"],
)


@lru_cache(maxsize=1)
def get_engine() -> ProgressionEngine:
    return ProgressionEngine(SupabaseProgressStore(get_client()))


# ── Error mapping ─────────────────────────────────────────────────────────────

@app.exception_handler(InvalidAmount)
def invalid_amount_handler(request: Request, exc: InvalidAmount):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(NotFound)
def not_found_handler(request: Request, exc: NotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ConcurrencyConflict)
def conflict_handler(request: Request, exc: ConcurrencyConflict):
    logger.warning("Concurrency conflict on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=409, content={"detail": "Conflicting update, retry the request"})


@app.get("/health")
def health():
    try:
        db = get_client()
        db.table("user_progress").select("user_id").limit(1).execute()
        return {"status": "ok", "db": "ok"}
    except Exception as e:
        logger.error("Health check DB failure: %s", e)
        raise HTTPException(status_code=503, detail="DB unavailable")


# ── Auth ──────────────────────────────────────────────────────────────────────

def get_user_id(authorization: str = Header(...)) -> str:
    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing Bearer token")
    user_id = authorization.removeprefix("Bearer ").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Missing Bearer token")
    return user_id


# ── Sets / sessions ───────────────────────────────────────────────────────────

@app.post("/api/sets", status_code=200)
@limiter.limit("120/minute")
def record_set(request: Request, body: CompletedSet, user_id: str = Depends(get_user_id)):
    outcome = get_engine().record_completed_set(
        user_id, body.exercise_id, body.weight, body.reps, body.is_warmup,
    )
    return asdict(outcome)


@app.post("/api/sessions/complete", status_code=200)
@limiter.limit("30/minute")
def complete_session(request: Request, user_id: str = Depends(get_user_id)):
    return asdict(get_engine().complete_session(user_id))


# ── Challenges / achievements ─────────────────────────────────────────────────

@app.put("/api/challenges/{challenge_id}/progress")
@limiter.limit("30/minute")
def update_challenge_progress(
    request: Request, challenge_id: str, body: ChallengeProgress, user_id: str = Depends(get_user_id),
):
    engine = get_engine()
    challenge = engine.store.get_challenge(challenge_id)
    if not challenge:
        raise HTTPException(status_code=404, detail="Challenge not found")
    outcome = engine.complete_challenge(
        user_id,
        challenge_id,
        target=challenge["target"],
        current_progress=body.progress,
        xp_reward=challenge.get("xp_reward") or 0,
        title=challenge.get("title"),
    )
    return asdict(outcome)


@app.post("/api/achievements/{achievement_type}")
@limiter.limit("30/minute")
def unlock_achievement(
    request: Request, achievement_type: str, body: AchievementUnlock, user_id: str = Depends(get_user_id),
):
    return asdict(get_engine().unlock_achievement(user_id, achievement_type, body.title))


# ── Progress ──────────────────────────────────────────────────────────────────

@app.get("/api/progress/{profile_user_id}")
def get_progress(profile_user_id: str):
    engine = get_engine()
    snapshot = engine.get_progress_snapshot(profile_user_id)
    recent = engine.list_recent_transactions(profile_user_id, 10)
    return {**asdict(snapshot), "recent_transactions": [asdict(t) for t in recent]}


@app.post("/api/progress")
@limiter.limit("10/minute")
def award_manual_xp(request: Request, body: ManualAward, user_id: str = Depends(get_user_id)):
    result = get_engine().award_manual(user_id, body.amount, body.reason)
    return asdict(result)


@app.get("/api/progress/{profile_user_id}/transactions")
def list_transactions(profile_user_id: str, limit: int = 10):
    recent = get_engine().list_recent_transactions(profile_user_id, limit)
    return {"transactions": [asdict(t) for t in recent]}


@app.get("/api/prs/{profile_user_id}")
def list_personal_records(profile_user_id: str, exercise_id: str | None = None):
    return {"prs": get_engine().list_personal_records(profile_user_id, exercise_id)}
