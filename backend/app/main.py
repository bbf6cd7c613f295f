"""
Habit Quest — FastAPI backend
"""
import logging
from datetime import date
from typing import Optional

from fastapi import FastAPI, Header, HTTPException, Depends, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from .auth import current_user_id
from .db import get_client, ping
from .errors import AlreadyCompleted, EngineError, NotAuthenticated
from .models import CompleteQuestRequest
from .progression import (
    generate_daily_quests, list_daily_quests, complete_quest,
    evaluate_missed_day, redeem_penalty_points, get_streak_info, get_player_summary,
)

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)
app = FastAPI(title="Habit Quest API")
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

ALLOWED_ORIGINS = [
    "https://habitquest.app",
    "https://www.habitquest.app",
    "http://localhost:5173",
    "http://localhost:3000",
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["GET", "POST"],
    allow_headers=["Authorization", "Content-Type"],
)


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError):
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": type(exc).__name__},
    )


@app.get("/health")
def health():
    try:
        ping(get_client())
        return {"status": "ok", "db": "ok"}
    except Exception as e:
        logger.error("Health check DB failure: %s", e)
        raise HTTPException(status_code=503, detail="DB unavailable")


# ── Auth ──────────────────────────────────────────────────────────────────────

def get_access_token(authorization: str = Header(...)) -> str:
    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing Bearer token")
    return authorization.removeprefix("Bearer ").strip()


def require_user(access_token: str = Depends(get_access_token)) -> str:
    user_id = current_user_id(get_client(), access_token)
    if not user_id:
        raise NotAuthenticated()
    return user_id


# ── Quests ────────────────────────────────────────────────────────────────────

@app.post("/api/quests/generate")
@limiter.limit("20/minute")
def generate_quests(
    request: Request,
    response: Response,
    local_date: date = Query(..., alias="date"),
    user_id: str = Depends(require_user),
):
    quest_set = generate_daily_quests(get_client(), user_id, local_date.isoformat())
    if quest_set.created:
        response.status_code = 201
    return quest_set


@app.get("/api/quests")
def get_quests(
    local_date: date = Query(..., alias="date"),
    user_id: str = Depends(require_user),
):
    return list_daily_quests(get_client(), user_id, local_date.isoformat())


@app.post("/api/quests/{quest_id}/complete")
@limiter.limit("60/minute")
def complete(
    request: Request,
    quest_id: str,
    body: Optional[CompleteQuestRequest] = None,
    user_id: str = Depends(require_user),
):
    reflection = body.reflection if body else None
    try:
        result = complete_quest(get_client(), user_id, quest_id, reflection)
    except AlreadyCompleted as e:
        prior = e.result.model_dump() if e.result else {"quest_id": quest_id}
        return {"status": "already_completed", **prior}
    return {"status": "ok", **result.model_dump()}


# ── Streak ────────────────────────────────────────────────────────────────────

@app.get("/api/streak")
def streak_info(
    local_date: date = Query(..., alias="date"),
    hour: int = Query(..., ge=0, le=23),
    user_id: str = Depends(require_user),
):
    return get_streak_info(get_client(), user_id, local_date.isoformat(), hour)


@app.post("/api/streak/evaluate")
@limiter.limit("20/minute")
def evaluate_streak(
    request: Request,
    local_date: date = Query(..., alias="date"),
    user_id: str = Depends(require_user),
):
    return evaluate_missed_day(get_client(), user_id, local_date.isoformat())


@app.post("/api/streak/redeem")
@limiter.limit("10/minute")
def redeem(request: Request, user_id: str = Depends(require_user)):
    return redeem_penalty_points(get_client(), user_id)


# ── Profile ───────────────────────────────────────────────────────────────────

@app.get("/api/profile")
def profile(user_id: str = Depends(require_user)):
    return get_player_summary(get_client(), user_id)
