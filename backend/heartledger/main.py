"""
Heart Ledger: FastAPI backend
"""
import logging
from datetime import datetime

from fastapi import FastAPI, Header, HTTPException, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from .db import (
    get_client, make_stores, get_task, get_leaderboard_rows,
    delete_user_tasks, reset_stats, update_profile_score,
)
from .errors import ErrorKind, LedgerResult, LedgerStoreError
from .ledger import LedgerSession, SessionRegistry
from .models import AddPoints, SpendPoints, LeaderboardEntry
from .tasks import reconcile_tasks, toggle_task

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)
app = FastAPI(title="Heart Ledger API")
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

ALLOWED_ORIGINS = [
    "http://localhost:8081",
    "http://localhost:19006",
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Authorization", "Content-Type"],
)

LEADERBOARD_SIZE = 50

ERROR_STATUS = {
    ErrorKind.NOT_AUTHENTICATED: 401,
    ErrorKind.STORE_UNAVAILABLE: 503,
    ErrorKind.WRITE_FAILED: 502,
    ErrorKind.CONFLICT: 409,
}

registry = SessionRegistry(make_stores)


@app.exception_handler(LedgerStoreError)
async def store_error_handler(request: Request, exc: LedgerStoreError):
    logger.error("Store failure on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=ERROR_STATUS.get(exc.kind, 500), content={"detail": {"code": exc.kind.value}})


def _raise_for(result: LedgerResult) -> None:
    if result:
        return
    raise HTTPException(status_code=ERROR_STATUS.get(result.error, 500), detail={"code": result.error.value})


def _now() -> datetime:
    return datetime.now().astimezone()


@app.get("/health")
def health():
    try:
        db = get_client()
        db.table("user_stats").select("user_id").limit(1).execute()
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


def require_session(user_id: str = Depends(get_user_id)) -> LedgerSession:
    session = registry.get(user_id)
    if session is None:
        raise HTTPException(status_code=401, detail={"code": ErrorKind.NOT_AUTHENTICATED.value})
    return session


# ── Session lifecycle ─────────────────────────────────────────────────────────

@app.post("/api/session", status_code=201)
@limiter.limit("10/minute")
def sign_in(request: Request, user_id: str = Depends(get_user_id)):
    session, result = registry.sign_in(user_id)
    if not result:
        registry.sign_out(user_id)
        _raise_for(result)
    logger.info("Session started: %s...", user_id[:8])
    return session.state.model_dump()


@app.delete("/api/session")
def sign_out(user_id: str = Depends(get_user_id)):
    if registry.sign_out(user_id):
        logger.info("Session ended: %s...", user_id[:8])
        return {"status": "signed_out"}
    return {"status": "not_signed_in"}


# ── Ledger ────────────────────────────────────────────────────────────────────

@app.get("/api/ledger")
def get_ledger(session: LedgerSession = Depends(require_session)):
    return session.state.model_dump()


@app.post("/api/ledger/refresh")
def refresh_ledger(session: LedgerSession = Depends(require_session)):
    _raise_for(session.refresh())
    return session.state.model_dump()


@app.post("/api/ledger/points")
@limiter.limit("60/minute")
def add_points(request: Request, body: AddPoints, session: LedgerSession = Depends(require_session)):
    result = session.award(body.points, body.is_daily_task)
    _raise_for(result)
    return {
        "awarded": result.amount,
        "leaderboard_synced": result.leaderboard_synced,
        **session.state.model_dump(),
    }


@app.post("/api/ledger/spend")
@limiter.limit("60/minute")
def spend_points(request: Request, body: SpendPoints, session: LedgerSession = Depends(require_session)):
    result = session.subtract(body.points)
    if result.error == ErrorKind.INSUFFICIENT_BALANCE:
        return {"success": False, "reason": result.error.value, **session.state.model_dump()}
    _raise_for(result)
    return {
        "success": True,
        "leaderboard_synced": result.leaderboard_synced,
        **session.state.model_dump(),
    }


@app.post("/api/ledger/tasks-completed")
def increment_tasks_completed(session: LedgerSession = Depends(require_session)):
    _raise_for(session.increment_tasks_completed())
    return session.state.model_dump()


# ── Tasks ─────────────────────────────────────────────────────────────────────

@app.post("/api/tasks/reconcile")
def reconcile(session: LedgerSession = Depends(require_session)):
    reset_ids = reconcile_tasks(get_client(), session.user_id, _now())
    return {"reset": reset_ids}


@app.post("/api/tasks/{task_id}/toggle")
@limiter.limit("60/minute")
def toggle(request: Request, task_id: str, session: LedgerSession = Depends(require_session)):
    db = get_client()
    task = get_task(db, task_id)
    if task is None or task.user_id != session.user_id:
        raise HTTPException(status_code=404, detail="Task not found")

    updated, result = toggle_task(db, session, task, _now())
    return {
        "task": updated.model_dump(mode="json"),
        "points": result.amount,
        "error": result.error.value if result.error else None,
        **session.state.model_dump(),
    }


# ── Leaderboard ───────────────────────────────────────────────────────────────

@app.get("/api/leaderboard")
def get_leaderboard():
    """Top players by score. Respects show_on_leaderboard opt-out."""
    rows = get_leaderboard_rows(get_client(), LEADERBOARD_SIZE)
    visible = [r for r in rows if r.get("show_on_leaderboard", True)]
    entries = [
        LeaderboardEntry(
            rank=i,
            user_id=r["user_id"],
            username=r.get("username") or "Anonymous",
            score=r.get("score") or 0,
        ).model_dump()
        for i, r in enumerate(visible, start=1)
    ]
    return {"leaderboard": entries}


# ── Clear all data ────────────────────────────────────────────────────────────

@app.delete("/api/me/data", status_code=200)
def clear_all_data(session: LedgerSession = Depends(require_session)):
    db = get_client()
    delete_user_tasks(db, session.user_id)
    reset_stats(db, session.user_id)
    update_profile_score(db, session.user_id, 0)
    _raise_for(session.refresh())
    logger.info("Data cleared: %s...", session.user_id[:8])
    return {"status": "cleared", **session.state.model_dump()}
