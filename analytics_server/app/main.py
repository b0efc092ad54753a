"""FastAPI application for CyberSwipe analytics ingestion and reporting."""
import hmac
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Header
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import insert, select, update

from .db import Store, get_store, init_store
from .errors import AuthError, NotFoundError, QueryError, StorageError, setup_error_handlers
from .models import (
    GameEvent,
    GameSession,
    PerformanceMetric,
    build_category_upsert,
    utcnow,
)
from .schemas import (
    CategoryStatsRequest,
    CreateSessionRequest,
    EndSessionRequest,
    EventRequest,
    HealthResponse,
    PerformanceMetricsRequest,
    StatsResponse,
    StatusResponse,
)
from .settings import (
    ADMIN_SECRET_KEY,
    ALLOWED_ORIGINS,
    DATABASE_URL,
    HOST,
    LOG_LEVEL,
    PORT,
    STATS_RAW_LIMIT,
)
from .stats import aggregated_statistics, raw_data

APP_VERSION = "1.0.0"

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the store once per process and close its pool on shutdown."""
    app.state.store = init_store(DATABASE_URL)
    try:
        yield
    finally:
        app.state.store.dispose()


app = FastAPI(title="CyberSwipe Analytics API", version=APP_VERSION, lifespan=lifespan)

# CORS configuration; credentials only make sense with explicit origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials="*" not in ALLOWED_ORIGINS,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Admin-Secret"],
)

setup_error_handlers(app)


@app.get("/health", response_model=HealthResponse)
def health_check():
    """Health check endpoint."""
    return {"status": "ok", "version": APP_VERSION}


def require_admin_secret(x_admin_secret: Optional[str] = Header(None)) -> None:
    """Reject the request unless X-Admin-Secret matches ADMIN_SECRET_KEY.

    An unset server secret rejects everything rather than accepting an
    empty header.
    """
    if not x_admin_secret:
        logger.warning("Stats request without admin secret")
        raise AuthError("Missing admin secret key")
    if not ADMIN_SECRET_KEY or not hmac.compare_digest(
        x_admin_secret.encode("utf-8"), ADMIN_SECRET_KEY.encode("utf-8")
    ):
        logger.warning("Stats request with invalid admin secret")
        raise AuthError("Invalid admin secret key")


analytics = APIRouter(prefix="/api/analytics")


@analytics.post("/session", status_code=201, response_model=StatusResponse)
def create_session(body: CreateSessionRequest, store: Store = Depends(get_store)):
    """Register a new play session.  A duplicate session_id fails the
    unique constraint and leaves the original row untouched."""
    try:
        store.execute(insert(GameSession).values(**body.model_dump()))
    except QueryError as exc:
        raise StorageError("Failed to create session") from exc

    logger.info("Session %s created (platform=%s)", body.session_id, body.platform)
    return StatusResponse()


@analytics.post("/session/end", response_model=StatusResponse)
def end_session(body: EndSessionRequest, store: Store = Depends(get_store)):
    """Close a session and store its summary.

    Only a session whose ended_at is still NULL is updated, so repeating the
    call is a no-op that still reports success.
    """
    try:
        existing = store.query_one(
            select(GameSession.id).where(GameSession.session_id == body.session_id)
        )
        if existing is None:
            raise NotFoundError("Session not found")

        updated = store.execute(
            update(GameSession)
            .where(
                GameSession.session_id == body.session_id,
                GameSession.ended_at.is_(None),
            )
            .values(ended_at=utcnow(), **body.summary())
        )
    except QueryError as exc:
        raise StorageError("Failed to end session") from exc

    if updated:
        logger.info("Session %s ended", body.session_id)
    else:
        logger.info("Session %s already ended; ignoring repeat", body.session_id)
    return StatusResponse()


@analytics.post("/event", status_code=201, response_model=StatusResponse)
def record_event(body: EventRequest, store: Store = Depends(get_store)):
    """Append an interaction event.  Unknown sessions are rejected by the
    foreign key."""
    try:
        store.execute(insert(GameEvent).values(**body.model_dump()))
    except QueryError as exc:
        raise StorageError("Failed to record event") from exc
    return StatusResponse()


@analytics.post("/performance", status_code=201, response_model=StatusResponse)
def record_performance_metrics(body: PerformanceMetricsRequest, store: Store = Depends(get_store)):
    # Absent timestamp falls back to the column default (server time)
    try:
        store.execute(insert(PerformanceMetric).values(**body.model_dump(exclude_none=True)))
    except QueryError as exc:
        raise StorageError("Failed to record performance metrics") from exc
    return StatusResponse()


@analytics.post("/category", status_code=201, response_model=StatusResponse)
def record_category_stats(body: CategoryStatsRequest, store: Store = Depends(get_store)):
    """Accumulate category completion totals for a session."""
    try:
        existing = store.query_one(
            select(GameSession.id).where(GameSession.session_id == body.session_id)
        )
        if existing is None:
            raise NotFoundError("Session not found")

        store.execute(build_category_upsert(store.dialect_name, body.model_dump()))
    except QueryError as exc:
        raise StorageError("Failed to record category statistics") from exc
    return StatusResponse()


@analytics.get(
    "/stats",
    response_model=StatsResponse,
    dependencies=[Depends(require_admin_secret)],
)
def get_stats(store: Store = Depends(get_store)):
    """Operator snapshot: recent raw records plus system-wide aggregates."""
    try:
        return {
            "raw_data": raw_data(store, STATS_RAW_LIMIT),
            "statistics": aggregated_statistics(store),
        }
    except QueryError as exc:
        raise StorageError("Failed to get statistics") from exc


app.include_router(analytics)


def run():
    """Console entry point: configure logging and serve with uvicorn."""
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )
    logger.info("Server starting on %s:%s", HOST, PORT)
    uvicorn.run(app, host=HOST, port=PORT)


if __name__ == "__main__":
    run()
