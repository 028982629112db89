import logging
import uuid
import asyncio
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from stocksync.config import settings
from stocksync.routers import accounts, orders, platform
from stocksync.utils.logger import logger

ALEMBIC_INI = Path(__file__).resolve().parents[1] / "alembic.ini"

app = FastAPI(title="StockSync API", version="1.0.0")

origins = [o.strip() for o in settings.ALLOWED_ORIGINS.split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
    max_age=3600,
)


# Request logging middleware with request ID
@app.middleware("http")
async def request_logger(request: Request, call_next):
    rid = uuid.uuid4().hex[:8]
    request.state.rid = rid
    logging.info("→ %s %s rid=%s", request.method, request.url.path, rid)
    try:
        resp = await call_next(request)
        logging.info("← %s status=%s rid=%s", request.url.path, resp.status_code, rid)
        resp.headers["X-Request-ID"] = rid
        return resp
    except Exception as e:
        logging.exception("Unhandled error rid=%s: %s", rid, str(e))
        error_resp = JSONResponse(
            {"success": False, "error": str(e), "rid": rid, "type": type(e).__name__},
            status_code=500
        )
        error_resp.headers["X-Request-ID"] = rid
        return error_resp

app.include_router(orders.router)
app.include_router(platform.router)
app.include_router(accounts.router)


def _prepare_database():
    from stocksync.models_sqlalchemy import Base, engine
    from stocksync.models_sqlalchemy import models  # noqa: F401

    if not settings.is_postgres:
        logger.info("Using SQLite database - creating tables if missing")
        Base.metadata.create_all(bind=engine)
        return

    logger.info("Using PostgreSQL database - running migrations")
    try:
        from alembic.config import Config
        from alembic import command

        alembic_cfg = Config(str(ALEMBIC_INI))
        alembic_cfg.set_main_option("script_location", str(ALEMBIC_INI.parent / "alembic"))
        alembic_cfg.set_main_option("sqlalchemy.url", settings.DATABASE_URL)
        command.upgrade(alembic_cfg, "head")
        logger.info("Database migrations completed")
    except Exception as e:
        logger.warning(f"Alembic migration failed: {e}")
        logger.warning("Continuing startup - tables may already exist")


@app.on_event("startup")
async def startup_event():
    logger.info("StockSync API starting up...")
    _prepare_database()

    from stocksync.services.oauth_state_store import oauth_state_store, run_state_sweeper

    asyncio.create_task(run_state_sweeper(oauth_state_store))
    logger.info("OAuth state sweeper started (runs every %s seconds)", settings.OAUTH_STATE_SWEEP_SECONDS)

    if settings.AUTO_SYNC_ENABLED:
        from stocksync.workers import run_auto_sync_loop

        asyncio.create_task(run_auto_sync_loop())
        logger.info("Auto sync worker started (runs every %s seconds)", settings.AUTO_SYNC_INTERVAL_SECONDS)
    else:
        logger.info("Auto sync disabled (AUTO_SYNC_ENABLED=false)")


@app.get("/healthz")
async def healthz():
    return {"status": "ok"}


@app.get("/healthz/db")
async def healthz_db():
    """Database health check endpoint"""
    from fastapi import HTTPException, status
    try:
        from stocksync.models_sqlalchemy import engine
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        return {"status": "ok", "database": "connected"}
    except Exception as e:
        logger.exception("Database health check failed")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Database unavailable: {type(e).__name__}: {str(e)}"
        )
