"""
Crisis Communication — FastAPI Application.

Run: uvicorn crisiscomm.main:app --host 0.0.0.0 --port 8002 --reload

The escalation monitor runs separately:
    python -m crisiscomm.scheduler_main
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from crisiscomm.api.routers.rooms import router as rooms_router
from crisiscomm.config import Settings
from crisiscomm.db.engine import close_db, create_engine, create_session_factory, init_db
from crisiscomm.exceptions import CrisisCommError
from crisiscomm.logging_config import configure_logging
from crisiscomm.middleware.error_handler import ErrorHandlerMiddleware, crisis_error_handler
from crisiscomm.middleware.request_context import RequestContextMiddleware
from crisiscomm.rooms.service import CrisisRoomService, build_service

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan — startup and shutdown."""
    settings: Settings = app.state.settings
    logger.info("crisiscomm_starting", version=settings.app_version, environment=settings.environment)

    engine = None
    if app.state.service is None:
        engine = create_engine(settings)
        await init_db(engine, settings)
        app.state.engine = engine
        app.state.service = build_service(settings, create_session_factory(engine))

    yield

    if engine is not None:
        await close_db(engine)
    logger.info("crisiscomm_shutdown")


def create_app(
    settings: Optional[Settings] = None,
    service: Optional[CrisisRoomService] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    A prebuilt service (tests, embedding) skips database setup entirely.
    """
    settings = settings or Settings()
    configure_logging(settings)

    app = FastAPI(
        title="Crisis Communication",
        description=(
            "Crisis room orchestration: room lifecycle, multi-channel "
            "communications, stakeholder responses, escalation and analytics."
        ),
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_tags=[
            {"name": "health", "description": "Liveness and readiness probes"},
            {"name": "crisis-rooms", "description": "Crisis rooms, communications, responses, escalations"},
        ],
    )
    app.state.settings = settings
    app.state.service = service
    app.state.engine = None

    # ── Error mapping ─────────────────────────────────────────────────
    app.add_exception_handler(CrisisCommError, crisis_error_handler)

    # ── Middleware (last added = outermost) ───────────────────────────
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(ErrorHandlerMiddleware, debug=settings.debug)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Routes ────────────────────────────────────────────────────────
    app.include_router(rooms_router)

    @app.get("/health", tags=["health"])
    async def health():
        """
        Liveness probe — is the process alive?

        Does NOT check dependencies. Use /ready for that.
        """
        return {
            "status": "ok",
            "version": settings.app_version,
            "service": "crisiscomm",
        }

    @app.get("/ready", tags=["health"])
    async def readiness():
        """Readiness probe — database is the only hard dependency."""
        checks: dict = {"api": "ok"}
        engine = app.state.engine
        if engine is None:
            checks["database"] = "not_configured"
        else:
            try:
                async with engine.connect() as conn:
                    await asyncio.wait_for(conn.execute(text("SELECT 1")), timeout=5)
                checks["database"] = "ok"
            except Exception as e:
                logger.warning("readiness_database_unavailable", error=str(e))
                checks["database"] = "unavailable"

        ready = checks["database"] != "unavailable"
        return JSONResponse(
            status_code=200 if ready else 503,
            content={
                "status": "ok" if ready else "unavailable",
                "version": settings.app_version,
                "checks": checks,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )

    return app


app = create_app()
