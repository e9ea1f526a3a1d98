"""OpenSesh orchestration API application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from opensesh.api.actions import router as actions_router
from opensesh.api.actions import thread_router as thread_actions_router
from opensesh.api.audit import router as audit_router
from opensesh.api.plans import router as plans_router
from opensesh.api.progress import router as progress_router
from opensesh.api.settings import router as settings_router
from opensesh.api.skills import router as skills_router
from opensesh.api.skills import thread_router as thread_skills_router
from opensesh.config import get_settings
from opensesh.engine import ExecutionEngine, create_execution_engine
from opensesh.observability.logging import configure_logging
from opensesh.storage.database import async_session_maker, init_db

configure_logging()

settings = get_settings()
logger = logging.getLogger(__name__)


def create_app(engine: ExecutionEngine | None = None) -> FastAPI:
    """Build the API. Without an engine one is created from settings at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        # Startup
        logger.info("[OpenSesh] Starting orchestration engine...")
        if engine is not None:
            app.state.engine = engine
        else:
            session_maker = None
            if settings.audit_persistence_enabled:
                await init_db()
                session_maker = async_session_maker
                logger.info("[OpenSesh] Database initialized")
            app.state.engine = create_execution_engine(settings, session_maker=session_maker)
            await app.state.engine.audit.restore()

        yield

        # Shutdown
        logger.info("[OpenSesh] Shutting down...")
        await app.state.engine.shutdown()

    app = FastAPI(
        title=settings.app_name,
        description="Skill and execution orchestration for an AI assistant",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:8000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(skills_router)
    app.include_router(thread_skills_router)
    app.include_router(plans_router)
    app.include_router(actions_router)
    app.include_router(thread_actions_router)
    app.include_router(progress_router)
    app.include_router(settings_router)
    app.include_router(audit_router)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": settings.app_name,
            "version": "0.1.0",
            "docs": "/docs",
        }

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
