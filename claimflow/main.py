"""FastAPI application entry point."""

import logging
import os
from typing import Optional

import sqlalchemy
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from claimflow import __version__
from claimflow.config import settings
from claimflow.errors import ConfigurationError, InvalidState, NotFound
from claimflow.pipeline import Pipeline, build_pipeline
from claimflow.routes import claims, jobs

logger = logging.getLogger(__name__)


def run_migrations(session_factory) -> None:
    """Run Alembic migrations unless the tables already exist."""
    db = session_factory()
    try:
        table_exists = sqlalchemy.inspect(db.get_bind()).has_table("jobs")
    finally:
        db.close()

    if table_exists:
        logger.info("Database tables already exist, skipping migrations")
        return

    logger.info("Running database migrations...")
    from alembic import command
    from alembic.config import Config

    alembic_cfg = Config(os.path.join(os.path.dirname(os.path.dirname(__file__)), "alembic.ini"))
    alembic_cfg.set_main_option("sqlalchemy.url", settings.DATABASE_URL)
    command.upgrade(alembic_cfg, "head")
    logger.info("Database migrations completed successfully")


def create_app(pipeline: Optional[Pipeline] = None) -> FastAPI:
    """
    Build the application.

    Args:
        pipeline: Pre-built pipeline; when omitted the app builds one on
            startup, runs migrations and starts the worker pool.
    """
    app = FastAPI(
        title="Claimflow",
        description="Fact-checking claim pipeline with AI preliminary verdicts and human review",
        version=__version__,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(claims.router)
    app.include_router(jobs.router)

    @app.exception_handler(NotFound)
    async def not_found_handler(request: Request, exc: NotFound):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(InvalidState)
    async def invalid_state_handler(request: Request, exc: InvalidState):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(request: Request, exc: ConfigurationError):
        logger.error(f"Configuration error: {exc}")
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    @app.get("/health")
    def health():
        """Health check endpoint."""
        return {"status": "healthy"}

    if pipeline is not None:
        app.state.pipeline = pipeline
        return app

    @app.on_event("startup")
    async def startup_event():
        """Migrate, wire the pipeline and start the worker pool."""
        from claimflow.database import SessionLocal

        logger.info("Starting application...")
        run_migrations(SessionLocal)

        app.state.pipeline = build_pipeline(SessionLocal)
        app.state.pipeline.queue.start(settings.WORKER_CONCURRENCY)

    @app.on_event("shutdown")
    async def shutdown_event():
        """Stop the worker pool."""
        logger.info("Shutting down application...")
        app.state.pipeline.queue.stop()

    return app


def main():
    """Serve the API with uvicorn."""
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(create_app(), host="0.0.0.0", port=int(os.environ.get("PORT", "8000")))


if __name__ == "__main__":
    main()
