"""FastAPI application entry point."""

import logging
import os
import threading

import sqlalchemy
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from greenlight.config import settings
from greenlight.errors import OrchestratorError
from greenlight.routes import approvals, jobs, nightshift

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Greenlight Orchestrator",
    description="Job queue, approval gates and night shift scheduling for agent work",
    version="0.1.0",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(jobs.router)
app.include_router(approvals.router)
app.include_router(nightshift.router)

# Worker thread management
worker_thread = None
worker_stop_event = threading.Event()


@app.exception_handler(OrchestratorError)
async def orchestrator_error_handler(request: Request, exc: OrchestratorError):
    """Map domain errors to JSON responses."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def run_worker_loop():
    """Run the worker loop in a background thread."""
    from greenlight.worker import worker_loop
    logger.info("Starting background worker thread")
    worker_loop(worker_stop_event)


def run_migrations():
    """Apply migrations unless the schema is already present."""
    from greenlight.database import engine

    if sqlalchemy.inspect(engine).has_table("agent_jobs"):
        logger.info("Database tables already exist, skipping migrations")
        return

    logger.info("Running database migrations...")
    from alembic import command
    from alembic.config import Config

    alembic_cfg = Config(os.path.join(os.path.dirname(os.path.dirname(__file__)), "alembic.ini"))
    command.upgrade(alembic_cfg, "head")
    logger.info("Database migrations completed successfully")


@app.on_event("startup")
async def startup_event():
    """Migrate the database and optionally start the embedded worker."""
    global worker_thread
    logger.info("Starting application...")

    try:
        run_migrations()
    except SQLAlchemyError as e:
        logger.error(f"Startup database check/migration error: {e}")
        logger.info("Continuing startup - assuming database is ready")

    if not settings.RUN_EMBEDDED_WORKER:
        return

    logger.info("Starting background worker thread...")
    worker_thread = threading.Thread(target=run_worker_loop, daemon=True)
    worker_thread.start()
    logger.info("Background worker thread started")


@app.on_event("shutdown")
async def shutdown_event():
    """Stop the background worker when the app shuts down."""
    logger.info("Shutting down application...")

    # Signal worker to stop
    worker_stop_event.set()

    # Wait for worker thread to finish (with timeout)
    if worker_thread and worker_thread.is_alive():
        worker_thread.join(timeout=10)
        logger.info("Background worker thread stopped")


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/")
def root():
    """Root endpoint."""
    return {
        "name": "Greenlight Orchestrator",
        "version": "0.1.0",
        "status": "running",
    }
