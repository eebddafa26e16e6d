from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from fastapi import FastAPI

from app.config import get_scheduler_settings


def _validate_env() -> None:
    """
    Validate required environment variables at startup.

    Runs before any service or database connection is initialised.
    Raises RuntimeError listing every missing or invalid variable so the
    operator can fix all problems in one restart cycle.

    Rules:
    - A database URL must be configured.
    - A scoring API key is required unless SCORING_PROVIDER=mock.
    - Google search credentials are required unless SEARCH_PROVIDER=mock.
    - PUBLISH_TO_PRODUCTION requires a non-mock PUBLISHER_PROVIDER.
    """

    from db.config import load_env_files

    load_env_files()

    errors: list[str] = []

    # --- Database URL ---------------------------------------------------
    database_url = os.getenv("DATABASE_URL", "").strip()
    cloud_database_url = os.getenv("CLOUD_DATABASE_URL", "").strip()
    local_database_url = os.getenv("LOCAL_DATABASE_URL", "").strip()
    if not database_url and not cloud_database_url and not local_database_url:
        errors.append(
            "No database URL configured. Set DATABASE_URL, CLOUD_DATABASE_URL or LOCAL_DATABASE_URL."
        )

    # --- Scoring API key ------------------------------------------------
    scoring_provider = os.getenv("SCORING_PROVIDER", "openai").strip().lower()
    if scoring_provider != "mock":
        scoring_api_key = os.getenv("SCORING_API_KEY", "").strip()
        openai_api_key = os.getenv("OPENAI_API_KEY", "").strip()
        if not scoring_api_key and not openai_api_key:
            errors.append(
                "Scoring API key is not set. Provide SCORING_API_KEY or OPENAI_API_KEY, "
                "or set SCORING_PROVIDER=mock."
            )

    # --- Search credentials ---------------------------------------------
    search_provider = os.getenv("SEARCH_PROVIDER", "google").strip().lower()
    if search_provider != "mock":
        for name in ("GOOGLE_SEARCH_API_KEY", "GOOGLE_SEARCH_ENGINE_ID"):
            if not os.getenv(name, "").strip():
                errors.append(f"{name} is not set. Provide it or set SEARCH_PROVIDER=mock.")

    # --- Publisher ------------------------------------------------------
    publish_to_production = os.getenv("PUBLISH_TO_PRODUCTION", "false").strip().lower() in {"1", "true", "yes", "on"}
    publisher_provider = os.getenv("PUBLISHER_PROVIDER", "mock").strip().lower()
    if publish_to_production and publisher_provider == "mock":
        errors.append(
            "PUBLISH_TO_PRODUCTION is true but PUBLISHER_PROVIDER is 'mock'. "
            "Configure a real publisher or disable production publishing."
        )

    if errors:
        raise RuntimeError(
            "Startup validation failed - missing or invalid environment variables:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )


def _configure_logging() -> None:
    """
    Configure root logging once for the API process.
    """

    log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def _check_db() -> None:
    """Open a session and run SELECT 1. Raises RuntimeError if the DB is unreachable."""
    from sqlalchemy import text

    from db.session import SessionLocal

    try:
        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()
    except Exception as exc:
        raise RuntimeError("Database unavailable.") from exc


def _check_schema() -> None:
    """
    Compare Base.metadata table names against the live DB schema.

    Every table registered on Base.metadata must exist in the database.
    If any are missing, log a critical error and abort startup so that
    the operator is forced to run migrations before serving traffic.

    Does NOT auto-migrate.
    """
    from sqlalchemy import inspect as sa_inspect

    import db.models  # noqa: F401  registers all ORM models on Base.metadata
    from db.base import Base
    from db.session import get_engine

    inspector = sa_inspect(get_engine())
    actual: set[str] = set(inspector.get_table_names())
    expected: set[str] = set(Base.metadata.tables.keys())
    missing = expected - actual

    if missing:
        log = logging.getLogger(__name__)
        log.critical(
            "Schema mismatch: %d table(s) defined in ORM metadata are absent from "
            "the database: %s. Run 'alembic upgrade head' and restart.",
            len(missing),
            ", ".join(sorted(missing)),
        )
        raise RuntimeError(
            f"Schema mismatch: {len(missing)} table(s) missing from the database "
            f"({', '.join(sorted(missing))}). Run migrations and restart."
        )


@asynccontextmanager
async def _lifespan(application: FastAPI) -> AsyncIterator[None]:
    """Validate DB connectivity and schema, start the automation driver on boot; shut it down on exit."""
    _check_db()
    logging.getLogger(__name__).info("Database connectivity confirmed")
    _check_schema()
    logging.getLogger(__name__).info("Database schema validated")

    if not get_scheduler_settings().enabled:
        logging.getLogger(__name__).info("CFP automation scheduler disabled")
        yield
        return

    from app.scheduler.jobs import build_scheduler
    from app.services.cfp_service import get_worker_pool

    scheduler = build_scheduler()
    scheduler.start()
    logging.getLogger(__name__).info("Scheduler started with %d jobs", len(scheduler.get_jobs()))
    try:
        yield
    finally:
        scheduler.shutdown(wait=True)
        get_worker_pool().shutdown(wait=True)
        logging.getLogger(__name__).info("Scheduler shut down")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.
    """

    _validate_env()
    _configure_logging()

    application = FastAPI(
        title="CFP Pipeline API",
        version="1.0.0",
        lifespan=_lifespan,
    )

    from app.api.routers import cfp_router

    application.include_router(cfp_router)

    @application.get("/health")
    def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    return application
