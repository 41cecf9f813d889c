from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from alembic import command
from alembic.config import Config
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from .middleware import PageViewTrackingMiddleware
from .routers import admin, reports, system, tracking

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)

_STARTUP_COMPLETE = False


def run_migrations() -> None:
    logger.info("run_migrations: Starting...")
    try:
        alembic_cfg = _alembic_config()

        from alembic.runtime.migration import MigrationContext
        from alembic.script import ScriptDirectory
        from .db import engine

        # Check current revision first to avoid unnecessary upgrade calls
        try:
            with engine.connect() as connection:
                context = MigrationContext.configure(connection)
                current_heads = context.get_current_heads()
                heads = ScriptDirectory.from_config(alembic_cfg).get_heads()
                if current_heads and set(current_heads) == set(heads):
                    logger.info(f"Database is up to date (revision: {current_heads[0]}), skipping migrations.")
                    return
                logger.info(f"Current revision(s): {current_heads}, Target revision(s): {heads}. Running migrations...")
        finally:
            # Ensure connection is closed before calling command.upgrade
            engine.dispose()

        command.upgrade(alembic_cfg, "heads")
        logger.info("run_migrations: Completed successfully.")
    except Exception as e:
        logger.error(f"run_migrations: Error occurred: {e}", exc_info=True)
        raise


def _alembic_config() -> Config:
    base_dir = Path(__file__).resolve().parent.parent
    cfg = Config(str(base_dir / "alembic.ini"))
    cfg.set_main_option("script_location", str(base_dir / "alembic"))
    return cfg


def run_startup_tasks() -> None:
    global _STARTUP_COMPLETE
    if _STARTUP_COMPLETE:
        logger.info("run_startup_tasks: Already completed, skipping.")
        return
    try:
        run_migrations()
        _STARTUP_COMPLETE = True
        logger.info("Startup tasks completed.")
    except Exception as e:
        logger.error(f"Startup tasks failed: {e}", exc_info=True)
        raise


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting application...")
    # Server won't start until migrations complete
    if os.getenv("PAGE_ANALYTICS_SKIP_MIGRATIONS", "").lower() not in ("1", "true", "yes"):
        run_startup_tasks()
    logger.info("Page analytics API ready")
    yield
    logger.info("Shutting down application...")


def create_app() -> FastAPI:
    application = FastAPI(
        title="Page Analytics API",
        version="1.0.0",
        description="Lightweight page-view analytics: collection, daily aggregation and reports",
        lifespan=lifespan,
    )

    # CORS Configuration - restrict to specific origins
    cors_origins_str = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost")
    if cors_origins_str == "*":
        logger.warning(
            "CORS is configured to allow all origins. "
            "This is insecure for production. Set CORS_ORIGINS to specific domains."
        )
    cors_origins = [origin.strip() for origin in cors_origins_str.split(",")]

    application.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "Accept", "Origin", "X-Requested-With"],
        max_age=600,
    )

    # Record page views after each successful page response
    application.add_middleware(PageViewTrackingMiddleware)

    application.include_router(system.router)
    application.include_router(tracking.router)
    application.include_router(reports.router)
    application.include_router(admin.router)

    return application


app = create_app()
