"""FastAPI application for the punchlist server.

This module creates and configures the FastAPI application with the REST
API for projects, punchlist items, photos, notes and users.

Usage:
    uvicorn punchlist.server.app:app_factory --factory --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from punchlist.server.api.router import router as api_router
from punchlist.server.database import Database

logger = logging.getLogger(__name__)


def get_db_path() -> Path:
    """Database path from PUNCHLIST_DB_PATH (default ./punchlist.db)."""
    return Path(os.environ.get("PUNCHLIST_DB_PATH", "punchlist.db"))


def get_log_path() -> Path:
    """Log file path from PUNCHLIST_LOG_PATH (default ./punchlist-server.log)."""
    return Path(os.environ.get("PUNCHLIST_LOG_PATH", "punchlist-server.log"))


def setup_logging(log_path: Path) -> None:
    """Configure logging to output to both file and stdout.

    Args:
        log_path: Path to the log file.
    """
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    formatter = logging.Formatter(log_format)

    # Root logger for punchlist
    root_logger = logging.getLogger("punchlist")
    root_logger.setLevel(logging.INFO)

    # Stdout handler
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(formatter)
    root_logger.addHandler(stdout_handler)

    # File handler
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    # Also capture uvicorn logs to file
    for uvicorn_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(uvicorn_name).addHandler(file_handler)


def create_app(db: Database) -> FastAPI:
    """Create FastAPI application with a given database.

    This is primarily used for testing with isolated databases.

    Args:
        db: Database instance.

    Returns:
        Configured FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler for startup/shutdown."""
        logger.info("=" * 60)
        logger.info("Punchlist Server Starting")
        logger.info("=" * 60)
        logger.info("  Database: %s", db.path)
        logger.info("=" * 60)

        yield

        logger.info("Punchlist Server shutting down")
        db.close()

    application = FastAPI(
        title="Punchlist Server",
        description="Construction punchlist tracking API",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.state.db = db
    application.include_router(api_router)

    return application


def app_factory() -> FastAPI:
    """Factory function for uvicorn --factory mode."""
    setup_logging(get_log_path())
    return create_app(db=Database(get_db_path()))
