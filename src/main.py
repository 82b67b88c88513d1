"""Pacelink device API — FastAPI application entry point.

Run locally:
    uvicorn src.main:app --reload --port 8000

Run a handheld and a companion against each other:
    PACELINK_SIMULATE_COMPANION=false PACELINK_PEER_URL=http://localhost:8001 \\
        uvicorn src.main:app --port 8000
    PACELINK_SIMULATE_COMPANION=false PACELINK_ROLE=companion \\
        PACELINK_PEER_URL=http://localhost:8000 uvicorn src.main:app --port 8001
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from src.config import get_settings
from src.routers import companion, health, link, sessions
from src.workouts.config_loader import get_session_config, load_session_config
from src.workouts.runtime import build_runtime

# ---------- Logging ----------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("pacelink")


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings = get_settings()
    logging.getLogger("pacelink").setLevel(settings.log_level.upper())
    logger.info(
        "Starting Pacelink %s v%s [%s]",
        settings.role,
        settings.app_version,
        settings.environment,
    )
    if settings.session_config_path is not None:
        config = load_session_config(settings.session_config_path)
    else:
        config = get_session_config()
    runtime = build_runtime(settings, config)
    await runtime.start()
    app.state.runtime = runtime
    yield
    await runtime.close()
    app.state.runtime = None
    logger.info("Pacelink %s shut down", settings.role)


# ---------- App factory ----------

def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="Pacelink API",
        description=(
            "Device-local control surface for a handheld / companion workout pair — "
            "session control, companion state and the inbound link endpoint."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.include_router(health.router)
    app.include_router(link.router)
    app.include_router(sessions.router)
    app.include_router(companion.router)

    return app


app = create_app()
