"""FastAPI application hosting the signaling relay."""
from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from .core.config import settings
from .core.logging_config import setup_logging
from .routers import signaling

setup_logging(settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="meshcall relay", version="0.1.0")

if settings.cors_allow_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.include_router(signaling.router)


@app.get("/api/health", tags=["meta"])
async def health() -> dict[str, str]:
    """Simple liveness probe."""

    return {"status": "ok"}


@app.head("/api/health", tags=["meta"])
async def health_head() -> Response:
    """Allow HEAD for uptime monitors that only need the status code."""

    return Response(status_code=200)


def run() -> None:
    """Console entry point: serve the relay with uvicorn."""

    import uvicorn

    logger.info("Starting relay on %s:%d (%s)", settings.relay_host, settings.relay_port, settings.app_env)
    uvicorn.run(app, host=settings.relay_host, port=settings.relay_port, log_level=settings.log_level.lower())
