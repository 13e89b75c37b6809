"""
API Gateway -- FastAPI application factory.

Creates the FastAPI app with all routes and shared dependencies (one
OllamaClient and the in-process conversation table). Entrypoint for uvicorn:

    uvicorn roundtalk.api.gateway:create_app --factory --host 127.0.0.1 --port 8000

or `roundtalk serve`.

Security:
  - CORS restricted to configured origins (default: localhost only)
  - All external input validated at the boundary
"""

import logging
import os
import time
from collections import OrderedDict
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..config import DialogueConfig
from ..llm import OllamaClient
from .routes import conversations, health

logger = logging.getLogger(__name__)

DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:8000",
    "http://localhost:8080",
]


def _get_cors_origins() -> list[str]:
    """Load CORS origins from environment or use safe defaults."""
    origins_env = os.environ.get("CORS_ORIGINS", "")
    if origins_env.strip():
        return [o.strip() for o in origins_env.split(",") if o.strip()]
    return DEFAULT_CORS_ORIGINS


def create_app(
    client: OllamaClient | None = None,
    config: DialogueConfig | None = None,
) -> FastAPI:
    """
    Application factory -- creates and configures the FastAPI app.

    Args:
        client: Shared generate client (created from config if None).
        config: Default dialogue configuration (read from ROUNDTALK_* if None).
    """
    if config is None:
        config = DialogueConfig.from_env()
    owns_client = client is None
    if client is None:
        client = OllamaClient.from_config(config)

    @asynccontextmanager
    async def lifespan(application: FastAPI):
        yield
        for scheduler in application.state.conversations.values():
            scheduler.cancel()
        if owns_client:
            await client.aclose()
        logger.info("[Gateway] Shut down")

    application = FastAPI(
        title="roundtalk API",
        description="Round-robin conversations between local LLM agents",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=_get_cors_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type"],
    )

    application.state.client = client
    application.state.config = config
    application.state.conversations = OrderedDict()
    application.state.start_time = time.time()

    application.include_router(health.router, prefix="/api/v1", tags=["Health"])
    application.include_router(
        conversations.router, prefix="/api/v1", tags=["Conversations"]
    )

    logger.info("[Gateway] API gateway initialized")
    return application
