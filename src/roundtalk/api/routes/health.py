"""
Health and model discovery endpoints.

  GET /api/v1/health                   -- Liveness probe
  GET /api/v1/models?host=...&port=... -- Models installed on an agent server
"""

import logging
import time

from fastapi import APIRouter, HTTPException, Request

from ...agents import DEFAULT_HOST, DEFAULT_PORT, AgentDescriptor
from ...errors import TransportError
from ...llm import OllamaClient
from ...security import ValidationError
from ..models.responses import HealthResponse, ModelListResponse, ModelResponse

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def liveness(request: Request) -> HealthResponse:
    """Liveness probe -- returns 200 if the process is running."""
    conversations = request.app.state.conversations
    start_time = getattr(request.app.state, "start_time", time.time())
    active = sum(1 for s in conversations.values() if not s.phase.is_terminal)
    return HealthResponse(
        status="healthy",
        active_conversations=active,
        total_conversations=len(conversations),
        uptime_seconds=round(time.time() - start_time, 1),
    )


@router.get("/models", response_model=ModelListResponse)
async def list_models(
    request: Request,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
) -> ModelListResponse:
    """List the models an Ollama-compatible server has installed."""
    try:
        probe = AgentDescriptor.create(
            display_name="probe", model_name="", host=host, port=port
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    client: OllamaClient = request.app.state.client
    try:
        models = await client.list_models(probe)
    except TransportError as e:
        logger.warning(f"[HealthAPI] Model listing failed for {probe.base_url}: {e.reason}")
        raise HTTPException(status_code=502, detail=e.reason)

    return ModelListResponse(
        host=probe.host,
        port=probe.port,
        models=[ModelResponse.from_info(m) for m in models],
    )
