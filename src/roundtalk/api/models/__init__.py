"""Pydantic models for API request/response contracts."""
from .requests import AgentSpec, ClarificationAnswerRequest, ConversationRequest
from .responses import (
    ConversationResponse,
    HealthResponse,
    MessageResponse,
    ModelListResponse,
    ModelResponse,
)
