"""
Conversations API -- start, observe and steer round-robin dialogues.

  POST /api/v1/conversations                     -- Start a conversation (201)
  GET  /api/v1/conversations/{id}                -- Current snapshot
  POST /api/v1/conversations/{id}/cancel         -- Cancel (idempotent)
  POST /api/v1/conversations/{id}/clarification  -- Answer a pending question
  GET  /api/v1/conversations/{id}/events         -- SSE stream of dialogue events

Each conversation runs as its own asyncio task inside the server process.
Finished conversations are kept for inspection until MAX_CONVERSATIONS is
exceeded, then evicted oldest first.
"""

import asyncio
import json
import logging
from collections import OrderedDict

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse

from ...agents import AgentDescriptor
from ...config import DialogueConfig
from ...errors import InvalidStateError, NoAgentsConfigured
from ...orchestration import DialogueEvent, Phase, TurnScheduler
from ...security import ValidationError, validate_length
from ..models.requests import ClarificationAnswerRequest, ConversationRequest
from ..models.responses import ConversationResponse

logger = logging.getLogger(__name__)
router = APIRouter()

MAX_PROMPT_SIZE = 100_000
MAX_ANSWER_SIZE = 20_000
MAX_CONVERSATIONS = 200


# =============================================================================
# HELPERS
# =============================================================================


def _conversations(request: Request) -> OrderedDict[str, TurnScheduler]:
    return request.app.state.conversations


def _get_conversation(request: Request, conversation_id: str) -> TurnScheduler:
    scheduler = _conversations(request).get(conversation_id)
    if scheduler is None:
        raise HTTPException(
            status_code=404, detail=f"Unknown conversation: {conversation_id}"
        )
    return scheduler


def _evict_finished(conversations: OrderedDict[str, TurnScheduler]) -> None:
    """Drop the oldest finished conversations once over the limit."""
    for conversation_id in list(conversations):
        if len(conversations) <= MAX_CONVERSATIONS:
            return
        if conversations[conversation_id].phase.is_terminal:
            del conversations[conversation_id]
            logger.debug(f"[ConversationsAPI] Evicted {conversation_id}")


# =============================================================================
# ROUTES
# =============================================================================


@router.post("/conversations", response_model=ConversationResponse, status_code=201)
async def start_conversation(
    conversation_request: ConversationRequest,
    request: Request,
) -> ConversationResponse:
    """
    Start a conversation. Returns immediately; the dialogue runs in the
    background. Poll the snapshot or subscribe to /events to follow it.
    """
    base_config: DialogueConfig = request.app.state.config
    try:
        validate_length(
            conversation_request.prompt, "prompt",
            min_length=1, max_length=MAX_PROMPT_SIZE,
        )
        config = base_config.with_overrides(
            max_turns=conversation_request.max_turns,
            unlimited=conversation_request.unlimited,
            context_window=conversation_request.context_window,
        )
        agents = [
            AgentDescriptor.create(
                display_name=spec.name,
                model_name=spec.model,
                host=spec.host,
                port=spec.port,
                persona=spec.persona,
                persona_prompt=spec.persona_prompt,
                enabled=spec.enabled,
            )
            for spec in conversation_request.agents
        ]
        scheduler = TurnScheduler(request.app.state.client, config)
        scheduler.start(conversation_request.prompt, agents)
    except (ValidationError, NoAgentsConfigured) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ValueError as e:
        # unknown persona preset
        raise HTTPException(status_code=400, detail=str(e))

    conversations = _conversations(request)
    conversations[scheduler.conversation_id] = scheduler
    _evict_finished(conversations)
    logger.info(
        f"[ConversationsAPI] Started {scheduler.conversation_id} "
        f"with {len(scheduler.agents)} agents"
    )
    return ConversationResponse.from_snapshot(scheduler.snapshot())


@router.get("/conversations/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(conversation_id: str, request: Request) -> ConversationResponse:
    scheduler = _get_conversation(request, conversation_id)
    return ConversationResponse.from_snapshot(scheduler.snapshot())


@router.post("/conversations/{conversation_id}/cancel", response_model=ConversationResponse)
async def cancel_conversation(conversation_id: str, request: Request) -> ConversationResponse:
    """Cancel a running conversation. Cancelling a finished one is a no-op."""
    scheduler = _get_conversation(request, conversation_id)
    scheduler.cancel()
    return ConversationResponse.from_snapshot(scheduler.snapshot())


@router.post(
    "/conversations/{conversation_id}/clarification",
    response_model=ConversationResponse,
)
async def answer_clarification(
    conversation_id: str,
    answer_request: ClarificationAnswerRequest,
    request: Request,
) -> ConversationResponse:
    """Answer the question an agent asked; the conversation resumes."""
    scheduler = _get_conversation(request, conversation_id)
    try:
        validate_length(answer_request.answer, "answer", max_length=MAX_ANSWER_SIZE)
        scheduler.submit_clarification_answer(answer_request.answer)
    except InvalidStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return ConversationResponse.from_snapshot(scheduler.snapshot())


@router.get("/conversations/{conversation_id}/events")
async def stream_events(conversation_id: str, request: Request) -> StreamingResponse:
    """
    Server-Sent Events for one conversation.

    Events:
      - snapshot: full state on connect
      - phase, status, turn, message, delta, draft, clarification: live updates
      - done: the conversation reached a terminal phase
    """
    scheduler = _get_conversation(request, conversation_id)
    queue: asyncio.Queue[DialogueEvent] = asyncio.Queue()

    async def event_generator():
        unsubscribe = scheduler.subscribe(queue.put_nowait)
        try:
            snapshot = scheduler.snapshot()
            yield _sse_event("snapshot", snapshot.to_dict())
            if snapshot.phase.is_terminal:
                yield _sse_event("done", {"phase": snapshot.phase.value})
                return
            while True:
                event = await queue.get()
                yield _sse_event(event.kind, event.data)
                if event.kind == "phase" and Phase(event.data["phase"]).is_terminal:
                    yield _sse_event("done", {"phase": event.data["phase"]})
                    return
        finally:
            unsubscribe()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


# =============================================================================
# SSE HELPERS
# =============================================================================


def _sse_event(event_type: str, data: dict) -> str:
    """Format a Server-Sent Event."""
    return f"event: {event_type}\ndata: {json.dumps(data, default=str)}\n\n"
