"""
Pydantic response models -- what the API returns.
"""

from pydantic import BaseModel, Field

from ...llm import ModelInfo
from ...orchestration import ConversationSnapshot, MessageRecord


class MessageResponse(BaseModel):
    """One finalized transcript message."""

    id: str
    sender_id: str
    sender_name: str
    text: str
    is_reasoning: bool
    sequence_index: int
    created_at: str

    @classmethod
    def from_record(cls, record: MessageRecord) -> "MessageResponse":
        return cls(**record.to_dict())


class ConversationResponse(BaseModel):
    """Snapshot of a conversation."""

    conversation_id: str
    phase: str
    status: str
    turn: int
    end_votes: int
    agent_count: int
    pending_question: str | None = None
    messages: list[MessageResponse] = Field(default_factory=list)

    @classmethod
    def from_snapshot(cls, snapshot: ConversationSnapshot) -> "ConversationResponse":
        return cls(
            conversation_id=snapshot.conversation_id,
            phase=snapshot.phase.value,
            status=snapshot.status,
            turn=snapshot.turn,
            end_votes=snapshot.end_votes,
            agent_count=snapshot.agent_count,
            pending_question=snapshot.pending_question,
            messages=[MessageResponse.from_record(m) for m in snapshot.messages],
        )


class ModelResponse(BaseModel):
    """A model installed on an agent server."""

    name: str
    size: int | None = None
    modified_at: str | None = None
    display: str

    @classmethod
    def from_info(cls, info: ModelInfo) -> "ModelResponse":
        return cls(
            name=info.name,
            size=info.size,
            modified_at=info.modified_at,
            display=info.display_string,
        )


class ModelListResponse(BaseModel):
    host: str
    port: int
    models: list[ModelResponse] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Liveness check."""

    status: str
    active_conversations: int
    total_conversations: int
    uptime_seconds: float
