"""
Pydantic request models -- the API contract for starting and steering conversations.

  POST /conversations                    -> ConversationRequest
  POST /conversations/{id}/clarification -> ClarificationAnswerRequest
"""

from pydantic import BaseModel, Field

from ...agents import DEFAULT_HOST, DEFAULT_PORT


class AgentSpec(BaseModel):
    """One participant, as submitted by a client."""

    name: str = Field(..., description="Display name used in prompts and transcripts")
    model: str = Field(..., description="Model name on the agent's server")
    host: str = Field(DEFAULT_HOST, description="Ollama-compatible server host")
    port: int = Field(DEFAULT_PORT, description="Server port")
    persona: str | None = Field(
        None, description="Preset persona: assistant, playful, expert or socratic"
    )
    persona_prompt: str | None = Field(
        None, description="Custom persona text (overrides persona)"
    )
    enabled: bool = True


class ConversationRequest(BaseModel):
    """Start a conversation between the given agents."""

    prompt: str = Field(..., description="The user's opening prompt")
    agents: list[AgentSpec] = Field(default_factory=list)
    max_turns: int | None = Field(None, description="Turn counter value that ends the conversation")
    unlimited: bool | None = Field(None, description="Ignore the turn limit")
    context_window: int | None = Field(
        None, description="Messages of history included in each prompt"
    )


class ClarificationAnswerRequest(BaseModel):
    """The human's answer to an agent's question."""

    answer: str
