"""
AgentDescriptor -- one generate endpoint taking part in the round robin.

Descriptors are immutable for the lifetime of a conversation. Each one names
a model on an Ollama-compatible server (`http://{host}:{port}`) plus the
persona text woven into that agent's first prompt.

Usage:
    agent = AgentDescriptor.create(
        display_name="Model A",
        model_name="llama3.2",
        persona=PersonaPreset.SOCRATIC,
    )
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..security import validate_host, validate_not_empty, validate_port

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 11434


class PersonaPreset(Enum):
    """Built-in personas an agent can adopt."""

    ASSISTANT = "assistant"
    PLAYFUL = "playful"
    EXPERT = "expert"
    SOCRATIC = "socratic"

    @property
    def prompt(self) -> str:
        return _PERSONA_PROMPTS[self]

    @property
    def display_name(self) -> str:
        return _PERSONA_NAMES[self]


_PERSONA_PROMPTS = {
    PersonaPreset.ASSISTANT: (
        "You are a friendly and professional assistant. Provide clear, concise, "
        "and accurate responses. Use a polite tone and avoid unnecessary "
        "embellishment. Help the user achieve their goal efficiently."
    ),
    PersonaPreset.PLAYFUL: (
        "You're a witty and imaginative AI who enjoys banter and pop culture "
        "references. Keep responses light-hearted, throw in the occasional joke, "
        "and use an informal, cheerful tone while still being helpful."
    ),
    PersonaPreset.EXPERT: (
        "Act like a senior software engineer or scientist. Respond with precise "
        "terminology and depth, include examples or analogies when needed, and "
        "don't oversimplify unless asked to. Prioritize correctness over charm."
    ),
    PersonaPreset.SOCRATIC: (
        "You are a philosophical mentor who guides users to discover answers "
        "through questioning. Encourage reflection and critical thinking. Avoid "
        "giving direct answers unless asked; instead, ask clarifying questions "
        "and suggest lines of thought."
    ),
}

_PERSONA_NAMES = {
    PersonaPreset.ASSISTANT: "Helpful Assistant",
    PersonaPreset.PLAYFUL: "Playful Companion",
    PersonaPreset.EXPERT: "Technical Expert",
    PersonaPreset.SOCRATIC: "Socratic Guide",
}


@dataclass(frozen=True)
class AgentDescriptor:
    """Identity and endpoint of one dialogue participant."""

    id: str
    display_name: str
    model_name: str
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    persona_prompt: str = field(default=PersonaPreset.EXPERT.prompt, repr=False)
    enabled: bool = True

    @classmethod
    def create(
        cls,
        display_name: str,
        model_name: str,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        persona: PersonaPreset | str | None = None,
        persona_prompt: str | None = None,
        enabled: bool = True,
        agent_id: str | None = None,
    ) -> "AgentDescriptor":
        """Validate raw fields and build a descriptor with a fresh id."""
        if persona_prompt is None:
            preset = PersonaPreset(persona) if persona else PersonaPreset.EXPERT
            persona_prompt = preset.prompt
        return cls(
            id=agent_id or uuid.uuid4().hex[:12],
            display_name=validate_not_empty(display_name, "display_name"),
            model_name=model_name.strip(),
            host=validate_host(host),
            port=validate_port(port),
            persona_prompt=persona_prompt,
            enabled=enabled,
        )

    @classmethod
    def make_default(cls, index: int) -> "AgentDescriptor":
        """Placeholder agent "Model A", "Model B", ... on the local server."""
        letter = chr(ord("A") + index % 26)
        return cls.create(display_name=f"Model {letter}", model_name="")

    @property
    def base_url(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"http://{host}:{self.port}"

    @property
    def is_runnable(self) -> bool:
        """Enabled and pointing at a concrete model."""
        return self.enabled and bool(self.model_name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "model_name": self.model_name,
            "host": self.host,
            "port": self.port,
            "enabled": self.enabled,
        }
