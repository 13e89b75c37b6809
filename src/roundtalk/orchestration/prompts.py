"""
Prompt construction for one agent sub-step.

    prompt = preamble + history + "\\n{speaker}:"

The preamble is the full persona/protocol briefing on an agent's first
invocation and a one-line reminder of the user's prompt afterwards. History
is the last `context_window` records of the Message Log rendered as
"{sender}: {text}", reasoning records left out.
"""

from collections.abc import Sequence

from ..agents import AgentDescriptor
from ..security import clip_history
from .message_log import MessageRecord
from .tag_scanner import CLARIFY_CLOSE, CLARIFY_OPEN, END_MARKER, THINK_CLOSE, THINK_OPEN

FIRST_RESPONSE_CUE = "Use the User Prompt as the starting point for your conversation.\n\n"


def build_preamble(
    agent: AgentDescriptor,
    roster: Sequence[AgentDescriptor],
    original_prompt: str,
    first_invocation: bool,
) -> str:
    """Persona briefing on first invocation, user-prompt reminder afterwards."""
    if not first_invocation:
        return f"Original user prompt: {original_prompt}\n\n"

    names = ", ".join(a.display_name for a in roster)
    return (
        f"You are {agent.display_name} in a conversation between {len(roster)} "
        f"AI models: ({names}).\n\n"
        f"{agent.persona_prompt}\n\n"
        "You will be discussing topics with the other models, taking turns to respond.\n"
        "We are all friends here. Be relaxed, be a rebel and be creative.\n"
        "Be thoughtful and engaging in your responses. Keep it super brief and on topic!\n"
        f"You can use {THINK_OPEN}{THINK_CLOSE} tags to show your reasoning process.\n"
        f"If you need the user to answer a question, use the tag "
        f"{CLARIFY_OPEN}Message for the user{CLARIFY_CLOSE} to request further info.\n"
        f"If you feel the conversation has come to a conclusion, use the tag "
        f"{END_MARKER}; the conversation ends once every participant has used it. "
        "Don't give up easily though!\n"
        f"{FIRST_RESPONSE_CUE}"
    )


def build_history(records: Sequence[MessageRecord]) -> str:
    """Render records as "{sender}: {text}" lines, skipping reasoning."""
    return "\n".join(
        f"{record.sender_name}: {record.text}"
        for record in records
        if not record.is_reasoning
    )


def build_prompt(
    agent: AgentDescriptor,
    roster: Sequence[AgentDescriptor],
    original_prompt: str,
    history_records: Sequence[MessageRecord],
    first_invocation: bool,
    max_history_length: int | None = None,
) -> str:
    """Full prompt for `agent`'s next sub-step."""
    history = build_history(history_records)
    if max_history_length is not None:
        history = clip_history(history, max_history_length)
    preamble = build_preamble(agent, roster, original_prompt, first_invocation)
    return f"{preamble}{history}\n{agent.display_name}:"
