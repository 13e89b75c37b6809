"""
Conversation state container.

Holds everything the scheduler publishes: phase, status text, turn counter,
end votes, the pending clarification and the Message Log. Mutation goes
through ConversationStore methods (called only by the scheduler), and every
change is announced as a DialogueEvent to subscribers. Observers get frozen
ConversationSnapshots.

Clarification suspension is an explicit token, ClarificationRequest: the
scheduler parks on `await request.wait()`, and the token is fulfilled exactly
once, either with the human's answer or with the cancelled outcome (None).
"""

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .message_log import MessageLog, MessageRecord

logger = logging.getLogger(__name__)


class Phase(Enum):
    """Scheduler lifecycle."""

    IDLE = "idle"
    SELECTING_AGENT = "selecting_agent"
    AWAITING_STREAM = "awaiting_stream"
    EVALUATING_RESPONSE = "evaluating_response"
    CLARIFYING_SUSPENDED = "clarifying_suspended"
    TERMINATED = "terminated"
    COMPLETED = "completed"
    ABORTED = "aborted"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_PHASES


TERMINAL_PHASES = frozenset({
    Phase.TERMINATED,
    Phase.COMPLETED,
    Phase.ABORTED,
    Phase.CANCELLED,
})


# =============================================================================
# CLARIFICATION TOKEN
# =============================================================================


class ClarificationRequest:
    """A question from an agent that suspends the scheduler until answered."""

    def __init__(self, agent_id: str, agent_name: str, question: str):
        self.agent_id = agent_id
        self.agent_name = agent_name
        self.question = question
        self._future: asyncio.Future[str | None] = (
            asyncio.get_running_loop().create_future()
        )

    @property
    def resolved(self) -> bool:
        return self._future.done()

    def fulfil(self, answer: str) -> bool:
        """Deliver the answer. Returns False if already resolved."""
        if self._future.done():
            return False
        self._future.set_result(answer)
        return True

    def cancel(self) -> bool:
        """Resolve with the cancelled outcome. Returns False if already resolved."""
        if self._future.done():
            return False
        self._future.set_result(None)
        return True

    async def wait(self) -> str | None:
        """The answer, or None if the request was cancelled."""
        return await self._future


# =============================================================================
# EVENTS & SNAPSHOTS
# =============================================================================


@dataclass(frozen=True)
class DialogueEvent:
    """Something observers may want to render.

    kinds: phase, status, turn, message, delta, draft, clarification
    """

    kind: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ConversationSnapshot:
    """Immutable view of a conversation at one point in time."""

    conversation_id: str
    phase: Phase
    status: str
    turn: int
    end_votes: int
    agent_count: int
    pending_question: str | None
    messages: tuple[MessageRecord, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "conversation_id": self.conversation_id,
            "phase": self.phase.value,
            "status": self.status,
            "turn": self.turn,
            "end_votes": self.end_votes,
            "agent_count": self.agent_count,
            "pending_question": self.pending_question,
            "messages": [m.to_dict() for m in self.messages],
        }


EventListener = Callable[[DialogueEvent], None]


# =============================================================================
# STORE
# =============================================================================


@dataclass
class ConversationState:
    """Mutable scheduler state. Only the scheduler touches it."""

    turn_index: int = 0
    cursor: int = 0
    end_votes: int = 0
    voters: set[str] = field(default_factory=set)
    pending_clarification: ClarificationRequest | None = None
    phase: Phase = Phase.IDLE
    status: str = ""


class ConversationStore:
    """State + Message Log + subscriptions for one conversation."""

    def __init__(self, conversation_id: str | None = None):
        self.conversation_id = conversation_id or uuid.uuid4().hex[:16]
        self.state = ConversationState()
        self.log = MessageLog()
        self.agent_count = 0
        self._listeners: list[EventListener] = []
        self.log.subscribe(
            lambda record: self.publish(DialogueEvent("message", record.to_dict()))
        )

    # -- mutation API (scheduler only) ---------------------------------------

    def set_phase(self, phase: Phase) -> None:
        if self.state.phase is phase:
            return
        previous = self.state.phase
        self.state.phase = phase
        logger.debug(f"[Conversation:{self.conversation_id}] {previous.value} -> {phase.value}")
        self.publish(DialogueEvent("phase", {"phase": phase.value, "previous": previous.value}))

    def set_status(self, status: str) -> None:
        self.state.status = status
        self.publish(DialogueEvent("status", {"status": status}))

    def set_turn(self, turn: int) -> None:
        self.state.turn_index = turn
        self.publish(DialogueEvent("turn", {"turn": turn}))

    def set_pending(self, request: ClarificationRequest | None) -> None:
        self.state.pending_clarification = request
        self.publish(DialogueEvent("clarification", {
            "pending": request is not None,
            "agent_id": request.agent_id if request else None,
            "agent_name": request.agent_name if request else None,
            "question": request.question if request else None,
        }))

    def record_vote(self, agent_id: str) -> int:
        self.state.end_votes += 1
        self.state.voters.add(agent_id)
        return self.state.end_votes

    # -- observation API -------------------------------------------------------

    def publish(self, event: DialogueEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning(
                    f"[Conversation:{self.conversation_id}] Listener failed on "
                    f"{event.kind} event: {e}"
                )

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        """Register an event listener. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def snapshot(self) -> ConversationSnapshot:
        pending = self.state.pending_clarification
        return ConversationSnapshot(
            conversation_id=self.conversation_id,
            phase=self.state.phase,
            status=self.state.status,
            turn=self.state.turn_index,
            end_votes=self.state.end_votes,
            agent_count=self.agent_count,
            pending_question=pending.question if pending else None,
            messages=self.log.snapshot(),
        )
