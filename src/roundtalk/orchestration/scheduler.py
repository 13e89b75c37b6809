"""
Turn Scheduler -- round-robin dialogue between streaming LLM agents.

One conversation = one asyncio task. Each sub-step picks the next agent in
roster order, builds its prompt from the tail of the Message Log, streams
the response, commits the finalized text (reasoning record first, then the
visible record) and evaluates the embedded tags:

  <conversationEnd/>       end vote; the conversation stops once votes >= N
  <clarifyWithUser>q</...> suspend until the human answers; same agent again
  otherwise                advance the cursor; a wrap completes one turn

The loop stops once the turn counter reaches the limit (COMPLETED), when all
agents voted (TERMINATED), on a transport failure (ABORTED) or when
`cancel()` is called (CANCELLED).

Usage:
    async with OllamaClient.from_config(config) as client:
        scheduler = TurnScheduler(client, config)
        scheduler.subscribe(print_event)
        snapshot = await scheduler.run("Is a hot dog a sandwich?", agents)
"""

import asyncio
import logging
from collections.abc import Callable, Iterable

from ..agents import AgentDescriptor
from ..config import DialogueConfig
from ..errors import InvalidStateError, NoAgentsConfigured, TransportError
from ..llm import GenerationCall, LineDecoder, OllamaClient
from ..security import sanitize_for_prompt, validate_not_empty
from .message_log import MessageRecord
from .prompts import build_prompt
from .state import (
    ClarificationRequest,
    ConversationSnapshot,
    ConversationStore,
    DialogueEvent,
    EventListener,
    Phase,
)
from .tag_scanner import THINK_OPEN, extract_think, find_clarification, has_end_marker

logger = logging.getLogger(__name__)

STATUS_STARTING = "Starting conversation…"
STATUS_THINKING = "{agent} is thinking…"
STATUS_ERROR = "{agent} error!"
STATUS_AGREED = "All models agreed to stop"
STATUS_CANCELLED = "Cancelled by user"
STATUS_CLARIFYING = "{agent} asked for clarification"
STATUS_TURN_LIMIT = "Turn limit reached"


class TurnScheduler:
    """
    Drives one conversation from the initial prompt to a terminal phase.

    All mutation happens on the scheduler's own task except `cancel()` and
    `submit_clarification_answer()`, which only resolve the suspension the
    loop is parked on.
    """

    def __init__(
        self,
        client: OllamaClient,
        config: DialogueConfig | None = None,
        conversation_id: str | None = None,
    ):
        self.client = client
        self.config = config or DialogueConfig()
        self.store = ConversationStore(conversation_id)
        self._agents: list[AgentDescriptor] = []
        self._prompt = ""
        self._invoked: set[str] = set()
        self._call: GenerationCall | None = None
        self._task: asyncio.Task | None = None
        self._cancelled = False

    # =========================================================================
    # READ ACCESS
    # =========================================================================

    @property
    def conversation_id(self) -> str:
        return self.store.conversation_id

    @property
    def phase(self) -> Phase:
        return self.store.state.phase

    @property
    def status(self) -> str:
        return self.store.state.status

    @property
    def turn(self) -> int:
        return self.store.state.turn_index

    @property
    def end_votes(self) -> int:
        return self.store.state.end_votes

    @property
    def messages(self) -> tuple[MessageRecord, ...]:
        return self.store.log.snapshot()

    @property
    def agents(self) -> tuple[AgentDescriptor, ...]:
        return tuple(self._agents)

    @property
    def pending_question(self) -> str | None:
        pending = self.store.state.pending_clarification
        return pending.question if pending else None

    def snapshot(self) -> ConversationSnapshot:
        return self.store.snapshot()

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        return self.store.subscribe(listener)

    # =========================================================================
    # CONTROL
    # =========================================================================

    def start(self, initial_prompt: str, agents: Iterable[AgentDescriptor]) -> asyncio.Task:
        """Validate inputs, record the user prompt and launch the dialogue loop."""
        if self.phase is not Phase.IDLE:
            raise InvalidStateError("start", self.phase.value)

        roster = [a for a in agents if a.is_runnable]
        if not roster:
            raise NoAgentsConfigured("At least one enabled agent with a model is required")
        if not initial_prompt or not initial_prompt.strip():
            raise NoAgentsConfigured("An initial prompt is required")

        self._agents = roster
        self._prompt = sanitize_for_prompt(
            initial_prompt.strip(), max_length=self.config.max_prompt_length
        )
        self.store.agent_count = len(roster)

        logger.info(
            f"[Scheduler:{self.conversation_id}] Starting with {len(roster)} agents "
            f"({', '.join(a.display_name for a in roster)}), "
            f"turn limit {self.config.turn_limit or 'unlimited'}"
        )
        self.store.log.append_user(self._prompt)
        self.store.set_turn(1)
        self.store.set_status(STATUS_STARTING)
        self.store.set_phase(Phase.SELECTING_AGENT)
        self._task = asyncio.create_task(self._run_loop())
        return self._task

    async def wait(self) -> ConversationSnapshot:
        """Wait for the loop to finish and return the final snapshot."""
        if self._task is None:
            raise InvalidStateError("wait", self.phase.value)
        await asyncio.wait({self._task})
        if not self._task.cancelled() and self._task.exception() is not None:
            raise self._task.exception()
        return self.snapshot()

    async def run(
        self, initial_prompt: str, agents: Iterable[AgentDescriptor]
    ) -> ConversationSnapshot:
        self.start(initial_prompt, agents)
        return await self.wait()

    def cancel(self) -> bool:
        """Stop the conversation. Returns False if it had already finished."""
        if self.phase.is_terminal:
            return False
        self._cancelled = True
        self.store.set_status(STATUS_CANCELLED)
        self.store.set_phase(Phase.CANCELLED)

        if self._call is not None:
            self._call.cancel()
        pending = self.store.state.pending_clarification
        if pending is not None:
            pending.cancel()
            self.store.set_pending(None)

        logger.info(f"[Scheduler:{self.conversation_id}] Cancelled by user")
        return True

    def submit_clarification_answer(self, text: str) -> MessageRecord:
        """Answer the pending clarification and resume the loop."""
        pending = self.store.state.pending_clarification
        if self.phase is not Phase.CLARIFYING_SUSPENDED or pending is None:
            raise InvalidStateError("answer a clarification", self.phase.value)
        answer = validate_not_empty(text, "answer")

        record = self.store.log.append_user(answer)
        self.store.set_pending(None)
        pending.fulfil(answer)
        logger.info(
            f"[Scheduler:{self.conversation_id}] Clarification for "
            f"{pending.agent_name} answered ({len(answer)} chars)"
        )
        return record

    # =========================================================================
    # DIALOGUE LOOP
    # =========================================================================

    async def _run_loop(self) -> None:
        try:
            await self._dialogue()
        except asyncio.CancelledError:
            self.cancel()
            raise
        except Exception:
            logger.exception(f"[Scheduler:{self.conversation_id}] Dialogue loop crashed")
            if not self.phase.is_terminal:
                self.store.set_phase(Phase.ABORTED)
            raise
        finally:
            if self._call is not None:
                self._call.cancel()
                self._call = None

        logger.info(
            f"[Scheduler:{self.conversation_id}] Finished: {self.phase.value} "
            f"after {len(self.store.log)} messages"
        )

    async def _dialogue(self) -> None:
        state = self.store.state
        roster_size = len(self._agents)
        limit = self.config.turn_limit

        while not self._cancelled:
            self.store.set_phase(Phase.SELECTING_AGENT)
            agent = self._agents[state.cursor]

            text = await self._stream_turn(agent)
            if text is None:
                return

            self.store.set_phase(Phase.EVALUATING_RESPONSE)
            self._commit(agent, text)

            if has_end_marker(text):
                votes = self.store.record_vote(agent.id)
                logger.info(
                    f"[Scheduler:{self.conversation_id}] {agent.display_name} voted to end "
                    f"({votes}/{roster_size})"
                )
                if votes >= roster_size:
                    self._finish(Phase.TERMINATED, STATUS_AGREED)
                    return
            else:
                question = find_clarification(text)
                if question is not None:
                    if not await self._await_clarification(agent, question):
                        return
                    continue

            state.cursor = (state.cursor + 1) % roster_size
            if state.cursor == 0:
                self.store.set_turn(state.turn_index + 1)
                if limit is not None and state.turn_index >= limit:
                    self._finish(Phase.COMPLETED, STATUS_TURN_LIMIT)
                    return

    async def _stream_turn(self, agent: AgentDescriptor) -> str | None:
        """Stream one agent response. Returns the text, or None if the turn ended the loop."""
        self.store.set_phase(Phase.AWAITING_STREAM)
        self.store.set_status(STATUS_THINKING.format(agent=agent.display_name))

        first = agent.id not in self._invoked
        self._invoked.add(agent.id)
        prompt = build_prompt(
            agent,
            self._agents,
            self._prompt,
            self.store.log.tail(self.config.context_window),
            first_invocation=first,
            max_history_length=self.config.max_prompt_length,
        )

        call = self.client.generate(agent, prompt)
        self._call = call
        decoder = LineDecoder()
        parts: list[str] = []

        async for chunk in call:
            deltas = decoder.feed(chunk)
            if deltas:
                self._publish_draft(agent, parts, deltas)
            if decoder.done and not call.settled:
                call.close()
        tail = decoder.finish()
        if tail:
            self._publish_draft(agent, parts, tail)

        outcome = await call.wait()
        self._call = None

        if self._cancelled or outcome.is_cancelled:
            logger.debug(
                f"[Scheduler:{self.conversation_id}] Discarded draft from "
                f"{agent.display_name} ({sum(len(p) for p in parts)} chars)"
            )
            if not self._cancelled:
                self.cancel()
            return None
        if not outcome.ok:
            self._abort(agent, outcome.error)
            return None
        if decoder.dropped_lines:
            logger.debug(
                f"[Scheduler:{self.conversation_id}] Dropped {decoder.dropped_lines} "
                f"malformed lines from {agent.display_name}"
            )
        return "".join(parts)

    def _publish_draft(self, agent: AgentDescriptor, parts: list[str], deltas: list[str]) -> None:
        for delta in deltas:
            parts.append(delta)
            self.store.publish(DialogueEvent("delta", {"agent_id": agent.id, "text": delta}))
        scan = extract_think("".join(parts))
        self.store.publish(DialogueEvent("draft", {
            "agent_id": agent.id,
            "agent_name": agent.display_name,
            "reasoning": scan.reasoning,
            "visible": scan.visible,
            "reasoning_complete": scan.reasoning_complete,
        }))

    def _commit(self, agent: AgentDescriptor, text: str) -> None:
        """Append the reasoning record (if any) and then the visible record (if any)."""
        scan = extract_think(text)
        reasoning = scan.reasoning
        if not scan.reasoning_complete:
            # stream ended inside <think>; keep the whole body as reasoning
            reasoning = text.split(THINK_OPEN, 1)[1].strip() or None
        if reasoning:
            self.store.log.append(agent.id, agent.display_name, reasoning, is_reasoning=True)
        if scan.visible:
            self.store.log.append(agent.id, agent.display_name, scan.visible)

    async def _await_clarification(self, agent: AgentDescriptor, question: str) -> bool:
        request = ClarificationRequest(agent.id, agent.display_name, question)
        self.store.set_pending(request)
        self.store.set_phase(Phase.CLARIFYING_SUSPENDED)
        self.store.set_status(STATUS_CLARIFYING.format(agent=agent.display_name))
        logger.info(
            f"[Scheduler:{self.conversation_id}] {agent.display_name} asked: {question[:80]}"
        )

        answer = await request.wait()
        if answer is None or self._cancelled:
            return False
        self.store.set_phase(Phase.SELECTING_AGENT)
        return True

    def _abort(self, agent: AgentDescriptor, error: TransportError | None) -> None:
        logger.error(
            f"[Scheduler:{self.conversation_id}] Aborting after {agent.display_name} failed: {error}"
        )
        self._finish(Phase.ABORTED, STATUS_ERROR.format(agent=agent.display_name))

    def _finish(self, phase: Phase, status: str) -> None:
        self.store.set_status(status)
        self.store.set_phase(phase)
