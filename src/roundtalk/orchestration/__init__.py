"""
Dialogue orchestration.

  TurnScheduler      round-robin conversation loop (one asyncio task)
  ConversationStore  phase, status, votes, pending clarification, events
  MessageLog         append-only record of finalized messages
  tag_scanner        <think>, <clarifyWithUser> and <conversationEnd/> handling
  prompts            preamble + rolling history + speaker cue
"""
from .message_log import USER_SENDER_ID, MessageLog, MessageRecord
from .scheduler import TurnScheduler
from .state import (
    ClarificationRequest,
    ConversationSnapshot,
    ConversationStore,
    DialogueEvent,
    Phase,
)
from .tag_scanner import TagScan, extract_think, find_clarification, has_end_marker
