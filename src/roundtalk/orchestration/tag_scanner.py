"""
Tag Scanner -- splits agent text into reasoning and visible segments.

Agents mark their output with three inline tags:

  <think>...</think>                      reasoning, hidden or collapsed when shown
  <clarifyWithUser>...</clarifyWithUser>  a question for the human
  <conversationEnd/>                      a vote to stop the conversation

`extract_think()` is called repeatedly on the growing text while a response
streams (so a live view can show the latest line of reasoning and hold back
the answer), and once more on the finalized text.
"""

import logging
import re
from dataclasses import dataclass

from ..errors import MalformedTagStructure

logger = logging.getLogger(__name__)

THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"
END_MARKER = "<conversationEnd/>"
CLARIFY_OPEN = "<clarifyWithUser>"
CLARIFY_CLOSE = "</clarifyWithUser>"
THINKING_PREFIX = "🤔 "

_CLARIFY_RE = re.compile(
    re.escape(CLARIFY_OPEN) + r"(.*?)" + re.escape(CLARIFY_CLOSE), re.DOTALL
)


@dataclass(frozen=True)
class TagScan:
    """Segmentation of (possibly partial) agent text."""

    reasoning: str | None
    visible: str
    reasoning_complete: bool


def extract_think(text: str) -> TagScan:
    """Classify text into reasoning and visible segments.

    - no opening tag: everything is visible
    - opening and closing tag: reasoning between them, visible after
    - opening tag only: still thinking, show the last reasoning line
    """
    start = text.find(THINK_OPEN)
    if start == -1:
        return TagScan(reasoning=None, visible=text.strip(), reasoning_complete=True)

    body_start = start + len(THINK_OPEN)
    end = text.find(THINK_CLOSE, body_start)
    if end == -1:
        last_line = _last_non_empty_line(text[body_start:])
        return TagScan(
            reasoning=THINKING_PREFIX + last_line if last_line else None,
            visible="",
            reasoning_complete=False,
        )

    try:
        return _split_closed(text, body_start, end)
    except MalformedTagStructure as e:
        logger.warning(f"[TagScanner] {e} -- treating the whole response as visible")
        return TagScan(reasoning=None, visible=text.strip(), reasoning_complete=True)


def _split_closed(text: str, body_start: int, end: int) -> TagScan:
    after = text[end + len(THINK_CLOSE):]
    if THINK_CLOSE in after:
        raise MalformedTagStructure("repeated </think> after the reasoning block")
    reasoning = text[body_start:end].strip()
    return TagScan(
        reasoning=reasoning or None,
        visible=after.strip(),
        reasoning_complete=True,
    )


def _last_non_empty_line(text: str) -> str:
    for line in reversed(text.splitlines()):
        stripped = line.strip()
        if stripped:
            return stripped
    return ""


def find_clarification(text: str) -> str | None:
    """Inner text of the first clarification request, or None.

    An empty request (`<clarifyWithUser></clarifyWithUser>`) asks nothing
    and is ignored.
    """
    match = _CLARIFY_RE.search(text)
    if match is None:
        return None
    return match.group(1).strip() or None


def has_end_marker(text: str) -> bool:
    """Whether the agent voted to end the conversation."""
    return END_MARKER in text
