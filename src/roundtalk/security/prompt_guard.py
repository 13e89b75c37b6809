"""
Prompt Guard - Keep agent output and rolling history safe to feed back into prompts.

Agents read each other's words, so every finalized response becomes prompt
input for the next speaker. Two helpers:

  sanitize_for_prompt() -- null byte removal and length enforcement
  clip_history()        -- keeps the tail of an oversized history block
"""

import logging

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "[TRUNCATED]"


def sanitize_for_prompt(
    content: str,
    max_length: int = 100_000,
    strip_null: bool = True,
) -> str:
    """
    Sanitize text for inclusion in a generate prompt.

    - Strips null bytes (local model servers reject them)
    - Truncates to max_length, keeping the head
    - Leaves control markers intact; the scheduler needs to see them

    Args:
        content: Raw text (agent response or user input)
        max_length: Maximum character length
        strip_null: Whether to remove null bytes

    Returns:
        Sanitized text
    """
    if not content:
        return ""

    if strip_null:
        content = content.replace("\x00", "")

    if len(content) > max_length:
        content = content[:max_length] + "\n" + TRUNCATION_MARKER
        logger.info(f"[PromptGuard] Content truncated to {max_length} chars")

    return content


def clip_history(history: str, max_length: int) -> str:
    """Drop the oldest part of a history block so it fits in max_length.

    The newest lines matter most to the speaking agent, so unlike
    sanitize_for_prompt() this keeps the tail.
    """
    if len(history) <= max_length:
        return history
    clipped = history[len(history) - max_length:]
    newline = clipped.find("\n")
    if newline != -1:
        clipped = clipped[newline + 1:]
    logger.info(f"[PromptGuard] History clipped to last {len(clipped)} chars")
    return f"{TRUNCATION_MARKER}\n{clipped}"
