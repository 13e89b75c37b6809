"""
Exception hierarchy for the dialogue orchestrator.

Only TransportError and explicit user cancellation end a conversation early.
MalformedStreamLine and MalformedTagStructure are raised and absorbed locally
(the offending line is dropped, the tag split degrades to plain text).
"""


class DialogueError(Exception):
    """Base exception for all orchestrator errors."""


class NoAgentsConfigured(DialogueError):
    """A conversation was started without agents or without a prompt."""


class InvalidStateError(DialogueError):
    """An operation was invoked in a phase that does not allow it."""

    def __init__(self, operation: str, phase: str):
        self.operation = operation
        self.phase = phase
        super().__init__(f"Cannot {operation} while conversation is {phase}")


class TransportError(DialogueError):
    """The generate request for a turn failed (network, HTTP status, encoding)."""

    def __init__(self, agent_id: str, reason: str, status_code: int | None = None):
        self.agent_id = agent_id
        self.reason = reason
        self.status_code = status_code
        detail = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(f"Transport failure for agent {agent_id}{detail}: {reason}")


class TransportCancelled(TransportError):
    """The in-flight request was cancelled before it completed."""

    def __init__(self, agent_id: str):
        super().__init__(agent_id, "request cancelled")


class MalformedStreamLine(DialogueError):
    """A streamed line could not be decoded as a generate record."""

    def __init__(self, line: bytes, reason: str):
        self.line = line
        self.reason = reason
        super().__init__(f"Malformed stream line ({reason}): {line[:80]!r}")


class MalformedTagStructure(DialogueError):
    """Reasoning markers are nested or repeated in an unsupported way."""
