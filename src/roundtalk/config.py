"""
Dialogue configuration.

Defaults: 8 turns, a 12-message context window, temperature 0.7, top_p 0.9
and a 5 minute request ceiling.

Environment overrides (all optional):
    ROUNDTALK_MAX_TURNS        turn counter value that ends the conversation
    ROUNDTALK_UNLIMITED        "1"/"true" to ignore the turn limit
    ROUNDTALK_CONTEXT_WINDOW   messages included in each prompt's history
    ROUNDTALK_TEMPERATURE      sampling temperature
    ROUNDTALK_TOP_P            nucleus sampling probability
    ROUNDTALK_REQUEST_TIMEOUT  seconds before a generate request fails
"""

import logging
import os
from dataclasses import dataclass, replace

from .security import ValidationError, validate_positive_number, validate_probability

logger = logging.getLogger(__name__)

DEFAULT_MAX_TURNS = 8
DEFAULT_CONTEXT_WINDOW = 12
DEFAULT_TEMPERATURE = 0.7
DEFAULT_TOP_P = 0.9
DEFAULT_REQUEST_TIMEOUT = 300.0
DEFAULT_MAX_PROMPT_LENGTH = 200_000

ENV_PREFIX = "ROUNDTALK_"
_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class DialogueConfig:
    """Configuration for one conversation."""

    max_turns: int = DEFAULT_MAX_TURNS
    unlimited: bool = False
    context_window: int = DEFAULT_CONTEXT_WINDOW
    temperature: float = DEFAULT_TEMPERATURE
    top_p: float = DEFAULT_TOP_P
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    max_prompt_length: int = DEFAULT_MAX_PROMPT_LENGTH

    def __post_init__(self):
        validate_positive_number(self.max_turns, "max_turns")
        validate_positive_number(self.context_window, "context_window")
        validate_positive_number(self.request_timeout, "request_timeout")
        validate_positive_number(self.max_prompt_length, "max_prompt_length")
        validate_probability(self.top_p, "top_p")
        if not 0.0 <= self.temperature <= 2.0:
            raise ValidationError(
                f"temperature must be between 0 and 2 (got {self.temperature})"
            )

    @property
    def turn_limit(self) -> int | None:
        """Turn counter value that ends the conversation, or None when unlimited."""
        return None if self.unlimited else self.max_turns

    def with_overrides(self, **overrides) -> "DialogueConfig":
        """Copy with the given non-None fields replaced."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes) if changes else self

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "DialogueConfig":
        """Build a config from ROUNDTALK_* environment variables."""
        env = os.environ if environ is None else environ
        values: dict = {}
        casts = {
            "max_turns": int,
            "context_window": int,
            "temperature": float,
            "top_p": float,
            "request_timeout": float,
        }
        for field_name, cast in casts.items():
            raw = env.get(f"{ENV_PREFIX}{field_name.upper()}")
            if raw is None or not raw.strip():
                continue
            try:
                values[field_name] = cast(raw)
            except ValueError:
                raise ValidationError(
                    f"{ENV_PREFIX}{field_name.upper()} must be a number (got {raw!r})"
                )
        unlimited = env.get(f"{ENV_PREFIX}UNLIMITED")
        if unlimited is not None:
            values["unlimited"] = unlimited.strip().lower() in _TRUTHY

        config = cls(**values)
        if values:
            logger.debug(f"[Config] Loaded overrides from environment: {sorted(values)}")
        return config
