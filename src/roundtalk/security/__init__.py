"""Security utilities -- boundary validation and prompt sanitization."""
from .prompt_guard import clip_history, sanitize_for_prompt
from .validators import (
    ValidationError,
    validate_host,
    validate_length,
    validate_not_empty,
    validate_port,
    validate_positive_number,
    validate_probability,
)
