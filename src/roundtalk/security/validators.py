"""
Input Validators - Validation for prompts, answers, and agent endpoints.

Parse at the boundary: the API and CLI validate everything before it reaches
the scheduler, so the core can treat agent descriptors and prompts as trusted.
"""

import logging
import re

logger = logging.getLogger(__name__)

MIN_PORT = 1
MAX_PORT = 65535

_HOSTNAME_RE = re.compile(r"^[A-Za-z0-9]([A-Za-z0-9.-]{0,251}[A-Za-z0-9])?$")
_IPV6_RE = re.compile(r"^[0-9A-Fa-f:]+$")


class ValidationError(ValueError):
    """Raised when input validation fails. Contains a user-friendly message."""

    pass


def validate_not_empty(value: str, field_name: str = "input") -> str:
    """Validate that a string is not empty or whitespace-only. Returns it trimmed."""
    if not value or not value.strip():
        raise ValidationError(f"{field_name} cannot be empty")
    return value.strip()


def validate_length(
    value: str,
    field_name: str = "input",
    min_length: int = 0,
    max_length: int = 100_000,
) -> str:
    """Validate string length is within bounds."""
    if len(value) < min_length:
        raise ValidationError(f"{field_name} must be at least {min_length} characters")
    if len(value) > max_length:
        raise ValidationError(f"{field_name} must be at most {max_length} characters")
    return value


def validate_port(value: int | str, field_name: str = "port") -> int:
    """Validate a TCP port number."""
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be an integer (got {value!r})")
    if not MIN_PORT <= port <= MAX_PORT:
        raise ValidationError(
            f"{field_name} must be between {MIN_PORT} and {MAX_PORT} (got {port})"
        )
    return port


def validate_host(value: str, field_name: str = "host") -> str:
    """Validate a hostname or IP literal (no scheme, no path)."""
    host = validate_not_empty(value, field_name)
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
        if _IPV6_RE.match(host):
            return host
    elif _HOSTNAME_RE.match(host) or _IPV6_RE.match(host):
        return host
    raise ValidationError(f"{field_name} is not a valid hostname: {value!r}")


def validate_positive_number(value: float | int, field_name: str = "number") -> float:
    """Validate that a number is positive."""
    if value <= 0:
        raise ValidationError(f"{field_name} must be positive (got {value})")
    return float(value)


def validate_probability(value: float, field_name: str = "probability") -> float:
    """Validate a sampling parameter in the closed range [0, 1]."""
    if not 0.0 <= value <= 1.0:
        raise ValidationError(f"{field_name} must be between 0 and 1 (got {value})")
    return float(value)
