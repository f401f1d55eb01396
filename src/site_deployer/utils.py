"""Small helpers shared across modules."""

import logging
from typing import Optional


def mask(value: Optional[str], head: int = 4, tail: int = 3) -> str:
    """
    Render a secret for logs, keeping only its first and last characters.

    Args:
        value: The secret (token, verifier, code)
        head: Characters kept at the start
        tail: Characters kept at the end

    Returns:
        A masked representation safe to log
    """
    if not value:
        return "(empty)"
    if len(value) <= head + tail:
        return "*" * len(value)
    return f"{value[:head]}…{value[-tail:]}"


def auth_trace(logger: logging.Logger, enabled: bool, message: str) -> None:
    """Log an authentication step at debug level when tracing is enabled."""
    if enabled:
        logger.debug(f"[AUTH] {message}")
