"""Typed runtime configuration for agent_step."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)

MAX_STEPS_ENV = "AGENT_STEP_MAX_STEPS"
STREAM_BUFFER_ENV = "AGENT_STEP_STREAM_BUFFER"
TOOL_RESULT_MAX_LENGTH_ENV = "AGENT_STEP_TOOL_RESULT_MAX_LENGTH"
TIMEOUT_ENV = "AGENT_STEP_TIMEOUT"
SEND_REASONING_ENV = "AGENT_STEP_SEND_REASONING"
LITELLM_URL_ENV = "LITELLM_URL"

DEFAULT_MAX_STEPS: int = 30
"""Maximum model calls (steps) in one tool loop."""

DEFAULT_STREAM_BUFFER_SIZE: int = 64
"""Bound on parts queued between the loop and its consumer."""

DEFAULT_TOOL_RESULT_MAX_LENGTH: int = 50_000
"""Maximum character length for a single tool result fed back to the model."""

DEFAULT_TIMEOUT: int = 120
"""Per-request backend timeout in seconds."""

DEFAULT_SPAN_NAME = "automation.agent"


def _positive_int_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        value = 0
    if value <= 0:
        logger.warning(
            "Invalid %s=%r; expected a positive integer. Defaulting to %d.",
            name,
            raw,
            default,
        )
        return default
    return value


def _bool_env(name: str, default: bool) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return default
    if raw in {"0", "false", "no", "off"}:
        return False
    if raw in {"1", "true", "yes", "on"}:
        return True
    logger.warning(
        "Invalid %s=%r; expected on/off boolean. Defaulting to %s.",
        name,
        raw,
        "on" if default else "off",
    )
    return default


@dataclass(frozen=True)
class StepConfig:
    """Runtime policy/config resolved once and passed explicitly through calls."""

    max_steps: int = DEFAULT_MAX_STEPS
    stream_buffer_size: int = DEFAULT_STREAM_BUFFER_SIZE
    tool_result_max_length: int = DEFAULT_TOOL_RESULT_MAX_LENGTH
    timeout: int = DEFAULT_TIMEOUT
    send_reasoning: bool = True
    litellm_url: str | None = None
    span_name: str = DEFAULT_SPAN_NAME

    @classmethod
    def from_env(cls) -> "StepConfig":
        """Build typed config from environment variables."""
        return cls(
            max_steps=_positive_int_env(MAX_STEPS_ENV, DEFAULT_MAX_STEPS),
            stream_buffer_size=_positive_int_env(STREAM_BUFFER_ENV, DEFAULT_STREAM_BUFFER_SIZE),
            tool_result_max_length=_positive_int_env(
                TOOL_RESULT_MAX_LENGTH_ENV, DEFAULT_TOOL_RESULT_MAX_LENGTH,
            ),
            timeout=_positive_int_env(TIMEOUT_ENV, DEFAULT_TIMEOUT),
            send_reasoning=_bool_env(SEND_REASONING_ENV, True),
            litellm_url=os.environ.get(LITELLM_URL_ENV) or None,
        )
