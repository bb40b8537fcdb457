"""Per-invocation model sessions against an OpenAI-compatible LiteLLM proxy.

One ``ModelSession`` is created for each step invocation and discarded with
it. Every request made through the session carries the session id so proxy
spend logs and traces can be joined back to the step.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

import litellm

from agent_step.models import ModelConfig

logger = logging.getLogger(__name__)

# Silence litellm's noisy default logging
litellm.suppress_debug_info = True

SESSION_HEADER = "x-litellm-session-id"
PROXY_PROVIDER_PREFIX = "openai/"


def new_session_id() -> str:
    return str(uuid.uuid4())


def _is_claude_model(model: str) -> bool:
    lower = model.lower()
    return "claude" in lower or "anthropic" in lower


def _is_thinking_model(model: str) -> bool:
    """Gemini 3/4 thinking models spend output budget on reasoning by default."""
    lower = model.lower()
    return "gemini-3" in lower or "gemini-4" in lower


def provider_options(model_name: str | None, *, reasoning_effort: str | None = None) -> dict[str, Any]:
    """Provider-routing hints derived from the model's identity."""
    options: dict[str, Any] = {}
    name = model_name or ""
    if _is_thinking_model(name):
        options["thinking"] = {"type": "enabled", "budget_tokens": 0}
    if reasoning_effort and _is_claude_model(name):
        options["reasoning_effort"] = reasoning_effort
    elif reasoning_effort:
        logger.debug("reasoning_effort=%s ignored for non-Claude model %s", reasoning_effort, name)
    return options


@dataclass(frozen=True)
class ModelSession:
    """Authenticated backend handle bound to one session id."""

    model: str
    base_url: str
    session_id: str
    api_key: str = field(default="", repr=False)
    timeout: int = 120

    @property
    def headers(self) -> dict[str, str]:
        return {SESSION_HEADER: self.session_id}

    async def acompletion(self, **kwargs: Any) -> Any:
        """``litellm.acompletion`` with this session's model, credentials and tag."""
        extra_headers = {**(kwargs.pop("extra_headers", None) or {}), **self.headers}
        call_kwargs: dict[str, Any] = {
            "model": self.model,
            "api_base": self.base_url,
            "api_key": self.api_key or None,
            "timeout": self.timeout,
            "extra_headers": extra_headers,
            **kwargs,
        }
        return await litellm.acompletion(**call_kwargs)


def create_model_session(
    model_config: ModelConfig,
    session_id: str,
    *,
    timeout: int = 120,
) -> ModelSession:
    """Build the session handle for one invocation."""
    model = model_config.model_id
    if not model.startswith(PROXY_PROVIDER_PREFIX):
        model = f"{PROXY_PROVIDER_PREFIX}{model}"
    return ModelSession(
        model=model,
        base_url=model_config.base_url,
        session_id=session_id,
        api_key=model_config.api_key,
        timeout=timeout,
    )
