"""Structured error types for agent_step.

The step entry point never raises, but everything below it does. Callers of
the lower layers (resolver, runtime) can catch specific error types instead of
parsing raw litellm exceptions:

    from agent_step.errors import AgentNotFoundError, BackendExecutionError

    try:
        agent = resolver.get_agent_or_fail(agent_id)
    except AgentNotFoundError:
        ...
"""

from __future__ import annotations

from typing import Any


class AgentStepError(Exception):
    """Base for all agent_step errors."""

    def __init__(self, message: str, original: Exception | None = None) -> None:
        super().__init__(message)
        self.original = original


class InputValidationError(AgentStepError):
    """Agent id or prompt missing. Reported before any tracing or backend contact."""


class AgentPausedError(AgentStepError):
    """Agent exists but is not live and the caller is a production workspace."""


class ConfigurationResolutionError(AgentStepError):
    """Agent or model configuration missing or invalid."""


class AgentNotFoundError(ConfigurationResolutionError):
    """No agent with the requested id."""


class ModelNotConfiguredError(ConfigurationResolutionError):
    """Agent has no usable model backend configuration."""


class BackendExecutionError(AgentStepError):
    """Failure while streaming from the model backend or running the tool loop."""


class BackendAuthError(BackendExecutionError):
    """Authentication failed (401/403): API key invalid or forbidden."""


class BackendRateLimitError(BackendExecutionError):
    """Rate limit or quota exhaustion reported by the backend."""


class BackendTransientError(BackendExecutionError):
    """Server error (500/502/503), timeout, connection reset."""


class BackendModelNotFoundError(BackendExecutionError):
    """Model doesn't exist on the backend (404)."""


class BackendContentFilterError(BackendExecutionError):
    """Content policy violation: request was blocked."""


class StructuredOutputError(BackendExecutionError):
    """Final answer could not be parsed or did not match the output schema."""


def _litellm_error_types(module: Any, names: tuple[str, ...]) -> tuple[type[BaseException], ...]:
    """Resolve optional litellm exception classes without static attribute coupling."""
    out: list[type[BaseException]] = []
    for name in names:
        candidate = getattr(module, name, None)
        if isinstance(candidate, type) and issubclass(candidate, BaseException):
            out.append(candidate)
    return tuple(out)


def classify_error(error: BaseException) -> type[AgentStepError]:
    """Classify any exception raised during backend execution.

    Uses litellm exception types when available, falls back to string matching.
    Anything unrecognized is a plain BackendExecutionError.
    """
    if isinstance(error, AgentStepError):
        return type(error)

    import litellm as _lt

    auth_types = _litellm_error_types(_lt, ("AuthenticationError", "PermissionDeniedError"))
    if auth_types and isinstance(error, auth_types):
        return BackendAuthError

    not_found_types = _litellm_error_types(_lt, ("NotFoundError",))
    if not_found_types and isinstance(error, not_found_types):
        return BackendModelNotFoundError

    content_types = _litellm_error_types(_lt, ("ContentPolicyViolationError",))
    if content_types and isinstance(error, content_types):
        return BackendContentFilterError

    rate_types = _litellm_error_types(_lt, ("RateLimitError", "BudgetExceededError"))
    if rate_types and isinstance(error, rate_types):
        return BackendRateLimitError

    transient_types = _litellm_error_types(
        _lt,
        (
            "InternalServerError",
            "ServiceUnavailableError",
            "APIConnectionError",
            "BadGatewayError",
            "Timeout",
        ),
    )
    if transient_types and isinstance(error, transient_types):
        return BackendTransientError

    # Fallback: string pattern matching
    error_str = str(error).lower()

    if "401" in error_str or "authentication" in error_str or "unauthorized" in error_str:
        return BackendAuthError
    if "403" in error_str or "forbidden" in error_str:
        return BackendAuthError
    if "404" in error_str or "model not found" in error_str or "does not exist" in error_str:
        return BackendModelNotFoundError
    if "content" in error_str and ("policy" in error_str or "filter" in error_str):
        return BackendContentFilterError
    if ("rate" in error_str and "limit" in error_str) or "quota" in error_str:
        return BackendRateLimitError
    if any(p in error_str for p in ("timeout", "timed out", "connection", "500", "502", "503", "server error")):
        return BackendTransientError

    return BackendExecutionError


def wrap_error(error: BaseException) -> AgentStepError:
    """Wrap an exception in the appropriate AgentStepError subclass.

    If the error is already an AgentStepError, returns it unchanged.
    """
    if isinstance(error, AgentStepError):
        return error
    cls = classify_error(error)
    original = error if isinstance(error, Exception) else None
    return cls(get_error_message(error), original=original)


def get_error_message(error: Any) -> str:
    """Human-readable, never-empty message for logs and step responses."""
    if isinstance(error, str):
        return error or "Unknown error"
    message = getattr(error, "message", None)
    if isinstance(message, str) and message.strip():
        return message.strip()
    text = str(error).strip() if error is not None else ""
    if text:
        return text
    if isinstance(error, BaseException):
        return type(error).__name__
    return "Unknown error"


def error_type_name(error: BaseException | None) -> str:
    """Name of the underlying exception class, used as the span's error.type tag."""
    if error is None:
        return "UnknownError"
    if isinstance(error, AgentStepError) and error.original is not None:
        return type(error.original).__name__
    return type(error).__name__
