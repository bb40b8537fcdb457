"""Tests for agent_step.errors: error classification, wrapping and messages."""

from __future__ import annotations

from unittest.mock import MagicMock

import litellm

from agent_step.errors import (
    AgentNotFoundError,
    AgentStepError,
    BackendAuthError,
    BackendContentFilterError,
    BackendExecutionError,
    BackendModelNotFoundError,
    BackendRateLimitError,
    BackendTransientError,
    ConfigurationResolutionError,
    ModelNotConfiguredError,
    StructuredOutputError,
    classify_error,
    error_type_name,
    get_error_message,
    wrap_error,
)


# ---------------------------------------------------------------------------
# classify_error: litellm exception types
# ---------------------------------------------------------------------------


class TestClassifyLitellmTypes:
    def test_auth_error(self):
        err = litellm.AuthenticationError(
            message="Invalid API key", model="gpt-4o", llm_provider="openai"
        )
        assert classify_error(err) is BackendAuthError

    def test_permission_denied(self):
        err = litellm.PermissionDeniedError(
            message="Forbidden", model="gpt-4o", llm_provider="openai", response=MagicMock()
        )
        assert classify_error(err) is BackendAuthError

    def test_not_found(self):
        err = litellm.NotFoundError(
            message="Model not found", model="gpt-99", llm_provider="openai"
        )
        assert classify_error(err) is BackendModelNotFoundError

    def test_content_policy(self):
        err = litellm.ContentPolicyViolationError(
            message="Content blocked", model="gpt-4o", llm_provider="openai"
        )
        assert classify_error(err) is BackendContentFilterError

    def test_rate_limit(self):
        err = litellm.RateLimitError(
            message="Rate limit exceeded", model="gpt-4o", llm_provider="openai"
        )
        assert classify_error(err) is BackendRateLimitError

    def test_internal_server_error(self):
        err = litellm.InternalServerError(
            message="Internal server error", model="gpt-4o", llm_provider="openai"
        )
        assert classify_error(err) is BackendTransientError


# ---------------------------------------------------------------------------
# classify_error: string fallback
# ---------------------------------------------------------------------------


class TestClassifyStringPatterns:
    def test_unauthorized(self):
        assert classify_error(Exception("401 Unauthorized")) is BackendAuthError

    def test_model_not_found(self):
        assert classify_error(Exception("The model `foo` does not exist")) is BackendModelNotFoundError

    def test_content_filter(self):
        assert classify_error(Exception("content filter triggered")) is BackendContentFilterError

    def test_quota(self):
        assert classify_error(Exception("quota exceeded for today")) is BackendRateLimitError

    def test_timeout(self):
        assert classify_error(TimeoutError("request timed out")) is BackendTransientError

    def test_connection_reset(self):
        assert classify_error(ConnectionError("connection reset by peer")) is BackendTransientError

    def test_unknown_is_generic_backend_error(self):
        assert classify_error(ValueError("something odd")) is BackendExecutionError

    def test_agent_step_error_keeps_its_type(self):
        assert classify_error(AgentNotFoundError("nope")) is AgentNotFoundError


class TestHierarchy:
    def test_configuration_errors(self):
        assert issubclass(AgentNotFoundError, ConfigurationResolutionError)
        assert issubclass(ModelNotConfiguredError, ConfigurationResolutionError)

    def test_structured_output_is_backend_error(self):
        assert issubclass(StructuredOutputError, BackendExecutionError)
        assert issubclass(BackendExecutionError, AgentStepError)


# ---------------------------------------------------------------------------
# wrap_error
# ---------------------------------------------------------------------------


class TestWrapError:
    def test_wraps_with_original(self):
        original = ConnectionError("connection refused")
        wrapped = wrap_error(original)
        assert isinstance(wrapped, BackendTransientError)
        assert wrapped.original is original
        assert "connection refused" in str(wrapped)

    def test_passthrough(self):
        err = StructuredOutputError("bad json")
        assert wrap_error(err) is err


# ---------------------------------------------------------------------------
# Messages and tags
# ---------------------------------------------------------------------------


class TestGetErrorMessage:
    def test_prefers_message_attribute(self):
        err = litellm.RateLimitError(message="slow down", model="gpt-4o", llm_provider="openai")
        assert "slow down" in get_error_message(err)

    def test_falls_back_to_str(self):
        assert get_error_message(ValueError("boom")) == "boom"

    def test_empty_exception_uses_type_name(self):
        assert get_error_message(RuntimeError()) == "RuntimeError"

    def test_never_empty(self):
        assert get_error_message(None) == "Unknown error"
        assert get_error_message("") == "Unknown error"
        assert get_error_message(object()) != ""


class TestErrorTypeName:
    def test_plain_exception(self):
        assert error_type_name(ValueError("x")) == "ValueError"

    def test_wrapped_uses_original(self):
        assert error_type_name(wrap_error(KeyError("k"))) == "KeyError"

    def test_own_error(self):
        assert error_type_name(AgentNotFoundError("gone")) == "AgentNotFoundError"

    def test_none(self):
        assert error_type_name(None) == "UnknownError"
