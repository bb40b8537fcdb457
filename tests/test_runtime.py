"""Tests for the tool-loop agent runtime. All mocked (no real LLM calls).

Tests cover:
- Streaming text/reasoning parts and final aggregates
- Tool calls: emission order, execution, feeding results back
- Tool-call argument deltas split across chunks
- Step bound (ABORTED after exactly max_steps model calls)
- Backend failures surfacing to the consumer as typed errors
- Early close cancelling the producer and closing the backend stream
- Aggregate access contract (RuntimeError before draining)
"""

from __future__ import annotations

import json
from unittest.mock import patch

import litellm
import pytest

from agent_step.config import DEFAULT_MAX_STEPS
from agent_step.errors import BackendAuthError, BackendTransientError, StructuredOutputError
from agent_step.parts import ReasoningPart, TextPart, ToolCallPart, ToolResultPart
from agent_step.runtime import RuntimeState, ToolLoopAgent
from agent_step.session import ModelSession
from agent_step.structured_output import build_output_constraint
from agent_step.tool_utils import RegisteredTool, callable_to_tool_metadata, prepare_tools


def search(query: str) -> str:
    """Search for documents."""
    return f"found: {query}"


def _registry():
    return prepare_tools([RegisteredTool(callable_to_tool_metadata(search), search)])


def _agent(**kwargs) -> ToolLoopAgent:
    session = ModelSession(model="openai/test-model", base_url="http://proxy:4000", session_id="sess-1")
    return ToolLoopAgent(session, **kwargs)


async def _drain(stream) -> list:
    parts = []
    async for part in stream:
        parts.append(part)
    return parts


# ---------------------------------------------------------------------------
# Text-only runs
# ---------------------------------------------------------------------------


class TestTextOnly:
    @pytest.mark.asyncio
    async def test_single_step(self, chunks, scripted_backend):
        backend = scripted_backend([
            chunks.reasoning("thinking"),
            chunks.text("Hel"),
            chunks.text("lo"),
            chunks.finish(),
            chunks.usage(12, 3),
        ])
        agent = _agent(instructions="Be brief.")
        with patch("litellm.acompletion", new=backend):
            async with agent.stream("Say hello") as stream:
                parts = await _drain(stream)

        assert [type(p) for p in parts] == [ReasoningPart, TextPart, TextPart]
        assert [type(p) for p in stream.message.parts] == [ReasoningPart, TextPart]
        assert stream.text == "Hello"
        assert stream.steps == 1
        assert stream.state is RuntimeState.DONE
        assert stream.usage.input_tokens == 12
        assert stream.usage.output_tokens == 3
        assert stream.usage.total_tokens == 15

        call = backend.calls[0]
        assert call["model"] == "openai/test-model"
        assert call["stream"] is True
        assert call["stream_options"] == {"include_usage": True}
        assert call["messages"] == [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "Say hello"},
        ]
        assert "tools" not in call
        assert "response_format" not in call
        assert backend.streams[0].closed

    @pytest.mark.asyncio
    async def test_reasoning_suppressed(self, chunks, scripted_backend):
        backend = scripted_backend([chunks.reasoning("hidden"), chunks.text("ok")])
        with patch("litellm.acompletion", new=backend):
            async with _agent(send_reasoning=False).stream("hi") as stream:
                parts = await _drain(stream)
        assert all(isinstance(p, TextPart) for p in parts)

    @pytest.mark.asyncio
    async def test_provider_options_forwarded(self, chunks, scripted_backend):
        backend = scripted_backend([chunks.text("ok")])
        agent = _agent(provider_options={"thinking": {"type": "enabled", "budget_tokens": 0}})
        with patch("litellm.acompletion", new=backend):
            async with agent.stream("hi") as stream:
                await _drain(stream)
        assert backend.calls[0]["thinking"]["budget_tokens"] == 0


# ---------------------------------------------------------------------------
# Tool loop
# ---------------------------------------------------------------------------


class TestToolLoop:
    @pytest.mark.asyncio
    async def test_tool_call_then_answer(self, chunks, scripted_backend):
        backend = scripted_backend(
            [chunks.text("Let me look."), chunks.tool_call("search", {"query": "otel"}), chunks.usage(10, 5)],
            [chunks.text("It is a tracing API."), chunks.usage(20, 8)],
        )
        with patch("litellm.acompletion", new=backend):
            async with _agent(tools=_registry()).stream("What is otel?") as stream:
                parts = await _drain(stream)

        kinds = [type(p) for p in parts]
        assert kinds == [TextPart, ToolCallPart, ToolResultPart, TextPart]
        call_part, result_part = parts[1], parts[2]
        assert call_part.tool_name == "search"
        assert call_part.input == {"query": "otel"}
        assert call_part.step == 0
        assert result_part.tool_call_id == call_part.tool_call_id
        assert result_part.output == "found: otel"
        assert result_part.error is None

        assert stream.text == "It is a tracing API."
        assert stream.steps == 2
        assert stream.usage.input_tokens == 30
        assert stream.usage.output_tokens == 13

        assert backend.calls[0]["tools"][0]["function"]["name"] == "search"
        second_messages = backend.calls[1]["messages"]
        assert second_messages[-2]["role"] == "assistant"
        assert second_messages[-2]["tool_calls"][0]["function"]["name"] == "search"
        assert second_messages[-1] == {
            "role": "tool",
            "tool_call_id": "call_search_0",
            "content": "found: otel",
        }

    @pytest.mark.asyncio
    async def test_arguments_streamed_in_pieces(self, chunks, scripted_backend):
        first = {"choices": [{"delta": {"tool_calls": [
            {"index": 0, "id": "c1", "function": {"name": "search", "arguments": '{"que'}},
        ]}}]}
        second = {"choices": [{"delta": {"tool_calls": [
            {"index": 0, "function": {"arguments": 'ry": "split"}'}},
        ]}}]}
        backend = scripted_backend([first, second], [chunks.text("done")])
        with patch("litellm.acompletion", new=backend):
            async with _agent(tools=_registry()).stream("go") as stream:
                parts = await _drain(stream)
        result = next(p for p in parts if isinstance(p, ToolResultPart))
        assert result.output == "found: split"

    @pytest.mark.asyncio
    async def test_parallel_tool_calls(self, chunks, scripted_backend):
        backend = scripted_backend(
            [chunks.tool_call("search", {"query": "a"}, index=0), chunks.tool_call("search", {"query": "b"}, index=1)],
            [chunks.text("both")],
        )
        with patch("litellm.acompletion", new=backend):
            async with _agent(tools=_registry()).stream("go") as stream:
                parts = await _drain(stream)
        outputs = [p.output for p in parts if isinstance(p, ToolResultPart)]
        assert outputs == ["found: a", "found: b"]
        tool_messages = [m for m in backend.calls[1]["messages"] if m["role"] == "tool"]
        assert [m["tool_call_id"] for m in tool_messages] == ["call_search_0", "call_search_1"]

    @pytest.mark.asyncio
    async def test_unknown_tool_is_fed_back(self, chunks, scripted_backend):
        backend = scripted_backend([chunks.tool_call("nope", {})], [chunks.text("sorry")])
        with patch("litellm.acompletion", new=backend):
            async with _agent(tools=_registry()).stream("go") as stream:
                parts = await _drain(stream)
        result = next(p for p in parts if isinstance(p, ToolResultPart))
        assert result.error == "Unknown tool: nope"
        assert json.loads(backend.calls[1]["messages"][-1]["content"]) == {"error": "Unknown tool: nope"}
        assert stream.state is RuntimeState.DONE

    @pytest.mark.asyncio
    async def test_step_bound(self, chunks, scripted_backend):
        backend = scripted_backend([chunks.tool_call("search", {"query": "again"})], repeat_last=True)
        with patch("litellm.acompletion", new=backend):
            async with _agent(tools=_registry()).stream("loop forever") as stream:
                parts = await _drain(stream)

        assert len(backend.calls) == DEFAULT_MAX_STEPS == 30
        assert stream.state is RuntimeState.ABORTED
        assert stream.steps == 30
        assert stream.text == ""
        assert sum(isinstance(p, ToolCallPart) for p in parts) == 30

    @pytest.mark.asyncio
    async def test_custom_step_bound(self, chunks, scripted_backend):
        backend = scripted_backend([chunks.tool_call("search", {"query": "x"})], repeat_last=True)
        with patch("litellm.acompletion", new=backend):
            async with _agent(tools=_registry(), max_steps=3).stream("go") as stream:
                await _drain(stream)
        assert len(backend.calls) == 3


# ---------------------------------------------------------------------------
# Structured output
# ---------------------------------------------------------------------------


class TestStructuredOutput:
    @pytest.mark.asyncio
    async def test_output_validated(self, chunks, scripted_backend):
        constraint = build_output_constraint(True, {"label": "string"})
        backend = scripted_backend([chunks.text('{"label": '), chunks.text('"spam"}')])
        with patch("litellm.acompletion", new=backend):
            async with _agent(output=constraint).stream("classify") as stream:
                await _drain(stream)
        assert stream.output == {"label": "spam"}
        assert stream.output is stream.output
        assert backend.calls[0]["response_format"]["type"] == "json_schema"

    @pytest.mark.asyncio
    async def test_invalid_output_raises(self, chunks, scripted_backend):
        constraint = build_output_constraint(True, {"label": "string"})
        backend = scripted_backend([chunks.text("not json")])
        with patch("litellm.acompletion", new=backend):
            async with _agent(output=constraint).stream("classify") as stream:
                await _drain(stream)
        with pytest.raises(StructuredOutputError):
            stream.output

    @pytest.mark.asyncio
    async def test_output_without_constraint(self, chunks, scripted_backend):
        backend = scripted_backend([chunks.text("plain")])
        with patch("litellm.acompletion", new=backend):
            async with _agent().stream("hi") as stream:
                await _drain(stream)
        with pytest.raises(RuntimeError, match="No output constraint"):
            stream.output


# ---------------------------------------------------------------------------
# Failures and lifecycle
# ---------------------------------------------------------------------------


class TestFailures:
    @pytest.mark.asyncio
    async def test_mid_stream_error(self, chunks, scripted_backend, fake_stream):
        broken = fake_stream([chunks.text("partial")], error=ConnectionError("connection reset by peer"))
        backend = scripted_backend(broken)
        received = []
        with patch("litellm.acompletion", new=backend):
            async with _agent().stream("hi") as stream:
                with pytest.raises(BackendTransientError, match="connection reset"):
                    async for part in stream:
                        received.append(part)

        assert [p.text for p in received] == ["partial"]
        assert stream.state is RuntimeState.FAILED
        assert broken.closed

    @pytest.mark.asyncio
    async def test_call_error_is_classified(self, scripted_backend):
        backend = scripted_backend(
            litellm.AuthenticationError(message="bad key", model="m", llm_provider="openai"),
        )
        with patch("litellm.acompletion", new=backend):
            async with _agent().stream("hi") as stream:
                with pytest.raises(BackendAuthError):
                    await _drain(stream)

    @pytest.mark.asyncio
    async def test_early_close_releases_backend(self, chunks, scripted_backend, fake_stream):
        hanging = fake_stream([chunks.text("first")], hang=True)
        backend = scripted_backend(hanging)
        with patch("litellm.acompletion", new=backend):
            async with _agent().stream("hi") as stream:
                async for part in stream:
                    assert part.text == "first"
                    break

        assert hanging.closed
        assert [p async for p in stream] == []

    @pytest.mark.asyncio
    async def test_aclose_is_idempotent(self, chunks, scripted_backend):
        backend = scripted_backend([chunks.text("ok")])
        with patch("litellm.acompletion", new=backend):
            stream = _agent().stream("hi")
            await _drain(stream)
            await stream.aclose()
            await stream.aclose()
        assert stream.text == "ok"


class TestContract:
    @pytest.mark.asyncio
    async def test_aggregates_before_drain(self, chunks, scripted_backend):
        backend = scripted_backend([chunks.text("a"), chunks.text("b")])
        with patch("litellm.acompletion", new=backend):
            async with _agent().stream("hi") as stream:
                with pytest.raises(RuntimeError, match="not yet consumed"):
                    stream.text
                await stream.__anext__()
                with pytest.raises(RuntimeError, match="not yet consumed"):
                    stream.usage

    def test_nothing_sent_until_iterated(self, scripted_backend):
        backend = scripted_backend()
        with patch("litellm.acompletion", new=backend):
            stream = _agent().stream("hi")
        assert backend.calls == []
        assert stream.state is RuntimeState.INIT

    @pytest.mark.parametrize("kwargs", [{"max_steps": 0}, {"buffer_size": 0}])
    def test_invalid_bounds(self, kwargs):
        with pytest.raises(ValueError):
            _agent(**kwargs)
