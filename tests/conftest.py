"""Shared fakes for agent_step tests. No real LLM calls anywhere in the suite."""

# mock-ok: the model backend is an external streaming service; unit tests script it

from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter


class Chunks:
    """Builders for litellm-shaped streaming chunks (plain dicts)."""

    @staticmethod
    def text(text: str) -> dict[str, Any]:
        return {"choices": [{"delta": {"content": text}, "finish_reason": None}]}

    @staticmethod
    def reasoning(text: str) -> dict[str, Any]:
        return {"choices": [{"delta": {"reasoning_content": text}, "finish_reason": None}]}

    @staticmethod
    def tool_call(
        name: str,
        arguments: dict[str, Any] | str | None = None,
        *,
        index: int = 0,
        call_id: str | None = None,
    ) -> dict[str, Any]:
        if isinstance(arguments, dict) or arguments is None:
            arguments = json.dumps(arguments or {})
        return {
            "choices": [{
                "delta": {
                    "tool_calls": [{
                        "index": index,
                        "id": call_id or f"call_{name}_{index}",
                        "function": {"name": name, "arguments": arguments},
                    }],
                },
                "finish_reason": None,
            }],
        }

    @staticmethod
    def finish(reason: str = "stop") -> dict[str, Any]:
        return {"choices": [{"delta": {}, "finish_reason": reason}]}

    @staticmethod
    def usage(prompt_tokens: int = 10, completion_tokens: int = 5) -> dict[str, Any]:
        return {
            "choices": [],
            "usage": {
                "prompt_tokens": prompt_tokens,
                "completion_tokens": completion_tokens,
                "total_tokens": prompt_tokens + completion_tokens,
            },
        }


class FakeStream:
    """Async iterator over chunks; optionally raises or hangs once exhausted."""

    def __init__(
        self,
        chunks: list[dict[str, Any]],
        *,
        error: BaseException | None = None,
        hang: bool = False,
    ) -> None:
        self._chunks = list(chunks)
        self._error = error
        self._hang = hang
        self.closed = False

    def __aiter__(self) -> "FakeStream":
        return self

    async def __anext__(self) -> dict[str, Any]:
        if self._chunks:
            return self._chunks.pop(0)
        if self._error is not None:
            raise self._error
        if self._hang:
            await asyncio.Event().wait()
        raise StopAsyncIteration

    async def aclose(self) -> None:
        self.closed = True


class ScriptedBackend:
    """Stand-in for ``litellm.acompletion``.

    Each turn is a chunk list, a ``FakeStream``, or an exception to raise from
    the call itself. With ``repeat_last`` the final turn is replayed forever.
    """

    def __init__(self, *turns: Any, repeat_last: bool = False) -> None:
        self.turns = list(turns)
        self.repeat_last = repeat_last
        self.calls: list[dict[str, Any]] = []
        self.streams: list[FakeStream] = []

    async def __call__(self, **kwargs: Any) -> FakeStream:
        self.calls.append({**kwargs, "messages": list(kwargs.get("messages") or [])})
        idx = len(self.calls) - 1
        if idx >= len(self.turns):
            if not self.repeat_last or not self.turns:
                raise AssertionError(f"Unexpected backend call #{idx + 1}")
            idx = len(self.turns) - 1
        turn = self.turns[idx]
        if isinstance(turn, BaseException):
            raise turn
        stream = turn if isinstance(turn, FakeStream) else FakeStream(turn)
        self.streams.append(stream)
        return stream


@pytest.fixture
def chunks() -> type[Chunks]:
    return Chunks


@pytest.fixture
def scripted_backend() -> type[ScriptedBackend]:
    return ScriptedBackend


@pytest.fixture
def fake_stream() -> type[FakeStream]:
    return FakeStream


@pytest.fixture
def span_exporter() -> InMemorySpanExporter:
    return InMemorySpanExporter()


@pytest.fixture
def tracer(span_exporter: InMemorySpanExporter):
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    return provider.get_tracer("agent_step.tests")
