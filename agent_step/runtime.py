"""Tool-loop agent runtime.

Runs a bounded model ⇄ tool loop and exposes it as an async stream of message
parts:

    agent = ToolLoopAgent(session, instructions="Be brief.", tools=registry, max_steps=30)
    async with agent.stream("Summarize the ticket") as stream:
        async for part in stream:
            ...
    stream.text, stream.usage, stream.message

The loop:
    1. Stream one model call (text and reasoning deltas are emitted as they arrive)
    2. If the model requested tools → emit tool-call parts, run the tools,
       emit tool-result parts, append results to the context, repeat
    3. Stop when a step has no tool calls (DONE) or after ``max_steps`` model
       calls (ABORTED, which is not an error: the last state is final)

A producer task runs the loop and pushes decoded parts onto a bounded queue;
the consumer awaits each part. Closing the stream early cancels the producer
and closes the in-flight backend stream.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Any

from agent_step.config import (
    DEFAULT_MAX_STEPS,
    DEFAULT_STREAM_BUFFER_SIZE,
    DEFAULT_TOOL_RESULT_MAX_LENGTH,
)
from agent_step.errors import AgentStepError, wrap_error
from agent_step.models import Usage
from agent_step.parts import MessagePart, StreamedMessage, decode_part
from agent_step.session import ModelSession
from agent_step.structured_output import OutputConstraint
from agent_step.tool_utils import ToolRegistry, execute_tool_call, parse_tool_arguments

logger = logging.getLogger(__name__)


class RuntimeState(str, enum.Enum):
    INIT = "init"
    STREAMING = "streaming"
    MODEL_CALL = "model_call"
    TOOL_CALL = "tool_call"
    DONE = "done"
    ABORTED = "aborted"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Chunk decoding
# ---------------------------------------------------------------------------


def _get(obj: Any, key: str, default: Any = None) -> Any:
    """Attribute-or-key access; litellm objects and plain dicts both show up here."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def _int(value: Any) -> int:
    return value if isinstance(value, int) else 0


def _extract_usage(usage: Any) -> Usage:
    """Token usage from a chunk's usage block. Handles OpenAI and Anthropic conventions."""
    if usage is None:
        return Usage()
    inp = _int(_get(usage, "input_tokens")) or _int(_get(usage, "prompt_tokens"))
    out = _int(_get(usage, "output_tokens")) or _int(_get(usage, "completion_tokens"))
    total = _int(_get(usage, "total_tokens")) or inp + out
    reasoning = _int(_get(_get(usage, "completion_tokens_details"), "reasoning_tokens"))
    cached = _int(_get(_get(usage, "prompt_tokens_details"), "cached_tokens")) or _int(
        _get(usage, "cached_tokens")
    )
    return Usage(
        input_tokens=inp,
        output_tokens=out,
        total_tokens=total,
        reasoning_tokens=reasoning,
        cached_tokens=cached,
    )


def _chunk_delta(chunk: Any) -> Any:
    choices = _get(chunk, "choices") or []
    if not choices:
        return None
    return _get(choices[0], "delta")


def _merge_tool_call_delta(acc: dict[int, dict[str, Any]], tc_delta: Any) -> None:
    index = _get(tc_delta, "index")
    if not isinstance(index, int):
        index = len(acc) if _get(tc_delta, "id") else max(acc, default=0)
    slot = acc.setdefault(
        index,
        {"id": "", "type": "function", "function": {"name": "", "arguments": ""}},
    )
    tc_id = _get(tc_delta, "id")
    if tc_id:
        slot["id"] = tc_id
    fn = _get(tc_delta, "function")
    name = _get(fn, "name")
    if name:
        slot["function"]["name"] = name
    arguments = _get(fn, "arguments")
    if isinstance(arguments, str):
        slot["function"]["arguments"] += arguments
    elif isinstance(arguments, dict):
        slot["function"]["arguments"] = arguments


@dataclass
class _StepResult:
    content: str = ""
    tool_calls: list[dict[str, Any]] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    finish_reason: str = ""


@dataclass(frozen=True)
class _Failure:
    error: AgentStepError


_END = object()


async def _close_backend_stream(response: Any) -> None:
    aclose = getattr(response, "aclose", None)
    if aclose is None or not callable(aclose):
        return
    try:
        await aclose()
    except Exception as exc:
        logger.debug("Ignoring error while closing backend stream: %s", exc)


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------


class ToolLoopAgent:
    """A model session plus tools, instructions and a step bound."""

    def __init__(
        self,
        session: ModelSession,
        *,
        instructions: str | None = None,
        tools: ToolRegistry | None = None,
        max_steps: int = DEFAULT_MAX_STEPS,
        output: OutputConstraint | None = None,
        provider_options: dict[str, Any] | None = None,
        tool_result_max_length: int = DEFAULT_TOOL_RESULT_MAX_LENGTH,
        send_reasoning: bool = True,
        buffer_size: int = DEFAULT_STREAM_BUFFER_SIZE,
    ) -> None:
        if max_steps < 1:
            raise ValueError(f"max_steps must be >= 1, got {max_steps}")
        if buffer_size < 1:
            raise ValueError(f"buffer_size must be >= 1, got {buffer_size}")
        self.session = session
        self.instructions = instructions or None
        self.tools = tools if tools is not None else ToolRegistry()
        self.max_steps = max_steps
        self.output = output
        self.provider_options = dict(provider_options or {})
        self.tool_result_max_length = tool_result_max_length
        self.send_reasoning = send_reasoning
        self.buffer_size = buffer_size

    def stream(self, prompt: str) -> "AgentStream":
        """Start a run. Nothing is sent to the backend until the stream is iterated."""
        messages: list[dict[str, Any]] = []
        if self.instructions:
            messages.append({"role": "system", "content": self.instructions})
        messages.append({"role": "user", "content": prompt})
        return AgentStream(self, messages)


class AgentStream:
    """Live, append-only stream of message parts plus final aggregates.

    ``text``, ``usage``, ``steps`` and ``output`` are only valid after the
    stream has been fully drained.
    """

    def __init__(self, agent: ToolLoopAgent, messages: list[dict[str, Any]]) -> None:
        self._agent = agent
        self._messages = messages
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=agent.buffer_size)
        self._producer: asyncio.Task[None] | None = None
        self._inflight: Any = None
        self._drained = False
        self._closed = False
        self._final_text = ""
        self._usage = Usage()
        self._steps = 0
        self._output: dict[str, Any] | None = None
        self.state = RuntimeState.INIT
        self.message = StreamedMessage()

    # -- consumer side ------------------------------------------------------

    def __aiter__(self) -> "AgentStream":
        return self

    async def __anext__(self) -> MessagePart:
        if self._drained or self._closed:
            raise StopAsyncIteration
        if self._producer is None:
            self._producer = asyncio.create_task(self._run())
        item = await self._queue.get()
        if item is _END:
            self._drained = True
            await self._join_producer()
            raise StopAsyncIteration
        if isinstance(item, _Failure):
            self._closed = True
            await self._join_producer()
            raise item.error
        self.message.append(item)
        return item

    async def __aenter__(self) -> "AgentStream":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Stop the loop and release the backend connection. Idempotent."""
        self._closed = True
        producer = self._producer
        if producer is not None and not producer.done():
            producer.cancel()
            try:
                await producer
            except asyncio.CancelledError:
                pass
        if self._inflight is not None:
            await _close_backend_stream(self._inflight)
            self._inflight = None

    async def _join_producer(self) -> None:
        if self._producer is not None:
            await self._producer

    # -- aggregates ---------------------------------------------------------

    def _require_drained(self, what: str) -> None:
        if not self._drained:
            raise RuntimeError(f"Stream not yet consumed. Iterate fully before reading {what}.")

    @property
    def text(self) -> str:
        """Text of the final step."""
        self._require_drained("text")
        return self._final_text

    @property
    def usage(self) -> Usage:
        """Usage summed over every model call."""
        self._require_drained("usage")
        return self._usage

    @property
    def steps(self) -> int:
        self._require_drained("steps")
        return self._steps

    @property
    def output(self) -> dict[str, Any]:
        """Validated structured payload. Only valid when an output constraint was configured."""
        if self._agent.output is None:
            raise RuntimeError("No output constraint configured; structured output is unavailable.")
        self._require_drained("output")
        if self._output is None:
            self._output = self._agent.output.parse(self._final_text)
        return self._output

    # -- producer side ------------------------------------------------------

    async def _emit(self, raw: dict[str, Any]) -> None:
        await self._queue.put(decode_part(raw))

    async def _run(self) -> None:
        agent = self._agent
        self.state = RuntimeState.STREAMING
        try:
            for step in range(agent.max_steps):
                self.state = RuntimeState.MODEL_CALL
                result = await self._model_step(step)
                self._steps = step + 1
                self._usage = self._usage + result.usage
                self._final_text = result.content
                logger.debug(
                    "Step %d: %d chars, %d tool calls, finish=%s",
                    step, len(result.content), len(result.tool_calls), result.finish_reason,
                )
                if not result.tool_calls:
                    self.state = RuntimeState.DONE
                    break
                self.state = RuntimeState.TOOL_CALL
                await self._run_tools(step, result)
            else:
                self.state = RuntimeState.ABORTED
                logger.info("Tool loop stopped at step bound (%d steps)", agent.max_steps)
            await self._queue.put(_END)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.state = RuntimeState.FAILED
            logger.debug("Tool loop failed at step %d: %s", self._steps, exc)
            await self._queue.put(_Failure(wrap_error(exc)))

    async def _model_step(self, step: int) -> _StepResult:
        agent = self._agent
        call_kwargs: dict[str, Any] = {
            "messages": self._messages,
            "stream": True,
            "stream_options": {"include_usage": True},
            **agent.provider_options,
        }
        if agent.tools:
            call_kwargs["tools"] = agent.tools.openai_tools()
        if agent.output is not None:
            call_kwargs["response_format"] = agent.output.response_format()

        response = await agent.session.acompletion(**call_kwargs)
        self._inflight = response
        result = _StepResult()
        text_parts: list[str] = []
        tool_acc: dict[int, dict[str, Any]] = {}
        try:
            async for chunk in response:
                usage = _get(chunk, "usage")
                if usage is not None:
                    result.usage = _extract_usage(usage)
                choices = _get(chunk, "choices") or []
                if choices and _get(choices[0], "finish_reason"):
                    result.finish_reason = _get(choices[0], "finish_reason")
                delta = _chunk_delta(chunk)
                if delta is None:
                    continue
                reasoning = _get(delta, "reasoning_content")
                if isinstance(reasoning, str) and reasoning and agent.send_reasoning:
                    await self._emit({"type": "reasoning", "text": reasoning, "step": step})
                content = _get(delta, "content")
                if isinstance(content, str) and content:
                    text_parts.append(content)
                    await self._emit({"type": "text", "text": content, "step": step})
                for tc_delta in _get(delta, "tool_calls") or []:
                    _merge_tool_call_delta(tool_acc, tc_delta)
        finally:
            self._inflight = None
            await _close_backend_stream(response)

        result.content = "".join(text_parts)
        for index in sorted(tool_acc):
            tc = tool_acc[index]
            if not tc["id"]:
                tc["id"] = f"call_{step}_{index}"
            result.tool_calls.append(tc)
        return result

    async def _run_tools(self, step: int, result: _StepResult) -> None:
        agent = self._agent
        self._messages.append({
            "role": "assistant",
            "content": result.content or None,
            "tool_calls": result.tool_calls,
        })
        for tc in result.tool_calls:
            fn_info = tc.get("function") or {}
            try:
                arguments = parse_tool_arguments(fn_info.get("arguments"))
            except ValueError:
                arguments = {}
            await self._emit({
                "type": "tool-call",
                "tool_call_id": tc["id"],
                "tool_name": fn_info.get("name") or "",
                "input": arguments,
                "step": step,
            })
            record = await execute_tool_call(tc, agent.tools, agent.tool_result_max_length)
            await self._emit({
                "type": "tool-result",
                "tool_call_id": record.tool_call_id,
                "tool_name": record.tool,
                "output": record.result,
                "error": record.error,
                "step": step,
            })
            self._messages.append({
                "role": "tool",
                "tool_call_id": record.tool_call_id,
                "content": record.content(),
            })
