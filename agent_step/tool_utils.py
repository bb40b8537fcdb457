"""In-process tool registry and execution for the agent loop.

Tools are plain Python callables (sync or async). Their model-facing metadata
is either given explicitly or generated from the signature and docstring:

    async def search(query: str, limit: int = 10) -> str:
        '''Search the knowledge base.'''
        ...

    registry = prepare_tools([RegisteredTool(callable_to_tool_metadata(search), search)])
    registry.openai_tools()   # ready for litellm tools=
"""

from __future__ import annotations

import asyncio
import inspect
import json as _json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, get_type_hints

from pydantic import create_model
from pydantic.errors import PydanticUserError

from agent_step.models import ToolMetadata

logger = logging.getLogger(__name__)

_SKIPPED_KINDS = (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD)
_NAMED_KINDS = (inspect.Parameter.POSITIONAL_OR_KEYWORD, inspect.Parameter.KEYWORD_ONLY)


def _drop_titles(schema: Any) -> Any:
    if isinstance(schema, dict):
        return {
            k: _drop_titles(v) for k, v in schema.items()
            if not (k == "title" and isinstance(v, str))
        }
    if isinstance(schema, list):
        return [_drop_titles(v) for v in schema]
    return schema


def parameters_schema(fn: Callable[..., Any]) -> dict[str, Any]:
    """JSON schema for a callable's keyword arguments, built through pydantic.

    Every parameter must be annotated; raises ValueError otherwise, or when
    pydantic cannot express an annotation as JSON schema.
    """
    try:
        hints = get_type_hints(fn)
    except (NameError, TypeError):
        hints = {}

    fields: dict[str, Any] = {}
    for name, param in inspect.signature(fn).parameters.items():
        if name in ("self", "cls") or param.kind in _SKIPPED_KINDS:
            continue
        if name not in hints:
            raise ValueError(
                f"Tool {fn.__name__!r}: parameter {name!r} has no type annotation"
            )
        default = ... if param.default is inspect.Parameter.empty else param.default
        fields[name] = (hints[name], default)

    try:
        schema = create_model(f"{fn.__name__}_arguments", **fields).model_json_schema()
    except (PydanticUserError, TypeError, ValueError) as exc:
        raise ValueError(f"Tool {fn.__name__!r}: cannot build a schema: {exc}") from exc
    schema = _drop_titles(schema)
    schema.setdefault("properties", {})
    return schema


def callable_to_tool_metadata(
    fn: Callable[..., Any],
    *,
    name: str | None = None,
    description: str | None = None,
) -> ToolMetadata:
    """ToolMetadata for a callable. The description defaults to the docstring's first line."""
    if description is None:
        doc = inspect.getdoc(fn) or ""
        description = doc.split("\n", 1)[0].strip()
    return ToolMetadata(
        name=name or fn.__name__,
        description=description,
        parameters=parameters_schema(fn),
    )


@dataclass(frozen=True)
class RegisteredTool:
    """A tool's metadata bound to the callable that implements it."""

    metadata: ToolMetadata
    fn: Callable[..., Any]

    @property
    def name(self) -> str:
        return self.metadata.name


class ToolRegistry(dict[str, RegisteredTool]):
    """Tool name → invocable capability, in registration order."""

    def openai_tools(self) -> list[dict[str, Any]]:
        return [tool.metadata.to_openai_tool() for tool in self.values()]

    def metadata(self) -> list[ToolMetadata]:
        return [tool.metadata for tool in self.values()]


def prepare_tools(tools: Iterable[RegisteredTool]) -> ToolRegistry:
    """Build a registry from registered tools.

    Raises:
        ValueError: If two tools share a name.
    """
    registry = ToolRegistry()
    for tool in tools:
        if tool.name in registry:
            raise ValueError(
                f"Duplicate tool name {tool.name!r}: "
                f"{registry[tool.name].fn!r} and {tool.fn!r}."
            )
        registry[tool.name] = tool
    return registry


def _truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length] + f"\n... [truncated, {len(text) - max_length} chars omitted]"


def _check_arguments(
    fn: Callable[..., Any],
    arguments: dict[str, Any],
) -> tuple[list[str], list[str], list[str]]:
    """(unknown, missing, accepted) argument names for a call to ``fn``."""
    try:
        params = inspect.signature(fn).parameters
    except (TypeError, ValueError):
        return [], [], sorted(arguments)

    named = {
        n: p for n, p in params.items()
        if p.kind in _NAMED_KINDS and n not in ("self", "cls")
    }
    open_kwargs = any(p.kind is inspect.Parameter.VAR_KEYWORD for p in params.values())
    unknown = [] if open_kwargs else sorted(set(arguments) - set(named))
    missing = sorted(n for n, p in named.items() if p.default is p.empty and n not in arguments)
    return unknown, missing, sorted(named)


@dataclass
class ToolExecution:
    """Record of a single tool call during the agent loop."""

    tool_call_id: str
    tool: str
    arguments: dict[str, Any] = field(default_factory=dict)
    result: Any = None
    error: str | None = None
    latency_s: float = 0.0

    def content(self) -> str:
        """Tool message content fed back to the model."""
        if self.error is not None:
            return _json.dumps({"error": self.error})
        if isinstance(self.result, str):
            return self.result
        return _json.dumps(self.result, default=str)


def parse_tool_arguments(raw: Any) -> dict[str, Any]:
    """Decode the model's argument payload. Raises ValueError on invalid JSON."""
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return dict(raw)
    try:
        parsed = _json.loads(raw)
    except (TypeError, _json.JSONDecodeError) as exc:
        raise ValueError(f"Invalid JSON arguments: {exc}") from exc
    if not isinstance(parsed, dict):
        return {}
    return parsed


async def execute_tool_call(
    tool_call: dict[str, Any],
    registry: ToolRegistry,
    max_result_length: int,
) -> ToolExecution:
    """Execute one OpenAI-format tool call against the registry.

    Tool failures never raise: unknown tools, bad arguments and exceptions from
    the tool itself are recorded on the returned ToolExecution so the model can
    see them and recover.
    """
    fn_info = tool_call.get("function") or {}
    tool_name = fn_info.get("name") or ""
    record = ToolExecution(tool_call_id=tool_call.get("id") or "", tool=tool_name)

    try:
        record.arguments = parse_tool_arguments(fn_info.get("arguments"))
    except ValueError as exc:
        logger.error(
            "Failed to parse tool call arguments for %s: %s",
            tool_name,
            str(fn_info.get("arguments"))[:200],
        )
        record.error = str(exc)
        return record

    tool = registry.get(tool_name)
    if tool is None:
        record.error = f"Unknown tool: {tool_name}"
        logger.warning("Model requested unknown tool %r", tool_name)
        return record

    unknown, missing, accepted = _check_arguments(tool.fn, record.arguments)
    if unknown or missing:
        parts: list[str] = []
        if unknown:
            parts.append("unsupported args: " + ", ".join(unknown))
        if missing:
            parts.append("missing required args: " + ", ".join(missing))
        parts.append("allowed args: " + ", ".join(accepted))
        record.error = "Validation error: " + "; ".join(parts)
        return record

    t0 = time.monotonic()
    try:
        if asyncio.iscoroutinefunction(tool.fn):
            raw_result = await tool.fn(**record.arguments)
        else:
            raw_result = tool.fn(**record.arguments)
        if isinstance(raw_result, str):
            record.result = _truncate(raw_result, max_result_length)
        else:
            encoded = _json.dumps(raw_result, default=str)
            record.result = raw_result if len(encoded) <= max_result_length else _truncate(encoded, max_result_length)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        record.error = f"{type(e).__name__}: {e}"
        logger.warning("Tool %s failed: %s", tool_name, record.error)
    record.latency_s = round(time.monotonic() - t0, 3)
    return record
