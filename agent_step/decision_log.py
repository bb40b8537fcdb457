"""Decision log: tool-usage histogram and model identity for one step."""

from __future__ import annotations

from typing import Sequence

from agent_step.models import DecisionLog, ModelIdentity, ToolMetadata, UsedTool
from agent_step.parts import StreamedMessage, ToolCallPart


def count_tool_calls(message: StreamedMessage | None) -> list[UsedTool]:
    """Tool name → call count in first-seen order. Anything that isn't a named tool call is skipped."""
    counts: dict[str, int] = {}
    for part in (message.parts if message is not None else []):
        if not isinstance(part, ToolCallPart):
            continue
        name = part.tool_name.strip()
        if not name:
            continue
        counts[name] = counts.get(name, 0) + 1
    return [UsedTool(name=name, count=count) for name, count in counts.items()]


def build_decision_log(
    *,
    enabled_tools: Sequence[ToolMetadata] | None = None,
    message: StreamedMessage | None = None,
    model_id: str | None = None,
    model_name: str | None = None,
    base_url: str | None = None,
) -> DecisionLog:
    """Best-effort decision log. Works with a partial or missing message."""
    used_tools = count_tool_calls(message)
    model = None
    if model_id or model_name or base_url:
        model = ModelIdentity(id=model_id, name=model_name, base_url=base_url)
    return DecisionLog(
        enabled_tools=list(enabled_tools) if enabled_tools is not None else None,
        used_tools=used_tools or None,
        model=model,
    )
