"""Message parts produced by the tool loop.

Parts are a closed tagged union validated once at the stream boundary:

- ``text``: assistant text delta
- ``reasoning``: provider reasoning delta
- ``tool-call``: the model requested a tool
- ``tool-result``: output (or error) of that tool
- ``other``: anything that did not validate as one of the above

``decode_part`` never raises; malformed payloads become ``OtherPart``.
"""

from __future__ import annotations

import uuid
from typing import Annotated, Any, Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError


class TextPart(BaseModel):
    model_config = ConfigDict(extra="forbid")
    type: Literal["text"] = "text"
    text: str
    step: int = Field(default=0, ge=0)


class ReasoningPart(BaseModel):
    model_config = ConfigDict(extra="forbid")
    type: Literal["reasoning"] = "reasoning"
    text: str
    step: int = Field(default=0, ge=0)


class ToolCallPart(BaseModel):
    model_config = ConfigDict(extra="forbid")
    type: Literal["tool-call"] = "tool-call"
    tool_call_id: str
    tool_name: str = Field(min_length=1)
    input: dict[str, Any] = Field(default_factory=dict)
    step: int = Field(default=0, ge=0)


class ToolResultPart(BaseModel):
    model_config = ConfigDict(extra="forbid")
    type: Literal["tool-result"] = "tool-result"
    tool_call_id: str
    tool_name: str
    output: Any = None
    error: str | None = None
    step: int = Field(default=0, ge=0)


class OtherPart(BaseModel):
    """Unrecognized or malformed payload, kept for inspection only."""

    model_config = ConfigDict(extra="forbid")
    type: Literal["other"] = "other"
    raw_type: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)


MessagePart = Annotated[
    TextPart | ReasoningPart | ToolCallPart | ToolResultPart | OtherPart,
    Field(discriminator="type"),
]

_PART_ADAPTER: TypeAdapter[MessagePart] = TypeAdapter(MessagePart)


def decode_part(raw: Mapping[str, Any] | BaseModel) -> MessagePart:
    """Decode one raw part payload into the tagged union."""
    if isinstance(raw, (TextPart, ReasoningPart, ToolCallPart, ToolResultPart, OtherPart)):
        return raw
    if isinstance(raw, BaseModel):
        raw = raw.model_dump()
    if not isinstance(raw, Mapping):
        return OtherPart(data={"value": repr(raw)})
    raw_type = raw.get("type")
    if raw_type == "other":
        try:
            return OtherPart.model_validate(raw)
        except ValidationError:
            pass
    elif raw_type in {"text", "reasoning", "tool-call", "tool-result"}:
        try:
            return _PART_ADAPTER.validate_python(dict(raw))
        except ValidationError:
            pass
    return OtherPart(
        raw_type=raw_type if isinstance(raw_type, str) else None,
        data={str(k): v for k, v in raw.items()},
    )


class StreamedMessage(BaseModel):
    """The assistant message as it evolves over the loop. Append-only."""

    id: str = Field(default_factory=lambda: f"msg_{uuid.uuid4().hex}")
    role: Literal["assistant"] = "assistant"
    parts: list[MessagePart] = Field(default_factory=list)

    def append(self, part: MessagePart) -> None:
        """Append a part, merging text/reasoning deltas into the trailing part of the same step."""
        if self.parts and isinstance(part, (TextPart, ReasoningPart)):
            last = self.parts[-1]
            if type(last) is type(part) and last.step == part.step:  # type: ignore[union-attr]
                self.parts[-1] = last.model_copy(update={"text": last.text + part.text})  # type: ignore[union-attr]
                return
        self.parts.append(part)

    def text_for_step(self, step: int) -> str:
        return "".join(
            p.text for p in self.parts if isinstance(p, TextPart) and p.step == step
        )

    def tool_calls(self) -> list[ToolCallPart]:
        return [p for p in self.parts if isinstance(p, ToolCallPart)]


__all__ = [
    "MessagePart",
    "OtherPart",
    "ReasoningPart",
    "StreamedMessage",
    "TextPart",
    "ToolCallPart",
    "ToolResultPart",
    "decode_part",
]
