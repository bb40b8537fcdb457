"""Pydantic data model for agent steps: configuration in, outcome and decision log out."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from agent_step.parts import StreamedMessage


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ToolMetadata(BaseModel):
    """A tool an agent may call, described for the model."""

    name: str = Field(min_length=1)
    description: str = ""
    parameters: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
    )

    def to_openai_tool(self) -> dict[str, Any]:
        """OpenAI function-calling schema, ready for litellm ``tools=``."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class AgentConfig(BaseModel):
    """A configured agent: model backend reference, instructions and tool allow-list."""

    id: str = Field(min_length=1)
    name: str = ""
    aiconfig: str | None = None
    instructions: str = ""
    tools: list[str] = Field(default_factory=list)
    enabled_tools: list[str] = Field(default_factory=list)
    live: bool = False


class ModelConfig(BaseModel):
    """Backend identity and credentials for one agent, resolved per invocation."""

    model_id: str
    model_name: str = ""
    base_url: str
    api_key: str = Field(default="", repr=False)
    reasoning_effort: str | None = None


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class Usage(BaseModel):
    """Token counts summed over every model call in the loop."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    reasoning_tokens: int = 0
    cached_tokens: int = 0

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
            reasoning_tokens=self.reasoning_tokens + other.reasoning_tokens,
            cached_tokens=self.cached_tokens + other.cached_tokens,
        )


class UsedTool(BaseModel):
    name: str
    count: int = Field(ge=1)


class ModelIdentity(BaseModel):
    id: str | None = None
    name: str | None = None
    base_url: str | None = None


class DecisionLog(BaseModel):
    """Which tools were enabled, which were actually called, and on which model."""

    enabled_tools: list[ToolMetadata] | None = None
    used_tools: list[UsedTool] | None = None
    model: ModelIdentity | None = None


class StepInputs(BaseModel):
    """Inputs supplied by the workflow engine for one agent step."""

    model_config = ConfigDict(populate_by_name=True)

    agent_id: str | None = Field(default=None, alias="agentId")
    prompt: str | None = None
    use_structured_output: bool = Field(default=False, alias="useStructuredOutput")
    output_schema: dict[str, Any] | None = Field(default=None, alias="outputSchema")


class StepOutcome(BaseModel):
    """Uniform result handed back to the workflow engine. Always returned, never raised."""

    success: bool
    response: str
    usage: Usage | None = None
    message: StreamedMessage | None = None
    output: dict[str, Any] | None = None
    agent_trace: DecisionLog = Field(default_factory=DecisionLog)
