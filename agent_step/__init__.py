"""Agent-step execution engine wrapping litellm.

Runs one workflow step that hands a prompt to a tool-calling agent, drains its
streamed output through a bounded model/tool loop, optionally validates a
structured result, and returns a uniform outcome plus a decision log.

Usage:
    from agent_step import StepContext, StepInputs, arun_agent_step, load_stores

    agents, models = load_stores("agents.yaml")
    outcome = await arun_agent_step(
        StepInputs(agent_id="agent_writer", prompt="Draft a reply"),
        context=StepContext(workspace_id="app_123"),
        agent_store=agents,
        model_store=models,
    )
    print(outcome.success, outcome.response)
    print(outcome.agent_trace.used_tools)

    # Structured output
    outcome = await arun_agent_step(
        {"agentId": "agent_writer", "prompt": "Classify", "useStructuredOutput": True,
         "outputSchema": {"label": "string", "confidence": "number"}},
        agent_store=agents,
        model_store=models,
    )
    outcome.output  # {"label": ..., "confidence": ...}

    # Runtime on its own
    from agent_step import ToolLoopAgent, create_model_session

    agent = ToolLoopAgent(session, instructions="Be brief.", tools=registry)
    async with agent.stream("Hello") as stream:
        async for part in stream:
            ...
"""

from agent_step.config import StepConfig
from agent_step.context import ProcessRole, StepContext, is_dev_workspace_id, is_prod_workspace_id
from agent_step.decision_log import build_decision_log, count_tool_calls
from agent_step.errors import (
    AgentNotFoundError,
    AgentPausedError,
    AgentStepError,
    BackendAuthError,
    BackendContentFilterError,
    BackendExecutionError,
    BackendModelNotFoundError,
    BackendRateLimitError,
    BackendTransientError,
    ConfigurationResolutionError,
    InputValidationError,
    ModelNotConfiguredError,
    StructuredOutputError,
    classify_error,
    wrap_error,
)
from agent_step.models import (
    AgentConfig,
    DecisionLog,
    ModelConfig,
    ModelIdentity,
    StepInputs,
    StepOutcome,
    ToolMetadata,
    Usage,
    UsedTool,
)
from agent_step.parts import (
    MessagePart,
    OtherPart,
    ReasoningPart,
    StreamedMessage,
    TextPart,
    ToolCallPart,
    ToolResultPart,
    decode_part,
)
from agent_step.resolver import AgentConfigResolver, PromptAndTools, filter_enabled
from agent_step.runtime import AgentStream, RuntimeState, ToolLoopAgent
from agent_step.session import ModelSession, create_model_session, new_session_id
from agent_step.step import arun_agent_step, run_agent_step
from agent_step.stores import (
    AgentStore,
    InMemoryAgentStore,
    InMemoryModelConfigStore,
    ModelConfigStore,
    load_stores,
)
from agent_step.structured_output import (
    OutputConstraint,
    build_output_constraint,
    normalize_schema_for_structured_output,
)
from agent_step.tool_utils import RegisteredTool, ToolRegistry, callable_to_tool_metadata, prepare_tools
from agent_step.tracing import StepSpan, open_step_span

__all__ = [
    "AgentConfig",
    "AgentConfigResolver",
    "AgentNotFoundError",
    "AgentPausedError",
    "AgentStepError",
    "AgentStore",
    "AgentStream",
    "BackendAuthError",
    "BackendContentFilterError",
    "BackendExecutionError",
    "BackendModelNotFoundError",
    "BackendRateLimitError",
    "BackendTransientError",
    "ConfigurationResolutionError",
    "DecisionLog",
    "InMemoryAgentStore",
    "InMemoryModelConfigStore",
    "InputValidationError",
    "MessagePart",
    "ModelConfig",
    "ModelConfigStore",
    "ModelIdentity",
    "ModelNotConfiguredError",
    "ModelSession",
    "OtherPart",
    "OutputConstraint",
    "ProcessRole",
    "PromptAndTools",
    "ReasoningPart",
    "RegisteredTool",
    "RuntimeState",
    "StepConfig",
    "StepContext",
    "StepInputs",
    "StepOutcome",
    "StepSpan",
    "StreamedMessage",
    "StructuredOutputError",
    "TextPart",
    "ToolCallPart",
    "ToolLoopAgent",
    "ToolMetadata",
    "ToolRegistry",
    "ToolResultPart",
    "Usage",
    "UsedTool",
    "arun_agent_step",
    "build_decision_log",
    "build_output_constraint",
    "callable_to_tool_metadata",
    "classify_error",
    "count_tool_calls",
    "create_model_session",
    "decode_part",
    "filter_enabled",
    "is_dev_workspace_id",
    "is_prod_workspace_id",
    "load_stores",
    "new_session_id",
    "normalize_schema_for_structured_output",
    "open_step_span",
    "prepare_tools",
    "run_agent_step",
    "wrap_error",
]
