"""Agent step entry point.

    from agent_step import StepContext, StepInputs, arun_agent_step

    outcome = await arun_agent_step(
        StepInputs(agent_id="agent_writer", prompt="Draft a reply"),
        context=StepContext(workspace_id="app_123"),
        agent_store=agents,
        model_store=models,
    )
    outcome.success, outcome.response, outcome.agent_trace

The entry point never raises. Every failure (bad inputs, paused agent,
missing configuration, backend errors, invalid structured output) comes back
as a ``StepOutcome`` with ``success=False`` and a readable ``response``.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
from dataclasses import dataclass
from typing import Any, Mapping

from opentelemetry import trace
from pydantic import ValidationError

from agent_step.config import StepConfig
from agent_step.context import StepContext
from agent_step.decision_log import build_decision_log
from agent_step.errors import (
    AgentPausedError,
    InputValidationError,
    error_type_name,
    get_error_message,
)
from agent_step.models import AgentConfig, DecisionLog, StepInputs, StepOutcome, ToolMetadata
from agent_step.parts import StreamedMessage
from agent_step.resolver import AgentConfigResolver, filter_enabled
from agent_step.runtime import ToolLoopAgent
from agent_step.session import create_model_session, new_session_id, provider_options
from agent_step.stores import AgentStore, ModelConfigStore
from agent_step.structured_output import build_output_constraint
from agent_step.tracing import StepSpan, open_step_span

logger = logging.getLogger(__name__)

NO_AGENT_MESSAGE = "Agent step failed: No agent selected"
NO_PROMPT_MESSAGE = "Agent step failed: No prompt provided"
PAUSED_MESSAGE = "Agent is paused. Set it live to use it in published automations."
PAUSED_SPAN_OUTPUT = "Agent is paused"
PAUSED_TAG = "agent_paused"


@dataclass
class _Trail:
    """What was known so far, for a best-effort decision log on failure."""

    enabled_tools: list[ToolMetadata] | None = None
    model_id: str | None = None
    model_name: str | None = None
    base_url: str | None = None
    message: StreamedMessage | None = None

    def decision_log(self, message: StreamedMessage | None = None) -> DecisionLog:
        return build_decision_log(
            enabled_tools=self.enabled_tools,
            message=message if message is not None else self.message,
            model_id=self.model_id,
            model_name=self.model_name,
            base_url=self.base_url,
        )


def _coerce_inputs(inputs: StepInputs | Mapping[str, Any]) -> StepInputs:
    if isinstance(inputs, StepInputs):
        return inputs
    try:
        return StepInputs.model_validate(inputs)
    except ValidationError as exc:
        raise InputValidationError(f"Agent step failed: invalid inputs ({exc.error_count()} errors)") from exc


def validate_inputs(inputs: StepInputs) -> None:
    """Raise InputValidationError when the agent id or prompt is missing."""
    if not inputs.agent_id:
        raise InputValidationError(NO_AGENT_MESSAGE)
    if not inputs.prompt or not inputs.prompt.strip():
        raise InputValidationError(NO_PROMPT_MESSAGE)


def check_live(agent: AgentConfig, context: StepContext) -> None:
    """Paused agents may only run outside published workspaces."""
    if context.is_production and agent.live is not True:
        raise AgentPausedError(PAUSED_MESSAGE)


async def arun_agent_step(
    inputs: StepInputs | Mapping[str, Any],
    *,
    agent_store: AgentStore,
    model_store: ModelConfigStore,
    context: StepContext | None = None,
    config: StepConfig | None = None,
    tracer: trace.Tracer | None = None,
) -> StepOutcome:
    """Run one agent step and return its outcome. Never raises."""
    try:
        step_inputs = _coerce_inputs(inputs)
        validate_inputs(step_inputs)
    except InputValidationError as err:
        return StepOutcome(success=False, response=get_error_message(err))

    ctx = context or StepContext()
    cfg = config or StepConfig.from_env()
    session_id = new_session_id()

    with open_step_span(cfg.span_name, session_id, tracer=tracer) as span:
        return await _run_in_span(
            step_inputs,
            span=span,
            session_id=session_id,
            context=ctx,
            config=cfg,
            resolver=AgentConfigResolver(agent_store, model_store),
        )


async def _run_in_span(
    inputs: StepInputs,
    *,
    span: StepSpan,
    session_id: str,
    context: StepContext,
    config: StepConfig,
    resolver: AgentConfigResolver,
) -> StepOutcome:
    agent_id = inputs.agent_id or ""
    prompt = inputs.prompt or ""
    trail = _Trail()

    try:
        agent = await resolver.get_agent_or_fail(agent_id)
        all_tools = await resolver.list_available_tools(agent)
        trail.enabled_tools = filter_enabled(all_tools, agent.enabled_tools)

        span.annotate(
            input_data=prompt,
            metadata={
                "agentId": agent_id,
                "agentName": agent.name,
                "workspaceId": context.workspace_id,
                "isForkedProcess": context.process_role.is_forked,
                "forkedProcessName": context.process_role.name,
            },
        )

        try:
            check_live(agent, context)
        except AgentPausedError as err:
            span.annotate(output_data=PAUSED_SPAN_OUTPUT, tags={"error": PAUSED_TAG})
            logger.info("Agent %s is paused; refusing to run in workspace %s", agent_id, context.workspace_id)
            return StepOutcome(
                success=False,
                response=get_error_message(err),
                agent_trace=trail.decision_log(),
            )

        prompt_and_tools = await resolver.build_prompt_and_tools(agent)
        model_config = await resolver.get_model_config_or_fail(agent)
        trail.model_id = model_config.model_id
        trail.model_name = model_config.model_name
        trail.base_url = model_config.base_url

        span.annotate(
            metadata={
                "modelId": model_config.model_id,
                "modelName": model_config.model_name,
                "baseUrl": model_config.base_url,
                "envLiteLLMUrl": config.litellm_url,
                "toolCount": len(prompt_and_tools.tools),
            },
        )

        session = create_model_session(model_config, session_id, timeout=config.timeout)
        constraint = build_output_constraint(inputs.use_structured_output, inputs.output_schema)
        agent_runtime = ToolLoopAgent(
            session,
            instructions=prompt_and_tools.system_prompt or None,
            tools=prompt_and_tools.tools,
            max_steps=config.max_steps,
            output=constraint,
            provider_options=provider_options(
                model_config.model_name or model_config.model_id,
                reasoning_effort=model_config.reasoning_effort,
            ),
            tool_result_max_length=config.tool_result_max_length,
            send_reasoning=config.send_reasoning,
            buffer_size=config.stream_buffer_size,
        )

        async with agent_runtime.stream(prompt) as stream:
            trail.message = stream.message
            async for _part in stream:
                pass

        message = stream.message
        response_text = stream.text
        usage = stream.usage
        output = stream.output if constraint is not None else None

        span.annotate(output_data=response_text, metadata={"stepCount": len(message.parts)})
        logger.debug(
            "Agent step %s finished: %d steps, %d parts, state=%s",
            agent_id, stream.steps, len(message.parts), stream.state.value,
        )

        return StepOutcome(
            success=True,
            response=response_text,
            usage=usage,
            message=message,
            output=output,
            agent_trace=trail.decision_log(message),
        )
    except Exception as err:
        error_message = get_error_message(err)
        error_name = error_type_name(err)
        span.mark_error(error_message, error_name)
        diagnostic = {
            "agent_id": agent_id,
            "workspace_id": context.workspace_id,
            "base_url": trail.base_url,
            "litellm_url": config.litellm_url,
            "error_name": error_name,
            "error_message": error_message,
        }
        logger.error(
            "Agent step failed: agent_id=%s workspace_id=%s base_url=%s error=%s: %s",
            agent_id,
            context.workspace_id,
            trail.base_url or config.litellm_url,
            error_name,
            error_message,
            extra={"agent_step": diagnostic},
        )
        return StepOutcome(
            success=False,
            response=error_message,
            agent_trace=trail.decision_log(),
        )


def run_agent_step(
    inputs: StepInputs | Mapping[str, Any],
    **kwargs: Any,
) -> StepOutcome:
    """Sync wrapper around arun_agent_step.

    Inside a running event loop the step runs on a fresh loop in a worker thread.
    """
    return _run_sync(arun_agent_step(inputs, **kwargs))


def _run_sync(coro: Any) -> Any:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    if loop is not None and loop.is_running():
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()
    return asyncio.run(coro)
