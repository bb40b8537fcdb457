"""Agent configuration resolution: agent lookup, tool filtering, prompt and model config."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from agent_step.errors import AgentNotFoundError, ModelNotConfiguredError
from agent_step.models import AgentConfig, ModelConfig, ToolMetadata
from agent_step.stores import AgentStore, ModelConfigStore
from agent_step.tool_utils import ToolRegistry, prepare_tools

logger = logging.getLogger(__name__)


@dataclass
class PromptAndTools:
    system_prompt: str = ""
    tools: ToolRegistry = field(default_factory=ToolRegistry)


def filter_enabled(
    all_tools: Sequence[ToolMetadata],
    enabled_names: Iterable[str] | None,
) -> list[ToolMetadata]:
    """Keep only enabled tools. No names means everything is enabled."""
    names = set(enabled_names or ())
    if not names:
        return list(all_tools)
    return [tool for tool in all_tools if tool.name in names]


class AgentConfigResolver:
    """Resolves everything an agent step needs from the agent and model-config stores.

    Nothing is cached: each call goes back to the stores.
    """

    def __init__(self, agent_store: AgentStore, model_store: ModelConfigStore) -> None:
        self._agents = agent_store
        self._models = model_store

    async def get_agent_or_fail(self, agent_id: str) -> AgentConfig:
        agent = await self._agents.get_agent(agent_id)
        if agent is None:
            raise AgentNotFoundError(f"Agent not found: {agent_id}")
        return agent

    async def list_available_tools(self, agent: AgentConfig) -> list[ToolMetadata]:
        """All tools offered by the agent's configuration, in order, first name wins."""
        seen: set[str] = set()
        out: list[ToolMetadata] = []
        for tool in await self._agents.get_available_tools(agent):
            if tool.name in seen:
                continue
            seen.add(tool.name)
            out.append(tool.metadata)
        return out

    async def build_prompt_and_tools(self, agent: AgentConfig) -> PromptAndTools:
        """System prompt plus a registry of the agent's enabled tools."""
        available = await self._agents.get_available_tools(agent)
        enabled = {t.name for t in filter_enabled([t.metadata for t in available], agent.enabled_tools)}
        seen: set[str] = set()
        selected = []
        for tool in available:
            if tool.name in enabled and tool.name not in seen:
                seen.add(tool.name)
                selected.append(tool)
        system_prompt = await self._agents.build_system_prompt(agent)
        logger.debug("Agent %s: %d of %d tools enabled", agent.id, len(selected), len(available))
        return PromptAndTools(system_prompt=system_prompt or "", tools=prepare_tools(selected))

    async def get_model_config_or_fail(self, agent: AgentConfig) -> ModelConfig:
        if not agent.aiconfig:
            raise ModelNotConfiguredError(f"Agent {agent.id} has no model configuration")
        config = await self._models.get_model_config(agent.aiconfig)
        if config is None:
            raise ModelNotConfiguredError(f"Model configuration not found: {agent.aiconfig}")
        if not config.model_id.strip():
            raise ModelNotConfiguredError(f"Model configuration {agent.aiconfig} has no model id")
        if not config.base_url.strip():
            raise ModelNotConfiguredError(f"Model configuration {agent.aiconfig} has no base URL")
        return config
