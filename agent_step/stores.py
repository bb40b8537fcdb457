"""Agent and model-config stores consumed by the resolver.

The production stores live outside this package; anything satisfying the
``AgentStore`` / ``ModelConfigStore`` protocols can be passed to a step. The
in-memory implementations here back tests and the CLI, and ``load_stores``
builds both from one YAML or JSON file:

    models:
      default:
        model_id: gpt-4o-mini
        base_url: http://localhost:4000
        api_key_env: LITELLM_API_KEY
    tools:
      - name: word_count
        callable: mypkg.tools:word_count
    agents:
      - id: agent_writer
        name: Writer
        aiconfig: default
        instructions: You are a concise writer.
        tools: [word_count]
        live: true
"""

from __future__ import annotations

import importlib
import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Protocol, runtime_checkable

from agent_step.models import AgentConfig, ModelConfig
from agent_step.tool_utils import RegisteredTool, callable_to_tool_metadata

logger = logging.getLogger(__name__)


@runtime_checkable
class AgentStore(Protocol):
    """Agent lookup, tool metadata and prompt building."""

    async def get_agent(self, agent_id: str) -> AgentConfig | None: ...
    async def get_available_tools(self, agent: AgentConfig) -> list[RegisteredTool]: ...
    async def build_system_prompt(self, agent: AgentConfig) -> str: ...


@runtime_checkable
class ModelConfigStore(Protocol):
    """Credential and model-identity lookup keyed by an agent's backend reference."""

    async def get_model_config(self, config_ref: str) -> ModelConfig | None: ...


class InMemoryAgentStore:
    """Dict-backed AgentStore.

    An agent whose ``tools`` list is empty is offered every registered tool.
    """

    def __init__(
        self,
        agents: Iterable[AgentConfig] = (),
        tools: Iterable[RegisteredTool] = (),
    ) -> None:
        self._agents: dict[str, AgentConfig] = {a.id: a for a in agents}
        self._tools: dict[str, RegisteredTool] = {}
        for tool in tools:
            self.add_tool(tool)

    def add_agent(self, agent: AgentConfig) -> None:
        self._agents[agent.id] = agent

    def add_tool(self, tool: RegisteredTool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Duplicate tool name {tool.name!r}")
        self._tools[tool.name] = tool

    async def get_agent(self, agent_id: str) -> AgentConfig | None:
        return self._agents.get(agent_id)

    async def get_available_tools(self, agent: AgentConfig) -> list[RegisteredTool]:
        if not agent.tools:
            return list(self._tools.values())
        available: list[RegisteredTool] = []
        for name in agent.tools:
            tool = self._tools.get(name)
            if tool is None:
                logger.warning("Agent %s references unknown tool %r", agent.id, name)
                continue
            available.append(tool)
        return available

    async def build_system_prompt(self, agent: AgentConfig) -> str:
        return agent.instructions.strip()


class InMemoryModelConfigStore:
    """Dict-backed ModelConfigStore."""

    def __init__(self, configs: Mapping[str, ModelConfig] | None = None) -> None:
        self._configs: dict[str, ModelConfig] = dict(configs or {})

    def add(self, config_ref: str, config: ModelConfig) -> None:
        self._configs[config_ref] = config

    async def get_model_config(self, config_ref: str) -> ModelConfig | None:
        return self._configs.get(config_ref)


# ---------------------------------------------------------------------------
# File loading
# ---------------------------------------------------------------------------


def _load_mapping(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Agents file not found: {path}")
    text = path.read_text()
    suffix = path.suffix.lower()
    if suffix == ".json":
        data = json.loads(text)
    elif suffix in {".yaml", ".yml"}:
        import yaml

        data = yaml.safe_load(text)
    else:
        raise ValueError(
            f"Unsupported agents file extension {suffix!r} for {path}. "
            "Use .json, .yaml, or .yml."
        )
    if not isinstance(data, dict):
        raise ValueError(f"Agents file root must be a mapping. Got: {type(data).__name__}")
    return data


def import_callable(spec: str) -> Callable[..., Any]:
    """Import ``package.module:attr`` and return the callable."""
    module_name, sep, attr = spec.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Tool callable must look like 'module:function', got {spec!r}")
    module = importlib.import_module(module_name)
    fn = getattr(module, attr, None)
    if not callable(fn):
        raise ValueError(f"{spec!r} does not resolve to a callable")
    return fn


def _load_tool(entry: Any, callables: Mapping[str, Callable[..., Any]]) -> RegisteredTool:
    if isinstance(entry, str):
        entry = {"name": entry}
    if not isinstance(entry, Mapping):
        raise ValueError(f"Tool entry must be a mapping or name, got {type(entry).__name__}")
    name = entry.get("name")
    spec = entry.get("callable")
    if isinstance(name, str) and name in callables:
        fn = callables[name]
    elif isinstance(spec, str):
        fn = import_callable(spec)
    else:
        raise ValueError(f"Tool {name!r} has no callable")
    metadata = callable_to_tool_metadata(
        fn,
        name=name if isinstance(name, str) else None,
        description=entry.get("description"),
    )
    if isinstance(entry.get("parameters"), Mapping):
        metadata = metadata.model_copy(update={"parameters": dict(entry["parameters"])})
    return RegisteredTool(metadata=metadata, fn=fn)


def _load_model_config(ref: str, entry: Mapping[str, Any]) -> ModelConfig:
    payload = dict(entry)
    key_env = payload.pop("api_key_env", None)
    if not payload.get("api_key") and isinstance(key_env, str):
        payload["api_key"] = os.environ.get(key_env, "")
        if not payload["api_key"]:
            logger.warning("Model config %s: %s is not set", ref, key_env)
    payload.setdefault("model_name", payload.get("model_id", ""))
    return ModelConfig.model_validate(payload)


def load_stores(
    path: str | Path,
    callables: Mapping[str, Callable[..., Any]] | None = None,
) -> tuple[InMemoryAgentStore, InMemoryModelConfigStore]:
    """Build in-memory stores from a YAML/JSON agents file.

    ``callables`` maps tool names to functions and takes precedence over the
    file's ``callable`` import paths.
    """
    data = _load_mapping(Path(path))
    callables = callables or {}

    tools = [_load_tool(entry, callables) for entry in data.get("tools") or []]
    agents = [AgentConfig.model_validate(entry) for entry in data.get("agents") or []]
    models_raw = data.get("models") or {}
    if not isinstance(models_raw, Mapping):
        raise ValueError("'models' must be a mapping of config reference → model config")
    models = {
        str(ref): _load_model_config(str(ref), entry)
        for ref, entry in models_raw.items()
    }
    logger.debug(
        "Loaded %d agents, %d tools, %d model configs from %s",
        len(agents), len(tools), len(models), path,
    )
    return InMemoryAgentStore(agents, tools), InMemoryModelConfigStore(models)
