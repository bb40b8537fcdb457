"""Command-line runner for agent steps.

Usage:
    python -m agent_step run --agents agents.yaml --agent-id agent_writer --prompt "Draft a reply"
    python -m agent_step run --agents agents.yaml --agent-id agent_writer --prompt "Classify" \\
        --schema schema.json --format json
    python -m agent_step run ... --workspace-id app_123 --max-steps 5

    python -m agent_step tools --agents agents.yaml --agent-id agent_writer
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
from pathlib import Path
from typing import Any


def _load_schema(path: str | None) -> dict[str, Any] | None:
    if not path:
        return None
    schema_path = Path(path)
    if not schema_path.exists():
        print(f"Schema file not found: {schema_path}", file=sys.stderr)
        sys.exit(1)
    text = schema_path.read_text()
    if schema_path.suffix.lower() in {".yaml", ".yml"}:
        import yaml

        data = yaml.safe_load(text)
    else:
        data = json.loads(text)
    if not isinstance(data, dict):
        print(f"Schema root must be a mapping: {schema_path}", file=sys.stderr)
        sys.exit(1)
    return data


def _load_stores_or_exit(path: str) -> tuple[Any, Any]:
    from agent_step.stores import load_stores

    try:
        return load_stores(path)
    except (OSError, ValueError) as exc:
        print(f"Could not load agents file: {exc}", file=sys.stderr)
        sys.exit(1)


def _format_tokens(n: int) -> str:
    if n >= 1_000_000:
        return f"{n / 1_000_000:.1f}M"
    if n >= 1_000:
        return f"{n / 1_000:.1f}K"
    return str(n)


def cmd_run(args: argparse.Namespace) -> None:
    from agent_step.config import StepConfig
    from agent_step.context import ProcessRole, StepContext
    from agent_step.models import StepInputs
    from agent_step.step import arun_agent_step

    agents, models = _load_stores_or_exit(args.agents)
    schema = _load_schema(args.schema)
    config = StepConfig.from_env()
    if args.max_steps is not None:
        config = dataclasses.replace(config, max_steps=args.max_steps)

    outcome = asyncio.run(arun_agent_step(
        StepInputs(
            agent_id=args.agent_id,
            prompt=args.prompt,
            use_structured_output=schema is not None,
            output_schema=schema,
        ),
        context=StepContext(workspace_id=args.workspace_id, process_role=ProcessRole.from_env()),
        agent_store=agents,
        model_store=models,
        config=config,
    ))

    if args.format == "json":
        print(outcome.model_dump_json(indent=2, exclude_none=True))
    else:
        status = "ok" if outcome.success else "FAILED"
        print(f"[{status}] {outcome.response}")
        if outcome.output is not None:
            print(json.dumps(outcome.output, indent=2))
        if outcome.usage is not None:
            print(
                f"\ntokens: in={_format_tokens(outcome.usage.input_tokens)} "
                f"out={_format_tokens(outcome.usage.output_tokens)}"
            )
        for used in outcome.agent_trace.used_tools or []:
            print(f"  {used.name:<30} {used.count:>4}")

    if not outcome.success:
        sys.exit(1)


def cmd_tools(args: argparse.Namespace) -> None:
    from agent_step.errors import AgentStepError
    from agent_step.resolver import AgentConfigResolver

    agents, models = _load_stores_or_exit(args.agents)
    resolver = AgentConfigResolver(agents, models)

    async def _resolve() -> list[Any]:
        agent = await resolver.get_agent_or_fail(args.agent_id)
        prompt_and_tools = await resolver.build_prompt_and_tools(agent)
        return prompt_and_tools.tools.metadata()

    try:
        tools = asyncio.run(_resolve())
    except AgentStepError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    if args.format == "json":
        print(json.dumps([t.model_dump() for t in tools], indent=2))
        return
    if not tools:
        print("No tools enabled.")
        return
    for tool in tools:
        print(f"{tool.name:<30} {tool.description}")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="agent_step",
        description="Run agent steps against a local agents file",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", help="Available commands")

    # run
    run_p = sub.add_parser("run", help="Run one agent step and print the outcome")
    run_p.add_argument("--agents", required=True, help="YAML/JSON file with agents, tools and models")
    run_p.add_argument("--agent-id", required=True, help="Agent to run")
    run_p.add_argument("--prompt", required=True, help="Prompt for the agent")
    run_p.add_argument("--workspace-id", help="Calling workspace id (app_... is treated as production)")
    run_p.add_argument("--schema", help="JSON/YAML output schema; enables structured output")
    run_p.add_argument("--max-steps", type=int, help="Override the model-call bound")
    run_p.add_argument("--format", choices=["text", "json"], default="text", help="Output format")

    # tools
    tools_p = sub.add_parser("tools", help="List an agent's enabled tools")
    tools_p.add_argument("--agents", required=True, help="YAML/JSON file with agents, tools and models")
    tools_p.add_argument("--agent-id", required=True, help="Agent to inspect")
    tools_p.add_argument("--format", choices=["text", "json"], default="text", help="Output format")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    if args.command == "run":
        cmd_run(args)
    elif args.command == "tools":
        cmd_tools(args)


if __name__ == "__main__":
    main()
