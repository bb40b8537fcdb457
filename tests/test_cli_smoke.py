from __future__ import annotations

import json
import subprocess
import sys
import textwrap
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]

CLI_CMDS = [
    ["--help"],
    ["run", "--help"],
    ["tools", "--help"],
]

AGENTS_YAML = textwrap.dedent("""\
    models:
      default:
        model_id: gpt-4o-mini
        base_url: http://127.0.0.1:9
    tools:
      - name: is_prod
        callable: agent_step.context:is_prod_workspace_id
        description: Whether a workspace id is published
    agents:
      - id: agent_1
        name: Helper
        aiconfig: default
        live: true
    """)


def _cli(*args: str) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        [sys.executable, "-m", "agent_step", *args],
        capture_output=True,
        text=True,
        check=False,
        cwd=REPO_ROOT,
    )


@pytest.fixture
def agents_file(tmp_path: Path) -> Path:
    path = tmp_path / "agents.yaml"
    path.write_text(AGENTS_YAML)
    return path


def test_cli_help_smoke() -> None:
    for cmd in CLI_CMDS:
        proc = _cli(*cmd)
        assert proc.returncode == 0, f"command failed: {cmd}\nstdout={proc.stdout}\nstderr={proc.stderr}"
        assert "usage:" in proc.stdout.lower()


def test_tools_lists_enabled_tools(agents_file: Path) -> None:
    proc = _cli("tools", "--agents", str(agents_file), "--agent-id", "agent_1", "--format", "json")
    assert proc.returncode == 0, proc.stderr
    tools = json.loads(proc.stdout)
    assert [t["name"] for t in tools] == ["is_prod"]


def test_tools_unknown_agent(agents_file: Path) -> None:
    proc = _cli("tools", "--agents", str(agents_file), "--agent-id", "nobody")
    assert proc.returncode == 1
    assert "Agent not found: nobody" in proc.stderr


def test_run_failure_outcome_exits_nonzero(agents_file: Path) -> None:
    proc = _cli("run", "--agents", str(agents_file), "--agent-id", "nobody", "--prompt", "hi", "--format", "json")
    assert proc.returncode == 1
    outcome = json.loads(proc.stdout)
    assert outcome["success"] is False
    assert outcome["response"] == "Agent not found: nobody"


def test_missing_agents_file(tmp_path: Path) -> None:
    proc = _cli("tools", "--agents", str(tmp_path / "missing.yaml"), "--agent-id", "agent_1")
    assert proc.returncode == 1
    assert "Could not load agents file" in proc.stderr
