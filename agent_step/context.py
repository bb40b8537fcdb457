"""Request-scoped ambient context: which workspace is calling, from which process."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

FORKED_PROCESS_NAME_ENV = "FORKED_PROCESS_NAME"

WORKSPACE_PREFIX = "app_"
DEV_WORKSPACE_PREFIX = "app_dev_"


def is_prod_workspace_id(workspace_id: str | None) -> bool:
    """Published (production) workspaces use ``app_`` ids; dev copies use ``app_dev_``."""
    if not workspace_id:
        return False
    return workspace_id.startswith(WORKSPACE_PREFIX) and not workspace_id.startswith(
        DEV_WORKSPACE_PREFIX
    )


def is_dev_workspace_id(workspace_id: str | None) -> bool:
    return bool(workspace_id and workspace_id.startswith(DEV_WORKSPACE_PREFIX))


@dataclass(frozen=True)
class ProcessRole:
    """Whether this step runs in the main process or a forked worker."""

    is_forked: bool = False
    name: str = "main"

    @classmethod
    def from_env(cls) -> "ProcessRole":
        name = os.environ.get(FORKED_PROCESS_NAME_ENV, "").strip()
        if name:
            return cls(is_forked=True, name=name)
        return cls()


@dataclass(frozen=True)
class StepContext:
    """Ambient context for one step invocation, passed explicitly by the host engine."""

    workspace_id: str | None = None
    process_role: ProcessRole = field(default_factory=ProcessRole)

    @property
    def is_production(self) -> bool:
        return is_prod_workspace_id(self.workspace_id)
