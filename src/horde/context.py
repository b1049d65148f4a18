"""Per-invocation context — workspace root, collaborators, cached registries.

Resolved once at process start and passed explicitly into every subsystem.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from horde.config import RuntimesConfig, load_runtime_config
from horde.defaults import ENV_ACTOR, HQ_PREFIX, debug_enabled
from horde.errors import PreflightError
from horde.git import Git
from horde.git import Runner as GitRunner
from horde.identity import AgentIdentity
from horde.ledger.client import LedgerClient
from horde.ledger.routes import LedgerRouter
from horde.tmux import Tmux
from horde.workspace import Warband, find_workspace_or_error, load_warbands


@dataclass
class HordeContext:
    root: Path
    tmux: Tmux = field(default_factory=Tmux)
    ledger_factory: Callable[[Path], LedgerClient] = LedgerClient
    git_runner: Optional[GitRunner] = None
    runtimes: Optional[RuntimesConfig] = None
    actor: str = ""
    debug: bool = False
    _warbands: Optional[dict[str, Warband]] = field(default=None, repr=False)
    _router: Optional[LedgerRouter] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        self.root = Path(self.root)
        if self.runtimes is None:
            self.runtimes = load_runtime_config(self.root)

    # -- registries ---------------------------------------------------------

    def warbands(self) -> dict[str, Warband]:
        if self._warbands is None:
            self._warbands = load_warbands(self.root)
        return self._warbands

    def warband(self, name: str) -> Warband:
        wb = self.warbands().get(name)
        if wb is None:
            known = ", ".join(sorted(self.warbands())) or "none"
            raise PreflightError(f"unknown warband '{name}' (known: {known})", remedy="hd rig add <name> <git-url>")
        return wb

    def reset_caches(self) -> None:
        self._warbands = None
        self._router = None

    # -- collaborators ------------------------------------------------------

    @property
    def router(self) -> LedgerRouter:
        if self._router is None:
            self._router = LedgerRouter(self.root, self.ledger_factory)
        return self._router

    def ledger(self, path: Path) -> LedgerClient:
        return self.router.client_at(path)

    @property
    def hq(self) -> LedgerClient:
        return self.router.hq

    def git(self, workdir: str | Path) -> Git:
        return Git(workdir, runner=self.git_runner)

    # -- identity helpers ---------------------------------------------------

    def prefix_for(self, identity: AgentIdentity) -> str:
        if identity.rig is None:
            return HQ_PREFIX
        return self.warband(identity.rig).prefix

    def session_name(self, identity: AgentIdentity) -> str:
        return identity.session_name(self.prefix_for(identity))

    def record_ledger(self, identity: AgentIdentity) -> LedgerClient:
        """Workspace agents live in the HQ ledger, warband agents in their rig's."""
        if identity.rig is None:
            return self.hq
        return self.ledger(self.warband(identity.rig).path)

    def home(self, identity: AgentIdentity) -> Path:
        return identity.home(self.root)


def load_context(start: str | Path | None = None) -> HordeContext:
    root = find_workspace_or_error(start)
    return HordeContext(root=root, actor=os.getenv(ENV_ACTOR, ""), debug=debug_enabled())
