"""Role resolver — who am I, from environment, working directory and flags.

Resolution order: explicit flags, then ``HD_ROLE`` and friends, then the
path relative to the workspace root. When environment and path disagree the
environment wins and ``mismatch`` is set so the caller can warn.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from horde.defaults import (
    CLAN_DIR,
    ENV_CLAN,
    ENV_CREW,
    ENV_RAIDER,
    ENV_RAIDER_PATH,
    ENV_ROLE,
    ENV_WARBAND,
    ENV_WORKSPACE_ROOT,
    HQ_DIR,
    RAIDERS_DIR,
    SHAMAN_DIR,
)
from horde.errors import AmbiguousPath, MissingComponent, NotInWorkspace
from horde.identity import KNOWN_ROLES, AgentIdentity, Role, parse_address
from horde.session import agent_env
from horde.workspace import find_workspace, find_workspace_or_error

log = logging.getLogger(__name__)

_NON_RIG_DIRS = frozenset({HQ_DIR, SHAMAN_DIR, "logs", "drums", "settings", ".relics", ".git"})


@dataclass(frozen=True)
class RoleInfo:
    role: Role
    rig: Optional[str]
    name: Optional[str]
    workspace_root: Path
    work_dir: Path
    source: str
    mismatch: bool = False
    cwd_role: Role = Role.UNKNOWN

    @property
    def identity(self) -> AgentIdentity:
        if self.role is Role.UNKNOWN:
            raise MissingComponent("agent", ["role"])
        return AgentIdentity(self.role, self.rig, self.name)

    def to_dict(self) -> dict[str, object]:
        d: dict[str, object] = {
            "role": self.role.value,
            "rig": self.rig,
            "name": self.name,
            "workspace_root": str(self.workspace_root),
            "work_dir": str(self.work_dir),
            "source": self.source,
        }
        if self.role is not Role.UNKNOWN:
            d["address"] = self.identity.address
            d["home"] = str(self.identity.home(self.workspace_root))
        if self.mismatch:
            d["warning"] = (
                f"{ENV_ROLE} says {self.role.value} but the working directory "
                f"looks like {self.cwd_role.value}"
            )
        return d


def detect_from_path(root: str | Path, work_dir: str | Path) -> tuple[Role, Optional[str], Optional[str]]:
    """Infer (role, rig, name) from ``work_dir`` relative to ``root``. First match wins."""
    rel = os.path.relpath(os.path.abspath(str(work_dir)), os.path.abspath(str(root)))
    if rel == "." or rel.startswith(".."):
        return Role.UNKNOWN, None, None
    parts = Path(rel).parts
    head = parts[0]
    if head == HQ_DIR:
        return Role.WARCHIEF, None, None
    if head == SHAMAN_DIR:
        return Role.SHAMAN, None, None
    if head in _NON_RIG_DIRS:
        return Role.UNKNOWN, None, None
    rig = head
    if len(parts) < 2:
        return Role.UNKNOWN, rig, None
    second = parts[1]
    if second == "witness":
        return Role.WITNESS, rig, None
    if second == "forge":
        return Role.FORGE, rig, None
    if second == HQ_DIR:
        return Role.WARCHIEF, None, None
    if second == RAIDERS_DIR and len(parts) >= 3:
        return Role.RAIDER, rig, parts[2]
    if second == CLAN_DIR and len(parts) >= 3:
        return Role.CREW, rig, parts[2]
    return Role.UNKNOWN, rig, None


def _current_dir(env: Mapping[str, str]) -> Path:
    try:
        return Path(os.getcwd())
    except FileNotFoundError:
        fallback = env.get(ENV_RAIDER_PATH) or env.get(ENV_WORKSPACE_ROOT)
        if not fallback:
            raise NotInWorkspace("<deleted working directory>") from None
        return Path(fallback)


def _from_env(env: Mapping[str, str]) -> tuple[Role, Optional[str], Optional[str]] | None:
    raw = env.get(ENV_ROLE, "").strip()
    if not raw:
        return None
    if "/" in raw:
        ident = parse_address(raw)
        return ident.role, ident.rig, ident.name
    role = Role.parse(raw)
    rig = env.get(ENV_WARBAND) or None
    name = None
    if role is Role.RAIDER:
        name = env.get(ENV_RAIDER) or None
    elif role is Role.CREW:
        name = env.get(ENV_CREW) or env.get(ENV_CLAN) or None
    if role.workspace_scoped:
        rig = None
    return role, rig, name


def resolve_role(
    work_dir: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    role_flag: str | None = None,
    rig_flag: str | None = None,
    name_flag: str | None = None,
) -> RoleInfo:
    env = os.environ if env is None else env
    work = Path(work_dir) if work_dir else _current_dir(env)
    root = find_workspace(work) if work.is_dir() else None
    if root is None:
        root = find_workspace_or_error(work)
    cwd_role, cwd_rig, cwd_name = detect_from_path(root, work)

    if role_flag:
        if "/" in role_flag:
            ident = parse_address(role_flag)
            role, rig, name = ident.role, ident.rig, ident.name
        else:
            role, rig, name = Role.parse(role_flag), rig_flag, name_flag
        source = "flag"
    else:
        from_env = _from_env(env)
        if from_env is not None:
            role, rig, name = from_env
            source = "env"
        else:
            role, rig, name = cwd_role, cwd_rig, cwd_name
            source = "cwd"

    if source != "cwd":
        filled = False
        if role.needs_rig and not rig and cwd_rig:
            rig, filled = cwd_rig, True
        if role.needs_name and not name and cwd_role is role and cwd_name:
            name, filled = cwd_name, True
        if filled and source == "env":
            source = "env+cwd"

    if role is Role.UNKNOWN and rig:
        raise AmbiguousPath(
            f"{work} is inside warband '{rig}' but not in a role directory",
            remedy="cd into a witness, forge, raider or crew directory, or set HD_ROLE",
        )

    missing = []
    if role.needs_rig and not rig:
        missing.append("warband")
    if role.needs_name and not name:
        missing.append("name")
    if missing:
        raise MissingComponent(role.value, missing)

    mismatch = source.startswith("env") and cwd_role is not Role.UNKNOWN and cwd_role is not role
    if mismatch:
        log.debug("resolve_role: env role %s disagrees with cwd role %s", role.value, cwd_role.value)
    return RoleInfo(
        role=role,
        rig=rig if not role.workspace_scoped else None,
        name=name,
        workspace_root=root,
        work_dir=work,
        source=source,
        mismatch=mismatch,
        cwd_role=cwd_role,
    )


# ---------------------------------------------------------------------------
# role subcommands
# ---------------------------------------------------------------------------


def role_show(work_dir: str | Path | None = None) -> dict[str, object]:
    return resolve_role(work_dir).to_dict()


def role_detect(work_dir: str | Path | None = None) -> dict[str, object]:
    """Path-only detection, ignoring the environment."""
    info = resolve_role(work_dir, env={})
    return info.to_dict()


def role_home(root: str | Path, role: str, rig: str | None = None, name: str | None = None) -> dict[str, object]:
    if "/" in role:
        ident = parse_address(role)
    else:
        ident = AgentIdentity(Role.parse(role), rig, name)
    return {"role": ident.role.value, "address": ident.address, "home": str(ident.home(root))}


def role_env(work_dir: str | Path | None = None) -> dict[str, object]:
    info = resolve_role(work_dir)
    env = agent_env(info.workspace_root, info.identity)
    return {"role": info.role.value, "env": env,
            "exports": [f"export {k}={v}" for k, v in env.items()]}


def role_list() -> dict[str, object]:
    examples = {
        Role.WARCHIEF: "warchief/",
        Role.SHAMAN: "shaman/",
        Role.WITNESS: "<rig>/witness",
        Role.FORGE: "<rig>/forge",
        Role.RAIDER: "<rig>/raiders/<name>",
        Role.CREW: "<rig>/clan/<name>",
    }
    return {"roles": [
        {"role": r.value, "scope": "workspace" if r.workspace_scoped else "warband", "address": examples[r]}
        for r in KNOWN_ROLES
    ]}
