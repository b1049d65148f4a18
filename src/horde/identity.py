"""Agent identity — the closed role set and its canonical string forms.

An identity renders to three persisted strings: the address used for
assignees and drums (``horde/raiders/nux``), the tmux session name
(``gt-horde-nux``) and the agent record id (``gt-horde-raider-nux``).
Names are restricted so that all three stay injective.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from horde.defaults import CLAN_DIR, HQ_DIR, HQ_PREFIX, RAIDERS_DIR, SHAMAN_DIR, WORKTREE_DIR

_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_]*$")
_PREFIX_RE = re.compile(r"^[a-z][a-z0-9]*$")
RESERVED_NAMES = frozenset({"witness", "forge", "clan", "crew", "raiders", "warchief", "shaman"})


class Role(str, Enum):
    WARCHIEF = "warchief"
    SHAMAN = "shaman"
    WITNESS = "witness"
    FORGE = "forge"
    RAIDER = "raider"
    CREW = "crew"
    UNKNOWN = "unknown"

    @property
    def workspace_scoped(self) -> bool:
        return self in (Role.WARCHIEF, Role.SHAMAN)

    @property
    def needs_rig(self) -> bool:
        return self in (Role.WITNESS, Role.FORGE, Role.RAIDER, Role.CREW)

    @property
    def needs_name(self) -> bool:
        return self in (Role.RAIDER, Role.CREW)

    @classmethod
    def parse(cls, value: str) -> "Role":
        v = value.strip().lower().rstrip("/")
        aliases = {"clan": "crew", "raiders": "raider"}
        v = aliases.get(v, v)
        try:
            return cls(v)
        except ValueError:
            raise ValueError(f"Unknown role '{value}'. Valid: {', '.join(r.value for r in KNOWN_ROLES)}") from None


KNOWN_ROLES = tuple(r for r in Role if r is not Role.UNKNOWN)


def valid_name(name: str) -> bool:
    return bool(_NAME_RE.match(name or ""))


def valid_prefix(prefix: str) -> bool:
    return bool(_PREFIX_RE.match(prefix or "")) and prefix != HQ_PREFIX


@dataclass(frozen=True)
class AgentIdentity:
    role: Role
    rig: Optional[str] = None
    name: Optional[str] = None

    def __post_init__(self) -> None:
        if self.role is Role.UNKNOWN:
            raise ValueError("an agent identity needs a known role")
        if self.role.needs_rig and not self.rig:
            raise ValueError(f"{self.role.value} requires a warband")
        if self.role.needs_name and not self.name:
            raise ValueError(f"{self.role.value} requires a name")
        if self.role.workspace_scoped and (self.rig or self.name):
            raise ValueError(f"{self.role.value} is workspace-scoped")
        if self.rig and not valid_name(self.rig):
            raise ValueError(f"invalid warband name '{self.rig}'")
        if self.name is not None:
            if not valid_name(self.name):
                raise ValueError(f"invalid agent name '{self.name}'")
            if self.role is Role.RAIDER and self.name.lower() in RESERVED_NAMES:
                raise ValueError(f"'{self.name}' is reserved and cannot name a raider")

    # -- constructors -------------------------------------------------------

    @classmethod
    def warchief(cls) -> "AgentIdentity":
        return cls(Role.WARCHIEF)

    @classmethod
    def shaman(cls) -> "AgentIdentity":
        return cls(Role.SHAMAN)

    @classmethod
    def witness(cls, rig: str) -> "AgentIdentity":
        return cls(Role.WITNESS, rig)

    @classmethod
    def forge(cls, rig: str) -> "AgentIdentity":
        return cls(Role.FORGE, rig)

    @classmethod
    def raider(cls, rig: str, name: str) -> "AgentIdentity":
        return cls(Role.RAIDER, rig, name)

    @classmethod
    def crew(cls, rig: str, name: str) -> "AgentIdentity":
        return cls(Role.CREW, rig, name)

    # -- string forms -------------------------------------------------------

    @property
    def address(self) -> str:
        if self.role is Role.WARCHIEF:
            return "warchief/"
        if self.role is Role.SHAMAN:
            return "shaman/"
        if self.role is Role.WITNESS:
            return f"{self.rig}/witness"
        if self.role is Role.FORGE:
            return f"{self.rig}/forge"
        if self.role is Role.RAIDER:
            return f"{self.rig}/{RAIDERS_DIR}/{self.name}"
        return f"{self.rig}/{CLAN_DIR}/{self.name}"

    def session_name(self, prefix: str) -> str:
        """tmux session name; ``prefix`` is HQ's for workspace agents, the warband's otherwise."""
        if self.role.workspace_scoped:
            return f"{prefix}-{self.role.value}"
        if self.role in (Role.WITNESS, Role.FORGE):
            return f"{prefix}-{self.rig}-{self.role.value}"
        if self.role is Role.RAIDER:
            return f"{prefix}-{self.rig}-{self.name}"
        return f"{prefix}-{self.rig}-clan-{self.name}"

    def record_id(self, prefix: str) -> str:
        """Agent record id: ``<prefix>-<warband?>-<role>-<name?>``."""
        parts = [prefix]
        if self.rig:
            parts.append(self.rig)
        parts.append(self.role.value)
        if self.name:
            parts.append(self.name)
        return "-".join(parts)

    def home(self, root: str | Path) -> Path:
        root = Path(root)
        if self.role is Role.WARCHIEF:
            return root / HQ_DIR
        if self.role is Role.SHAMAN:
            return root / SHAMAN_DIR
        if self.role is Role.WITNESS:
            return root / self.rig / "witness"
        if self.role is Role.FORGE:
            return root / self.rig / "forge" / WORKTREE_DIR
        if self.role is Role.RAIDER:
            return root / self.rig / RAIDERS_DIR / self.name / WORKTREE_DIR
        return root / self.rig / CLAN_DIR / self.name / WORKTREE_DIR

    def __str__(self) -> str:
        return self.address


def parse_address(address: str) -> AgentIdentity:
    """Parse an agent address.

    Accepts ``warchief[/]``, ``shaman[/]``, ``<rig>/witness``, ``<rig>/forge``,
    ``<rig>/raiders/<name>``, ``<rig>/clan/<name>`` (``crew`` is an alias) and
    the shorthand ``<rig>/<name>`` for a raider.
    """
    parts = [p for p in address.strip().split("/") if p]
    if not parts:
        raise ValueError("empty agent address")
    if len(parts) == 1:
        head = parts[0].lower()
        if head == "warchief":
            return AgentIdentity.warchief()
        if head == "shaman":
            return AgentIdentity.shaman()
        raise ValueError(f"'{address}' is not an agent address")
    rig = parts[0]
    if len(parts) == 2:
        second = parts[1].lower()
        if second == "witness":
            return AgentIdentity.witness(rig)
        if second == "forge":
            return AgentIdentity.forge(rig)
        return AgentIdentity.raider(rig, parts[1])
    if len(parts) == 3:
        kind = parts[1].lower()
        if kind in (RAIDERS_DIR, "raider"):
            return AgentIdentity.raider(rig, parts[2])
        if kind in (CLAN_DIR, "crew"):
            return AgentIdentity.crew(rig, parts[2])
    raise ValueError(f"'{address}' is not an agent address")
