"""Workspace (encampment) discovery, the warband registry, install and rig add."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Optional

from horde.defaults import (
    CLAN_DIR,
    DEFAULT_BRANCH,
    ENCAMPMENT_FILE,
    ENCAMPMENT_VERSION,
    ENV_WORKSPACE_ROOT,
    HQ_DIR,
    HQ_PREFIX,
    LOG_DIR,
    RAIDERS_DIR,
    RIG_AGENT_DIRS,
    RIG_CLONE,
    SETTINGS_DIR,
    SHAMAN_DIR,
    WARBANDS_FILE,
    WARBANDS_VERSION,
    WORKSPACE_MARKER,
    drums_path,
    hq_path,
)
from horde.errors import HordeError, NotInWorkspace, PreflightError
from horde.fs import atomic_write_file, now_iso, read_json, write_json
from horde.identity import valid_name, valid_prefix
from horde.ledger.client import LedgerClient
from horde.ledger.routes import Route, append_route, hq_route

if TYPE_CHECKING:
    from horde.context import HordeContext

log = logging.getLogger(__name__)

_SEP = os.sep


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def _in_worktree(path: str) -> bool:
    return f"{_SEP}{RAIDERS_DIR}{_SEP}" in path or f"{_SEP}{CLAN_DIR}{_SEP}" in path


def find_workspace(start: str | Path) -> Path | None:
    """Walk up from ``start`` to the workspace root.

    Only ``warchief/encampment.json`` marks a root; a bare ``warchief/``
    directory also exists inside every warband. Inside a raider or crew
    worktree the search continues to the outermost match. Symlinks are
    not resolved so the result agrees with ``os.getcwd()``.
    """
    current = os.path.abspath(str(start))
    in_worktree = _in_worktree(current + _SEP)
    primary: str | None = None
    while True:
        if os.path.isfile(os.path.join(current, WORKSPACE_MARKER)):
            if not in_worktree:
                return Path(current)
            primary = current
        parent = os.path.dirname(current)
        if parent == current:
            break
        current = parent
    return Path(primary) if primary else None


def find_workspace_or_error(start: str | Path | None = None) -> Path:
    """Like find_workspace, falling back to HD_WORKSPACE_ROOT when cwd is gone."""
    if start is None:
        try:
            start = os.getcwd()
        except FileNotFoundError:
            env_root = os.getenv(ENV_WORKSPACE_ROOT, "")
            if env_root and os.path.isfile(os.path.join(env_root, WORKSPACE_MARKER)):
                return Path(env_root)
            raise NotInWorkspace("<deleted working directory>") from None
    root = find_workspace(start)
    if root is None:
        env_root = os.getenv(ENV_WORKSPACE_ROOT, "")
        if env_root and os.path.isfile(os.path.join(env_root, WORKSPACE_MARKER)) and not os.path.isdir(str(start)):
            return Path(env_root)
        raise NotInWorkspace(str(start))
    return root


# ---------------------------------------------------------------------------
# Warband registry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Warband:
    name: str
    path: Path
    prefix: str
    default_branch: str = DEFAULT_BRANCH
    git_url: str = ""
    added_at: str = ""

    @property
    def clone_path(self) -> Path:
        return self.path / RIG_CLONE

    @property
    def raiders_path(self) -> Path:
        return self.path / RAIDERS_DIR

    @property
    def clan_path(self) -> Path:
        return self.path / CLAN_DIR

    def raider_names(self) -> list[str]:
        return _subdirs(self.raiders_path)

    def crew_names(self) -> list[str]:
        return _subdirs(self.clan_path)

    def to_dict(self) -> dict[str, object]:
        d = asdict(self)
        d["path"] = str(self.path)
        return d


def _subdirs(path: Path) -> list[str]:
    if not path.is_dir():
        return []
    return sorted(p.name for p in path.iterdir() if p.is_dir() and not p.name.startswith("."))


def _warbands_file(root: str | Path) -> Path:
    return hq_path(root) / WARBANDS_FILE


def load_warbands(root: str | Path) -> dict[str, Warband]:
    root = Path(root)
    data = read_json(_warbands_file(root)) or {}
    rigs = data.get("rigs") or {}
    warbands: dict[str, Warband] = {}
    for name, entry in rigs.items():
        if not isinstance(entry, dict) or not entry.get("prefix"):
            log.warning("load_warbands: skipping malformed entry %r", name)
            continue
        warbands[name] = Warband(
            name=name,
            path=root / entry.get("path", name),
            prefix=str(entry["prefix"]),
            default_branch=str(entry.get("default_branch") or DEFAULT_BRANCH),
            git_url=str(entry.get("git_url", "")),
            added_at=str(entry.get("added_at", "")),
        )
    return warbands


def save_warbands(root: str | Path, warbands: dict[str, Warband]) -> None:
    root = Path(root)
    rigs = {}
    for name, wb in sorted(warbands.items()):
        rigs[name] = {
            "path": os.path.relpath(wb.path, root),
            "prefix": wb.prefix,
            "default_branch": wb.default_branch,
            "git_url": wb.git_url,
            "added_at": wb.added_at,
        }
    write_json(_warbands_file(root), {"version": WARBANDS_VERSION, "rigs": rigs})


# ---------------------------------------------------------------------------
# install
# ---------------------------------------------------------------------------

_HQ_CLAUDE_MD = """# Warchief

You coordinate this horde workspace. Dispatch work with `hd charge <id> <rig>`,
watch raids with `hd raid status`, and read your drums with `hd drums inbox`.
"""

_SETTINGS_JSON = '{\n  "hooks": {}\n}\n'


def install(
    path: str | Path,
    name: str = "",
    owner: str = "",
    public_name: str = "",
    ledger_factory: Optional[Callable[[Path], LedgerClient]] = None,
) -> dict[str, object]:
    """Create a new workspace at ``path`` with its HQ ledger and routes."""
    root = Path(path).expanduser().resolve()
    if (root / WORKSPACE_MARKER).exists():
        return {"error": f"BLOCKED: {root} is already a horde workspace", "kind": "preflight"}
    name = name or root.name
    factory = ledger_factory or LedgerClient
    client = factory(root)
    try:
        version = client.check_version()
        for d in (HQ_DIR, f"{HQ_DIR}/.claude", f"{SHAMAN_DIR}/.claude", LOG_DIR, SETTINGS_DIR):
            (root / d).mkdir(parents=True, exist_ok=True)
        drums_path(root).mkdir(parents=True, exist_ok=True)
        write_json(hq_path(root) / ENCAMPMENT_FILE, {
            "type": "encampment",
            "version": ENCAMPMENT_VERSION,
            "name": name,
            "owner": owner,
            "public_name": public_name or name,
            "created_at": now_iso(),
        })
        write_json(_warbands_file(root), {"version": WARBANDS_VERSION, "rigs": {}})
        atomic_write_file(hq_path(root) / "CLAUDE.md", _HQ_CLAUDE_MD)
        atomic_write_file(hq_path(root) / ".claude" / "settings.json", _SETTINGS_JSON)
        atomic_write_file(root / SHAMAN_DIR / ".claude" / "settings.json", _SETTINGS_JSON)
        client.init(HQ_PREFIX)
        append_route(root, hq_route())
    except HordeError as exc:
        return exc.to_result()
    return {"status": "installed", "root": str(root), "name": name, "prefix": HQ_PREFIX, "ledger_version": version}


# ---------------------------------------------------------------------------
# rig add
# ---------------------------------------------------------------------------


def derive_prefix(name: str) -> str:
    """Default prefix: initials of dash/underscore words, else the first two letters."""
    words = [w for w in re.split(r"[-_]+", name.lower()) if w]
    if len(words) > 1:
        prefix = "".join(w[0] for w in words if w[0].isalpha())
    else:
        prefix = re.sub(r"[^a-z]", "", name.lower())[:2]
    if prefix == HQ_PREFIX:
        prefix = prefix + "x"
    return prefix


def rig_add(
    ctx: "HordeContext",
    name: str,
    git_url: str,
    prefix: str = "",
    branch: str = "",
) -> dict[str, object]:
    """Register a warband: clone, agent directories, ledger, registry, route."""
    if not valid_name(name):
        return {"error": f"BLOCKED: invalid warband name '{name}' (letters, digits, underscore)", "kind": "preflight"}
    prefix = prefix or derive_prefix(name)
    if not valid_prefix(prefix):
        return {"error": f"BLOCKED: invalid prefix '{prefix}' (lowercase letters/digits, not 'hq')", "kind": "preflight"}
    warbands = ctx.warbands()
    if name in warbands:
        return {"error": f"BLOCKED: warband '{name}' already exists", "kind": "preflight"}
    for other in warbands.values():
        if other.prefix == prefix:
            return {"error": f"BLOCKED: prefix '{prefix}' is used by warband '{other.name}'", "kind": "preflight",
                    "remedy": "pass --prefix"}

    rig_path = ctx.root / name
    wb = Warband(name=name, path=rig_path, prefix=prefix, default_branch=branch or DEFAULT_BRANCH,
                 git_url=git_url, added_at=now_iso())
    try:
        ctx.ledger(ctx.root).check_version()
        if rig_path.exists() and any(rig_path.iterdir()):
            raise PreflightError(f"{rig_path} already exists and is not empty")
        for d in RIG_AGENT_DIRS:
            (rig_path / d).mkdir(parents=True, exist_ok=True)
        ctx.git(rig_path).clone(git_url, wb.clone_path, branch or None)
        if not branch:
            detected = ctx.git(wb.clone_path).current_branch()
            wb = Warband(name=name, path=rig_path, prefix=prefix, default_branch=detected or DEFAULT_BRANCH,
                         git_url=git_url, added_at=wb.added_at)
        ctx.ledger(rig_path).init(prefix)
        warbands[name] = wb
        save_warbands(ctx.root, warbands)
        append_route(ctx.root, Route(f"{prefix}-", name))
    except HordeError as exc:
        return exc.to_result()
    ctx.reset_caches()
    return {"status": "added", "rig": name, "prefix": prefix, "path": str(rig_path),
            "default_branch": wb.default_branch}
