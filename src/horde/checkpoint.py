"""Per-worktree checkpoint of work in flight (``.raider-checkpoint.json``)."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from horde.defaults import CHECKPOINT_FILE, CHECKPOINT_STALE_HOURS, ENV_RUNTIME_SESSION_ID, ENV_SESSION_ID
from horde.errors import CollaboratorError, HordeError
from horde.fs import now_iso, parse_iso, read_json, write_json
from horde.git import Git

if TYPE_CHECKING:
    from horde.context import HordeContext

log = logging.getLogger(__name__)

_STEP_RE = re.compile(r"^(.+)\.([1-9]\d*)$")


def extract_step_id(item_id: str) -> str | None:
    """``<base>.<n>`` with positive integer ``n`` yields ``base``; anything else None."""
    m = _STEP_RE.match(item_id or "")
    return m.group(1) if m else None


@dataclass
class Checkpoint:
    timestamp: str = ""
    molecule_id: Optional[str] = None
    current_step: Optional[str] = None
    step_title: Optional[str] = None
    hooked_bead: Optional[str] = None
    branch: Optional[str] = None
    last_commit: Optional[str] = None
    modified_files: list[str] = field(default_factory=list)
    notes: Optional[str] = None
    session_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Checkpoint":
        known = {k: data.get(k) for k in cls.__dataclass_fields__ if k in data}
        cp = cls(**known)
        if not isinstance(cp.modified_files, list):
            cp.modified_files = []
        return cp

    def age(self, now: datetime | None = None) -> timedelta | None:
        ts = parse_iso(self.timestamp)
        if ts is None:
            return None
        return (now or datetime.now(timezone.utc)) - ts

    def is_stale(self, max_age: timedelta = timedelta(hours=CHECKPOINT_STALE_HOURS)) -> bool:
        age = self.age()
        return age is None or age > max_age

    def summary(self) -> str:
        parts = []
        if self.molecule_id:
            step = f" step {self.current_step}" if self.current_step else ""
            parts.append(f"totem {self.molecule_id}{step}")
        if self.hooked_bead:
            parts.append(f"hooked {self.hooked_bead}")
        if self.branch:
            parts.append(f"on {self.branch}")
        if self.modified_files:
            parts.append(f"{len(self.modified_files)} modified")
        return ", ".join(parts) or "empty checkpoint"


def checkpoint_path(worktree: str | Path) -> Path:
    return Path(worktree) / CHECKPOINT_FILE


def write(worktree: str | Path, cp: Checkpoint) -> Path:
    if not cp.timestamp:
        cp.timestamp = now_iso()
    path = checkpoint_path(worktree)
    write_json(path, {k: v for k, v in asdict(cp).items() if v not in (None, "")})
    return path


def read(worktree: str | Path) -> Checkpoint | None:
    data = read_json(checkpoint_path(worktree))
    return Checkpoint.from_dict(data) if data is not None else None


def clear(worktree: str | Path) -> bool:
    try:
        os.unlink(checkpoint_path(worktree))
    except FileNotFoundError:
        return False
    return True


def capture(
    worktree: str | Path,
    git: Git,
    hooked: str | None = None,
    molecule_id: str | None = None,
    step: str | None = None,
    step_title: str | None = None,
    notes: str | None = None,
) -> Checkpoint:
    """Build a checkpoint from the worktree's git state."""
    cp = Checkpoint(
        hooked_bead=hooked,
        molecule_id=molecule_id,
        current_step=step,
        step_title=step_title,
        notes=notes,
        session_id=os.getenv(ENV_RUNTIME_SESSION_ID) or os.getenv(ENV_SESSION_ID),
    )
    if cp.molecule_id is None and hooked:
        cp.molecule_id = extract_step_id(hooked)
        if cp.molecule_id and cp.current_step is None:
            cp.current_step = hooked
    try:
        cp.branch = git.current_branch()
        cp.last_commit = git.last_commit().get("sha")
        cp.modified_files = git.modified_files()
    except CollaboratorError as exc:
        log.warning("capture: git state unavailable in %s: %s", worktree, exc)
    return cp


# ---------------------------------------------------------------------------
# checkpoint subcommands
# ---------------------------------------------------------------------------


def _hooked_for(ctx: "HordeContext", worktree: Path) -> str | None:
    from horde.agents import AgentStore
    from horde.roles import resolve_role

    try:
        record = AgentStore(ctx).get(resolve_role(worktree).identity)
    except HordeError as exc:
        log.debug("checkpoint: no agent record for %s: %s", worktree, exc)
        return None
    return record.hook_slot if record else None


def checkpoint_write(
    ctx: "HordeContext",
    worktree: str | Path,
    notes: str | None = None,
    totem: str | None = None,
    step: str | None = None,
    step_title: str | None = None,
) -> dict[str, object]:
    worktree = Path(worktree)
    cp = capture(worktree, ctx.git(worktree), _hooked_for(ctx, worktree), totem, step, step_title, notes)
    path = write(worktree, cp)
    return {"status": "written", "path": str(path), "summary": cp.summary()}


def checkpoint_read(worktree: str | Path) -> dict[str, object]:
    cp = read(worktree)
    if cp is None:
        return {"status": "none", "path": str(checkpoint_path(worktree))}
    age = cp.age()
    data: dict[str, object] = {k: v for k, v in asdict(cp).items() if v not in (None, "", [])}
    data["age_seconds"] = int(age.total_seconds()) if age is not None else None
    data["stale"] = cp.is_stale()
    data["summary"] = cp.summary()
    return data


def checkpoint_clear(worktree: str | Path) -> dict[str, object]:
    return {"status": "cleared" if clear(worktree) else "none", "path": str(checkpoint_path(worktree))}
