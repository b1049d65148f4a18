"""Raider manager — ephemeral per-task agents in isolated worktrees.

A raider lives at ``<rig>/raiders/<name>/warband``, a git worktree of the
warband's canonical clone on a fresh ``raider/<name>-<timestamp>`` branch.
"""

from __future__ import annotations

import logging
import shutil
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from horde.agents import AgentStore
from horde.defaults import MAX_WORKERS
from horde.errors import CollaboratorError, GuardError, HordeError, PreflightError
from horde.fs import parse_iso
from horde.git import detect_cleanup_status
from horde.identity import AgentIdentity, Role, parse_address, valid_name
from horde.lifecycle import EventKind, log_event
from horde.namepool import allocate_name

if TYPE_CHECKING:
    from horde.context import HordeContext

log = logging.getLogger(__name__)


def raider_branch(name: str, now: datetime | None = None) -> str:
    return f"raider/{name}-{(now or datetime.now()).strftime('%Y%m%d%H%M%S')}"


def _identity(address: str) -> AgentIdentity:
    try:
        ident = parse_address(address)
    except ValueError as exc:
        raise PreflightError(str(exc)) from None
    if ident.role is not Role.RAIDER:
        raise PreflightError(f"{address} is not a raider address (<rig>/raiders/<name>)")
    return ident


def _session_alive(ctx: "HordeContext", ident: AgentIdentity) -> bool:
    return ctx.tmux.has_session(ctx.session_name(ident))


# ---------------------------------------------------------------------------
# add
# ---------------------------------------------------------------------------


def spawn_worktree(ctx: "HordeContext", rig: str, name: str | None = None) -> dict[str, object]:
    """Allocate a name, create the worktree and branch, then the agent record.

    Raises HordeError; callers convert.
    """
    wb = ctx.warband(rig)
    taken = set(wb.raider_names())
    if name is None:
        name = allocate_name(wb.path, taken)
    elif not valid_name(name):
        raise PreflightError(f"invalid raider name '{name}'")
    elif name in taken:
        raise PreflightError(f"raider '{rig}/raiders/{name}' already exists")
    ident = AgentIdentity.raider(rig, name)
    path = ident.home(ctx.root)
    branch = raider_branch(name)
    path.parent.mkdir(parents=True, exist_ok=True)
    clone = ctx.git(wb.clone_path)
    try:
        clone.fetch()
        base = f"origin/{wb.default_branch}"
    except CollaboratorError as exc:
        log.warning("spawn_worktree: fetch failed in %s, branching from local HEAD: %s", wb.clone_path, exc)
        base = wb.default_branch if clone.rev_exists(wb.default_branch) else "HEAD"
    clone.worktree_add(path, branch, base)
    record = AgentStore(ctx).ensure(ident)
    return {"name": name, "address": ident.address, "path": str(path), "branch": branch, "record": record.id}


def add(ctx: "HordeContext", rig: str, name: str | None = None) -> dict[str, object]:
    try:
        result = spawn_worktree(ctx, rig, name)
    except HordeError as exc:
        return exc.to_result()
    return {"status": "added", **result}


# ---------------------------------------------------------------------------
# list / state
# ---------------------------------------------------------------------------


def _raider_row(ctx: "HordeContext", ident: AgentIdentity) -> dict[str, object]:
    path = ident.home(ctx.root)
    row: dict[str, object] = {
        "address": ident.address,
        "name": ident.name,
        "rig": ident.rig,
        "session": ctx.session_name(ident),
        "running": _session_alive(ctx, ident),
        "path": str(path),
    }
    try:
        row["branch"] = ctx.git(path).current_branch()
    except CollaboratorError:
        row["branch"] = None
    try:
        record = AgentStore(ctx).get(ident)
    except HordeError as exc:
        log.warning("list: record for %s unavailable: %s", ident.address, exc)
        record = None
    row["hook"] = record.hook_slot if record else None
    row["state"] = (record.state if record and record.state else
                    ("working" if row["running"] and row["hook"] else "idle" if row["running"] else "done"))
    return row


def list_raiders(ctx: "HordeContext", rig: str | None = None) -> dict[str, object]:
    try:
        rigs = [ctx.warband(rig)] if rig else list(ctx.warbands().values())
    except HordeError as exc:
        return exc.to_result()
    idents = [AgentIdentity.raider(wb.name, n) for wb in rigs for n in wb.raider_names()]
    if not idents:
        return {"raiders": [], "count": 0}
    with ThreadPoolExecutor(max_workers=min(MAX_WORKERS, len(idents))) as pool:
        rows = list(pool.map(lambda i: _raider_row(ctx, i), idents))
    return {"raiders": rows, "count": len(rows)}


def git_state(ctx: "HordeContext", address: str) -> dict[str, object]:
    try:
        ident = _identity(address)
        wb = ctx.warband(ident.rig)
        path = ident.home(ctx.root)
        if not path.is_dir():
            raise PreflightError(f"worktree {path} does not exist")
        git = ctx.git(path)
        branch = git.current_branch()
        return {
            "address": ident.address,
            "branch": branch,
            "uncommitted": git.modified_files(),
            "stash_count": git.stash_count(),
            "unpushed": git.unpushed_count(branch, wb.default_branch),
            "last_commit": git.last_commit(),
            "cleanup_status": detect_cleanup_status(git, wb.default_branch),
        }
    except HordeError as exc:
        return exc.to_result()


def check_recovery(ctx: "HordeContext", address: str) -> dict[str, object]:
    """Does a dead raider hold work that someone must recover?"""
    try:
        ident = _identity(address)
        wb = ctx.warband(ident.rig)
        record = AgentStore(ctx).get(ident)
    except HordeError as exc:
        return exc.to_result()
    path = ident.home(ctx.root)
    alive = _session_alive(ctx, ident)
    cleanup = detect_cleanup_status(ctx.git(path), wb.default_branch) if path.is_dir() else "unknown"
    hook = record.hook_slot if record else None
    reasons = []
    if not alive and hook:
        reasons.append(f"hooked {hook} with no session")
    if not alive and cleanup not in ("clean", "unknown"):
        reasons.append(f"worktree is {cleanup}")
    return {
        "address": ident.address,
        "running": alive,
        "hook": hook,
        "cleanup_status": cleanup,
        "needs_recovery": bool(reasons),
        "reasons": reasons,
    }


def stale(ctx: "HordeContext", rig: str | None = None, hours: float = 24.0) -> dict[str, object]:
    """Raiders with no session whose last commit is older than ``hours``."""
    listing = list_raiders(ctx, rig)
    if "error" in listing:
        return listing
    cutoff = time.time() - hours * 3600
    found = []
    for row in listing["raiders"]:
        if row["running"]:
            continue
        last = ctx.git(row["path"]).last_commit() if Path(str(row["path"])).is_dir() else {}
        when = parse_iso(last.get("date", ""))
        if when is None or when.timestamp() < cutoff:
            found.append({"address": row["address"], "last_commit": last.get("date"), "hook": row["hook"]})
    return {"stale": found, "count": len(found), "hours": hours}


# ---------------------------------------------------------------------------
# remove / nuke / gc
# ---------------------------------------------------------------------------


def _delete_worktree(ctx: "HordeContext", ident: AgentIdentity, force: bool) -> list[str]:
    wb = ctx.warband(ident.rig)
    path = ident.home(ctx.root)
    warnings = []
    branch = None
    if path.is_dir():
        try:
            branch = ctx.git(path).current_branch()
        except CollaboratorError as exc:
            warnings.append(f"branch lookup failed: {exc.stderr}")
        try:
            ctx.git(wb.clone_path).worktree_remove(path, force=force)
        except CollaboratorError as exc:
            warnings.append(f"worktree remove failed: {exc.stderr}")
    shutil.rmtree(path.parent, ignore_errors=True)
    try:
        ctx.git(wb.clone_path).worktree_prune()
        if branch and branch.startswith("raider/"):
            ctx.git(wb.clone_path).branch_delete(branch, force=True)
    except CollaboratorError as exc:
        warnings.append(f"branch cleanup failed: {exc.stderr}")
    return warnings


def remove(ctx: "HordeContext", address: str, force: bool = False) -> dict[str, object]:
    """Remove the worktree and session; the agent record survives."""
    try:
        ident = _identity(address)
        wb = ctx.warband(ident.rig)
        path = ident.home(ctx.root)
        if path.is_dir() and not force:
            status = detect_cleanup_status(ctx.git(path), wb.default_branch)
            if status != "clean":
                raise GuardError(f"{ident.address} has {status} work", remedy="push it first or pass --force")
    except HordeError as exc:
        return exc.to_result()
    killed = ctx.tmux.kill_session(ctx.session_name(ident))
    if killed:
        log_event(ctx.root, EventKind.KILL, ident.address, "raider remove")
    warnings = _delete_worktree(ctx, ident, force=True)
    result: dict[str, object] = {"status": "removed", "address": ident.address, "session_killed": killed}
    if warnings:
        result["warnings"] = warnings
    return result


def nuke(ctx: "HordeContext", address: str) -> dict[str, object]:
    """Session, worktree, branch and agent record: everything goes."""
    try:
        ident = _identity(address)
        ctx.warband(ident.rig)
    except HordeError as exc:
        return exc.to_result()
    killed = ctx.tmux.kill_session(ctx.session_name(ident))
    warnings = _delete_worktree(ctx, ident, force=True)
    try:
        record_deleted = AgentStore(ctx).nuke(ident)
    except HordeError as exc:
        warnings.append(f"record delete failed: {exc}")
        record_deleted = False
    log_event(ctx.root, EventKind.KILL, ident.address, "nuke")
    result: dict[str, object] = {"status": "nuked", "address": ident.address,
                                 "session_killed": killed, "record_deleted": record_deleted}
    if warnings:
        result["warnings"] = warnings
    return result


def gc(ctx: "HordeContext", rig: str | None = None) -> dict[str, object]:
    """Delete merged ``raider/*`` branches that no longer back a worktree."""
    try:
        rigs = [ctx.warband(rig)] if rig else list(ctx.warbands().values())
    except HordeError as exc:
        return exc.to_result()
    deleted, warnings = [], []
    for wb in rigs:
        clone = ctx.git(wb.clone_path)
        live = set()
        for name in wb.raider_names():
            try:
                live.add(ctx.git(AgentIdentity.raider(wb.name, name).home(ctx.root)).current_branch())
            except CollaboratorError:
                continue
        try:
            clone.worktree_prune()
            merged = clone.merged_branches(wb.default_branch, "raider/*")
        except CollaboratorError as exc:
            warnings.append(f"{wb.name}: {exc.stderr}")
            continue
        for branch in merged:
            if branch in live:
                continue
            try:
                clone.branch_delete(branch)
                deleted.append(f"{wb.name}:{branch}")
            except CollaboratorError as exc:
                warnings.append(f"{wb.name}:{branch}: {exc.stderr}")
    result: dict[str, object] = {"status": "ok", "deleted": deleted, "count": len(deleted),
                                 "checked_at": datetime.now(timezone.utc).isoformat(timespec="seconds")}
    if warnings:
        result["warnings"] = warnings
    return result
