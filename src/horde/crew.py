"""Crew workers — persistent, operator-managed agents in their own worktrees."""

from __future__ import annotations

import logging
import shutil
from typing import TYPE_CHECKING

from horde import drums
from horde.agents import AgentStore
from horde.errors import CollaboratorError, GuardError, HordeError, PreflightError
from horde.git import detect_cleanup_status
from horde.identity import AgentIdentity, valid_name
from horde.lifecycle import EventKind, log_event
from horde.session import is_agent_running, restart_session, start_session, stop_session

if TYPE_CHECKING:
    from horde.context import HordeContext

log = logging.getLogger(__name__)


def crew_branch(name: str) -> str:
    return f"clan/{name}"


def _existing(ctx: "HordeContext", rig: str, name: str) -> AgentIdentity:
    ctx.warband(rig)
    ident = AgentIdentity.crew(rig, name)
    if not ident.home(ctx.root).is_dir():
        raise PreflightError(f"crew worker {ident.address} does not exist", remedy=f"hd crew add {rig} {name}")
    return ident


def add(ctx: "HordeContext", rig: str, name: str) -> dict[str, object]:
    try:
        wb = ctx.warband(rig)
        if not valid_name(name):
            raise PreflightError(f"invalid crew name '{name}'")
        ident = AgentIdentity.crew(rig, name)
        path = ident.home(ctx.root)
        if path.exists():
            raise PreflightError(f"crew worker {ident.address} already exists")
        path.parent.mkdir(parents=True, exist_ok=True)
        clone = ctx.git(wb.clone_path)
        branch = crew_branch(name)
        try:
            clone.fetch()
            base = f"origin/{wb.default_branch}"
        except CollaboratorError as exc:
            log.warning("crew add: fetch failed, branching from %s: %s", wb.default_branch, exc)
            base = wb.default_branch
        clone.worktree_add(path, branch, base)
        record = AgentStore(ctx).ensure(ident)
    except HordeError as exc:
        return exc.to_result()
    return {"status": "added", "address": ident.address, "path": str(path), "branch": branch, "record": record.id}


def start(ctx: "HordeContext", rig: str, name: str, runtime: str | None = None) -> dict[str, object]:
    try:
        ident = _existing(ctx, rig, name)
        AgentStore(ctx).ensure(ident)
        result = start_session(ctx, ident, topic="start", runtime_name=runtime)
    except HordeError as exc:
        return exc.to_result()
    return {"address": ident.address, **result}


def stop(ctx: "HordeContext", rig: str, name: str) -> dict[str, object]:
    try:
        ident = _existing(ctx, rig, name)
    except HordeError as exc:
        return exc.to_result()
    stopped = stop_session(ctx, ident, "crew stop")
    return {"status": "stopped" if stopped else "not_running", "address": ident.address,
            "session": ctx.session_name(ident)}


def at(ctx: "HordeContext", rig: str, name: str, attach: bool = True) -> dict[str, object]:
    """Start if needed, then attach the operator's terminal."""
    result = start(ctx, rig, name)
    if "error" in result:
        return result
    if attach:
        ctx.tmux.attach(str(result["session"]))
    return result


def restart(ctx: "HordeContext", rig: str, name: str) -> dict[str, object]:
    try:
        ident = _existing(ctx, rig, name)
        result = restart_session(ctx, ident)
    except HordeError as exc:
        return exc.to_result()
    return {"address": ident.address, **result}


def refresh(ctx: "HordeContext", rig: str, name: str, message: str = "") -> dict[str, object]:
    """Hand off to a fresh context: drums-to-self, then restart with topic handoff."""
    try:
        ident = _existing(ctx, rig, name)
    except HordeError as exc:
        return exc.to_result()
    body = message or "Context refresh requested. Resume from your hook and recent drums."
    sent = drums.send(ctx.root, ident.address, ident.address, "HANDOFF: refresh", body)
    if "error" in sent:
        return sent
    log_event(ctx.root, EventKind.HANDOFF, ident.address, "refresh")
    try:
        result = restart_session(ctx, ident, topic="handoff")
    except HordeError as exc:
        return exc.to_result()
    return {"address": ident.address, "handoff": sent["id"], **result}


def list_crew(ctx: "HordeContext", rig: str | None = None) -> dict[str, object]:
    try:
        rigs = [ctx.warband(rig)] if rig else list(ctx.warbands().values())
    except HordeError as exc:
        return exc.to_result()
    rows = []
    for wb in rigs:
        for name in wb.crew_names():
            ident = AgentIdentity.crew(wb.name, name)
            session = ctx.session_name(ident)
            rows.append({
                "address": ident.address,
                "session": session,
                "running": is_agent_running(ctx.tmux, session, ctx.runtimes.all_pane_commands()),
            })
    return {"crew": rows, "count": len(rows)}


def status(ctx: "HordeContext", rig: str, name: str) -> dict[str, object]:
    try:
        ident = _existing(ctx, rig, name)
        wb = ctx.warband(rig)
        record = AgentStore(ctx).get(ident)
        git = ctx.git(ident.home(ctx.root))
        branch = git.current_branch()
        cleanup = detect_cleanup_status(git, wb.default_branch)
    except HordeError as exc:
        return exc.to_result()
    session = ctx.session_name(ident)
    return {
        "address": ident.address,
        "session": session,
        "session_exists": ctx.tmux.has_session(session),
        "running": is_agent_running(ctx.tmux, session, ctx.runtimes.all_pane_commands()),
        "branch": branch,
        "cleanup_status": cleanup,
        "hook": record.hook_slot if record else None,
        "state": record.state if record else None,
        "unread": drums.inbox(ctx.root, ident.address, unread_only=True).get("count", 0),
    }


def remove(ctx: "HordeContext", rig: str, name: str, force: bool = False) -> dict[str, object]:
    try:
        ident = _existing(ctx, rig, name)
        wb = ctx.warband(rig)
        path = ident.home(ctx.root)
        if not force:
            cleanup = detect_cleanup_status(ctx.git(path), wb.default_branch)
            if cleanup != "clean":
                raise GuardError(f"{ident.address} has {cleanup} work", remedy="push it first or pass --force")
    except HordeError as exc:
        return exc.to_result()
    stop_session(ctx, ident, "crew remove")
    warnings = []
    try:
        ctx.git(wb.clone_path).worktree_remove(path, force=True)
    except CollaboratorError as exc:
        warnings.append(f"worktree remove failed: {exc.stderr}")
    shutil.rmtree(path.parent, ignore_errors=True)
    try:
        AgentStore(ctx).nuke(ident)
    except HordeError as exc:
        warnings.append(f"record delete failed: {exc}")
    result: dict[str, object] = {"status": "removed", "address": ident.address}
    if warnings:
        result["warnings"] = warnings
    return result


def rename(ctx: "HordeContext", rig: str, old: str, new: str) -> dict[str, object]:
    try:
        old_ident = _existing(ctx, rig, old)
        if not valid_name(new):
            raise PreflightError(f"invalid crew name '{new}'")
        new_ident = AgentIdentity.crew(rig, new)
        if new_ident.home(ctx.root).parent.exists():
            raise PreflightError(f"crew worker {new_ident.address} already exists")
        old_session = ctx.session_name(old_ident)
        if ctx.tmux.has_session(old_session):
            raise PreflightError(f"{old_ident.address} is running", remedy=f"hd crew stop {rig} {old}")
        wb = ctx.warband(rig)
        new_ident.home(ctx.root).parent.mkdir(parents=True)
        ctx.git(wb.clone_path).worktree_move(old_ident.home(ctx.root), new_ident.home(ctx.root))
        shutil.rmtree(old_ident.home(ctx.root).parent, ignore_errors=True)
        store = AgentStore(ctx)
        old_record = store.get(old_ident)
        new_record = store.ensure(new_ident)
        if old_record is not None:
            if old_record.hook_slot:
                store.set_hook(new_ident, old_record.hook_slot)
            store.nuke(old_ident)
    except HordeError as exc:
        return exc.to_result()
    return {"status": "renamed", "from": old_ident.address, "to": new_ident.address, "record": new_record.id}


def pristine(ctx: "HordeContext", rig: str, name: str | None = None) -> dict[str, object]:
    """Fetch and fast-forward crew worktrees. Dirty trees are skipped."""
    try:
        wb = ctx.warband(rig)
        names = [name] if name else wb.crew_names()
        idents = [_existing(ctx, rig, n) for n in names]
    except HordeError as exc:
        return exc.to_result()
    results = []
    for ident in idents:
        git = ctx.git(ident.home(ctx.root))
        entry: dict[str, object] = {"address": ident.address}
        try:
            if git.has_uncommitted():
                entry["status"] = "skipped"
                entry["reason"] = "uncommitted changes"
            else:
                git.fetch()
                entry["status"] = "updated"
                entry["output"] = git.merge_ff_only(f"origin/{wb.default_branch}")
        except CollaboratorError as exc:
            entry["status"] = "failed"
            entry["reason"] = exc.stderr
        results.append(entry)
    return {"crew": results, "count": len(results)}
