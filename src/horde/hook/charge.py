"""Charge — hook a work item on an agent, spawning a raider when needed.

Preflight runs before any side effect: a pinned, hooked or closed item, or an
agent whose hook already holds live work, refuses without spawning anything.
The agent record's hook slot is written before the work item so a reader
that sees ``hooked`` always finds the record pointing back.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from horde.agents import AgentStore
from horde.errors import AlreadyPinned, CollaboratorError, HordeError, PreflightError, WorkItemNotFound
from horde.identity import AgentIdentity, Role, parse_address
from horde.ledger.client import is_closed
from horde.ledger.fields import set_fields
from horde.session import nudge, start_session

from ._helpers import HOOKED, LIVE_STATUSES, PINNED, _warn, actor, parse_target, reconcile_hook

if TYPE_CHECKING:
    from horde.context import HordeContext

log = logging.getLogger(__name__)


def start_prompt(item_id: str, title: str) -> str:
    return f"Work hooked: {item_id} ({title}). Run `hd hook` to review it and begin."


def _preflight_item(item_id: str, item: dict | None, force: bool) -> dict:
    if item is None:
        raise WorkItemNotFound(item_id)
    status = item.get("status")
    if is_closed(item):
        raise PreflightError(f"{item_id} is {status}", remedy=f"reopen it first: rl reopen {item_id}")
    if (status == PINNED or status in LIVE_STATUSES) and not force:
        holder = item.get("assignee") or "unassigned"
        raise AlreadyPinned(item_id, f"status {status}, assignee {holder}")
    return item


def _preflight_agent(ctx: "HordeContext", identity: AgentIdentity, item_id: str, force: bool) -> str | None:
    """Return the item currently on the agent's hook when it must be released first."""
    state = reconcile_hook(ctx, identity)
    current = state["hook"]
    if not current or current == item_id:
        return None
    if not force:
        raise PreflightError(
            f"{identity.address} already has {current} on its hook",
            remedy=f"finish it, run `hd unsling {current} {identity.address}`, or pass --force",
        )
    return str(current)


def _release(ctx: "HordeContext", identity: AgentIdentity, item_id: str, warnings: list[str]) -> None:
    try:
        item = ctx.router.show(item_id)
        if item and item.get("status") in LIVE_STATUSES and item.get("assignee") == identity.address:
            ctx.router.client_for(item_id).update(item_id, status="open", assignee="")
    except HordeError as exc:
        _warn(warnings, f"releasing {item_id} from {identity.address} failed: {exc}")


def _detach_holder(store: AgentStore, item_id: str, item: dict, identity: AgentIdentity,
                   warnings: list[str]) -> str | None:
    """Clear the hook of the agent a forced charge takes ``item_id`` from."""
    holder = item.get("assignee")
    if item.get("status") not in LIVE_STATUSES or not holder or holder == identity.address:
        return None
    try:
        previous = parse_address(holder)
        record = store.get(previous)
        if record is not None and record.hook_slot == item_id:
            store.set_hook(previous, None)
    except (HordeError, ValueError) as exc:
        _warn(warnings, f"clearing hook on {holder} failed: {exc}")
        return None
    return holder


def _needs_worktree(ctx: "HordeContext", identity: AgentIdentity) -> bool:
    return identity.role is Role.RAIDER and not ctx.home(identity).exists()


def charge(
    ctx: "HordeContext",
    item_id: str,
    target: str | None = None,
    create: bool = False,
    force: bool = False,
    args: str | None = None,
    no_raid: bool = False,
    dry_run: bool = False,
    no_nudge: bool = False,
    runtime: str | None = None,
) -> dict[str, object]:
    """Assign ``item_id`` to ``target`` (default: the current agent).

    ``target`` may be an agent address or a warband name; a warband spawns a
    fresh raider. ``create`` also spawns a named raider that does not exist.
    """
    warnings: list[str] = []
    try:
        client = ctx.router.client_for(item_id)
        item = _preflight_item(item_id, client.show(item_id), force)
        identity, spawn_rig = parse_target(ctx, target)
        if identity is not None and _needs_worktree(ctx, identity):
            if not create:
                raise PreflightError(
                    f"raider {identity.address} does not exist",
                    remedy=f"pass --create, or target the warband: hd charge {item_id} {identity.rig}",
                )
            spawn_rig = identity.rig
        previous = _preflight_agent(ctx, identity, item_id, force) if identity and not spawn_rig else None
        client.check_version()
    except HordeError as exc:
        return exc.to_result()

    title = item.get("title", "")
    dispatcher = actor(ctx)
    if dry_run:
        return {
            "status": "dry-run",
            "item": item_id,
            "title": title,
            "target": identity.address if identity else f"{spawn_rig}/raiders/<new>",
            "spawn": bool(spawn_rig),
            "release": previous,
            "dispatched_by": dispatcher,
            "raid": not no_raid,
        }

    spawned = None
    if spawn_rig:
        from horde.raiders import spawn_worktree

        try:
            spawned = spawn_worktree(ctx, spawn_rig, identity.name if identity else None)
        except HordeError as exc:
            return exc.to_result()
        identity = AgentIdentity.raider(spawn_rig, str(spawned["name"]))

    store = AgentStore(ctx)
    try:
        store.ensure(identity)
        if previous:
            _release(ctx, identity, previous, warnings)
        taken_from = _detach_holder(store, item_id, item, identity, warnings)
        store.set_hook(identity, item_id)
        description = set_fields(item.get("description"), {
            "dispatched_by": dispatcher,
            "attached_args": args,
        })
        client.update(item_id, status=HOOKED, assignee=identity.address, description=description)
    except HordeError as exc:
        return exc.to_result()
    log.info("charge: %s hooked on %s by %s", item_id, identity.address, dispatcher)

    result: dict[str, object] = {
        "status": "hooked",
        "item": item_id,
        "title": title,
        "target": identity.address,
        "session": ctx.session_name(identity),
        "spawned": spawned is not None,
        "dispatched_by": dispatcher,
    }
    if taken_from:
        result["taken_from"] = taken_from
    if spawned:
        result["worktree"] = spawned["path"]
        result["branch"] = spawned["branch"]

    if not no_raid:
        result["raid"] = _ensure_raid(ctx, item_id, title, dispatcher, warnings)

    try:
        session = ctx.session_name(identity)
        if spawned or not ctx.tmux.has_session(session):
            started = start_session(ctx, identity, topic="assigned", runtime_name=runtime, context=item_id)
            result["session_status"] = started["status"]
        elif not no_nudge:
            result["nudged"] = nudge(ctx, identity, start_prompt(item_id, title))
    except (HordeError, OSError) as exc:
        _warn(warnings, f"starting session for {identity.address} failed: {exc}")

    if warnings:
        result["warnings"] = warnings
    return result


def _ensure_raid(ctx: "HordeContext", item_id: str, title: str, owner: str, warnings: list[str]) -> str | None:
    from horde.raid import create, tracking_raids

    try:
        existing = tracking_raids(ctx, item_id)
        if existing:
            return existing[0]
        created = create(ctx, [item_id], name=f"Work: {title}", owner=owner)
    except (HordeError, CollaboratorError) as exc:
        _warn(warnings, f"auto-raid for {item_id} failed: {exc}")
        return None
    if "error" in created:
        _warn(warnings, f"auto-raid for {item_id} failed: {created['error']}")
        return None
    return str(created["id"])
