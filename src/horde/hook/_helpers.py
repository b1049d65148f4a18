"""Shared helpers for the charge / unsling / done protocol."""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

from horde.agents import AgentRecord, AgentStore
from horde.errors import HordeError, PreflightError
from horde.identity import AgentIdentity, parse_address
from horde.ledger.client import is_closed
from horde.roles import resolve_role

if TYPE_CHECKING:
    from horde.context import HordeContext

log = logging.getLogger(__name__)

HOOKED = "hooked"
IN_PROGRESS = "in_progress"
OPEN = "open"
PINNED = "pinned"
LIVE_STATUSES = (HOOKED, IN_PROGRESS)


def _warn(warnings: list[str], msg: str) -> None:
    """Record a best-effort failure. ``output`` prints the result entries."""
    log.info("%s", msg)
    warnings.append(msg)


def self_identity(ctx: "HordeContext") -> AgentIdentity:
    return resolve_role().identity


def actor(ctx: "HordeContext") -> str:
    """Who is acting: HD_ACTOR, else the resolved role, else the operator."""
    if ctx.actor:
        return ctx.actor
    try:
        return self_identity(ctx).address
    except HordeError:
        return "human"


def parse_target(ctx: "HordeContext", target: str | None) -> tuple[AgentIdentity | None, str | None]:
    """Return (identity, rig_to_spawn_in). A bare warband name means a new raider."""
    if not target:
        return self_identity(ctx), None
    if target in ctx.warbands():
        return None, target
    try:
        ident = parse_address(target)
    except ValueError as exc:
        raise PreflightError(str(exc), remedy="target is <rig>, <rig>/raiders/<name>, <rig>/clan/<name>, ...") from None
    if ident.rig:
        ctx.warband(ident.rig)
    return ident, None


def reconcile_hook(ctx: "HordeContext", identity: AgentIdentity, record: AgentRecord | None = None) -> dict[str, object]:
    """Read the hook, repairing the work item when it disagrees with the record.

    The record wins: an open or reassigned item is set back to this agent,
    keeping ``in_progress`` when the work already started. A pointer to a
    closed item is cleared. A pointer to a missing item is left alone.
    """
    store = AgentStore(ctx)
    record = record or store.get(identity)
    result: dict[str, object] = {"address": identity.address, "hook": None, "item": None, "drift": []}
    if record is None or not record.hook_slot:
        return result
    hook = record.hook_slot
    result["hook"] = hook
    item = ctx.router.show(hook)
    drift: list[str] = []
    if item is None:
        drift.append(f"{hook} no longer exists")
    elif is_closed(item):
        drift.append(f"{hook} is {item.get('status')}; clearing stale hook")
        store.set_hook(identity, None)
        result["hook"] = None
    elif item.get("assignee") != identity.address or item.get("status") == OPEN:
        status = item.get("status") if item.get("status") in LIVE_STATUSES else HOOKED
        drift.append(
            f"{hook} was {item.get('status')}/{item.get('assignee') or 'unassigned'}; "
            f"restored to {status}/{identity.address}"
        )
        ctx.router.client_for(hook).update(hook, status=status, assignee=identity.address)
        item = dict(item, status=status, assignee=identity.address)
    result["item"] = item
    result["drift"] = drift
    for msg in drift:
        if ctx.debug:
            print(f"WARNING: hook drift for {identity.address}: {msg}", file=sys.stderr)
        log.debug("reconcile_hook: %s: %s", identity.address, msg)
    return result


def hook_show(ctx: "HordeContext", target: str | None = None) -> dict[str, object]:
    try:
        identity = parse_address(target) if target else self_identity(ctx)
        state = reconcile_hook(ctx, identity)
    except ValueError as exc:
        return {"error": f"BLOCKED: {exc}", "kind": "preflight"}
    except HordeError as exc:
        return exc.to_result()
    item = state["item"]
    result: dict[str, object] = {"address": identity.address, "hook": state["hook"]}
    if isinstance(item, dict):
        result["title"] = item.get("title")
        result["status"] = item.get("status")
    if ctx.debug and state["drift"]:
        result["drift"] = state["drift"]
    return result
