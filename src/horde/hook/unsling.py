"""Unsling — release an agent's hook without completing the work."""

from __future__ import annotations

from typing import TYPE_CHECKING

from horde.agents import AgentStore
from horde.errors import HordeError, PreflightError
from horde.identity import parse_address
from horde.ledger.client import is_closed
from horde.ledger.fields import set_fields

from ._helpers import LIVE_STATUSES, self_identity

if TYPE_CHECKING:
    from horde.context import HordeContext


def unsling(ctx: "HordeContext", item_id: str | None = None, target: str | None = None,
            force: bool = False) -> dict[str, object]:
    """Clear the hook. Incomplete work needs ``force``; a hooked item reverts to open."""
    try:
        identity = parse_address(target) if target else self_identity(ctx)
    except ValueError as exc:
        return {"error": f"BLOCKED: {exc}", "kind": "preflight"}
    except HordeError as exc:
        return exc.to_result()

    store = AgentStore(ctx)
    try:
        record = store.get(identity)
        if record is None:
            raise PreflightError(f"no agent record for {identity.address}")
        hooked = record.hook_slot
        if item_id and hooked and hooked != item_id:
            raise PreflightError(f"{item_id} is not on {identity.address}'s hook (hook holds {hooked})")
        hooked = hooked or item_id
        if not hooked:
            return {"status": "empty", "address": identity.address}
        item = ctx.router.show(hooked)
        if not is_closed(item) and not force:
            state = item.get("status") if item else "missing"
            raise PreflightError(
                f"hooked work {hooked} is incomplete ({state})",
                remedy=f"close it first or pass --force: hd unsling {hooked} {identity.address} --force",
            )
        if record.hook_slot:
            store.set_hook(identity, None)
        reverted = False
        if item and item.get("status") in LIVE_STATUSES and item.get("assignee") == identity.address:
            description = set_fields(item.get("description"), {"dispatched_by": None, "attached_args": None})
            ctx.router.client_for(hooked).update(hooked, status="open", assignee="", description=description)
            reverted = True
    except HordeError as exc:
        return exc.to_result()
    return {
        "status": "released",
        "address": identity.address,
        "item": hooked,
        "reverted": reverted,
        "missing": item is None,
    }
