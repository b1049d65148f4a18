"""Raid lifecycle: create, add, close and the auto-close sweep."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from horde.errors import HordeError, UnknownPrefix, WorkItemNotFound
from horde.ledger.client import is_closed

from ._helpers import (
    RAID_TYPE,
    TRACKS,
    load_raid,
    new_raid_id,
    notify_subscribers,
    open_raids,
    subscribers,
    tracked_ids,
)

if TYPE_CHECKING:
    from horde.context import HordeContext

log = logging.getLogger(__name__)

AUTO_CLOSE_REASON = "All tracked issues completed"


def _track(ctx: "HordeContext", raid_id: str, item_id: str) -> str | None:
    """Add a ``tracks`` edge; returns a warning on failure."""
    try:
        ctx.hq.dep_add(raid_id, ctx.router.encode_for_hq(item_id), TRACKS)
    except HordeError as exc:
        log.info("_track: %s on %s failed: %s", item_id, raid_id, exc)
        return f"tracking {item_id} failed: {exc}"
    return None


def create(
    ctx: "HordeContext",
    items: list[str],
    name: str | None = None,
    owner: str | None = None,
    notify: str | None = None,
    totem: str | None = None,
) -> dict[str, object]:
    """Create a raid tracking ``items``. Without a name, the first item's title is used."""
    try:
        found = ctx.router.show_many(items) if items else {}
        missing = [i for i in items if i not in found]
        if missing:
            raise WorkItemNotFound(missing[0])
        if not name:
            first = found.get(items[0]) if items else None
            name = (first or {}).get("title") or (f"Tracking {items[0]}" if items else "Raid")
        lines = [f"Raid tracking {len(items)} issues"]
        for label, value in (("Owner", owner), ("Notify", notify), ("Totem", totem)):
            if value:
                lines.append(f"{label}: {value}")
        description = "\n".join(lines)
        raid_id = new_raid_id()
        ctx.hq.create(title=name, issue_type=RAID_TYPE, description=description, item_id=raid_id)
    except HordeError as exc:
        return exc.to_result()
    tracked, warnings = [], []
    for item_id in items:
        warning = _track(ctx, raid_id, item_id)
        if warning:
            warnings.append(warning)
        else:
            tracked.append(item_id)
    log.info("create: raid %s tracking %d items", raid_id, len(tracked))
    result: dict[str, object] = {
        "status": "created",
        "id": raid_id,
        "title": name,
        "tracked": tracked,
        "owner": owner,
        "notify": notify,
    }
    if warnings:
        result["warnings"] = warnings
    return result


def add(ctx: "HordeContext", raid_id: str, items: list[str]) -> dict[str, object]:
    """Track more items. A closed raid is reopened first; existing edges are skipped."""
    try:
        raid = load_raid(ctx, raid_id)
        found = ctx.router.show_many(items)
        missing = [i for i in items if i not in found]
        if missing:
            raise WorkItemNotFound(missing[0])
        reopened = False
        if is_closed(raid):
            ctx.hq.reopen(raid_id)
            reopened = True
    except HordeError as exc:
        return exc.to_result()
    existing = set(tracked_ids(raid))
    added, skipped, warnings = [], [], []
    for item_id in items:
        if item_id in existing:
            skipped.append(item_id)
            continue
        warning = _track(ctx, raid_id, item_id)
        if warning:
            warnings.append(warning)
        else:
            added.append(item_id)
            existing.add(item_id)
    result: dict[str, object] = {"status": "updated", "id": raid_id, "added": added,
                                 "skipped": skipped, "reopened": reopened}
    if warnings:
        result["warnings"] = warnings
    return result


def _landed(raid: dict, reason: str) -> tuple[str, str]:
    return f"Raid landed: {raid.get('title', raid['id'])}", f"Raid {raid['id']} has been closed.\n\nReason: {reason}"


def close(ctx: "HordeContext", raid_id: str, reason: str | None = None,
          notify_addr: str | None = None) -> dict[str, object]:
    try:
        raid = load_raid(ctx, raid_id)
        if is_closed(raid):
            return {"status": "already_closed", "id": raid_id}
        reason = reason or "Closed manually"
        ctx.hq.close(raid_id, reason=reason)
    except HordeError as exc:
        return exc.to_result()
    subject, body = _landed(raid, reason)
    sent, warnings = notify_subscribers(ctx, raid, [notify_addr] if notify_addr else subscribers(raid), subject, body)
    result: dict[str, object] = {"status": "closed", "id": raid_id, "reason": reason, "notified": sent}
    if warnings:
        result["warnings"] = warnings
    return result


def _split_routable(ctx: "HordeContext", ids: set[str]) -> tuple[list[str], set[str]]:
    routable, unroutable = [], set()
    for item_id in sorted(ids):
        try:
            ctx.router.prefix_for(item_id)
        except UnknownPrefix:
            unroutable.add(item_id)
            continue
        routable.append(item_id)
    return routable, unroutable


def check(ctx: "HordeContext") -> dict[str, object]:
    """Close every open raid whose tracked items are all closed, notifying once each."""
    try:
        raids = open_raids(ctx)
        wanted, unroutable = _split_routable(ctx, {i for raid in raids for i in tracked_ids(raid)})
        statuses = ctx.router.show_many(wanted)
    except HordeError as exc:
        return exc.to_result()
    closed, warnings = [], []
    for raid in raids:
        ids = tracked_ids(raid)
        if not ids:
            continue
        lost = [i for i in ids if i in unroutable]
        if lost:
            warnings.append(f"raid {raid['id']}: no route for {', '.join(lost)}; skipped")
            continue
        if not all(is_closed(statuses.get(i)) for i in ids):
            continue
        try:
            ctx.hq.close(raid["id"], reason=AUTO_CLOSE_REASON)
        except HordeError as exc:
            warnings.append(f"closing {raid['id']} failed: {exc}")
            continue
        subject, body = _landed(raid, AUTO_CLOSE_REASON)
        sent, notify_warnings = notify_subscribers(ctx, raid, subscribers(raid), subject, body)
        warnings.extend(notify_warnings)
        closed.append({"id": raid["id"], "title": raid.get("title"), "notified": sent})
    result: dict[str, object] = {"checked": len(raids), "closed": closed}
    if warnings:
        result["warnings"] = warnings
    return result
