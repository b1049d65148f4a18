"""Raid progress views: status, list and stranded detection."""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING

from horde.defaults import MAX_WORKERS
from horde.errors import HordeError, PreflightError
from horde.identity import parse_address
from horde.ledger.client import CLOSED_STATUSES, is_closed

from ._helpers import BLOCKING_DEPS, RAID_TYPE, load_raid, open_raids, subscribers, tracked_ids

if TYPE_CHECKING:
    from horde.context import HordeContext

SYMBOLS = {"closed": "✓", "tombstone": "✓", "in_progress": "▶", "hooked": "▶"}


def status_symbol(status: str | None) -> str:
    return SYMBOLS.get(status or "", "○")


def format_age(seconds: float) -> str:
    if seconds < 60:
        return "<1m"
    if seconds < 3600:
        return f"{int(seconds // 60)}m"
    if seconds < 86400:
        return f"{int(seconds // 3600)}h"
    return f"{int(seconds // 86400)}d"


def _session_for(ctx: "HordeContext", assignee: str) -> str | None:
    try:
        return ctx.session_name(parse_address(assignee))
    except (ValueError, HordeError):
        return None


def _worker(ctx: "HordeContext", assignee: str | None) -> dict[str, object] | None:
    if not assignee:
        return None
    session = _session_for(ctx, assignee)
    activity = ctx.tmux.session_activity(session) if session and ctx.tmux.has_session(session) else None
    return {
        "address": assignee,
        "session": session,
        "alive": activity is not None,
        "age": format_age(time.time() - activity) if activity is not None else None,
    }


def resolve_raid_number(ctx: "HordeContext", value: str) -> str:
    """``N`` names the N-th open raid, oldest first."""
    if not value.isdigit():
        return value
    raids = open_raids(ctx)
    n = int(value)
    if n < 1 or n > len(raids):
        raise PreflightError(f"raid {n} not found (have {len(raids)} open raids)")
    return raids[n - 1]["id"]


def _progress(ctx: "HordeContext", raid: dict, items: dict[str, dict]) -> dict[str, object]:
    ids = tracked_ids(raid)
    rows = []
    for item_id in ids:
        item = items.get(item_id)
        row_status = item.get("status") if item else "missing"
        rows.append({
            "id": item_id,
            "title": item.get("title") if item else None,
            "status": row_status,
            "symbol": status_symbol(row_status),
            "assignee": item.get("assignee") if item else None,
        })
    open_rows = [r for r in rows if r["status"] not in CLOSED_STATUSES and r["assignee"]]
    if open_rows:
        with ThreadPoolExecutor(max_workers=min(MAX_WORKERS, len(open_rows))) as pool:
            workers = list(pool.map(lambda r: _worker(ctx, r["assignee"]), open_rows))
        for row, worker in zip(open_rows, workers):
            row["worker"] = worker
    done = sum(1 for r in rows if r["status"] in CLOSED_STATUSES)
    return {
        "id": raid["id"],
        "title": raid.get("title"),
        "status": raid.get("status"),
        "completed": done,
        "total": len(rows),
        "progress": f"{done}/{len(rows)}",
        "subscribers": subscribers(raid),
        "items": rows,
    }


def status(ctx: "HordeContext", raid_id: str | None = None) -> dict[str, object]:
    """Progress of one raid, or a roll-up of every open raid."""
    try:
        if raid_id:
            raid = load_raid(ctx, resolve_raid_number(ctx, raid_id))
            return _progress(ctx, raid, ctx.router.show_many(tracked_ids(raid)))
        raids = open_raids(ctx)
        items = ctx.router.show_many(sorted({i for r in raids for i in tracked_ids(r)}))
    except HordeError as exc:
        return exc.to_result()
    summaries = []
    for raid in raids:
        ids = tracked_ids(raid)
        done = sum(1 for i in ids if is_closed(items.get(i)))
        summaries.append({"id": raid["id"], "title": raid.get("title"), "progress": f"{done}/{len(ids)}"})
    return {"count": len(summaries), "raids": summaries}


def list_raids(ctx: "HordeContext", include_all: bool = False, status_filter: str | None = None) -> dict[str, object]:
    try:
        raids = ctx.hq.list(issue_type=RAID_TYPE, status=status_filter, include_closed=include_all)
    except HordeError as exc:
        return exc.to_result()
    raids.sort(key=lambda r: (r.get("created_at") or "", r["id"]))
    rows = [{"n": n, "id": r["id"], "title": r.get("title"), "status": r.get("status"),
             "created_at": r.get("created_at")} for n, r in enumerate(raids, 1)]
    return {"count": len(rows), "raids": rows}


def _blocked(item: dict) -> bool:
    return any(
        dep.get("dependency_type") in BLOCKING_DEPS and dep.get("status") not in CLOSED_STATUSES
        for dep in item.get("dependencies") or []
    )


def _ready(ctx: "HordeContext", item: dict | None) -> bool:
    """Open, unblocked, and nobody alive working it."""
    if item is None or item.get("status") != "open" or _blocked(item):
        return False
    assignee = item.get("assignee")
    if not assignee:
        return True
    session = _session_for(ctx, assignee)
    return session is None or not ctx.tmux.has_session(session)


def stranded(ctx: "HordeContext") -> dict[str, object]:
    """Open raids with tracked work that no live agent is doing."""
    try:
        raids = open_raids(ctx)
        items = ctx.router.show_many(sorted({i for r in raids for i in tracked_ids(r)}))
    except HordeError as exc:
        return exc.to_result()
    candidates = sorted({i for r in raids for i in tracked_ids(r) if i in items})
    ready: dict[str, bool] = {}
    if candidates:
        with ThreadPoolExecutor(max_workers=min(MAX_WORKERS, len(candidates))) as pool:
            ready = dict(zip(candidates, pool.map(lambda i: _ready(ctx, items[i]), candidates)))
    out = []
    for raid in raids:
        ids = [i for i in tracked_ids(raid) if ready.get(i)]
        if ids:
            out.append({"id": raid["id"], "title": raid.get("title"),
                        "ready_count": len(ids), "ready_issues": ids})
    return {"count": len(out), "raids": out}
