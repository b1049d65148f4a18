"""Shared raid plumbing: ids, tracked-edge expansion, notification targets."""

from __future__ import annotations

import logging
import secrets
import string
from typing import TYPE_CHECKING

from horde.defaults import HQ_PREFIX
from horde.errors import PreflightError, WorkItemNotFound
from horde.ledger.fields import parse_fields, split_list
from horde.ledger.routes import parse_ref

if TYPE_CHECKING:
    from horde.context import HordeContext

log = logging.getLogger(__name__)

RAID_TYPE = "raid"
TRACKS = "tracks"
SENDER = "raid-tracker"
BLOCKING_DEPS = ("blocks", "depends_on")

_ID_ALPHABET = string.ascii_lowercase + "234567"


def new_raid_id() -> str:
    return f"{HQ_PREFIX}-cv-" + "".join(secrets.choice(_ID_ALPHABET) for _ in range(5))


def tracked_ids(raid: dict) -> list[str]:
    """Decoded ids of the raid's ``tracks`` edges, in edge order."""
    ids = []
    for dep in raid.get("dependencies") or []:
        if dep.get("dependency_type") != TRACKS or not dep.get("id"):
            continue
        real = parse_ref(dep["id"]).id
        if real not in ids:
            ids.append(real)
    return ids


def subscribers(raid: dict) -> list[str]:
    """Distinct ``Owner:`` / ``Notify:`` addresses, owner first."""
    fields = parse_fields(raid.get("description"))
    addrs: list[str] = []
    for key in ("owner", "notify"):
        for addr in split_list(fields.get(key)):
            if addr not in addrs:
                addrs.append(addr)
    return addrs


def load_raid(ctx: "HordeContext", raid_id: str) -> dict:
    raid = ctx.hq.show(raid_id)
    if raid is None:
        raise WorkItemNotFound(raid_id)
    if raid.get("issue_type") != RAID_TYPE:
        raise PreflightError(f"{raid_id} is a {raid.get('issue_type')}, not a raid")
    return raid


def open_raids(ctx: "HordeContext") -> list[dict]:
    """Open raids with their dependency edges, oldest first."""
    listed = ctx.hq.list(issue_type=RAID_TYPE, status="open")
    if not listed:
        return []
    raids = ctx.hq.show_many([r["id"] for r in listed])
    return sorted(raids, key=lambda r: (r.get("created_at") or "", r["id"]))


def tracking_raids(ctx: "HordeContext", item_id: str) -> list[str]:
    return [r["id"] for r in open_raids(ctx) if item_id in tracked_ids(r)]


def notify_subscribers(ctx: "HordeContext", raid: dict, addresses: list[str], subject: str, body: str) -> tuple[list[str], list[str]]:
    """Send one drums message per distinct address. Returns (sent, warnings)."""
    from horde import drums

    sent, warnings = [], []
    for addr in dict.fromkeys(addresses):
        try:
            delivered = drums.send(ctx.root, addr, SENDER, subject, body)
        except OSError as exc:
            delivered = {"error": str(exc)}
        if "error" in delivered:
            msg = f"raid {raid['id']}: notifying {addr} failed: {delivered['error']}"
            log.info("%s", msg)
            warnings.append(msg)
            continue
        sent.append(addr)
    return sent, warnings
