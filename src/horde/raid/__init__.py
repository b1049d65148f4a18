"""Raid tracker: cross-ledger work aggregates that close when their work lands."""

from ._helpers import new_raid_id, subscribers, tracked_ids, tracking_raids
from .status import list_raids, resolve_raid_number, stranded, status
from .tracker import AUTO_CLOSE_REASON, add, check, close, create

__all__ = [
    "AUTO_CLOSE_REASON",
    "add",
    "check",
    "close",
    "create",
    "list_raids",
    "new_raid_id",
    "resolve_raid_number",
    "status",
    "stranded",
    "subscribers",
    "tracked_ids",
    "tracking_raids",
]
