"""Agent record store — typed facade over ``agent`` work items.

Records keep role, warband, state, cleanup status, active merge request and
notification level as description fields; the hook lives in the ledger's
``hook`` slot so it can be updated without rewriting the description.
Observable states (idle, done) are never stored; they are inferred from the
session.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from horde.defaults import MAX_WORKERS
from horde.identity import AgentIdentity, Role
from horde.ledger.fields import parse_fields, set_fields

if TYPE_CHECKING:
    from horde.context import HordeContext

log = logging.getLogger(__name__)

AGENT_TYPE = "agent"
HOOK_SLOT = "hook"
STORED_STATES = ("stuck", "awaiting-gate")
OBSERVABLE_STATES = ("idle", "done", "working")
CLEANUP_STATUSES = ("clean", "uncommitted", "unpushed", "stash", "unknown")
NOTIFICATION_LEVELS = ("verbose", "normal", "muted")


@dataclass(frozen=True)
class AgentRecord:
    id: str
    identity: AgentIdentity
    state: Optional[str] = None
    hook_slot: Optional[str] = None
    cleanup_status: Optional[str] = None
    active_mr: Optional[str] = None
    notification_level: str = "normal"
    status: str = "open"

    @classmethod
    def from_item(cls, item: dict) -> "AgentRecord":
        fields = parse_fields(item.get("description"))
        role = Role.parse(fields.get("role_type", "unknown"))
        identity = AgentIdentity(role, fields.get("rig"), fields.get("agent_name"))
        slots = item.get("slots") or {}
        return cls(
            id=item["id"],
            identity=identity,
            state=fields.get("agent_state"),
            hook_slot=slots.get(HOOK_SLOT) or None,
            cleanup_status=fields.get("cleanup_status"),
            active_mr=fields.get("active_mr"),
            notification_level=fields.get("notification_level", "normal"),
            status=item.get("status", "open"),
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "address": self.identity.address,
            "role": self.identity.role.value,
            "rig": self.identity.rig,
            "name": self.identity.name,
            "state": self.state,
            "hook_slot": self.hook_slot,
            "cleanup_status": self.cleanup_status,
            "active_mr": self.active_mr,
            "notification_level": self.notification_level,
        }


def _initial_description(identity: AgentIdentity) -> str:
    return set_fields("", {
        "role_type": identity.role.value,
        "rig": identity.rig,
        "agent_name": identity.name,
        "notification_level": "normal",
    })


class AgentStore:
    def __init__(self, ctx: "HordeContext") -> None:
        self.ctx = ctx

    def _locate(self, identity: AgentIdentity):
        return self.ctx.record_ledger(identity), identity.record_id(self.ctx.prefix_for(identity))

    def get(self, identity: AgentIdentity) -> AgentRecord | None:
        client, record_id = self._locate(identity)
        item = client.show(record_id)
        if item is None or item.get("status") == "tombstone":
            return None
        return AgentRecord.from_item(item)

    def ensure(self, identity: AgentIdentity) -> AgentRecord:
        """Return the agent's record, creating it on first bootstrap."""
        existing = self.get(identity)
        if existing is not None:
            return existing
        client, record_id = self._locate(identity)
        item = client.create(
            title=identity.address,
            issue_type=AGENT_TYPE,
            description=_initial_description(identity),
            item_id=record_id,
        )
        log.debug("ensure: created agent record %s", record_id)
        return AgentRecord.from_item(item)

    def _update_fields(self, identity: AgentIdentity, updates: dict[str, object]) -> None:
        client, record_id = self._locate(identity)
        item = client.show(record_id)
        if item is None:
            raise LookupError(f"no agent record for {identity.address}")
        client.update(record_id, description=set_fields(item.get("description"), updates))

    def set_hook(self, identity: AgentIdentity, item_id: str | None) -> None:
        client, record_id = self._locate(identity)
        if item_id:
            client.slot_set(record_id, HOOK_SLOT, item_id)
        else:
            client.slot_clear(record_id, HOOK_SLOT)

    def set_state(self, identity: AgentIdentity, state: str | None) -> None:
        """Store a non-observable state; None clears it."""
        if state is not None and state not in STORED_STATES:
            raise ValueError(f"state '{state}' is observable from the session and is not stored")
        self._update_fields(identity, {"agent_state": state})

    def set_cleanup_status(self, identity: AgentIdentity, status: str) -> None:
        if status not in CLEANUP_STATUSES:
            raise ValueError(f"invalid cleanup status '{status}'. Valid: {', '.join(CLEANUP_STATUSES)}")
        self._update_fields(identity, {"cleanup_status": status})

    def set_active_mr(self, identity: AgentIdentity, mr_id: str | None) -> None:
        self._update_fields(identity, {"active_mr": mr_id})

    def set_notification_level(self, identity: AgentIdentity, level: str) -> None:
        if level not in NOTIFICATION_LEVELS:
            raise ValueError(f"invalid notification level '{level}'")
        self._update_fields(identity, {"notification_level": level})

    def nuke(self, identity: AgentIdentity) -> bool:
        client, record_id = self._locate(identity)
        if client.show(record_id) is None:
            return False
        client.delete(record_id)
        return True

    # -- queries ------------------------------------------------------------

    def _list_in(self, client) -> list[AgentRecord]:
        records = []
        for item in client.list(issue_type=AGENT_TYPE):
            try:
                records.append(AgentRecord.from_item(item))
            except ValueError as exc:
                log.warning("list: skipping malformed agent record %s: %s", item.get("id"), exc)
        return records

    def list_by_warband(self, rig: str) -> list[AgentRecord]:
        client = self.ctx.ledger(self.ctx.warband(rig).path)
        return [r for r in self._list_in(client) if r.identity.rig == rig]

    def list_by_role(self, role: Role, rig: str | None = None) -> list[AgentRecord]:
        if role.workspace_scoped:
            return [r for r in self._list_in(self.ctx.hq) if r.identity.role is role]
        rigs = [rig] if rig else sorted(self.ctx.warbands())
        if not rigs:
            return []
        with ThreadPoolExecutor(max_workers=min(MAX_WORKERS, len(rigs))) as pool:
            batches = list(pool.map(self.list_by_warband, rigs))
        return [r for batch in batches for r in batch if r.identity.role is role]
