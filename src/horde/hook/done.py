"""Done — the completion protocol for raiders and crew.

Order matters: guards, push, merge request, gate registration, hook release,
cleanup status, notifications, then self-nuke. Everything after the merge
request exists is best-effort and reported in ``warnings``.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import TYPE_CHECKING

from horde.agents import AgentStore
from horde.defaults import ENV_RAIDER_PATH
from horde.errors import CollaboratorError, GuardError, HordeError, PreflightError, WorkItemNotFound
from horde.git import detect_cleanup_status
from horde.identity import AgentIdentity, Role
from horde.ledger.fields import parse_fields, set_fields, split_list
from horde.lifecycle import EventKind, log_event
from horde.roles import resolve_role

from ._helpers import LIVE_STATUSES, _warn

if TYPE_CHECKING:
    from horde.context import HordeContext
    from horde.git import Git
    from horde.workspace import Warband

log = logging.getLogger(__name__)

COMPLETED = "COMPLETED"
ESCALATED = "ESCALATED"
DEFERRED = "DEFERRED"
PHASE_COMPLETE = "PHASE_COMPLETE"
EXIT_KINDS = (COMPLETED, ESCALATED, DEFERRED)

MR_TYPE = "merge-request"

_STATE_FOR_EXIT = {ESCALATED: "stuck", PHASE_COMPLETE: "awaiting-gate"}
_BRANCH_ISSUE = re.compile(r"([a-z][a-z0-9]*-[a-z0-9]+(?:\.[0-9]+)*)(?:@[^/]*)?$")


def exit_kind(status: str | None, phase_complete: bool, gate: str | None) -> str:
    if phase_complete:
        if not gate:
            raise PreflightError("--phase-complete requires --gate <gate-id>")
        return PHASE_COMPLETE
    kind = (status or COMPLETED).upper().replace("-", "_")
    if kind == PHASE_COMPLETE:
        raise PreflightError("use --phase-complete --gate <gate-id> for phase completion")
    if kind not in EXIT_KINDS:
        raise PreflightError(f"invalid exit status '{status}'. Valid: {', '.join(EXIT_KINDS)}")
    return kind


def _work_dir(work_dir: str | Path | None) -> Path:
    """The agent's worktree; survives a deleted cwd through HD_RAIDER_PATH."""
    if work_dir:
        return Path(work_dir)
    try:
        return Path.cwd()
    except FileNotFoundError:
        fallback = os.environ.get(ENV_RAIDER_PATH)
        if not fallback:
            raise PreflightError("working directory no longer exists", remedy=f"set {ENV_RAIDER_PATH}") from None
        return Path(fallback)


def issue_from_branch(ctx: "HordeContext", branch: str) -> str | None:
    """Pick a work-item id off the end of a branch name when its prefix is routed."""
    match = _BRANCH_ISSUE.search(branch.rsplit("/", 1)[-1])
    if not match:
        return None
    candidate = match.group(1)
    prefixes = [route.prefix for route in ctx.router.routes]
    return candidate if any(candidate.startswith(p) for p in prefixes) else None


# ---------------------------------------------------------------------------
# merge request
# ---------------------------------------------------------------------------


def find_merge_request(client, branch: str) -> dict | None:
    for item in client.list(issue_type=MR_TYPE):
        if parse_fields(item.get("description")).get("branch") == branch:
            return item
    return None


def submit_merge_request(
    ctx: "HordeContext",
    wb: "Warband",
    identity: AgentIdentity,
    branch: str,
    issue: str | None,
) -> tuple[str, bool]:
    """Create the MR for ``branch`` or reuse the open one. Returns (id, created)."""
    client = ctx.ledger(wb.path)
    existing = find_merge_request(client, branch)
    if existing is not None:
        log.info("done: reusing merge request %s for %s", existing["id"], branch)
        return existing["id"], False
    description = set_fields("", {
        "branch": branch,
        "target": wb.default_branch,
        "source_issue": issue,
        "rig": wb.name,
        "worker": identity.address,
        "agent_bead": identity.record_id(wb.prefix),
        "retry_count": "0",
    })
    item = client.create(
        title=f"Merge {branch}" + (f" ({issue})" if issue else ""),
        issue_type=MR_TYPE,
        description=description,
        ephemeral=True,
    )
    return item["id"], True


def _register_waiter(ctx: "HordeContext", gate: str, address: str) -> None:
    item = ctx.router.show(gate)
    if item is None:
        raise WorkItemNotFound(gate)
    description = item.get("description") or ""
    waiters = split_list(parse_fields(description).get("waiters"))
    if address in waiters:
        return
    waiters.append(address)
    ctx.router.client_for(gate).update(gate, description=set_fields(description, {"waiters": ",".join(waiters)}))


def _completion_guards(git: "Git", branch: str, default_branch: str) -> None:
    if branch == default_branch:
        raise GuardError(f"on the default branch '{default_branch}'", remedy="work on your raider branch")
    if git.has_uncommitted():
        raise GuardError("uncommitted changes in worktree", remedy="commit or discard them, then rerun hd done")
    if git.commits_ahead(f"origin/{default_branch}") == 0:
        raise GuardError(f"no commits ahead of origin/{default_branch}", remedy="commit your work first")


# ---------------------------------------------------------------------------
# done
# ---------------------------------------------------------------------------


def done(
    ctx: "HordeContext",
    status: str | None = None,
    issue: str | None = None,
    phase_complete: bool = False,
    gate: str | None = None,
    cleanup_status: str | None = None,
    work_dir: str | Path | None = None,
) -> dict[str, object]:
    """Finish the current work. Refusals leave the hook, branch and ledger untouched."""
    store = AgentStore(ctx)
    try:
        kind = exit_kind(status, phase_complete, gate)
        worktree = _work_dir(work_dir)
        identity = resolve_role(worktree).identity
        if identity.role not in (Role.RAIDER, Role.CREW):
            raise PreflightError(f"done is for raider and crew agents, not {identity.role.value}")
        wb = ctx.warband(identity.rig)
        if not worktree.is_dir():
            worktree = ctx.home(identity)
        git = ctx.git(worktree)
        branch = git.current_branch()
        record = store.get(identity)
        hooked = record.hook_slot if record else None
        issue = issue or issue_from_branch(ctx, branch) or hooked
        if kind == COMPLETED:
            _completion_guards(git, branch, wb.default_branch)
        if kind == PHASE_COMPLETE and ctx.router.show(gate) is None:
            raise WorkItemNotFound(gate)
    except HordeError as exc:
        return exc.to_result()

    result: dict[str, object] = {
        "status": "done",
        "exit": kind,
        "address": identity.address,
        "branch": branch,
        "issue": issue,
    }
    warnings: list[str] = []

    if kind == COMPLETED:
        try:
            git.push(branch)
            mr_id, created = submit_merge_request(ctx, wb, identity, branch, issue)
        except HordeError as exc:
            return exc.to_result()
        result["merge_request"] = mr_id
        result["mr_created"] = created
        try:
            store.set_active_mr(identity, mr_id)
        except (HordeError, LookupError) as exc:
            _warn(warnings, f"recording active MR on {identity.address} failed: {exc}")

    if kind == PHASE_COMPLETE:
        try:
            _register_waiter(ctx, gate, identity.address)
            result["gate"] = gate
        except HordeError as exc:
            return exc.to_result()

    dispatcher = _release_hook(ctx, store, identity, hooked, kind, warnings)

    try:
        cleanup = cleanup_status or detect_cleanup_status(git, wb.default_branch)
        store.set_cleanup_status(identity, cleanup)
        result["cleanup_status"] = cleanup
    except (HordeError, LookupError, ValueError) as exc:
        _warn(warnings, f"recording cleanup status failed: {exc}")

    _notify(ctx, identity, kind, issue, result.get("merge_request"), dispatcher, warnings)

    if kind == COMPLETED and identity.role is Role.RAIDER:
        result["nuked"] = _self_nuke(ctx, identity, warnings)

    if warnings:
        result["warnings"] = warnings
    return result


def _release_hook(ctx: "HordeContext", store: AgentStore, identity: AgentIdentity,
                  hooked: str | None, kind: str, warnings: list[str]) -> str | None:
    """Close the hooked item, clear the slot and set the stored state. Returns the dispatcher."""
    dispatcher = None
    if hooked:
        try:
            item = ctx.router.show(hooked)
            if item is not None:
                dispatcher = parse_fields(item.get("description")).get("dispatched_by")
                if item.get("status") in LIVE_STATUSES:
                    ctx.router.client_for(hooked).close(hooked, reason=f"done: {kind}")
        except HordeError as exc:
            _warn(warnings, f"closing {hooked} failed: {exc}")
        try:
            store.set_hook(identity, None)
        except HordeError as exc:
            _warn(warnings, f"clearing hook on {identity.address} failed: {exc}")
    try:
        store.set_state(identity, _STATE_FOR_EXIT.get(kind))
    except (HordeError, LookupError) as exc:
        _warn(warnings, f"setting state on {identity.address} failed: {exc}")
    return dispatcher


def _notify(ctx: "HordeContext", identity: AgentIdentity, kind: str, issue: str | None,
            mr_id: object, dispatcher: str | None, warnings: list[str]) -> None:
    from horde import drums

    try:
        log_event(ctx.root, EventKind.DONE, identity.address, issue or kind)
    except OSError as exc:
        _warn(warnings, f"lifecycle log failed: {exc}")
    body = "\n".join(line for line in (
        f"Exit: {kind}",
        f"Issue: {issue}" if issue else "",
        f"MR: {mr_id}" if mr_id else "",
    ) if line)
    recipients = []
    if identity.role is Role.RAIDER:
        recipients.append((f"{identity.rig}/witness", f"RAIDER_DONE {identity.name}"))
    if dispatcher and dispatcher != identity.address:
        recipients.append((dispatcher, f"DONE {issue or identity.address}: {kind}"))
    for to, subject in recipients:
        try:
            delivered = drums.send(ctx.root, to, identity.address, subject, body)
        except OSError as exc:
            delivered = {"error": str(exc)}
        if "error" in delivered:
            _warn(warnings, f"drums to {to} failed: {delivered['error']}")


def _self_nuke(ctx: "HordeContext", identity: AgentIdentity, warnings: list[str]) -> bool:
    """Remove the worktree, then kill our own session. The process may end here."""
    from horde.raiders import _delete_worktree

    try:
        for msg in _delete_worktree(ctx, identity, force=True):
            _warn(warnings, msg)
    except (HordeError, OSError) as exc:
        _warn(warnings, f"worktree removal failed: {exc}")
    try:
        ctx.tmux.kill_session(ctx.session_name(identity))
    except (HordeError, OSError) as exc:
        _warn(warnings, f"session kill failed: {exc}")
        return False
    return True
