"""Click CLI entrypoint: `hd <subcommand>`.

Every call is stateless: the workspace is discovered from the working
directory, state lives in the ledgers, the tmux server and the filesystem.
JSON output by default, --human for key/value lines, --compact for agents.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

import click

from horde.defaults import ENV_RAIDER_PATH, ENV_WORKSPACE_ROOT, debug_enabled
from horde.errors import HordeError
from horde.output import output


def _emit(ctx: click.Context, data: dict[str, object]) -> None:
    output(data, ctx.obj["human"], ctx.obj["compact"])


def _horde(ctx: click.Context):
    """Load the workspace context once per invocation, or exit with BLOCKED."""
    if ctx.obj.get("horde") is None:
        from horde.context import load_context

        try:
            hctx = load_context()
        except (HordeError, ValueError) as exc:
            _emit(ctx, exc.to_result() if isinstance(exc, HordeError) else {"error": f"BLOCKED: {exc}"})
            return None
        hctx.debug = hctx.debug or ctx.obj["debug"]
        ctx.obj["horde"] = hctx
    return ctx.obj["horde"]


def _guard(fn, *args, **kwargs) -> dict[str, object]:
    """Run an operation, converting raised horde errors to result dicts."""
    try:
        return fn(*args, **kwargs)
    except HordeError as exc:
        return exc.to_result()
    except ValueError as exc:
        return {"error": f"BLOCKED: {exc}", "kind": "preflight"}


def _cwd() -> Path:
    try:
        return Path.cwd()
    except FileNotFoundError:
        return Path(os.getenv(ENV_RAIDER_PATH) or os.getenv(ENV_WORKSPACE_ROOT) or "/")


@click.group()
@click.version_option(package_name="horde")
@click.option("--human", is_flag=True, help="Human-readable output instead of JSON")
@click.option("--compact", is_flag=True, help="Concise text output for agent context injection")
@click.option("--debug", is_flag=True, help="Verbose logging and hook drift reporting (or HD_DEBUG=1)")
@click.pass_context
def cli(ctx: click.Context, human: bool, compact: bool, debug: bool) -> None:
    """hd: orchestrate fleets of AI coding agents."""
    debug = debug or debug_enabled()
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["human"] = human
    ctx.obj["compact"] = compact
    ctx.obj["debug"] = debug


# =========================================================================
# Workspace
# =========================================================================

@cli.command()
@click.argument("path", default=".", type=click.Path(file_okay=False))
@click.option("--name", default="", help="Workspace name (default: directory name)")
@click.option("--owner", default="", help="Owner recorded in encampment.json")
@click.option("--public-name", default="", help="Display name")
@click.pass_context
def install(ctx: click.Context, path: str, name: str, owner: str, public_name: str) -> None:
    """Create a new workspace with its HQ ledger."""
    from horde.workspace import install as _install
    _emit(ctx, _install(path, name, owner, public_name))


@cli.group()
def rig() -> None:
    """Warband (project repository) registration."""


@rig.command("add")
@click.argument("name")
@click.argument("git_url")
@click.option("--prefix", default="", help="Work-item id prefix (default: derived from name)")
@click.option("--branch", default="", help="Default branch (default: detected from the clone)")
@click.pass_context
def rig_add(ctx: click.Context, name: str, git_url: str, prefix: str, branch: str) -> None:
    """Clone a repository and register it as a warband."""
    hctx = _horde(ctx)
    from horde.workspace import rig_add as _rig_add
    _emit(ctx, _guard(_rig_add, hctx, name, git_url, prefix, branch))


@rig.command("list")
@click.pass_context
def rig_list(ctx: click.Context) -> None:
    """List registered warbands."""
    hctx = _horde(ctx)
    rigs = [wb.to_dict() for wb in hctx.warbands().values()]
    _emit(ctx, {"rigs": rigs, "count": len(rigs)})


# =========================================================================
# Work claim: charge / unsling / hook / done
# =========================================================================

@cli.command()
@click.argument("item_id")
@click.argument("target", required=False)
@click.option("--create", is_flag=True, help="Spawn the named raider if it does not exist")
@click.option("--force", is_flag=True, help="Re-hook a pinned or hooked item, replacing the target's hook")
@click.option("--args", "attached_args", default=None, help="Free-form instructions stored on the work item")
@click.option("--no-raid", is_flag=True, help="Do not create a tracking raid")
@click.option("--dry-run", is_flag=True, help="Show the plan without side effects")
@click.option("--no-nudge", is_flag=True, help="Do not inject the start prompt")
@click.option("--runtime", default=None, help="Runtime from settings/runtimes.yaml")
@click.pass_context
def charge(ctx: click.Context, item_id: str, target: str | None, create: bool, force: bool,
           attached_args: str | None, no_raid: bool, dry_run: bool, no_nudge: bool, runtime: str | None) -> None:
    """Hook ITEM_ID on TARGET (an agent address, or a warband to spawn a raider)."""
    hctx = _horde(ctx)
    from horde.hook import charge as _charge
    _emit(ctx, _guard(_charge, hctx, item_id, target, create=create, force=force, args=attached_args,
                      no_raid=no_raid, dry_run=dry_run, no_nudge=no_nudge, runtime=runtime))


@cli.command()
@click.argument("item_id", required=False)
@click.argument("target", required=False)
@click.option("--force", is_flag=True, help="Release incomplete or missing work")
@click.pass_context
def unsling(ctx: click.Context, item_id: str | None, target: str | None, force: bool) -> None:
    """Release the hook of TARGET (default: yourself)."""
    hctx = _horde(ctx)
    if item_id and target is None and "/" in item_id:
        item_id, target = None, item_id
    from horde.hook import unsling as _unsling
    _emit(ctx, _guard(_unsling, hctx, item_id, target, force=force))


@cli.command()
@click.argument("target", required=False)
@click.pass_context
def hook(ctx: click.Context, target: str | None) -> None:
    """Show what is on an agent's hook (default: yours)."""
    hctx = _horde(ctx)
    from horde.hook import hook_show
    _emit(ctx, _guard(hook_show, hctx, target))


@cli.command()
@click.option("--status", "exit_status", default=None,
              type=click.Choice(["COMPLETED", "ESCALATED", "DEFERRED"], case_sensitive=False),
              help="Exit kind (default COMPLETED)")
@click.option("--issue", default=None, help="Source work item (default: from branch or hook)")
@click.option("--phase-complete", is_flag=True, help="Phase done; wait on --gate")
@click.option("--gate", default=None, help="Gate work item to wait on")
@click.option("--cleanup-status", default=None,
              type=click.Choice(["clean", "uncommitted", "unpushed", "stash", "unknown"]),
              help="Override detected cleanup status")
@click.pass_context
def done(ctx: click.Context, exit_status: str | None, issue: str | None, phase_complete: bool,
         gate: str | None, cleanup_status: str | None) -> None:
    """Finish your work: push, submit a merge request, release the hook."""
    hctx = _horde(ctx)
    from horde.hook import done as _done
    _emit(ctx, _guard(_done, hctx, exit_status, issue, phase_complete, gate, cleanup_status, _cwd()))


# =========================================================================
# Raiders
# =========================================================================

@cli.group()
def raider() -> None:
    """Ephemeral per-task agents."""


@raider.command("list")
@click.argument("rig_name", required=False)
@click.pass_context
def raider_list(ctx: click.Context, rig_name: str | None) -> None:
    """List raiders and their state."""
    hctx = _horde(ctx)
    from horde.raiders import list_raiders
    _emit(ctx, list_raiders(hctx, rig_name))


@raider.command("add")
@click.argument("rig_name")
@click.argument("name", required=False)
@click.pass_context
def raider_add(ctx: click.Context, rig_name: str, name: str | None) -> None:
    """Create a raider worktree (name drawn from the pool when omitted)."""
    hctx = _horde(ctx)
    from horde.raiders import add
    _emit(ctx, add(hctx, rig_name, name))


@raider.command("remove")
@click.argument("address")
@click.option("--force", is_flag=True, help="Discard uncommitted or unpushed work")
@click.pass_context
def raider_remove(ctx: click.Context, address: str, force: bool) -> None:
    """Remove a raider's worktree and session; keep its record."""
    hctx = _horde(ctx)
    from horde.raiders import remove
    _emit(ctx, remove(hctx, address, force))


@raider.command("nuke")
@click.argument("address")
@click.pass_context
def raider_nuke(ctx: click.Context, address: str) -> None:
    """Destroy a raider: session, worktree, branch and record."""
    hctx = _horde(ctx)
    from horde.raiders import nuke
    _emit(ctx, nuke(hctx, address))


@raider.command("check-recovery")
@click.argument("address")
@click.pass_context
def raider_check_recovery(ctx: click.Context, address: str) -> None:
    """Does a dead raider hold work that needs recovering?"""
    hctx = _horde(ctx)
    from horde.raiders import check_recovery
    _emit(ctx, check_recovery(hctx, address))


@raider.command("git-state")
@click.argument("address")
@click.pass_context
def raider_git_state(ctx: click.Context, address: str) -> None:
    """Branch, dirty files and unpushed commits of a raider."""
    hctx = _horde(ctx)
    from horde.raiders import git_state
    _emit(ctx, git_state(hctx, address))


@raider.command("stale")
@click.argument("rig_name", required=False)
@click.option("--hours", default=24.0, type=float, help="Age threshold of the last commit")
@click.pass_context
def raider_stale(ctx: click.Context, rig_name: str | None, hours: float) -> None:
    """Raiders with no session and old commits."""
    hctx = _horde(ctx)
    from horde.raiders import stale
    _emit(ctx, stale(hctx, rig_name, hours))


@raider.command("gc")
@click.argument("rig_name", required=False)
@click.pass_context
def raider_gc(ctx: click.Context, rig_name: str | None) -> None:
    """Delete merged raider branches without a worktree."""
    hctx = _horde(ctx)
    from horde.raiders import gc
    _emit(ctx, gc(hctx, rig_name))


# =========================================================================
# Crew
# =========================================================================

@cli.group()
def crew() -> None:
    """Persistent, user-managed agents."""


@crew.command("add")
@click.argument("rig_name")
@click.argument("name")
@click.pass_context
def crew_add(ctx: click.Context, rig_name: str, name: str) -> None:
    """Create a crew worktree on clan/<name>."""
    hctx = _horde(ctx)
    from horde.crew import add
    _emit(ctx, add(hctx, rig_name, name))


@crew.command("start")
@click.argument("rig_name")
@click.argument("name")
@click.option("--runtime", default=None)
@click.pass_context
def crew_start(ctx: click.Context, rig_name: str, name: str, runtime: str | None) -> None:
    """Start the crew session, or restart a dead runtime in it."""
    hctx = _horde(ctx)
    from horde.crew import start
    _emit(ctx, start(hctx, rig_name, name, runtime))


@crew.command("stop")
@click.argument("rig_name")
@click.argument("name")
@click.pass_context
def crew_stop(ctx: click.Context, rig_name: str, name: str) -> None:
    """Kill the crew session."""
    hctx = _horde(ctx)
    from horde.crew import stop
    _emit(ctx, stop(hctx, rig_name, name))


@crew.command("at")
@click.argument("rig_name")
@click.argument("name")
@click.option("--no-attach", is_flag=True, help="Start if needed but do not attach")
@click.pass_context
def crew_at(ctx: click.Context, rig_name: str, name: str, no_attach: bool) -> None:
    """Attach to the crew session, starting it if needed."""
    hctx = _horde(ctx)
    from horde.crew import at
    _emit(ctx, at(hctx, rig_name, name, attach=not no_attach))


@crew.command("list")
@click.argument("rig_name", required=False)
@click.pass_context
def crew_list(ctx: click.Context, rig_name: str | None) -> None:
    """List crew members."""
    hctx = _horde(ctx)
    from horde.crew import list_crew
    _emit(ctx, list_crew(hctx, rig_name))


@crew.command("remove")
@click.argument("rig_name")
@click.argument("name")
@click.option("--force", is_flag=True, help="Discard uncommitted or unpushed work")
@click.pass_context
def crew_remove(ctx: click.Context, rig_name: str, name: str, force: bool) -> None:
    """Remove a crew worktree, session and record."""
    hctx = _horde(ctx)
    from horde.crew import remove
    _emit(ctx, remove(hctx, rig_name, name, force))


@crew.command("refresh")
@click.argument("rig_name")
@click.argument("name")
@click.option("-m", "--message", default="", help="Handoff note for the fresh context")
@click.pass_context
def crew_refresh(ctx: click.Context, rig_name: str, name: str, message: str) -> None:
    """Hand off to a fresh context: drums-to-self, then restart."""
    hctx = _horde(ctx)
    from horde.crew import refresh
    _emit(ctx, refresh(hctx, rig_name, name, message))


@crew.command("restart")
@click.argument("rig_name")
@click.argument("name")
@click.pass_context
def crew_restart(ctx: click.Context, rig_name: str, name: str) -> None:
    """Restart the runtime inside the crew session."""
    hctx = _horde(ctx)
    from horde.crew import restart
    _emit(ctx, restart(hctx, rig_name, name))


@crew.command("rename")
@click.argument("rig_name")
@click.argument("old")
@click.argument("new")
@click.pass_context
def crew_rename(ctx: click.Context, rig_name: str, old: str, new: str) -> None:
    """Rename a crew member (worktree, session and record)."""
    hctx = _horde(ctx)
    from horde.crew import rename
    _emit(ctx, rename(hctx, rig_name, old, new))


@crew.command("pristine")
@click.argument("rig_name")
@click.argument("name", required=False)
@click.pass_context
def crew_pristine(ctx: click.Context, rig_name: str, name: str | None) -> None:
    """Fetch and fast-forward crew worktrees (all when NAME is omitted)."""
    hctx = _horde(ctx)
    from horde.crew import pristine
    _emit(ctx, pristine(hctx, rig_name, name))


@crew.command("status")
@click.argument("rig_name")
@click.argument("name")
@click.pass_context
def crew_status(ctx: click.Context, rig_name: str, name: str) -> None:
    """Session, git and hook state of a crew member."""
    hctx = _horde(ctx)
    from horde.crew import status
    _emit(ctx, status(hctx, rig_name, name))


# =========================================================================
# Raids
# =========================================================================

@cli.group()
def raid() -> None:
    """Cross-ledger trackers that close when their work lands."""


def _routes_id(hctx, value: str) -> bool:
    try:
        hctx.router.prefix_for(value)
    except HordeError:
        return False
    return "-" in value and hctx.router.show(value) is not None


@raid.command("create")
@click.argument("name_or_item")
@click.argument("items", nargs=-1)
@click.option("--owner", default=None, help="Address notified when the raid lands")
@click.option("--notify", default=None, help="Additional address notified when the raid lands")
@click.option("--totem", default=None, help="Parent totem the raid belongs to")
@click.pass_context
def raid_create(ctx: click.Context, name_or_item: str, items: tuple[str, ...], owner: str | None,
                notify: str | None, totem: str | None) -> None:
    """Create a raid. When the first argument is a work item, the name comes from its title."""
    hctx = _horde(ctx)
    from horde.raid import create
    if _routes_id(hctx, name_or_item):
        name, tracked = None, [name_or_item, *items]
    else:
        name, tracked = name_or_item, list(items)
    _emit(ctx, _guard(create, hctx, tracked, name=name, owner=owner, notify=notify, totem=totem))


@raid.command("add")
@click.argument("raid_id")
@click.argument("items", nargs=-1, required=True)
@click.pass_context
def raid_add(ctx: click.Context, raid_id: str, items: tuple[str, ...]) -> None:
    """Track more items (reopens a closed raid)."""
    hctx = _horde(ctx)
    from horde.raid import add
    _emit(ctx, _guard(add, hctx, raid_id, list(items)))


@raid.command("close")
@click.argument("raid_id")
@click.option("--reason", default=None)
@click.option("--notify", default=None, help="Notify this address instead of the recorded subscribers")
@click.pass_context
def raid_close(ctx: click.Context, raid_id: str, reason: str | None, notify: str | None) -> None:
    """Close a raid by hand."""
    hctx = _horde(ctx)
    from horde.raid import close
    _emit(ctx, _guard(close, hctx, raid_id, reason, notify))


@raid.command("status")
@click.argument("raid_id", required=False)
@click.pass_context
def raid_status(ctx: click.Context, raid_id: str | None) -> None:
    """Progress of a raid (id or list number), or of all open raids."""
    hctx = _horde(ctx)
    from horde.raid import status
    _emit(ctx, _guard(status, hctx, raid_id))


@raid.command("list")
@click.option("--all", "include_all", is_flag=True, help="Include closed raids")
@click.option("--status", "status_filter", default=None)
@click.pass_context
def raid_list(ctx: click.Context, include_all: bool, status_filter: str | None) -> None:
    """List raids, numbered for `raid status N`."""
    hctx = _horde(ctx)
    from horde.raid import list_raids
    _emit(ctx, _guard(list_raids, hctx, include_all, status_filter))


@raid.command("check")
@click.pass_context
def raid_check(ctx: click.Context) -> None:
    """Close raids whose tracked work is all closed."""
    hctx = _horde(ctx)
    from horde.raid import check
    _emit(ctx, _guard(check, hctx))


@raid.command("stranded")
@click.pass_context
def raid_stranded(ctx: click.Context) -> None:
    """Open raids with ready work and nobody alive on it."""
    hctx = _horde(ctx)
    from horde.raid import stranded
    _emit(ctx, _guard(stranded, hctx))


# =========================================================================
# Drums
# =========================================================================

@cli.group()
def drums() -> None:
    """Asynchronous messages between agents."""


def _me(hctx) -> str:
    from horde.hook._helpers import actor
    return actor(hctx)


@drums.command("send")
@click.argument("to")
@click.option("-s", "--subject", required=True)
@click.option("-m", "--message", "body", default="")
@click.option("--from", "sender", default=None, help="Sender address (default: you)")
@click.pass_context
def drums_send(ctx: click.Context, to: str, subject: str, body: str, sender: str | None) -> None:
    """Send a message to an agent's inbox."""
    hctx = _horde(ctx)
    from horde.drums import send
    _emit(ctx, send(hctx.root, to, sender or _me(hctx), subject, body))


@drums.command("inbox")
@click.argument("address", required=False)
@click.option("--unread", is_flag=True)
@click.pass_context
def drums_inbox(ctx: click.Context, address: str | None, unread: bool) -> None:
    """List an inbox (default: yours)."""
    hctx = _horde(ctx)
    from horde.drums import inbox
    _emit(ctx, inbox(hctx.root, address or _me(hctx), unread))


@drums.command("read")
@click.argument("message_id")
@click.option("--address", default=None, help="Inbox to look in (default: all)")
@click.pass_context
def drums_read(ctx: click.Context, message_id: str, address: str | None) -> None:
    """Show a message and mark it read."""
    hctx = _horde(ctx)
    from horde.drums import read
    _emit(ctx, read(hctx.root, message_id, address))


# =========================================================================
# Lifecycle log
# =========================================================================

@cli.group("log", invoke_without_command=True)
@click.option("--type", "kind", default=None, help="Only this event kind")
@click.option("--agent", default="", help="Only actors starting with this prefix")
@click.option("--since", default=None, help="30m, 2h, 1d or YYYY-MM-DD[ HH:MM:SS]")
@click.option("--tail", "-n", default=0, type=int, help="Last N events")
@click.option("--follow", "-f", is_flag=True, help="Stream new events")
@click.pass_context
def log_cmd(ctx: click.Context, kind: str | None, agent: str, since: str | None, tail: int, follow: bool) -> None:
    """Show the lifecycle event log."""
    if ctx.invoked_subcommand is not None:
        return
    hctx = _horde(ctx)
    from horde.lifecycle import EventKind, Filter, follow_events, format_line, parse_since, read_events
    try:
        flt = Filter(
            kind=EventKind(kind) if kind else None,
            actor_prefix=agent,
            since=parse_since(since) if since else None,
        )
    except ValueError as exc:
        _emit(ctx, {"error": f"BLOCKED: {exc}", "kind": "preflight"})
        return
    events = read_events(hctx.root, flt, tail)
    if not (ctx.obj["human"] or ctx.obj["compact"]) and not follow:
        _emit(ctx, {"events": [e.to_dict() for e in events], "count": len(events)})
        return
    for event in events:
        click.echo(format_line(event))
    if not follow:
        return
    try:
        for event in follow_events(hctx.root, flt):
            click.echo(format_line(event))
    except KeyboardInterrupt:
        sys.exit(0)


@log_cmd.command("crash")
@click.option("--session", required=True)
@click.option("--exit-code", required=True, type=int)
@click.pass_context
def log_crash(ctx: click.Context, session: str, exit_code: int) -> None:
    """pane-died callback: record how a session's runtime exited."""
    hctx = _horde(ctx)
    from horde.session import record_pane_exit
    _emit(ctx, record_pane_exit(hctx, session, exit_code))


# =========================================================================
# Checkpoint
# =========================================================================

@cli.group()
def checkpoint() -> None:
    """Crash-recovery checkpoint of the current worktree."""


@checkpoint.command("write")
@click.option("--notes", default=None)
@click.option("--totem", default=None, help="Parent totem id")
@click.option("--step", default=None, help="Current step id")
@click.option("--step-title", default=None)
@click.pass_context
def checkpoint_write(ctx: click.Context, notes: str | None, totem: str | None, step: str | None,
                     step_title: str | None) -> None:
    """Capture branch, last commit, modified files and hook."""
    hctx = _horde(ctx)
    from horde.checkpoint import checkpoint_write as _write
    _emit(ctx, _guard(_write, hctx, _cwd(), notes, totem, step, step_title))


@checkpoint.command("read")
@click.pass_context
def checkpoint_read(ctx: click.Context) -> None:
    """Show the checkpoint with its age."""
    from horde.checkpoint import checkpoint_read as _read
    _emit(ctx, _read(_cwd()))


@checkpoint.command("clear")
@click.pass_context
def checkpoint_clear(ctx: click.Context) -> None:
    """Remove the checkpoint."""
    from horde.checkpoint import checkpoint_clear as _clear
    _emit(ctx, _clear(_cwd()))


# =========================================================================
# Roles
# =========================================================================

@cli.group()
def role() -> None:
    """Who am I, and where do I live?"""


@role.command("show")
@click.pass_context
def role_show(ctx: click.Context) -> None:
    """Resolved role with its source (flag, env, env+cwd, cwd)."""
    from horde.roles import role_show as _show
    _emit(ctx, _guard(_show, _cwd()))


@role.command("detect")
@click.pass_context
def role_detect(ctx: click.Context) -> None:
    """Role inferred from the working directory alone."""
    from horde.roles import role_detect as _detect
    _emit(ctx, _guard(_detect, _cwd()))


@role.command("home")
@click.argument("role_name", required=False)
@click.option("--rig", "rig_name", default=None)
@click.option("--name", default=None, help="Raider or crew name")
@click.pass_context
def role_home(ctx: click.Context, role_name: str | None, rig_name: str | None, name: str | None) -> None:
    """Home directory of ROLE_NAME (default: the current role)."""
    hctx = _horde(ctx)
    from horde.roles import resolve_role, role_home as _home
    if role_name is None:
        info = _guard(lambda: resolve_role(_cwd()).identity)
        if isinstance(info, dict):
            _emit(ctx, info)
            return
        role_name = info.address
    _emit(ctx, _guard(_home, hctx.root, role_name, rig_name, name))


@role.command("env")
@click.pass_context
def role_env(ctx: click.Context) -> None:
    """Environment variables for the current role (export lines with --human)."""
    from horde.roles import role_env as _env
    data = _guard(_env, _cwd())
    if ctx.obj["human"] and "exports" in data:
        for line in data["exports"]:
            click.echo(line)
        return
    _emit(ctx, data)


@role.command("list")
@click.pass_context
def role_list(ctx: click.Context) -> None:
    """All roles with their scope."""
    from horde.roles import role_list as _list
    _emit(ctx, _list())


if __name__ == "__main__":
    cli()
