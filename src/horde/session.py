"""Session bridge — agent identity to tmux session, startup, restart, crash.

Startup sequence for a new session: create it with a plain shell, wait for
the shell, export the agent environment, theme it, install the pane-died
hook, then respawn the pane with the runtime command carrying a one-line
startup beacon.
"""

from __future__ import annotations

import logging
import os
import shlex
import time
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from horde.config import SHELLS, RuntimeConfig
from horde.defaults import (
    ENV_ACTOR,
    ENV_CREW,
    ENV_RAIDER,
    ENV_RAIDER_PATH,
    ENV_ROLE,
    ENV_WARBAND,
    ENV_WORKSPACE_ROOT,
    HQ_PREFIX,
)
from horde.errors import CollaboratorError
from horde.identity import AgentIdentity, Role
from horde.lifecycle import EventKind, crash_kind, log_event
from horde.tmux import Tmux

if TYPE_CHECKING:
    from horde.context import HordeContext

log = logging.getLogger(__name__)

BEACON_TAG = "[HORDE]"

ROLE_COLORS: dict[Role, str] = {
    Role.WARCHIEF: "colour3",   # yellow
    Role.SHAMAN:   "colour5",   # magenta
    Role.WITNESS:  "colour4",   # blue
    Role.FORGE:    "colour6",   # cyan
    Role.RAIDER:   "colour1",   # red
    Role.CREW:     "colour2",   # green
}

_TOPIC_HINTS = {
    "cold-start": "check `hd hook` and `hd drums inbox`, then act on the hook if present",
    "assigned": "work is on your hook; run `hd hook` now and begin immediately",
    "restart": "run `hd hook` and `hd drums inbox` to pick up where you left off",
    "handoff": "read the handoff in `hd drums inbox` and continue",
}


# ---------------------------------------------------------------------------
# Beacon / environment
# ---------------------------------------------------------------------------


def format_beacon(recipient: str, sender: str = "human", topic: str = "cold-start",
                  now: Optional[datetime] = None) -> str:
    """Single-line startup beacon: ``[HORDE] <to> <- <from> • <time> • <topic>``."""
    ts = (now or datetime.now()).strftime("%Y-%m-%dT%H:%M")
    beacon = f"{BEACON_TAG} {recipient} <- {sender} • {ts} • {topic or 'ready'}"
    hint = _TOPIC_HINTS.get(topic)
    return f"{beacon} • {hint}" if hint else beacon


def agent_env(root: str | Path, identity: AgentIdentity, runtime: RuntimeConfig | None = None) -> dict[str, str]:
    env = {
        ENV_ROLE: identity.role.value,
        ENV_ACTOR: identity.address,
        ENV_WORKSPACE_ROOT: str(root),
    }
    if identity.rig:
        env[ENV_WARBAND] = identity.rig
    if identity.role is Role.RAIDER:
        env[ENV_RAIDER] = identity.name or ""
        env[ENV_RAIDER_PATH] = str(identity.home(root))
    elif identity.role is Role.CREW:
        env[ENV_CREW] = identity.name or ""
    if runtime is not None and runtime.config_dir_env and runtime.config_dir:
        env[runtime.config_dir_env] = os.path.expanduser(runtime.config_dir)
    return env


def startup_command(runtime: RuntimeConfig, env: dict[str, str], beacon: str) -> str:
    exports = " ".join(f"{k}={shlex.quote(v)}" for k, v in env.items())
    return f"exec env {exports} {runtime.command} {shlex.quote(beacon)}"


# ---------------------------------------------------------------------------
# Liveness
# ---------------------------------------------------------------------------


def is_agent_running(tmux: Tmux, name: str, expected: tuple[str, ...] | list[str]) -> bool:
    """True if the pane runs one of ``expected``, directly or under a subshell."""
    if not tmux.has_session(name):
        return False
    cmd = tmux.pane_current_command(name)
    if cmd in expected:
        return True
    if cmd in SHELLS:
        return any(child in expected for child in tmux.child_commands(name))
    return False


def wait_shell_ready(tmux: Tmux, name: str, timeout: float, interval: float = 0.1) -> bool:
    deadline = time.monotonic() + timeout
    while True:
        if tmux.pane_current_command(name) in SHELLS:
            return True
        if time.monotonic() >= deadline:
            return False
        time.sleep(interval)


def find_by_workdir(tmux: Tmux, path: str | Path, runtime_names: tuple[str, ...] | list[str]) -> list[str]:
    target = os.path.realpath(str(path))
    found = []
    for pane in tmux.list_panes():
        if pane["command"] in runtime_names and os.path.realpath(pane["path"]) == target:
            if pane["session"] not in found:
                found.append(pane["session"])
    return found


def identity_for_session(ctx: "HordeContext", session: str) -> AgentIdentity | None:
    """Invert the session naming scheme."""
    if session == f"{HQ_PREFIX}-warchief":
        return AgentIdentity.warchief()
    if session == f"{HQ_PREFIX}-shaman":
        return AgentIdentity.shaman()
    parts = session.split("-", 2)
    if len(parts) != 3:
        return None
    prefix, rig, rest = parts
    wb = ctx.warbands().get(rig)
    if wb is None or wb.prefix != prefix:
        return None
    if rest == "witness":
        return AgentIdentity.witness(rig)
    if rest == "forge":
        return AgentIdentity.forge(rig)
    if rest.startswith("clan-"):
        return AgentIdentity.crew(rig, rest[len("clan-"):])
    try:
        return AgentIdentity.raider(rig, rest)
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Start / restart / stop
# ---------------------------------------------------------------------------


def apply_theme(tmux: Tmux, name: str, identity: AgentIdentity) -> None:
    color = ROLE_COLORS.get(identity.role, "colour7")
    tmux.set_option(name, "status-style", f"bg={color},fg=black")
    tmux.set_option(name, "status-left", f" {identity.address} ")
    tmux.set_option(name, "status-left-length", "60")


def _install_crash_hook(tmux: Tmux, name: str) -> None:
    tmux.set_option(name, "remain-on-exit", "on")
    tmux.set_hook(
        name, "pane-died",
        f'run-shell "hd log crash --session {name} --exit-code #{{pane_dead_status}}"',
    )


def respawn_runtime(ctx: "HordeContext", identity: AgentIdentity, topic: str,
                    runtime: RuntimeConfig | None = None, sender: str = "human") -> str:
    runtime = runtime or ctx.runtimes.get()
    name = ctx.session_name(identity)
    env = agent_env(ctx.root, identity, runtime)
    beacon = format_beacon(identity.address, sender, topic)
    ctx.tmux.respawn_pane(name, startup_command(runtime, env, beacon))
    return name


def start_session(
    ctx: "HordeContext",
    identity: AgentIdentity,
    topic: str = "cold-start",
    workdir: str | Path | None = None,
    runtime_name: str | None = None,
    context: str = "",
) -> dict[str, object]:
    """Ensure the agent's session runs its runtime. Restarts rather than recreates."""
    runtime = ctx.runtimes.get(runtime_name)
    tmux = ctx.tmux
    name = ctx.session_name(identity)
    workdir = Path(workdir) if workdir else ctx.home(identity)

    if tmux.has_session(name):
        if is_agent_running(tmux, name, runtime.pane_commands):
            return {"status": "running", "session": name}
        respawn_runtime(ctx, identity, "restart", runtime)
        log_event(ctx.root, EventKind.WAKE, identity.address, "restart")
        return {"status": "restarted", "session": name}

    existing = find_by_workdir(tmux, workdir, runtime.pane_commands)
    if existing:
        log.info("start_session: %s already served by %s", workdir, existing[0])
        return {"status": "running", "session": existing[0], "reused": True}

    tmux.new_session(name, str(workdir))
    if not wait_shell_ready(tmux, name, runtime.ready_timeout):
        log.warning("start_session: shell in %s not ready after %.1fs", name, runtime.ready_timeout)
    for key, value in agent_env(ctx.root, identity, runtime).items():
        tmux.set_environment(name, key, value)
    apply_theme(tmux, name, identity)
    _install_crash_hook(tmux, name)
    respawn_runtime(ctx, identity, topic, runtime)
    log_event(ctx.root, EventKind.SPAWN, identity.address, context)
    return {"status": "started", "session": name, "workdir": str(workdir), "runtime": runtime.name}


def restart_session(ctx: "HordeContext", identity: AgentIdentity, topic: str = "restart") -> dict[str, object]:
    name = ctx.session_name(identity)
    if not ctx.tmux.has_session(name):
        return start_session(ctx, identity, topic="start")
    respawn_runtime(ctx, identity, topic)
    log_event(ctx.root, EventKind.WAKE, identity.address, topic)
    return {"status": "restarted", "session": name}


def stop_session(ctx: "HordeContext", identity: AgentIdentity, reason: str = "hd stop") -> bool:
    name = ctx.session_name(identity)
    if not ctx.tmux.kill_session(name):
        return False
    log_event(ctx.root, EventKind.KILL, identity.address, reason)
    return True


def nudge(ctx: "HordeContext", identity: AgentIdentity, message: str) -> bool:
    name = ctx.session_name(identity)
    if not ctx.tmux.has_session(name):
        return False
    try:
        ctx.tmux.send_keys(name, message)
    except CollaboratorError as exc:
        log.warning("nudge: %s: %s", name, exc)
        return False
    log_event(ctx.root, EventKind.NUDGE, identity.address, message)
    return True


def record_pane_exit(ctx: "HordeContext", session: str, exit_code: int) -> dict[str, object]:
    """pane-died callback: log done/kill/crash for the session's agent."""
    kind = crash_kind(exit_code)
    identity = identity_for_session(ctx, session)
    actor = identity.address if identity else session
    event = log_event(ctx.root, kind, actor, f"exit {exit_code}" if exit_code else "")
    return {"status": "logged", "kind": kind.value, "actor": actor, "session": session,
            "exit_code": exit_code, "timestamp": event.timestamp.isoformat(timespec="seconds")}
