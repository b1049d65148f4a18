"""tmux wrapper — sessions, environment, pane respawn, capture, hooks."""

from __future__ import annotations

import logging
import os
import subprocess
import sys
from typing import Callable, Optional

from horde.defaults import resolve_tmux_bin
from horde.errors import CollaboratorError

log = logging.getLogger(__name__)

Runner = Callable[..., subprocess.CompletedProcess]


def _subprocess_runner(args: list[str], cwd: Optional[str] = None, timeout: Optional[float] = None) -> subprocess.CompletedProcess:
    return subprocess.run(args, cwd=cwd, capture_output=True, text=True, timeout=timeout)


class Tmux:
    def __init__(self, runner: Runner | None = None, binary: str | None = None) -> None:
        self._runner = runner or _subprocess_runner
        self._bin = binary or resolve_tmux_bin()

    def _exec(self, *args: str) -> subprocess.CompletedProcess:
        cmd = [self._bin, *args]
        try:
            return self._runner(cmd, None, timeout=10)
        except FileNotFoundError:
            return subprocess.CompletedProcess(cmd, 127, "", f"{self._bin} not found")
        except subprocess.TimeoutExpired:
            return subprocess.CompletedProcess(cmd, 124, "", "tmux timed out")

    def _run(self, *args: str) -> str:
        r = self._exec(*args)
        if r.returncode != 0:
            raise CollaboratorError([self._bin, *args], r.returncode, r.stderr)
        return r.stdout

    def _warn(self, label: str, *args: str) -> bool:
        r = self._exec(*args)
        if r.returncode != 0:
            print(f"WARNING: tmux {label} failed: {r.stderr.strip()}", file=sys.stderr)
            return False
        return True

    # -- sessions -----------------------------------------------------------

    def has_session(self, name: str) -> bool:
        return self._exec("has-session", "-t", f"={name}").returncode == 0

    def new_session(self, name: str, cwd: str, command: str | None = None) -> None:
        args = ["new-session", "-d", "-s", name, "-c", cwd]
        if command:
            args.append(command)
        self._run(*args)

    def kill_session(self, name: str) -> bool:
        return self._exec("kill-session", "-t", f"={name}").returncode == 0

    def attach(self, name: str) -> int:
        """Attach (or switch the client when already inside tmux). Replaces the terminal."""
        verb = "switch-client" if os.getenv("TMUX") else "attach-session"
        return subprocess.call([self._bin, verb, "-t", name])

    # -- panes --------------------------------------------------------------

    def display(self, name: str, fmt: str) -> str:
        r = self._exec("display-message", "-p", "-t", name, fmt)
        return r.stdout.strip() if r.returncode == 0 else ""

    def pane_current_command(self, name: str) -> str:
        return self.display(name, "#{pane_current_command}")

    def pane_current_path(self, name: str) -> str:
        return self.display(name, "#{pane_current_path}")

    def pane_pid(self, name: str) -> int | None:
        raw = self.display(name, "#{pane_pid}")
        return int(raw) if raw.isdigit() else None

    def session_activity(self, name: str) -> int | None:
        """Epoch seconds of the session's last activity."""
        raw = self.display(name, "#{session_activity}")
        return int(raw) if raw.isdigit() else None

    def list_panes(self) -> list[dict[str, str]]:
        r = self._exec("list-panes", "-a", "-F", "#{session_name}\t#{pane_current_command}\t#{pane_current_path}")
        if r.returncode != 0:
            return []
        panes = []
        for line in r.stdout.splitlines():
            parts = line.split("\t")
            if len(parts) == 3:
                panes.append({"session": parts[0], "command": parts[1], "path": parts[2]})
        return panes

    def child_commands(self, name: str) -> list[str]:
        """Command names of the pane process's direct children."""
        pid = self.pane_pid(name)
        if pid is None:
            return []
        try:
            r = subprocess.run(["ps", "-o", "comm=", "--ppid", str(pid)], capture_output=True, text=True, timeout=5)
        except (FileNotFoundError, subprocess.TimeoutExpired):
            return []
        return [os.path.basename(c.strip()) for c in r.stdout.splitlines() if c.strip()]

    def respawn_pane(self, name: str, command: str) -> None:
        self._run("respawn-pane", "-k", "-t", name, command)

    def send_keys(self, name: str, text: str) -> None:
        self._run("send-keys", "-t", name, "-l", text)
        self._run("send-keys", "-t", name, "Enter")

    # -- options ------------------------------------------------------------

    def set_environment(self, name: str, key: str, value: str) -> bool:
        return self._warn(f"set-environment {key}", "set-environment", "-t", name, key, value)

    def set_option(self, name: str, option: str, value: str) -> bool:
        return self._warn(f"set-option {option}", "set-option", "-t", name, option, value)

    def set_hook(self, name: str, hook: str, command: str) -> bool:
        return self._warn(f"set-hook {hook}", "set-hook", "-t", name, hook, command)
