"""Subprocess client for the delegated work-item ledger (``rl``).

Each client is bound to one ledger directory; ``rl`` discovers the ledger
from its working directory. Tests inject a runner instead of spawning ``rl``.
"""

from __future__ import annotations

import json
import logging
import re
import subprocess
from pathlib import Path
from typing import Callable, Optional

from horde.defaults import MIN_LEDGER_VERSION, VERSION_CHECK_TIMEOUT, resolve_ledger_bin
from horde.errors import CollaboratorError, PreflightError

log = logging.getLogger(__name__)

Runner = Callable[..., subprocess.CompletedProcess]

CLOSED_STATUSES = frozenset({"closed", "tombstone"})

_VERSION_RE = re.compile(r"rl version (\d+\.\d+\.\d+)")


def _subprocess_runner(args: list[str], cwd: str, timeout: Optional[float] = None) -> subprocess.CompletedProcess:
    return subprocess.run(args, cwd=cwd, capture_output=True, text=True, timeout=timeout)


# ---------------------------------------------------------------------------
# Version parsing
# ---------------------------------------------------------------------------


def parse_version(v: str) -> tuple[int, int, int]:
    """Parse ``X.Y.Z`` into a triple. Missing or non-numeric parts count as 0."""
    parts = [0, 0, 0]
    for i, piece in enumerate(v.strip().split(".")[:3]):
        digits = re.match(r"\d+", piece)
        parts[i] = int(digits.group(0)) if digits else 0
    return parts[0], parts[1], parts[2]


def render_version(v: tuple[int, int, int]) -> str:
    return ".".join(str(p) for p in v)


def compare_versions(a: str, b: str) -> int:
    """-1 if a < b, 0 if equal, 1 if a > b."""
    pa, pb = parse_version(a), parse_version(b)
    return (pa > pb) - (pa < pb)


def parse_version_output(output: str) -> str:
    m = _VERSION_RE.search(output)
    return m.group(1) if m else ""


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class LedgerClient:
    def __init__(self, workdir: str | Path, runner: Runner | None = None, binary: str | None = None) -> None:
        self.workdir = Path(workdir)
        self._runner = runner or _subprocess_runner
        self._bin = binary or resolve_ledger_bin()

    def __repr__(self) -> str:
        return f"LedgerClient({str(self.workdir)!r})"

    def _run(self, *args: str, timeout: Optional[float] = None) -> str:
        cmd = [self._bin, *args]
        try:
            r = self._runner(cmd, str(self.workdir), timeout=timeout)
        except FileNotFoundError:
            raise CollaboratorError(cmd, 127, f"{self._bin} not found on PATH") from None
        except subprocess.TimeoutExpired:
            raise CollaboratorError(cmd, -1, f"timed out after {timeout}s") from None
        if r.returncode != 0:
            raise CollaboratorError(cmd, r.returncode, r.stderr or r.stdout or "")
        return r.stdout

    def _run_json(self, *args: str) -> object:
        out = self._run(*args, "--json")
        if not out.strip():
            return None
        try:
            return json.loads(out)
        except json.JSONDecodeError as exc:
            raise CollaboratorError([self._bin, *args], 0, f"invalid JSON from ledger: {exc}") from None

    # -- lifecycle ----------------------------------------------------------

    def init(self, prefix: str) -> None:
        self._run("init", "--prefix", prefix)

    def version(self) -> str:
        return parse_version_output(self._run("version", timeout=VERSION_CHECK_TIMEOUT))

    def check_version(self, minimum: str = MIN_LEDGER_VERSION) -> str:
        """Refuse to run against an ``rl`` without custom-type support."""
        version = self.version()
        if not version:
            raise PreflightError("could not determine rl version", remedy="install rl and ensure it is on PATH")
        if compare_versions(version, minimum) < 0:
            raise PreflightError(
                f"rl {version} is too old; minimum is {minimum}",
                remedy="upgrade rl",
            )
        return version

    # -- items --------------------------------------------------------------

    def create(
        self,
        title: str,
        issue_type: str = "task",
        description: str = "",
        item_id: str | None = None,
        priority: int | None = None,
        assignee: str | None = None,
        parent: str | None = None,
        labels: list[str] | None = None,
        ephemeral: bool = False,
    ) -> dict:
        args = ["create", "--title", title, "--type", issue_type]
        if item_id:
            args += ["--id", item_id]
        if description:
            args += ["--description", description]
        if priority is not None:
            args += ["--priority", str(priority)]
        if assignee:
            args += ["--assignee", assignee]
        if parent:
            args += ["--parent", parent]
        for label in labels or []:
            args += ["--label", label]
        if ephemeral:
            args.append("--ephemeral")
        data = self._run_json(*args)
        if not isinstance(data, dict) or "id" not in data:
            raise CollaboratorError([self._bin, "create"], 0, "ledger did not return the created item")
        return data

    def show_many(self, item_ids: list[str]) -> list[dict]:
        """Fetch several items in one call. Unknown ids are omitted."""
        if not item_ids:
            return []
        data = self._run_json("show", *item_ids)
        if isinstance(data, dict):
            data = [data]
        return [d for d in data or [] if isinstance(d, dict)]

    def show(self, item_id: str) -> dict | None:
        items = self.show_many([item_id])
        return items[0] if items else None

    def list(
        self,
        issue_type: str | None = None,
        status: str | None = None,
        parent: str | None = None,
        assignee: str | None = None,
        priority: int | None = None,
        include_closed: bool = False,
    ) -> list[dict]:
        args = ["list"]
        if issue_type:
            args += ["--type", issue_type]
        if status:
            args += ["--status", status]
        if parent:
            args += ["--parent", parent]
        if assignee:
            args += ["--assignee", assignee]
        if priority is not None:
            args += ["--priority", str(priority)]
        if include_closed:
            args.append("--all")
        data = self._run_json(*args)
        return [d for d in data or [] if isinstance(d, dict)]

    def update(
        self,
        item_id: str,
        status: str | None = None,
        assignee: str | None = None,
        description: str | None = None,
        title: str | None = None,
        add_labels: list[str] | None = None,
    ) -> None:
        args = ["update", item_id]
        if status is not None:
            args += ["--status", status]
        if assignee is not None:
            args += ["--assignee", assignee]
        if description is not None:
            args += ["--description", description]
        if title is not None:
            args += ["--title", title]
        for label in add_labels or []:
            args += ["--add-label", label]
        if len(args) == 2:
            return
        self._run(*args)

    def close(self, item_id: str, reason: str | None = None) -> None:
        args = ["close", item_id]
        if reason:
            args += ["--reason", reason]
        self._run(*args)

    def reopen(self, item_id: str) -> None:
        self._run("reopen", item_id)

    def delete(self, item_id: str) -> None:
        self._run("delete", item_id, "--force")

    def ready(self) -> list[dict]:
        data = self._run_json("ready")
        return [d for d in data or [] if isinstance(d, dict)]

    # -- dependencies / slots -----------------------------------------------

    def dep_add(self, from_id: str, to_ref: str, dep_type: str = "depends_on") -> None:
        self._run("dep", "add", from_id, to_ref, f"--type={dep_type}")

    def slot_set(self, item_id: str, slot: str, value: str) -> None:
        self._run("slot", "set", item_id, slot, value)

    def slot_clear(self, item_id: str, slot: str) -> None:
        self._run("slot", "clear", item_id, slot)


def is_closed(item: dict | None) -> bool:
    return bool(item) and item.get("status") in CLOSED_STATUSES
