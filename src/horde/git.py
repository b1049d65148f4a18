"""Git porcelain wrapper bound to one working directory."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Callable, Optional

from horde.errors import CollaboratorError

log = logging.getLogger(__name__)

Runner = Callable[..., subprocess.CompletedProcess]

CLEANUP_STATUSES = ("clean", "uncommitted", "unpushed", "stash", "unknown")


def _subprocess_runner(args: list[str], cwd: str, timeout: Optional[float] = None) -> subprocess.CompletedProcess:
    return subprocess.run(args, cwd=cwd, capture_output=True, text=True, timeout=timeout)


class Git:
    def __init__(self, workdir: str | Path, runner: Runner | None = None) -> None:
        self.workdir = Path(workdir)
        self._runner = runner or _subprocess_runner

    def _exec(self, *args: str, timeout: Optional[float] = None) -> subprocess.CompletedProcess:
        cmd = ["git", *args]
        try:
            return self._runner(cmd, str(self.workdir), timeout=timeout)
        except FileNotFoundError as exc:
            raise CollaboratorError(cmd, 127, str(exc)) from None

    def _run(self, *args: str, timeout: Optional[float] = None) -> str:
        r = self._exec(*args, timeout=timeout)
        if r.returncode != 0:
            raise CollaboratorError(["git", *args], r.returncode, r.stderr or r.stdout or "")
        return r.stdout

    def _ok(self, *args: str) -> bool:
        return self._exec(*args).returncode == 0

    # -- inspection ---------------------------------------------------------

    def current_branch(self) -> str:
        return self._run("rev-parse", "--abbrev-ref", "HEAD").strip()

    def status_porcelain(self) -> list[str]:
        return [line for line in self._run("status", "--porcelain").splitlines() if line.strip()]

    def modified_files(self) -> list[str]:
        return [line[3:] for line in self.status_porcelain()]

    def has_uncommitted(self) -> bool:
        return bool(self.status_porcelain())

    def rev_exists(self, rev: str) -> bool:
        return self._ok("rev-parse", "--verify", "--quiet", rev)

    def commits_ahead(self, base: str) -> int:
        return int(self._run("rev-list", "--count", f"{base}..HEAD").strip() or 0)

    def unpushed_count(self, branch: str, default_branch: str) -> int:
        """Commits on HEAD not on ``origin/<branch>`` (or ``origin/<default>`` if never pushed)."""
        base = f"origin/{branch}"
        if not self.rev_exists(base):
            base = f"origin/{default_branch}"
            if not self.rev_exists(base):
                return self.commits_ahead_of_root()
        return self.commits_ahead(base)

    def commits_ahead_of_root(self) -> int:
        return int(self._run("rev-list", "--count", "HEAD").strip() or 0)

    def stash_count(self) -> int:
        return len([line for line in self._run("stash", "list").splitlines() if line.strip()])

    def last_commit(self) -> dict[str, str]:
        out = self._run("log", "-1", "--format=%H%x00%s%x00%cI").strip()
        if not out:
            return {}
        sha, subject, when = (out.split("\x00") + ["", ""])[:3]
        return {"sha": sha, "subject": subject, "date": when}

    def merged_branches(self, target: str, pattern: str) -> list[str]:
        out = self._run("branch", "--merged", target, "--list", pattern, "--format=%(refname:short)")
        return [b.strip() for b in out.splitlines() if b.strip()]

    # -- mutation -----------------------------------------------------------

    def clone(self, url: str, dest: str | Path, branch: str | None = None) -> None:
        args = ["clone"]
        if branch:
            args += ["--branch", branch]
        self._run(*args, url, str(dest))

    def fetch(self, remote: str = "origin") -> None:
        self._run("fetch", remote)

    def merge_ff_only(self, ref: str) -> str:
        return self._run("merge", "--ff-only", ref).strip()

    def push(self, branch: str, remote: str = "origin") -> None:
        self._run("push", "--set-upstream", remote, branch)

    def worktree_add(self, path: str | Path, branch: str, base: str) -> None:
        self._run("worktree", "add", "-b", branch, str(path), base)

    def worktree_remove(self, path: str | Path, force: bool = False) -> None:
        args = ["worktree", "remove"]
        if force:
            args.append("--force")
        self._run(*args, str(path))

    def worktree_move(self, src: str | Path, dest: str | Path) -> None:
        self._run("worktree", "move", str(src), str(dest))

    def worktree_prune(self) -> None:
        self._run("worktree", "prune")

    def branch_delete(self, branch: str, force: bool = False) -> None:
        self._run("branch", "-D" if force else "-d", branch)


def detect_cleanup_status(git: Git, default_branch: str) -> str:
    """Classify a worktree's leftover git state for the agent record."""
    try:
        if git.has_uncommitted():
            return "uncommitted"
        if git.stash_count() > 0:
            return "stash"
        branch = git.current_branch()
        if git.unpushed_count(branch, default_branch) > 0:
            return "unpushed"
        return "clean"
    except CollaboratorError as exc:
        log.warning("detect_cleanup_status: %s", exc)
        return "unknown"
