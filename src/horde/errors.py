"""Error taxonomy for horde operations.

Operations raise these internally; the public entry points convert them to
``{"error": "BLOCKED: ..."}`` dicts so the CLI can print and exit non-zero.
"""

from __future__ import annotations


class HordeError(Exception):
    """Base error. ``kind`` tags the taxonomy, ``remedy`` is an operator hint."""

    kind = "error"

    def __init__(self, message: str, remedy: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.remedy = remedy

    def to_result(self) -> dict[str, object]:
        result: dict[str, object] = {"error": f"BLOCKED: {self.message}", "kind": self.kind}
        if self.remedy:
            result["remedy"] = self.remedy
        return result


# ---------------------------------------------------------------------------
# Preflight: the verb was called in an invalid state
# ---------------------------------------------------------------------------


class PreflightError(HordeError):
    kind = "preflight"


class NotInWorkspace(PreflightError):
    def __init__(self, start: str = "") -> None:
        where = f" (searched from {start})" if start else ""
        super().__init__(
            f"not in a horde workspace{where}",
            remedy="run inside a workspace or `hd install <path>` to create one",
        )


class AmbiguousPath(PreflightError):
    pass


class MissingComponent(PreflightError):
    def __init__(self, role: str, missing: list[str]) -> None:
        self.missing = list(missing)
        super().__init__(
            f"cannot resolve {role}: missing {', '.join(missing)}",
            remedy="set HD_WARBAND/HD_RAIDER/HD_CREW or run from the agent's worktree",
        )


class UnknownPrefix(PreflightError):
    def __init__(self, item_id: str) -> None:
        super().__init__(
            f"no route for '{item_id}'",
            remedy="register the warband with `hd rig add` or check the id",
        )


class CorruptRoutes(PreflightError):
    pass


class WorkItemNotFound(PreflightError):
    def __init__(self, item_id: str) -> None:
        super().__init__(f"work item '{item_id}' not found")


class AlreadyPinned(PreflightError):
    def __init__(self, item_id: str, detail: str) -> None:
        super().__init__(f"{item_id} is {detail}", remedy="use --force to re-hook")


# ---------------------------------------------------------------------------
# Guards: work would be lost
# ---------------------------------------------------------------------------


class GuardError(HordeError):
    kind = "guard"


# ---------------------------------------------------------------------------
# Collaborators: ledger, git, tmux returned non-zero
# ---------------------------------------------------------------------------


class CollaboratorError(HordeError):
    kind = "collaborator"

    def __init__(self, cmd: list[str], returncode: int, stderr: str) -> None:
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stderr = stderr.strip()
        detail = f": {self.stderr}" if self.stderr else ""
        super().__init__(f"`{' '.join(self.cmd[:3])}` exited {returncode}{detail}")
