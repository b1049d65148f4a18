"""Work-claim protocol: charge, unsling, done and hook inspection."""

from ._helpers import hook_show, reconcile_hook
from .charge import charge
from .done import done, exit_kind, find_merge_request, issue_from_branch
from .unsling import unsling

__all__ = [
    "charge",
    "done",
    "exit_kind",
    "find_merge_request",
    "hook_show",
    "issue_from_branch",
    "reconcile_hook",
    "unsling",
]
