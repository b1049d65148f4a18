"""Lifecycle logger — append-only agent event stream at logs/encampment.log.

One event per line: ``YYYY-MM-DD HH:MM:SS [kind] actor detail``.
"""

from __future__ import annotations

import logging
import re
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional

from horde.defaults import log_path
from horde.fs import append_line

log = logging.getLogger(__name__)

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"
_LINE_RE = re.compile(r"^(\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}) \[([a-z_]+)\] (\S+)(?: (.*))?$")


class EventKind(str, Enum):
    SPAWN = "spawn"
    WAKE = "wake"
    NUDGE = "nudge"
    HANDOFF = "handoff"
    DONE = "done"
    CRASH = "crash"
    KILL = "kill"
    CALLBACK = "callback"
    PATROL_STARTED = "patrol_started"
    RAIDER_CHECKED = "raider_checked"
    RAIDER_NUDGED = "raider_nudged"
    ESCALATION_SENT = "escalation_sent"
    PATROL_COMPLETE = "patrol_complete"


@dataclass(frozen=True)
class Event:
    timestamp: datetime
    kind: EventKind
    actor: str
    context: str = ""
    detail: str = ""

    def to_dict(self) -> dict[str, object]:
        return {
            "timestamp": self.timestamp.strftime(TIME_FORMAT),
            "kind": self.kind.value,
            "actor": self.actor,
            "detail": self.detail or describe(self.kind, self.context),
        }


def truncate(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    return text[: max(0, max_len - 3)] + "..."


def describe(kind: EventKind, context: str) -> str:
    """Human detail for a kind, e.g. ``completed gt-abc``."""
    ctx = context.strip()
    if kind is EventKind.SPAWN:
        return f"spawned for {ctx}" if ctx else "spawned"
    if kind is EventKind.WAKE:
        return f"resumed ({ctx})" if ctx else "resumed"
    if kind is EventKind.NUDGE:
        return f'nudged with "{truncate(ctx, 60)}"'
    if kind is EventKind.HANDOFF:
        return f"handed off ({ctx})" if ctx else "handed off"
    if kind is EventKind.DONE:
        return f"completed {ctx}" if ctx else "completed"
    if kind is EventKind.CRASH:
        return f"exited unexpectedly ({ctx})" if ctx else "exited unexpectedly"
    if kind is EventKind.KILL:
        return f"killed ({ctx})" if ctx else "killed"
    if kind is EventKind.CALLBACK:
        return f"callback: {ctx}"
    return ctx


def format_line(event: Event) -> str:
    detail = event.detail or describe(event.kind, event.context)
    line = f"{event.timestamp.strftime(TIME_FORMAT)} [{event.kind.value}] {event.actor}"
    return f"{line} {detail}" if detail else line


def parse_line(line: str) -> Event:
    m = _LINE_RE.match(line.rstrip("\n"))
    if not m:
        raise ValueError(f"not a lifecycle log line: {line[:40]!r}")
    try:
        kind = EventKind(m.group(2))
    except ValueError:
        raise ValueError(f"unknown event kind '{m.group(2)}'") from None
    ts = datetime.strptime(m.group(1), TIME_FORMAT)
    return Event(timestamp=ts, kind=kind, actor=m.group(3), detail=m.group(4) or "")


# ---------------------------------------------------------------------------
# Writing
# ---------------------------------------------------------------------------


def log_event(root: str | Path, kind: EventKind, actor: str, context: str = "") -> Event:
    event = Event(timestamp=datetime.now(), kind=kind, actor=actor or "unknown", context=context)
    append_line(log_path(root), format_line(event))
    return event


def crash_kind(exit_code: int) -> EventKind:
    """Map a pane exit status to its event kind."""
    if exit_code == 0:
        return EventKind.DONE
    if exit_code == 130:
        return EventKind.KILL
    return EventKind.CRASH


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Filter:
    kind: Optional[EventKind] = None
    actor_prefix: str = ""
    since: Optional[datetime] = None
    until: Optional[datetime] = None

    def matches(self, event: Event) -> bool:
        if self.kind is not None and event.kind is not self.kind:
            return False
        if self.actor_prefix and not event.actor.startswith(self.actor_prefix):
            return False
        if self.since is not None and event.timestamp < self.since:
            return False
        if self.until is not None and event.timestamp > self.until:
            return False
        return True


def _parse_lines(lines) -> Iterator[Event]:
    for line in lines:
        if not line.strip():
            continue
        try:
            yield parse_line(line)
        except ValueError as exc:
            log.debug("read_events: skipping line: %s", exc)


def read_events(root: str | Path, flt: Filter | None = None, tail: int = 0) -> list[Event]:
    path = log_path(root)
    if not path.exists():
        return []
    flt = flt or Filter()
    with path.open("r") as fp:
        events = [e for e in _parse_lines(fp) if flt.matches(e)]
    if tail > 0:
        events = list(deque(events, maxlen=tail))
    return events


def follow_events(root: str | Path, flt: Filter | None = None, interval: float = 0.5) -> Iterator[Event]:
    """Yield events appended after the call, forever."""
    path = log_path(root)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.touch(exist_ok=True)
    flt = flt or Filter()
    with path.open("r") as fp:
        fp.seek(0, 2)
        while True:
            line = fp.readline()
            if not line:
                time.sleep(interval)
                continue
            for event in _parse_lines([line]):
                if flt.matches(event):
                    yield event


def parse_since(value: str) -> datetime:
    """Accept ``30m``, ``2h``, ``1d`` or an absolute ``YYYY-MM-DD[ HH:MM:SS]``."""
    m = re.fullmatch(r"(\d+)([smhd])", value.strip())
    if m:
        seconds = int(m.group(1)) * {"s": 1, "m": 60, "h": 3600, "d": 86400}[m.group(2)]
        return datetime.fromtimestamp(time.time() - seconds)
    for fmt in (TIME_FORMAT, "%Y-%m-%d"):
        try:
            return datetime.strptime(value.strip(), fmt)
        except ValueError:
            continue
    raise ValueError(f"cannot parse time '{value}' (use 30m, 2h, 1d or YYYY-MM-DD)")
