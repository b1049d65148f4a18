"""Filesystem helpers — atomic writes, JSON state files, slugs, timestamps."""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from datetime import datetime, timezone
from pathlib import Path

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Slug / time helpers
# ---------------------------------------------------------------------------

def _slugify(text: str, max_len: int = 40) -> str:
    """Convert text to a filesystem-safe slug."""
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug[:max_len]


def _precise_timestamp() -> str:
    """Filename timestamp with microseconds, sortable in creation order."""
    return datetime.now().strftime("%Y%m%dT%H%M%S%f")


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def parse_iso(value: str) -> datetime | None:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


# ---------------------------------------------------------------------------
# Atomic file write
# ---------------------------------------------------------------------------

def atomic_write_file(path: str | Path, content: str) -> str:
    """Write content to path atomically (write-to-temp, then rename).

    Returns the final path.
    """
    path = str(path)
    d = os.path.dirname(path)
    os.makedirs(d, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=d, suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(content)
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise
    return path


def reserve_file(directory: str | Path, stem: str, suffix: str) -> Path:
    """Claim a fresh file name with O_CREAT|O_EXCL, adding ``-1``, ``-2`` ... on collision.

    The reserved file is empty until the caller writes it.
    """
    os.makedirs(directory, exist_ok=True)
    n = 0
    while True:
        path = Path(directory) / (f"{stem}{suffix}" if n == 0 else f"{stem}-{n}{suffix}")
        try:
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            n += 1
            continue
        os.close(fd)
        return path


def append_line(path: str | Path, line: str) -> None:
    """Append one line with O_APPEND so concurrent writers never interleave."""
    path = str(path)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o644)
    try:
        os.write(fd, (line.rstrip("\n") + "\n").encode("utf-8"))
    finally:
        os.close(fd)


# ---------------------------------------------------------------------------
# JSON state files
# ---------------------------------------------------------------------------

def read_json(path: str | Path) -> dict | None:
    """Read a JSON object from disk. Returns None if missing or unreadable."""
    try:
        data = json.loads(Path(path).read_text())
    except FileNotFoundError:
        return None
    except (OSError, json.JSONDecodeError, TypeError) as exc:
        log.warning("read_json: cannot read %s: %s", path, exc)
        return None
    return data if isinstance(data, dict) else None


def write_json(path: str | Path, data: dict) -> str:
    return atomic_write_file(path, json.dumps(data, indent=2, default=str) + "\n")
