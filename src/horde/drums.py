"""Drums — file-backed asynchronous messages between agents.

Each message is a Markdown file with YAML front matter in the recipient's
inbox directory, ``drums/inbox/<address-slug>/<ts>-<from>-<subject>.md``.
The final name is reserved with O_EXCL, then the content is written to a
temp name and renamed over it. An empty file is a reservation in flight and
is skipped by readers. The timestamp prefix gives FIFO order per recipient.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path

import yaml

from horde.defaults import drums_path
from horde.fs import _precise_timestamp, _slugify, atomic_write_file, now_iso, reserve_file
from horde.identity import parse_address

log = logging.getLogger(__name__)

_FM_PATTERN = re.compile(r"^---\s*\n(.*?)\n---\s*\n?", re.DOTALL)
_PLAIN_ADDRESS = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


def normalize_address(address: str) -> str:
    """Canonical agent address, or a plain mailbox name such as ``human``."""
    try:
        return parse_address(address).address
    except ValueError:
        bare = address.strip().strip("/")
        if _PLAIN_ADDRESS.match(bare):
            return bare
        raise ValueError(f"invalid drums address '{address}'") from None


def _address_slug(address: str) -> str:
    return address.strip("/").replace("/", "__")


def inbox_dir(root: str | Path, address: str) -> Path:
    return drums_path(root) / "inbox" / _address_slug(normalize_address(address))


def _render(meta: dict[str, object], body: str) -> str:
    front = yaml.safe_dump(meta, sort_keys=False, allow_unicode=True).strip()
    return f"---\n{front}\n---\n{body.rstrip()}\n"


def _parse(path: Path) -> dict[str, object]:
    content = path.read_text(encoding="utf-8")
    m = _FM_PATTERN.match(content)
    meta: dict[str, object] = {}
    body = content
    if m:
        try:
            loaded = yaml.safe_load(m.group(1)) or {}
        except yaml.YAMLError as exc:
            log.warning("_parse: bad front matter in %s: %s", path, exc)
            loaded = {}
        if isinstance(loaded, dict):
            meta = loaded
        body = content[m.end():]
    meta.setdefault("id", path.stem)
    meta["read"] = bool(meta.get("read", False))
    meta["body"] = body.rstrip("\n")
    meta["path"] = str(path)
    return meta


def send(root: str | Path, to: str, sender: str, subject: str, body: str = "") -> dict[str, object]:
    try:
        recipient = normalize_address(to)
        from_addr = normalize_address(sender) if sender else "human"
    except ValueError as exc:
        return {"error": f"BLOCKED: {exc}", "kind": "preflight"}
    stem = f"{_precise_timestamp()}-{_slugify(from_addr, 20)}-{_slugify(subject, 30) or 'msg'}"
    path = reserve_file(inbox_dir(root, recipient), stem, ".md")
    meta = {
        "id": path.stem,
        "to": recipient,
        "from": from_addr,
        "subject": subject,
        "timestamp": now_iso(),
        "read": False,
    }
    atomic_write_file(path, _render(meta, body))
    return {"status": "sent", "id": path.stem, "to": recipient, "subject": subject, "path": str(path)}


def list_inbox(root: str | Path, address: str, unread_only: bool = False) -> list[dict[str, object]]:
    d = inbox_dir(root, address)
    if not d.is_dir():
        return []
    messages = []
    for path in sorted(d.glob("*.md")):
        try:
            if path.stat().st_size == 0:
                continue
            msg = _parse(path)
        except OSError as exc:
            log.warning("list_inbox: cannot read %s: %s", path, exc)
            continue
        if unread_only and msg["read"]:
            continue
        messages.append(msg)
    return messages


def inbox(root: str | Path, address: str, unread_only: bool = False) -> dict[str, object]:
    try:
        recipient = normalize_address(address)
    except ValueError as exc:
        return {"error": f"BLOCKED: {exc}", "kind": "preflight"}
    messages = list_inbox(root, recipient, unread_only)
    summary = [
        {k: m.get(k) for k in ("id", "from", "subject", "timestamp", "read")}
        for m in messages
    ]
    return {
        "address": recipient,
        "count": len(summary),
        "unread": sum(1 for m in messages if not m["read"]),
        "messages": summary,
    }


def _find(root: str | Path, message_id: str, address: str | None) -> Path | None:
    if address:
        candidate = inbox_dir(root, address) / f"{message_id}.md"
        return candidate if candidate.exists() else None
    base = drums_path(root) / "inbox"
    if not base.is_dir():
        return None
    for candidate in base.glob(f"*/{message_id}.md"):
        return candidate
    return None


def mark_read(path: Path) -> None:
    msg = _parse(path)
    if msg["read"]:
        return
    body = str(msg.pop("body"))
    msg.pop("path")
    msg["read"] = True
    atomic_write_file(path, _render(msg, body))


def read(root: str | Path, message_id: str, address: str | None = None) -> dict[str, object]:
    """Return a message and mark it read. Marking is idempotent."""
    path = _find(root, message_id, address)
    if path is None:
        return {"error": f"BLOCKED: message '{message_id}' not found", "kind": "preflight"}
    msg = _parse(path)
    mark_read(path)
    msg["read"] = True
    return msg


def delete(root: str | Path, message_id: str, address: str | None = None) -> bool:
    path = _find(root, message_id, address)
    if path is None:
        return False
    os.unlink(path)
    return True
