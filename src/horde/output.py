"""CLI output formatting: JSON, human-readable and compact modes."""
from __future__ import annotations

import json
import sys

import click


def output(data: dict[str, object], human: bool = False, compact: bool = False) -> None:
    """Print result as JSON (default), human-readable, or compact text.

    A result carrying ``error`` goes to stderr and exits 1.
    """
    if "error" in data:
        click.echo(json.dumps(data, indent=2, default=str), err=True)
        sys.exit(1)
    for warning in data.get("warnings") or []:
        click.echo(f"WARNING: {warning}", err=True)
    if isinstance(data.get("warning"), str):
        click.echo(f"WARNING: {data['warning']}", err=True)
    if compact:
        click.echo(format_compact(data))
    elif human:
        for k, v in data.items():
            if isinstance(v, (list, dict)):
                click.echo(f"{k}: {json.dumps(v, indent=2, default=str)}")
            else:
                click.echo(f"{k}: {v}")
    else:
        click.echo(json.dumps(data, indent=2, default=str))


def format_compact(data: dict[str, object]) -> str:
    """Concise text for agent context injection."""
    lines: list[str] = []

    status = data.get("status", "")
    subject = data.get("address") or data.get("target") or data.get("id") or data.get("item") or ""
    if status and subject:
        lines.append(f"{status}: {subject}")
    elif status:
        lines.append(str(status))

    if data.get("hook"):
        title = f" ({data['title']})" if data.get("title") else ""
        lines.append(f"hook: {data['hook']}{title}")

    if data.get("progress"):
        lines.append(f"progress: {data['progress']}")

    # Tracked items as symbol rows
    items = data.get("items")
    if isinstance(items, list):
        for item in items:
            if isinstance(item, dict):
                worker = item.get("worker") or {}
                who = f"  [{worker.get('address')}, {worker.get('age') or 'dead'}]" if worker else ""
                lines.append(f"  {item.get('symbol', '-')} {item.get('id')}: {item.get('title') or ''}{who}")

    # Generic listings
    for key in ("raiders", "crew", "raids", "messages", "roles", "events"):
        rows = data.get(key)
        if not isinstance(rows, list):
            continue
        for row in rows:
            if isinstance(row, dict):
                head = row.get("address") or row.get("id") or row.get("role") or ""
                tail = row.get("status") or row.get("subject") or row.get("title") or ""
                lines.append(f"  {head}  {tail}".rstrip())
            else:
                lines.append(f"  {row}")

    if not lines:
        return json.dumps(data, indent=2, default=str)

    return "\n".join(lines)
