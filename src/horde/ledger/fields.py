"""``key: value`` fields embedded in work-item descriptions.

Agent records, merge requests and raids keep structured attributes as plain
lines in the description so the ledger stays schema-free. Other prose in the
description is preserved on update.
"""

from __future__ import annotations


def _norm_key(key: str) -> str:
    return key.strip().lower().replace("-", "_")


def parse_fields(description: str | None) -> dict[str, str]:
    """Extract ``key: value`` lines. Keys are lower-cased, dashes become underscores."""
    fields: dict[str, str] = {}
    for line in (description or "").splitlines():
        line = line.strip()
        if ":" not in line:
            continue
        key, _, value = line.partition(":")
        key = _norm_key(key)
        value = value.strip()
        if not key or " " in key or not value:
            continue
        fields.setdefault(key, value)
    return fields


def set_fields(description: str | None, updates: dict[str, object]) -> str:
    """Return ``description`` with ``updates`` applied.

    A value of None or "" removes the field. Existing lines are rewritten in
    place; new fields are appended.
    """
    pending = {_norm_key(k): v for k, v in updates.items()}
    out: list[str] = []
    for line in (description or "").splitlines():
        key = _norm_key(line.partition(":")[0]) if ":" in line else ""
        if key in pending:
            value = pending.pop(key)
            if value not in (None, ""):
                out.append(f"{key}: {value}")
            continue
        out.append(line)
    for key, value in pending.items():
        if value not in (None, ""):
            out.append(f"{key}: {value}")
    return "\n".join(out).strip("\n")


def format_fields(fields: dict[str, object]) -> str:
    return set_fields("", fields)


def split_list(value: str | None) -> list[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]
