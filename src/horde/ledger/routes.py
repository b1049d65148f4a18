"""Routing table — map a work-item id prefix to the ledger that owns it.

The ``routes`` file in the workspace ledger directory is JSONL, one
``{"prefix": "gt-", "path": "horde"}`` object per line, appended on
``rig add``. Lookup is longest-prefix; ties go to the earlier line.
"""

from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Union

from horde.defaults import HQ_PREFIX, MAX_WORKERS, ROUTES_FILE, ledger_path
from horde.errors import CorruptRoutes, PreflightError, UnknownPrefix
from horde.fs import append_line
from horde.ledger.client import LedgerClient

log = logging.getLogger(__name__)

EXTERNAL = "external"


@dataclass(frozen=True)
class Route:
    prefix: str
    path: str

    def to_json(self) -> str:
        return json.dumps({"prefix": self.prefix, "path": self.path})


# ---------------------------------------------------------------------------
# Cross-ledger references
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LocalRef:
    id: str

    def encode(self) -> str:
        return self.id


@dataclass(frozen=True)
class ExternalRef:
    prefix: str
    id: str

    def encode(self) -> str:
        return f"{EXTERNAL}:{self.prefix}:{self.id}"


Ref = Union[LocalRef, ExternalRef]


def parse_ref(value: str) -> Ref:
    """Decode ``external:<prefix>:<id>`` or a bare id."""
    if value.startswith(f"{EXTERNAL}:"):
        parts = value.split(":", 2)
        if len(parts) == 3 and parts[2]:
            return ExternalRef(parts[1], parts[2])
    return LocalRef(value)


# ---------------------------------------------------------------------------
# Routes file
# ---------------------------------------------------------------------------


def routes_file(root: str | Path) -> Path:
    return ledger_path(root) / ROUTES_FILE


def load_routes(root: str | Path) -> list[Route]:
    """Read the routes file. Raises CorruptRoutes on any malformed line."""
    path = routes_file(root)
    try:
        text = path.read_text()
    except FileNotFoundError:
        return []
    routes: list[Route] = []
    for lineno, line in enumerate(text.splitlines(), 1):
        if not line.strip():
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError as exc:
            raise CorruptRoutes(f"{path}:{lineno}: {exc.msg}") from None
        if not isinstance(entry, dict) or not entry.get("prefix") or not isinstance(entry.get("path"), str):
            raise CorruptRoutes(f"{path}:{lineno}: expected {{prefix, path}}")
        routes.append(Route(str(entry["prefix"]), entry["path"]))
    return routes


def append_route(root: str | Path, route: Route) -> bool:
    """Append a route. Returns False if the same route already exists."""
    for existing in load_routes(root):
        if existing.prefix == route.prefix:
            if existing.path == route.path:
                return False
            raise PreflightError(
                f"prefix '{route.prefix}' already routes to '{existing.path}'",
                remedy="choose a different --prefix",
            )
    append_line(routes_file(root), route.to_json())
    return True


def resolve_route(routes: list[Route], item_id: str) -> Route:
    best: Route | None = None
    for route in routes:
        if item_id.startswith(route.prefix) and (best is None or len(route.prefix) > len(best.prefix)):
            best = route
    if best is None:
        raise UnknownPrefix(item_id)
    return best


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------


class LedgerRouter:
    """Dispatch work-item operations to the ledger that owns the id."""

    def __init__(self, root: str | Path, client_factory: Callable[[Path], LedgerClient]) -> None:
        self.root = Path(root)
        self._factory = client_factory
        self._routes: list[Route] | None = None
        self._clients: dict[Path, LedgerClient] = {}

    @property
    def routes(self) -> list[Route]:
        if self._routes is None:
            self._routes = load_routes(self.root)
        return self._routes

    def client_at(self, path: Path) -> LedgerClient:
        path = path.resolve()
        if path not in self._clients:
            self._clients[path] = self._factory(path)
        return self._clients[path]

    @property
    def hq(self) -> LedgerClient:
        return self.client_at(self.root)

    def ledger_dir(self, item_id: str) -> Path:
        ref = parse_ref(item_id)
        return (self.root / resolve_route(self.routes, ref.id).path).resolve()

    def client_for(self, item_id: str) -> LedgerClient:
        return self.client_at(self.ledger_dir(item_id))

    def prefix_for(self, item_id: str) -> str:
        return resolve_route(self.routes, parse_ref(item_id).id).prefix

    def encode_for_hq(self, item_id: str) -> str:
        """Encode an id for an edge stored in the workspace ledger."""
        route = resolve_route(self.routes, item_id)
        if (self.root / route.path).resolve() == self.root.resolve():
            return item_id
        return ExternalRef(route.prefix, item_id).encode()

    def show(self, item_id: str) -> dict | None:
        ref = parse_ref(item_id)
        return self.client_for(ref.id).show(ref.id)

    def show_many(self, item_ids: list[str]) -> dict[str, dict]:
        """Batch fetch across ledgers: one ``show`` per ledger, run concurrently."""
        groups: dict[Path, list[str]] = {}
        for raw in item_ids:
            ref = parse_ref(raw)
            groups.setdefault(self.ledger_dir(ref.id), []).append(ref.id)
        found: dict[str, dict] = {}
        if not groups:
            return found
        with ThreadPoolExecutor(max_workers=min(MAX_WORKERS, len(groups))) as pool:
            futures = [pool.submit(self.client_at(path).show_many, ids) for path, ids in groups.items()]
            for future in futures:
                for item in future.result():
                    found[item["id"]] = item
        return found

    def rig_ledgers(self) -> list[Path]:
        seen: list[Path] = []
        for route in self.routes:
            path = (self.root / route.path).resolve()
            if path not in seen:
                seen.append(path)
        return seen


def hq_route() -> Route:
    return Route(f"{HQ_PREFIX}-", ".")
