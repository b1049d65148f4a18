"""Shared fixtures: in-memory ledger, recording tmux, real git workspaces."""

from __future__ import annotations

import copy
import subprocess
import time
from pathlib import Path

import pytest

from horde.context import HordeContext
from horde.defaults import ALL_ROLE_ENV, ENV_DEBUG, ENV_LEDGER_BIN, ENV_RUNTIME_SESSION_ID, ENV_TMUX_BIN
from horde.errors import CollaboratorError
from horde.ledger.client import CLOSED_STATUSES, compare_versions
from horde.ledger.routes import parse_ref
from horde.workspace import install, rig_add


# ---------------------------------------------------------------------------
# Fake ledger
# ---------------------------------------------------------------------------


class FakeLedgerStore:
    """All ledgers of a test workspace, keyed by resolved directory."""

    version = "0.47.1"

    def __init__(self) -> None:
        self.items: dict[Path, dict[str, dict]] = {}
        self.prefixes: dict[Path, str] = {}
        self.calls: list[tuple] = []
        self._clock = 0
        self._seq = 0

    def client(self, workdir) -> "FakeLedger":
        return FakeLedger(self, workdir)

    def tick(self) -> str:
        self._clock += 1
        return f"2026-10-18T12:{self._clock // 60:02d}:{self._clock % 60:02d}Z"

    def next_id(self, prefix: str) -> str:
        self._seq += 1
        return f"{prefix}-{self._seq:03d}"

    def find(self, item_id: str) -> dict | None:
        for items in self.items.values():
            if item_id in items:
                return items[item_id]
        return None

    def get(self, item_id: str) -> dict:
        item = self.find(item_id)
        assert item is not None, f"{item_id} not in any ledger"
        return item


class FakeLedger:
    """Duck-typed LedgerClient honoring the ``rl --json`` contract."""

    def __init__(self, store: FakeLedgerStore, workdir) -> None:
        self.store = store
        self.workdir = Path(workdir).resolve()

    @property
    def _items(self) -> dict[str, dict]:
        return self.store.items.setdefault(self.workdir, {})

    def _need(self, item_id: str) -> dict:
        item = self._items.get(item_id)
        if item is None:
            raise CollaboratorError(["rl", "show", item_id], 1, f"issue {item_id} not found")
        return item

    def _log(self, *call) -> None:
        self.store.calls.append((self.workdir, *call))

    def init(self, prefix: str) -> None:
        self._log("init", prefix)
        self.store.prefixes[self.workdir] = prefix
        self.store.items.setdefault(self.workdir, {})

    def version(self) -> str:
        return self.store.version

    def check_version(self, minimum: str = "0.43.0") -> str:
        if compare_versions(self.store.version, minimum) < 0:
            from horde.errors import PreflightError
            raise PreflightError(f"rl {self.store.version} is too old")
        return self.store.version

    def create(self, title, issue_type="task", description="", item_id=None, priority=None,
               assignee=None, parent=None, labels=None, ephemeral=False) -> dict:
        self._log("create", item_id or title, issue_type)
        prefix = self.store.prefixes.get(self.workdir, "xx")
        item_id = item_id or self.store.next_id(prefix)
        if item_id in self._items:
            raise CollaboratorError(["rl", "create"], 1, f"issue {item_id} already exists")
        now = self.store.tick()
        self._items[item_id] = {
            "id": item_id,
            "title": title,
            "description": description or "",
            "status": "open",
            "priority": 2 if priority is None else priority,
            "issue_type": issue_type,
            "assignee": assignee or "",
            "parent": parent or "",
            "labels": list(labels or []),
            "created_at": now,
            "updated_at": now,
            "dependencies": [],
            "slots": {},
            "ephemeral": ephemeral,
        }
        return copy.deepcopy(self._items[item_id])

    def _render(self, item: dict) -> dict:
        out = copy.deepcopy(item)
        for dep in out["dependencies"]:
            target = self.store.find(parse_ref(dep["id"]).id)
            dep["status"] = target["status"] if target else "missing"
        return out

    def show_many(self, item_ids: list[str]) -> list[dict]:
        self._log("show", *item_ids)
        return [self._render(self._items[i]) for i in item_ids if i in self._items]

    def show(self, item_id: str) -> dict | None:
        items = self.show_many([item_id])
        return items[0] if items else None

    def list(self, issue_type=None, status=None, parent=None, assignee=None, priority=None,
             include_closed=False) -> list[dict]:
        self._log("list", issue_type, status)
        out = []
        for item in self._items.values():
            if issue_type and item["issue_type"] != issue_type:
                continue
            if status and item["status"] != status:
                continue
            if not status and not include_closed and item["status"] in CLOSED_STATUSES:
                continue
            if parent and item["parent"] != parent:
                continue
            if assignee and item["assignee"] != assignee:
                continue
            if priority is not None and item["priority"] != priority:
                continue
            out.append({k: copy.deepcopy(v) for k, v in item.items() if k != "dependencies"})
        return out

    def update(self, item_id, status=None, assignee=None, description=None, title=None, add_labels=None) -> None:
        self._log("update", item_id, status, assignee)
        item = self._need(item_id)
        if status is not None:
            item["status"] = status
        if assignee is not None:
            item["assignee"] = assignee
        if description is not None:
            item["description"] = description
        if title is not None:
            item["title"] = title
        item["labels"] += list(add_labels or [])
        item["updated_at"] = self.store.tick()

    def close(self, item_id, reason=None) -> None:
        self._log("close", item_id, reason)
        item = self._need(item_id)
        item["status"] = "closed"
        item["close_reason"] = reason or ""

    def reopen(self, item_id) -> None:
        self._log("reopen", item_id)
        self._need(item_id)["status"] = "open"

    def delete(self, item_id) -> None:
        self._log("delete", item_id)
        self._need(item_id)
        del self._items[item_id]

    def ready(self) -> list[dict]:
        return [
            self._render(i) for i in self._items.values()
            if i["status"] == "open" and not any(
                d["dependency_type"] in ("blocks", "depends_on") and
                (self.store.find(parse_ref(d["id"]).id) or {}).get("status") not in CLOSED_STATUSES
                for d in i["dependencies"]
            )
        ]

    def dep_add(self, from_id, to_ref, dep_type="depends_on") -> None:
        self._log("dep_add", from_id, to_ref, dep_type)
        deps = self._need(from_id)["dependencies"]
        if not any(d["id"] == to_ref and d["dependency_type"] == dep_type for d in deps):
            deps.append({"id": to_ref, "dependency_type": dep_type})

    def slot_set(self, item_id, slot, value) -> None:
        self._log("slot_set", item_id, slot, value)
        self._need(item_id)["slots"][slot] = value

    def slot_clear(self, item_id, slot) -> None:
        self._log("slot_clear", item_id, slot)
        self._need(item_id)["slots"].pop(slot, None)


# ---------------------------------------------------------------------------
# Fake tmux
# ---------------------------------------------------------------------------


class FakeTmux:
    """Duck-typed Tmux keeping sessions in memory."""

    def __init__(self) -> None:
        self.sessions: dict[str, dict] = {}
        self.sent: list[tuple[str, str]] = []
        self.attached: list[str] = []
        self.killed: list[str] = []

    def add(self, name: str, cwd: str = "/", command: str = "claude") -> None:
        self.sessions[name] = {"cwd": cwd, "command": command, "env": {}, "options": {}, "hooks": {},
                               "activity": int(time.time()) - 300, "startup": ""}

    def has_session(self, name: str) -> bool:
        return name in self.sessions

    def new_session(self, name: str, cwd: str, command: str | None = None) -> None:
        self.add(name, cwd, command or "bash")

    def kill_session(self, name: str) -> bool:
        if self.sessions.pop(name, None) is None:
            return False
        self.killed.append(name)
        return True

    def attach(self, name: str) -> int:
        self.attached.append(name)
        return 0

    def display(self, name: str, fmt: str) -> str:
        return ""

    def pane_current_command(self, name: str) -> str:
        return self.sessions.get(name, {}).get("command", "")

    def pane_current_path(self, name: str) -> str:
        return self.sessions.get(name, {}).get("cwd", "")

    def pane_pid(self, name: str) -> int | None:
        return None

    def session_activity(self, name: str) -> int | None:
        return self.sessions.get(name, {}).get("activity")

    def list_panes(self) -> list[dict[str, str]]:
        return [{"session": n, "command": s["command"], "path": s["cwd"]} for n, s in self.sessions.items()]

    def child_commands(self, name: str) -> list[str]:
        return []

    def respawn_pane(self, name: str, command: str) -> None:
        self.sessions[name]["command"] = "claude"
        self.sessions[name]["startup"] = command

    def send_keys(self, name: str, text: str) -> None:
        self.sent.append((name, text))

    def set_environment(self, name: str, key: str, value: str) -> bool:
        self.sessions[name]["env"][key] = value
        return True

    def set_option(self, name: str, option: str, value: str) -> bool:
        self.sessions[name]["options"][option] = value
        return True

    def set_hook(self, name: str, hook: str, command: str) -> bool:
        self.sessions[name]["hooks"][hook] = command
        return True


# ---------------------------------------------------------------------------
# Git helpers
# ---------------------------------------------------------------------------


def git(cwd, *args: str) -> str:
    result = subprocess.run(["git", *args], cwd=str(cwd), capture_output=True, text=True, check=True)
    return result.stdout.strip()


def commit_file(repo, name: str = "work.txt", content: str = "work\n", message: str = "work") -> None:
    Path(repo, name).write_text(content)
    git(repo, "add", name)
    git(repo, "commit", "-q", "-m", message)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path):
    for key in (*ALL_ROLE_ENV, ENV_LEDGER_BIN, ENV_TMUX_BIN, ENV_DEBUG, ENV_RUNTIME_SESSION_ID):
        monkeypatch.delenv(key, raising=False)
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    for role in ("AUTHOR", "COMMITTER"):
        monkeypatch.setenv(f"GIT_{role}_NAME", "Horde Test")
        monkeypatch.setenv(f"GIT_{role}_EMAIL", "horde@example.com")


@pytest.fixture
def ledger_store() -> FakeLedgerStore:
    return FakeLedgerStore()


@pytest.fixture
def fake_tmux() -> FakeTmux:
    return FakeTmux()


@pytest.fixture
def workspace(tmp_path, ledger_store) -> Path:
    result = install(tmp_path / "ws", name="ws", owner="tester", ledger_factory=ledger_store.client)
    assert result["status"] == "installed", result
    return Path(result["root"])


@pytest.fixture
def hctx(workspace, ledger_store, fake_tmux) -> HordeContext:
    return HordeContext(root=workspace, tmux=fake_tmux, ledger_factory=ledger_store.client)


@pytest.fixture
def origin(tmp_path) -> Path:
    """Bare repository with one commit on ``main``."""
    bare = tmp_path / "origin.git"
    git(tmp_path, "init", "-q", "--bare", "-b", "main", str(bare))
    seed = tmp_path / "seed"
    git(tmp_path, "init", "-q", "-b", "main", str(seed))
    commit_file(seed, "README.md", "# project\n", "initial")
    git(seed, "remote", "add", "origin", str(bare))
    git(seed, "push", "-q", "origin", "main")
    return bare


@pytest.fixture
def rigged(hctx, origin) -> HordeContext:
    """Workspace with warband ``horde`` (prefix ``gt``) cloned from ``origin``."""
    result = rig_add(hctx, "horde", str(origin), prefix="gt")
    assert result["status"] == "added", result
    return hctx


def make_item(hctx: HordeContext, item_id: str, title: str = "Fix the thing", **kwargs) -> dict:
    return hctx.router.client_for(item_id).create(title=title, item_id=item_id, **kwargs)


def add_rig_ledger(hctx: HordeContext, name: str, prefix: str) -> None:
    """Register a ledger-only warband (no clone) for routing tests."""
    from horde.ledger.routes import Route, append_route
    from horde.workspace import Warband, load_warbands, save_warbands

    path = hctx.root / name
    (path / "raiders").mkdir(parents=True, exist_ok=True)
    hctx.ledger(path).init(prefix)
    warbands = load_warbands(hctx.root)
    warbands[name] = Warband(name=name, path=path, prefix=prefix, default_branch="main",
                             git_url="", added_at="2026-10-18T00:00:00Z")
    save_warbands(hctx.root, warbands)
    append_route(hctx.root, Route(f"{prefix}-", name))
    hctx.reset_caches()
