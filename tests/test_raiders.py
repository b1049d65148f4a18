"""Tests for raider worktree management."""

from datetime import datetime
from pathlib import Path

from conftest import commit_file, git, make_item
from horde.agents import AgentStore
from horde.hook import charge
from horde.identity import AgentIdentity
from horde.raiders import add, check_recovery, gc, git_state, list_raiders, nuke, raider_branch, remove, stale


NUX = "horde/raiders/nux"


class TestAdd:
    def test_branch_name(self):
        assert raider_branch("nux", datetime(2026, 10, 18, 9, 5, 7)) == "raider/nux-20261018090507"

    def test_creates_worktree_and_record(self, rigged, ledger_store):
        result = add(rigged, "horde", "nux")
        assert result["status"] == "added"
        path = Path(result["path"])
        assert path == rigged.root / "horde" / "raiders" / "nux" / "warband"
        assert (path / "README.md").is_file()
        assert git(path, "rev-parse", "--abbrev-ref", "HEAD") == result["branch"]
        assert ledger_store.get("gt-horde-raider-nux")["issue_type"] == "agent"

    def test_allocates_from_pool(self, rigged):
        first = add(rigged, "horde")["name"]
        second = add(rigged, "horde")["name"]
        assert first != second
        assert rigged.warband("horde").raider_names() == sorted([first, second])

    def test_duplicate_and_invalid(self, rigged):
        add(rigged, "horde", "nux")
        assert "already exists" in add(rigged, "horde", "nux")["error"]
        assert "invalid raider name" in add(rigged, "horde", "bad-name")["error"]
        assert "unknown warband" in add(rigged, "nowhere", "nux")["error"]


class TestInspection:
    def test_list(self, rigged, fake_tmux):
        add(rigged, "horde", "nux")
        add(rigged, "horde", "toast")
        fake_tmux.add("gt-horde-nux")
        rows = {r["name"]: r for r in list_raiders(rigged)["raiders"]}
        assert rows["nux"]["running"] is True
        assert rows["nux"]["state"] == "idle"
        assert rows["toast"]["running"] is False
        assert rows["toast"]["state"] == "done"
        assert rows["toast"]["branch"].startswith("raider/toast-")

    def test_list_working_state(self, rigged, fake_tmux):
        add(rigged, "horde", "nux")
        make_item(rigged, "gt-abc")
        charge(rigged, "gt-abc", NUX, no_raid=True)
        row = list_raiders(rigged, "horde")["raiders"][0]
        assert row["hook"] == "gt-abc"
        assert row["state"] == "working"

    def test_empty(self, rigged):
        assert list_raiders(rigged) == {"raiders": [], "count": 0}

    def test_git_state(self, rigged):
        path = Path(add(rigged, "horde", "nux")["path"])
        commit_file(path)
        (path / "dirty.txt").write_text("x\n")
        state = git_state(rigged, NUX)
        assert state["uncommitted"] == ["dirty.txt"]
        assert state["unpushed"] == 1
        assert state["stash_count"] == 0
        assert state["cleanup_status"] == "uncommitted"
        assert state["last_commit"]["subject"] == "work"

    def test_git_state_rejects_non_raider(self, rigged):
        assert "not a raider address" in git_state(rigged, "horde/witness")["error"]

    def test_check_recovery(self, rigged, fake_tmux):
        path = Path(add(rigged, "horde", "nux")["path"])
        make_item(rigged, "gt-abc")
        charge(rigged, "gt-abc", NUX, no_raid=True)
        commit_file(path)
        fake_tmux.kill_session("gt-horde-nux")
        result = check_recovery(rigged, NUX)
        assert result["needs_recovery"] is True
        assert result["cleanup_status"] == "unpushed"
        assert len(result["reasons"]) == 2

    def test_live_raider_needs_no_recovery(self, rigged, fake_tmux):
        add(rigged, "horde", "nux")
        fake_tmux.add("gt-horde-nux")
        assert check_recovery(rigged, NUX)["needs_recovery"] is False

    def test_stale(self, rigged, fake_tmux):
        add(rigged, "horde", "nux")
        add(rigged, "horde", "toast")
        fake_tmux.add("gt-horde-toast")
        assert stale(rigged, hours=24)["count"] == 0
        found = stale(rigged, hours=0)
        assert [r["address"] for r in found["stale"]] == [NUX]


class TestRemoval:
    def test_remove_refuses_unpushed(self, rigged):
        path = Path(add(rigged, "horde", "nux")["path"])
        commit_file(path)
        result = remove(rigged, NUX)
        assert result["kind"] == "guard"
        assert path.exists()

    def test_remove_keeps_record(self, rigged, fake_tmux):
        path = Path(add(rigged, "horde", "nux")["path"])
        fake_tmux.add("gt-horde-nux")
        result = remove(rigged, NUX)
        assert result["status"] == "removed"
        assert result["session_killed"] is True
        assert not path.parent.exists()
        assert AgentStore(rigged).get(AgentIdentity.raider("horde", "nux")) is not None
        assert git(rigged.warband("horde").clone_path, "branch", "--list", "raider/*") == ""

    def test_nuke_removes_everything(self, rigged, fake_tmux):
        path = Path(add(rigged, "horde", "nux")["path"])
        commit_file(path)
        result = nuke(rigged, NUX)
        assert result["record_deleted"] is True
        assert not path.exists()
        assert AgentStore(rigged).get(AgentIdentity.raider("horde", "nux")) is None

    def test_gc_deletes_merged_orphan_branches(self, rigged):
        clone = rigged.warband("horde").clone_path
        git(clone, "branch", "raider/ghost-1")
        git(clone, "checkout", "-q", "-b", "raider/unmerged-1")
        commit_file(clone, "x.txt")
        git(clone, "checkout", "-q", "main")
        add(rigged, "horde", "nux")
        result = gc(rigged)
        assert result["deleted"] == ["horde:raider/ghost-1"]
        remaining = git(clone, "branch", "--list", "raider/*", "--format=%(refname:short)").split()
        assert "raider/unmerged-1" in remaining
        assert any(b.startswith("raider/nux-") for b in remaining)
