"""Tests for per-worktree checkpoints."""

from pathlib import Path

import pytest

from conftest import commit_file, git, make_item
from horde.checkpoint import (
    Checkpoint,
    checkpoint_clear,
    checkpoint_path,
    checkpoint_read,
    checkpoint_write,
    extract_step_id,
    read,
    write,
)
from horde.hook import charge
from horde.raiders import add as add_raider


@pytest.fixture
def repo(tmp_path) -> Path:
    path = tmp_path / "wt"
    git(tmp_path, "init", "-q", "-b", "main", str(path))
    commit_file(path, "a.txt", "a\n", "first")
    return path


class TestExtractStepId:
    @pytest.mark.parametrize("item_id, expected", [
        ("gt-mol.1", "gt-mol"),
        ("gt-mol.12", "gt-mol"),
        ("gt-a.b.3", "gt-a.b"),
        ("gt-mol.0", None),
        ("gt-mol.01", None),
        ("gt-mol", None),
        ("gt-mol.", None),
        (".1", None),
        ("", None),
    ])
    def test_cases(self, item_id, expected):
        assert extract_step_id(item_id) == expected


class TestCheckpointFile:
    def test_write_read_clear(self, repo):
        write(repo, Checkpoint(branch="main", notes="halfway", modified_files=["a.txt"]))
        cp = read(repo)
        assert cp.branch == "main"
        assert cp.notes == "halfway"
        assert cp.timestamp
        assert not cp.is_stale()
        assert checkpoint_clear(repo)["status"] == "cleared"
        assert read(repo) is None
        assert checkpoint_clear(repo)["status"] == "none"

    def test_optional_fields_omitted(self, repo):
        import json

        write(repo, Checkpoint(branch="main"))
        data = json.loads(checkpoint_path(repo).read_text())
        assert set(data) == {"timestamp", "branch", "modified_files"}

    def test_stale_after_a_day(self, repo):
        write(repo, Checkpoint(timestamp="2020-01-01T00:00:00+00:00"))
        result = checkpoint_read(repo)
        assert result["stale"] is True
        assert result["age_seconds"] > 86400

    def test_unknown_keys_ignored(self, repo):
        checkpoint_path(repo).write_text('{"timestamp": "2026-10-18T00:00:00Z", "extra": 1, "modified_files": "x"}')
        cp = read(repo)
        assert cp.modified_files == []

    def test_summary(self):
        cp = Checkpoint(molecule_id="gt-mol", current_step="gt-mol.2", hooked_bead="gt-mol.2",
                        branch="raider/nux-1", modified_files=["a", "b"])
        assert cp.summary() == "totem gt-mol step gt-mol.2, hooked gt-mol.2, on raider/nux-1, 2 modified"
        assert Checkpoint().summary() == "empty checkpoint"


class TestCheckpointCommands:
    def test_write_captures_git_state(self, hctx, repo):
        (repo / "dirty.txt").write_text("wip\n")
        result = checkpoint_write(hctx, repo, notes="trying things")
        assert result["status"] == "written"
        data = checkpoint_read(repo)
        assert data["branch"] == "main"
        assert "dirty.txt" in data["modified_files"]
        assert data["notes"] == "trying things"
        assert data["stale"] is False
        assert "hooked_bead" not in data

    def test_write_records_hooked_step(self, rigged):
        worktree = Path(add_raider(rigged, "horde", "nux")["path"])
        make_item(rigged, "gt-mol.3", title="Step three")
        charge(rigged, "gt-mol.3", "horde/raiders/nux", no_raid=True)
        checkpoint_write(rigged, worktree)
        data = checkpoint_read(worktree)
        assert data["hooked_bead"] == "gt-mol.3"
        assert data["molecule_id"] == "gt-mol"
        assert data["current_step"] == "gt-mol.3"
        assert data["branch"].startswith("raider/nux-")

    def test_read_missing(self, repo):
        assert checkpoint_read(repo)["status"] == "none"
