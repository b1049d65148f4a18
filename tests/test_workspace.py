"""Tests for install, rig add and workspace discovery."""

import json
import os

import pytest

from conftest import git
from horde.defaults import WORKSPACE_MARKER
from horde.errors import NotInWorkspace
from horde.ledger.routes import Route, load_routes
from horde.workspace import (
    derive_prefix,
    find_workspace,
    find_workspace_or_error,
    install,
    load_warbands,
    rig_add,
)


class TestInstall:
    def test_layout(self, workspace, ledger_store):
        assert (workspace / WORKSPACE_MARKER).is_file()
        for d in ("warchief/.claude", "shaman/.claude", "logs", "settings", "drums"):
            assert (workspace / d).is_dir(), d
        encampment = json.loads((workspace / WORKSPACE_MARKER).read_text())
        assert encampment["name"] == "ws"
        assert encampment["owner"] == "tester"
        assert load_routes(workspace) == [Route("hq-", ".")]
        assert ledger_store.prefixes[workspace.resolve()] == "hq"
        assert load_warbands(workspace) == {}

    def test_refuses_existing(self, workspace, ledger_store):
        result = install(workspace, ledger_factory=ledger_store.client)
        assert "already a horde workspace" in result["error"]

    def test_old_ledger_refuses(self, tmp_path, ledger_store):
        ledger_store.version = "0.40.0"
        result = install(tmp_path / "ws2", ledger_factory=ledger_store.client)
        assert result["kind"] == "preflight"
        assert not (tmp_path / "ws2" / WORKSPACE_MARKER).exists()


class TestRigAdd:
    def test_clones_and_routes(self, rigged, origin, ledger_store):
        root = rigged.root
        wb = rigged.warband("horde")
        assert wb.prefix == "gt"
        assert wb.default_branch == "main"
        assert wb.git_url == str(origin)
        assert (wb.clone_path / "README.md").is_file()
        for d in ("raiders", "clan", "witness", "forge/warband"):
            assert (root / "horde" / d).is_dir(), d
        assert Route("gt-", "horde") in load_routes(root)
        assert ledger_store.prefixes[(root / "horde").resolve()] == "gt"
        assert rigged.router.client_for("gt-abc").workdir == (root / "horde").resolve()

    def test_duplicate_name(self, rigged, origin):
        assert "already exists" in rig_add(rigged, "horde", str(origin))["error"]

    def test_duplicate_prefix(self, rigged, origin):
        result = rig_add(rigged, "other", str(origin), prefix="gt")
        assert "used by warband 'horde'" in result["error"]

    def test_invalid_names(self, hctx, origin):
        assert "invalid warband name" in rig_add(hctx, "bad-name", str(origin))["error"]
        assert "invalid prefix" in rig_add(hctx, "ok", str(origin), prefix="hq")["error"]

    def test_bad_url_leaves_registry_untouched(self, hctx, tmp_path):
        result = rig_add(hctx, "broken", str(tmp_path / "missing.git"), prefix="br")
        assert result["kind"] == "collaborator"
        assert load_warbands(hctx.root) == {}

    def test_old_ledger_refuses(self, hctx, origin, ledger_store):
        ledger_store.version = "0.10.0"
        result = rig_add(hctx, "horde", str(origin), prefix="gt")
        assert result["kind"] == "preflight"
        assert "too old" in result["error"]
        assert not (hctx.root / "horde").exists()
        assert load_warbands(hctx.root) == {}

    def test_derive_prefix(self):
        assert derive_prefix("horde") == "ho"
        assert derive_prefix("dark-forge") == "df"
        assert derive_prefix("hq") == "hqx"
        assert derive_prefix("h_q") == "hqx"


class TestDiscovery:
    def test_from_nested_dir(self, workspace):
        nested = workspace / "horde" / "witness"
        nested.mkdir(parents=True)
        assert find_workspace(nested) == workspace

    def test_worktree_uses_outermost_root(self, rigged):
        # a cloned repo may carry its own warchief/encampment.json
        inner = rigged.root / "horde" / "raiders" / "nux" / "warband"
        (inner / "warchief").mkdir(parents=True)
        (inner / WORKSPACE_MARKER).write_text("{}")
        assert find_workspace(inner / "warchief") == rigged.root

    def test_not_in_workspace(self, tmp_path):
        assert find_workspace(tmp_path) is None
        with pytest.raises(NotInWorkspace):
            find_workspace_or_error(tmp_path)

    def test_env_fallback_for_deleted_dir(self, workspace, tmp_path, monkeypatch):
        monkeypatch.setenv("HD_WORKSPACE_ROOT", str(workspace))
        assert find_workspace_or_error(tmp_path / "gone") == workspace

    def test_deleted_cwd(self, workspace, tmp_path, monkeypatch):
        doomed = tmp_path / "doomed"
        doomed.mkdir()
        monkeypatch.chdir(doomed)
        os.rmdir(doomed)
        monkeypatch.setenv("HD_WORKSPACE_ROOT", str(workspace))
        assert find_workspace_or_error() == workspace

    def test_git_repo_is_not_a_workspace(self, origin):
        assert git(origin, "rev-parse", "--is-bare-repository") == "true"
        assert find_workspace(origin) is None
