"""Tests for role resolution from environment, cwd and flags."""

import pytest

from horde.errors import AmbiguousPath, MissingComponent, NotInWorkspace
from horde.identity import Role
from horde.roles import detect_from_path, resolve_role, role_home, role_list


class TestDetectFromPath:
    @pytest.mark.parametrize("rel, expected", [
        ("warchief", (Role.WARCHIEF, None, None)),
        ("shaman", (Role.SHAMAN, None, None)),
        ("horde/witness", (Role.WITNESS, "horde", None)),
        ("horde/forge/warband/src", (Role.FORGE, "horde", None)),
        ("horde/warchief/warband", (Role.WARCHIEF, None, None)),
        ("horde/raiders/nux/warband/pkg", (Role.RAIDER, "horde", "nux")),
        ("horde/clan/ana/warband", (Role.CREW, "horde", "ana")),
        ("horde", (Role.UNKNOWN, "horde", None)),
        ("logs", (Role.UNKNOWN, None, None)),
        (".", (Role.UNKNOWN, None, None)),
    ])
    def test_paths(self, tmp_path, rel, expected):
        assert detect_from_path(tmp_path, tmp_path / rel) == expected

    def test_outside_root(self, tmp_path):
        assert detect_from_path(tmp_path / "ws", tmp_path)[0] is Role.UNKNOWN


class TestResolveRole:
    def test_env_beats_cwd_with_mismatch(self, workspace):
        cwd = workspace / "horde" / "warchief" / "warband"
        cwd.mkdir(parents=True)
        info = resolve_role(cwd, env={"HD_ROLE": "shaman"})
        assert info.role is Role.SHAMAN
        assert info.source == "env"
        assert info.mismatch is True
        assert info.cwd_role is Role.WARCHIEF
        assert "warchief" in info.to_dict()["warning"]

    def test_cwd_raider(self, workspace):
        cwd = workspace / "horde" / "raiders" / "nux" / "warband"
        cwd.mkdir(parents=True)
        info = resolve_role(cwd, env={})
        assert info.identity.address == "horde/raiders/nux"
        assert info.source == "cwd"
        assert info.workspace_root == workspace

    def test_env_fills_from_cwd(self, workspace):
        cwd = workspace / "horde" / "raiders" / "nux" / "warband"
        cwd.mkdir(parents=True)
        info = resolve_role(cwd, env={"HD_ROLE": "raider"})
        assert (info.rig, info.name) == ("horde", "nux")
        assert info.source == "env+cwd"
        assert info.mismatch is False

    def test_env_address(self, workspace):
        info = resolve_role(workspace, env={"HD_ROLE": "horde/clan/ana"})
        assert info.identity.address == "horde/clan/ana"

    def test_flag_wins(self, workspace):
        info = resolve_role(workspace, env={"HD_ROLE": "shaman"}, role_flag="witness", rig_flag="horde")
        assert info.identity.address == "horde/witness"
        assert info.source == "flag"

    def test_missing_components(self, workspace):
        with pytest.raises(MissingComponent) as err:
            resolve_role(workspace, env={"HD_ROLE": "raider"})
        assert err.value.missing == ["warband", "name"]

    def test_ambiguous_rig_dir(self, workspace):
        (workspace / "horde").mkdir()
        with pytest.raises(AmbiguousPath):
            resolve_role(workspace / "horde", env={})

    def test_outside_workspace(self, tmp_path):
        with pytest.raises(NotInWorkspace):
            resolve_role(tmp_path, env={})

    def test_unknown_role_at_root(self, workspace):
        info = resolve_role(workspace, env={})
        assert info.role is Role.UNKNOWN
        with pytest.raises(MissingComponent):
            info.identity


class TestRoleCommands:
    def test_home(self, tmp_path):
        result = role_home(tmp_path, "crew", "horde", "ana")
        assert result["home"] == str(tmp_path / "horde" / "clan" / "ana" / "warband")
        assert role_home(tmp_path, "horde/witness")["address"] == "horde/witness"

    def test_list_covers_known_roles(self):
        roles = {r["role"]: r["scope"] for r in role_list()["roles"]}
        assert roles == {
            "warchief": "workspace", "shaman": "workspace", "witness": "warband",
            "forge": "warband", "raider": "warband", "crew": "warband",
        }
