"""Tests for YAML settings: runtime profiles and raider name pools."""

import pytest

from horde.config import (
    DEFAULT_RUNTIMES,
    NamepoolConfig,
    load_namepool_config,
    load_runtime_config,
    save_namepool_config,
)
from horde.namepool import allocate_name, list_themes, pool_for, theme_names


def _write_runtimes(root, text: str) -> None:
    path = root / "settings" / "runtimes.yaml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)


# ---------------------------------------------------------------------------
# runtimes.yaml
# ---------------------------------------------------------------------------


class TestRuntimes:
    def test_defaults_without_file(self, tmp_path):
        cfg = load_runtime_config(tmp_path)
        assert cfg is DEFAULT_RUNTIMES
        assert cfg.get().name == "claude"
        assert "node" in cfg.get().pane_commands

    def test_custom_runtime_and_default(self, tmp_path):
        _write_runtimes(tmp_path, (
            "default: aider\n"
            "runtimes:\n"
            "  aider:\n"
            "    command: aider --yes\n"
            "    ready_timeout: 2\n"
        ))
        cfg = load_runtime_config(tmp_path)
        rt = cfg.get()
        assert rt.name == "aider"
        assert rt.pane_commands == ("aider",)
        assert rt.ready_timeout == 2.0
        assert "claude" in cfg.runtimes
        assert cfg.all_pane_commands()[:2] == ("claude", "node")

    def test_pane_command_allow_list(self, tmp_path):
        _write_runtimes(tmp_path, "runtimes:\n  claude:\n    command: claude\n    pane_commands: [claude, bun]\n")
        assert load_runtime_config(tmp_path).get("claude").pane_commands == ("claude", "bun")

    @pytest.mark.parametrize("text, match", [
        ("- a\n- b\n", "mapping"),
        ("runtimes:\n  x: {}\n", "command"),
        ("runtimes:\n  x:\n    command: x\n    pane_commands: x\n", "list"),
        ("default: nope\n", "not defined"),
    ])
    def test_invalid(self, tmp_path, text, match):
        _write_runtimes(tmp_path, text)
        with pytest.raises(ValueError, match=match):
            load_runtime_config(tmp_path)

    def test_unknown_runtime(self):
        with pytest.raises(ValueError, match="Unknown runtime"):
            DEFAULT_RUNTIMES.get("emacs")


# ---------------------------------------------------------------------------
# Name pools
# ---------------------------------------------------------------------------


class TestNamepool:
    def test_first_free_name(self, tmp_path):
        first = theme_names("mad-max")[0]
        assert allocate_name(tmp_path, set()) == first
        assert allocate_name(tmp_path, {first}) == theme_names("mad-max")[1]

    def test_overflow_appends_counter(self, tmp_path):
        save_namepool_config(tmp_path, NamepoolConfig(theme="wasteland"))
        names = set(theme_names("wasteland"))
        assert allocate_name(tmp_path, names) == "rust2"
        assert allocate_name(tmp_path, names | {"rust2"}) == "ember2"

    def test_custom_names_first_and_reserved_dropped(self, tmp_path):
        save_namepool_config(tmp_path, NamepoolConfig(theme="minerals", custom_names=("witness", "zed")))
        cfg = load_namepool_config(tmp_path)
        pool = pool_for(cfg)
        assert pool[0] == "zed"
        assert "witness" not in pool
        assert allocate_name(tmp_path, []) == "zed"

    def test_taken_is_case_insensitive(self, tmp_path):
        first, second = theme_names("mad-max")[:2]
        assert allocate_name(tmp_path, [first.upper()]) == second

    def test_names_compare_case_insensitively(self, tmp_path):
        cfg = NamepoolConfig(theme="minerals", custom_names=("Nux", "Witness", "NUX"))
        assert pool_for(cfg)[:2] == ["Nux", "obsidian"]
        save_namepool_config(tmp_path, NamepoolConfig(theme="minerals", custom_names=("Nux", "zed")))
        assert allocate_name(tmp_path, ["NUX"]) == "zed"

    def test_unknown_theme(self):
        with pytest.raises(ValueError, match="unknown theme"):
            theme_names("space")
        assert list_themes() == ["mad-max", "minerals", "wasteland"]

    def test_pools_have_no_reserved_names(self):
        from horde.identity import RESERVED_NAMES, valid_name

        for theme in list_themes():
            for name in theme_names(theme):
                assert valid_name(name)
                assert name not in RESERVED_NAMES
