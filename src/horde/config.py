"""YAML configuration — runtime launch profiles and warband name pools."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

import yaml

from horde.defaults import NAMEPOOL_FILE, SETTINGS_DIR, SHELL_READY_TIMEOUT, resolve_runtime_config_path

SHELLS = ("bash", "zsh", "sh", "fish", "dash", "tcsh", "ksh")


@dataclass(frozen=True)
class RuntimeConfig:
    name: str
    command: str
    pane_commands: tuple[str, ...]
    config_dir_env: Optional[str] = None
    config_dir: Optional[str] = None
    ready_timeout: float = SHELL_READY_TIMEOUT


@dataclass(frozen=True)
class RuntimesConfig:
    default: str
    runtimes: Dict[str, RuntimeConfig]

    def get(self, name: str | None = None) -> RuntimeConfig:
        key = name or self.default
        if key not in self.runtimes:
            raise ValueError(f"Unknown runtime '{key}'. Known: {', '.join(sorted(self.runtimes))}")
        return self.runtimes[key]

    def all_pane_commands(self) -> tuple[str, ...]:
        cmds: list[str] = []
        for rt in self.runtimes.values():
            cmds.extend(c for c in rt.pane_commands if c not in cmds)
        return tuple(cmds)


DEFAULT_RUNTIMES = RuntimesConfig(
    default="claude",
    runtimes={
        "claude": RuntimeConfig(
            name="claude",
            command="claude --dangerously-skip-permissions",
            pane_commands=("claude", "node"),
            config_dir_env="CLAUDE_CONFIG_DIR",
        ),
        "codex": RuntimeConfig(
            name="codex",
            command="codex",
            pane_commands=("codex", "node"),
        ),
    },
)


def _load_yaml_mapping(path: Path) -> dict:
    raw = yaml.safe_load(path.read_text()) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{path}: top-level config must be a YAML mapping")
    return raw


def _runtime_from_yaml(name: str, raw: object, path: Path) -> RuntimeConfig:
    if not isinstance(raw, dict):
        raise ValueError(f"{path}: runtime '{name}' must be a mapping")
    command = raw.get("command")
    if not command or not isinstance(command, str):
        raise ValueError(f"{path}: runtime '{name}' requires a 'command' string")
    pane_commands = raw.get("pane_commands") or [command.split()[0]]
    if not isinstance(pane_commands, list):
        raise ValueError(f"{path}: runtime '{name}' pane_commands must be a list")
    return RuntimeConfig(
        name=name,
        command=command,
        pane_commands=tuple(str(c) for c in pane_commands),
        config_dir_env=raw.get("config_dir_env"),
        config_dir=raw.get("config_dir"),
        ready_timeout=float(raw.get("ready_timeout", SHELL_READY_TIMEOUT)),
    )


def load_runtime_config(root: str | Path) -> RuntimesConfig:
    """Load settings/runtimes.yaml, falling back to built-in defaults if absent."""
    path = resolve_runtime_config_path(root)
    if not path.exists():
        return DEFAULT_RUNTIMES
    raw = _load_yaml_mapping(path)
    entries = raw.get("runtimes") or {}
    if not isinstance(entries, dict):
        raise ValueError(f"{path}: 'runtimes' must be a mapping")
    runtimes = dict(DEFAULT_RUNTIMES.runtimes)
    for name, entry in entries.items():
        runtimes[str(name)] = _runtime_from_yaml(str(name), entry, path)
    default = str(raw.get("default", DEFAULT_RUNTIMES.default))
    if default not in runtimes:
        raise ValueError(f"{path}: default runtime '{default}' is not defined")
    return RuntimesConfig(default=default, runtimes=runtimes)


@dataclass(frozen=True)
class NamepoolConfig:
    theme: str = "mad-max"
    custom_names: tuple[str, ...] = field(default_factory=tuple)


def load_namepool_config(rig_path: str | Path) -> NamepoolConfig:
    path = Path(rig_path) / SETTINGS_DIR / NAMEPOOL_FILE
    if not path.exists():
        return NamepoolConfig()
    raw = _load_yaml_mapping(path)
    names = raw.get("custom_names") or []
    if not isinstance(names, list):
        raise ValueError(f"{path}: custom_names must be a list")
    return NamepoolConfig(
        theme=str(raw.get("theme", "mad-max")),
        custom_names=tuple(str(n).lower() for n in names),
    )


def save_namepool_config(rig_path: str | Path, cfg: NamepoolConfig) -> Path:
    path = Path(rig_path) / SETTINGS_DIR / NAMEPOOL_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump({"theme": cfg.theme, "custom_names": list(cfg.custom_names)}, sort_keys=False))
    return path
