"""Themed raider name pools."""

from __future__ import annotations

from pathlib import Path

from horde.config import NamepoolConfig, load_namepool_config
from horde.identity import RESERVED_NAMES

THEMES: dict[str, tuple[str, ...]] = {
    "mad-max": (
        "furiosa", "nux", "slit", "rictus", "capable", "toast", "cheedo", "dag",
        "angharad", "valkyrie", "morsov", "ace", "keeper", "corpus", "scabrous",
        "organic", "coma", "splendid", "miss_giddy", "immortan", "bullet", "jabassa",
        "hope", "glory", "dementus", "praetorian", "octoboss", "smeg", "vuvalini", "buzzard",
    ),
    "minerals": (
        "obsidian", "quartz", "jasper", "onyx", "opal", "garnet", "beryl", "pyrite",
        "galena", "mica", "basalt", "agate", "cobalt", "flint", "gypsum", "topaz",
        "zircon", "jade", "malachite", "cinnabar",
    ),
    "wasteland": (
        "rust", "ember", "ash", "dune", "scrap", "cinder", "grit", "flare",
        "char", "husk", "slag", "tinder", "wreck", "brine", "soot", "torch",
    ),
}

DEFAULT_THEME = "mad-max"


def list_themes() -> list[str]:
    return sorted(THEMES)


def theme_names(theme: str) -> tuple[str, ...]:
    if theme not in THEMES:
        raise ValueError(f"unknown theme '{theme}' (available: {', '.join(list_themes())})")
    return THEMES[theme]


def pool_for(cfg: NamepoolConfig) -> list[str]:
    names: list[str] = []
    for n in (*cfg.custom_names, *theme_names(cfg.theme)):
        if n.lower() not in RESERVED_NAMES and n.lower() not in {m.lower() for m in names}:
            names.append(n)
    return names


def allocate_name(rig_path: str | Path, in_use: set[str] | list[str]) -> str:
    """First free name in pool order; overflow appends a counter to the pool."""
    cfg = load_namepool_config(rig_path)
    taken = {n.lower() for n in in_use}
    pool = pool_for(cfg)
    for name in pool:
        if name.lower() not in taken:
            return name
    n = 2
    while True:
        for name in pool:
            candidate = f"{name}{n}"
            if candidate.lower() not in taken:
                return candidate
        n += 1
