"""Shared constants — env var names, workspace layout, resolvers.

Single source of truth for path resolution across all horde subsystems.
"""

from __future__ import annotations

import os
from pathlib import Path

# ---------------------------------------------------------------------------
# Env var names
# ---------------------------------------------------------------------------

ENV_ROLE = "HD_ROLE"
ENV_WARBAND = "HD_WARBAND"
ENV_RAIDER = "HD_RAIDER"
ENV_CREW = "HD_CREW"
ENV_CLAN = "HD_CLAN"  # older sessions export the crew name under this key
ENV_WORKSPACE_ROOT = "HD_WORKSPACE_ROOT"
ENV_RAIDER_PATH = "HD_RAIDER_PATH"
ENV_BRANCH = "HD_BRANCH"
ENV_SESSION_ID = "HD_SESSION_ID"
ENV_ACTOR = "HD_ACTOR"
ENV_LEDGER_BIN = "HD_LEDGER_BIN"
ENV_TMUX_BIN = "HD_TMUX_BIN"
ENV_DEBUG = "HD_DEBUG"
ENV_RUNTIME_SESSION_ID = "CLAUDE_SESSION_ID"

ALL_ROLE_ENV = (
    ENV_ROLE, ENV_WARBAND, ENV_RAIDER, ENV_CREW, ENV_CLAN,
    ENV_WORKSPACE_ROOT, ENV_RAIDER_PATH, ENV_BRANCH, ENV_SESSION_ID, ENV_ACTOR,
)

# ---------------------------------------------------------------------------
# Workspace layout
# ---------------------------------------------------------------------------

HQ_DIR = "warchief"
SHAMAN_DIR = "shaman"
WORKSPACE_MARKER = "warchief/encampment.json"
ENCAMPMENT_FILE = "encampment.json"
WARBANDS_FILE = "warbands.json"
LEDGER_DIR = ".relics"
ROUTES_FILE = "routes"
HQ_PREFIX = "hq"
LOG_DIR = "logs"
LOG_FILE = "encampment.log"
DRUMS_DIR = "drums"
SETTINGS_DIR = "settings"
RUNTIMES_FILE = "runtimes.yaml"
NAMEPOOL_FILE = "namepool.yaml"
CHECKPOINT_FILE = ".raider-checkpoint.json"

# Directories inside a warband
RIG_CLONE = "warchief/warband"
RAIDERS_DIR = "raiders"
CLAN_DIR = "clan"
WORKTREE_DIR = "warband"
RIG_AGENT_DIRS = ("raiders", "clan", "forge/warband", "witness", "warchief")

ENCAMPMENT_VERSION = 1
WARBANDS_VERSION = 1

# ---------------------------------------------------------------------------
# Tunables
# ---------------------------------------------------------------------------

MIN_LEDGER_VERSION = "0.43.0"
VERSION_CHECK_TIMEOUT = 10
CHECKPOINT_STALE_HOURS = 24
SHELL_READY_TIMEOUT = 5.0
MAX_WORKERS = 8
DEFAULT_BRANCH = "main"


# ---------------------------------------------------------------------------
# Resolvers
# ---------------------------------------------------------------------------


def resolve_ledger_bin() -> str:
    """Resolve the ledger binary: HD_LEDGER_BIN > rl."""
    return os.getenv(ENV_LEDGER_BIN) or "rl"


def resolve_tmux_bin() -> str:
    """Resolve the multiplexer binary: HD_TMUX_BIN > tmux."""
    return os.getenv(ENV_TMUX_BIN) or "tmux"


def debug_enabled() -> bool:
    return os.getenv(ENV_DEBUG, "").lower() in ("1", "true", "yes")


def hq_path(root: str | Path) -> Path:
    return Path(root) / HQ_DIR


def ledger_path(base: str | Path) -> Path:
    """The ledger directory under a workspace or warband root."""
    return Path(base) / LEDGER_DIR


def log_path(root: str | Path) -> Path:
    return Path(root) / LOG_DIR / LOG_FILE


def drums_path(root: str | Path) -> Path:
    return Path(root) / DRUMS_DIR


def resolve_runtime_config_path(root: str | Path) -> Path:
    return Path(root) / SETTINGS_DIR / RUNTIMES_FILE
