"""Tests for the tmux session bridge."""

from datetime import datetime

from conftest import add_rig_ledger
from horde.identity import AgentIdentity
from horde.lifecycle import EventKind, read_events
from horde.session import (
    agent_env,
    find_by_workdir,
    format_beacon,
    identity_for_session,
    is_agent_running,
    nudge,
    record_pane_exit,
    restart_session,
    start_session,
    stop_session,
)

WITNESS = AgentIdentity.witness("horde")


def _rig(hctx):
    add_rig_ledger(hctx, "horde", "gt")
    (hctx.root / "horde" / "witness").mkdir(parents=True, exist_ok=True)
    return hctx


class TestBeacon:
    def test_format(self):
        beacon = format_beacon("horde/witness", "warchief/", "restart", now=datetime(2026, 10, 18, 9, 5))
        assert beacon.startswith("[HORDE] horde/witness <- warchief/ • 2026-10-18T09:05 • restart • ")
        assert "\n" not in beacon

    def test_unknown_topic_has_no_hint(self):
        beacon = format_beacon("warchief/", topic="custom", now=datetime(2026, 10, 18, 9, 5))
        assert beacon == "[HORDE] warchief/ <- human • 2026-10-18T09:05 • custom"

    def test_agent_env(self, tmp_path):
        env = agent_env(tmp_path, AgentIdentity.raider("horde", "nux"))
        assert env["HD_ROLE"] == "raider"
        assert env["HD_WARBAND"] == "horde"
        assert env["HD_RAIDER"] == "nux"
        assert env["HD_ACTOR"] == "horde/raiders/nux"
        assert env["HD_RAIDER_PATH"] == str(tmp_path / "horde/raiders/nux/warband")
        assert "HD_WARBAND" not in agent_env(tmp_path, AgentIdentity.warchief())


class TestStartSession:
    def test_new_session(self, hctx, fake_tmux):
        _rig(hctx)
        result = start_session(hctx, WITNESS, topic="assigned", context="gt-abc")
        assert result["status"] == "started"
        session = fake_tmux.sessions["gt-horde-witness"]
        assert session["cwd"] == str(hctx.root / "horde" / "witness")
        assert session["env"]["HD_ROLE"] == "witness"
        assert session["options"]["remain-on-exit"] == "on"
        assert "hd log crash --session gt-horde-witness" in session["hooks"]["pane-died"]
        assert session["startup"].startswith("exec env ")
        assert "claude --dangerously-skip-permissions" in session["startup"]
        assert "[HORDE] horde/witness" in session["startup"]
        events = read_events(hctx.root)
        assert [(e.kind, e.actor) for e in events] == [(EventKind.SPAWN, "horde/witness")]

    def test_running_session_untouched(self, hctx, fake_tmux):
        _rig(hctx)
        fake_tmux.add("gt-horde-witness", command="claude")
        assert start_session(hctx, WITNESS)["status"] == "running"
        assert fake_tmux.sessions["gt-horde-witness"]["startup"] == ""

    def test_dead_runtime_is_respawned(self, hctx, fake_tmux):
        _rig(hctx)
        fake_tmux.add("gt-horde-witness", command="bash")
        assert start_session(hctx, WITNESS)["status"] == "restarted"
        assert fake_tmux.sessions["gt-horde-witness"]["command"] == "claude"
        assert read_events(hctx.root)[-1].kind is EventKind.WAKE

    def test_reuses_session_in_same_workdir(self, hctx, fake_tmux):
        _rig(hctx)
        fake_tmux.add("someone-else", cwd=str(hctx.root / "horde" / "witness"))
        result = start_session(hctx, WITNESS)
        assert result == {"status": "running", "session": "someone-else", "reused": True}
        assert "gt-horde-witness" not in fake_tmux.sessions


class TestLiveness:
    def test_is_agent_running(self, fake_tmux):
        fake_tmux.add("a", command="node")
        fake_tmux.add("b", command="vim")
        assert is_agent_running(fake_tmux, "a", ("claude", "node"))
        assert not is_agent_running(fake_tmux, "b", ("claude", "node"))
        assert not is_agent_running(fake_tmux, "missing", ("claude",))

    def test_find_by_workdir(self, fake_tmux, tmp_path):
        fake_tmux.add("a", cwd=str(tmp_path))
        fake_tmux.add("b", cwd=str(tmp_path), command="bash")
        assert find_by_workdir(fake_tmux, tmp_path, ("claude",)) == ["a"]


class TestStopRestartNudge:
    def test_stop(self, hctx, fake_tmux):
        _rig(hctx)
        fake_tmux.add("gt-horde-witness")
        assert stop_session(hctx, WITNESS) is True
        assert stop_session(hctx, WITNESS) is False
        assert read_events(hctx.root)[-1].kind is EventKind.KILL

    def test_restart_without_session_starts(self, hctx, fake_tmux):
        _rig(hctx)
        assert restart_session(hctx, WITNESS)["status"] == "started"

    def test_nudge(self, hctx, fake_tmux):
        _rig(hctx)
        assert nudge(hctx, WITNESS, "wake up") is False
        fake_tmux.add("gt-horde-witness")
        assert nudge(hctx, WITNESS, "wake up") is True
        assert fake_tmux.sent == [("gt-horde-witness", "wake up")]


class TestSessionNames:
    def test_identity_for_session(self, hctx):
        _rig(hctx)
        assert identity_for_session(hctx, "hq-warchief") == AgentIdentity.warchief()
        assert identity_for_session(hctx, "gt-horde-witness") == WITNESS
        assert identity_for_session(hctx, "gt-horde-nux") == AgentIdentity.raider("horde", "nux")
        assert identity_for_session(hctx, "gt-horde-clan-ana") == AgentIdentity.crew("horde", "ana")
        assert identity_for_session(hctx, "zz-horde-nux") is None
        assert identity_for_session(hctx, "random") is None

    def test_record_pane_exit(self, hctx):
        _rig(hctx)
        result = record_pane_exit(hctx, "gt-horde-nux", 1)
        assert result["kind"] == "crash"
        assert result["actor"] == "horde/raiders/nux"
        event = read_events(hctx.root)[-1]
        assert event.kind is EventKind.CRASH
        assert event.detail == "exited unexpectedly (exit 1)"

    def test_record_clean_exit_for_unknown_session(self, hctx):
        result = record_pane_exit(hctx, "mystery", 0)
        assert result["kind"] == "done"
        assert result["actor"] == "mystery"
