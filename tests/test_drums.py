"""Tests for drums messaging."""

from horde import drums


class TestSend:
    def test_send_and_inbox(self, tmp_path):
        sent = drums.send(tmp_path, "horde/witness", "warchief", "Status?", "How goes it")
        assert sent["status"] == "sent"
        assert sent["to"] == "horde/witness"
        inbox = drums.inbox(tmp_path, "horde/witness/")
        assert inbox["count"] == 1
        assert inbox["unread"] == 1
        msg = inbox["messages"][0]
        assert msg["from"] == "warchief/"
        assert msg["subject"] == "Status?"
        assert msg["read"] is False

    def test_raider_shorthand_shares_inbox(self, tmp_path):
        drums.send(tmp_path, "horde/nux", "human", "hi")
        assert drums.inbox(tmp_path, "horde/raiders/nux")["count"] == 1

    def test_fifo_order(self, tmp_path):
        for subject in ("one", "two", "three"):
            drums.send(tmp_path, "warchief/", "human", subject)
        subjects = [m["subject"] for m in drums.inbox(tmp_path, "warchief/")["messages"]]
        assert subjects == ["one", "two", "three"]

    def test_plain_mailbox(self, tmp_path):
        assert drums.send(tmp_path, "human", "horde/witness", "done")["to"] == "human"

    def test_bad_address(self, tmp_path):
        result = drums.send(tmp_path, "not an/address/at/all", "human", "x")
        assert result["error"].startswith("BLOCKED:")

    def test_same_stem_never_overwrites(self, tmp_path, monkeypatch):
        monkeypatch.setattr(drums, "_precise_timestamp", lambda: "20261018T120000000000")
        first = drums.send(tmp_path, "warchief/", "human", "ping", "one")
        second = drums.send(tmp_path, "warchief/", "human", "ping", "two")
        assert second["id"] == first["id"] + "-1"
        bodies = [drums.read(tmp_path, s["id"])["body"] for s in (first, second)]
        assert bodies == ["one", "two"]

    def test_reservation_in_flight_is_skipped(self, tmp_path):
        drums.send(tmp_path, "warchief/", "human", "real")
        (drums.inbox_dir(tmp_path, "warchief/") / "20991231T000000000000-human-pending.md").touch()
        assert [m["subject"] for m in drums.inbox(tmp_path, "warchief/")["messages"]] == ["real"]

    def test_empty_inbox(self, tmp_path):
        assert drums.inbox(tmp_path, "shaman/") == {"address": "shaman/", "count": 0, "unread": 0, "messages": []}


class TestRead:
    def test_read_marks_read(self, tmp_path):
        sent = drums.send(tmp_path, "horde/witness", "warchief/", "Report", "line one\nline two")
        msg = drums.read(tmp_path, sent["id"])
        assert msg["body"] == "line one\nline two"
        assert msg["read"] is True
        inbox = drums.inbox(tmp_path, "horde/witness")
        assert inbox["unread"] == 0
        assert drums.inbox(tmp_path, "horde/witness", unread_only=True)["count"] == 0

    def test_read_is_idempotent(self, tmp_path):
        sent = drums.send(tmp_path, "warchief/", "human", "x", "body")
        drums.read(tmp_path, sent["id"], "warchief/")
        again = drums.read(tmp_path, sent["id"], "warchief/")
        assert again["read"] is True
        assert again["body"] == "body"

    def test_unknown_message(self, tmp_path):
        assert "not found" in drums.read(tmp_path, "nope")["error"]

    def test_delete(self, tmp_path):
        sent = drums.send(tmp_path, "warchief/", "human", "x")
        assert drums.delete(tmp_path, sent["id"]) is True
        assert drums.delete(tmp_path, sent["id"]) is False
