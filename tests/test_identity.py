"""Tests for agent identities: addresses, session names, record ids."""

import pytest

from horde.identity import AgentIdentity, Role, parse_address, valid_prefix


ALL_IDENTITIES = [
    AgentIdentity.warchief(),
    AgentIdentity.shaman(),
    AgentIdentity.witness("horde"),
    AgentIdentity.forge("horde"),
    AgentIdentity.raider("horde", "nux"),
    AgentIdentity.crew("horde", "ana"),
]


class TestStringForms:
    def test_addresses(self):
        assert [i.address for i in ALL_IDENTITIES] == [
            "warchief/", "shaman/", "horde/witness", "horde/forge",
            "horde/raiders/nux", "horde/clan/ana",
        ]

    def test_session_names(self):
        assert AgentIdentity.warchief().session_name("hq") == "hq-warchief"
        assert AgentIdentity.witness("horde").session_name("gt") == "gt-horde-witness"
        assert AgentIdentity.raider("horde", "nux").session_name("gt") == "gt-horde-nux"
        assert AgentIdentity.crew("horde", "ana").session_name("gt") == "gt-horde-clan-ana"

    def test_record_ids(self):
        assert AgentIdentity.shaman().record_id("hq") == "hq-shaman"
        assert AgentIdentity.forge("horde").record_id("gt") == "gt-horde-forge"
        assert AgentIdentity.raider("horde", "nux").record_id("gt") == "gt-horde-raider-nux"

    def test_forms_are_injective(self):
        addresses = {i.address for i in ALL_IDENTITIES}
        sessions = {i.session_name("gt") for i in ALL_IDENTITIES}
        records = {i.record_id("gt") for i in ALL_IDENTITIES}
        assert len(addresses) == len(sessions) == len(records) == len(ALL_IDENTITIES)

    def test_address_round_trip(self):
        for ident in ALL_IDENTITIES:
            assert parse_address(ident.address) == ident

    def test_homes(self, tmp_path):
        assert AgentIdentity.warchief().home(tmp_path) == tmp_path / "warchief"
        assert AgentIdentity.raider("horde", "nux").home(tmp_path) == tmp_path / "horde/raiders/nux/warband"
        assert AgentIdentity.witness("horde").home(tmp_path) == tmp_path / "horde/witness"


class TestParseAddress:
    def test_shorthand_is_raider(self):
        assert parse_address("horde/nux") == AgentIdentity.raider("horde", "nux")

    def test_crew_alias(self):
        assert parse_address("horde/crew/ana") == AgentIdentity.crew("horde", "ana")

    def test_trailing_slash_optional(self):
        assert parse_address("warchief") == AgentIdentity.warchief()

    @pytest.mark.parametrize("bad", ["", "nobody", "a/b/c/d", "horde/raiders/bad-name"])
    def test_rejects(self, bad):
        with pytest.raises(ValueError):
            parse_address(bad)


class TestValidation:
    def test_reserved_raider_name(self):
        with pytest.raises(ValueError, match="reserved"):
            AgentIdentity.raider("horde", "witness")

    def test_raider_needs_name(self):
        with pytest.raises(ValueError):
            AgentIdentity(Role.RAIDER, "horde")

    def test_workspace_roles_have_no_rig(self):
        with pytest.raises(ValueError):
            AgentIdentity(Role.WARCHIEF, "horde")

    def test_role_parse_aliases(self):
        assert Role.parse("clan") is Role.CREW
        assert Role.parse("Raiders/") is Role.RAIDER
        with pytest.raises(ValueError, match="Unknown role"):
            Role.parse("pilot")

    def test_prefix_validation(self):
        assert valid_prefix("gt")
        assert not valid_prefix("hq")
        assert not valid_prefix("G-T")
