"""
Unit tests for the bandwidth tier table and RouterOS command synthesis.
"""

import ipaddress

import pytest

from updater.commands import (
    ERASE_COMMAND,
    active_records,
    build_add_command,
    build_erase_command,
    build_rebuild_payload,
)
from updater.services import (
    BANDWIDTH_TIERS,
    DEFAULT_PROFILE,
    STATE_ACTIVE,
    ServiceRecord,
    resolve_tier,
)


_EXPECTED_TIERS = {
    "8": "vpn_1Mb",
    "20": "vpn_10Mb",
    "11": "vpn_1,5Mb",
    "26": "vpn_12Mb",
    "28": "vpn_15Mb",
    "9": "vpn_2Mb",
    "25": "vpn_20Mb",
    "12": "vpn_2,5Mb",
    "10": "vpn_3Mb",
    "13": "vpn_4Mb",
    "14": "vpn_5Mb",
    "30": "vpn_50Mb",
    "15": "vpn_6Mb",
    "16": "vpn_7Mb",
    "17": "vpn_8Mb",
    "18": "vpn_9Mb",
}


def _record(login="alice", secret="p1", address="10.1.1.5", tier="vpn_10Mb", status=1):
    return ServiceRecord(
        login=login,
        secret=secret,
        remote_address=ipaddress.IPv4Address(address),
        bandwidth_tier=tier,
        status=status,
    )


# ---------------------------------------------------------------------------
# Tier table
# ---------------------------------------------------------------------------


class TestBandwidthTiers:
    def test_table_has_sixteen_entries(self):
        assert len(BANDWIDTH_TIERS) == 16

    def test_table_is_read_only(self):
        with pytest.raises(TypeError):
            BANDWIDTH_TIERS["99"] = "vpn_100Mb"

    @pytest.mark.parametrize("code, profile", sorted(_EXPECTED_TIERS.items()))
    def test_known_code_maps_to_profile(self, code, profile):
        assert resolve_tier(code) == profile

    def test_table_matches_router_profiles(self):
        assert dict(BANDWIDTH_TIERS) == _EXPECTED_TIERS

    @pytest.mark.parametrize("code", ["99", "", "0", " 20", "20 ", "vpn_10Mb"])
    def test_unknown_code_maps_to_default(self, code):
        assert resolve_tier(code) == DEFAULT_PROFILE

    def test_default_profile(self):
        assert DEFAULT_PROFILE == "vpn_2Mb"

    def test_sample_mappings(self):
        assert resolve_tier("20") == "vpn_10Mb"
        assert resolve_tier("11") == "vpn_1,5Mb"
        assert resolve_tier("30") == "vpn_50Mb"


class TestServiceRecord:
    def test_active_status(self):
        assert _record(status=STATE_ACTIVE).is_active is True
        assert _record(status=0).is_active is False
        assert _record(status=2).is_active is False

    def test_repr_hides_secret(self):
        text = repr(_record(secret="hunter2"))
        assert "hunter2" not in text
        assert "alice" in text

    def test_frozen(self):
        rec = _record()
        with pytest.raises(AttributeError):
            rec.login = "bob"


# ---------------------------------------------------------------------------
# Command synthesis
# ---------------------------------------------------------------------------


class TestEraseCommand:
    def test_exact_text(self):
        assert build_erase_command() == "/ppp secret remove [/ppp secret find]"

    def test_constant(self):
        assert build_erase_command() == ERASE_COMMAND
        assert build_erase_command() == build_erase_command()


class TestAddCommand:
    def test_exact_text(self):
        assert build_add_command(_record()) == (
            "/ppp secret add local-address=10.0.0.0 name=alice password=p1 "
            "remote-address=10.1.1.5 disabled=yes profile=vpn_10Mb"
        )

    def test_secret_is_not_rewritten(self):
        cmd = build_add_command(_record(secret="a=b c"))
        assert "password=a=b c remote-address=" in cmd

    def test_no_trailing_newline(self):
        assert not build_add_command(_record()).endswith("\n")

    def test_created_disabled(self):
        assert " disabled=yes " in build_add_command(_record())


class TestRebuildPayload:
    def test_empty_input(self):
        assert build_rebuild_payload([]) == ""

    def test_only_inactive(self):
        assert build_rebuild_payload([_record(status=0), _record(status=2)]) == ""

    def test_single_active(self):
        rec = _record()
        assert build_rebuild_payload([rec]) == build_add_command(rec) + "\n"

    def test_filters_inactive_and_keeps_order(self):
        records = [
            _record(login="c", address="10.0.0.3"),
            _record(login="skip", status=0),
            _record(login="a", address="10.0.0.1"),
            _record(login="b", address="10.0.0.2", status=3),
        ]
        lines = build_rebuild_payload(records).splitlines()
        assert len(lines) == 2
        assert " name=c " in lines[0]
        assert " name=a " in lines[1]

    def test_count_matches_active(self):
        records = [_record(login=f"u{i}", status=i % 2) for i in range(10)]
        payload = build_rebuild_payload(records)
        assert payload.count("\n") == len(active_records(records)) == 5

    def test_deterministic(self):
        records = [_record(login=f"u{i}") for i in range(5)]
        assert build_rebuild_payload(records) == build_rebuild_payload(list(records))

    def test_accepts_generator(self):
        records = [_record(login="x"), _record(login="y")]
        assert build_rebuild_payload(r for r in records) == build_rebuild_payload(records)
