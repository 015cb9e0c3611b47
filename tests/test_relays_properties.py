"""
Property-based tests for the Relay Inspector module.

Uses Hypothesis to generate fingerprints and router-status entries.
"""

import asyncio
from pathlib import Path

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from tor_resilience.config import ControlConfig
from tor_resilience.control_session import ControlSession
from tor_resilience.exceptions import ConfigError, ControlCommandError
from tor_resilience.relays import RelayInspector, normalize_fingerprint

from fake_daemon import FakeTorDaemon


# Strategies for generating test data

@st.composite
def fingerprint_strategy(draw) -> str:
    """Generate 40-character hex fingerprints in mixed case."""
    return draw(st.text(
        alphabet=st.sampled_from("0123456789abcdefABCDEF"),
        min_size=40,
        max_size=40,
    ))


@st.composite
def nickname_strategy(draw) -> str:
    return draw(st.text(
        alphabet=st.sampled_from("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"),
        min_size=1,
        max_size=19,
    ))


@st.composite
def ipv4_strategy(draw) -> str:
    return ".".join(str(draw(st.integers(min_value=1, max_value=254))) for _ in range(4))


def ns_entry(fingerprint: str, nickname: str, address: str, flags: list[str]) -> str:
    return (
        f"250+ns/id/{fingerprint}=\r\n"
        f"r {nickname} AAAA BBBB 2024-01-01 00:00:00 {address} 9001 0\r\n"
        f"s {' '.join(flags)}\r\n"
        "w Bandwidth=1000\r\n"
        ".\r\n250 OK\r\n"
    )


def session_for(daemon: FakeTorDaemon) -> ControlSession:
    return ControlSession(ControlConfig(
        port=daemon.port,
        timeout_seconds=2.0,
        cookie_path=Path("/nonexistent/control.authcookie"),
    ))


class TestFingerprintNormalizationProperty:
    """
    Property 9: Fingerprints are normalised to 40 upper-case hex characters.
    """

    @given(fingerprint=fingerprint_strategy(), dollar=st.booleans())
    @settings(max_examples=100)
    def test_valid_fingerprint_normalised(self, fingerprint: str, dollar: bool) -> None:
        """
        *For any* 40-hex fingerprint, with or without ``$``, normalisation
        SHALL return it upper-cased without the ``$``.
        """
        raw = ("$" if dollar else "") + fingerprint
        assert normalize_fingerprint(raw) == fingerprint.upper()

    @given(text=st.text(max_size=50))
    @settings(max_examples=100)
    def test_invalid_fingerprint_rejected(self, text: str) -> None:
        """
        *For any* text that is not 40 hex characters, normalisation SHALL
        raise ConfigError.
        """
        candidate = text.strip().lstrip("$").upper()
        if len(candidate) == 40 and all(c in "0123456789ABCDEF" for c in candidate):
            return
        with pytest.raises(ConfigError):
            normalize_fingerprint(text)


class TestRouterStatusDecodingProperty:
    """
    Property 10: Router-status entries decode into nickname, address and flags.
    """

    @given(
        fingerprint=fingerprint_strategy(),
        nickname=nickname_strategy(),
        address=ipv4_strategy(),
        flags=st.lists(st.sampled_from(["Exit", "Guard", "Fast", "Running", "Stable", "Valid"]), unique=True),
    )
    @settings(max_examples=100)
    def test_entry_fields(self, fingerprint: str, nickname: str, address: str, flags: list[str]) -> None:
        """
        *For any* entry, the decoded relay SHALL carry the r-line nickname
        and address and the Exit/Guard flags from the s-line.
        """
        fingerprint = fingerprint.upper()
        relay = RelayInspector.parse_relay_info(ns_entry(fingerprint, nickname, address, flags), fingerprint)

        assert relay.fingerprint == fingerprint
        assert relay.nickname == nickname
        assert relay.address == address
        assert relay.is_exit == ("Exit" in flags)
        assert relay.is_guard == ("Guard" in flags)
        assert relay.country is None

    def test_a_line_used_when_r_line_has_no_address(self) -> None:
        fingerprint = "A" * 40
        text = f"250+ns/id/{fingerprint}=\r\nr short\r\na [2001:db8::1]:9001\r\n.\r\n250 OK\r\n"
        relay = RelayInspector.parse_relay_info(text, fingerprint)

        assert relay.nickname == "short"
        assert relay.address == "[2001:db8::1]:9001"

    def test_flag_tokens_must_match_exactly(self) -> None:
        fingerprint = "B" * 40
        text = f"250+ns/id/{fingerprint}=\r\ns BadExit Guardian\r\n.\r\n250 OK\r\n"
        relay = RelayInspector.parse_relay_info(text, fingerprint)

        assert not relay.is_exit
        assert not relay.is_guard


class TestExitRelayHeuristicProperty:
    """
    Property 11: The exit relay is the first 40-hex token after EXTENDED.
    """

    @given(fingerprint=fingerprint_strategy())
    @settings(max_examples=100)
    def test_extended_token_found(self, fingerprint: str) -> None:
        text = f"250+circuit-status=\r\n4 EXTENDED {fingerprint} PURPOSE=GENERAL\r\n.\r\n250 OK\r\n"
        assert RelayInspector.find_extended_fingerprint(text) == fingerprint.upper()

    @pytest.mark.parametrize("text", [
        "250 OK\r\n",
        "250+circuit-status=\r\n4 BUILT $AAAA~x\r\n.\r\n250 OK\r\n",
        "250+circuit-status=\r\n4 EXTENDED ABCDEF\r\n.\r\n250 OK\r\n",
    ])
    def test_no_extended_token(self, text: str) -> None:
        assert RelayInspector.find_extended_fingerprint(text) is None


class TestRelayCommandsProperty:
    """
    Property 12: Relay lookups go through GETINFO ns/id and ip-to-country.
    """

    def test_get_relay_info_with_country(self) -> None:
        fingerprint = "C" * 40
        replies = {
            f"GETINFO ns/id/{fingerprint}": ns_entry(fingerprint, "exitnode", "192.0.2.7", ["Exit", "Fast"]),
            "GETINFO ip-to-country/192.0.2.7": "250-ip-to-country/192.0.2.7=de\r\n250 OK\r\n",
        }

        async def run():
            async with FakeTorDaemon(replies=replies) as daemon:
                async with session_for(daemon) as session:
                    return await RelayInspector().get_relay_info(session, "$" + fingerprint.lower(), resolve_country=True)

        relay = asyncio.run(run())
        assert relay.fingerprint == fingerprint
        assert relay.nickname == "exitnode"
        assert relay.country == "DE"
        assert relay.is_exit

    def test_unknown_country_left_empty(self) -> None:
        fingerprint = "D" * 40
        replies = {
            f"GETINFO ns/id/{fingerprint}": ns_entry(fingerprint, "relay", "192.0.2.8", []),
            "GETINFO ip-to-country/192.0.2.8": "250-ip-to-country/192.0.2.8=??\r\n250 OK\r\n",
        }

        async def run():
            async with FakeTorDaemon(replies=replies) as daemon:
                async with session_for(daemon) as session:
                    return await RelayInspector().get_relay_info(session, fingerprint, resolve_country=True)

        assert asyncio.run(run()).country is None

    def test_unknown_relay(self) -> None:
        fingerprint = "E" * 40

        async def run() -> None:
            replies = {f"GETINFO ns/id/{fingerprint}": "552 Unrecognized key\r\n"}
            async with FakeTorDaemon(replies=replies) as daemon:
                async with session_for(daemon) as session:
                    with pytest.raises(ControlCommandError):
                        await RelayInspector().get_relay_info(session, fingerprint)

        asyncio.run(run())

    def test_get_exit_relay(self) -> None:
        fingerprint = "F" * 40
        replies = {
            "GETINFO circuit-status": f"250+circuit-status=\r\n9 EXTENDED {fingerprint}\r\n.\r\n250 OK\r\n",
            f"GETINFO ns/id/{fingerprint}": ns_entry(fingerprint, "lastHop", "198.51.100.1", ["Exit"]),
        }

        async def run():
            async with FakeTorDaemon(replies=replies) as daemon:
                async with session_for(daemon) as session:
                    return await RelayInspector().get_exit_relay(session)

        relay = asyncio.run(run())
        assert relay is not None
        assert relay.nickname == "lastHop"

    def test_get_exit_relay_while_circuits_form(self) -> None:
        replies = {"GETINFO circuit-status": "250+circuit-status=\r\n1 LAUNCHED\r\n.\r\n250 OK\r\n"}

        async def run():
            async with FakeTorDaemon(replies=replies) as daemon:
                async with session_for(daemon) as session:
                    return await RelayInspector().get_exit_relay(session)

        assert asyncio.run(run()) is None
