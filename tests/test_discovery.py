from __future__ import annotations

import requests

from livebox_discovery import discover_livebox, parse_traceroute, probe_livebox, trace_route
from livebox_utils import is_private_address

TRACEROUTE_OUTPUT = """traceroute to 8.8.8.8 (8.8.8.8), 30 hops max, 60 byte packets
 1  172.20.0.1  0.512 ms
 2  192.168.1.1  1.201 ms
 3  *
 4  80.10.235.1  5.873 ms
 5  8.8.8.8  12.004 ms
"""

DEVICE_INFO = {
    "status": {
        "ProductClass": "Livebox Fibre",
        "SerialNumber": "AN2201234567",
        "SoftwareVersion": "SG50_sip-fr-6.62.12.1",
        "BaseMAC": "aa:bb:cc:dd:ee:ff",
        "Manufacturer": "Sagemcom",
    }
}


class _HostSession:
    """Answers DeviceInfo probes only for the given base URL."""

    def __init__(self, livebox_url: str, make_response) -> None:
        self.livebox_url = livebox_url
        self.make_response = make_response
        self.urls: list[str] = []

    def post(self, url, data=None, headers=None, timeout=None):
        self.urls.append(url)
        if url == f"{self.livebox_url}/ws":
            return self.make_response(200, DEVICE_INFO)
        raise requests.ConnectionError(f"no route to {url}")


def test_parse_traceroute_skips_unanswered_hops() -> None:
    assert parse_traceroute(TRACEROUTE_OUTPUT) == ["172.20.0.1", "192.168.1.1", "80.10.235.1", "8.8.8.8"]


def test_trace_route_without_output() -> None:
    assert trace_route(command_runner=lambda command, timeout: None) == []


def test_private_address_ranges() -> None:
    assert is_private_address("10.1.2.3")
    assert is_private_address("172.31.255.255")
    assert is_private_address("192.168.1.1")
    assert not is_private_address("172.32.0.1")
    assert not is_private_address("8.8.8.8")
    assert not is_private_address("fe80::1")
    assert not is_private_address("livebox.home")


def test_probe_extracts_identity(make_response) -> None:
    session = _HostSession("http://192.168.1.1", make_response)

    result = probe_livebox(session, "192.168.1.1")

    assert result.address == "http://192.168.1.1"
    assert result.product_class == "Livebox Fibre"
    assert result.base_mac == "aa:bb:cc:dd:ee:ff"
    assert result.other == {"Manufacturer": "Sagemcom"}


def test_probe_rejects_empty_status(fake_session, make_response) -> None:
    fake_session.reply("DeviceInfo", make_response(200, {"status": {}}))

    assert probe_livebox(fake_session, "http://10.0.0.1") is None


def test_discovery_probes_private_hops_first(make_response) -> None:
    session = _HostSession("http://192.168.1.1", make_response)

    result = discover_livebox(session, command_runner=lambda command, timeout: TRACEROUTE_OUTPUT)

    assert result.address == "http://192.168.1.1"
    # the public hops are never probed
    assert session.urls == ["http://172.20.0.1/ws", "http://192.168.1.1/ws"]


def test_discovery_falls_back_to_default_addresses(make_response) -> None:
    session = _HostSession("http://livebox.home", make_response)

    result = discover_livebox(session, command_runner=lambda command, timeout: "")

    assert result.address == "http://livebox.home"
    assert session.urls == ["http://192.168.1.1/ws", "http://livebox.home/ws"]


def test_discovery_failure(make_response) -> None:
    session = _HostSession("http://nowhere", make_response)

    assert discover_livebox(session, command_runner=lambda command, timeout: "") is None
