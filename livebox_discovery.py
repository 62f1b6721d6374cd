"""
Best effort discovery of the Livebox address.

Works when the Livebox is the first private hop towards the internet,
which is the case in a typical home network.
"""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
from typing import Callable, Iterable, Optional

import requests

from livebox_models import DiscoveryResult
from livebox_session import SAH_CONTENT_TYPE, WS_PATH, is_json_response, normalize_host, sah_request
from livebox_utils import get_ci, is_private_address

TRACEROUTE_TARGET = "8.8.8.8"
TRACEROUTE_MAX_TTL = 30
TRACEROUTE_TIMEOUT = 60
PROBE_TIMEOUT = 3

DEFAULT_GATEWAY_ADDRESSES = (
    "http://192.168.1.1",
    "http://livebox.home",
)

_IDENTITY_KEYS = ("ProductClass", "SerialNumber", "SoftwareVersion", "BaseMAC")
_HOP_PATTERN = re.compile(r"^\s*\d+\s+(\d{1,3}(?:\.\d{1,3}){3})\b")

CommandRunner = Callable[[list[str], float], Optional[str]]

logger = logging.getLogger(__name__)


def _run_command(command: list[str], timeout_s: float) -> Optional[str]:
    try:
        proc = subprocess.run(
            command,
            check=False,
            capture_output=True,
            text=True,
            timeout=timeout_s,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return None
    return proc.stdout


def parse_traceroute(output: str) -> list[str]:
    hops = []
    for line in output.splitlines():
        m = _HOP_PATTERN.match(line)
        if m:
            hops.append(m.group(1))
    return hops


def trace_route(target: str = TRACEROUTE_TARGET,
                command_runner: Optional[CommandRunner] = None) -> list[str]:
    """Hop addresses towards target, [] if traceroute is not available."""
    if command_runner is None:
        if shutil.which("traceroute") is None:
            logger.debug("traceroute not found, skipping route based discovery")
            return []
        command_runner = _run_command
    output = command_runner(["traceroute", "-n", "-q", "1", "-w", "2", "-m", str(TRACEROUTE_MAX_TTL), target],
                            TRACEROUTE_TIMEOUT)
    if not output:
        return []
    return parse_traceroute(output)


def probe_livebox(session: requests.Session, base_address: str) -> Optional[DiscoveryResult]:
    base_address = normalize_host(base_address)
    try:
        response = session.post(f"{base_address}{WS_PATH}",
                                data=sah_request("DeviceInfo", "get"),
                                headers={"Content-Type": SAH_CONTENT_TYPE},
                                timeout=PROBE_TIMEOUT)
        if response.status_code != 200 or not is_json_response(response):
            return None
        status = get_ci(response.json(), "status")
    except (requests.RequestException, ValueError) as e:
        logger.error(f"Failed to probe Livebox on {base_address}: {e}")
        return None

    if not isinstance(status, dict) or not status:
        return None

    result = DiscoveryResult(
        address=base_address,
        product_class=status.get("ProductClass"),
        serial_number=status.get("SerialNumber"),
        software_version=status.get("SoftwareVersion"),
        base_mac=status.get("BaseMAC"),
        other={k: str(v) for k, v in status.items() if k not in _IDENTITY_KEYS}
    )
    logger.info(f"Discovery success: {result.base_mac} {base_address} - "
                f"{result.product_class} {result.serial_number} {result.software_version}")
    return result


def discover_livebox(session: Optional[requests.Session] = None,
                     command_runner: Optional[CommandRunner] = None,
                     fallback_addresses: Iterable[str] = DEFAULT_GATEWAY_ADDRESSES) -> Optional[DiscoveryResult]:
    session = session or requests.Session()
    logger.info("Livebox address discovery...")

    for hop in trace_route(command_runner=command_runner):
        if not is_private_address(hop):
            continue
        result = probe_livebox(session, f"http://{hop}")
        if result is not None:
            return result

    for address in fallback_addresses:
        result = probe_livebox(session, address)
        if result is not None:
            return result

    return None
