from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

import requests

from livebox_client_exceptions import *
from livebox_models import *
from livebox_session import *
from livebox_utils import *

UPLINK_INTERFACE = "veip0"

NET_DEV_STATS_FIELDS = {
    "rx_packets": "RxPackets",
    "tx_packets": "TxPackets",
    "rx_bytes": "RxBytes",
    "tx_bytes": "TxBytes",
    "rx_errors": "RxErrors",
    "tx_errors": "TxErrors",
    "rx_dropped": "RxDropped",
    "tx_dropped": "TxDropped",
    "multicast": "Multicast",
    "collisions": "Collisions",
    "rx_length_errors": "RxLengthErrors",
    "rx_over_errors": "RxOverErrors",
    "rx_crc_errors": "RxCrcErrors",
    "rx_frame_errors": "RxFrameErrors",
    "rx_fifo_errors": "RxFifoErrors",
    "rx_missed_errors": "RxMissedErrors",
    "tx_aborted_errors": "TxAbortedErrors",
    "tx_carrier_errors": "TxCarrierErrors",
    "tx_fifo_errors": "TxFifoErrors",
    "tx_heartbeat_errors": "TxHeartbeatErrors",
    "tx_window_errors": "TxWindowErrors",
}


@dataclass
class LiveboxClient:
    host: str
    session_manager: SessionManager
    clock: Callable[[], float] = time.monotonic

    def __post_init__(self):
        self.host = normalize_host(self.host)

    @property
    def session(self) -> requests.Session:
        return self.session_manager.session

    def call(self,
             service: str,
             method: str,
             force_reauth: bool = False,
             cancel_event: Optional[threading.Event] = None) -> Optional[dict]:
        """
        POST a sysbus call and return the decoded JSON object.

        Returns None when the Livebox answers with anything but a 200 JSON object.
        """
        check_cancelled(cancel_event)
        headers = {"Content-Type": SAH_CONTENT_TYPE}
        token = self.session_manager.acquire(self.host, force_reauth, cancel_event)
        if token is not None:
            headers["Authorization"] = f"X-Sah {token}"

        check_cancelled(cancel_event)
        try:
            response = self.session.post(f"{self.host}{WS_PATH}",
                                         data=sah_request(service, method),
                                         headers=headers,
                                         timeout=DEFAULT_TIMEOUT)
        except (requests.ConnectionError, requests.Timeout) as e:
            self.session_manager.invalidate()
            raise ConnectivityException(f"Livebox unreachable ({service}.{method}): {e}") from e
        check_cancelled(cancel_event)

        if response.status_code != 200 or not is_json_response(response) or not response.text:
            return None
        try:
            data = response.json()
        except ValueError:
            return None
        return data if isinstance(data, dict) else None

    @staticmethod
    def _parse_errors(data: dict) -> list[ResultError]:
        errors = get_ci(data, "errors")
        if not isinstance(errors, list):
            return []
        return [
            ResultError(code=safe_int(get_ci(e, "error")), description=str(get_ci(e, "description", "")))
            for e in errors
            if isinstance(e, dict)
        ]

    def get_device_info(self,
                        force_reauth: bool = False,
                        cancel_event: Optional[threading.Event] = None) -> Optional[QueryResult[DeviceInfo]]:
        data = self.call("sysbus.DeviceInfo", "get", force_reauth, cancel_event)
        if data is None:
            return None
        status = get_ci(data, "status")
        info = None
        if isinstance(status, dict):
            info = DeviceInfo(
                uptime=optional_int(get_ci(status, "UpTime")),
                number_of_reboots=optional_int(get_ci(status, "NumberOfReboots")),
                device_status=get_ci(status, "DeviceStatus"),
                base_mac=get_ci(status, "BaseMAC")
            )
        return QueryResult(payload=info, errors=self._parse_errors(data))

    def get_device_status(self,
                          device_info: DeviceInfo,
                          cancel_event: Optional[threading.Event] = None) -> Optional[QueryResult[DeviceStatus]]:
        data = self.call(f"sysbus.Devices.Device.{device_info.base_mac.upper()}", "get",
                         cancel_event=cancel_event)
        if data is None:
            return None
        status = get_ci(data, "status")
        device = None
        if isinstance(status, dict):
            device = DeviceStatus(
                active=to_bool(get_ci(status, "Active", False)),
                link_state=get_ci(status, "LinkState"),
                connection_state=get_ci(status, "ConnectionState"),
                internet=to_bool(get_ci(status, "Internet", False)),
                iptv=to_bool(get_ci(status, "IPTV", False)),
                telephony=to_bool(get_ci(status, "Telephony", False)),
                downstream_curr_rate=safe_int(get_ci(status, "DownstreamCurrRate")),
                upstream_curr_rate=safe_int(get_ci(status, "UpstreamCurrRate")),
                downstream_max_bit_rate=safe_int(get_ci(status, "DownstreamMaxBitRate")),
                upstream_max_bit_rate=safe_int(get_ci(status, "UpstreamMaxBitRate"))
            )
        return QueryResult(payload=device, errors=self._parse_errors(data))

    def get_wan_status(self, cancel_event: Optional[threading.Event] = None) -> Optional[QueryResult[WanStatus]]:
        data = self.call("sysbus.NMC", "getWANStatus", cancel_event=cancel_event)
        if data is None:
            return None
        raw = get_ci(data, "data")
        wan_data = None
        if isinstance(raw, dict):
            wan_data = WanStatusData(
                wan_state=get_ci(raw, "WanState"),
                link_state=get_ci(raw, "LinkState"),
                gpon_state=get_ci(raw, "GponState"),
                connection_state=get_ci(raw, "ConnectionState")
            )
        wan = WanStatus(status=to_bool(get_ci(data, "status", False)), data=wan_data)
        return QueryResult(payload=wan, errors=self._parse_errors(data))

    def get_net_dev_stats(self,
                          interface: str = UPLINK_INTERFACE,
                          cancel_event: Optional[threading.Event] = None) -> Optional[QueryResult[NetDevStats]]:
        data = self.call(f"NeMo.Intf.{interface}", "getNetDevStats", cancel_event=cancel_event)
        if data is None:
            return None
        captured_at = self.clock()
        status = get_ci(data, "status")
        stats = None
        if isinstance(status, dict):
            stats = NetDevStats(
                captured_at=captured_at,
                **{attr: safe_int(get_ci(status, key)) for attr, key in NET_DEV_STATS_FIELDS.items()}
            )
        return QueryResult(payload=stats, errors=self._parse_errors(data))


class LiveboxClientFactory:

    def __init__(self, host: str):
        self.host = normalize_host(host)

    def create(self, password: Optional[str], username: str = DEFAULT_USERNAME) -> LiveboxClient:
        session = requests.Session()
        session_manager = SessionManager(session, password, username)
        return LiveboxClient(self.host, session_manager)
